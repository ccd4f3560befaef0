"""
Exception hierarchy and error handling utilities for mubus.

Provides:
- Custom exception classes carrying a wire error code
- Error categorization (client, recoverable, fatal)
- Safe error message formatting (no sensitive data leak)
"""

from __future__ import annotations

import json
import re
from enum import Enum, IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Error codes sent to clients as the unsigned `:error` field."""
    INTERNAL = 1
    MALFORMED_REQUEST = 2
    UNKNOWN_COMMAND = 3
    INVALID_ARGUMENT = 4
    NOT_FOUND = 5
    STORE = 6
    QUERY = 7
    NO_MATCHES = 8
    FILE = 9
    BUS = 10


class ErrorCategory(Enum):
    """Error categories for classification."""
    CLIENT = "client"
    RECOVERABLE = "recoverable"
    FATAL = "fatal"
    NOT_FOUND = "not_found"


class MuBusError(Exception):
    """Base exception for all mubus errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL,
        category: ErrorCategory = ErrorCategory.FATAL,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code)
        self.category = category
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": int(self.code),
            "message": self.message,
            "category": self.category.value,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message}"


class MalformedRequestError(MuBusError):
    """Request text could not be decoded."""

    def __init__(self, message: str, position: int | None = None):
        details = {"position": position} if position is not None else {}
        super().__init__(message, code=ErrorCode.MALFORMED_REQUEST, category=ErrorCategory.CLIENT, details=details)
        self.position = position


class UnknownCommandError(MuBusError):
    """No handler registered under the requested command name."""

    def __init__(self, command: str):
        super().__init__(
            f"unknown command '{command}'",
            code=ErrorCode.UNKNOWN_COMMAND,
            category=ErrorCategory.CLIENT,
            details={"command": command},
        )
        self.command = command


class InvalidArgumentError(MuBusError):
    """Local validation failure (bad parameter, bad bus name suffix)."""

    def __init__(self, message: str, argument: str | None = None):
        details = {"argument": argument} if argument else {}
        super().__init__(message, code=ErrorCode.INVALID_ARGUMENT, category=ErrorCategory.CLIENT, details=details)


class DomainError(MuBusError):
    """Failure raised by the mail engine while a command runs.

    The code and message are reported to the client verbatim.
    """

    def __init__(self, code: ErrorCode, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, code=code, category=ErrorCategory.RECOVERABLE, details=details)


class NotFoundError(DomainError):
    """Requested message does not exist in the store."""

    def __init__(self, resource_type: str, resource_id: Any):
        super().__init__(
            ErrorCode.NOT_FOUND,
            f"{resource_type} not found: {resource_id}",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.category = ErrorCategory.NOT_FOUND


class StoreError(DomainError):
    """Store could not be read or written."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.STORE, message)


class QueryError(DomainError):
    """Query text could not be evaluated."""

    def __init__(self, message: str, query: str | None = None):
        super().__init__(ErrorCode.QUERY, message, details={"query": query} if query is not None else None)


class BusError(MuBusError):
    """Transport-level failure."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, code=ErrorCode.BUS, category=ErrorCategory.FATAL, details=details)


class NameTakenError(BusError):
    """Requested bus name is already owned by another connection."""

    def __init__(self, name: str):
        super().__init__(f"bus name already owned: {name}", details={"name": name})
        self.name = name


class ResponseAlreadySentError(MuBusError):
    """A call was completed more than once."""

    def __init__(self, call_id: Any):
        super().__init__(
            f"response for call {call_id} already sent",
            code=ErrorCode.INTERNAL,
            category=ErrorCategory.FATAL,
            details={"call_id": call_id},
        )


_SENSITIVE_PATTERNS = [
    re.compile(r"(api[_-]?key|token|secret|password|auth)[=:]\s*['\"]?([^\s'\"]+)['\"]?", re.IGNORECASE),
    re.compile(r"bearer\s+[a-zA-Z0-9\-._~+/]+=*", re.IGNORECASE),
    re.compile(r"[a-zA-Z0-9]{32,}"),
]


def sanitize_error_message(message: str, replacement: str = "[REDACTED]") -> str:
    """Remove sensitive information from error messages."""
    sanitized = message
    for pattern in _SENSITIVE_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


def classify_exception(exc: BaseException) -> tuple[ErrorCode, ErrorCategory]:
    """
    Classify an exception and return (error_code, category).

    mubus errors keep their own code; everything else is mapped by type.
    """
    if isinstance(exc, MuBusError):
        return exc.code, exc.category

    if isinstance(exc, FileNotFoundError):
        return ErrorCode.FILE, ErrorCategory.NOT_FOUND

    if isinstance(exc, OSError):
        return ErrorCode.FILE, ErrorCategory.RECOVERABLE

    if isinstance(exc, json.JSONDecodeError):
        return ErrorCode.MALFORMED_REQUEST, ErrorCategory.CLIENT

    if isinstance(exc, (ValueError, TypeError)):
        return ErrorCode.INVALID_ARGUMENT, ErrorCategory.CLIENT

    if isinstance(exc, KeyError):
        return ErrorCode.NOT_FOUND, ErrorCategory.NOT_FOUND

    return ErrorCode.INTERNAL, ErrorCategory.FATAL
