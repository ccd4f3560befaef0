"""Utility functions for mubus."""

from mubus.utils.exceptions import (
    MuBusError,
    MalformedRequestError,
    UnknownCommandError,
    InvalidArgumentError,
    DomainError,
    NotFoundError,
    StoreError,
    QueryError,
    BusError,
    NameTakenError,
    ResponseAlreadySentError,
    ErrorCode,
    ErrorCategory,
    classify_exception,
    sanitize_error_message,
)

__all__ = [
    "MuBusError",
    "MalformedRequestError",
    "UnknownCommandError",
    "InvalidArgumentError",
    "DomainError",
    "NotFoundError",
    "StoreError",
    "QueryError",
    "BusError",
    "NameTakenError",
    "ResponseAlreadySentError",
    "ErrorCode",
    "ErrorCategory",
    "classify_exception",
    "sanitize_error_message",
]
