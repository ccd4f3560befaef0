"""Command table lookup, parameter validation and the per-request error boundary."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Mapping

from loguru import logger

from mubus.protocol.sexp import NIL, Sexp, SexpList, Symbol, keyword_params, parse, to_string
from mubus.utils.exceptions import (
    InvalidArgumentError,
    MalformedRequestError,
    MuBusError,
    UnknownCommandError,
    classify_exception,
    sanitize_error_message,
)

if TYPE_CHECKING:
    from mubus.server.channel import ResponseChannel
    from mubus.server.context import Context

Parameters = dict[str, Any]
Handler = Callable[[Parameters], None]


@dataclass(frozen=True, slots=True)
class ArgInfo:
    """Declared keyword parameter of a command."""

    type: type
    required: bool = False
    default: Any = None
    docstring: str = ""


@dataclass(frozen=True, slots=True)
class CommandInfo:
    name: str
    handler: Handler
    params: Mapping[str, ArgInfo] = field(default_factory=dict)
    docstring: str = ""


CommandTable = dict[str, CommandInfo]


def _coerce(command: str, name: str, arg: ArgInfo, value: Sexp) -> Any:
    if arg.type is bool:
        if isinstance(value, Symbol):
            return value != NIL
        raise InvalidArgumentError(f"{command}: :{name} expects t or nil, got {to_string(value)}", name)
    if isinstance(value, Symbol) and value == NIL:
        if arg.required:
            raise InvalidArgumentError(f"{command}: :{name} must not be nil", name)
        return arg.default
    if arg.type is int:
        if isinstance(value, int):
            return value
    elif arg.type is str:
        if isinstance(value, str):
            return str(value)
    elif arg.type is Symbol:
        if isinstance(value, Symbol):
            return value
    elif arg.type is SexpList:
        if isinstance(value, SexpList):
            return value
    raise InvalidArgumentError(
        f"{command}: :{name} expects {arg.type.__name__}, got {to_string(value)}", name
    )


def validate_params(info: CommandInfo, elements: SexpList) -> Parameters:
    """Match ``:key value`` elements against the command's declared parameters."""
    given = keyword_params(elements)
    for name in given:
        if name not in info.params:
            raise InvalidArgumentError(f"{info.name}: unknown parameter :{name}", name)
    params: Parameters = {}
    for name, arg in info.params.items():
        if name in given:
            params[name] = _coerce(info.name, name, arg, given[name])
        elif arg.required:
            raise InvalidArgumentError(f"{info.name}: missing required parameter :{name}", name)
        else:
            params[name] = arg.default
    return params


def invoke(command_table: CommandTable, expression: Sexp) -> None:
    """Run the handler registered for the expression's head symbol."""
    if not isinstance(expression, SexpList) or not expression:
        raise MalformedRequestError(f"expected a command list, got {to_string(expression)}")
    head = expression.head
    if not isinstance(head, Symbol) or head.is_keyword:
        raise MalformedRequestError(f"expected a command name, got {to_string(head)}")
    info = command_table.get(head)
    if info is None:
        raise UnknownCommandError(str(head))
    params = validate_params(info, expression.rest)
    logger.debug("Invoking {} with {}", info.name, sorted(params))
    if info.handler(params) is not None:
        logger.debug("Ignoring value returned by {}", info.name)


def execute(context: Context, channel: ResponseChannel, payload: str) -> None:
    """
    Handle one request end to end.

    Any failure between decoding and handler completion becomes a single
    error fragment appended after whatever output is already buffered. The
    reply is sent exactly once and the request context is closed, on every
    exit path.
    """
    try:
        try:
            invoke(context.command_table, parse(payload))
        except MuBusError as e:
            logger.warning("Request {!r} failed with [{}]: {}", payload, e.code.name, e.message)
            context.report_error(e.code, e.message)
        except Exception as e:
            code, _ = classify_exception(e)
            sanitized = sanitize_error_message(str(e)) or type(e).__name__
            logger.exception("Request {!r} crashed with [{}]: {}", payload, code.name, sanitized)
            context.report_error(code, sanitized)
    finally:
        try:
            channel.send_response()
        finally:
            context.close()
