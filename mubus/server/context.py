"""Execution contexts handed to command handlers.

One persistent context owns the store for the life of the process. Every
inbound call gets a request context that borrows the same store and query
but carries its own reply channel, command table and ``terminate`` flag.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, TextIO

from mubus.bus.base import MethodCall, Transport
from mubus.config.schema import ServerConfig
from mubus.protocol.sexp import to_string
from mubus.server.channel import ResponseChannel, drain_matches, format_error
from mubus.store.query import MessageIterator, Query
from mubus.store.store import Store
from mubus.utils.exceptions import ErrorCode

if TYPE_CHECKING:
    from mubus.server.dispatch import CommandTable

CommandTableFactory = Callable[["Context"], "CommandTable"]


@dataclass(slots=True)
class ContextOps:
    """Output capabilities; persistent and request contexts bind different closures."""

    append_reply: Callable[[str], None]
    emit_out_of_band: Callable[[str], None]
    report_error: Callable[[ErrorCode | int, str], ErrorCode]
    drain_matches: Callable[[MessageIterator, int], int]


@dataclass(eq=False)
class Context:
    store: Store
    query: Query
    ops: ContextOps
    settings: ServerConfig = field(default_factory=ServerConfig)
    table_factory: CommandTableFactory | None = None
    command_table: "CommandTable" = field(default_factory=dict)
    terminate: bool = False
    owns_store: bool = False

    def append_reply(self, text: str) -> None:
        self.ops.append_reply(text)

    def reply(self, value: Any) -> None:
        """Render value as an s-expression and append it."""
        self.ops.append_reply(to_string(value))

    def emit_out_of_band(self, text: str) -> None:
        self.ops.emit_out_of_band(text)

    def reply_out_of_band(self, value: Any) -> None:
        self.ops.emit_out_of_band(to_string(value))

    def report_error(self, code: ErrorCode | int, message: str) -> ErrorCode:
        return self.ops.report_error(code, message)

    def drain_matches(self, iterator: MessageIterator, maxnum: int) -> int:
        return self.ops.drain_matches(iterator, maxnum)

    def close(self) -> None:
        # Request contexts borrow the store; only the owner may close it.
        self.command_table = {}
        if self.owns_store:
            self.store.close()


def _default_table_factory() -> CommandTableFactory:
    from mubus.server.commands import make_command_table

    return make_command_table


def persistent_context(
    store: Store,
    *,
    settings: ServerConfig | None = None,
    table_factory: CommandTableFactory | None = None,
    out: TextIO | None = None,
) -> Context:
    """The process-wide context; replies go straight to out (stdout by default)."""
    stream = out or sys.stdout

    def _write(text: str) -> None:
        stream.write(text + "\n")
        stream.flush()

    def _report_error(code: ErrorCode | int, message: str) -> ErrorCode:
        _write(format_error(code, message))
        return ErrorCode(code)

    ops = ContextOps(
        append_reply=_write,
        emit_out_of_band=_write,
        report_error=_report_error,
        drain_matches=lambda iterator, maxnum: drain_matches(iterator, maxnum, _write),
    )
    factory = table_factory or _default_table_factory()
    context = Context(
        store=store,
        query=Query(store),
        ops=ops,
        settings=settings or ServerConfig(),
        table_factory=factory,
        owns_store=True,
    )
    context.command_table = factory(context)
    return context


def request_context(
    persistent: Context,
    call: MethodCall,
    transport: Transport,
) -> tuple[Context, ResponseChannel]:
    """Derive a per-call context bound to a fresh reply channel."""
    channel = ResponseChannel(call, transport)
    ops = ContextOps(
        append_reply=channel.append_reply,
        emit_out_of_band=channel.emit_out_of_band,
        report_error=channel.print_error,
        drain_matches=channel.drain_matches,
    )
    factory = persistent.table_factory or _default_table_factory()
    context = Context(
        store=persistent.store,
        query=persistent.query,
        ops=ops,
        settings=persistent.settings,
        table_factory=factory,
        owns_store=False,
    )
    # Handlers close over this context, so "quit" flags this request only.
    context.command_table = factory(context)
    return context, channel

