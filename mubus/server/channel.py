"""Per-request reply buffer and out-of-band emission."""

from __future__ import annotations

from typing import Callable

from loguru import logger

from mubus.bus.base import MethodCall, Transport
from mubus.protocol.sexp import compose_error, to_string
from mubus.store.query import MessageIterator
from mubus.utils.exceptions import ErrorCode, ResponseAlreadySentError


def format_error(code: ErrorCode | int, message: str) -> str:
    return to_string(compose_error(code, message))


def drain_matches(iterator: MessageIterator, maxnum: int, append: Callable[[str], None]) -> int:
    """
    Append up to maxnum readable matches (headers only), in iterator order.

    Unreadable matches are skipped without counting toward maxnum; the
    iterator is advanced past every item it visits.
    """
    count = 0
    while not iterator.is_done() and count < maxnum:
        if iterator.current_is_readable():
            append(iterator.serialize_headers_only(iterator.docid(), iterator.thread_info()))
            count += 1
        else:
            logger.debug("Skipping unreadable message docid={}", iterator.docid())
        iterator.advance()
    return count


class ResponseChannel:
    """Accumulates one call's reply and completes the call exactly once."""

    def __init__(self, call: MethodCall, transport: Transport):
        self.call = call
        self.transport = transport
        self._buffer: list[str] | None = []

    @property
    def sent(self) -> bool:
        return self._buffer is None

    @property
    def pending(self) -> str:
        return "".join(self._buffer or ())

    def append_reply(self, text: str) -> None:
        if self._buffer is None:
            raise ResponseAlreadySentError(self.call.call_id)
        self._buffer.append(text)

    def emit_out_of_band(self, text: str) -> None:
        self.transport.emit_notification(text)

    def print_error(self, code: ErrorCode | int, message: str) -> ErrorCode:
        self.append_reply(format_error(code, message))
        return ErrorCode(code)

    def drain_matches(self, iterator: MessageIterator, maxnum: int) -> int:
        return drain_matches(iterator, maxnum, self.append_reply)

    def send_response(self) -> None:
        if self._buffer is None:
            raise ResponseAlreadySentError(self.call.call_id)
        payload = "".join(self._buffer)
        self._buffer = None
        self.transport.complete_call(self.call, payload)
