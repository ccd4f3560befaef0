"""Transport contract shared by the bus implementations."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Callable, Protocol

from mubus.utils.exceptions import BusError, ResponseAlreadySentError

# Called with (payload, error); exactly one of them is set.
ReplyCallback = Callable[[str | None, BusError | None], None]

_call_ids = itertools.count(1)
_handle_ids = itertools.count(1)


@dataclass(eq=False)
class MethodCall:
    """Pending inbound ``execute`` call; completed exactly once."""

    name: str
    path: str
    payload: str
    reply: ReplyCallback
    call_id: int = field(default_factory=lambda: next(_call_ids))
    completed: bool = False

    def complete(self, payload: str) -> None:
        if self.completed:
            raise ResponseAlreadySentError(self.call_id)
        self.completed = True
        self.reply(payload, None)

    def fail(self, error: BusError) -> None:
        if self.completed:
            raise ResponseAlreadySentError(self.call_id)
        self.completed = True
        self.reply(None, error)


@dataclass(frozen=True, slots=True)
class NameHandle:
    """Ownership token returned by ``own_name``."""

    name: str
    handle_id: int = field(default_factory=lambda: next(_handle_ids))


class BusObject(Protocol):
    def handle_execute(self, call: MethodCall) -> bool: ...


class ServiceObject:
    """Exported object whose ``execute`` method forwards to a connected handler."""

    def __init__(self, path: str):
        self.path = path
        self._on_execute: Callable[[MethodCall], bool] | None = None

    def connect(self, handler: Callable[[MethodCall], bool]) -> None:
        self._on_execute = handler

    def handle_execute(self, call: MethodCall) -> bool:
        if self._on_execute is None:
            return False
        return self._on_execute(call)


class Transport(Protocol):
    """What the service needs from a message bus."""

    async def own_name(self, name: str, on_acquired: Callable[[str], None]) -> NameHandle: ...

    async def release_name(self, handle: NameHandle) -> None: ...

    def publish_object(self, path: str, obj: BusObject) -> None: ...

    def unpublish_object(self, path: str) -> None: ...

    def complete_call(self, call: MethodCall, payload: str) -> None: ...

    def emit_notification(self, payload: str) -> None: ...


def unhandled_call_error(call: MethodCall) -> BusError:
    return BusError(
        f"no object at {call.path} handles execute for {call.name}",
        details={"name": call.name, "path": call.path},
    )
