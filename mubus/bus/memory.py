"""In-process message bus for embedding the server and for tests."""

from __future__ import annotations

import asyncio
from typing import Callable

from loguru import logger

from mubus.bus.base import BusObject, MethodCall, NameHandle, unhandled_call_error
from mubus.utils.exceptions import BusError, NameTakenError


class MemoryBus:
    """
    Single-connection bus living inside the event loop.

    Inbound calls are queued and delivered one at a time by a dispatch task,
    in arrival order. Notifications fan out to every subscriber queue.
    """

    def __init__(self):
        self._owners: dict[str, NameHandle] = {}
        self._objects: dict[str, BusObject] = {}
        self._subscribers: list[asyncio.Queue[str]] = []
        self._inbox: asyncio.Queue[MethodCall] | None = None
        self._dispatch_task: asyncio.Task | None = None
        self.own_name_calls: list[str] = []

    @property
    def owned_names(self) -> list[str]:
        return list(self._owners)

    async def own_name(self, name: str, on_acquired: Callable[[str], None]) -> NameHandle:
        self.own_name_calls.append(name)
        if name in self._owners:
            raise NameTakenError(name)
        handle = NameHandle(name)
        self._owners[name] = handle
        self._ensure_dispatcher()
        asyncio.get_running_loop().call_soon(on_acquired, name)
        logger.debug("Bus name {} requested", name)
        return handle

    async def release_name(self, handle: NameHandle) -> None:
        if self._owners.get(handle.name) != handle:
            return
        del self._owners[handle.name]
        logger.debug("Bus name {} released", handle.name)
        if self._owners:
            return
        if self._dispatch_task is not None:
            self._dispatch_task.cancel()
            try:
                await self._dispatch_task
            except asyncio.CancelledError:
                pass
            self._dispatch_task = None
        self._fail_pending()

    def publish_object(self, path: str, obj: BusObject) -> None:
        self._objects[path] = obj

    def unpublish_object(self, path: str) -> None:
        self._objects.pop(path, None)

    def complete_call(self, call: MethodCall, payload: str) -> None:
        call.complete(payload)

    def emit_notification(self, payload: str) -> None:
        for queue in self._subscribers:
            queue.put_nowait(payload)

    def subscribe(self) -> asyncio.Queue[str]:
        """Queue receiving every out-of-band notification from now on."""
        queue: asyncio.Queue[str] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    async def call(self, name: str, path: str, payload: str, timeout: float | None = None) -> str:
        """Client side: send ``execute(payload)`` to name/path and await the reply."""
        if name not in self._owners or self._inbox is None:
            raise BusError(f"name has no owner: {name}", details={"name": name})
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()

        def _reply(result: str | None, error: BusError | None) -> None:
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(result or "")

        self._inbox.put_nowait(MethodCall(name=name, path=path, payload=payload, reply=_reply))
        return await asyncio.wait_for(future, timeout)

    def _ensure_dispatcher(self) -> None:
        if self._dispatch_task is not None and not self._dispatch_task.done():
            return
        if self._inbox is None:
            self._inbox = asyncio.Queue()
        self._dispatch_task = asyncio.get_running_loop().create_task(self._dispatch_loop())
        self._dispatch_task.add_done_callback(self._on_dispatch_done)

    async def _dispatch_loop(self) -> None:
        assert self._inbox is not None
        while True:
            call = await self._inbox.get()
            self._deliver(call)
            # Let the owner observe state changes made by this call before the next one.
            await asyncio.sleep(0)

    def _deliver(self, call: MethodCall) -> None:
        obj = self._objects.get(call.path)
        handled = False
        if obj is not None and call.name in self._owners:
            handled = obj.handle_execute(call)
        if not handled and not call.completed:
            call.fail(unhandled_call_error(call))

    def _fail_pending(self) -> None:
        if self._inbox is None:
            return
        while not self._inbox.empty():
            call = self._inbox.get_nowait()
            if not call.completed:
                call.fail(BusError(f"name has no owner: {call.name}", details={"name": call.name}))

    @staticmethod
    def _on_dispatch_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error("Bus dispatch loop crashed")
