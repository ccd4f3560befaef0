"""Unix domain socket bus: one socket per owned name, JSON-lines frames.

Frames:
- request:      {"id": 1, "path": "/mu/cache", "payload": "(ping)"}
- reply:        {"id": 1, "payload": "(:pong ...)"}  or  {"id": 1, "error": "..."}
- notification: {"signal": "oob", "payload": "(:info ...)"}
"""

from __future__ import annotations

import asyncio
import json
import itertools
from functools import partial
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from mubus.bus.base import BusObject, MethodCall, NameHandle, unhandled_call_error
from mubus.utils.exceptions import BusError, NameTakenError

NOTIFICATION_SIGNAL = "oob"

# Largest frame either side will buffer; asyncio's default is 64 KiB.
MAX_FRAME_BYTES = 16 * 1024 * 1024


def socket_path_for(socket_dir: Path, name: str) -> Path:
    return Path(socket_dir).expanduser() / f"{name}.sock"


def encode_frame(frame: dict[str, Any]) -> bytes:
    return (json.dumps(frame, ensure_ascii=False) + "\n").encode("utf-8")


class FrameTooLongError(BusError):
    """Frame exceeded the reader limit; the rest of it was discarded."""

    def __init__(self):
        super().__init__("frame too long")


async def read_frame(reader: asyncio.StreamReader) -> bytes | None:
    """
    Read one newline-terminated frame; None at end of stream.

    A frame longer than the reader's limit is consumed up to its newline and
    raises FrameTooLongError, leaving the stream at the next frame.
    """
    try:
        return await reader.readuntil(b"\n")
    except asyncio.IncompleteReadError as e:
        return e.partial or None
    except asyncio.LimitOverrunError as e:
        consumed = e.consumed
    while True:
        await reader.readexactly(consumed)
        try:
            await reader.readuntil(b"\n")
        except asyncio.IncompleteReadError:
            break
        except asyncio.LimitOverrunError as e:
            consumed = e.consumed
            continue
        break
    raise FrameTooLongError()


async def _socket_is_alive(path: Path) -> bool:
    try:
        _reader, writer = await asyncio.open_unix_connection(str(path))
    except OSError:
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


class UnixSocketBus:
    """Serves owned names on unix sockets under socket_dir."""

    def __init__(self, socket_dir: Path, max_frame_bytes: int = MAX_FRAME_BYTES):
        self.socket_dir = Path(socket_dir).expanduser()
        self.max_frame_bytes = max_frame_bytes
        self._servers: dict[str, tuple[NameHandle, asyncio.AbstractServer, Path]] = {}
        self._objects: dict[str, BusObject] = {}
        self._writers: set[asyncio.StreamWriter] = set()

    async def own_name(self, name: str, on_acquired: Callable[[str], None]) -> NameHandle:
        if name in self._servers:
            raise NameTakenError(name)
        path = socket_path_for(self.socket_dir, name)
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            if await _socket_is_alive(path):
                raise NameTakenError(name)
            logger.debug("Removing stale socket {}", path)
            path.unlink(missing_ok=True)
        server = await asyncio.start_unix_server(
            partial(self._handle_client, name), path=str(path), limit=self.max_frame_bytes
        )
        handle = NameHandle(name)
        self._servers[name] = (handle, server, path)
        logger.info("Bus name {} listening on {}", name, path)
        asyncio.get_running_loop().call_soon(on_acquired, name)
        return handle

    async def release_name(self, handle: NameHandle) -> None:
        entry = self._servers.get(handle.name)
        if entry is None or entry[0] != handle:
            return
        del self._servers[handle.name]
        _, server, path = entry
        server.close()
        for writer in list(self._writers):
            writer.close()
        await server.wait_closed()
        path.unlink(missing_ok=True)
        logger.info("Bus name {} released", handle.name)

    def publish_object(self, path: str, obj: BusObject) -> None:
        self._objects[path] = obj

    def unpublish_object(self, path: str) -> None:
        self._objects.pop(path, None)

    def complete_call(self, call: MethodCall, payload: str) -> None:
        call.complete(payload)

    def emit_notification(self, payload: str) -> None:
        frame = encode_frame({"signal": NOTIFICATION_SIGNAL, "payload": payload})
        for writer in list(self._writers):
            if not writer.is_closing():
                writer.write(frame)

    async def _handle_client(self, name: str, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.add(writer)
        try:
            while True:
                try:
                    line = await read_frame(reader)
                except FrameTooLongError as e:
                    logger.warning("Rejected frame over {} bytes", self.max_frame_bytes)
                    writer.write(encode_frame({"id": None, "error": e.message}))
                    await writer.drain()
                    continue
                if line is None:
                    break
                try:
                    frame = json.loads(line)
                except json.JSONDecodeError:
                    writer.write(encode_frame({"id": None, "error": "invalid frame"}))
                    await writer.drain()
                    continue
                if not isinstance(frame, dict):
                    writer.write(encode_frame({"id": None, "error": "invalid frame"}))
                    await writer.drain()
                    continue
                call = MethodCall(
                    name=name,
                    path=str(frame.get("path", "")),
                    payload=str(frame.get("payload", "")),
                    reply=partial(self._reply, writer, frame.get("id")),
                )
                self._deliver(call)
                await writer.drain()
        except ConnectionError as e:
            logger.debug("Client connection dropped: {}", e)
        finally:
            self._writers.discard(writer)
            writer.close()

    def _deliver(self, call: MethodCall) -> None:
        obj = self._objects.get(call.path)
        handled = False
        if obj is not None and call.name in self._servers:
            handled = obj.handle_execute(call)
        if not handled and not call.completed:
            call.fail(unhandled_call_error(call))

    @staticmethod
    def _reply(writer: asyncio.StreamWriter, call_id: Any, payload: str | None, error: BusError | None) -> None:
        if writer.is_closing():
            return
        if error is not None:
            writer.write(encode_frame({"id": call_id, "error": error.message}))
        else:
            writer.write(encode_frame({"id": call_id, "payload": payload or ""}))


class SocketBusClient:
    """Client for a name served by UnixSocketBus."""

    def __init__(
        self,
        socket_dir: Path,
        name: str,
        path: str,
        on_notification: Callable[[str], None] | None = None,
        max_frame_bytes: int = MAX_FRAME_BYTES,
    ):
        self.socket_path = socket_path_for(socket_dir, name)
        self.max_frame_bytes = max_frame_bytes
        self.name = name
        self.path = path
        self.on_notification = on_notification
        self.notifications: list[str] = []
        self._ids = itertools.count(1)
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    async def connect(self) -> None:
        try:
            self._reader, self._writer = await asyncio.open_unix_connection(
                str(self.socket_path), limit=self.max_frame_bytes
            )
        except OSError as e:
            raise BusError(f"name has no owner: {self.name}", details={"socket": str(self.socket_path)}) from e

    async def close(self) -> None:
        if self._writer is None:
            return
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError:
            pass
        self._writer = None
        self._reader = None

    async def __aenter__(self) -> "SocketBusClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def call(self, payload: str, timeout: float | None = 30.0) -> str:
        if self._reader is None or self._writer is None:
            await self.connect()
        assert self._reader is not None and self._writer is not None
        call_id = next(self._ids)
        self._writer.write(encode_frame({"id": call_id, "path": self.path, "payload": payload}))
        await self._writer.drain()
        return await asyncio.wait_for(self._read_reply(call_id), timeout)

    async def _read_reply(self, call_id: int) -> str:
        assert self._reader is not None
        while True:
            line = await read_frame(self._reader)
            if line is None:
                raise BusError(f"connection to {self.name} closed before reply")
            frame = json.loads(line)
            if frame.get("signal") == NOTIFICATION_SIGNAL:
                payload = str(frame.get("payload", ""))
                self.notifications.append(payload)
                if self.on_notification:
                    self.on_notification(payload)
                continue
            if frame.get("id") != call_id:
                continue
            if "error" in frame:
                raise BusError(str(frame["error"]), details={"name": self.name})
            return str(frame.get("payload", ""))
