"""
Service lifecycle: bus name ownership, object publishing, run loop, shutdown.

States move forward only:
UNREGISTERED -> NAME_ACQUIRED -> OBJECT_PUBLISHED -> RUNNING -> TERMINATING -> STOPPED

The event loop is already running when the name is requested; calls are
served once the object is published. SIGINT, SIGHUP, SIGTERM or a request
that sets ``terminate`` stop the loop after the current event completes.
"""

from __future__ import annotations

import asyncio
import signal
from enum import Enum

from loguru import logger

from mubus.bus.base import MethodCall, NameHandle, ServiceObject, Transport
from mubus.config.schema import Config
from mubus.server.context import Context, persistent_context, request_context
from mubus.server.dispatch import execute
from mubus.store.store import Store
from mubus.utils.exceptions import InvalidArgumentError

TERMINATING_SIGNALS = (signal.SIGINT, signal.SIGHUP, signal.SIGTERM)


class ServiceState(Enum):
    UNREGISTERED = "unregistered"
    NAME_ACQUIRED = "name_acquired"
    OBJECT_PUBLISHED = "object_published"
    RUNNING = "running"
    TERMINATING = "terminating"
    STOPPED = "stopped"


def construct_bus_name(base: str, suffix: str | None = None) -> str:
    """
    Bus name for this server: base, or base.suffix.

    The suffix lets several servers (on different stores) run at once. It is
    restricted to ASCII letters and digits, which are always valid in bus
    names; anything else is rejected here, before the bus is contacted.
    """
    if suffix is None:
        return base
    if not suffix or not (suffix.isascii() and suffix.isalnum()):
        raise InvalidArgumentError("non-alphanumeric character in bus name suffix", "suffix")
    return f"{base}.{suffix}"


class MuService:
    """Owns the bus name and routes ``execute`` calls to request contexts."""

    def __init__(
        self,
        persistent: Context,
        transport: Transport,
        bus_name: str,
        object_path: str = "/mu/cache",
    ):
        self.persistent = persistent
        self.transport = transport
        self.bus_name = bus_name
        self.object_path = object_path
        self.state = ServiceState.UNREGISTERED
        self.stop_reason: str | None = None
        self.requests_served = 0
        self._stop: asyncio.Event | None = None
        self._name_handle: NameHandle | None = None
        self._object: ServiceObject | None = None

    @property
    def accepting(self) -> bool:
        return self.state in (ServiceState.OBJECT_PUBLISHED, ServiceState.RUNNING)

    def _set_state(self, state: ServiceState) -> None:
        logger.debug("Service {}: {} -> {}", self.bus_name, self.state.value, state.value)
        self.state = state

    def _on_name_acquired(self, name: str) -> None:
        if self.state is not ServiceState.UNREGISTERED:
            return
        self._set_state(ServiceState.NAME_ACQUIRED)
        obj = ServiceObject(self.object_path)
        obj.connect(self._on_execute)
        self.transport.publish_object(self.object_path, obj)
        self._object = obj
        self._set_state(ServiceState.OBJECT_PUBLISHED)
        self._set_state(ServiceState.RUNNING)
        logger.info("Serving {} at {}", name, self.object_path)

    def _on_execute(self, call: MethodCall) -> bool:
        if not self.accepting:
            return False
        context, channel = request_context(self.persistent, call, self.transport)
        execute(context, channel, call.payload)
        self.requests_served += 1
        if context.terminate:
            self.request_stop("quit requested")
        return True

    def _on_terminating_signal(self, signum: int) -> None:
        name = signal.Signals(signum).name
        logger.info("Received {}, shutting down", name)
        self.persistent.terminate = True
        self.request_stop(f"signal {name}")

    def request_stop(self, reason: str) -> None:
        """Enter TERMINATING; the run loop exits once the current event is done."""
        if self.state in (ServiceState.TERMINATING, ServiceState.STOPPED):
            return
        self.stop_reason = reason
        self._set_state(ServiceState.TERMINATING)
        if self._stop is not None:
            self._stop.set()

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> list[int]:
        installed: list[int] = []
        for sig in TERMINATING_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_terminating_signal, sig)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                logger.warning("Cannot install handler for {}: {}", sig.name, e)
                continue
            installed.append(sig)
        return installed

    async def run(self) -> None:
        """Serve until a terminating signal or a quit request, then release the name."""
        loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        installed = self._install_signal_handlers(loop)
        try:
            if self.state is ServiceState.UNREGISTERED:
                self._name_handle = await self.transport.own_name(self.bus_name, self._on_name_acquired)
                await self._stop.wait()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            if self._object is not None:
                self.transport.unpublish_object(self.object_path)
                self._object = None
            if self._name_handle is not None:
                await self.transport.release_name(self._name_handle)
                self._name_handle = None
            if self.state is not ServiceState.TERMINATING:
                self._set_state(ServiceState.TERMINATING)
            self._set_state(ServiceState.STOPPED)
            logger.info(
                "Service {} stopped ({}); {} requests served",
                self.bus_name, self.stop_reason or "loop exited", self.requests_served,
            )


def make_transport(config: Config) -> Transport:
    if config.bus.transport == "memory":
        from mubus.bus.memory import MemoryBus

        return MemoryBus()
    from mubus.bus.unix import UnixSocketBus

    return UnixSocketBus(config.socket_dir_path)


async def run_server(
    config: Config,
    transport: Transport | None = None,
    store: Store | None = None,
) -> MuService:
    """
    Validate the bus name, open the store and serve until stopped.

    An invalid suffix raises InvalidArgumentError before the store is opened
    or the bus is contacted.
    """
    bus_name = construct_bus_name(config.bus.base_name, config.bus.suffix)
    persistent = persistent_context(
        store if store is not None else Store.open(config.db_path, config.maildir_path),
        settings=config.server,
    )
    service = MuService(
        persistent,
        transport if transport is not None else make_transport(config),
        bus_name,
        config.bus.object_path,
    )
    try:
        await service.run()
    finally:
        if store is None:
            persistent.close()
    return service
