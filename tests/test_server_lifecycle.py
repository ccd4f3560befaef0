"""Tests for bus name construction and the service run loop."""

import asyncio
import io
import os
import signal

import pytest

from mubus.bus.memory import MemoryBus
from mubus.config.schema import BusConfig, Config, StoreConfig
from mubus.server.context import persistent_context
from mubus.server.lifecycle import MuService, ServiceState, construct_bus_name, run_server
from mubus.store.store import Store
from mubus.utils.exceptions import BusError, ErrorCode, InvalidArgumentError, NameTakenError

NAME = "org.test.Mu"
PATH = "/mu/cache"


async def _until(predicate, timeout=2.0):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


def _memory_config(**bus):
    return Config(bus=BusConfig(transport="memory", **bus))


class TestConstructBusName:
    def test_without_suffix(self):
        assert construct_bus_name("nl.djcbsoftware.Mu.Maildir") == "nl.djcbsoftware.Mu.Maildir"

    def test_with_suffix(self):
        assert construct_bus_name("nl.djcbsoftware.Mu.Maildir", "work2") == "nl.djcbsoftware.Mu.Maildir.work2"

    @pytest.mark.parametrize("suffix", ["", "bad-name", "a.b", "ümlaut", "sp ace"])
    def test_rejects_non_alphanumeric(self, suffix):
        with pytest.raises(InvalidArgumentError) as exc_info:
            construct_bus_name("nl.djcbsoftware.Mu.Maildir", suffix)
        assert exc_info.value.code == ErrorCode.INVALID_ARGUMENT
        assert exc_info.value.message == "non-alphanumeric character in bus name suffix"


class TestMuService:
    @pytest.mark.asyncio
    async def test_serves_until_quit(self, store):
        bus = MemoryBus()
        service = MuService(persistent_context(store, out=io.StringIO()), bus, NAME, PATH)
        assert service.state is ServiceState.UNREGISTERED
        task = asyncio.create_task(service.run())
        await _until(lambda: service.state is ServiceState.RUNNING)

        reply = await bus.call(NAME, PATH, "(ping)")
        assert reply.startswith('(:pong "mubus"')

        quit_reply = asyncio.ensure_future(bus.call(NAME, PATH, "(quit)"))
        after_quit = asyncio.ensure_future(bus.call(NAME, PATH, "(ping)"))
        assert await quit_reply == ""
        with pytest.raises(BusError):
            await after_quit

        await asyncio.wait_for(task, 2)
        assert service.state is ServiceState.STOPPED
        assert service.stop_reason == "quit requested"
        assert service.requests_served == 2
        assert bus.owned_names == []
        assert not store.closed

    @pytest.mark.asyncio
    async def test_errors_do_not_stop_the_service(self, store):
        bus = MemoryBus()
        service = MuService(persistent_context(store, out=io.StringIO()), bus, NAME, PATH)
        task = asyncio.create_task(service.run())
        await _until(lambda: service.accepting)

        assert await bus.call(NAME, PATH, "(bogus") == '(:error 2 :message "unbalanced parenthesis, expected \')\'")'
        assert (await bus.call(NAME, PATH, "(nope)")).startswith("(:error 3 ")
        assert service.state is ServiceState.RUNNING

        service.request_stop("test done")
        await asyncio.wait_for(task, 2)
        assert service.stop_reason == "test done"

    @pytest.mark.asyncio
    @pytest.mark.skipif(not hasattr(signal, "SIGHUP"), reason="SIGHUP not available")
    async def test_terminating_signal_stops_service(self, store):
        bus = MemoryBus()
        persistent = persistent_context(store, out=io.StringIO())
        service = MuService(persistent, bus, NAME, PATH)
        task = asyncio.create_task(service.run())
        await _until(lambda: service.accepting)

        if signal.getsignal(signal.SIGHUP) in (signal.SIG_DFL, signal.SIG_IGN, None):
            service.request_stop("test done")
            await asyncio.wait_for(task, 2)
            pytest.skip("loop could not install signal handlers here")

        os.kill(os.getpid(), signal.SIGHUP)
        await asyncio.wait_for(task, 2)
        assert persistent.terminate
        assert service.state is ServiceState.STOPPED
        assert service.stop_reason == "signal SIGHUP"
        with pytest.raises(BusError):
            await bus.call(NAME, PATH, "(ping)")

    @pytest.mark.asyncio
    async def test_out_of_band_reaches_subscribers(self, maildir):
        bus = MemoryBus()
        queue = bus.subscribe()
        persistent = persistent_context(Store(maildir=maildir), out=io.StringIO())
        persistent.settings.progress_every = 1
        service = MuService(persistent, bus, NAME, PATH)
        task = asyncio.create_task(service.run())
        await _until(lambda: service.accepting)

        reply = await bus.call(NAME, PATH, "(index)")
        assert reply.startswith("(:info index :status complete")
        assert queue.qsize() == 3
        assert queue.get_nowait().startswith("(:info index :status running")

        service.request_stop("test done")
        await asyncio.wait_for(task, 2)

    @pytest.mark.asyncio
    async def test_name_taken(self, store):
        bus = MemoryBus()
        first = MuService(persistent_context(store, out=io.StringIO()), bus, NAME, PATH)
        task = asyncio.create_task(first.run())
        await _until(lambda: first.accepting)

        second = MuService(persistent_context(store, out=io.StringIO()), bus, NAME, PATH)
        with pytest.raises(NameTakenError):
            await second.run()
        assert second.state is ServiceState.STOPPED
        assert first.state is ServiceState.RUNNING

        first.request_stop("test done")
        await asyncio.wait_for(task, 2)


class TestRunServer:
    @pytest.mark.asyncio
    async def test_invalid_suffix_fails_before_bus_contact(self, store):
        bus = MemoryBus()
        with pytest.raises(InvalidArgumentError):
            await run_server(_memory_config(suffix="bad-name"), transport=bus, store=store)
        assert bus.own_name_calls == []

    @pytest.mark.asyncio
    async def test_quit_returns_stopped_service(self, store):
        bus = MemoryBus()
        task = asyncio.create_task(run_server(_memory_config(suffix="test1"), transport=bus, store=store))
        name = "nl.djcbsoftware.Mu.Maildir.test1"
        await _until(lambda: name in bus.owned_names)
        await asyncio.sleep(0)

        assert bus.own_name_calls == [name]
        assert await bus.call(name, PATH, "(quit)") == ""
        service = await asyncio.wait_for(task, 2)
        assert service.bus_name == name
        assert service.state is ServiceState.STOPPED
        assert not store.closed

    @pytest.mark.asyncio
    async def test_owned_store_is_flushed_on_exit(self, tmp_path, maildir):
        db = tmp_path / "store.json"
        config = Config(
            bus=BusConfig(transport="memory"),
            store=StoreConfig(maildir=str(maildir), db_path=str(db)),
        )
        bus = MemoryBus()
        task = asyncio.create_task(run_server(config, transport=bus))
        name = config.bus.base_name
        await _until(lambda: name in bus.owned_names)
        await asyncio.sleep(0)

        assert (await bus.call(name, PATH, "(index)")).endswith(":cleaned-up 0)")
        assert await bus.call(name, PATH, "(quit)") == ""
        await asyncio.wait_for(task, 2)
        assert Store.open(db).count() == 3
