"""Command server: contexts, dispatch, reply channel and service lifecycle."""

from mubus.server.channel import ResponseChannel, drain_matches
from mubus.server.context import Context, ContextOps, persistent_context, request_context
from mubus.server.dispatch import ArgInfo, CommandInfo, CommandTable, execute, invoke
from mubus.server.lifecycle import MuService, ServiceState, construct_bus_name, run_server

__all__ = [
    "ArgInfo",
    "CommandInfo",
    "CommandTable",
    "Context",
    "ContextOps",
    "MuService",
    "ResponseChannel",
    "ServiceState",
    "construct_bus_name",
    "drain_matches",
    "execute",
    "invoke",
    "persistent_context",
    "request_context",
    "run_server",
]
