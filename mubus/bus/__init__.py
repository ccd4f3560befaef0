"""Message bus transports the service registers on."""

from mubus.bus.base import MethodCall, NameHandle, ServiceObject, Transport
from mubus.bus.memory import MemoryBus
from mubus.bus.unix import SocketBusClient, UnixSocketBus

__all__ = [
    "MemoryBus",
    "MethodCall",
    "NameHandle",
    "ServiceObject",
    "SocketBusClient",
    "Transport",
    "UnixSocketBus",
]
