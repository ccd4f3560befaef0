"""Mail store, query engine and match iterator."""

from mubus.store.message import MailMessage, ThreadInfo
from mubus.store.query import MessageIterator, Query
from mubus.store.store import IndexStats, Store

__all__ = ["IndexStats", "MailMessage", "MessageIterator", "Query", "Store", "ThreadInfo"]
