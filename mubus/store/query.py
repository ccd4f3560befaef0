"""Query evaluation over the store and the match iterator handed to commands."""

from __future__ import annotations

import shlex
from typing import Callable

from mubus.protocol.sexp import make_plist, to_string
from mubus.store.message import MailMessage, ThreadInfo
from mubus.store.store import Store
from mubus.utils.exceptions import NotFoundError, QueryError

# query field -> MailMessage attribute
QUERY_FIELDS = {
    "from": "sender",
    "to": "to",
    "cc": "cc",
    "subject": "subject",
    "maildir": "maildir",
    "flag": "flags",
    "msgid": "message_id",
    "body": "body",
    "path": "path",
}

SORT_FIELDS = {
    "date": lambda m: m.date,
    "subject": lambda m: m.subject.lower(),
    "from": lambda m: m.sender.lower(),
    "size": lambda m: m.size,
    "docid": lambda m: m.docid,
}

Matcher = Callable[[MailMessage], bool]


class MessageIterator:
    """Cursor over query matches, in result order."""

    def __init__(self, store: Store, docids: list[int]):
        self._store = store
        self._docids = docids
        self._pos = 0

    def __len__(self) -> int:
        return len(self._docids)

    def is_done(self) -> bool:
        return self._pos >= len(self._docids)

    def docid(self) -> int:
        return self._docids[self._pos]

    def message(self) -> MailMessage:
        return self._store.get(self.docid())

    def current_is_readable(self) -> bool:
        try:
            return self.message().is_readable()
        except NotFoundError:
            return False

    def thread_info(self) -> ThreadInfo:
        return ThreadInfo(path=f"{self._pos:05x}", level=1 if self.message().in_reply_to else 0)

    def serialize_headers_only(self, docid: int | None = None, thread_info: ThreadInfo | None = None) -> str:
        msg = self._store.get(docid if docid is not None else self.docid())
        return to_string(make_plist(msg.to_plist(thread_info, headers_only=True)))

    def advance(self) -> None:
        self._pos += 1


class Query:
    """Evaluates ``field:value`` queries against a store."""

    def __init__(self, store: Store):
        self.store = store

    def run(self, expr: str, sortfield: str = "date", reverse: bool = False) -> MessageIterator:
        matchers = self._compile(expr)
        key = SORT_FIELDS.get(sortfield)
        if key is None:
            raise QueryError(f"invalid sort field '{sortfield}'", query=expr)
        hits = [m for m in self.store.messages() if all(match(m) for match in matchers)]
        hits.sort(key=key, reverse=reverse)
        return MessageIterator(self.store, [m.docid for m in hits])

    def count(self, expr: str) -> int:
        return len(self.run(expr, sortfield="docid"))

    def _compile(self, expr: str) -> list[Matcher]:
        text = (expr or "").strip()
        if text in ("", "*", '""'):
            return []
        try:
            terms = shlex.split(text)
        except ValueError as e:
            raise QueryError(f"cannot parse query: {e}", query=expr) from e
        return [self._term(term, expr) for term in terms]

    @staticmethod
    def _term(term: str, expr: str) -> Matcher:
        field, sep, value = term.partition(":")
        if not sep:
            needle = term.lower()
            return lambda m: needle in m.subject.lower() or needle in m.body.lower()
        attr = QUERY_FIELDS.get(field.lower())
        if attr is None:
            raise QueryError(f"unknown query field '{field}'", query=expr)
        needle = value.lower()
        if attr == "flags":
            return lambda m: needle in m.flags
        if attr == "maildir":
            return lambda m: m.maildir.lower() == needle
        return lambda m: needle in str(getattr(m, attr)).lower()
