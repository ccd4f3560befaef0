"""In-memory message store with optional JSON persistence."""

from __future__ import annotations

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Callable, Iterator

from loguru import logger

from mubus.store.message import MailMessage
from mubus.utils.exceptions import DomainError, ErrorCode, NotFoundError, StoreError

STORE_FORMAT_VERSION = 1

IndexProgress = Callable[["IndexStats"], None]


@dataclass(slots=True)
class IndexStats:
    """Counters reported while indexing a maildir tree."""

    processed: int = 0
    updated: int = 0
    cleaned_up: int = 0


class Store:
    """Message database shared by every request of a server process."""

    def __init__(self, path: Path | None = None, maildir: Path | None = None):
        self.path = Path(path).expanduser() if path else None
        self.root_maildir = Path(maildir).expanduser() if maildir else None
        self._messages: dict[int, MailMessage] = {}
        self._by_path: dict[str, int] = {}
        self._next_docid = 1
        self._closed = False

    @classmethod
    def open(cls, path: Path | None = None, maildir: Path | None = None) -> "Store":
        """Open a store, loading a previously flushed database if present."""
        store = cls(path, maildir)
        if store.path is None or not store.path.exists():
            return store
        try:
            data = json.loads(store.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"failed to load store from {store.path}: {e}") from e
        if data.get("version") != STORE_FORMAT_VERSION:
            raise StoreError(f"unsupported store version {data.get('version')!r} in {store.path}")
        if store.root_maildir is None and data.get("maildir"):
            store.root_maildir = Path(data["maildir"])
        known = {f.name for f in fields(MailMessage)}
        for entry in data.get("messages", []):
            msg = MailMessage(**{k: v for k, v in entry.items() if k in known})
            store._messages[msg.docid] = msg
            if msg.path:
                store._by_path[msg.path] = msg.docid
        store._next_docid = max(int(data.get("next_docid", 1)), max(store._messages, default=0) + 1)
        logger.debug("Loaded {} messages from {}", len(store._messages), store.path)
        return store

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise StoreError("store is closed")

    def add(self, path: str | Path, maildir: str | None = None) -> int:
        """Index the message file at path; re-adding a known path keeps its docid."""
        self._check_open()
        resolved = str(Path(path).expanduser())
        msg = MailMessage.from_file(resolved, maildir if maildir is not None else "")
        existing = self._by_path.get(resolved)
        if existing is not None:
            if maildir is None:
                msg.maildir = self._messages[existing].maildir
            msg.docid = existing
            self._messages[existing] = msg
            return existing
        return self.add_message(msg)

    def add_message(self, msg: MailMessage) -> int:
        self._check_open()
        msg.docid = self._next_docid
        self._next_docid += 1
        self._messages[msg.docid] = msg
        if msg.path:
            self._by_path[msg.path] = msg.docid
        return msg.docid

    def remove(self, docid: int) -> None:
        self._check_open()
        msg = self._messages.pop(docid, None)
        if msg is None:
            raise NotFoundError("message", docid)
        if msg.path:
            self._by_path.pop(msg.path, None)

    def get(self, docid: int) -> MailMessage:
        msg = self._messages.get(docid)
        if msg is None:
            raise NotFoundError("message", docid)
        return msg

    def docid_for_path(self, path: str | Path) -> int | None:
        return self._by_path.get(str(Path(path).expanduser()))

    def messages(self) -> Iterator[MailMessage]:
        for docid in sorted(self._messages):
            yield self._messages[docid]

    def count(self) -> int:
        return len(self._messages)

    def index_maildir(
        self,
        root: str | Path,
        progress: IndexProgress | None = None,
        progress_every: int = 100,
        cleanup: bool = True,
    ) -> IndexStats:
        """Walk a maildir tree, adding new messages and dropping vanished ones."""
        self._check_open()
        root_path = Path(root).expanduser()
        if not root_path.is_dir():
            raise DomainError(ErrorCode.FILE, f"not a maildir: {root_path}")
        stats = IndexStats()
        seen: set[str] = set()
        for leaf in sorted(_maildir_leaves(root_path)):
            maildir = "/" + leaf.relative_to(root_path).as_posix() if leaf != root_path else "/"
            for sub in ("cur", "new"):
                for file in sorted((leaf / sub).iterdir()):
                    if not file.is_file():
                        continue
                    key = str(file)
                    seen.add(key)
                    stats.processed += 1
                    if key not in self._by_path:
                        try:
                            self.add(file, maildir)
                            stats.updated += 1
                        except DomainError as e:
                            logger.warning("Skipping {}: {}", file, e.message)
                    if progress and stats.processed % progress_every == 0:
                        progress(stats)
        if cleanup:
            for path, docid in list(self._by_path.items()):
                if path not in seen and Path(path).is_relative_to(root_path):
                    self.remove(docid)
                    stats.cleaned_up += 1
        logger.info(
            "Indexed {}: processed={} updated={} cleaned_up={}",
            root_path, stats.processed, stats.updated, stats.cleaned_up,
        )
        return stats

    def flush(self) -> None:
        """Write the database to disk when the store has a path."""
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "version": STORE_FORMAT_VERSION,
            "next_docid": self._next_docid,
            "maildir": str(self.root_maildir) if self.root_maildir else None,
            "messages": [m.to_dict() for m in self.messages()],
        }
        try:
            self.path.write_text(json.dumps(data), encoding="utf-8")
        except OSError as e:
            raise StoreError(f"failed to write store to {self.path}: {e}") from e

    def close(self) -> None:
        if self._closed:
            return
        self.flush()
        self._closed = True


def _maildir_leaves(root: Path) -> Iterator[Path]:
    """Yield every directory under root that holds cur/ and new/."""
    if (root / "cur").is_dir() and (root / "new").is_dir():
        yield root
    for child in root.iterdir():
        if child.is_dir() and child.name not in ("cur", "new", "tmp"):
            yield from _maildir_leaves(child)
