"""Message records kept in the store."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from email import policy
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime
from pathlib import Path
from typing import Any

from mubus.utils.exceptions import DomainError, ErrorCode

# Maildir info suffix letters (":2,FRS") -> flag names.
MAILDIR_FLAGS = {
    "D": "draft",
    "F": "flagged",
    "P": "passed",
    "R": "replied",
    "S": "seen",
    "T": "trashed",
}


@dataclass(slots=True)
class ThreadInfo:
    """Position of a match inside its result set."""

    path: str
    level: int = 0

    def to_plist(self) -> dict[str, Any]:
        return {"path": self.path, "level": self.level}


@dataclass(slots=True)
class MailMessage:
    """One indexed message."""

    path: str = ""
    maildir: str = ""
    message_id: str = ""
    subject: str = ""
    sender: str = ""
    to: str = ""
    cc: str = ""
    date: int = 0
    size: int = 0
    flags: list[str] = field(default_factory=list)
    references: list[str] = field(default_factory=list)
    in_reply_to: str = ""
    body: str = ""
    readable: bool = True
    docid: int = 0

    @classmethod
    def from_file(cls, path: str | Path, maildir: str = "") -> "MailMessage":
        """Parse an RFC 2822 message file."""
        p = Path(path)
        try:
            raw = p.read_bytes()
        except OSError as e:
            raise DomainError(ErrorCode.FILE, f"cannot read message {p}: {e.strerror or e}") from e
        msg = BytesParser(policy=policy.default).parsebytes(raw)
        body_part = msg.get_body(preferencelist=("plain",)) if msg.is_multipart() else msg
        body = ""
        if body_part is not None:
            try:
                body = body_part.get_content()
            except (LookupError, ValueError):
                body = ""
        return cls(
            path=str(p),
            maildir=maildir,
            message_id=str(msg.get("Message-ID", "")).strip().strip("<>"),
            subject=str(msg.get("Subject", "")),
            sender=_addresses(msg.get_all("From")),
            to=_addresses(msg.get_all("To")),
            cc=_addresses(msg.get_all("Cc")),
            date=_epoch(msg.get("Date")),
            size=len(raw),
            flags=flags_from_filename(p),
            references=str(msg.get("References", "")).replace("<", " ").replace(">", " ").split(),
            in_reply_to=str(msg.get("In-Reply-To", "")).strip().strip("<>"),
            body=body if isinstance(body, str) else "",
        )

    def is_readable(self) -> bool:
        if not self.readable:
            return False
        return not self.path or Path(self.path).is_file()

    def to_plist(self, thread_info: ThreadInfo | None = None, headers_only: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "docid": self.docid,
            "subject": self.subject,
            "from": self.sender,
            "to": self.to or None,
            "cc": self.cc or None,
            "date": self.date,
            "size": self.size,
            "message-id": self.message_id,
            "path": self.path,
            "maildir": self.maildir,
            "flags": list(self.flags),
            "references": list(self.references) or None,
            "in-reply-to": self.in_reply_to or None,
        }
        if thread_info is not None:
            data["thread"] = thread_info.to_plist()
        if not headers_only:
            data["body-txt"] = self.body
        return data

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def flags_from_filename(path: Path) -> list[str]:
    """Derive flags from a maildir file name and its cur/new location."""
    flags: list[str] = []
    if path.parent.name == "new":
        flags.append("new")
    _, sep, info = path.name.partition(":2,")
    letters = info if sep else ""
    flags.extend(MAILDIR_FLAGS[c] for c in letters if c in MAILDIR_FLAGS)
    if "seen" not in flags:
        flags.append("unread")
    return flags


def _addresses(values: list[Any] | None) -> str:
    if not values:
        return ""
    pairs = getaddresses([str(v) for v in values])
    return ", ".join(f"{name} <{addr}>" if name else addr for name, addr in pairs if name or addr)


def _epoch(value: Any) -> int:
    if not value:
        return 0
    try:
        return int(parsedate_to_datetime(str(value)).timestamp())
    except (TypeError, ValueError):
        return 0
