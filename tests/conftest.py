"""Pytest hooks and fixtures."""

import socket
import textwrap
from pathlib import Path

import pytest

from mubus.bus.base import MethodCall
from mubus.store.message import MailMessage
from mubus.store.store import Store


def pytest_configure(config):
    """Register custom markers (also in pyproject.toml)."""
    config.addinivalue_line(
        "markers",
        "requires_socket: needs unix domain sockets (skipped where unavailable)",
    )


def pytest_collection_modifyitems(config, items):
    """Skip requires_socket tests on platforms without AF_UNIX."""
    if hasattr(socket, "AF_UNIX"):
        return
    skip = pytest.mark.skip(reason="Unix domain sockets not available")
    for item in items:
        if "requires_socket" in item.keywords:
            item.add_marker(skip)


class RecordingTransport:
    """Transport double that records completions and notifications."""

    def __init__(self):
        self.completed: list[tuple[MethodCall, str]] = []
        self.notifications: list[str] = []
        self.published: dict[str, object] = {}
        self.own_name_calls: list[str] = []

    async def own_name(self, name, on_acquired):
        from mubus.bus.base import NameHandle

        self.own_name_calls.append(name)
        on_acquired(name)
        return NameHandle(name)

    async def release_name(self, handle):
        pass

    def publish_object(self, path, obj):
        self.published[path] = obj

    def unpublish_object(self, path):
        self.published.pop(path, None)

    def complete_call(self, call, payload):
        call.complete(payload)
        self.completed.append((call, payload))

    def emit_notification(self, payload):
        self.notifications.append(payload)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def make_call():
    """Factory for MethodCall objects whose replies land in call.replies."""

    def _make(payload: str, name: str = "test.Name", path: str = "/mu/cache") -> MethodCall:
        replies: list = []
        call = MethodCall(name=name, path=path, payload=payload, reply=lambda p, e: replies.append((p, e)))
        call.replies = replies
        return call

    return _make


@pytest.fixture
def store():
    s = Store()
    for subject, sender, date in (
        ("foo report", "alice@example.com", 300),
        ("weekly foo", "bob@example.com", 100),
        ("lunch", "carol@example.com", 200),
    ):
        s.add_message(MailMessage(subject=subject, sender=sender, date=date, maildir="/inbox", body="hello"))
    return s


def write_message(path: Path, subject: str, sender: str = "alice@example.com", body: str = "hello") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        textwrap.dedent(
            f"""\
            From: {sender}
            To: bob@example.com
            Subject: {subject}
            Date: Mon, 01 Jan 2024 10:00:00 +0000
            Message-ID: <{subject.replace(' ', '-')}@example.com>

            {body}
            """
        )
    )
    return path


@pytest.fixture
def maildir(tmp_path):
    """Maildir tree with an inbox (2 messages) and an archive folder (1 message)."""
    root = tmp_path / "Maildir"
    for sub in ("cur", "new", "tmp"):
        (root / sub).mkdir(parents=True)
        (root / "archive" / sub).mkdir(parents=True)
    write_message(root / "cur" / "1:2,S", "first foo")
    write_message(root / "new" / "2", "second")
    write_message(root / "archive" / "cur" / "3:2,RS", "archived foo", sender="dave@example.com")
    return root


@pytest.fixture
def message_file():
    return write_message
