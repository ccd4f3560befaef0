"""S-expression codec for requests and replies.

Requests look like ``(find :query "maildir:/inbox" :maxnum 10)``; replies are
property lists such as ``(:pong "mubus" :props (:doccount 12))`` and errors are
``(:error 4 :message "...")``.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping, Union

from mubus.utils.exceptions import ErrorCode, MalformedRequestError


class Symbol(str):
    """Bare atom; keywords are symbols that start with a colon."""

    __slots__ = ()

    @property
    def is_keyword(self) -> bool:
        return self.startswith(":") and len(self) > 1

    def __repr__(self) -> str:
        return f"Symbol({str.__repr__(self)})"


class SexpList(tuple):
    """Immutable ordered list of sub-expressions."""

    __slots__ = ()

    @property
    def head(self) -> "Sexp | None":
        return self[0] if self else None

    @property
    def rest(self) -> "SexpList":
        return SexpList(self[1:])

    def __repr__(self) -> str:
        return f"SexpList({list(self)!r})"


Sexp = Union[Symbol, str, int, SexpList]

NIL = Symbol("nil")
T = Symbol("t")

_INTEGER_RE = re.compile(r"[+-]?\d+\Z")
_DELIMITERS = frozenset('()";')
_NAMED_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "\\": "\\"}
_OCTAL_DIGITS = frozenset("01234567")


class _Reader:
    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    @property
    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def skip_blank(self) -> None:
        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]
            if ch.isspace():
                self.pos += 1
            elif ch == ";":
                newline = text.find("\n", self.pos)
                self.pos = len(text) if newline < 0 else newline + 1
            else:
                break

    def read(self) -> Sexp:
        ch = self.text[self.pos]
        if ch == "(":
            return self.read_list()
        if ch == ")":
            raise MalformedRequestError("unexpected ')'", self.pos)
        if ch == '"':
            return self.read_string()
        return self.read_atom()

    def read_list(self) -> SexpList:
        start = self.pos
        self.pos += 1
        items: list[Sexp] = []
        while True:
            self.skip_blank()
            if self.at_end:
                raise MalformedRequestError("unbalanced parenthesis, expected ')'", start)
            if self.text[self.pos] == ")":
                self.pos += 1
                return SexpList(items)
            items.append(self.read())

    def read_string(self) -> str:
        start = self.pos
        text = self.text
        self.pos += 1
        out: list[str] = []
        while self.pos < len(text):
            ch = text[self.pos]
            if ch == '"':
                self.pos += 1
                return "".join(out)
            if ch != "\\":
                out.append(ch)
                self.pos += 1
                continue
            self.pos += 1
            if self.pos >= len(text):
                break
            esc = text[self.pos]
            if esc in _NAMED_ESCAPES:
                out.append(_NAMED_ESCAPES[esc])
                self.pos += 1
            elif esc in _OCTAL_DIGITS:
                end = self.pos
                while end < len(text) and end - self.pos < 3 and text[end] in _OCTAL_DIGITS:
                    end += 1
                out.append(chr(int(text[self.pos:end], 8)))
                self.pos = end
            else:
                raise MalformedRequestError(f"invalid escape sequence '\\{esc}'", self.pos - 1)
        raise MalformedRequestError("unterminated string literal", start)

    def read_atom(self) -> Sexp:
        start = self.pos
        text = self.text
        while self.pos < len(text) and not text[self.pos].isspace() and text[self.pos] not in _DELIMITERS:
            self.pos += 1
        token = text[start:self.pos]
        if _INTEGER_RE.match(token):
            return int(token)
        return Symbol(token)


def parse(text: str) -> Sexp:
    """Parse exactly one expression from text."""
    reader = _Reader(text)
    reader.skip_blank()
    if reader.at_end:
        raise MalformedRequestError("empty expression", 0)
    value = reader.read()
    reader.skip_blank()
    if not reader.at_end:
        raise MalformedRequestError("trailing data after expression", reader.pos)
    return value


def parse_all(text: str) -> list[Sexp]:
    """Parse a sequence of concatenated expressions, e.g. a multi-fragment reply."""
    reader = _Reader(text)
    values: list[Sexp] = []
    reader.skip_blank()
    while not reader.at_end:
        values.append(reader.read())
        reader.skip_blank()
    return values


def parse_string_literal(text: str) -> str:
    """Lex a single double-quoted string literal."""
    if not text.startswith('"'):
        raise MalformedRequestError("expected string literal", 0)
    reader = _Reader(text)
    value = reader.read_string()
    if not reader.at_end:
        raise MalformedRequestError("trailing data after string literal", reader.pos)
    return value


def escape(text: str) -> str:
    """Quote text as a string literal; inverse of parse_string_literal."""
    out = ['"']
    for ch in text:
        if ch == '"':
            out.append('\\"')
        elif ch == "\\":
            out.append("\\\\")
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\t":
            out.append("\\t")
        elif ch == "\r":
            out.append("\\r")
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append(f"\\{ord(ch):03o}")
        else:
            out.append(ch)
    out.append('"')
    return "".join(out)


def to_string(value: Any) -> str:
    """Render a value as s-expression text."""
    if isinstance(value, Symbol):
        return str(value)
    if isinstance(value, str):
        return escape(value)
    if value is None or value is False:
        return str(NIL)
    if value is True:
        return str(T)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, Mapping):
        return to_string(make_plist(value))
    if isinstance(value, (list, tuple)):
        return "(" + " ".join(to_string(item) for item in value) + ")"
    raise TypeError(f"cannot render {type(value).__name__} as s-expression")


def make_plist(mapping: Mapping[str, Any]) -> SexpList:
    """Build ``(:key value ...)`` from a mapping, skipping None values."""
    items: list[Any] = []
    for key, value in mapping.items():
        if value is None:
            continue
        items.append(Symbol(key if key.startswith(":") else f":{key}"))
        if isinstance(value, Mapping):
            value = make_plist(value)
        elif isinstance(value, list):
            value = SexpList(value)
        items.append(value)
    return SexpList(items)


def keyword_params(elements: Iterable[Sexp]) -> dict[str, Sexp]:
    """Turn ``:key value`` pairs into a mapping keyed without the colon."""
    items = list(elements)
    if len(items) % 2:
        raise MalformedRequestError("expected :keyword value pairs")
    params: dict[str, Sexp] = {}
    for key, value in zip(items[::2], items[1::2]):
        if not isinstance(key, Symbol) or not key.is_keyword:
            raise MalformedRequestError(f"expected keyword, got {to_string(key)}")
        name = key[1:]
        if name in params:
            raise MalformedRequestError(f"duplicate parameter :{name}")
        params[name] = value
    return params


def compose_error(code: ErrorCode | int, message: str) -> SexpList:
    """Error reply fragment: ``(:error <code> :message "<message>")``."""
    return SexpList((Symbol(":error"), int(code), Symbol(":message"), message))
