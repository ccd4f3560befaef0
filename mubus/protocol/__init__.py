"""Request/reply text codec."""

from mubus.protocol.sexp import (
    NIL,
    T,
    Sexp,
    SexpList,
    Symbol,
    compose_error,
    escape,
    keyword_params,
    make_plist,
    parse,
    parse_all,
    parse_string_literal,
    to_string,
)

__all__ = [
    "NIL",
    "T",
    "Sexp",
    "SexpList",
    "Symbol",
    "compose_error",
    "escape",
    "keyword_params",
    "make_plist",
    "parse",
    "parse_all",
    "parse_string_literal",
    "to_string",
]
