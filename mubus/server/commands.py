"""Built-in commands served over the bus."""

from __future__ import annotations

from functools import partial
from typing import TYPE_CHECKING

from loguru import logger

from mubus import __version__
from mubus.protocol.sexp import Symbol, make_plist
from mubus.server.dispatch import ArgInfo, CommandInfo, CommandTable, Parameters
from mubus.store.store import IndexStats
from mubus.utils.exceptions import DomainError, ErrorCode, InvalidArgumentError

if TYPE_CHECKING:
    from mubus.server.context import Context


def cmd_ping(context: Context, params: Parameters) -> None:
    context.reply(make_plist({
        "pong": "mubus",
        "props": {"version": __version__, "doccount": context.store.count()},
    }))


def cmd_quit(context: Context, params: Parameters) -> None:
    logger.info("Quit requested")
    context.terminate = True


def cmd_find(context: Context, params: Parameters) -> None:
    """Reply with one headers-only fragment per readable match."""
    sortfield = str(params["sortfield"]).lstrip(":")
    matches = context.query.run(params["query"], sortfield=sortfield, reverse=params["descending"])
    if not len(matches):
        raise DomainError(ErrorCode.NO_MATCHES, "no matches for search expression")
    maxnum = params["maxnum"]
    if maxnum is None:
        maxnum = context.settings.max_matches
    if maxnum < 0:
        maxnum = len(matches)
    found = context.drain_matches(matches, maxnum)
    logger.debug("find {!r}: {} of {} matches sent", params["query"], found, len(matches))


def cmd_add(context: Context, params: Parameters) -> None:
    docid = context.store.add(params["path"], params["maildir"])
    context.reply(make_plist({"info": Symbol("add"), "path": params["path"], "docid": docid}))


def cmd_remove(context: Context, params: Parameters) -> None:
    context.store.remove(params["docid"])
    context.reply(make_plist({"remove": params["docid"]}))


def cmd_view(context: Context, params: Parameters) -> None:
    docid = params["docid"]
    if docid is None:
        if params["path"] is None:
            raise InvalidArgumentError("view: one of :docid or :path is required", "docid")
        docid = context.store.docid_for_path(params["path"])
        if docid is None:
            docid = context.store.add(params["path"])
    msg = context.store.get(docid)
    context.reply(make_plist({"view": make_plist(msg.to_plist(headers_only=False))}))


def cmd_index(context: Context, params: Parameters) -> None:
    """Index a maildir tree; progress goes out of band, the summary is the reply."""
    root = params["maildir"] or context.store.root_maildir
    if root is None:
        raise InvalidArgumentError("index: no maildir configured", "maildir")

    def _stats(status: str, stats: IndexStats) -> dict:
        return {
            "info": Symbol("index"),
            "status": Symbol(status),
            "processed": stats.processed,
            "updated": stats.updated,
        }

    def _progress(stats: IndexStats) -> None:
        context.reply_out_of_band(_stats("running", stats))

    stats = context.store.index_maildir(
        root,
        progress=_progress,
        progress_every=max(1, context.settings.progress_every),
        cleanup=params["cleanup"],
    )
    context.store.flush()
    summary = _stats("complete", stats)
    summary["cleaned-up"] = stats.cleaned_up
    context.reply(make_plist(summary))


def make_command_table(context: Context) -> CommandTable:
    """Build a command table whose handlers are bound to context."""
    commands = [
        CommandInfo("ping", partial(cmd_ping, context), docstring="Report server version and message count."),
        CommandInfo("quit", partial(cmd_quit, context), docstring="Stop the server after replying."),
        CommandInfo(
            "find",
            partial(cmd_find, context),
            params={
                "query": ArgInfo(str, required=True, docstring="search expression"),
                "maxnum": ArgInfo(int, docstring="maximum number of results; negative for all"),
                "sortfield": ArgInfo(Symbol, default=Symbol(":date"), docstring="date, subject, from, size or docid"),
                "descending": ArgInfo(bool, default=False, docstring="sort in descending order"),
            },
            docstring="Search the store.",
        ),
        CommandInfo(
            "add",
            partial(cmd_add, context),
            params={
                "path": ArgInfo(str, required=True, docstring="message file"),
                "maildir": ArgInfo(str, docstring="maildir the file lives in, e.g. /inbox"),
            },
            docstring="Add a message file to the store.",
        ),
        CommandInfo(
            "remove",
            partial(cmd_remove, context),
            params={"docid": ArgInfo(int, required=True, docstring="document id")},
            docstring="Remove a message from the store.",
        ),
        CommandInfo(
            "view",
            partial(cmd_view, context),
            params={
                "docid": ArgInfo(int, docstring="document id"),
                "path": ArgInfo(str, docstring="message file"),
            },
            docstring="Show a full message.",
        ),
        CommandInfo(
            "index",
            partial(cmd_index, context),
            params={
                "maildir": ArgInfo(str, docstring="maildir root; defaults to the store's"),
                "cleanup": ArgInfo(bool, default=True, docstring="drop messages whose files vanished"),
            },
            docstring="(Re)index a maildir tree.",
        ),
    ]
    return {info.name: info for info in commands}
