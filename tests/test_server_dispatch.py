"""Tests for command lookup, parameter validation and the request error boundary."""

import io

import pytest

from mubus.protocol.sexp import SexpList, Symbol, parse, parse_all
from mubus.server.context import persistent_context, request_context
from mubus.server.dispatch import ArgInfo, CommandInfo, execute, invoke, validate_params
from mubus.utils.exceptions import (
    DomainError,
    ErrorCode,
    InvalidArgumentError,
    MalformedRequestError,
    UnknownCommandError,
)


class Recorder:
    """Command table factory whose handlers record invocations."""

    def __init__(self, behaviour=None):
        self.calls = []
        self.behaviour = behaviour or (lambda context, params: None)

    def __call__(self, context):
        def handler(params):
            self.calls.append(params)
            self.behaviour(context, params)

        return {
            "probe": CommandInfo(
                "probe",
                handler,
                params={
                    "n": ArgInfo(int, default=1),
                    "name": ArgInfo(str),
                    "flag": ArgInfo(bool, default=False),
                },
            ),
            "strict": CommandInfo("strict", handler, params={"query": ArgInfo(str, required=True)}),
        }


def _run(store, transport, make_call, payload, recorder):
    persistent = persistent_context(store, table_factory=recorder, out=io.StringIO())
    call = make_call(payload)
    context, channel = request_context(persistent, call, transport)
    execute(context, channel, payload)
    return call, context


class TestValidateParams:
    def setup_method(self):
        self.info = Recorder()(None)["probe"]

    def test_defaults_are_filled(self):
        assert validate_params(self.info, SexpList()) == {"n": 1, "name": None, "flag": False}

    def test_values_are_coerced(self):
        params = validate_params(self.info, parse('(:n 4 :name "x" :flag t)'))
        assert params == {"n": 4, "name": "x", "flag": True}

    def test_symbol_accepted_for_string(self):
        assert validate_params(self.info, parse("(:name inbox)"))["name"] == "inbox"

    def test_nil_means_default(self):
        assert validate_params(self.info, parse("(:n nil :flag nil)"))["n"] == 1

    @pytest.mark.parametrize("expr", ['(:n "four")', "(:flag 1)", "(:colour red)"])
    def test_bad_values_rejected(self, expr):
        with pytest.raises(InvalidArgumentError):
            validate_params(self.info, parse(expr))

    def test_required(self):
        info = Recorder()(None)["strict"]
        with pytest.raises(InvalidArgumentError):
            validate_params(info, SexpList())
        with pytest.raises(InvalidArgumentError):
            validate_params(info, parse("(:query nil)"))


class TestInvoke:
    def test_calls_handler_once(self):
        recorder = Recorder()
        invoke(recorder(None), parse("(probe :n 2)"))
        assert recorder.calls == [{"n": 2, "name": None, "flag": False}]

    @pytest.mark.parametrize("expr", ["42", "()", "(:probe)", '("probe")', "((probe))"])
    def test_malformed_command(self, expr):
        with pytest.raises(MalformedRequestError):
            invoke(Recorder()(None), parse(expr))

    def test_unknown_command(self):
        with pytest.raises(UnknownCommandError):
            invoke(Recorder()(None), parse("(nope)"))


class TestExecute:
    def test_success_sends_once(self, store, transport, make_call):
        recorder = Recorder(lambda ctx, params: ctx.append_reply("(:ok t)"))
        call, _ = _run(store, transport, make_call, "(probe)", recorder)
        assert len(recorder.calls) == 1
        assert call.replies == [("(:ok t)", None)]
        assert len(transport.completed) == 1

    def test_malformed_request_is_error_fragment(self, store, transport, make_call):
        recorder = Recorder()
        call, _ = _run(store, transport, make_call, "(probe", recorder)
        assert recorder.calls == []
        (reply,) = parse_all(call.replies[0][0])
        assert reply[:2] == (Symbol(":error"), ErrorCode.MALFORMED_REQUEST)

    def test_unknown_command_reply(self, store, transport, make_call):
        call, _ = _run(store, transport, make_call, "(nope)", Recorder())
        assert call.replies == [('(:error 3 :message "unknown command \'nope\'")', None)]

    def test_invalid_argument_reply(self, store, transport, make_call):
        recorder = Recorder()
        call, _ = _run(store, transport, make_call, "(strict)", recorder)
        assert recorder.calls == []
        (reply,) = parse_all(call.replies[0][0])
        assert reply[1] == ErrorCode.INVALID_ARGUMENT

    def test_domain_error_appended_after_partial_output(self, store, transport, make_call):
        def behaviour(ctx, params):
            ctx.append_reply("(:partial 1)")
            raise DomainError(ErrorCode.QUERY, "bad query")

        call, _ = _run(store, transport, make_call, "(probe)", Recorder(behaviour))
        assert call.replies == [('(:partial 1)(:error 7 :message "bad query")', None)]

    def test_unexpected_exception_is_contained(self, store, transport, make_call):
        def behaviour(ctx, params):
            raise RuntimeError("kaboom")

        recorder = Recorder(behaviour)
        call, context = _run(store, transport, make_call, "(probe)", recorder)
        assert len(recorder.calls) == 1
        (reply,) = parse_all(call.replies[0][0])
        assert reply == SexpList((Symbol(":error"), ErrorCode.INTERNAL, Symbol(":message"), "kaboom"))
        assert len(transport.completed) == 1
        assert context.command_table == {}

    def test_value_error_maps_to_invalid_argument(self, store, transport, make_call):
        def behaviour(ctx, params):
            raise ValueError("nope")

        call, _ = _run(store, transport, make_call, "(probe)", Recorder(behaviour))
        assert parse_all(call.replies[0][0])[0][1] == ErrorCode.INVALID_ARGUMENT

    def test_store_stays_open(self, store, transport, make_call):
        _run(store, transport, make_call, "(probe)", Recorder())
        assert not store.closed
