"""Console tests -- both grammars driven by scripted input.

Fake handles record every accessor call so each test can assert exactly
which data operations a line triggered.
"""

from __future__ import annotations

import asyncio
import math
from io import StringIO

import pytest

from ormconsole.console import (
    COMMAND_HELP,
    UNKNOWN_COMMAND,
    CommandConsole,
    ConsoleState,
    EvalConsole,
    parse_id,
    parse_json_object,
)
from ormconsole.exceptions import ConfigurationError, MalformedInputError, OperationError
from tests.conftest import (
    USERS,
    FakeHandle,
    ScriptedInput,
    quiet_config,
    run_session,
)


def make_console(console_cls, handle):
    out = StringIO()
    console = console_cls(handle, config=quiet_config(), output=out, input_fn=ScriptedInput([]))
    return console, out


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

class TestParsing:
    def test_parse_json_object(self):
        assert parse_json_object('{"name": "Al"}') == {"name": "Al"}

    @pytest.mark.parametrize("raw", ['{"name": ', "name=Al", "{'name': 'Al'}"])
    def test_malformed_json(self, raw):
        with pytest.raises(MalformedInputError, match="Invalid JSON"):
            parse_json_object(raw)

    def test_tab_inside_string_is_kept(self):
        assert parse_json_object('{"name": "a\tb"}') == {"name": "a\tb"}

    def test_json_must_be_object(self):
        with pytest.raises(MalformedInputError, match="Expected a JSON object"):
            parse_json_object("[1, 2]")

    @pytest.mark.parametrize("raw,expected", [
        ("42", 42),
        ("-3", -3),
        (" 7", 7),
        ("12abc", 12),
        ("1_0", 1),
        ("1.5", 1),
    ])
    def test_parse_id_takes_leading_digits(self, raw, expected):
        assert parse_id(raw) == expected

    @pytest.mark.parametrize("raw", ["abc", "", "_1", "+", "١٢"])
    def test_parse_id_without_digits_is_nan(self, raw):
        assert math.isnan(parse_id(raw))


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------

class TestLifecycle:
    def test_start_connects_and_exit_disconnects(self, fake_handle):
        console, out, code = run_session(CommandConsole, fake_handle, ["exit"])
        assert code == 0
        assert fake_handle.events == ["connect", "disconnect"]
        assert console.state is ConsoleState.TERMINATED
        assert "Welcome to ORM Console!" in out
        assert "Exiting console..." in out

    def test_exit_stops_reading(self, fake_handle, user_accessor):
        _, _, _ = run_session(CommandConsole, fake_handle, ["exit", "read user"])
        assert user_accessor.calls == []

    def test_end_of_input_is_exit(self, fake_handle):
        console, _, code = run_session(CommandConsole, fake_handle, ["help"])
        assert code == 0
        assert fake_handle.disconnect_calls == 1
        assert console.terminated

    def test_exit_twice_disconnects_once(self, fake_handle):
        console, _ = make_console(CommandConsole, fake_handle)
        asyncio.run(console.exit())
        asyncio.run(console.exit())
        assert fake_handle.disconnect_calls == 1

    def test_async_handle_lifecycle_is_awaited(self, user_accessor):
        class AsyncHandle(FakeHandle):
            async def connect(self):
                self.events.append("connect")

            async def disconnect(self):
                self.events.append("disconnect")

        handle = AsyncHandle([user_accessor])
        run_session(CommandConsole, handle, ["exit"])
        assert handle.events == ["connect", "disconnect"]

    def test_connect_failure_propagates(self):
        class Unreachable(FakeHandle):
            def connect(self):
                raise ConfigurationError("cannot connect")

        handle = Unreachable()
        with pytest.raises(ConfigurationError):
            run_session(CommandConsole, handle, ["read user"])
        assert handle.disconnect_calls == 0

    def test_unexpected_loop_failure_still_disconnects(self, fake_handle):
        console = CommandConsole(fake_handle, config=quiet_config(), output=StringIO(), input_fn=ScriptedInput([]))

        def broken_input(prompt):
            raise RuntimeError("terminal gone")

        console._input_fn = broken_input
        with pytest.raises(RuntimeError):
            asyncio.run(console.run())
        assert fake_handle.disconnect_calls == 1

    def test_input_stream_error_terminates(self, fake_handle):
        def failing(prompt):
            raise OSError("stdin closed")

        console = CommandConsole(fake_handle, config=quiet_config(), output=StringIO(), input_fn=failing)
        assert asyncio.run(console.run()) == 0
        assert console.terminated
        assert fake_handle.disconnect_calls == 1

    def test_keyboard_interrupt_reprompts(self, fake_handle, user_accessor):
        lines = iter([KeyboardInterrupt, "read user"])

        def interrupted(prompt):
            item = next(lines, EOFError)
            if isinstance(item, type):
                raise item
            return item

        console = CommandConsole(fake_handle, config=quiet_config(), output=StringIO(), input_fn=interrupted)
        asyncio.run(console.run())
        assert len(user_accessor.calls) == 1

    def test_prompt_from_config(self, fake_handle):
        scripted = ScriptedInput(["help"])
        console = CommandConsole(
            fake_handle, config=quiet_config(prompt="db> "), output=StringIO(), input_fn=scripted
        )
        asyncio.run(console.run())
        assert scripted.prompts[0] == "db> "


# ---------------------------------------------------------------------------
# Fixed-grammar commands
# ---------------------------------------------------------------------------

class TestCommandConsole:
    def test_read_renders_two_records(self, fake_handle, user_accessor):
        console, out, _ = run_session(CommandConsole, fake_handle, ["read user"])
        assert user_accessor.calls == [("find_many", None)]
        assert "Result:" in out
        assert 'name: "Al"' in out
        assert 'name: "Bo"' in out
        assert out.count("{\n") == 2

    def test_session_awaits_input_after_dispatch(self, fake_handle):
        console, _ = make_console(CommandConsole, fake_handle)
        for line in ["help", "models", "read user", "read nope", "create user {", "foo bar", "", "update user"]:
            asyncio.run(console.execute(line))
            assert console.state is ConsoleState.AWAITING_INPUT, line

    def test_create(self, fake_handle, user_accessor):
        _, out, _ = run_session(CommandConsole, fake_handle, ['create user {"name": "Cy", "email": "c y"}'])
        assert user_accessor.calls == [("create", {"name": "Cy", "email": "c y"})]
        assert 'name: "Cy"' in out

    def test_create_rejected(self, fake_handle, user_accessor):
        user_accessor.error = OperationError("unique constraint failed")
        console, out, code = run_session(
            CommandConsole, fake_handle, ['create user {"name":"Al"}', "read user"]
        )
        assert "OperationError: unique constraint failed" in out
        assert len(user_accessor.calls) == 2
        assert code == 0

    @pytest.mark.parametrize("line", ["create user {name: Al}", "update user 1 {oops"])
    def test_malformed_json_makes_no_call(self, fake_handle, user_accessor, line):
        _, out, _ = run_session(CommandConsole, fake_handle, [line])
        assert "MalformedInputError" in out
        assert user_accessor.calls == []

    def test_create_keeps_json_whitespace(self, fake_handle, user_accessor):
        line = 'create  user   {"name": "a  b", "email": "x\ty"}'
        run_session(CommandConsole, fake_handle, [line])
        assert user_accessor.calls == [("create", {"name": "a  b", "email": "x\ty"})]

    def test_update_keeps_json_whitespace(self, fake_handle, user_accessor):
        run_session(CommandConsole, fake_handle, ['update user\t2 {"name":  "B  e\ta"}'])
        assert user_accessor.calls == [("update", 2, {"name": "B  e\ta"})]

    def test_update(self, fake_handle, user_accessor):
        run_session(CommandConsole, fake_handle, ['update user 2 {"name": "Bea"}'])
        assert user_accessor.calls == [("update", 2, {"name": "Bea"})]

    def test_update_non_numeric_id(self, fake_handle, user_accessor):
        _, out, _ = run_session(CommandConsole, fake_handle, ['update user abc {"name": "X"}'])
        op, record_id, _ = user_accessor.calls[0]
        assert op == "update" and math.isnan(record_id)
        assert "OperationError: Invalid id for user: nan" in out

    def test_delete(self, fake_handle, user_accessor):
        run_session(CommandConsole, fake_handle, ["delete user 1"])
        assert user_accessor.calls == [("delete", 1)]

    @pytest.mark.parametrize("line,usage", [
        ("create user", "Usage: create <model> <data>"),
        ("read", "Usage: read <model>"),
        ("update user 1", "Usage: update <model> <id> <data>"),
        ("delete user", "Usage: delete <model> <id>"),
    ])
    def test_usage_errors(self, fake_handle, user_accessor, line, usage):
        _, out, _ = run_session(CommandConsole, fake_handle, [line])
        assert f"CommandUsageError: {usage}" in out
        assert user_accessor.calls == []

    def test_unknown_model(self, fake_handle):
        _, out, code = run_session(CommandConsole, fake_handle, ["read nope", "exit"])
        assert "UnknownModelError: Unknown model: nope (available: user)" in out
        assert code == 0

    def test_unknown_command(self, fake_handle, user_accessor):
        console, out, _ = run_session(CommandConsole, fake_handle, ["foo bar", "read user"])
        assert UNKNOWN_COMMAND in out
        assert len(user_accessor.calls) == 1

    def test_commands_are_case_insensitive(self, fake_handle, user_accessor):
        run_session(CommandConsole, fake_handle, ["READ user"])
        assert len(user_accessor.calls) == 1

    def test_help(self, fake_handle):
        _, out, _ = run_session(CommandConsole, fake_handle, ["help"])
        assert "update <model> <id> <data>: Update a record by ID" in out
        assert COMMAND_HELP.strip().splitlines()[0] in out

    def test_models(self, fake_handle):
        _, out, _ = run_session(CommandConsole, fake_handle, ["models"])
        assert "user" in out
        assert "INTEGER" in out

    def test_models_introspection_failure(self, user_accessor):
        handle = FakeHandle([user_accessor], describe_error=RuntimeError("no metadata"))
        _, out, code = run_session(CommandConsole, handle, ["models"])
        assert "user" in out
        assert code == 0

    def test_accessor_crash_is_reported(self, fake_handle, user_accessor):
        user_accessor.error = ValueError("driver exploded")
        _, out, _ = run_session(CommandConsole, fake_handle, ["read user", "exit"])
        assert "OperationError: driver exploded" in out
        assert fake_handle.disconnect_calls == 1

    def test_long_session_uses_no_recursion(self, fake_handle, user_accessor):
        lines = ["read user"] * 500
        console, _, code = run_session(CommandConsole, fake_handle, lines)
        assert code == 0
        assert len(user_accessor.calls) == 500


class TestCommandConsoleWithDatabase:
    def test_crud_round_trip(self, handle):
        _, out, code = run_session(
            CommandConsole,
            handle,
            [
                'create user {"name": "Cy"}',
                'create user {"name": "Al"}',
                'update user 3 {"email": "cy@example.com"}',
                "delete user 1",
                "read user",
                "exit",
            ],
        )
        assert code == 0
        assert "UNIQUE constraint failed" in out
        assert 'email: "cy@example.com"' in out
        assert not handle.connected


# ---------------------------------------------------------------------------
# Free-form evaluation
# ---------------------------------------------------------------------------

class TestEvalConsole:
    def test_awaited_snippet_renders_resolved_value(self, fake_handle, user_accessor):
        _, out, _ = run_session(EvalConsole, fake_handle, ["await user.find_many()"])
        assert 'name: "Al"' in out
        assert "coroutine" not in out
        assert len(user_accessor.calls) == 1

    def test_pending_result_is_resolved(self, fake_handle):
        _, out, _ = run_session(EvalConsole, fake_handle, ["user.find_many()"])
        assert 'name: "Bo"' in out
        assert "coroutine" not in out

    def test_statements_and_last_result(self, fake_handle):
        console, out, _ = run_session(EvalConsole, fake_handle, ["x = 41", "x + 1", "_ * 2"])
        assert "\n42\n84\n" in out
        assert console.namespace["x"] == 41

    def test_none_is_not_echoed(self, fake_handle):
        _, out, _ = run_session(EvalConsole, fake_handle, ["None"])
        assert "None" not in out

    def test_await_in_statement(self, fake_handle):
        console, _, _ = run_session(EvalConsole, fake_handle, ["rows = await all_user()"])
        assert console.namespace["rows"] == USERS

    def test_multiline_block(self, fake_handle):
        scripted = ScriptedInput(["for r in await all_user():", "    pp(r['name'])", ""])
        out = StringIO()
        console = EvalConsole(fake_handle, config=quiet_config(), output=out, input_fn=scripted)
        asyncio.run(console.run())
        assert '"Al"\n"Bo"' in out.getvalue()
        assert scripted.prompts[:3] == ["orm> ", "... ", "... "]

    def test_runtime_error(self, fake_handle):
        console, out, code = run_session(EvalConsole, fake_handle, ["1/0", "1 + 1"])
        assert "EvaluationError: ZeroDivisionError: division by zero" in out
        assert out.splitlines().count("2") == 1
        assert code == 0

    def test_syntax_error(self, fake_handle):
        _, out, _ = run_session(EvalConsole, fake_handle, ["foo bar baz"])
        assert "EvaluationError: SyntaxError" in out

    def test_operation_error_keeps_its_kind(self, fake_handle, user_accessor):
        user_accessor.error = OperationError("unique constraint failed")
        _, out, _ = run_session(EvalConsole, fake_handle, ['await create_user({"name": "Al"})'])
        assert "OperationError: unique constraint failed" in out

    def test_traceback_when_configured(self, fake_handle):
        _, out, _ = run_session(EvalConsole, fake_handle, ["1/0"], show_traceback=True)
        assert "Traceback" in out

    def test_reserved_calls_short_circuit(self, fake_handle):
        _, out, _ = run_session(EvalConsole, fake_handle, ["help()", "models ( )"])
        assert "Evaluate Python against your models" in out
        assert "INTEGER" in out

    @pytest.mark.parametrize("directive", ["exit", "exit()", "quit()"])
    def test_exit_directives(self, fake_handle, user_accessor, directive):
        console, _, _ = run_session(EvalConsole, fake_handle, [directive, "await all_user()"])
        assert console.terminated
        assert user_accessor.calls == []
        assert fake_handle.disconnect_calls == 1

    def test_full_ambient_capability(self, fake_handle):
        _, out, _ = run_session(EvalConsole, fake_handle, ["import os", "os.sep"])
        assert '"/"' in out or '"\\\\"' in out

    def test_reload_keeps_user_names_and_binding_set(self, fake_handle):
        console, out, _ = run_session(EvalConsole, fake_handle, ["mine = 1", "reload()", "reload()"])
        assert console.namespace["mine"] == 1
        assert set(console.context) <= set(console.namespace)
        assert out.count("Context reloaded") == 2
        bindings = set(console.context)
        console.context["reload"]()
        assert set(console.context) == bindings

    def test_reload_drops_vanished_bindings(self, fake_handle):
        console, _, _ = run_session(EvalConsole, fake_handle, [])
        assert "all_user" in console.namespace
        fake_handle._accessors.clear()
        console.context["reload"]()
        assert "all_user" not in console.namespace
        assert "first" in console.namespace

    def test_evaluate_with_explicit_namespace(self, fake_handle):
        console, _ = make_console(EvalConsole, fake_handle)
        assert asyncio.run(console.evaluate("a * 2", {"a": 21})) == 42


class TestEvalConsoleWithDatabase:
    def test_query_real_records(self, handle):
        _, out, code = run_session(
            EvalConsole,
            handle,
            [
                'await user.find_many({"name": "Bo"})',
                "await count(user)",
                'session.execute(text("SELECT count(*) FROM post")).scalar()',
            ],
        )
        assert 'name: "Bo"' in out
        assert 'name: "Al"' not in out
        assert "\n2\n0\n" in out
        assert code == 0
        assert not handle.connected
