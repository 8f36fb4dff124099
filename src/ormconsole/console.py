"""Interactive consoles over a DataHandle.

Two grammars share one loop (:class:`BaseConsole`):

* :class:`CommandConsole` -- a fixed whitelist of commands
  (``create user {"name": "Al"}``, ``read user``, ...).
* :class:`EvalConsole` -- free-form Python snippets evaluated against the
  context registry, with top-level ``await``.

The loop is an explicit ``while``: read a line, dispatch it, render the
result, repeat until the exit directive. Every failure raised while
dispatching a line is reported and the loop continues; only ``exit`` (or
the end of input) ends a session, and it always disconnects the handle.

EvalConsole evaluates operator input with full Python capability. It is a
tool for a trusted local operator, not a sandbox.
"""

from __future__ import annotations

import ast
import asyncio
import builtins
import codeop
import enum
import inspect
import json
import logging
import math
import re
import rlcompleter
from typing import TYPE_CHECKING, Any, Optional

from rich.console import Console
from rich.traceback import Traceback

from ormconsole.context import build_context
from ormconsole.exceptions import (
    CommandUsageError,
    ConsoleError,
    EvaluationError,
    MalformedInputError,
    OperationError,
)
from ormconsole.formatting import (
    MISSING,
    format_error,
    format_models,
    get_console,
    print_result,
)
from ormconsole.history import History, word_completer
from ormconsole.models.config import ConsoleConfig
from ormconsole.models.schema import EntityInfo

if TYPE_CHECKING:
    from collections.abc import Callable

    from ormconsole.client import DataHandle

logger = logging.getLogger(__name__)


class ConsoleState(str, enum.Enum):
    """Lifecycle of a console session."""

    IDLE = "idle"
    AWAITING_INPUT = "awaiting_input"
    DISPATCHING = "dispatching"
    TERMINATED = "terminated"


async def _settle(value: Any) -> Any:
    """Await *value* if it is awaitable; pass it through otherwise."""
    if inspect.isawaitable(value):
        return await value
    return value


class BaseConsole:
    """The read-dispatch-render loop shared by both grammars.

    Args:
        handle: The DataHandle to drive. Not owned: the console connects it
            on start and disconnects it on exit, nothing more.
        config: Session configuration.
        output: A rich Console, or a file-like object to print to.
        input_fn: ``input``-style callable used instead of the terminal.
            Raising EOFError ends the session.
    """

    welcome = "Welcome to ORM Console!"
    help_text = ""

    def __init__(
        self,
        handle: DataHandle,
        *,
        config: Optional[ConsoleConfig] = None,
        output: Any = None,
        input_fn: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.handle = handle
        self.config = config or ConsoleConfig()
        self.console = output if isinstance(output, Console) else get_console(output)
        self.state = ConsoleState.IDLE
        self._input_fn = input_fn
        self._history = History(
            self.config.history_file if input_fn is None else None,
            length=self.config.history_length,
        )

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start(self) -> int:
        """Run the session to completion. Returns the exit code."""
        return asyncio.run(self.run())

    async def run(self) -> int:
        """Connect, loop until the exit directive, disconnect.

        Raises:
            ConfigurationError: If the handle cannot connect.
        """
        await _settle(self.handle.connect())
        try:
            self._prepare()
            if self._input_fn is None:
                self._history.open(self._completer())
            self._banner()

            while self.state is not ConsoleState.TERMINATED:
                self.state = ConsoleState.AWAITING_INPUT
                try:
                    line = self._read_line()
                except EOFError:
                    self.console.print()
                    await self.exit()
                    break
                except KeyboardInterrupt:
                    self.console.print()
                    continue
                except OSError as exc:
                    logger.error("Input stream failed: %s", exc)
                    await self.exit()
                    break
                await self.execute(line)
        finally:
            if self.state is not ConsoleState.TERMINATED:
                await self.exit(quiet=True)
        return 0

    async def exit(self, *, quiet: bool = False) -> None:
        """The exit directive: disconnect the handle and terminate.

        Safe to call more than once; the handle is disconnected once.
        """
        if self.state is ConsoleState.TERMINATED:
            return
        if not quiet:
            self.console.print("Exiting console...")
        try:
            await _settle(self.handle.disconnect())
        finally:
            self._history.close()
            self.state = ConsoleState.TERMINATED

    @property
    def terminated(self) -> bool:
        return self.state is ConsoleState.TERMINATED

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def execute(self, line: str) -> Any:
        """Dispatch one input line, reporting any failure.

        Returns the dispatched value, or None when the line failed.
        """
        self.state = ConsoleState.DISPATCHING
        try:
            return await self._dispatch(line)
        except ConsoleError as exc:
            self._report(exc)
        except Exception as exc:
            self._report(self._wrap_unexpected(exc))
        finally:
            if self.state is not ConsoleState.TERMINATED:
                self.state = ConsoleState.AWAITING_INPUT
        return None

    async def _dispatch(self, line: str) -> Any:
        raise NotImplementedError

    def _wrap_unexpected(self, exc: Exception) -> ConsoleError:
        wrapped = OperationError(str(exc) or type(exc).__name__)
        wrapped.__cause__ = exc
        return wrapped

    def _report(self, exc: ConsoleError) -> None:
        format_error(exc, self.console)

    # ------------------------------------------------------------------
    # Built-in handlers
    # ------------------------------------------------------------------

    def show_help(self) -> None:
        self.console.print(self.help_text, highlight=False, markup=False)

    def list_models(self) -> list[EntityInfo]:
        """Print the entity listing; introspection failures give an empty one."""
        try:
            entities = list(self.handle.describe())
        except Exception as exc:
            logger.warning("Model introspection failed: %s", exc)
            try:
                entities = [EntityInfo(name=n, table=n) for n in self.handle.entity_names()]
            except Exception as exc2:
                logger.warning("Could not enumerate models: %s", exc2)
                entities = []
        format_models(entities, self.console)
        return entities

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def _prepare(self) -> None:
        """Hook run once the handle is connected."""

    def _completer(self) -> Optional[Callable[[str, int], Optional[str]]]:
        return None

    def _banner(self) -> None:
        self.console.print(f"[cyan]{self.welcome}[/cyan]")
        self.console.print(
            'Type "help" for a list of commands or "exit" to leave the console.',
            highlight=False,
        )

    def _read(self, prompt: str) -> str:
        if self._input_fn is not None:
            return self._input_fn(prompt)
        return self.console.input(f"[green]{prompt}[/green]")

    def _read_line(self) -> str:
        return self._read(self.config.prompt)


# ---------------------------------------------------------------------------
# Fixed-grammar console
# ---------------------------------------------------------------------------

COMMANDS = ("exit", "help", "models", "create", "read", "update", "delete")

USAGE = {
    "create": "create <model> <data>",
    "read": "read <model>",
    "update": "update <model> <id> <data>",
    "delete": "delete <model> <id>",
}

COMMAND_HELP = """
Available commands:
- exit: Exit the console
- help: Show this help message
- models: List available models
- create <model> <data>: Create a new record (data is a JSON object)
- read <model>: Read all records of a model
- update <model> <id> <data>: Update a record by ID
- delete <model> <id>: Delete a record by ID
"""

UNKNOWN_COMMAND = 'Unknown command. Type "help" for a list of commands.'


def parse_json_object(raw: str) -> dict[str, Any]:
    """Parse a JSON object argument.

    Control characters such as tabs are accepted inside strings and kept
    as typed.

    Raises:
        MalformedInputError: If *raw* is not valid JSON or not an object.
    """
    try:
        data = json.loads(raw, strict=False)
    except json.JSONDecodeError as exc:
        raise MalformedInputError(f"Invalid JSON data: {exc}") from None
    if not isinstance(data, dict):
        raise MalformedInputError(f"Expected a JSON object, got {type(data).__name__}")
    return data


_LEADING_INT = re.compile(r"\s*([+-]?[0-9]+)")


def parse_id(raw: str) -> int | float:
    """Parse the leading decimal digits of a record id.

    ``"12abc"`` gives 12 and ``"1_0"`` gives 1. Input without leading digits
    becomes NaN for the accessor to reject.
    """
    match = _LEADING_INT.match(raw)
    if match is None:
        return math.nan
    return int(match.group(1))


class CommandConsole(BaseConsole):
    """Console speaking the fixed command grammar."""

    help_text = COMMAND_HELP

    async def _dispatch(self, line: str) -> Any:
        parts = line.split(maxsplit=1)
        if not parts:
            return None
        command = parts[0].lower()
        rest = parts[1] if len(parts) > 1 else ""

        if command == "exit":
            await self.exit()
            return None
        if command == "help":
            self.show_help()
            return None
        if command == "models":
            return self.list_models()

        handler = {
            "create": self._create,
            "read": self._read_all,
            "update": self._update,
            "delete": self._delete,
        }.get(command)
        if handler is None:
            self.console.print(UNKNOWN_COMMAND, highlight=False)
            return None

        result = await handler(rest)
        print_result(result, self.console, max_depth=self.config.max_depth)
        return result

    # The JSON argument is the untouched remainder of the line; only the
    # leading words are split off.

    async def _create(self, rest: str) -> Any:
        args = rest.split(maxsplit=1)
        if len(args) < 2:
            raise CommandUsageError(USAGE["create"])
        data = parse_json_object(args[1])
        return await self.handle.accessor(args[0]).create(data)

    async def _read_all(self, rest: str) -> Any:
        args = rest.split()
        if len(args) < 1:
            raise CommandUsageError(USAGE["read"])
        return await self.handle.accessor(args[0]).find_many()

    async def _update(self, rest: str) -> Any:
        args = rest.split(maxsplit=2)
        if len(args) < 3:
            raise CommandUsageError(USAGE["update"])
        record_id = parse_id(args[1])
        data = parse_json_object(args[2])
        return await self.handle.accessor(args[0]).update(record_id, data)

    async def _delete(self, rest: str) -> Any:
        args = rest.split()
        if len(args) < 2:
            raise CommandUsageError(USAGE["delete"])
        return await self.handle.accessor(args[0]).delete(parse_id(args[1]))

    def _completer(self) -> Callable[[str, int], Optional[str]]:
        def words() -> list[str]:
            try:
                names = list(self.handle.entity_names())
            except Exception:
                names = []
            return list(COMMANDS) + names

        return word_completer(words)


# ---------------------------------------------------------------------------
# Free-form console
# ---------------------------------------------------------------------------

EVAL_HELP = """
Evaluate Python against your models. `await` works at the top level.

Models (one per table, also lower-cased):
  await user.find_many({"active": True}, order_by="-id", take=10)
  await user.find_first({"email": "a@b.com"})
  await user.find_unique(1)
  await user.create({"name": "Al"})
  await user.update(1, {"name": "Bo"})
  await user.delete(1)
  await user.count()

Shortcuts:
  create_user(data), all_user()
  first(model, n=1), last(model, n=1), where(model, filter), count(model)
  pp(value)       pretty-print a value
  table(records)  print records as a table
  reload()        re-reflect the schema and rebuild these bindings
  db, session     the data handle and its SQLAlchemy session

Console:
  help()    show this help
  models()  list models and their fields
  exit      leave the console
"""

EXIT_DIRECTIVES = frozenset({"exit", "exit()", "quit", "quit()"})

_COMPILE_FLAGS = ast.PyCF_ALLOW_TOP_LEVEL_AWAIT


class EvalConsole(BaseConsole):
    """Console evaluating free-form Python snippets against the context.

    The evaluation namespace holds the context bindings plus whatever the
    operator defines. ``reload()`` swaps the context bindings in place and
    leaves operator-defined names alone.
    """

    help_text = EVAL_HELP
    continuation_prompt = "... "

    def __init__(self, handle: DataHandle, **kwargs: Any) -> None:
        super().__init__(handle, **kwargs)
        self.namespace: dict[str, Any] = {"__name__": "__console__", "__builtins__": builtins}
        self.context: dict[str, Any] = {}
        self._command_compiler = codeop.CommandCompiler()
        self._command_compiler.compiler.flags |= _COMPILE_FLAGS

    def _prepare(self) -> None:
        self.install_context(self.build_context())

    def build_context(self) -> dict[str, Any]:
        return build_context(
            self.handle,
            console=self.console,
            max_depth=self.config.max_depth,
            on_reload=self.install_context,
        )

    def install_context(self, context: dict[str, Any]) -> None:
        """Replace the previous context bindings with *context*."""
        for name in self.context:
            self.namespace.pop(name, None)
        self.namespace.update(context)
        self.context = context

    async def _dispatch(self, line: str) -> Any:
        snippet = line.strip()
        if not snippet:
            return None

        compact = "".join(snippet.split())
        if compact in EXIT_DIRECTIVES:
            await self.exit()
            return None
        if compact == "help()":
            self.show_help()
            return None
        if compact == "models()":
            return self.list_models()

        value = await self.evaluate(line)
        if value is not None and value is not MISSING:
            self.namespace["_"] = value
            print_result(value, self.console, label=None, max_depth=self.config.max_depth)
        return value

    async def evaluate(self, snippet: str, namespace: Optional[dict[str, Any]] = None) -> Any:
        """Evaluate *snippet* and settle the result.

        Expressions return their value, with awaitables resolved.
        Statements return MISSING.

        Raises:
            EvaluationError: If the snippet does not compile or raises.
            ConsoleError: Subclasses raised inside the snippet pass through.
        """
        namespace = self.namespace if namespace is None else namespace
        code, is_expression = self._compile(snippet)
        try:
            result = eval(code, namespace)
            if code.co_flags & inspect.CO_COROUTINE:
                result = await result
            if not is_expression:
                return MISSING
            while inspect.isawaitable(result):
                result = await result
            return result
        except ConsoleError:
            raise
        except Exception as exc:
            raise EvaluationError(f"{type(exc).__name__}: {exc}", exc) from exc

    def _compile(self, snippet: str) -> tuple[Any, bool]:
        source = snippet.strip("\n")
        try:
            return compile(source, "<console>", "eval", flags=_COMPILE_FLAGS, dont_inherit=True), True
        except SyntaxError:
            pass
        try:
            return compile(source, "<console>", "exec", flags=_COMPILE_FLAGS, dont_inherit=True), False
        except SyntaxError as exc:
            raise EvaluationError(f"SyntaxError: {exc.msg} (line {exc.lineno})", exc) from None

    def _is_incomplete(self, source: str) -> bool:
        try:
            return self._command_compiler(source, "<console>", "single") is None
        except (SyntaxError, ValueError, OverflowError):
            return False

    def _read_line(self) -> str:
        lines = [self._read(self.config.prompt)]
        while lines[0].strip() and self._is_incomplete("\n".join(lines)):
            lines.append(self._read(self.continuation_prompt))
        return "\n".join(lines)

    def _wrap_unexpected(self, exc: Exception) -> ConsoleError:
        return EvaluationError(f"{type(exc).__name__}: {exc}", exc)

    def _report(self, exc: ConsoleError) -> None:
        format_error(exc, self.console)
        original = exc.original if isinstance(exc, EvaluationError) else exc.__cause__
        if self.config.show_traceback and original is not None:
            self.console.print(
                Traceback.from_exception(type(original), original, original.__traceback__)
            )

    def _completer(self) -> Callable[[str, int], Optional[str]]:
        return rlcompleter.Completer(self.namespace).complete

