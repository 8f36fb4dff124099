"""Result rendering for console output.

Uses rich for colorized terminal output. Rich auto-detects TTY and
degrades gracefully when piped (no ANSI codes), so color is presentation
only: :func:`render_text` gives the same layout as plain text.

Layout rules, applied recursively::

    [                       {
      1,                      id: 1,
      "two"                   name: "Al",
    ]                         created: 2026-01-05T10:00:00
                            }
"""

from __future__ import annotations

import json
from collections import deque
from collections.abc import Mapping
from datetime import date, datetime, time
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.pretty import pretty_repr
from rich.table import Table
from rich.text import Text
from sqlalchemy.engine import Row

from ormconsole.client import to_record

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ormconsole.models.schema import EntityInfo

DEFAULT_MAX_DEPTH = 6
INDENT = "  "

STYLES = {
    "missing": "dim italic",
    "none": "bold magenta",
    "bool": "italic yellow",
    "number": "cyan",
    "string": "green",
    "date": "magenta",
    "key": "bold",
    "class": "bold blue",
    "punct": "dim",
    "marker": "dim red",
}


class _Missing:
    """Marker for an absent value, distinct from None."""

    _instance: Optional[_Missing] = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "undefined"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()

_SEQUENCE_TYPES = (list, tuple, set, frozenset, deque)


def get_console(file: Any = None) -> Console:
    """Create a Console, optionally writing to a file-like object (tests)."""
    if file is not None:
        return Console(file=file, width=100, highlight=False)
    return Console(highlight=False)


def render(value: Any, *, max_depth: int = DEFAULT_MAX_DEPTH) -> Text:
    """Render *value* as styled rich Text.

    Total: terminates and returns non-empty text for every value,
    including cyclic and deeply nested structures.
    """
    out = Text()
    _render_into(out, value, 0, max_depth, set())
    return out


def render_text(value: Any, *, max_depth: int = DEFAULT_MAX_DEPTH) -> str:
    """Render *value* without styling."""
    return render(value, max_depth=max_depth).plain


def _render_into(out: Text, value: Any, level: int, depth_left: int, seen: set[int]) -> None:
    if value is MISSING:
        out.append("undefined", style=STYLES["missing"])
    elif value is None:
        out.append("None", style=STYLES["none"])
    elif isinstance(value, bool):
        out.append(str(value), style=STYLES["bool"])
    elif isinstance(value, (int, float, Decimal)):
        out.append(str(value), style=STYLES["number"])
    elif isinstance(value, str):
        out.append(json.dumps(value, ensure_ascii=False), style=STYLES["string"])
    elif isinstance(value, (datetime, date, time)):
        out.append(value.isoformat(), style=STYLES["date"])
    elif isinstance(value, Row):
        _render_mapping(out, value._asdict(), level, depth_left, seen, id(value))
    elif _is_mapped_instance(value):
        out.append(f"{type(value).__name__} ", style=STYLES["class"])
        _render_mapping(out, to_record(value), level, depth_left, seen, id(value))
    elif isinstance(value, Mapping):
        _render_mapping(out, value, level, depth_left, seen, id(value))
    elif isinstance(value, _SEQUENCE_TYPES):
        _render_sequence(out, value, level, depth_left, seen)
    else:
        out.append(_inspect(value, depth_left))


def _render_sequence(out: Text, value: Any, level: int, depth_left: int, seen: set[int]) -> None:
    key = id(value)
    if key in seen:
        out.append("[Circular]", style=STYLES["marker"])
        return
    items = list(value)
    if isinstance(value, (set, frozenset)):
        try:
            items = sorted(items)
        except TypeError:
            pass
    if not items:
        out.append("[]", style=STYLES["punct"])
        return
    if depth_left <= 0:
        out.append("[...]", style=STYLES["marker"])
        return

    seen.add(key)
    inner = INDENT * (level + 1)
    out.append("[", style=STYLES["punct"])
    for i, item in enumerate(items):
        out.append("\n" + inner)
        _render_into(out, item, level + 1, depth_left - 1, seen)
        if i < len(items) - 1:
            out.append(",", style=STYLES["punct"])
    out.append("\n" + INDENT * level)
    out.append("]", style=STYLES["punct"])
    seen.discard(key)


def _render_mapping(
    out: Text,
    value: Mapping[Any, Any],
    level: int,
    depth_left: int,
    seen: set[int],
    key: int,
) -> None:
    if key in seen:
        out.append("[Circular]", style=STYLES["marker"])
        return
    if not value:
        out.append("{}", style=STYLES["punct"])
        return
    if depth_left <= 0:
        out.append("{...}", style=STYLES["marker"])
        return

    seen.add(key)
    inner = INDENT * (level + 1)
    out.append("{", style=STYLES["punct"])
    items = list(value.items())
    for i, (k, v) in enumerate(items):
        out.append("\n" + inner)
        out.append(k if isinstance(k, str) else repr(k), style=STYLES["key"])
        out.append(": ", style=STYLES["punct"])
        _render_into(out, v, level + 1, depth_left - 1, seen)
        if i < len(items) - 1:
            out.append(",", style=STYLES["punct"])
    out.append("\n" + INDENT * level)
    out.append("}", style=STYLES["punct"])
    seen.discard(key)


def _is_mapped_instance(value: Any) -> bool:
    # Mapped classes carry __mapper__; inspecting anything else may have side
    # effects (an Engine inspection opens a connection).
    return not isinstance(value, type) and getattr(type(value), "__mapper__", None) is not None


def _inspect(value: Any, depth_left: int) -> str:
    try:
        return pretty_repr(value, max_depth=max(depth_left, 1))
    except Exception:
        return f"<{type(value).__name__} object>"


# ---------------------------------------------------------------------------
# Console output helpers
# ---------------------------------------------------------------------------


def print_result(value: Any, console: Console, *, label: Optional[str] = "Result:", max_depth: int = DEFAULT_MAX_DEPTH) -> None:
    """Print a rendered value, optionally preceded by a green label."""
    if label:
        console.print(f"[green]{label}[/green]")
    console.print(render(value, max_depth=max_depth))


def format_error(error: BaseException | str, console: Console) -> None:
    """Display an error as ``<Kind>: <message>``."""
    if isinstance(error, BaseException):
        kind = type(error).__name__
        message = str(error) or kind
    else:
        kind, message = "Error", error
    console.print(f"[red]{kind}:[/red] {escape(message)}", highlight=False)


def format_models(entities: list[EntityInfo], console: Console) -> None:
    """Display the entity listing with field metadata."""
    if not entities:
        console.print("[dim]No models available.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("Model", style="cyan")
    table.add_column("Table", style="dim")
    table.add_column("Fields")

    for entity in entities:
        parts = []
        for field in entity.fields:
            marker = "*" if field.required else ""
            pk = " [yellow]pk[/yellow]" if field.primary_key else ""
            parts.append(f"{escape(field.name)}{marker}: [dim]{escape(field.type)}[/dim]{pk}")
        table.add_row(entity.name, entity.table, ", ".join(parts))

    console.print(table)
    console.print("[dim]* required[/dim]")


def format_records(records: Iterable[Mapping[str, Any]], console: Console) -> None:
    """Display a list of records as a table, one column per field."""
    rows = [r._asdict() if isinstance(r, Row) else r for r in records]
    rows = [to_record(r) if _is_mapped_instance(r) else r for r in rows]
    if not rows:
        console.print("[dim]No records.[/dim]")
        return

    columns: list[str] = []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    for column in columns:
        table.add_column(str(column))
    for row in rows:
        table.add_row(*(render(row.get(c, MISSING), max_depth=1) for c in columns))

    console.print(table)
    console.print(f"[dim]({len(rows)} record(s))[/dim]")
