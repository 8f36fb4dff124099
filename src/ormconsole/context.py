"""Context registry -- the bindings free-form snippets are evaluated against.

:func:`build_context` returns a plain dict; the console merges it into its
evaluation namespace. For every entity ``User`` of the DataHandle it binds:

* ``User`` and ``user`` -- the ResourceAccessor;
* ``create_user(data)`` and ``all_user()`` -- forwarders to ``create`` and
  ``find_many``.

plus helper functions (``first``, ``last``, ``where``, ``count``, ``pp``,
``table``, ``reload``), the handle itself as ``db``, its SQLAlchemy session
as ``session``, and a few general-purpose utilities.

Snippets run with full access to everything here and to Python itself.
The console is meant for a trusted local operator.
"""

from __future__ import annotations

import inspect
import json
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import and_, func, or_, select, text

from ormconsole.client import ResourceAccessor
from ormconsole.exceptions import ConsoleError, OperationError
from ormconsole.formatting import DEFAULT_MAX_DEPTH, format_records, get_console, render

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from rich.console import Console

    from ormconsole.client import DataHandle

logger = logging.getLogger(__name__)

# Console directives; never shadowed by a binding.
RESERVED_NAMES = frozenset({"exit", "help", "models"})

UTILITIES: dict[str, Any] = {
    "json": json,
    "datetime": datetime,
    "date": date,
    "timedelta": timedelta,
    "Decimal": Decimal,
    "select": select,
    "func": func,
    "text": text,
    "and_": and_,
    "or_": or_,
}


def build_context(
    handle: DataHandle,
    *,
    console: Optional[Console] = None,
    max_depth: int = DEFAULT_MAX_DEPTH,
    on_reload: Optional[Callable[[dict[str, Any]], None]] = None,
) -> dict[str, Any]:
    """Build the binding environment for *handle*.

    Re-running it produces a fresh dict with the same binding set; callers
    replace their previous bindings with it rather than merging.

    Args:
        handle: Connected DataHandle.
        console: Where ``pp``/``table``/``reload`` print.
        max_depth: Nesting depth for ``pp``.
        on_reload: Called with the rebuilt context when ``reload()`` runs.
    """
    console = console or get_console()
    context: dict[str, Any] = dict(UTILITIES)
    context.update(_helpers(handle, console, max_depth))
    context["db"] = handle
    try:
        context["session"] = handle.session
    except (AttributeError, ConsoleError):
        logger.debug("No SQLAlchemy session available on %r", handle)

    try:
        names = handle.entity_names()
    except Exception as exc:
        logger.warning("Could not enumerate models: %s", exc)
        names = []

    for name in names:
        _bind_entity(context, handle.accessor(name))

    def reload() -> None:
        """Re-reflect the schema and rebuild these bindings."""
        refresh = getattr(handle, "refresh", None)
        if refresh is not None:
            refresh()
        fresh = build_context(handle, console=console, max_depth=max_depth, on_reload=on_reload)
        if on_reload is not None:
            on_reload(fresh)
        console.print(f"[green]Context reloaded[/green] ({len(fresh)} bindings)")

    context["reload"] = reload
    logger.debug("Built context with %d bindings", len(context))
    return context


def _bind_entity(context: dict[str, Any], acc: ResourceAccessor) -> None:
    lower = acc.name.lower()
    candidates = {
        acc.name: acc,
        lower: acc,
        f"create_{lower}": _creator(acc),
        f"all_{lower}": _lister(acc),
    }
    for name, value in candidates.items():
        if name in RESERVED_NAMES or (name in context and context[name] is not acc):
            logger.warning("Model %r: binding %r collides with an existing binding; skipped", acc.name, name)
            continue
        context[name] = value


def _creator(acc: ResourceAccessor) -> Callable[[Mapping[str, Any]], Any]:
    def create(data: Mapping[str, Any]) -> Any:
        return acc.create(data)

    create.__name__ = f"create_{acc.name.lower()}"
    create.__doc__ = f"Create a {acc.name} record."
    return create


def _lister(acc: ResourceAccessor) -> Callable[[], Any]:
    def find_all() -> Any:
        return acc.find_many()

    find_all.__name__ = f"all_{acc.name.lower()}"
    find_all.__doc__ = f"All {acc.name} records."
    return find_all


def _helpers(handle: DataHandle, console: Console, max_depth: int) -> dict[str, Any]:
    def resolve(model: Any) -> ResourceAccessor:
        if isinstance(model, ResourceAccessor):
            return model
        if isinstance(model, str):
            return handle.accessor(model)
        raise OperationError(f"Expected a model or model name, got {type(model).__name__}")

    async def first(model: Any, n: int = 1) -> Any:
        """First *n* records by primary key (a single record when n == 1)."""
        records = await resolve(model).find_many(take=n)
        if n == 1:
            return records[0] if records else None
        return records

    async def last(model: Any, n: int = 1) -> Any:
        """Last *n* records, newest first (a single record when n == 1)."""
        acc = resolve(model)
        records = await acc.find_many(order_by=[f"-{key}" for key in acc.primary_key], take=n)
        if n == 1:
            return records[0] if records else None
        return records

    async def where(model: Any, filter: Mapping[str, Any]) -> Any:
        """Records whose fields equal the values in *filter*."""
        return await resolve(model).find_many(filter)

    async def count(model: Any, filter: Optional[Mapping[str, Any]] = None) -> int:
        return await resolve(model).count(filter)

    def pp(value: Any) -> Any:
        """Pretty-print a value (awaitables are resolved first)."""
        if inspect.isawaitable(value):
            return _after(value, pp)
        console.print(render(value, max_depth=max_depth))
        return None

    def table(records: Any) -> Any:
        """Print records as a table."""
        if inspect.isawaitable(records):
            return _after(records, table)
        if isinstance(records, dict):
            records = [records]
        format_records(records, console)
        return None

    return {
        "first": first,
        "last": last,
        "where": where,
        "count": count,
        "pp": pp,
        "table": table,
    }


async def _after(awaitable: Any, then: Callable[[Any], Any]) -> Any:
    return then(await awaitable)
