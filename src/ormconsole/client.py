"""DataHandle -- the generated data-access client a console session drives.

A DataHandle wraps a SQLAlchemy engine and one session, and exposes one
:class:`ResourceAccessor` per mapped entity::

    handle = DataHandle("sqlite:///app.db")
    handle.connect()
    users = await handle.user.find_many({"active": True}, order_by="-id")
    handle.disconnect()

Accessor operations are coroutines so console snippets can ``await`` them.
They run on the calling thread; the suspension point is the data call.

Not thread-safe. Each console session owns its own handle.
"""

from __future__ import annotations

import logging
import math
import os
from datetime import date, datetime, time
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import Integer, func, inspect as sa_inspect, select
from sqlalchemy.exc import SQLAlchemyError

from ormconsole.exceptions import ConfigurationError, OperationError, UnknownModelError
from ormconsole.models.schema import EntityInfo, FieldInfo
from ormconsole.storage.engine import create_console_engine, create_session_factory
from ormconsole.storage.reflection import (
    load_declarative_base,
    models_from_base,
    reflect_models,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from sqlalchemy import Engine
    from sqlalchemy.orm import Session

    from ormconsole.models.config import ConsoleConfig

logger = logging.getLogger(__name__)

Record = dict[str, Any]

_DATE_TYPES = (datetime, date, time)


def _error_message(exc: SQLAlchemyError) -> str:
    """Prefer the driver's message over SQLAlchemy's wrapped form."""
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else str(exc)


def to_record(obj: Any) -> Record:
    """Convert a mapped instance into a plain column-key -> value dict."""
    mapper = sa_inspect(obj).mapper
    return {attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs}


class ResourceAccessor:
    """CRUD operations for one entity of a DataHandle.

    Records go in and out as plain dicts keyed by column attribute name.
    Every failure of the underlying database call surfaces as
    :class:`OperationError`, and the session is rolled back so the next
    operation starts clean.
    """

    def __init__(self, handle: DataHandle, name: str, model: type) -> None:
        self._handle = handle
        self.name = name
        self.model = model
        self._mapper = sa_inspect(model)

    def __repr__(self) -> str:
        return f"<ResourceAccessor {self.name}>"

    @property
    def fields(self) -> list[str]:
        return [attr.key for attr in self._mapper.column_attrs]

    @property
    def primary_key(self) -> list[str]:
        return [self._mapper.get_property_by_column(col).key for col in self._mapper.primary_key]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_many(
        self,
        where: Optional[Mapping[str, Any]] = None,
        *,
        order_by: str | Sequence[str] | None = None,
        take: Optional[int] = None,
        skip: Optional[int] = None,
    ) -> list[Record]:
        """Return records matching *where* (field equality), ordered.

        Args:
            where: Field name -> value. A list/tuple value means ``IN``,
                None means ``IS NULL``.
            order_by: Field name, ``"-field"`` for descending, or a list of
                those. Defaults to primary key ascending.
            take: Maximum number of records.
            skip: Number of records to skip.
        """
        stmt = select(self.model)
        stmt = stmt.where(*self._conditions(where))
        stmt = stmt.order_by(*self._ordering(order_by))
        if skip:
            stmt = stmt.offset(skip)
        if take is not None:
            stmt = stmt.limit(take)
        with self._guard():
            rows = self._session.scalars(stmt).all()
        return [to_record(row) for row in rows]

    async def find_first(
        self,
        where: Optional[Mapping[str, Any]] = None,
        *,
        order_by: str | Sequence[str] | None = None,
    ) -> Optional[Record]:
        records = await self.find_many(where, order_by=order_by, take=1)
        return records[0] if records else None

    async def find_unique(self, id: Any) -> Optional[Record]:
        """Return the record with primary key *id*, or None."""
        obj = self._get(id)
        return to_record(obj) if obj is not None else None

    async def count(self, where: Optional[Mapping[str, Any]] = None) -> int:
        stmt = select(func.count()).select_from(self.model).where(*self._conditions(where))
        with self._guard():
            return self._session.execute(stmt).scalar_one()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, data: Mapping[str, Any]) -> Record:
        """Insert a record built from *data* and return it as stored."""
        values = self._coerce(data)
        obj = self.model(**values)
        with self._guard(write=True):
            self._session.add(obj)
            self._session.commit()
            self._session.refresh(obj)
        return to_record(obj)

    async def update(self, id: Any, data: Mapping[str, Any]) -> Record:
        """Apply *data* to the record with primary key *id*."""
        values = self._coerce(data)
        obj = self._get(id)
        if obj is None:
            raise OperationError(f"Record to update not found: {self.name} id={id!r}")
        with self._guard(write=True):
            for key, value in values.items():
                setattr(obj, key, value)
            self._session.commit()
            self._session.refresh(obj)
        return to_record(obj)

    async def delete(self, id: Any) -> Record:
        """Delete the record with primary key *id* and return it."""
        obj = self._get(id)
        if obj is None:
            raise OperationError(f"Record to delete not found: {self.name} id={id!r}")
        record = to_record(obj)
        with self._guard(write=True):
            self._session.delete(obj)
            self._session.commit()
        return record

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @property
    def _session(self) -> Session:
        return self._handle.session

    def _guard(self, *, write: bool = False) -> _OperationGuard:
        return _OperationGuard(self._session, write=write)

    def _column(self, key: str) -> Any:
        if key not in self._mapper.column_attrs:
            raise OperationError(f"Unknown field {key!r} on {self.name}")
        return getattr(self.model, key)

    def _conditions(self, where: Optional[Mapping[str, Any]]) -> list[Any]:
        if where is None:
            return []
        if not hasattr(where, "items"):
            raise OperationError(f"Filter must be a mapping, got {type(where).__name__}")
        conditions = []
        for key, value in where.items():
            column = self._column(key)
            if value is None:
                conditions.append(column.is_(None))
            elif isinstance(value, (list, tuple, set)):
                conditions.append(column.in_(list(value)))
            else:
                conditions.append(column == value)
        return conditions

    def _ordering(self, order_by: str | Sequence[str] | None) -> list[Any]:
        if order_by is None:
            return [getattr(self.model, key).asc() for key in self.primary_key]
        keys = [order_by] if isinstance(order_by, str) else list(order_by)
        ordering = []
        for key in keys:
            if key.startswith("-"):
                ordering.append(self._column(key[1:]).desc())
            else:
                ordering.append(self._column(key).asc())
        return ordering

    def _coerce(self, data: Mapping[str, Any]) -> dict[str, Any]:
        if not hasattr(data, "items"):
            raise OperationError(f"Record data must be a mapping, got {type(data).__name__}")
        values: dict[str, Any] = {}
        for key, value in data.items():
            self._column(key)
            values[key] = _coerce_value(self._mapper.column_attrs[key].columns[0], value)
        return values

    def _get(self, id: Any) -> Any:
        if isinstance(id, float) and not math.isfinite(id):
            raise OperationError(f"Invalid id for {self.name}: {id!r}")
        if isinstance(id, list):
            id = tuple(id)
        with self._guard():
            return self._session.get(self.model, id)


def _coerce_value(column: Any, value: Any) -> Any:
    """Parse ISO strings for date/time columns; pass everything else through."""
    if not isinstance(value, str):
        return value
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    if python_type not in _DATE_TYPES:
        return value
    try:
        return python_type.fromisoformat(value)
    except ValueError:
        raise OperationError(f"Invalid {python_type.__name__} for {column.key}: {value!r}") from None


class _OperationGuard:
    """Translate SQLAlchemy failures into OperationError, rolling back."""

    def __init__(self, session: Session, *, write: bool) -> None:
        self._session = session
        self._write = write

    def __enter__(self) -> None:
        return None

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        if exc is None:
            return False
        if isinstance(exc, SQLAlchemyError):
            self._session.rollback()
            raise OperationError(_error_message(exc)) from exc
        if self._write and isinstance(exc, Exception):
            self._session.rollback()
        return False


class DataHandle:
    """Capability object for a reflected (or declared) database schema.

    Create via ``DataHandle(url)``, ``DataHandle(engine=...)`` or
    :meth:`DataHandle.from_config`. Nothing touches the database until
    :meth:`connect`.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        engine: Optional[Engine] = None,
        models_module: Optional[str] = None,
        base: Any = None,
        echo: bool = False,
    ) -> None:
        if engine is None and url is None:
            url = os.environ.get("ORMCONSOLE_DATABASE_URL") or os.environ.get("DATABASE_URL")
        if engine is None and not url:
            raise ConfigurationError(
                "No database configured. Set DATABASE_URL or pass a URL."
            )
        if base is None and models_module:
            base = load_declarative_base(models_module)

        self.url = url
        self._engine = engine
        self._owns_engine = engine is None
        self._base = base
        self._echo = echo
        self._session: Optional[Session] = None
        self._accessors: dict[str, ResourceAccessor] = {}

    @classmethod
    def from_config(cls, config: ConsoleConfig) -> DataHandle:
        return cls(
            config.database_url,
            models_module=config.models_module,
            echo=config.echo_sql,
        )

    def __repr__(self) -> str:
        state = "connected" if self.connected else "disconnected"
        return f"<DataHandle {self._display_url()} ({state})>"

    def __getattr__(self, name: str) -> ResourceAccessor:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self.accessor(name)
        except UnknownModelError as exc:
            raise AttributeError(str(exc)) from None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._session is not None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise ConfigurationError("DataHandle is not connected")
        return self._engine

    @property
    def session(self) -> Session:
        if self._session is None:
            raise OperationError("DataHandle is not connected")
        return self._session

    def connect(self) -> None:
        """Open the engine and session and generate the accessors.

        Idempotent.

        Raises:
            ConfigurationError: If the database cannot be reached or its
                schema cannot be reflected.
        """
        if self.connected:
            return
        if self._engine is None:
            try:
                self._engine = create_console_engine(self.url, echo=self._echo)
            except (SQLAlchemyError, ImportError, ValueError) as exc:
                raise ConfigurationError(f"Cannot create engine for {self.url!r}: {exc}") from exc

        try:
            self._accessors = self._build_accessors()
            session = create_session_factory(self._engine)()
            try:
                session.connection()
            except SQLAlchemyError as exc:
                session.close()
                raise ConfigurationError(f"Cannot connect to database: {_error_message(exc)}") from exc
        except Exception:
            self._accessors = {}
            self._release_engine()
            raise
        self._session = session
        logger.info("Connected to %s", self._display_url())

    def _release_engine(self) -> None:
        if self._owns_engine and self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def disconnect(self) -> None:
        """Close the session and dispose of an engine this handle created.

        Idempotent.
        """
        if self._session is None:
            return
        try:
            self._session.close()
        finally:
            self._session = None
            self._accessors = {}
            self._release_engine()
        logger.info("Disconnected from %s", self._display_url())

    def refresh(self) -> None:
        """Regenerate the accessors, re-reflecting the database schema."""
        if not self.connected:
            raise OperationError("DataHandle is not connected")
        self._session.expunge_all()
        self._accessors = self._build_accessors()

    def __enter__(self) -> DataHandle:
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.disconnect()

    # ------------------------------------------------------------------
    # Accessors and introspection
    # ------------------------------------------------------------------

    @property
    def accessors(self) -> dict[str, ResourceAccessor]:
        return dict(self._accessors)

    def accessor(self, name: str) -> ResourceAccessor:
        """Look up an accessor by entity name (case-insensitive fallback).

        Raises:
            UnknownModelError: If no entity has that name.
        """
        accessors = self._accessors
        if name in accessors:
            return accessors[name]
        folded = name.casefold()
        for key, acc in accessors.items():
            if key.casefold() == folded:
                return acc
        raise UnknownModelError(name, sorted(accessors))

    def entity_names(self) -> list[str]:
        if not self.connected:
            raise OperationError("DataHandle is not connected")
        return list(self._accessors)

    def describe(self) -> list[EntityInfo]:
        """Entity names and field metadata (name, type, required flag)."""
        entities = []
        for name, acc in self._accessors.items():
            mapper = sa_inspect(acc.model)
            fields = []
            for attr in mapper.column_attrs:
                column = attr.columns[0]
                fields.append(
                    FieldInfo(
                        name=attr.key,
                        type=_type_name(column),
                        required=_is_required(column),
                        primary_key=bool(column.primary_key),
                    )
                )
            entities.append(EntityInfo(name=name, table=mapper.local_table.name, fields=fields))
        return entities

    def _build_accessors(self) -> dict[str, ResourceAccessor]:
        if self._base is not None:
            models = models_from_base(self._base)
        else:
            models = reflect_models(self._engine)
        return {name: ResourceAccessor(self, name, models[name]) for name in sorted(models)}

    def _display_url(self) -> str:
        if self._engine is not None:
            return self._engine.url.render_as_string(hide_password=True)
        return str(self.url)


def _type_name(column: Any) -> str:
    try:
        return str(column.type)
    except Exception:
        return type(column.type).__name__


def _is_required(column: Any) -> bool:
    if column.nullable or column.default is not None or column.server_default is not None:
        return False
    if column.primary_key and isinstance(column.type, Integer) and column.autoincrement in (True, "auto"):
        return False
    return True
