"""Introspection models describing the entities behind a DataHandle.

Not ORM models -- used for data transfer only (the ``models`` listing).
"""

from __future__ import annotations

from pydantic import BaseModel


class FieldInfo(BaseModel):
    """A single column of an entity."""

    name: str
    type: str
    required: bool = False
    primary_key: bool = False


class EntityInfo(BaseModel):
    """An entity (mapped table) and its fields."""

    name: str
    table: str
    fields: list[FieldInfo] = []

    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]
