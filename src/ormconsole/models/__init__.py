"""Data-transfer and configuration models for ormconsole."""

from ormconsole.models.config import ConsoleConfig, ConsoleMode
from ormconsole.models.schema import EntityInfo, FieldInfo

__all__ = ["ConsoleConfig", "ConsoleMode", "EntityInfo", "FieldInfo"]
