"""ormconsole: an interactive console for inspecting and editing database records.

Reflects a database with SQLAlchemy, exposes one accessor per table, and
drives it from a fixed command grammar or free-form Python with top-level
``await``.
"""

from ormconsole._version import __version__

# Session entry points
from ormconsole.bootstrap import create_console, get_registered_handle, register_handle
from ormconsole.console import BaseConsole, CommandConsole, ConsoleState, EvalConsole

# Data access
from ormconsole.client import DataHandle, ResourceAccessor

# Context and rendering
from ormconsole.context import build_context
from ormconsole.formatting import MISSING, render, render_text

# Configuration and introspection models
from ormconsole.models.config import ConsoleConfig, ConsoleMode
from ormconsole.models.schema import EntityInfo, FieldInfo

# Exceptions
from ormconsole.exceptions import (
    CommandUsageError,
    ConfigurationError,
    ConsoleError,
    EvaluationError,
    MalformedInputError,
    OperationError,
    UnknownModelError,
)

__all__ = [
    "__version__",
    "create_console",
    "get_registered_handle",
    "register_handle",
    "BaseConsole",
    "CommandConsole",
    "ConsoleState",
    "EvalConsole",
    "DataHandle",
    "ResourceAccessor",
    "build_context",
    "MISSING",
    "render",
    "render_text",
    "ConsoleConfig",
    "ConsoleMode",
    "EntityInfo",
    "FieldInfo",
    "CommandUsageError",
    "ConfigurationError",
    "ConsoleError",
    "EvaluationError",
    "MalformedInputError",
    "OperationError",
    "UnknownModelError",
]
