"""Configuration models for ormconsole.

ConsoleConfig holds per-session settings: where the database lives, which
grammar the console speaks, and how results and history are handled.
"""

from __future__ import annotations

import enum
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "ORMCONSOLE_"

DEFAULT_HISTORY_FILE = Path("~/.ormconsole_history")


class ConsoleMode(str, enum.Enum):
    """Grammar spoken by the console."""

    COMMAND = "command"
    EVAL = "eval"

    def __str__(self) -> str:
        return self.value


class ConsoleConfig(BaseModel):
    """Per-session console configuration."""

    database_url: Optional[str] = None
    models_module: Optional[str] = None  # "package.module:Base"
    mode: ConsoleMode = ConsoleMode.EVAL
    prompt: str = "orm> "
    history_file: Optional[Path] = Field(DEFAULT_HISTORY_FILE, validate_default=True)  # None = no history
    history_length: int = 1000
    max_depth: int = 6
    show_traceback: bool = False
    echo_sql: bool = False

    @field_validator("history_file")
    @classmethod
    def _expand_history_file(cls, v: Optional[Path]) -> Optional[Path]:
        if v is None:
            return None
        return Path(v).expanduser()

    @field_validator("max_depth", "history_length")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be >= 1, got {v}")
        return v

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None, **overrides) -> ConsoleConfig:
        """Build a config from ``ORMCONSOLE_*`` environment variables.

        ``DATABASE_URL`` is honored when ``ORMCONSOLE_DATABASE_URL`` is unset.
        Keyword overrides that are not None win over the environment.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}

        url = env.get(f"{ENV_PREFIX}DATABASE_URL") or env.get("DATABASE_URL")
        if url:
            values["database_url"] = url
        if env.get(f"{ENV_PREFIX}MODELS"):
            values["models_module"] = env[f"{ENV_PREFIX}MODELS"]
        if env.get(f"{ENV_PREFIX}MODE"):
            values["mode"] = env[f"{ENV_PREFIX}MODE"].lower()
        if env.get(f"{ENV_PREFIX}HISTORY_FILE"):
            values["history_file"] = env[f"{ENV_PREFIX}HISTORY_FILE"]
        if env.get(f"{ENV_PREFIX}TRACEBACK"):
            values["show_traceback"] = env[f"{ENV_PREFIX}TRACEBACK"].lower() in ("1", "true", "yes")

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
