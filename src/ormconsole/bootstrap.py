"""Session bootstrap -- resolve a DataHandle and hand it to a console."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from ormconsole.client import DataHandle
from ormconsole.console import BaseConsole, CommandConsole, EvalConsole
from ormconsole.models.config import ConsoleConfig, ConsoleMode

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

_registered_handle: Optional[DataHandle] = None


def register_handle(handle: Optional[DataHandle]) -> None:
    """Register a process-wide handle for the CLI to reuse (None clears it)."""
    global _registered_handle
    _registered_handle = handle


def get_registered_handle() -> Optional[DataHandle]:
    return _registered_handle


def create_console(
    handle: Optional[DataHandle] = None,
    *,
    config: Optional[ConsoleConfig] = None,
    mode: ConsoleMode | str | None = None,
    output: Any = None,
    input_fn: Optional[Callable[[str], str]] = None,
) -> BaseConsole:
    """Create a console for *handle*, constructing a default handle if omitted.

    The handle is not connected here; the console connects it on start.

    Raises:
        ConfigurationError: If no handle was given and a default one cannot
            be constructed (no database URL, unimportable models module).
    """
    config = config or ConsoleConfig.from_env()
    if mode is not None:
        config = config.model_copy(update={"mode": ConsoleMode(mode)})

    if handle is None:
        handle = DataHandle.from_config(config)
        logger.debug("Constructed default handle %r", handle)
    else:
        logger.debug("Adopting handle %r", handle)

    console_cls = CommandConsole if config.mode is ConsoleMode.COMMAND else EvalConsole
    return console_cls(handle, config=config, output=output, input_fn=input_fn)
