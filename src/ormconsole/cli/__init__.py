"""ormconsole CLI -- launch an interactive console against a database.

Loaded via the ``ormconsole`` entry point defined in pyproject.toml, or
``python -m ormconsole``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from ormconsole._version import __version__

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

START_FAILURE = "Failed to start Console:"


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


@click.command()
@click.option(
    "--url",
    default=None,
    envvar=["ORMCONSOLE_DATABASE_URL", "DATABASE_URL"],
    help="SQLAlchemy database URL.",
)
@click.option(
    "--models",
    "models_module",
    default=None,
    envvar="ORMCONSOLE_MODELS",
    help="Declarative models to use instead of reflection (package.module:Base).",
)
@click.option(
    "--mode",
    default="eval",
    envvar="ORMCONSOLE_MODE",
    type=click.Choice(["command", "eval"], case_sensitive=False),
    help="Console grammar: fixed commands or free-form Python.",
)
@click.option(
    "--history-file",
    default=None,
    envvar="ORMCONSOLE_HISTORY_FILE",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Where to keep line history.",
)
@click.option("--no-history", is_flag=True, help="Do not read or write line history.")
@click.option("--traceback", "show_traceback", is_flag=True, help="Show tracebacks for failed snippets.")
@click.option("--echo-sql", is_flag=True, help="Log every SQL statement.")
@click.option(
    "--log-level",
    default="WARNING",
    envvar="ORMCONSOLE_LOG_LEVEL",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Logging verbosity.",
)
@click.version_option(__version__, prog_name="ormconsole")
def main(
    url: str | None,
    models_module: str | None,
    mode: str,
    history_file: Path | None,
    no_history: bool,
    show_traceback: bool,
    echo_sql: bool,
    log_level: str,
) -> None:
    """Inspect and edit database records interactively."""
    from ormconsole.bootstrap import create_console, get_registered_handle
    from ormconsole.exceptions import ConfigurationError
    from ormconsole.formatting import format_error
    from ormconsole.models.config import ConsoleConfig

    _configure_logging(log_level)
    err = Console(stderr=True)
    try:
        options: dict[str, object] = {
            "database_url": url,
            "models_module": models_module,
            "mode": mode.lower(),
            "show_traceback": show_traceback,
            "echo_sql": echo_sql,
        }
        if history_file is not None:
            options["history_file"] = history_file
        config = ConsoleConfig(**{k: v for k, v in options.items() if v is not None})
        if no_history:
            config = config.model_copy(update={"history_file": None})

        console = create_console(get_registered_handle(), config=config)
    except SystemExit:
        raise
    except Exception as e:
        _start_failure(err, e)

    try:
        code = console.start()
    except ConfigurationError as e:
        # Raised only while connecting, before the first prompt
        _start_failure(err, e)
    except Exception as e:
        format_error(e, err)
        raise SystemExit(1) from None
    raise SystemExit(code)


def _start_failure(err: Console, error: Exception) -> NoReturn:
    err.print(f"[red]{START_FAILURE}[/red] {escape(str(error))}", highlight=False, soft_wrap=True)
    raise SystemExit(1) from None
