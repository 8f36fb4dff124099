"""Generated model classes for a console session.

Mapped classes come from one of two places:

1. **Reflection** (default): ``sqlalchemy.ext.automap`` inspects the live
   database and generates one class per table.
2. **A declarative models module**: ``"package.module:Base"`` names an
   application's own ``DeclarativeBase``; its registry supplies the classes.
"""

from __future__ import annotations

import importlib
import logging
from typing import Any

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.automap import automap_base

from ormconsole.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def reflect_models(engine: Engine) -> dict[str, type]:
    """Reflect the database behind *engine* into mapped classes.

    Tables without a primary key cannot be mapped and are skipped by
    automap.

    Returns:
        Mapping of entity name (the table name) to mapped class.

    Raises:
        ConfigurationError: If the database cannot be reached or reflected.
    """
    Base = automap_base()
    try:
        Base.prepare(autoload_with=engine)
    except SQLAlchemyError as exc:
        raise ConfigurationError(f"Could not reflect database schema: {exc}") from exc

    models = {cls.__name__: cls for cls in Base.classes}
    logger.debug("Reflected %d model(s): %s", len(models), ", ".join(sorted(models)))
    return models


def load_declarative_base(target: str) -> Any:
    """Import a declarative base named by ``"package.module:Base"``.

    Raises:
        ConfigurationError: If the module or attribute cannot be located.
    """
    module_name, _, attr = target.partition(":")
    attr = attr or "Base"
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Cannot import models module {module_name!r}: {exc}") from exc
    try:
        base = getattr(module, attr)
    except AttributeError:
        raise ConfigurationError(
            f"Models module {module_name!r} has no attribute {attr!r}"
        ) from None
    if not hasattr(base, "registry"):
        raise ConfigurationError(f"{target!r} is not a SQLAlchemy declarative base")
    return base


def models_from_base(base: Any) -> dict[str, type]:
    """Collect the mapped classes registered on a declarative base."""
    models: dict[str, type] = {}
    for mapper in base.registry.mappers:
        cls = mapper.class_
        models[cls.__name__] = cls
    return models
