"""Persistence drivers — What the pipeline needs to know about a persistence layer.

Built-in drivers:
  - orm: SQLAlchemy mapped objects and sessions
  - mongodb: MongoDB documents and change-stream events

Implement ``PersistenceDriver`` to support another persistence layer.
"""

from __future__ import annotations

import importlib
from typing import Any

from indexsync.drivers.base import PersistenceDriver
from indexsync.exceptions import ConfigurationError

_DRIVERS: dict[str, str] = {
    "orm": "indexsync.drivers.orm:OrmDriver",
    "mongodb": "indexsync.drivers.mongodb:MongoDriver",
}


def get_driver(name: str, identifier: str = "id", **options: Any) -> PersistenceDriver:
    """Create the driver registered under ``name``.

    ``options`` are passed to the driver constructor (e.g. ``collection`` for
    the mongodb driver).

    Driver modules are imported on demand so that only the persistence
    library actually in use has to be installed.

    Raises:
        ConfigurationError: If the driver is unknown or its library is missing.
    """
    if name not in _DRIVERS:
        raise ConfigurationError(f"The driver {name} is not supported. Please choose one of {list(_DRIVERS)}")

    module_name, class_name = _DRIVERS[name].split(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(
            f"The '{name}' driver needs an optional dependency. Install with: pip install indexsync[{name}]"
        ) from e
    driver_class: type[PersistenceDriver] = getattr(module, class_name)
    return driver_class(identifier=identifier, **options)


__all__ = ["PersistenceDriver", "get_driver"]
