"""Identity Resolver — Stable document identifiers for domain objects."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from indexsync.core.accessor import read_path
from indexsync.exceptions import IdentityError

if TYPE_CHECKING:
    from indexsync.drivers.base import PersistenceDriver


class IdentityResolver:
    """Derives the document id of a persisted object.

    By default the driver's primary key is used. A configured ``path``
    (``_id.path``) reads the id from a property instead, for natural keys or
    when the index is addressed by something other than the primary key.

    Args:
        driver: Persistence driver that knows the object's primary key.
        path: Optional dotted property path to read the id from.
    """

    def __init__(self, driver: PersistenceDriver, path: str | None = None) -> None:
        self._driver = driver
        self._path = path

    @property
    def path(self) -> str | None:
        return self._path

    def resolve(self, source: Any) -> str:
        """Resolve the document id of ``source``.

        Raises:
            IdentityError: If the value is missing or empty, for example a
                database-generated key on an object that was not inserted yet.
        """
        if self._path:
            try:
                value = read_path(source, self._path)
            except AttributeError as e:
                raise IdentityError(f"Cannot read identity path '{self._path}': {e}") from e
        else:
            value = self._driver.resolve_identity(source)
        return stringify_identity(value)


def stringify_identity(value: Any) -> str:
    """Turn a key value into a document id.

    Composite keys (tuples) are joined with ``-``.
    """
    if value is None:
        raise IdentityError("Identity is not assigned")
    if isinstance(value, (tuple, list)):
        if not value or any(part is None for part in value):
            raise IdentityError(f"Composite identity is incomplete: {value!r}")
        return "-".join(stringify_identity(part) for part in value)
    identity = str(value).strip()
    if not identity:
        raise IdentityError("Identity is empty")
    return identity
