"""SQLAlchemy driver — Mapped objects, sessions and flush events.

``attach_session`` is the usual way in::

    async with manager.unit_of_work() as uow:
        detach = attach_session(session, uow)
        session.add(article)
        session.commit()
        await uow.on_after_flush()
        detach()

Changes are recorded in ``before_flush``; ``after_flush_postexec`` runs the
pre-flush step once database-generated keys are assigned, so snapshots are
taken while the session still holds the flushed state. Indexing itself
happens after commit, in ``on_after_flush``. A rollback discards everything
collected for the session.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING, Any

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from indexsync.drivers.base import PersistenceDriver
from indexsync.models.operation import OperationKind

if TYPE_CHECKING:
    from indexsync.core.manager import UnitOfWork

logger = logging.getLogger(__name__)


class OrmDriver(PersistenceDriver):
    """Driver for SQLAlchemy mapped objects."""

    @property
    def name(self) -> str:
        return "orm"

    def resolve_identity(self, obj: Any) -> Any:
        """Primary key of ``obj``.

        Reads the identifier attribute first, then falls back to the identity
        key SQLAlchemy tracks for persistent and deleted instances (which also
        covers composite keys).
        """
        value = getattr(obj, self.identifier, None)
        if value is not None:
            return value
        state = inspect(obj, raiseerr=False)
        if state is None or state.identity is None:
            return None
        identity = state.identity
        return identity[0] if len(identity) == 1 else identity

    def iterate_managed_objects(self, unit: Session) -> Iterator[tuple[OperationKind, Any]]:
        for obj in list(unit.new):
            yield OperationKind.INSERT, obj
        for obj in list(unit.dirty):
            if unit.is_modified(obj):
                yield OperationKind.UPDATE, obj
        for obj in list(unit.deleted):
            yield OperationKind.DELETE, obj


def attach_session(session: Session, unit_of_work: UnitOfWork) -> Callable[[], None]:
    """Route a session's flush events into ``unit_of_work``.

    Args:
        session: The SQLAlchemy session (or ``sessionmaker``/``Session`` class).
        unit_of_work: Dispatcher receiving the lifecycle events.

    Returns:
        A callable that removes the event hooks again.
    """
    driver = OrmDriver()

    def before_flush(session: Session, flush_context: Any, instances: Any) -> None:
        unit_of_work.observe(driver.iterate_managed_objects(session))

    def after_flush_postexec(session: Session, flush_context: Any) -> None:
        unit_of_work.on_before_flush()

    def after_rollback(session: Session) -> None:
        logger.debug("Session rolled back, discarding pending index operations")
        unit_of_work.discard()

    hooks: list[tuple[str, Callable[..., None]]] = [
        ("before_flush", before_flush),
        ("after_flush_postexec", after_flush_postexec),
        ("after_rollback", after_rollback),
    ]
    for name, fn in hooks:
        event.listen(session, name, fn)

    def detach() -> None:
        for name, fn in hooks:
            if event.contains(session, name, fn):
                event.remove(session, name, fn)

    return detach
