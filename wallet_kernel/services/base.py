"""
BaseService -- abstract base for all wallet kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer.  Services receive a SQLAlchemy
    ``Session`` and use ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell.  WalletOrchestrator (or a script
    using session_scope()) owns commit/rollback.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction.  Multi-row mutations use SAVEPOINTs (begin_nested) so a
      failed step leaves nothing behind.
"""

from abc import ABC
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from wallet_kernel.db.base import Base
from wallet_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


def coerce_uuid(value: UUID | str | None) -> UUID | None:
    """Parse a caller-supplied id; None when it is not a valid UUID."""
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Does NOT provide read models; those live in
          ``wallet_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()
