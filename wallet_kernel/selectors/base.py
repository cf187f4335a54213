"""
Module: wallet_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    the DTOs in domain/.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors never add, delete, flush or commit.
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances.
    - Entity loads refresh from the database: services write through Core
      UPDATEs that bypass the identity map.
"""

from abc import ABC
from decimal import Decimal
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from wallet_kernel.db.base import Base
from wallet_kernel.db.types import round_money

ModelType = TypeVar("ModelType", bound=Base)

# Aggregates come back as floats on SQLite; Numeric(38, 9) bounds the scale.
_AGGREGATE_PLACES = 9


def to_decimal(value) -> Decimal:
    """Normalise a SUM/column value to a Decimal."""
    if value is None:
        return Decimal("0")
    return round_money(Decimal(str(value)), _AGGREGATE_PLACES)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs.  The caller owns the session and its transaction.
    """

    def __init__(self, session: Session):
        self.session = session

    def _get(self, model: type[ModelType], ident):
        return self.session.get(model, ident, populate_existing=True)

    def _fresh(self, stmt):
        """Execute an entity select, overwriting stale identity-map state."""
        return self.session.execute(stmt.execution_options(populate_existing=True))
