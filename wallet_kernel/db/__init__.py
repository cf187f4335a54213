"""Database layer - engine, base classes, types, and immutability."""

from wallet_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from wallet_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from wallet_kernel.db.types import Currency, Money, Rate, round_money, to_amount

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Money",
    "Rate",
    "Currency",
    "round_money",
    "to_amount",
]
