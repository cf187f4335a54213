"""
Module: wallet_kernel.db.triggers
Responsibility: Installing and verifying the PostgreSQL triggers that protect
    the ledger (Layer 2 of 2; db/immutability.py is Layer 1).
Architecture position: Kernel > DB.  MUST NOT import from models/,
    services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - Completed ledger_transactions rows: no UPDATE, no DELETE.
    - ledger_accounts rows: no DELETE; owner_type/owner_id/currency never
      change; CLOSED accounts never change status again.
    - Cached account balance always equals total_credits - total_debits.

Failure modes:
    - PostgreSQL RAISE EXCEPTION on violation (surfaces as
      InternalError/IntegrityError through SQLAlchemy).

Audit relevance:
    Catches raw SQL, bulk statements and direct psql access that bypass the
    ORM listeners.
"""

from sqlalchemy import text
from sqlalchemy.engine import Engine

LEDGER_TRANSACTION_SQL = """
CREATE OR REPLACE FUNCTION wallet_ledger_transaction_immutable()
RETURNS TRIGGER AS $$
BEGIN
    IF TG_OP = 'DELETE' THEN
        IF OLD.status = 'completed' THEN
            RAISE EXCEPTION 'IMMUTABILITY_VIOLATION: completed ledger transaction % cannot be deleted', OLD.id;
        END IF;
        RETURN OLD;
    END IF;

    IF OLD.status = 'completed' AND (
        NEW.account_id IS DISTINCT FROM OLD.account_id OR
        NEW.amount IS DISTINCT FROM OLD.amount OR
        NEW.direction IS DISTINCT FROM OLD.direction OR
        NEW.type IS DISTINCT FROM OLD.type OR
        NEW.status IS DISTINCT FROM OLD.status OR
        NEW.balance_after IS DISTINCT FROM OLD.balance_after OR
        NEW.reversal_of_id IS DISTINCT FROM OLD.reversal_of_id OR
        NEW.description IS DISTINCT FROM OLD.description OR
        NEW.related_entity_type IS DISTINCT FROM OLD.related_entity_type OR
        NEW.related_entity_id IS DISTINCT FROM OLD.related_entity_id
    ) THEN
        RAISE EXCEPTION 'IMMUTABILITY_VIOLATION: completed ledger transaction % cannot be modified', OLD.id;
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS trg_ledger_transaction_immutability_update ON ledger_transactions;
CREATE TRIGGER trg_ledger_transaction_immutability_update
    BEFORE UPDATE ON ledger_transactions
    FOR EACH ROW EXECUTE FUNCTION wallet_ledger_transaction_immutable();

DROP TRIGGER IF EXISTS trg_ledger_transaction_immutability_delete ON ledger_transactions;
CREATE TRIGGER trg_ledger_transaction_immutability_delete
    BEFORE DELETE ON ledger_transactions
    FOR EACH ROW EXECUTE FUNCTION wallet_ledger_transaction_immutable();
"""

LEDGER_ACCOUNT_SQL = """
CREATE OR REPLACE FUNCTION wallet_ledger_account_guard()
RETURNS TRIGGER AS $$
BEGIN
    IF TG_OP = 'DELETE' THEN
        RAISE EXCEPTION 'IMMUTABILITY_VIOLATION: ledger account % cannot be deleted', OLD.id;
    END IF;

    IF NEW.owner_type IS DISTINCT FROM OLD.owner_type OR
       NEW.owner_id IS DISTINCT FROM OLD.owner_id OR
       NEW.currency IS DISTINCT FROM OLD.currency THEN
        RAISE EXCEPTION 'IMMUTABILITY_VIOLATION: owner fields of ledger account % are immutable', OLD.id;
    END IF;

    IF OLD.status = 'closed' AND NEW.status IS DISTINCT FROM OLD.status THEN
        RAISE EXCEPTION 'IMMUTABILITY_VIOLATION: ledger account % is closed', OLD.id;
    END IF;

    IF NEW.balance <> NEW.total_credits - NEW.total_debits THEN
        RAISE EXCEPTION 'BALANCE_INVARIANT: ledger account % balance diverges from totals', OLD.id;
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS trg_ledger_account_guard_update ON ledger_accounts;
CREATE TRIGGER trg_ledger_account_guard_update
    BEFORE UPDATE ON ledger_accounts
    FOR EACH ROW EXECUTE FUNCTION wallet_ledger_account_guard();

DROP TRIGGER IF EXISTS trg_ledger_account_guard_delete ON ledger_accounts;
CREATE TRIGGER trg_ledger_account_guard_delete
    BEFORE DELETE ON ledger_accounts
    FOR EACH ROW EXECUTE FUNCTION wallet_ledger_account_guard();
"""

DROP_SQL = """
DROP TRIGGER IF EXISTS trg_ledger_transaction_immutability_update ON ledger_transactions;
DROP TRIGGER IF EXISTS trg_ledger_transaction_immutability_delete ON ledger_transactions;
DROP TRIGGER IF EXISTS trg_ledger_account_guard_update ON ledger_accounts;
DROP TRIGGER IF EXISTS trg_ledger_account_guard_delete ON ledger_accounts;
DROP FUNCTION IF EXISTS wallet_ledger_transaction_immutable();
DROP FUNCTION IF EXISTS wallet_ledger_account_guard();
"""

ALL_TRIGGER_NAMES = [
    "trg_ledger_transaction_immutability_update",
    "trg_ledger_transaction_immutability_delete",
    "trg_ledger_account_guard_update",
    "trg_ledger_account_guard_delete",
]


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install the ledger triggers (CREATE OR REPLACE, idempotent).

    Preconditions: Tables exist and the engine points at PostgreSQL.
    """
    with engine.connect() as conn:
        conn.execute(text(LEDGER_TRANSACTION_SQL))
        conn.execute(text(LEDGER_ACCOUNT_SQL))
        conn.commit()


def uninstall_immutability_triggers(engine: Engine) -> None:
    """
    Remove the ledger triggers.

    WARNING: Only for migrations and test teardown.  Re-install immediately.
    """
    with engine.connect() as conn:
        conn.execute(text(DROP_SQL))
        conn.commit()


def get_installed_triggers(engine: Engine) -> list[str]:
    """List the wallet triggers currently present in pg_trigger."""
    with engine.connect() as conn:
        result = conn.execute(
            text(
                "SELECT tgname FROM pg_trigger "
                "WHERE tgname = ANY(:names) ORDER BY tgname"
            ),
            {"names": ALL_TRIGGER_NAMES},
        )
        return [row[0] for row in result]


def triggers_installed(engine: Engine) -> bool:
    """True iff every trigger in ALL_TRIGGER_NAMES is installed."""
    return len(get_installed_triggers(engine)) == len(ALL_TRIGGER_NAMES)
