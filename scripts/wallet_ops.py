#!/usr/bin/env python3
"""
Operational commands for the wallet kernel.

  init-db     Create tables (and PostgreSQL immutability triggers).
  verify      Recompute every account balance from the transaction log and
              report mismatches.  Never corrects anything.
  reconcile   Poll Stripe for PROCESSING withdrawals and apply outcomes.
  expire      Cancel PENDING subscription commissions past expiry.

Environment:
  DATABASE_URL       required (postgresql://... or sqlite:///wallet.db)
  STRIPE_SECRET_KEY  required for reconcile
  WALLET_CONFIG      optional path to a wallet config YAML

Usage:
  python3 scripts/wallet_ops.py verify
  python3 scripts/wallet_ops.py reconcile --limit 50
"""

import argparse
import os
import sys
from pathlib import Path
from uuid import UUID, uuid4

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Wallet kernel operations")
    p.add_argument("--db-url", default=os.environ.get("DATABASE_URL"), help="Database URL")
    p.add_argument(
        "--config",
        default=os.environ.get("WALLET_CONFIG"),
        help="Wallet config YAML (default: bundled defaults)",
    )
    p.add_argument(
        "--actor-id",
        type=UUID,
        default=None,
        help="Actor recorded on changes (default: a fresh id per run)",
    )
    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create tables and triggers")
    verify = sub.add_parser("verify", help="Verify balance integrity")
    verify.add_argument("--account", type=UUID, default=None, help="Only this account")
    reconcile = sub.add_parser("reconcile", help="Reconcile PROCESSING withdrawals")
    reconcile.add_argument("--limit", type=int, default=None)
    sub.add_parser("expire", help="Expire stale subscription commissions")
    return p.parse_args(argv)


def _verify(orchestrator, account_id: UUID | None) -> int:
    if account_id is not None:
        ids = [account_id]
    else:
        ids = [a.account_id for a in orchestrator.ledger_selector.list_accounts()]

    bad = 0
    for key in ids:
        result = orchestrator.verify_integrity(key)
        if not result.is_success:
            print(f"  {key}: {result.error_code} {result.message}", file=sys.stderr)
            bad += 1
            continue
        report = result.value
        if report.is_consistent:
            print(f"  OK        {key}  balance={report.stored_balance}")
        else:
            bad += 1
            print(
                f"  MISMATCH  {key}  stored={report.stored_balance} "
                f"computed={report.computed_balance} diff={report.difference}"
            )
    print(f"\n  {len(ids)} account(s) checked, {bad} problem(s)")
    return 1 if bad else 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    if not args.db_url:
        print("ERROR: DATABASE_URL is not set (or pass --db-url)", file=sys.stderr)
        return 2

    from wallet_config import get_active_config
    from wallet_kernel.db.engine import create_tables, get_session, init_engine_from_url
    from wallet_kernel.db.immutability import register_immutability_listeners
    from wallet_kernel.services.wallet_orchestrator import WalletOrchestrator

    init_engine_from_url(args.db_url)
    register_immutability_listeners()
    if args.command == "init-db":
        create_tables(install_triggers=True)
        print("  Tables created.")
        return 0

    config = get_active_config(args.config)
    actor_id = args.actor_id or uuid4()

    rail = None
    if args.command == "reconcile":
        api_key = os.environ.get("STRIPE_SECRET_KEY")
        if not api_key:
            print("ERROR: STRIPE_SECRET_KEY is not set", file=sys.stderr)
            return 2
        from wallet_kernel.adapters.stripe_connect import StripeConnectRail

        rail = StripeConnectRail.from_settings(config.payouts, api_key)

    session = get_session()
    try:
        orchestrator = WalletOrchestrator(session, config=config, rail=rail)
        if args.command == "verify":
            return _verify(orchestrator, args.account)

        if args.command == "reconcile":
            result = orchestrator.reconcile_processing(args.limit, actor_id)
        else:
            result = orchestrator.expire_commissions(actor_id)

        if not result.is_success:
            print(f"ERROR: {result.error_code}: {result.message}", file=sys.stderr)
            return 1
        if args.command == "reconcile":
            s = result.value
            print(
                f"  examined={s.examined} paid={s.paid} failed={s.failed} "
                f"pending={s.pending} conflicts={s.conflicts} unknown={s.unknown}"
            )
            return 1 if s.conflicts else 0
        print(f"  {len(result.value)} commission(s) expired")
        return 0
    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
