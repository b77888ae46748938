"""Command line triggers for the enforcement workflows.

Usage:
    dotmac-enforcement suspension-check [--grace-days N]
    dotmac-enforcement restoration-check
    dotmac-enforcement reconcile [--gateway tripay|paystack] [--window-hours N]
    dotmac-enforcement suspend <customer_id> [--reason TEXT] [--method NAME]
    dotmac-enforcement restore <customer_id> [--reason TEXT]
    dotmac-enforcement status <customer_id>
    dotmac-enforcement resend-payment-notification <payment_id|invoice_id|invoice_number>
    dotmac-enforcement generate-key
"""

from __future__ import annotations

import argparse
import sys
from datetime import timedelta

from dotenv import load_dotenv

from app.db import SessionLocal
from app.logging import configure_logging
from app.services import enforcement_runs
from app.services.credential_crypto import generate_encryption_key
from app.services.enforcement_errors import EnforcementError
from app.services.reconciliation import resend_payment_notification
from app.services.suspension import SuspensionController


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dotmac-enforcement",
        description="Run billing enforcement and payment reconciliation",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    commands = parser.add_subparsers(dest="command", required=True)

    check = commands.add_parser("suspension-check", help="Suspend customers with overdue invoices")
    check.add_argument("--grace-days", type=int, default=None)

    commands.add_parser("restoration-check", help="Restore suspended customers with nothing unpaid")

    reconcile = commands.add_parser("reconcile", help="Poll the gateway for pending transactions")
    reconcile.add_argument("--gateway", choices=["tripay", "paystack"], default=None)
    reconcile.add_argument("--window-hours", type=int, default=None)

    suspend = commands.add_parser("suspend", help="Suspend one customer now")
    suspend.add_argument("customer_id")
    suspend.add_argument("--reason", default="Manual suspension")
    suspend.add_argument("--method", default=None)

    restore = commands.add_parser("restore", help="Restore one customer now")
    restore.add_argument("customer_id")
    restore.add_argument("--reason", default="Manual restore")

    status = commands.add_parser("status", help="Show device-side suspension state")
    status.add_argument("customer_id")

    resend = commands.add_parser(
        "resend-payment-notification",
        help="Notify a recorded payment again (payment id, invoice id or invoice number)",
    )
    resend.add_argument("identifier")

    commands.add_parser("generate-key", help="Print a new credential encryption key")
    return parser


def _print_model(model) -> None:
    print(model.model_dump_json(indent=2))


def _run_workflow(args) -> int:
    if args.command == "suspension-check":
        status, report = enforcement_runs.run_exclusive(
            "suspension", enforcement_runs.run_suspension_check, args.grace_days
        )
    elif args.command == "restoration-check":
        status, report = enforcement_runs.run_exclusive(
            "restoration", enforcement_runs.run_restoration_check
        )
    else:
        window = timedelta(hours=args.window_hours) if args.window_hours else None
        kwargs = {"gateway": args.gateway} if args.gateway else {}
        status, report = enforcement_runs.run_exclusive(
            "reconciliation", enforcement_runs.run_payment_reconciliation, window, **kwargs
        )
    if report is None:
        print(f"error: workflow {status.replace('_', ' ')}", file=sys.stderr)
        return 1
    _print_model(report)
    return 1 if status == "error" else 0


def _run_customer_action(args) -> int:
    db = SessionLocal()
    try:
        if args.command == "resend-payment-notification":
            result = resend_payment_notification(db, args.identifier)
            _print_model(result)
            return 0 if result.notified else 1
        controller = SuspensionController(db)
        if args.command == "suspend":
            result = controller.suspend_customer(args.customer_id, args.reason, method=args.method)
        elif args.command == "restore":
            result = controller.restore_customer(args.customer_id, args.reason)
        else:
            _print_model(controller.suspension_status(args.customer_id))
            return 0
    except (LookupError, ValueError, EnforcementError) as exc:
        db.rollback()
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        db.close()
    _print_model(result)
    return 0 if result.success else 1


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "generate-key":
        print(generate_encryption_key())
        raise SystemExit(0)
    if args.command in {"suspension-check", "restoration-check", "reconcile"}:
        raise SystemExit(_run_workflow(args))
    raise SystemExit(_run_customer_action(args))


if __name__ == "__main__":
    main()
