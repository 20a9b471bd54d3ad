"""Settlement management CLI.

Creates and drops database schemas, and runs the maintenance sweeps that an
external scheduler (cron, a k8s CronJob) is expected to trigger.

Usage:
    python src/manage.py setup-db              # Create all tables
    python src/manage.py drop-db               # Drop all tables
    python src/manage.py expire-reservations   # Expire overdue stock holds
    python src/manage.py escalate-disputes     # Escalate disputes past the vendor SLA
    python src/manage.py retry-refunds         # Re-process failed refunds
"""

import argparse
import sys


def _domain():
    from settlement.domain import settlement
    from settlement.utils.logging import configure_logging

    configure_logging()
    settlement.init()
    return settlement


def setup_databases():
    """Create database schemas for every configured provider."""
    from settlement.utils.db import setup_db

    domain = _domain()
    print("Creating settlement database schema...")
    providers = setup_db(domain)
    print(f"  schema ready on: {', '.join(providers) or 'no SQL providers'}")
    print("Done.")


def drop_databases():
    """Drop database schemas for every configured provider."""
    from settlement.utils.db import drop_db

    domain = _domain()
    print("Dropping settlement database schema...")
    providers = drop_db(domain)
    print(f"  schema dropped on: {', '.join(providers) or 'no SQL providers'}")
    print("Done.")


def expire_reservations():
    from settlement.inventory.expiry import expire_stale_reservations

    domain = _domain()
    with domain.domain_context():
        expired = expire_stale_reservations()
    print(f"Expired {expired} reservation(s).")


def escalate_disputes(sla_hours=None):
    from settlement.disputes.escalation import escalate_overdue_disputes

    domain = _domain()
    with domain.domain_context():
        escalated = escalate_overdue_disputes(sla_hours=sla_hours)
    print(f"Escalated {escalated} dispute(s).")


def retry_refunds(max_attempts=5):
    from settlement.payments.refunding import retry_failed_refunds

    domain = _domain()
    with domain.domain_context():
        summary = retry_failed_refunds(max_attempts=max_attempts)
    print(
        f"Retried {summary['retried']} refund(s): {summary['completed']} completed, {summary['failed']} failed."
    )


def main():
    parser = argparse.ArgumentParser(description="Settlement management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")
    subparsers.add_parser("expire-reservations", help="Expire stock reservations past their TTL")

    escalate_parser = subparsers.add_parser("escalate-disputes", help="Escalate disputes past the vendor SLA")
    escalate_parser.add_argument("--sla-hours", type=int, default=None, help="Override DISPUTE_SLA_HOURS")

    retry_parser = subparsers.add_parser("retry-refunds", help="Re-process failed refunds")
    retry_parser.add_argument("--max-attempts", type=int, default=5, help="Skip refunds tried this many times")

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_databases()
    elif args.command == "drop-db":
        drop_databases()
    elif args.command == "expire-reservations":
        expire_reservations()
    elif args.command == "escalate-disputes":
        escalate_disputes(args.sla_hours)
    elif args.command == "retry-refunds":
        retry_refunds(args.max_attempts)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
