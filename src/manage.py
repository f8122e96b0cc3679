"""Storefront management CLI.

Usage:
    python src/manage.py setup-db                  # Create all tables
    python src/manage.py drop-db                   # Drop all tables
    python src/manage.py sweep                     # Release expired reservations once
    python src/manage.py sweep --loop              # ... and keep doing it every SWEEP_INTERVAL_SECONDS
    python src/manage.py sweep --every 60          # ... or every 60 seconds
    python src/manage.py reconcile pi_123          # Recover an order from the processor
"""

import argparse
import sys
import time

import structlog

logger = structlog.get_logger(__name__)


def _domain():
    from storefront.domain import storefront

    storefront.init()
    return storefront


def setup_database():
    from storefront.utils.db import setup_db

    domain = _domain()
    print("Creating storefront database schema...")
    setup_db(domain)
    print("Done.")


def drop_database():
    from storefront.utils.db import drop_db

    domain = _domain()
    print("Dropping storefront database schema...")
    drop_db(domain)
    print("Done.")


def sweep(ttl_minutes=None, every=None):
    """Run the reservation sweeper once, or on a fixed interval until interrupted."""
    from storefront.inventory.sweeper import ReservationSweeper

    domain = _domain()
    sweeper = ReservationSweeper()
    while True:
        with domain.domain_context():
            report = sweeper.sweep(ttl_minutes=ttl_minutes)
        print(f"Released {report.cleaned_reservations} reservation(s): {report.freed_inventory}")
        if not every:
            return
        time.sleep(every)


def reconcile(payment_intent_id):
    from storefront.payments.confirmation import PaymentConfirmationHandler

    domain = _domain()
    with domain.domain_context():
        outcome = PaymentConfirmationHandler().reconcile(payment_intent_id)
    print(f"{payment_intent_id}: {outcome.status} (order {outcome.order_id})")


def sweep_interval(args):
    """Seconds between sweeps, or None to sweep once."""
    if args.every:
        return args.every
    if args.loop:
        from storefront.config import get_settings

        return get_settings().sweep_interval_seconds
    return None


def main():
    parser = argparse.ArgumentParser(description="Storefront management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")

    sweep_parser = subparsers.add_parser("sweep", help="Release expired stock reservations")
    sweep_parser.add_argument(
        "--ttl-minutes",
        type=int,
        default=None,
        help="Reservation age that counts as expired (default: RESERVATION_TTL_MINUTES)",
    )
    sweep_parser.add_argument(
        "--every",
        type=int,
        default=None,
        metavar="SECONDS",
        help="Keep sweeping on this interval instead of running once",
    )
    sweep_parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep sweeping every SWEEP_INTERVAL_SECONDS instead of running once",
    )

    reconcile_parser = subparsers.add_parser("reconcile", help="Create a missing order for a succeeded payment")
    reconcile_parser.add_argument("payment_intent_id")

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    elif args.command == "sweep":
        try:
            sweep(ttl_minutes=args.ttl_minutes, every=sweep_interval(args))
        except KeyboardInterrupt:
            logger.info("Sweeper stopped")
    elif args.command == "reconcile":
        reconcile(args.payment_intent_id)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
