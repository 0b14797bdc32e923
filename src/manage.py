"""Purchase Capture management CLI.

Creates and drops the document tables of every configured SQL database and
runs the reconciliation sweep for purchases stuck between confirm and
capture.

Usage:
    python src/manage.py setup-db     # Create the documents table
    python src/manage.py drop-db      # Drop the documents table
    python src/manage.py reconcile    # Repair stale purchase records
"""

import argparse
import json
import sys


def _sql_stores(databases=None):
    from purchasing.store import get_stores
    from purchasing.store.sql_adapter import SqlDocumentStore

    stores = [store for store in get_stores() if isinstance(store, SqlDocumentStore)]
    if databases:
        stores = [store for store in stores if store.name in databases]
    return stores


def setup_databases(databases=None):
    """Create the documents table in the selected (or all) SQL databases."""
    for store in _sql_stores(databases):
        print(f"Creating documents table in {store.name}...")
        store.setup_db()
        print(f"  {store.name} ready.")
    print("Done.")


def drop_databases(databases=None):
    """Drop the documents table from the selected (or all) SQL databases."""
    for store in _sql_stores(databases):
        print(f"Dropping documents table in {store.name}...")
        store.drop_db()
        print(f"  {store.name} dropped.")
    print("Done.")


def reconcile(grace_minutes=None):
    """Run the reconciliation sweep against every configured database."""
    from purchasing.config import get_settings
    from purchasing.gateway import get_gateway
    from purchasing.purchase.reconciliation import ReconciliationSweep
    from purchasing.store import get_stores
    from purchasing.utils.logging import configure_logging

    configure_logging()
    settings = get_settings()
    if grace_minutes is not None:
        settings = settings.model_copy(update={"reconcile_grace_minutes": grace_minutes})

    results = {}
    for store in get_stores():
        results[store.name] = ReconciliationSweep(store, get_gateway(), settings).run().to_dict()
    print(json.dumps(results, indent=2))
    return results


def main():
    parser = argparse.ArgumentParser(description="Purchase Capture management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    setup_parser = subparsers.add_parser("setup-db", help="Create the documents table")
    setup_parser.add_argument(
        "--database",
        nargs="*",
        help="Specific database URL(s) to set up (default: all configured)",
    )

    drop_parser = subparsers.add_parser("drop-db", help="Drop the documents table")
    drop_parser.add_argument(
        "--database",
        nargs="*",
        help="Specific database URL(s) to drop (default: all configured)",
    )

    reconcile_parser = subparsers.add_parser("reconcile", help="Repair purchases stuck between confirm and capture")
    reconcile_parser.add_argument(
        "--grace-minutes",
        type=int,
        default=None,
        help="Only records untouched for this many minutes (default: configured value)",
    )

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_databases(args.database)
    elif args.command == "drop-db":
        drop_databases(args.database)
    elif args.command == "reconcile":
        reconcile(args.grace_minutes)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
