#!/usr/bin/env python3
"""
Operator reconciliation for payment webhook events.

Usage:
    # List events applied with warnings or failed
    python reconcile.py --list

    # Re-apply a stored event after fixing the missing data
    python reconcile.py --replay evt_123

    # Pending transactions older than 24 hours
    python reconcile.py --stale-hours 24

    # Write unresolved events to a CSV file
    python reconcile.py --export unresolved.csv
"""

import argparse
import sys
import os

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from paddock.core.logging import setup_logging
from paddock.db.session import SessionLocal
from paddock.services.metrics_service import trigger_metrics_recompute
from paddock.services.reconciliation_service import (
    generate_unresolved_csv,
    list_stale_pending_transactions,
    list_unresolved_events,
    replay_event,
)


def list_events(limit: int, session_factory=SessionLocal):
    """Print unresolved event records"""
    db = session_factory()
    try:
        records = list_unresolved_events(db, limit=limit)
        if not records:
            print("✅ No unresolved events")
            return True

        print(f"⚠️  {len(records)} unresolved event(s):")
        for record in records:
            print(f"   {record.event_id}  {record.event_type}  {record.outcome}  {record.error_kind or '-'}")
            if record.error_message:
                print(f"      {record.error_message}")
        return True
    finally:
        db.close()


def replay(event_id: str, session_factory=SessionLocal):
    """Replay one stored event and recompute metrics for the affected users"""
    db = session_factory()
    try:
        ack = replay_event(event_id, db)
        if ack is None:
            print(f"❌ Event not found: {event_id}")
            return False

        outcome = ack.outcome.value if ack.outcome else "none"
        if ack.status_code != 200:
            print(f"❌ Replay of {event_id} returned {ack.status_code} ({outcome}), try again later")
            return False

        print(f"✅ Replayed {event_id}: {outcome}")
        for user_id in ack.metrics_user_ids:
            trigger_metrics_recompute(user_id, session_factory)
        return True
    finally:
        db.close()


def show_stale_pending(hours: int, limit: int, session_factory=SessionLocal):
    """Print pending transactions that never completed"""
    db = session_factory()
    try:
        transactions = list_stale_pending_transactions(db, hours, limit)
        if not transactions:
            print(f"✅ No pending transactions older than {hours}h")
            return True

        print(f"⚠️  {len(transactions)} pending transaction(s) older than {hours}h:")
        for t in transactions:
            print(
                f"   {t.stripe_payment_intent_id}  {t.transaction_type}  "
                f"{t.total_amount_cents} {t.currency}  payer={t.payer_id}  created={t.created_at}"
            )
        return True
    finally:
        db.close()


def export_csv(output_path: str, session_factory=SessionLocal):
    """Write unresolved events to a CSV file"""
    db = session_factory()
    try:
        csv_text, count = generate_unresolved_csv(db)
        with open(output_path, "w", newline="") as f:
            f.write(csv_text)
        print(f"✅ Wrote {count} unresolved event(s) to {output_path}")
        return True
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(
        description='Reconcile payment webhook events',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python %(prog)s --list
  python %(prog)s --replay evt_1NqX2b
  python %(prog)s --stale-hours 48
  python %(prog)s --export unresolved.csv
        """
    )

    parser.add_argument('--list', action='store_true', help='List events applied with warnings or failed')
    parser.add_argument('--replay', metavar='EVENT_ID', help='Re-apply a stored event')
    parser.add_argument('--stale-hours', type=int, metavar='N', help='List pending transactions older than N hours')
    parser.add_argument('--export', metavar='PATH', help='Write unresolved events to a CSV file')
    parser.add_argument('--limit', type=int, default=100, help='Maximum rows to show (default: 100)')

    args = parser.parse_args()

    actions = sum([
        args.list,
        bool(args.replay),
        args.stale_hours is not None,
        bool(args.export),
    ])

    if actions == 0:
        print("❌ Error: Must specify one action (--list, --replay, --stale-hours or --export)")
        parser.print_help()
        sys.exit(1)

    if actions > 1:
        print("❌ Error: Can only specify one action at a time")
        sys.exit(1)

    setup_logging()

    if args.list:
        success = list_events(args.limit)
    elif args.replay:
        success = replay(args.replay)
    elif args.stale_hours is not None:
        success = show_stale_pending(args.stale_hours, args.limit)
    else:
        success = export_csv(args.export)

    sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
