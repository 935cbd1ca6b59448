#!/usr/bin/env python3
"""Recompute attendees_count and reserved_slots from the registrations collection.

Heals counters left behind by a crash between a registration write and its
counter update. Safe to run multiple times.

Usage (inside backend container or venv, from backend/):
  python -m scripts.reconcile_attendee_counts --dry-run
  python -m scripts.reconcile_attendee_counts --event-id 65f0c0ffee0000000000abcd

Environment:
  MONGO_URI / MONGO_DB are read through eventhub.settings
"""
import argparse
import asyncio

from eventhub import db as db_mod
from eventhub.logging_config import configure_logging
from eventhub.services.registrations import counters


async def run(event_id: str | None, dry_run: bool) -> int:
    await db_mod.connect()
    try:
        if event_id:
            if dry_run:
                repairs = [await counters.measure_counters(event_id)]
            else:
                repairs = [await counters.recompute_attendees_count(event_id)]
        else:
            repairs = await counters.recompute_all(dry_run=dry_run)
    finally:
        await db_mod.close()

    drifted = [r for r in repairs if r.drifted]
    for r in drifted:
        print(f"{r.event_id}: attendees {r.previous_attendees_count} -> {r.attendees_count}, "
              f"reserved {r.previous_reserved_slots} -> {r.reserved_slots}")
    verb = 'would fix' if dry_run else 'fixed'
    print(f"Checked {len(repairs)} event(s), {verb} {len(drifted)}")
    return len(drifted)


def main():
    parser = argparse.ArgumentParser(description='Recompute event attendee counters from registrations')
    parser.add_argument('--event-id', help='Only recompute this event')
    parser.add_argument('--dry-run', action='store_true', help='Report drift without writing')
    args = parser.parse_args()
    configure_logging()
    asyncio.run(run(args.event_id, args.dry_run))


if __name__ == '__main__':
    main()
