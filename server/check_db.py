#!/usr/bin/env python3
"""Print a summary of the data directory: users, balances, trades, schedule.

Usage: python check_db.py [DATA_DIR]
"""
import sys

import ledger
import settings
import shows
from jsondb import JsonStore


def summarize(store):
    users = store.list_users()
    pending = ledger.pending_trades(store)
    schedule = shows.load_schedule(store)
    return {
        'users': len(users),
        'coinsInCirculation': sum((u.get('profcoinBalance') or 0) + (u.get('profcoinEscrow') or 0) for u in users),
        'pendingTrades': len(pending),
        'shows': len(schedule['shows']),
        'freeSlots': settings.SLOTS_PER_DAY - len(schedule['shows']),
        'stories': len(store.read(store.news_path, {'stories': []}).get('stories', [])),
    }


def main(data_dir=None):
    store = JsonStore(data_dir or settings.DATA_DIR)
    users = store.list_users()

    print("=" * 60)
    print("PROF DATA SUMMARY")
    print("=" * 60)
    print(f"\nData dir: {store.root}")

    print(f"\nUsers ({len(users)}):")
    print("-" * 60)
    for u in sorted(users, key=lambda u: -(u.get('profcoinBalance') or 0)):
        balance = ledger.get_balance(u)
        print(f"{u['email']:35} {balance['balance']:>10} coins  escrow {balance['escrow']}")

    pending = ledger.pending_trades(store)
    print(f"\nPending trades: {len(pending)}")
    for t in pending:
        print(f"  {t['id']}: {t['sender']} -> {t['recipient']} ({t['amount']})")

    print("\nSchedule:")
    for slot in shows.build_slots(shows.load_schedule(store)):
        show = slot['show']
        label = f"{show['title']} ({show['owner']})" if show else '-'
        print(f"  {slot['hour']:02d}:00  {label}")

    summary = summarize(store)
    print(f"\nCoins in circulation: {summary['coinsInCirculation']}")
    print(f"Stories: {summary['stories']}")
    return summary


if __name__ == '__main__':
    main(sys.argv[1] if len(sys.argv) > 1 else None)
