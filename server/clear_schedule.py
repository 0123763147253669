#!/usr/bin/env python3
"""Clear the radio schedule (with backup).

Creates a backup named shows.json.reset.bak.<timestamp> and replaces the
schedule with an empty one. Pending swap requests go with it.

Usage: python clear_schedule.py [DATA_DIR]
"""
import datetime
import os
import shutil
import sys

import settings
import shows
from jsondb import JsonStore


def main(data_dir=None):
    store = JsonStore(data_dir or settings.DATA_DIR)
    path = store.shows_path
    if not os.path.exists(path):
        print('shows.json not found, nothing to clear')
        return None
    ts = datetime.datetime.now().strftime('%Y%m%d%H%M%S')
    bak = path + f'.reset.bak.{ts}'
    shutil.copy2(path, bak)
    print('Backup saved to', bak)
    shows.save_schedule(store, shows.empty_schedule())
    print('Cleared the schedule in', path)
    return bak


if __name__ == '__main__':
    main(sys.argv[1] if len(sys.argv) > 1 else None)
