#!/usr/bin/env python3
"""Manual backup runner (same as the dbdrive-backup command)"""
import sys
from dbdrive.cli import backup_main

if __name__ == '__main__':
    # Exit code 1 tells cron/systemd the daily backup is missing
    sys.exit(backup_main())
