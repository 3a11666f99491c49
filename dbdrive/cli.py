"""
Command line entry points.

- dbdrive-backup:   one backup run, no arguments
- dbdrive-restore:  list or restore remote backups
- dbdrive-schedule: run backups on a crontab schedule
"""

import sys
import logging
import argparse

from dbdrive import configure_logging
from dbdrive.config import load_config, ConfigError
from dbdrive.backup.executor import run_backup
from dbdrive.backup.restore import list_backups, restore_from_remote, RestoreError
from dbdrive.backup.storage import create_storage, StorageError


logger = logging.getLogger(__name__)


def _load():
    """Load configuration and set up logging; None if configuration is unusable."""
    configure_logging()
    try:
        config = load_config()
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return None
    configure_logging(config)
    return config


def backup_main() -> int:
    """Run one backup. Returns the process exit code."""
    config = _load()
    if config is None:
        return 1
    return run_backup(config)


def build_restore_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='dbdrive-restore',
        description='Restore the configured database from a remote backup.'
    )
    parser.add_argument('--monthly', action='store_true', help='use the monthly backup directory')
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument('--list', action='store_true', help='list available backups and exit')
    group.add_argument('--latest', action='store_true', help='restore the most recent backup')
    group.add_argument('name', nargs='?', help='backup file name to restore')
    parser.add_argument('--yes', action='store_true', help='do not ask for confirmation')
    return parser


def restore_main(argv=None) -> int:
    """List or restore remote backups. Returns the process exit code."""
    args = build_restore_parser().parse_args(argv)

    config = _load()
    if config is None:
        return 1

    prefix = config.monthly_backup_dir if args.monthly else config.backup_dir

    try:
        storage = create_storage(config)
    except StorageError as e:
        logger.error(f"Remote store is not usable: {e}")
        return 1

    try:
        if args.list or args.latest:
            try:
                backups = list_backups(storage, prefix, config.db_name)
            except StorageError as e:
                logger.error(f"Could not list backups in {prefix}: {e}")
                return 1

            if not backups:
                logger.info(f"No backups found in {prefix}")
                return 0 if args.list else 1

            if args.list:
                for index, name in enumerate(backups, start=1):
                    print(f"{index}) {name}")
                return 0

            name = backups[-1]
        else:
            name = args.name

        if not args.yes:
            print(f"WARNING: This will overwrite the current database ({config.db_name}) with {name}!")
            try:
                answer = input("Are you sure you want to continue? (yes/no): ")
            except EOFError:
                # No terminal (e.g. cron); treat as declined
                answer = ''
            if answer.strip() != 'yes':
                print("Restore canceled.")
                return 0

        try:
            restore_from_remote(config, storage, name, monthly=args.monthly)
        except RestoreError as e:
            logger.error(f"Failed to restore database: {e}")
            return 1
        return 0
    finally:
        storage.cleanup()


def build_schedule_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='dbdrive-schedule',
        description='Run database backups on a crontab schedule.'
    )
    parser.add_argument('--cron', help='crontab expression (default: BACKUP_SCHEDULE)')
    parser.add_argument('--once', action='store_true', help='run one backup now and exit')
    return parser


def schedule_main(argv=None) -> int:
    """Run the backup scheduler. Returns the process exit code."""
    args = build_schedule_parser().parse_args(argv)

    config = _load()
    if config is None:
        return 1

    if args.once:
        return run_backup(config)

    from dbdrive.scheduler import init_scheduler, start_scheduler, stop_scheduler

    try:
        init_scheduler(config, args.cron)
    except ValueError as e:
        logger.error(f"Invalid schedule: {e}")
        return 1

    try:
        start_scheduler()
    except (KeyboardInterrupt, SystemExit):
        stop_scheduler()
    return 0


if __name__ == '__main__':
    sys.exit(backup_main())
