"""
Backup module for dbdrive.

This module handles the core backup functionality including:
- Database dumps (pg_dump custom format)
- Remote storage (rclone, S3, SFTP and local directories)
- Retention policy decisions
- Email notification
- Execution orchestration
- Restore from a remote copy
"""

from .executor import BackupExecutor, run_backup
from .dump import DumpProducer, DumpError
from .storage import RcloneStorage, S3Storage, SFTPStorage, LocalStorage, StorageError, create_storage
from .retention import select_expired
from .notify import Notifier, NotifyError, create_notifier
from .restore import Restorer, RestoreError, restore_from_remote

__all__ = [
    'BackupExecutor',
    'run_backup',
    'DumpProducer',
    'DumpError',
    'RcloneStorage',
    'S3Storage',
    'SFTPStorage',
    'LocalStorage',
    'StorageError',
    'create_storage',
    'select_expired',
    'Notifier',
    'NotifyError',
    'create_notifier',
    'Restorer',
    'RestoreError',
    'restore_from_remote'
]
