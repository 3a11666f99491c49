"""
Restore workflow for backup artifacts.

Downloads a chosen artifact from the remote store and restores it with
drop-and-recreate semantics: other sessions on the target database are
terminated, then pg_restore runs with --clean --if-exists so a pre-existing
schema is replaced.
"""

import os
import logging
import subprocess
from datetime import date
from typing import List, Optional

from dbdrive.config import BackupConfig
from dbdrive.models import is_artifact_name
from .retention import extract_date
from .storage import StorageError


logger = logging.getLogger(__name__)


class RestoreError(Exception):
    """Raised when a restore cannot be completed."""
    pass


# Runs with -v dbname=<name>; psql quotes :'dbname' as a literal
TERMINATE_SESSIONS_SQL = """
SELECT pg_terminate_backend(pg_stat_activity.pid)
FROM pg_stat_activity
WHERE pg_stat_activity.datname = :'dbname'
AND pid <> pg_backend_pid();
"""

DATABASE_EXISTS_SQL = "SELECT 1 FROM pg_database WHERE datname = :'dbname';\n"


def list_backups(storage, prefix: str, db_name: str) -> List[str]:
    """
    Artifact names for db_name under prefix, oldest first.

    Raises:
        StorageError: If the listing fails
    """
    names = [name for name in storage.list(prefix) if is_artifact_name(name, db_name)]
    return sorted(names, key=lambda name: (extract_date(name) or date.min, name))


class Restorer:
    """Restores a local custom-format archive into the configured database."""

    def __init__(self, config: BackupConfig):
        self.config = config

    def _connection_args(self) -> list:
        return ['-h', self.config.db_host, '-p', str(self.config.db_port), '-U', self.config.db_user]

    def _run(self, command: list, input_text: Optional[str] = None) -> subprocess.CompletedProcess:
        try:
            completed = subprocess.run(
                command,
                input=input_text,
                env=self.config.pg_env(),
                capture_output=True,
                text=True,
                timeout=self.config.dump_timeout,
            )
        except FileNotFoundError:
            raise RestoreError(f"{command[0]} not found; install the PostgreSQL client tools")
        except subprocess.TimeoutExpired:
            raise RestoreError(f"{command[0]} timed out after {self.config.dump_timeout}s")
        except OSError as e:
            raise RestoreError(f"Could not run {command[0]}: {e}")

        if completed.returncode != 0:
            detail = (completed.stderr or '').strip() or f"exit code {completed.returncode}"
            raise RestoreError(f"{command[0]} failed: {detail}")
        return completed

    def _psql(self, sql: str) -> str:
        command = [
            'psql', *self._connection_args(),
            '-d', 'postgres',
            '-v', 'ON_ERROR_STOP=1',
            '-v', f'dbname={self.config.db_name}',
            '-tA', '-f', '-',
        ]
        return self._run(command, input_text=sql).stdout

    def database_exists(self) -> bool:
        return self._psql(DATABASE_EXISTS_SQL).strip() == '1'

    def create_database(self):
        logger.info(f"Creating database {self.config.db_name}")
        self._run(['createdb', *self._connection_args(), self.config.db_name])

    def terminate_sessions(self):
        logger.info(f"Disconnecting existing sessions from {self.config.db_name}")
        self._psql(TERMINATE_SESSIONS_SQL)

    def restore(self, local_path: str):
        """
        Restore a local archive into the configured database.

        Raises:
            RestoreError: If the archive is missing or any client tool fails
        """
        if not os.path.exists(local_path):
            raise RestoreError(f"Backup file not found: {local_path}")

        if self.database_exists():
            self.terminate_sessions()
        else:
            self.create_database()

        logger.info(f"Restoring {os.path.basename(local_path)} into {self.config.db_name}")
        self._run([
            'pg_restore', *self._connection_args(),
            '-d', self.config.db_name,
            '--clean', '--if-exists',
            local_path,
        ])
        logger.info("Database restored successfully")


def restore_from_remote(config: BackupConfig, storage, name: str, monthly: bool = False,
                        restorer: Optional[Restorer] = None):
    """
    Download one remote artifact and restore it.

    The downloaded copy is removed afterwards, whether or not the restore
    succeeded.

    Args:
        config: Run configuration
        storage: Remote store client
        name: Artifact name to restore
        monthly: Read from the monthly path instead of the daily one
        restorer: Restorer to use (default: Restorer(config))

    Raises:
        RestoreError: If the download or the restore fails
    """
    prefix = config.monthly_backup_dir if monthly else config.backup_dir
    restorer = restorer or Restorer(config)

    logger.info(f"Downloading backup: {prefix}/{name}")
    try:
        local_path = storage.download(prefix, name, config.temp_dir)
    except StorageError as e:
        raise RestoreError(f"Failed to download backup file: {e}")

    try:
        restorer.restore(local_path)
    finally:
        try:
            os.remove(local_path)
        except OSError as e:
            logger.warning(f"Failed to delete downloaded copy {local_path}: {e}")
