"""
Dump producer for backup operations.

Runs pg_dump in custom archive format (-Fc), which pg_restore can restore
selectively, writing one file per database and calendar day.
"""

import os
import logging
import subprocess
from datetime import date
from typing import Optional

from dbdrive.config import BackupConfig
from dbdrive.models import Artifact, artifact_name


logger = logging.getLogger(__name__)


class DumpError(Exception):
    """Raised when the database dump fails."""
    pass


class DumpProducer:
    """
    Produces a point-in-time logical backup of the configured database.

    The artifact is written to {temp_dir}/{db}_{YYYY-MM-DD}.pgdump. A second
    run on the same day overwrites the file of the first.
    """

    def __init__(self, executable: str = 'pg_dump'):
        self.executable = executable

    def build_command(self, config: BackupConfig, output_path: str) -> list:
        return [
            self.executable,
            '-h', config.db_host,
            '-p', str(config.db_port),
            '-U', config.db_user,
            '-d', config.db_name,
            '-Fc',
            '-f', output_path,
        ]

    def produce(self, config: BackupConfig, today: Optional[date] = None) -> Artifact:
        """
        Dump the database to a local artifact.

        Args:
            config: Run configuration
            today: Date embedded in the artifact name (default: today)

        Returns:
            Artifact with local_path and size set

        Raises:
            DumpError: If pg_dump is missing, exits non-zero or times out
        """
        today = today or date.today()
        name = artifact_name(config.db_name, today)

        try:
            os.makedirs(config.temp_dir, exist_ok=True)
        except OSError as e:
            raise DumpError(f"Cannot create staging directory {config.temp_dir}: {e}")

        local_path = os.path.join(config.temp_dir, name)
        command = self.build_command(config, local_path)

        try:
            completed = subprocess.run(
                command,
                env=config.pg_env(),
                capture_output=True,
                text=True,
                timeout=config.dump_timeout,
            )
        except FileNotFoundError:
            raise DumpError(f"{self.executable} not found; install the PostgreSQL client tools")
        except subprocess.TimeoutExpired:
            raise DumpError(f"{self.executable} timed out after {config.dump_timeout}s")
        except OSError as e:
            raise DumpError(f"Could not run {self.executable}: {e}")

        if completed.returncode != 0:
            detail = (completed.stderr or '').strip() or f"exit code {completed.returncode}"
            raise DumpError(f"Error creating backup of database {config.db_name}: {detail}")

        try:
            size = os.path.getsize(local_path)
        except OSError as e:
            raise DumpError(f"Dump finished but {local_path} is not readable: {e}")

        return Artifact(name=name, created_on=today, local_path=local_path, size_bytes=size)
