"""
Backup executor - orchestrates one backup run.

Workflow:
1. Dump the database to a local artifact        (fatal on failure)
2. Upload the artifact to the daily path         (fatal on failure)
3. On the 1st of the month, upload to the monthly path
4. Prune daily copies older than the retention window
5. Send the success notification
6. Remove the local artifact

Fatal failures send a failure notification and end the run with exit code 1.
Every other failure is logged, recorded as a warning and the run continues.
"""

import os
import logging
from datetime import date, datetime
from typing import Callable, Optional, Tuple, Type

from dbdrive.config import BackupConfig
from dbdrive.models import RunResult, RunStatus, StepResult, is_artifact_name, format_size
from .dump import DumpProducer, DumpError
from .storage import StorageError, create_storage
from .retention import select_expired, retention_cutoff
from .notify import NotifyError, create_notifier, render_failure, render_success


logger = logging.getLogger(__name__)


class BackupExecutor:
    """
    Sequences one backup run over injected collaborators.

    Args:
        config: Run configuration
        producer: Object with produce(config, today) -> Artifact
        storage: Remote store client (see dbdrive.backup.storage)
        notifier: Object with send(recipient, subject, body)
        today: Callable returning the run date
    """

    def __init__(self, config: BackupConfig, producer, storage, notifier,
                 today: Optional[Callable[[], date]] = None):
        self.config = config
        self.producer = producer
        self.storage = storage
        self.notifier = notifier
        self.today = today or date.today
        self.result = None

    def execute(self) -> RunResult:
        """
        Execute the backup run.

        Returns:
            RunResult; its exit_code is 0 when dump and daily upload succeeded
        """
        self.result = RunResult()
        run_date = self.today()
        logger.info(f"Starting backup of {self.config.db_name}")

        try:
            self._execute_workflow(run_date)
        finally:
            self.result.completed_at = datetime.now()
            try:
                self.storage.cleanup()
            except StorageError as e:
                logger.warning(f"Failed to close remote store: {e}")

        return self.result

    def _execute_workflow(self, run_date: date):
        result = self.result
        config = self.config

        # Step 1: Dump
        logger.info(f"Creating local backup in {config.temp_dir}")
        step = self._run_step('dump', (DumpError,), self._dump, run_date)
        if not step.ok:
            logger.error(f"Error creating backup of database {config.db_name}: {step.error}")
            self._fail(RunStatus.DUMP_FAILED, step.error, run_date)
            return
        artifact = result.artifact
        logger.info(f"Backup created: {artifact.name} ({format_size(artifact.size_bytes)})")

        # Step 2: Daily upload
        logger.info(f"Uploading copy to {config.remote_name}: {config.backup_dir}/{artifact.name}")
        step = self._run_step('upload_daily', (StorageError,), self.storage.upload,
                              artifact.local_path, config.backup_dir)
        if not step.ok:
            logger.error(f"Could not upload backup {artifact.name}: {step.error}")
            logger.info(f"Local copy kept for manual recovery: {artifact.local_path}")
            self._fail(RunStatus.UPLOAD_FAILED, step.error, run_date)
            return

        # Step 3: Monthly upload
        if run_date.day == 1:
            logger.info("Today is the 1st of the month, saving monthly backup")
            step = self._run_step('upload_monthly', (StorageError,), self.storage.upload,
                                  artifact.local_path, config.monthly_backup_dir)
            if step.ok:
                result.monthly_copied = True
            else:
                logger.error(f"Could not upload monthly copy of {artifact.name}: {step.error}")
                result.warnings.append(
                    f"Monthly copy to {config.monthly_backup_dir}/ failed: {step.error}"
                )

        # Step 4: Prune
        self._prune(run_date)

        result.status = RunStatus.SUCCESS

        # Step 5: Notify
        subject, body = render_success(result, config, run_date.isoformat())
        self._notify(subject, body)

        # Step 6: Local cleanup
        logger.info(f"Deleting temporary local copy {artifact.local_path}")
        step = self._run_step('cleanup', (OSError,), os.remove, artifact.local_path)
        if step.ok:
            artifact.local_path = None
        else:
            logger.error(f"Failed to delete local copy {artifact.local_path}: {step.error}")

        logger.info("Backup completed successfully")

    def _dump(self, run_date: date):
        self.result.artifact = self.producer.produce(self.config, run_date)

    def _prune(self, run_date: date):
        """Delete expired daily copies; each failure is logged and skipped."""
        config = self.config
        cutoff = retention_cutoff(config.retention_days, run_date)
        logger.info(f"Looking for copies older than {cutoff.isoformat()} to delete")

        listing = []
        step = self._run_step('list', (StorageError,), self._list, listing)
        if not step.ok:
            logger.error(f"Could not list {config.backup_dir}/: {step.error}")
            self.result.warnings.append(f"Pruning skipped, listing failed: {step.error}")
            return

        candidates = [name for name in listing if is_artifact_name(name, config.db_name)]
        expired = select_expired(candidates, config.retention_days, run_date)

        for name in sorted(expired):
            logger.info(f"Deleting old backup: {name}")
            step = self._run_step('delete', (StorageError,), self.storage.delete, config.backup_dir, name)
            if step.ok:
                self.result.pruned.append(name)
            else:
                logger.error(f"Failed to delete {name}: {step.error}")
                self.result.warnings.append(f"Could not delete {name}: {step.error}")

    def _list(self, listing: list):
        listing.extend(self.storage.list(self.config.backup_dir))

    def _fail(self, status: RunStatus, error: Optional[str], run_date: date):
        self.result.status = status
        self.result.error = error
        subject, body = render_failure(self.result, self.config, run_date.isoformat())
        self._notify(subject, body)

    def _notify(self, subject: str, body: str):
        logger.info(f"Sending email notification to {self.config.admin_email}")
        step = self._run_step('notify', (NotifyError,), self.notifier.send,
                              self.config.admin_email, subject, body)
        if not step.ok:
            logger.error(f"Failed to send notification: {step.error}")

    def _run_step(self, name: str, errors: Tuple[Type[BaseException], ...], func, *args) -> StepResult:
        """Run one step, converting its declared errors into a failed StepResult."""
        try:
            func(*args)
            step = StepResult.success(name)
        except errors as e:
            step = StepResult.failure(name, e)
        self.result.steps.append(step)
        return step


def run_backup(config: BackupConfig, today: Optional[Callable[[], date]] = None) -> int:
    """
    Build the real collaborators from config and execute one run.

    Args:
        config: Run configuration
        today: Callable returning the run date

    Returns:
        Process exit code (0 or 1)
    """
    try:
        storage = create_storage(config)
    except StorageError as e:
        logger.error(f"Remote store is not usable: {e}")
        return 1

    executor = BackupExecutor(
        config,
        producer=DumpProducer(),
        storage=storage,
        notifier=create_notifier(config),
        today=today
    )
    result = executor.execute()
    return result.exit_code
