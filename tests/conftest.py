"""
Shared pytest fixtures for dbdrive tests.

This module provides fixtures for:
- Run configuration pointing at temporary directories
- In-memory fakes for the dump producer, remote store and notifier
- Mock fixtures for external services (S3, SSH)
- Isolation of the root logger
"""

import os
import logging
from unittest.mock import MagicMock, patch

import pytest
import boto3
from moto import mock_aws

from dbdrive.config import BackupConfig
from dbdrive.models import Artifact, artifact_name
from dbdrive.backup.dump import DumpError
from dbdrive.backup.storage import UploadError, ListError, DeleteError, DownloadError
from dbdrive.backup.notify import NotifyError


class FakeProducer:
    """Writes a small artifact file the way pg_dump would, or fails."""

    def __init__(self, fail: bool = False, content: bytes = b'PGDMP fake dump'):
        self.fail = fail
        self.content = content
        self.calls = []

    def produce(self, config, today=None):
        self.calls.append(today)
        if self.fail:
            raise DumpError("pg_dump: error: connection to server failed")

        os.makedirs(config.temp_dir, exist_ok=True)
        name = artifact_name(config.db_name, today)
        local_path = os.path.join(config.temp_dir, name)
        with open(local_path, 'wb') as f:
            f.write(self.content)
        return Artifact(name=name, created_on=today, local_path=local_path, size_bytes=len(self.content))


class FakeStorage:
    """
    In-memory remote store.

    objects maps prefix -> {name: bytes}. Failures are injected per prefix
    (uploads), per name (deletes) or globally (listing). Names in vanished
    are listed but raise DeleteError as if removed concurrently.
    """

    def __init__(self, objects=None, fail_upload_prefixes=(), fail_list=False,
                 fail_delete=(), vanished=()):
        self.objects = {prefix: dict(names) for prefix, names in (objects or {}).items()}
        self.fail_upload_prefixes = set(fail_upload_prefixes)
        self.fail_list = fail_list
        self.fail_delete = set(fail_delete)
        self.vanished = set(vanished)
        self.uploads = []
        self.deletes = []
        self.cleaned_up = False

    def upload(self, local_path, prefix):
        self.uploads.append((local_path, prefix))
        if prefix in self.fail_upload_prefixes:
            raise UploadError(f"upload to {prefix} failed")
        name = os.path.basename(local_path)
        with open(local_path, 'rb') as f:
            self.objects.setdefault(prefix, {})[name] = f.read()
        return f"{prefix}/{name}"

    def list(self, prefix):
        if self.fail_list:
            raise ListError(f"cannot list {prefix}")
        # Deliberately unsorted
        return list(reversed(list(self.objects.get(prefix, {})))) + sorted(self.vanished)

    def delete(self, prefix, name):
        self.deletes.append((prefix, name))
        if name in self.vanished:
            raise DeleteError(f"object not found: {prefix}/{name}")
        if name in self.fail_delete:
            raise DeleteError(f"permission denied: {prefix}/{name}")
        del self.objects[prefix][name]

    def download(self, prefix, name, dest_dir):
        try:
            data = self.objects[prefix][name]
        except KeyError:
            raise DownloadError(f"object not found: {prefix}/{name}")
        os.makedirs(dest_dir, exist_ok=True)
        local_path = os.path.join(dest_dir, name)
        with open(local_path, 'wb') as f:
            f.write(data)
        return local_path

    def cleanup(self):
        self.cleaned_up = True


class FakeNotifier:
    """Records sent messages, or fails like an unreachable mail server."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send(self, recipient, subject, body):
        if self.fail:
            raise NotifyError("msmtp: cannot connect to smtp.gmail.com")
        self.sent.append({'recipient': recipient, 'subject': subject, 'body': body})


@pytest.fixture
def backup_config(tmp_path):
    """
    Configuration for database 'shop' with 7 day retention.

    Staging, logs and the local remote store live under tmp_path.
    """
    return BackupConfig(
        db_name='shop',
        db_user='backup',
        admin_email='admin@example.com',
        db_password='secret',
        storage_backend='local',
        local_storage_dir=str(tmp_path / 'remote'),
        work_dir=str(tmp_path / 'work'),
        temp_dir=str(tmp_path / 'staging'),
    )


@pytest.fixture
def fake_producer():
    return FakeProducer()


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def fake_notifier():
    return FakeNotifier()


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient for SFTP storage testing.

    Returns the patched class; its return_value.open_sftp.return_value is
    the SFTP client mock.
    """
    with patch('dbdrive.backup.storage.SSHClient') as mock_ssh:
        mock_sftp = MagicMock()
        mock_ssh.return_value.open_sftp.return_value = mock_sftp
        mock_ssh.return_value.connect.return_value = None
        yield mock_ssh


@pytest.fixture
def restore_root_logger():
    """Restore root logger handlers replaced by configure_logging()."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield root
    for handler in root.handlers[:]:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def completed_process():
    """Factory for subprocess.CompletedProcess-like results."""
    def _make(returncode=0, stdout='', stderr=''):
        result = MagicMock()
        result.returncode = returncode
        result.stdout = stdout
        result.stderr = stderr
        return result
    return _make
