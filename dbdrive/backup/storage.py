"""
Remote store clients for backup artifacts.

Supports:
- RcloneStorage: Any rclone remote (Google Drive by default)
- S3Storage: AWS S3 or an S3-compatible endpoint
- SFTPStorage: A directory on a remote host over SSH/SFTP
- LocalStorage: A local or mounted directory

Every client exposes the same operations, addressed by a path prefix
relative to the store root:
    upload(local_path, prefix)       -> remote path of the object
    list(prefix)                     -> object names directly under prefix
    delete(prefix, name)
    download(prefix, name, dest_dir) -> local path of the copy
    cleanup()
"""

import os
import stat
import shutil
import logging
import posixpath
import subprocess
from pathlib import Path
from typing import Optional, List

import boto3
import paramiko
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import ClientError, BotoCoreError
from paramiko import SSHClient, AutoAddPolicy

from dbdrive.config import BackupConfig


logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a remote store operation fails."""
    pass


class UploadError(StorageError):
    pass


class ListError(StorageError):
    pass


class DeleteError(StorageError):
    pass


class DownloadError(StorageError):
    pass


def _join(prefix: str, name: str) -> str:
    prefix = prefix.strip('/')
    return f"{prefix}/{name}" if prefix else name


class RcloneStorage:
    """
    Handler for rclone remotes.

    Objects live at {remote_name}:{prefix}/{filename}. rclone copy overwrites
    an existing object with the same name.
    """

    def __init__(self, remote_name: str = 'gdrive', timeout: Optional[int] = None, executable: str = 'rclone'):
        self.remote_name = remote_name
        self.timeout = timeout
        self.executable = executable

    def _target(self, path: str) -> str:
        return f"{self.remote_name}:{path.strip('/')}"

    def _run(self, args: List[str], error_class) -> subprocess.CompletedProcess:
        command = [self.executable, *args]
        try:
            completed = subprocess.run(command, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError:
            raise error_class(f"{self.executable} not found; install rclone")
        except subprocess.TimeoutExpired:
            raise error_class(f"{' '.join(command[:2])} timed out after {self.timeout}s")
        except OSError as e:
            raise error_class(f"Could not run {self.executable}: {e}")

        if completed.returncode != 0:
            detail = (completed.stderr or '').strip() or f"exit code {completed.returncode}"
            raise error_class(f"{' '.join(command[:2])} failed: {detail}")
        return completed

    def upload(self, local_path: str, prefix: str) -> str:
        """
        Copy a local file into prefix, keeping its filename.

        Raises:
            UploadError: If the file is missing or rclone fails
        """
        if not os.path.exists(local_path):
            raise UploadError(f"Local file not found: {local_path}")

        self._run(['copy', local_path, self._target(prefix) + '/'], UploadError)
        return self._target(_join(prefix, os.path.basename(local_path)))

    def list(self, prefix: str) -> List[str]:
        """
        List object names directly under prefix.

        Non-recursive, so nested paths (e.g. the monthly directory under the
        daily one) are not returned.

        Raises:
            ListError: If rclone fails
        """
        completed = self._run(
            ['lsf', '--files-only', '--max-depth', '1', self._target(prefix) + '/'],
            ListError
        )
        return [line.strip() for line in completed.stdout.splitlines() if line.strip()]

    def delete(self, prefix: str, name: str):
        """
        Delete one object.

        Raises:
            DeleteError: If rclone fails (including when the object is gone)
        """
        self._run(['deletefile', self._target(_join(prefix, name))], DeleteError)

    def download(self, prefix: str, name: str, dest_dir: str) -> str:
        """
        Copy one object into dest_dir.

        Raises:
            DownloadError: If rclone fails
        """
        os.makedirs(dest_dir, exist_ok=True)
        self._run(['copy', self._target(_join(prefix, name)), dest_dir], DownloadError)
        local_path = os.path.join(dest_dir, name)
        if not os.path.exists(local_path):
            raise DownloadError(f"Remote object not found: {self._target(_join(prefix, name))}")
        return local_path

    def cleanup(self):
        """rclone keeps no connection between calls."""
        pass


class S3Storage:
    """
    Handler for AWS S3.

    Objects live at s3://{bucket}/{prefix}/{filename}.
    """

    def __init__(self, bucket_name: str, region: str = 'us-east-1', access_key: Optional[str] = None,
                 secret_key: Optional[str] = None, endpoint_url: Optional[str] = None):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: S3 bucket name
            region: AWS region (default: us-east-1)
            access_key: AWS access key ID (default: boto3 credential chain)
            secret_key: AWS secret access key
            endpoint_url: Custom endpoint for S3-compatible stores
        """
        self.bucket_name = bucket_name
        self.region = region

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=endpoint_url
            )
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def upload(self, local_path: str, prefix: str) -> str:
        """
        Upload a local file to {prefix}/{filename}.

        Raises:
            UploadError: If the file is missing or S3 rejects the upload
        """
        if not os.path.exists(local_path):
            raise UploadError(f"Local file not found: {local_path}")

        s3_key = _join(prefix, os.path.basename(local_path))

        try:
            # upload_file switches to multipart for large files
            self.s3_client.upload_file(local_path, self.bucket_name, s3_key)
            return s3_key
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise UploadError(f"S3 upload failed ({error_code}): {e}")
        except (BotoCoreError, S3UploadFailedError) as e:
            raise UploadError(f"S3 upload failed: {e}")

    def list(self, prefix: str) -> List[str]:
        """
        List object names directly under prefix.

        Raises:
            ListError: If listing fails
        """
        key_prefix = _join(prefix, '')

        try:
            names = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=key_prefix):
                for obj in page.get('Contents', []):
                    name = obj['Key'][len(key_prefix):]
                    if name and '/' not in name:
                        names.append(name)

            return names

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise ListError(f"S3 list failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise ListError(f"Failed to list S3 objects: {e}")

    def delete(self, prefix: str, name: str):
        """
        Delete one object. S3 reports success for keys that do not exist.

        Raises:
            DeleteError: If deletion fails
        """
        s3_key = _join(prefix, name)
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=s3_key)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise DeleteError(f"S3 delete failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise DeleteError(f"Failed to delete from S3: {e}")

    def download(self, prefix: str, name: str, dest_dir: str) -> str:
        """
        Download one object into dest_dir.

        Raises:
            DownloadError: If the object is missing or the download fails
        """
        os.makedirs(dest_dir, exist_ok=True)
        s3_key = _join(prefix, name)
        local_path = os.path.join(dest_dir, name)

        try:
            self.s3_client.download_file(self.bucket_name, s3_key, local_path)
            return local_path
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise DownloadError(f"S3 download failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise DownloadError(f"Failed to download from S3: {e}")

    def cleanup(self):
        """boto3 clients need no explicit shutdown."""
        pass


class SFTPStorage:
    """
    Handler for a directory on a remote host via SSH/SFTP.

    Objects live at {base_path}/{prefix}/{filename}. The connection is opened
    on first use and closed by cleanup().
    """

    def __init__(self, host: str, username: str, port: int = 22, password: Optional[str] = None,
                 private_key: Optional[str] = None, base_path: str = '.', timeout: Optional[int] = 30):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.private_key_path = private_key
        self.base_path = base_path.rstrip('/') or '/'
        self.timeout = timeout

        self.ssh_client = None
        self.sftp_client = None

    def _connect(self, error_class=StorageError):
        """
        Establish SSH connection if not already connected.

        Raises:
            error_class: If connection fails
        """
        if self.sftp_client is not None:
            return self.sftp_client

        connect_kwargs = {
            'hostname': self.host,
            'port': self.port,
            'username': self.username,
            'timeout': self.timeout
        }

        # Use password or private key
        if self.password:
            connect_kwargs['password'] = self.password
        elif self.private_key_path:
            key_path = Path(self.private_key_path).expanduser()
            if not key_path.exists():
                raise error_class(f"Private key not found: {self.private_key_path}")
            connect_kwargs['key_filename'] = str(key_path)
        else:
            raise error_class("Either SFTP_PASSWORD or SFTP_PRIVATE_KEY must be provided")

        try:
            self.ssh_client = SSHClient()
            self.ssh_client.set_missing_host_key_policy(AutoAddPolicy())
            self.ssh_client.connect(**connect_kwargs)
            self.sftp_client = self.ssh_client.open_sftp()
            if self.timeout:
                self.sftp_client.get_channel().settimeout(self.timeout)
        except paramiko.AuthenticationException as e:
            raise error_class(f"SSH authentication failed: {e}")
        except (paramiko.SSHException, OSError) as e:
            raise error_class(f"Failed to connect to {self.host}: {e}")

        return self.sftp_client

    def _remote_dir(self, prefix: str) -> str:
        return posixpath.join(self.base_path, prefix.strip('/'))

    def _makedirs(self, sftp, remote_dir: str):
        current = '/' if remote_dir.startswith('/') else ''
        for part in [p for p in remote_dir.split('/') if p]:
            current = posixpath.join(current, part) if current else part
            try:
                sftp.stat(current)
            except FileNotFoundError:
                sftp.mkdir(current)

    def upload(self, local_path: str, prefix: str) -> str:
        """
        Upload a local file into prefix, replacing an existing object.

        Raises:
            UploadError: If the file is missing or the transfer fails
        """
        if not os.path.exists(local_path):
            raise UploadError(f"Local file not found: {local_path}")

        sftp = self._connect(UploadError)
        remote_dir = self._remote_dir(prefix)
        remote_path = posixpath.join(remote_dir, os.path.basename(local_path))

        try:
            self._makedirs(sftp, remote_dir)
            sftp.put(local_path, remote_path)
            return remote_path
        except PermissionError:
            raise UploadError(f"Permission denied writing {remote_path}")
        except (paramiko.SSHException, OSError) as e:
            raise UploadError(f"Failed to upload {local_path} to {self.host}: {e}")

    def list(self, prefix: str) -> List[str]:
        """
        List regular files directly under prefix.

        Raises:
            ListError: If the directory cannot be listed
        """
        sftp = self._connect(ListError)
        remote_dir = self._remote_dir(prefix)

        try:
            entries = sftp.listdir_attr(remote_dir)
        except FileNotFoundError:
            raise ListError(f"Remote directory not found: {remote_dir}")
        except (paramiko.SSHException, OSError) as e:
            raise ListError(f"Failed to list {remote_dir}: {e}")

        try:
            # st_mode is None when the server omits permissions
            return [item.filename for item in entries if not stat.S_ISDIR(item.st_mode or 0)]
        except (AttributeError, TypeError) as e:
            raise ListError(f"Unexpected listing entry in {remote_dir}: {e}")

    def delete(self, prefix: str, name: str):
        """
        Delete one remote file.

        Raises:
            DeleteError: If the file is missing or cannot be removed
        """
        sftp = self._connect(DeleteError)
        remote_path = posixpath.join(self._remote_dir(prefix), name)

        try:
            sftp.remove(remote_path)
        except FileNotFoundError:
            raise DeleteError(f"Remote file not found: {remote_path}")
        except (paramiko.SSHException, OSError) as e:
            raise DeleteError(f"Failed to delete {remote_path}: {e}")

    def download(self, prefix: str, name: str, dest_dir: str) -> str:
        """
        Download one remote file into dest_dir.

        Raises:
            DownloadError: If the file is missing or the transfer fails
        """
        sftp = self._connect(DownloadError)
        remote_path = posixpath.join(self._remote_dir(prefix), name)
        os.makedirs(dest_dir, exist_ok=True)
        local_path = os.path.join(dest_dir, name)

        try:
            sftp.get(remote_path, local_path)
            return local_path
        except FileNotFoundError:
            raise DownloadError(f"Remote file not found: {remote_path}")
        except (paramiko.SSHException, OSError) as e:
            raise DownloadError(f"Failed to download {remote_path}: {e}")

    def cleanup(self):
        """Close SSH/SFTP connections."""
        if self.sftp_client:
            try:
                self.sftp_client.close()
            except (paramiko.SSHException, OSError) as e:
                logger.warning(f"Failed to close SFTP session: {e}")
            self.sftp_client = None

        if self.ssh_client:
            try:
                self.ssh_client.close()
            except (paramiko.SSHException, OSError) as e:
                logger.warning(f"Failed to close SSH connection: {e}")
            self.ssh_client = None


class LocalStorage:
    """
    Handler for a local or mounted directory.

    Objects live at {base_path}/{prefix}/{filename}.
    """

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create local storage directory: {e}")

    def upload(self, local_path: str, prefix: str) -> str:
        """
        Copy a file into prefix, replacing an existing copy.

        Raises:
            UploadError: If the copy fails
        """
        if not os.path.exists(local_path):
            raise UploadError(f"Local file not found: {local_path}")

        dest_path = self.base_path / prefix.strip('/') / os.path.basename(local_path)

        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(local_path, dest_path)
            return str(dest_path)
        except PermissionError as e:
            raise UploadError(f"Permission denied writing to {dest_path}: {e}")
        except OSError as e:
            raise UploadError(f"Failed to store {local_path}: {e}")

    def list(self, prefix: str) -> List[str]:
        """
        List files directly under prefix. A missing directory lists as empty.

        Raises:
            ListError: If the directory cannot be read
        """
        directory = self.base_path / prefix.strip('/')

        if not directory.exists():
            return []

        try:
            return [entry.name for entry in directory.iterdir() if entry.is_file()]
        except OSError as e:
            raise ListError(f"Failed to list {directory}: {e}")

    def delete(self, prefix: str, name: str):
        """
        Delete one file.

        Raises:
            DeleteError: If the file is missing or cannot be removed
        """
        full_path = self.base_path / prefix.strip('/') / name

        try:
            full_path.unlink()
        except FileNotFoundError:
            raise DeleteError(f"File not found: {full_path}")
        except OSError as e:
            raise DeleteError(f"Failed to delete {full_path}: {e}")

    def download(self, prefix: str, name: str, dest_dir: str) -> str:
        """
        Copy one file into dest_dir.

        Raises:
            DownloadError: If the file is missing or cannot be copied
        """
        source_path = self.base_path / prefix.strip('/') / name

        if not source_path.exists():
            raise DownloadError(f"File not found: {source_path}")

        try:
            os.makedirs(dest_dir, exist_ok=True)
            return shutil.copy2(source_path, os.path.join(dest_dir, name))
        except OSError as e:
            raise DownloadError(f"Failed to copy {source_path}: {e}")

    def cleanup(self):
        """Local storage has no persistent connections."""
        pass


def create_storage(config: BackupConfig):
    """
    Factory function to create the configured remote store client.

    Args:
        config: Run configuration

    Returns:
        RcloneStorage, S3Storage, SFTPStorage or LocalStorage instance

    Raises:
        StorageError: If the backend's settings are incomplete
        ValueError: If the backend name is invalid
    """
    backend = config.storage_backend

    if backend == 'rclone':
        return RcloneStorage(config.remote_name, timeout=config.storage_timeout)
    elif backend == 's3':
        if not config.s3_bucket:
            raise StorageError("S3_BUCKET is required for the s3 backend")
        return S3Storage(
            bucket_name=config.s3_bucket,
            region=config.s3_region,
            access_key=config.aws_access_key_id,
            secret_key=config.aws_secret_access_key,
            endpoint_url=config.s3_endpoint_url
        )
    elif backend == 'sftp':
        if not config.sftp_host or not config.sftp_user:
            raise StorageError("SFTP_HOST and SFTP_USER are required for the sftp backend")
        return SFTPStorage(
            host=config.sftp_host,
            username=config.sftp_user,
            port=config.sftp_port,
            password=config.sftp_password,
            private_key=config.sftp_private_key,
            base_path=config.sftp_base_path,
            timeout=config.storage_timeout
        )
    elif backend == 'local':
        if not config.local_storage_dir:
            raise StorageError("LOCAL_STORAGE_DIR is required for the local backend")
        return LocalStorage(config.local_storage_dir)
    else:
        raise ValueError(f"Invalid storage backend: {backend}")
