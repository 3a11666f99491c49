import os
import tempfile
from dataclasses import dataclass
from typing import Optional, Mapping

from dotenv import dotenv_values


class ConfigError(Exception):
    """Raised when the run configuration is missing or invalid."""
    pass


REQUIRED_KEYS = ('DB_NAME', 'DB_USER', 'ADMIN_EMAIL')

STORAGE_BACKENDS = ('rclone', 's3', 'sftp', 'local')
MAIL_TRANSPORTS = ('msmtp', 'smtp')


@dataclass(frozen=True)
class BackupConfig:
    """
    Immutable run configuration.

    Built once at process start by load_config() and passed to every
    component. Nothing downstream reads the process environment.
    """

    # Database
    db_name: str
    db_user: str
    admin_email: str
    db_host: str = 'localhost'
    db_port: int = 5432
    db_password: str = ''

    # Retention
    retention_days: int = 7

    # Remote store
    storage_backend: str = 'rclone'
    remote_name: str = 'gdrive'
    backup_dir: str = 'dbBackups'
    monthly_backup_dir: str = 'dbBackups/monthly'
    s3_bucket: Optional[str] = None
    s3_region: str = 'us-east-1'
    s3_endpoint_url: Optional[str] = None
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    sftp_host: Optional[str] = None
    sftp_port: int = 22
    sftp_user: Optional[str] = None
    sftp_password: Optional[str] = None
    sftp_private_key: Optional[str] = None
    sftp_base_path: str = '.'
    local_storage_dir: Optional[str] = None

    # Mail
    mail_from: Optional[str] = None
    mail_transport: str = 'msmtp'
    smtp_host: str = 'localhost'
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_starttls: bool = True

    # Paths
    work_dir: str = '.'
    temp_dir: str = tempfile.gettempdir()

    # Timeouts (seconds)
    dump_timeout: int = 3600
    storage_timeout: int = 1800
    mail_timeout: int = 60

    # Scheduler
    backup_schedule: str = '0 2 * * *'
    schedule_timezone: Optional[str] = None

    @property
    def log_dir(self) -> str:
        return os.path.join(self.work_dir, 'logs')

    @property
    def sender(self) -> str:
        return self.mail_from or f"Backup System <{self.admin_email}>"

    def pg_env(self) -> dict:
        """Environment for PostgreSQL client tools, carrying the password."""
        env = os.environ.copy()
        if self.db_password:
            env['PGPASSWORD'] = self.db_password
        return env


def _get_int(values: Mapping[str, str], key: str, default: int) -> int:
    raw = values.get(key)
    if raw is None or str(raw).strip() == '':
        return default
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")


def _get_bool(values: Mapping[str, str], key: str, default: bool) -> bool:
    raw = values.get(key)
    if raw is None or str(raw).strip() == '':
        return default
    return str(raw).strip().lower() in ('1', 'true', 'yes', 'on')


def _get_str(values: Mapping[str, str], key: str, default: Optional[str] = None) -> Optional[str]:
    raw = values.get(key)
    if raw is None or str(raw).strip() == '':
        return default
    return str(raw).strip()


def load_config(env_file: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> BackupConfig:
    """
    Resolve the run configuration.

    Values come from the .env file (if present) overlaid by the process
    environment.

    Args:
        env_file: Path to a dotenv file (default: ./.env)
        environ: Environment mapping (default: os.environ)

    Returns:
        BackupConfig

    Raises:
        ConfigError: If a required key is missing or a value is malformed
    """
    if environ is None:
        environ = os.environ

    env_path = os.path.abspath(env_file or '.env')
    values = {}
    if os.path.isfile(env_path):
        values.update({k: v for k, v in dotenv_values(env_path).items() if v is not None})
    elif env_file is not None:
        raise ConfigError(f"Environment file not found: {env_file}")
    values.update(environ)

    missing = [key for key in REQUIRED_KEYS if not _get_str(values, key)]
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    retention_days = _get_int(values, 'BACKUP_RETENTION_DAYS', 7)
    if retention_days < 0:
        raise ConfigError(f"BACKUP_RETENTION_DAYS must not be negative, got {retention_days}")

    storage_backend = _get_str(values, 'STORAGE_BACKEND', 'rclone').lower()
    if storage_backend not in STORAGE_BACKENDS:
        raise ConfigError(
            f"Invalid STORAGE_BACKEND: {storage_backend}. "
            f"Valid options: {list(STORAGE_BACKENDS)}"
        )

    mail_transport = _get_str(values, 'MAIL_TRANSPORT', 'msmtp').lower()
    if mail_transport not in MAIL_TRANSPORTS:
        raise ConfigError(
            f"Invalid MAIL_TRANSPORT: {mail_transport}. "
            f"Valid options: {list(MAIL_TRANSPORTS)}"
        )

    # Logs live next to the env file unless WORK_DIR says otherwise
    default_work_dir = os.path.dirname(env_path) if os.path.isfile(env_path) else os.getcwd()

    return BackupConfig(
        db_name=_get_str(values, 'DB_NAME'),
        db_user=_get_str(values, 'DB_USER'),
        admin_email=_get_str(values, 'ADMIN_EMAIL'),
        db_host=_get_str(values, 'DB_HOST', 'localhost'),
        db_port=_get_int(values, 'DB_PORT', 5432),
        db_password=values.get('DB_PASSWD') or '',
        retention_days=retention_days,
        storage_backend=storage_backend,
        remote_name=_get_str(values, 'REMOTE_NAME', 'gdrive'),
        backup_dir=_get_str(values, 'BACKUP_DIR', 'dbBackups').strip('/'),
        monthly_backup_dir=_get_str(values, 'BACKUP_DIR_MONTHLY', 'dbBackups/monthly').strip('/'),
        s3_bucket=_get_str(values, 'S3_BUCKET'),
        s3_region=_get_str(values, 'S3_REGION', 'us-east-1'),
        s3_endpoint_url=_get_str(values, 'S3_ENDPOINT_URL'),
        aws_access_key_id=_get_str(values, 'AWS_ACCESS_KEY_ID'),
        aws_secret_access_key=_get_str(values, 'AWS_SECRET_ACCESS_KEY'),
        sftp_host=_get_str(values, 'SFTP_HOST'),
        sftp_port=_get_int(values, 'SFTP_PORT', 22),
        sftp_user=_get_str(values, 'SFTP_USER'),
        sftp_password=_get_str(values, 'SFTP_PASSWORD'),
        sftp_private_key=_get_str(values, 'SFTP_PRIVATE_KEY'),
        sftp_base_path=_get_str(values, 'SFTP_BASE_PATH', '.'),
        local_storage_dir=_get_str(values, 'LOCAL_STORAGE_DIR'),
        mail_from=_get_str(values, 'MAIL_FROM'),
        mail_transport=mail_transport,
        smtp_host=_get_str(values, 'SMTP_HOST', 'localhost'),
        smtp_port=_get_int(values, 'SMTP_PORT', 587),
        smtp_user=_get_str(values, 'SMTP_USER'),
        smtp_password=_get_str(values, 'SMTP_PASSWORD'),
        smtp_starttls=_get_bool(values, 'SMTP_STARTTLS', True),
        work_dir=_get_str(values, 'WORK_DIR', default_work_dir),
        temp_dir=_get_str(values, 'TEMP_DIR', tempfile.gettempdir()),
        dump_timeout=_get_int(values, 'DUMP_TIMEOUT', 3600),
        storage_timeout=_get_int(values, 'STORAGE_TIMEOUT', 1800),
        mail_timeout=_get_int(values, 'MAIL_TIMEOUT', 60),
        backup_schedule=_get_str(values, 'BACKUP_SCHEDULE', '0 2 * * *'),
        schedule_timezone=_get_str(values, 'SCHEDULE_TIMEZONE'),
    )
