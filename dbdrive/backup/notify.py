"""
Email notification for backup runs.

A Notifier builds one plain-text message and hands it to a transport:
- MsmtpTransport: pipes the message to msmtp (the default)
- SmtpTransport: talks to an SMTP server directly
"""

import logging
import smtplib
import subprocess
from email.message import EmailMessage
from typing import Optional

from dbdrive.config import BackupConfig
from dbdrive.models import RunResult, RunStatus, format_size


logger = logging.getLogger(__name__)


class NotifyError(Exception):
    """Raised when a notification cannot be delivered."""
    pass


def build_message(sender: str, recipient: str, subject: str, body: str) -> EmailMessage:
    """Plain-text message with Subject/To/From headers."""
    message = EmailMessage()
    message['Subject'] = subject
    message['To'] = recipient
    message['From'] = sender
    message.set_content(body, charset='utf-8')
    return message


class MsmtpTransport:
    """Deliver through the msmtp sendmail replacement."""

    def __init__(self, timeout: Optional[int] = 60, executable: str = 'msmtp'):
        self.timeout = timeout
        self.executable = executable

    def deliver(self, message: EmailMessage, recipient: str):
        try:
            completed = subprocess.run(
                [self.executable, recipient],
                input=message.as_bytes(),
                capture_output=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            raise NotifyError(f"{self.executable} not found; install and configure msmtp")
        except subprocess.TimeoutExpired:
            raise NotifyError(f"{self.executable} timed out after {self.timeout}s")
        except OSError as e:
            raise NotifyError(f"Could not run {self.executable}: {e}")

        if completed.returncode != 0:
            detail = completed.stderr.decode('utf-8', 'replace').strip() or f"exit code {completed.returncode}"
            raise NotifyError(f"{self.executable} failed: {detail}")


class SmtpTransport:
    """Deliver through an SMTP server, with optional STARTTLS and login."""

    def __init__(self, host: str, port: int = 587, username: Optional[str] = None,
                 password: Optional[str] = None, starttls: bool = True, timeout: Optional[int] = 60):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    def deliver(self, message: EmailMessage, recipient: str):
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.starttls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or '')
                smtp.send_message(message, to_addrs=[recipient])
        except (smtplib.SMTPException, OSError) as e:
            raise NotifyError(f"SMTP delivery via {self.host}:{self.port} failed: {e}")


class Notifier:
    """Sends one email per call through the configured transport."""

    def __init__(self, transport, sender: str):
        self.transport = transport
        self.sender = sender

    def send(self, recipient: str, subject: str, body: str):
        """
        Send a plain-text email.

        Raises:
            NotifyError: If the transport fails
        """
        message = build_message(self.sender, recipient, subject, body)
        self.transport.deliver(message, recipient)


def create_notifier(config: BackupConfig) -> Notifier:
    """Build the notifier for the configured mail transport."""
    if config.mail_transport == 'smtp':
        transport = SmtpTransport(
            host=config.smtp_host,
            port=config.smtp_port,
            username=config.smtp_user,
            password=config.smtp_password,
            starttls=config.smtp_starttls,
            timeout=config.mail_timeout
        )
    else:
        transport = MsmtpTransport(timeout=config.mail_timeout)

    return Notifier(transport, config.sender)


MONTHLY_COPY_HEADING = 'Also copied to monthly directory:'


def render_failure(result: RunResult, config: BackupConfig, day: str):
    """
    Subject and body for a failed run.

    Returns:
        (subject, body) tuple
    """
    if result.status is RunStatus.UPLOAD_FAILED:
        name = result.artifact.name if result.artifact else config.db_name
        subject = f"❌ Upload Error [{day}]"
        body = f"❌ Could not upload backup {name} to {config.remote_name}:{config.backup_dir}/"
        if result.artifact and result.artifact.local_path:
            body += f"\n\nThe local copy was kept at {result.artifact.local_path}"
    else:
        subject = f"❌ Backup ERROR [{day}]"
        body = f"❌ Error creating backup of database {config.db_name} on {day}"

    if result.error:
        body += f"\n\nCause: {result.error}"
    return subject, body


def render_success(result: RunResult, config: BackupConfig, day: str):
    """
    Subject and body for a successful run.

    Returns:
        (subject, body) tuple
    """
    artifact = result.artifact
    size = format_size(artifact.size_bytes)

    lines = [
        "✅ Backup successfully completed.",
        "",
        f"🔹 File: {artifact.name}",
        f"📁 Location: {config.remote_name} - {config.backup_dir}/",
        f"📏 Local size: {size}",
        "📝 Format: Custom PostgreSQL format (allows selective table restoration)",
    ]

    if result.monthly_copied:
        lines += [
            "",
            f"📤 {MONTHLY_COPY_HEADING}",
            f"{config.monthly_backup_dir}/{artifact.name} ({size})",
        ]

    if result.pruned:
        lines += ["", f"🧹 Files deleted (older than {config.retention_days} days):"]
        lines += sorted(result.pruned)

    if result.warnings:
        lines += ["", "⚠️ Warnings:"]
        lines += result.warnings

    return f"✅ Backup OK [{day}]", '\n'.join(lines)
