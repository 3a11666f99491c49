"""
Unit tests for command line entry points (dbdrive/cli.py).
"""

import os
from dataclasses import replace
from unittest.mock import patch

import pytest

from dbdrive.cli import backup_main, restore_main, schedule_main, build_restore_parser
from dbdrive.config import ConfigError
from dbdrive.backup.restore import RestoreError


@pytest.fixture
def remote_backups(backup_config):
    """Two daily copies and one monthly copy in the local remote store."""
    daily = os.path.join(backup_config.local_storage_dir, backup_config.backup_dir)
    monthly = os.path.join(backup_config.local_storage_dir, backup_config.monthly_backup_dir)
    os.makedirs(monthly)
    for directory, name in [(daily, 'shop_2024-03-09.pgdump'),
                            (daily, 'shop_2024-03-10.pgdump'),
                            (monthly, 'shop_2024-03-01.pgdump')]:
        with open(os.path.join(directory, name), 'wb') as f:
            f.write(b'PGDMP')
    return backup_config


@pytest.mark.usefixtures('restore_root_logger')
class TestBackupMain:
    """Test dbdrive-backup."""

    @patch('dbdrive.cli.load_config')
    def test_config_error(self, mock_load):
        """Test unusable configuration exits 1."""
        mock_load.side_effect = ConfigError('Missing required configuration: DB_NAME')

        assert backup_main() == 1

    @patch('dbdrive.cli.run_backup')
    @patch('dbdrive.cli.load_config')
    def test_runs_backup(self, mock_load, mock_run_backup, backup_config):
        """Test the run's exit code is returned and the day's log file is set up."""
        mock_load.return_value = backup_config
        mock_run_backup.return_value = 0

        assert backup_main() == 0
        mock_run_backup.assert_called_once_with(backup_config)
        assert os.path.isdir(backup_config.log_dir)


class TestRestoreParser:
    """Test dbdrive-restore argument parsing."""

    def test_requires_an_action(self):
        """Test one of --list, --latest or a name is required."""
        with pytest.raises(SystemExit):
            build_restore_parser().parse_args([])

    def test_actions_are_exclusive(self):
        """Test --list and --latest cannot be combined."""
        with pytest.raises(SystemExit):
            build_restore_parser().parse_args(['--list', '--latest'])

    def test_name(self):
        """Test a positional backup name."""
        args = build_restore_parser().parse_args(['shop_2024-03-10.pgdump', '--yes'])

        assert args.name == 'shop_2024-03-10.pgdump'
        assert args.yes is True
        assert args.monthly is False


@pytest.mark.usefixtures('restore_root_logger')
class TestRestoreMain:
    """Test dbdrive-restore."""

    @patch('dbdrive.cli.load_config')
    def test_list(self, mock_load, remote_backups, capsys):
        """Test --list prints daily backups oldest first."""
        mock_load.return_value = remote_backups

        assert restore_main(['--list']) == 0

        out = capsys.readouterr().out
        assert '1) shop_2024-03-09.pgdump' in out
        assert '2) shop_2024-03-10.pgdump' in out
        assert 'shop_2024-03-01.pgdump' not in out

    @patch('dbdrive.cli.load_config')
    def test_list_monthly(self, mock_load, remote_backups, capsys):
        """Test --monthly --list reads the monthly directory."""
        mock_load.return_value = remote_backups

        assert restore_main(['--monthly', '--list']) == 0

        assert '1) shop_2024-03-01.pgdump' in capsys.readouterr().out

    @patch('dbdrive.cli.restore_from_remote')
    @patch('dbdrive.cli.load_config')
    def test_latest(self, mock_load, mock_restore, remote_backups):
        """Test --latest restores the newest daily backup."""
        mock_load.return_value = remote_backups

        assert restore_main(['--latest', '--yes']) == 0

        args, kwargs = mock_restore.call_args
        assert args[2] == 'shop_2024-03-10.pgdump'
        assert kwargs['monthly'] is False

    @patch('dbdrive.cli.restore_from_remote')
    @patch('dbdrive.cli.load_config')
    def test_latest_without_backups(self, mock_load, mock_restore, backup_config):
        """Test --latest with nothing to restore exits 1."""
        mock_load.return_value = backup_config

        assert restore_main(['--latest', '--yes']) == 1
        mock_restore.assert_not_called()

    @patch('builtins.input', return_value='no')
    @patch('dbdrive.cli.restore_from_remote')
    @patch('dbdrive.cli.load_config')
    def test_confirmation_declined(self, mock_load, mock_restore, mock_input, remote_backups):
        """Test anything but 'yes' cancels the restore."""
        mock_load.return_value = remote_backups

        assert restore_main(['shop_2024-03-09.pgdump']) == 0

        mock_input.assert_called_once()
        mock_restore.assert_not_called()

    @patch('builtins.input', side_effect=EOFError)
    @patch('dbdrive.cli.restore_from_remote')
    @patch('dbdrive.cli.load_config')
    def test_confirmation_without_terminal(self, mock_load, mock_restore, mock_input, remote_backups):
        """Test a closed stdin counts as declining the restore."""
        mock_load.return_value = remote_backups

        assert restore_main(['shop_2024-03-09.pgdump']) == 0

        mock_restore.assert_not_called()

    @patch('builtins.input', return_value='yes')
    @patch('dbdrive.cli.restore_from_remote')
    @patch('dbdrive.cli.load_config')
    def test_confirmation_accepted(self, mock_load, mock_restore, mock_input, remote_backups):
        """Test answering 'yes' restores the named backup."""
        mock_load.return_value = remote_backups

        assert restore_main(['shop_2024-03-09.pgdump']) == 0

        assert mock_restore.call_args[0][2] == 'shop_2024-03-09.pgdump'

    @patch('dbdrive.cli.restore_from_remote')
    @patch('dbdrive.cli.load_config')
    def test_restore_failure(self, mock_load, mock_restore, remote_backups):
        """Test a failed restore exits 1."""
        mock_load.return_value = remote_backups
        mock_restore.side_effect = RestoreError('pg_restore failed')

        assert restore_main(['shop_2024-03-09.pgdump', '--yes']) == 1

    @patch('dbdrive.cli.load_config')
    def test_unusable_storage(self, mock_load, backup_config):
        """Test incomplete storage settings exit 1."""
        mock_load.return_value = replace(backup_config, local_storage_dir=None)

        assert restore_main(['--list']) == 1


@pytest.mark.usefixtures('restore_root_logger')
class TestScheduleMain:
    """Test dbdrive-schedule."""

    @patch('dbdrive.cli.run_backup')
    @patch('dbdrive.cli.load_config')
    def test_once(self, mock_load, mock_run_backup, backup_config):
        """Test --once runs a single backup without a scheduler."""
        mock_load.return_value = backup_config
        mock_run_backup.return_value = 1

        assert schedule_main(['--once']) == 1
        mock_run_backup.assert_called_once_with(backup_config)

    @patch('dbdrive.scheduler.stop_scheduler')
    @patch('dbdrive.scheduler.start_scheduler')
    @patch('dbdrive.scheduler.init_scheduler')
    @patch('dbdrive.cli.load_config')
    def test_daemon_stops_on_interrupt(self, mock_load, mock_init, mock_start, mock_stop, backup_config):
        """Test Ctrl+C stops the scheduler and exits 0."""
        mock_load.return_value = backup_config
        mock_start.side_effect = KeyboardInterrupt

        assert schedule_main(['--cron', '0 4 * * *']) == 0

        mock_init.assert_called_once_with(backup_config, '0 4 * * *')
        mock_stop.assert_called_once()

    @patch('dbdrive.scheduler.init_scheduler')
    @patch('dbdrive.cli.load_config')
    def test_invalid_cron(self, mock_load, mock_init, backup_config):
        """Test an invalid crontab expression exits 1."""
        mock_load.return_value = backup_config
        mock_init.side_effect = ValueError('Wrong number of fields')

        assert schedule_main(['--cron', 'nightly']) == 1
