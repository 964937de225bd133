"""
Unit tests for the operator menu and the command line entry point.
"""

from unittest.mock import MagicMock, Mock, patch

import pytest
from hddlib.burnin import cli
from hddlib.burnin.exceptions import (
    EXIT_BATCH_FAILED,
    EXIT_CONFIG_ERROR,
    EXIT_OK,
    BurnInAbort,
    BurnInConfigError,
    BurnInLockError,
)
from hddlib.burnin.inventory import DriveInventory, InventoryEntry
from hddlib.burnin.menu import BurnInMenu


@pytest.fixture
def mock_orchestrator(make_identity):
    orchestrator = Mock()
    entries = [
        InventoryEntry(1, make_identity('A', '/dev/sdb')),
        InventoryEntry(2, make_identity('B', '/dev/sdc')),
    ]
    orchestrator.inventory.scan.return_value = entries
    orchestrator.inventory.format_table.return_value = 'TABLE'
    orchestrator.inventory.select.side_effect = DriveInventory.select
    orchestrator.run_action.return_value = False
    return orchestrator


def scripted(*answers):
    queue = list(answers)
    return lambda prompt: queue.pop(0)


class TestBurnInMenu:
    """Test suite for BurnInMenu."""

    def test_exit_immediately(self, mock_orchestrator):
        output = []
        menu = BurnInMenu(mock_orchestrator, input_fn=scripted('4'), output_fn=output.append)

        assert menu.loop() == EXIT_OK
        assert 'TABLE' in output
        mock_orchestrator.run_action.assert_not_called()

    def test_triage_then_exit(self, mock_orchestrator):
        menu = BurnInMenu(mock_orchestrator, input_fn=scripted('1', '2 1', '4'), output_fn=Mock())

        assert menu.loop() == EXIT_OK
        action, drives = mock_orchestrator.run_action.call_args[0]
        assert action == 'triage'
        assert [d.key for d in drives] == ['B', 'A']

    def test_failed_scan_sets_exit_code(self, mock_orchestrator):
        mock_orchestrator.run_action.return_value = True
        menu = BurnInMenu(mock_orchestrator, input_fn=scripted('2', '1', '4'), output_fn=Mock())

        assert menu.loop() == EXIT_BATCH_FAILED

    def test_invalid_choices_reprompt(self, mock_orchestrator):
        output = []
        menu = BurnInMenu(
            mock_orchestrator,
            input_fn=scripted('9', '3', '7', '3', '1', '4'),
            output_fn=output.append,
        )

        assert menu.loop() == EXIT_OK
        assert 'Invalid choice: 9' in output
        assert 'Invalid drive number: 7' in output
        mock_orchestrator.run_action.assert_called_once()
        assert mock_orchestrator.run_action.call_args[0][0] == 'both'

    def test_run_once(self, mock_orchestrator):
        mock_orchestrator.run_action.return_value = True
        menu = BurnInMenu(mock_orchestrator)

        assert menu.run_once('scan', '1') is True
        assert menu.batch_failed is True


class TestCli:
    """Test suite for the hdd-burnin entry point."""

    def test_action_requires_drives(self):
        with pytest.raises(SystemExit):
            cli.parse_arguments(['--action', 'scan'])

    def test_unknown_action_rejected(self):
        with pytest.raises(SystemExit):
            cli.parse_arguments(['--action', 'wipe', '--drives', '1'])

    def test_build_config_flags(self, monkeypatch):
        for name in ('MAX_TEMP', 'BADBLOCKS_PASSES'):
            monkeypatch.delenv(name, raising=False)
        args = cli.parse_arguments(['--max-temp', '50', '--passes', '2'])

        config = cli.build_config(args)

        assert config['max_temp_c'] == 50
        assert config['scan_passes'] == 2
        assert config['block_size'] == 4096

    def test_build_config_invalid(self):
        args = cli.parse_arguments(['--max-temp', '0'])

        with pytest.raises(BurnInConfigError):
            cli.build_config(args)

    def test_main_config_error_exit_code(self, capsys):
        assert cli.main(['--block-size', '100']) == EXIT_CONFIG_ERROR
        assert 'ERROR' in capsys.readouterr().err


class TestCliMain:
    """Test suite for cli.main() with the orchestrator replaced."""

    @pytest.fixture
    def patched(self):
        with patch.object(cli, 'BurnInOrchestrator') as orchestrator_cls, \
                patch.object(cli, 'BurnInMenu') as menu_cls:
            orchestrator = MagicMock()
            orchestrator.session.return_value.__exit__.return_value = False
            orchestrator_cls.return_value = orchestrator
            yield orchestrator_cls, orchestrator, menu_cls.return_value

    def test_action_success(self, patched):
        orchestrator_cls, _orchestrator, menu = patched
        menu.run_once.return_value = False

        assert cli.main(['--action', 'triage', '--drives', '1 2']) == EXIT_OK
        menu.run_once.assert_called_once_with('triage', '1 2')

    def test_action_batch_failure(self, patched):
        _cls, _orchestrator, menu = patched
        menu.run_once.return_value = True

        assert cli.main(['--action', 'scan', '--drives', '1', '--confirm', 'ERASE']) == EXIT_BATCH_FAILED

    def test_confirm_flag_answers_prompt(self, patched):
        orchestrator_cls, _orchestrator, menu = patched
        menu.run_once.return_value = False

        cli.main(['--action', 'scan', '--drives', '1', '--confirm', 'ERASE'])

        confirm_fn = orchestrator_cls.call_args[1]['confirm_fn']
        assert confirm_fn('Type ERASE to continue: ') == 'ERASE'

    def test_abort_exit_code(self, patched):
        _cls, _orchestrator, menu = patched
        menu.run_once.side_effect = BurnInAbort('TEMP SERIAL_B hit 46C', 130)

        assert cli.main(['--action', 'triage', '--drives', '1']) == 130

    def test_lock_error_exit_code(self, patched, capsys):
        _cls, orchestrator, _menu = patched
        orchestrator.session.return_value.__enter__.side_effect = BurnInLockError('held')

        assert cli.main([]) == EXIT_CONFIG_ERROR
        assert 'held' in capsys.readouterr().err

    def test_interactive_loop(self, patched):
        _cls, _orchestrator, menu = patched
        menu.loop.return_value = EXIT_BATCH_FAILED

        assert cli.main([]) == EXIT_BATCH_FAILED
