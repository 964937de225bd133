"""
Unit tests for ScanWorkerManager.
"""

import sys
from unittest.mock import MagicMock, Mock, patch

import psutil
import pytest
from hddlib.burnin.exceptions import BurnInProcessError
from hddlib.burnin.process_manager import ScanWorkerManager
from hddlib.burnin.scan_worker import write_progress


@pytest.fixture
def manager(temp_dir):
    return ScanWorkerManager(temp_dir, passes=4, block_size=4096)


def fake_process(pid=4242, running=True, returncode=None):
    process = MagicMock()
    process.pid = pid
    process.poll.return_value = None if running else returncode
    process.returncode = returncode
    return process


class TestScanWorkerManager:
    """Test suite for ScanWorkerManager."""

    # ===== Start Tests =====

    def test_build_command(self, manager, make_identity):
        identity = make_identity('WWN_0x5000:c500')

        cmd = manager.build_command(identity, '/dev/sdb')

        assert cmd[:3] == [sys.executable, '-m', 'hddlib.burnin.scan_worker']
        assert cmd[cmd.index('--tag') + 1] == 'WWN_0x5000_c500'
        assert cmd[cmd.index('--passes') + 1] == '4'
        assert '--no-ionice' not in cmd

    @patch('hddlib.burnin.process_manager.subprocess.Popen')
    def test_start_worker(self, mock_popen, manager, make_identity):
        mock_popen.return_value = fake_process()

        state = manager.start_worker(make_identity())

        assert state.process_id == 4242
        assert state.total_passes == 4
        assert manager.get_pid('ZA1B2C3D') == 4242
        assert manager.is_running('ZA1B2C3D')

    @patch('hddlib.burnin.process_manager.subprocess.Popen')
    def test_start_twice_rejected(self, mock_popen, manager, make_identity):
        mock_popen.return_value = fake_process()
        manager.start_worker(make_identity())

        with pytest.raises(BurnInProcessError, match='already running'):
            manager.start_worker(make_identity())

    @patch('hddlib.burnin.process_manager.subprocess.Popen')
    def test_start_failure(self, mock_popen, manager, make_identity):
        mock_popen.side_effect = OSError('no interpreter')

        with pytest.raises(BurnInProcessError, match='Failed to start'):
            manager.start_worker(make_identity())

    # ===== Progress and exit Tests =====

    @patch('hddlib.burnin.process_manager.subprocess.Popen')
    def test_report_progress(self, mock_popen, manager, make_identity):
        mock_popen.return_value = fake_process()
        state = manager.start_worker(make_identity())
        write_progress(state.progress_file, **{'pass': '2/4', 'pattern': '0x55', 'status': 'running'})

        lines = manager.report_progress()

        assert lines == ['[PROGRESS] /dev/sdb (ZA1B2C3D) pass=2/4 pattern=0x55 status=running']

    @patch('hddlib.burnin.process_manager.subprocess.Popen')
    def test_exit_codes(self, mock_popen, manager, make_identity):
        mock_popen.side_effect = [fake_process(1, False, 0), fake_process(2, False, 1)]
        manager.start_worker(make_identity('A', '/dev/sdb'))
        manager.start_worker(make_identity('B', '/dev/sdc'))

        assert not manager.any_running()
        assert manager.exit_codes() == {'A': 0, 'B': 1}

    @patch('hddlib.burnin.process_manager.subprocess.Popen')
    def test_clear_drops_finished(self, mock_popen, manager, make_identity):
        mock_popen.side_effect = [fake_process(1, False, 0), fake_process(2, True)]
        manager.start_worker(make_identity('A', '/dev/sdb'))
        manager.start_worker(make_identity('B', '/dev/sdc'))

        manager.clear()

        assert [s.drive_key for s in manager.states()] == ['B']

    # ===== Termination Tests =====

    @patch('hddlib.burnin.process_manager.psutil')
    @patch('hddlib.burnin.process_manager.subprocess.Popen')
    def test_stop_all_terminates_tree_then_kills(self, mock_popen, mock_psutil, manager, make_identity):
        mock_popen.return_value = fake_process()
        manager.start_worker(make_identity())

        parent, child = Mock(pid=4242), Mock(pid=4243)
        parent.children.return_value = [child]
        mock_psutil.Process.return_value = parent
        mock_psutil.NoSuchProcess = psutil.NoSuchProcess
        mock_psutil.wait_procs.side_effect = [([parent], [child]), ([child], [])]

        manager.stop_all(timeout=2)

        parent.terminate.assert_called_once()
        child.terminate.assert_called_once()
        child.kill.assert_called_once()
        parent.kill.assert_not_called()
        assert mock_psutil.wait_procs.call_args_list[0][1]['timeout'] == 2

    @patch('hddlib.burnin.process_manager.psutil')
    @patch('hddlib.burnin.process_manager.subprocess.Popen')
    def test_stop_all_nothing_running(self, mock_popen, mock_psutil, manager, make_identity):
        mock_popen.return_value = fake_process(running=False, returncode=0)
        manager.start_worker(make_identity())

        manager.stop_all()

        mock_psutil.wait_procs.assert_not_called()

    @patch('hddlib.burnin.process_manager.psutil')
    @patch('hddlib.burnin.process_manager.subprocess.Popen')
    def test_stop_all_process_already_gone(self, mock_popen, mock_psutil, manager, make_identity):
        mock_popen.return_value = fake_process()
        manager.start_worker(make_identity())
        mock_psutil.NoSuchProcess = psutil.NoSuchProcess
        mock_psutil.Process.side_effect = psutil.NoSuchProcess(4242)

        manager.stop_all()

        mock_psutil.wait_procs.assert_not_called()
