"""
Unit tests for the surface-scan worker.
"""

import os
from unittest.mock import MagicMock, patch

import pytest
from hddlib.burnin import scan_worker
from hddlib.burnin.scan_worker import (
    ScanWorker,
    bad_blocks_path,
    pattern_for_pass,
    read_bad_blocks,
    read_progress,
    write_progress,
)


def fake_badblocks(bad_by_pass=None, return_codes=None, on_start=None):
    """
    Popen stand-in that writes the -o file like badblocks would.

    bad_by_pass maps 1-based pass numbers to block lists.
    """
    bad_by_pass = bad_by_pass or {}
    return_codes = return_codes or {}
    calls = []

    def _popen(cmd, stdout=None, stderr=None):
        calls.append(cmd)
        pass_number = len(calls)
        output_file = cmd[cmd.index('-o') + 1]
        with open(output_file, 'w') as f:
            for block in bad_by_pass.get(pass_number, []):
                f.write(f"{block}\n")
        proc = MagicMock()
        proc.wait.return_value = return_codes.get(pass_number, 0)
        proc.poll.return_value = None
        if on_start is not None:
            on_start(pass_number, proc)
        return proc

    _popen.calls = calls
    return _popen


class TestPatterns:
    """Test suite for pattern selection."""

    def test_first_four_passes(self):
        assert [pattern_for_pass(i) for i in range(1, 5)] == ['0xaa', '0x55', '0xff', '0x00']

    def test_wraps_after_four(self):
        assert pattern_for_pass(5) == '0xaa'
        assert pattern_for_pass(8) == '0x00'

    def test_pass_zero_rejected(self):
        with pytest.raises(ValueError):
            pattern_for_pass(0)

    def test_pass_plan(self, temp_dir):
        worker = ScanWorker('/dev/sdb', 'X', temp_dir, passes=6)
        assert worker.pass_plan()[-1] == (6, '0x55')


class TestProgressFiles:
    """Test suite for progress and bad block files."""

    def test_progress_round_trip(self, temp_dir):
        path = os.path.join(temp_dir, 'p.txt')
        write_progress(path, **{'pass': '2/4', 'pattern': '0x55', 'status': 'running'})

        assert read_progress(path) == {'pass': '2/4', 'pattern': '0x55', 'status': 'running'}

    def test_missing_progress(self, temp_dir):
        assert read_progress(os.path.join(temp_dir, 'none.txt')) == {}

    def test_bad_blocks_sorted_unique(self, temp_dir):
        path = os.path.join(temp_dir, 'x.bad')
        with open(path, 'w') as f:
            f.write("300\n20\n300\n\nnoise\n1000\n")

        assert read_bad_blocks(path) == [20, 300, 1000]

    def test_missing_bad_blocks(self, temp_dir):
        assert read_bad_blocks(os.path.join(temp_dir, 'none.bad')) == []


class TestScanWorker:
    """Test suite for ScanWorker.run()."""

    def test_command_line(self, temp_dir):
        worker = ScanWorker('/dev/sdb', 'X', temp_dir, block_size=8192, nice=5)

        cmd = worker.build_command('0xff', '/tmp/out')

        assert cmd == [
            'ionice', '-c3', 'nice', '-n', '5',
            'badblocks', '-b', '8192', '-wsv', '-t', '0xff', '-o', '/tmp/out', '/dev/sdb',
        ]

    def test_command_without_ionice(self, temp_dir):
        worker = ScanWorker('/dev/sdb', 'X', temp_dir, use_ionice=False)
        assert worker.build_command('0xaa', 'o')[0] == 'nice'

    def test_clean_run(self, temp_dir):
        popen = fake_badblocks()
        worker = ScanWorker('/dev/sdb', 'X', temp_dir, passes=4)

        with patch.object(scan_worker.subprocess, 'Popen', side_effect=popen):
            assert worker.run() == 0

        patterns = [cmd[cmd.index('-t') + 1] for cmd in popen.calls]
        assert patterns == ['0xaa', '0x55', '0xff', '0x00']
        assert read_bad_blocks(bad_blocks_path(temp_dir, 'X')) == []
        assert read_progress(worker.progress_file)['status'] == 'finished'
        assert os.path.isfile(os.path.join(temp_dir, 'scan_badblocks_X_pass3_0xff.log'))
        assert not os.path.exists(worker.bad_file + '.tmp')

    def test_bad_blocks_merged_across_passes(self, temp_dir):
        popen = fake_badblocks({1: [500, 100], 3: [100, 900]})
        worker = ScanWorker('/dev/sdb', 'X', temp_dir, passes=4)

        with patch.object(scan_worker.subprocess, 'Popen', side_effect=popen):
            worker.run()

        assert read_bad_blocks(worker.bad_file) == [100, 500, 900]

    def test_pass_error_sets_exit_code(self, temp_dir):
        popen = fake_badblocks(return_codes={2: 1})
        worker = ScanWorker('/dev/sdb', 'X', temp_dir, passes=3)

        with patch.object(scan_worker.subprocess, 'Popen', side_effect=popen):
            assert worker.run() == 1

        assert len(popen.calls) == 3

    def test_terminate_stops_after_current_pass(self, temp_dir):
        worker = ScanWorker('/dev/sdb', 'X', temp_dir, passes=4)

        def on_start(pass_number, proc):
            if pass_number == 2:
                proc.wait.side_effect = lambda: worker.terminate() or -15

        popen = fake_badblocks({2: [42]}, on_start=on_start)
        with patch.object(scan_worker.subprocess, 'Popen', side_effect=popen):
            assert worker.run() == 143

        assert len(popen.calls) == 2
        assert read_bad_blocks(worker.bad_file) == [42]
        assert read_progress(worker.progress_file)['status'] == 'terminated'

    def test_main_parses_arguments(self, temp_dir):
        with patch.object(scan_worker.ScanWorker, 'run', return_value=0) as mock_run, \
                patch.object(scan_worker.signal, 'signal') as mock_signal:
            code = scan_worker.main([
                '--device', '/dev/sdb', '--tag', 'X', '--log-dir', temp_dir,
                '--passes', '2', '--no-ionice',
            ])

        assert code == 0
        mock_run.assert_called_once()
        handled = [c[0][0] for c in mock_signal.call_args_list]
        assert scan_worker.signal.SIGTERM in handled
