"""
Destructive surface-scan worker.

Runs as a child process, one per drive:

    python -m hddlib.burnin.scan_worker --device /dev/sdb --tag ZA1B2C3D \\
        --log-dir /var/log/hdd_validate_20240101_120000 --passes 4

Each pass runs ``badblocks -wsv`` with one pattern, writes its own log and
merges the addresses it found into the drive's ``.bad`` file. Progress is
published through a small key=value file that is rewritten atomically
before and after every pass.
"""

import argparse
import os
import signal
import subprocess
import sys
import tempfile
from typing import Dict, List, Optional, Set

PATTERNS = ('0xaa', '0x55', '0xff', '0x00')

EXIT_PASSES_OK = 0
EXIT_PASS_ERROR = 1
EXIT_TERMINATED = 143


def pattern_for_pass(pass_number: int) -> str:
    """Pattern for the 1-based pass number, cycling through PATTERNS."""
    if pass_number < 1:
        raise ValueError(f"pass_number must be >= 1, got {pass_number}")
    return PATTERNS[(pass_number - 1) % len(PATTERNS)]


def progress_path(log_dir: str, tag: str) -> str:
    return os.path.join(log_dir, f"scan_progress_{tag}.txt")


def bad_blocks_path(log_dir: str, tag: str) -> str:
    return os.path.join(log_dir, f"scan_badblocks_{tag}.bad")


def pass_log_path(log_dir: str, tag: str, pass_number: int, pattern: str) -> str:
    return os.path.join(log_dir, f"scan_badblocks_{tag}_pass{pass_number}_{pattern}.log")


def write_progress(path: str, **fields) -> None:
    text = ' '.join(f"{key}={value}" for key, value in fields.items()) + '\n'
    fd, tmp_path = tempfile.mkstemp(prefix='.progress.', dir=os.path.dirname(path) or '.')
    with os.fdopen(fd, 'w', encoding='utf-8') as f:
        f.write(text)
    os.replace(tmp_path, path)


def read_progress(path: str) -> Dict[str, str]:
    """Parse a progress file; empty dict if it does not exist yet."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            text = f.read()
    except FileNotFoundError:
        return {}
    fields = {}
    for token in text.split():
        key, sep, value = token.partition('=')
        if sep:
            fields[key] = value
    return fields


def read_bad_blocks(path: str) -> List[int]:
    """Numerically sorted, unique block numbers from a badblocks output file."""
    blocks: Set[int] = set()
    try:
        with open(path, 'r', encoding='utf-8') as f:
            for line in f:
                token = line.strip()
                if token.isdigit():
                    blocks.add(int(token))
    except FileNotFoundError:
        return []
    return sorted(blocks)


class ScanWorker:
    """
    Multi-pass badblocks runner for one drive.

    Example:
        >>> worker = ScanWorker('/dev/sdb', 'ZA1B2C3D', '/tmp/logs', passes=6)
        >>> worker.pass_plan()
        [(1, '0xaa'), (2, '0x55'), (3, '0xff'), (4, '0x00'), (5, '0xaa'), (6, '0x55')]
    """

    def __init__(
        self,
        device: str,
        tag: str,
        log_dir: str,
        passes: int = 4,
        block_size: int = 4096,
        badblocks_path: str = 'badblocks',
        nice: int = 10,
        use_ionice: bool = True,
    ):
        if passes < 1:
            raise ValueError(f"passes must be >= 1, got {passes}")
        self.device = device
        self.tag = tag
        self.log_dir = log_dir
        self.passes = passes
        self.block_size = block_size
        self.badblocks_path = badblocks_path
        self.nice = nice
        self.use_ionice = use_ionice
        self.progress_file = progress_path(log_dir, tag)
        self.bad_file = bad_blocks_path(log_dir, tag)
        self._proc: Optional[subprocess.Popen] = None
        self._terminated = False

    def pass_plan(self):
        return [(i, pattern_for_pass(i)) for i in range(1, self.passes + 1)]

    def build_command(self, pattern: str, output_file: str) -> List[str]:
        cmd = []
        if self.use_ionice:
            cmd += ['ionice', '-c3']
        cmd += ['nice', '-n', str(self.nice)]
        cmd += [
            self.badblocks_path,
            '-b', str(self.block_size),
            '-wsv',
            '-t', pattern,
            '-o', output_file,
            self.device,
        ]
        return cmd

    def run_pass(self, pass_number: int, pattern: str, output_file: str) -> int:
        log_path = pass_log_path(self.log_dir, self.tag, pass_number, pattern)
        with open(log_path, 'w', encoding='utf-8') as log:
            self._proc = subprocess.Popen(
                self.build_command(pattern, output_file),
                stdout=log,
                stderr=subprocess.STDOUT,
            )
            try:
                return self._proc.wait()
            finally:
                self._proc = None

    def run(self) -> int:
        """Run every pass; returns the worker exit code."""
        bad_blocks: Set[int] = set()
        any_error = False
        tmp_bad = self.bad_file + '.tmp'

        for pass_number, pattern in self.pass_plan():
            if self._terminated:
                break
            write_progress(self.progress_file, **{
                'pass': f"{pass_number}/{self.passes}", 'pattern': pattern, 'status': 'running',
            })
            if os.path.exists(tmp_bad):
                os.unlink(tmp_bad)

            rc = self.run_pass(pass_number, pattern, tmp_bad)
            bad_blocks.update(read_bad_blocks(tmp_bad))
            self._write_bad_file(bad_blocks)
            if self._terminated:
                break

            status = 'complete' if rc == 0 else 'error'
            any_error = any_error or rc != 0
            write_progress(self.progress_file, **{
                'pass': f"{pass_number}/{self.passes}", 'pattern': pattern, 'status': status,
            })

        if os.path.exists(tmp_bad):
            os.unlink(tmp_bad)
        self._write_bad_file(bad_blocks)

        if self._terminated:
            write_progress(self.progress_file, status='terminated', total_passes=self.passes)
            return EXIT_TERMINATED

        write_progress(self.progress_file, status='finished', total_passes=self.passes)
        return EXIT_PASS_ERROR if any_error else EXIT_PASSES_OK

    def _write_bad_file(self, bad_blocks: Set[int]) -> None:
        with open(self.bad_file, 'w', encoding='utf-8') as f:
            for block in sorted(bad_blocks):
                f.write(f"{block}\n")

    def terminate(self, signum=None, frame=None) -> None:
        """SIGTERM handler: stop the running badblocks and finish the loop."""
        self._terminated = True
        if self._proc is not None and self._proc.poll() is None:
            self._proc.terminate()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Multi-pass destructive surface scan of one drive')
    parser.add_argument('--device', required=True)
    parser.add_argument('--tag', required=True, help='Drive identity used in file names')
    parser.add_argument('--log-dir', required=True)
    parser.add_argument('--passes', type=int, default=4)
    parser.add_argument('--block-size', type=int, default=4096)
    parser.add_argument('--badblocks', default='badblocks')
    parser.add_argument('--nice', type=int, default=10)
    parser.add_argument('--no-ionice', action='store_true')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    worker = ScanWorker(
        device=args.device,
        tag=args.tag,
        log_dir=args.log_dir,
        passes=args.passes,
        block_size=args.block_size,
        badblocks_path=args.badblocks,
        nice=args.nice,
        use_ionice=not args.no_ionice,
    )
    signal.signal(signal.SIGTERM, worker.terminate)
    # The supervisor owns interrupt handling
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    return worker.run()


if __name__ == '__main__':
    sys.exit(main())
