"""
Scan Worker Process Manager

This module supervises the per-drive scan worker child processes: start,
liveness, progress, exit codes and termination of the whole process tree.
"""

import subprocess
import sys
from typing import Dict, List, Optional

import psutil

from .exceptions import BurnInProcessError
from .models import DriveIdentity, ScanWorkerState
from . import scan_worker
from hddlib.logger import get_module_logger

logger = get_module_logger(__name__)


class ScanWorkerManager:
    """
    Process manager for scan workers.

    This class handles:
    - Worker startup (one child process per drive)
    - PID tracking and liveness checks
    - Progress file reporting
    - Graceful termination with forced kill after a grace period

    Example:
        >>> manager = ScanWorkerManager(log_dir='/var/log/hdd_validate_x', passes=4)
        >>> manager.start_worker(identity)
        >>> while manager.any_running():
        ...     manager.report_progress()
        ...     time.sleep(60)
        >>> codes = manager.exit_codes()
    """

    def __init__(
        self,
        log_dir: str,
        passes: int = 4,
        block_size: int = 4096,
        badblocks_path: str = 'badblocks',
        nice: int = 10,
        use_ionice: bool = True,
    ):
        self.log_dir = log_dir
        self.passes = passes
        self.block_size = block_size
        self.badblocks_path = badblocks_path
        self.nice = nice
        self.use_ionice = use_ionice
        self._processes: Dict[str, subprocess.Popen] = {}
        self._states: Dict[str, ScanWorkerState] = {}

    def build_command(self, identity: DriveIdentity, device: str) -> List[str]:
        cmd = [
            sys.executable, '-m', 'hddlib.burnin.scan_worker',
            '--device', device,
            '--tag', identity.file_tag,
            '--log-dir', self.log_dir,
            '--passes', str(self.passes),
            '--block-size', str(self.block_size),
            '--badblocks', self.badblocks_path,
            '--nice', str(self.nice),
        ]
        if not self.use_ionice:
            cmd.append('--no-ionice')
        return cmd

    def start_worker(self, identity: DriveIdentity) -> ScanWorkerState:
        """
        Start the scan worker for one drive.

        Raises:
            BurnInProcessError: If the worker cannot be started or one is
                already running for this drive
        """
        if self.is_running(identity.key):
            raise BurnInProcessError(f"Scan worker already running for {identity.key}")

        device = identity.current_device()
        cmd = self.build_command(identity, device)
        try:
            process = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as e:
            raise BurnInProcessError(f"Failed to start scan worker for {device}: {e}")

        state = ScanWorkerState(
            drive_key=identity.key,
            drive_path=device,
            total_passes=self.passes,
            progress_file=scan_worker.progress_path(self.log_dir, identity.file_tag),
            bad_block_file=scan_worker.bad_blocks_path(self.log_dir, identity.file_tag),
            process_id=process.pid,
        )
        self._processes[identity.key] = process
        self._states[identity.key] = state
        logger.info(f"Scan worker started for {device} (PID {process.pid})")
        return state

    def is_running(self, key: str) -> bool:
        process = self._processes.get(key)
        if process is None:
            return False
        if process.poll() is None:
            return True
        self._states[key].exit_code = process.returncode
        return False

    def any_running(self) -> bool:
        return any([self.is_running(key) for key in list(self._processes)])

    def get_pid(self, key: str) -> Optional[int]:
        state = self._states.get(key)
        return state.process_id if state else None

    def states(self) -> List[ScanWorkerState]:
        return list(self._states.values())

    def refresh(self, key: str) -> ScanWorkerState:
        """Update a worker's state from its progress file."""
        state = self._states[key]
        fields = scan_worker.read_progress(state.progress_file)
        if 'pass' in fields:
            current, _, _total = fields['pass'].partition('/')
            if current.isdigit():
                state.current_pass = int(current)
        state.pattern = fields.get('pattern', state.pattern)
        state.status = fields.get('status', state.status)
        return state

    def report_progress(self) -> List[str]:
        """One progress line per live worker; also logged."""
        lines = []
        for key in list(self._processes):
            if not self.is_running(key):
                continue
            state = self.refresh(key)
            line = (
                f"[PROGRESS] {state.drive_path} ({key}) pass={state.current_pass}/"
                f"{state.total_passes} pattern={state.pattern or '-'} status={state.status}"
            )
            logger.info(line)
            lines.append(line)
        return lines

    def exit_codes(self) -> Dict[str, Optional[int]]:
        codes = {}
        for key, process in self._processes.items():
            codes[key] = process.poll()
            self._states[key].exit_code = codes[key]
        return codes

    def _process_tree(self, pid: int) -> List[psutil.Process]:
        try:
            parent = psutil.Process(pid)
            return [parent] + parent.children(recursive=True)
        except psutil.NoSuchProcess:
            return []

    def stop_all(self, timeout: float = 5) -> None:
        """
        Terminate every tracked worker and its children.

        SIGTERM first, SIGKILL for anything still alive after timeout.
        """
        procs: List[psutil.Process] = []
        for key, process in self._processes.items():
            if process.poll() is None:
                procs.extend(self._process_tree(process.pid))
        if not procs:
            return

        logger.warning(f"Terminating {len(procs)} scan process(es)")
        for proc in procs:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                continue

        _gone, alive = psutil.wait_procs(procs, timeout=timeout)
        for proc in alive:
            try:
                logger.warning(f"Force killing PID {proc.pid}")
                proc.kill()
            except psutil.NoSuchProcess:
                continue
        if alive:
            psutil.wait_procs(alive, timeout=5)

        for process in self._processes.values():
            try:
                process.wait(timeout=1)
            except subprocess.TimeoutExpired:
                logger.error(f"Scan worker PID {process.pid} did not exit")

    def clear(self) -> None:
        """Forget finished workers before the next batch."""
        self._processes = {k: p for k, p in self._processes.items() if p.poll() is None}
        self._states = {k: s for k, s in self._states.items() if k in self._processes}
