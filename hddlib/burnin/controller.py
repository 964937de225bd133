"""
Burn-in Controller

Phase state machine and unified abort path for drive qualification.

This module provides the BurnInOrchestrator class that:
- Runs TRIAGE (SMART self-tests, non-destructive)
- Runs SCAN (multi-pass badblocks, destructive) behind the safety checks
- Polls drive temperature during every wait
- Routes every abnormal termination through a single abort() call
- Records one run history row per drive and phase attempt
"""

import os
import signal
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from hddlib.logger import Logger, get_module_logger, get_summary_logger
from .config import BurnInConfig
from .exceptions import (
    EXIT_ABORTED,
    BurnInAbort,
    BurnInConfigError,
    BurnInSafetyError,
    BurnInSelectionError,
)
from .identity import IdentityResolver
from .inventory import DriveInventory
from .models import (
    CurrentRunStatus,
    DriveIdentity,
    Health,
    Outcome,
    Phase,
    RunContext,
    RunRecord,
    RunStatus,
)
from .monitor import CancelToken, TemperatureMonitor
from .process_manager import ScanWorkerManager
from .safety import SafetyChecker
from .scan_worker import bad_blocks_path, read_bad_blocks
from .smart_probe import SmartAttributes, SmartProbe
from .state_store import DIR_MODE, ProcessLock, StateStore, now_iso
from .verdict import scan_verdict, triage_verdict
from . import system

logger = get_module_logger(__name__)

ACTION_TRIAGE = 'triage'
ACTION_SCAN = 'scan'
ACTION_BOTH = 'both'
ACTIONS = (ACTION_TRIAGE, ACTION_SCAN, ACTION_BOTH)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


class BurnInOrchestrator:
    """
    Burn-in orchestrator for one process lifetime.

    Collaborators (probe, resolver, safety checker, state store, worker
    manager) are created from the configuration unless passed in.

    Attributes:
        config (dict): Effective configuration
        run_id (str): ``YYYYmmdd_HHMMSS`` of orchestrator start
        log_dir (str): Per-run log directory
        summary_path (str): Human-readable summary file
        context (RunContext): Phase, selection and temperature state

    Example:
        >>> orchestrator = BurnInOrchestrator({'max_temp_c': 45})
        >>> with orchestrator.session():
        ...     entries = orchestrator.inventory.scan()
        ...     drives = orchestrator.inventory.select(entries, '1 2')
        ...     failed = orchestrator.run_action('both', drives)
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        probe: Optional[SmartProbe] = None,
        resolver: Optional[IdentityResolver] = None,
        safety: Optional[SafetyChecker] = None,
        store: Optional[StateStore] = None,
        workers: Optional[ScanWorkerManager] = None,
        confirm_fn: Optional[Callable[[str], str]] = None,
        run_id: Optional[str] = None,
        install_signal_handlers: bool = True,
    ):
        """
        Initialize orchestrator.

        Raises:
            BurnInConfigError: If the configuration is invalid
        """
        merged = BurnInConfig.merge_config(BurnInConfig.get_default_config(), config or {})
        try:
            BurnInConfig.validate_config(merged)
        except ValueError as e:
            raise BurnInConfigError(str(e))
        self.config = merged

        self.run_id = run_id or datetime.now().strftime('%Y%m%d_%H%M%S')
        self.log_dir = os.path.join(merged['log_root'], f"hdd_validate_{self.run_id}")
        self.summary_path = os.path.join(self.log_dir, 'SUMMARY.txt')

        self.probe = probe or SmartProbe(merged['smartctl_path'], merged['smart_timeout_seconds'])
        self.resolver = resolver or IdentityResolver(self.probe, timeout=merged['smart_timeout_seconds'])
        self.safety = safety or SafetyChecker()
        self.store = store or StateStore(merged['state_dir'], group=merged['burnin_group'])
        self.workers = workers or ScanWorkerManager(
            self.log_dir,
            passes=merged['scan_passes'],
            block_size=merged['block_size'],
            badblocks_path=merged['badblocks_path'],
            nice=merged['scan_nice'],
            use_ionice=merged['use_ionice'],
        )
        self.inventory = DriveInventory(self.resolver, self.store)
        self.confirm_fn = confirm_fn or input

        self.context = RunContext()
        self.cancel_token = CancelToken()
        self.monitor = TemperatureMonitor(
            self.probe, merged['max_temp_c'], self.abort, on_update=self._write_status
        )
        self.process_lock = ProcessLock(merged['lock_file'])
        self.summary = get_summary_logger()

        self.install_signal_handlers = install_signal_handlers
        self._previous_handlers: Dict[int, Any] = {}
        self._aborting = False
        self._abort_code = EXIT_ABORTED
        self._completed = False

    def set_config(self, **kwargs) -> None:
        """
        Update tunables before a phase starts.

        Raises:
            BurnInConfigError: If configuration is invalid
        """
        try:
            BurnInConfig.validate_config(kwargs)
        except ValueError as e:
            raise BurnInConfigError(str(e))
        self.config.update(kwargs)
        self.monitor.max_temp_c = self.config['max_temp_c']
        for key, attr in (('scan_passes', 'passes'), ('block_size', 'block_size')):
            if key in kwargs and hasattr(self.workers, attr):
                setattr(self.workers, attr, kwargs[key])
        logger.info(f"Configuration updated: {kwargs}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def check_environment(self) -> None:
        """
        Raises:
            BurnInConfigError: Not root, or a required utility is missing
        """
        if self.config['require_root'] and os.geteuid() != 0:
            raise BurnInConfigError("Must run as root")
        missing = system.missing_tools(self.config['required_tools'])
        if missing:
            raise BurnInConfigError(f"Missing required tools: {', '.join(missing)}")

    def startup(self) -> None:
        """Check the environment, take the process lock and create run files."""
        self.check_environment()
        self.process_lock.acquire()
        try:
            os.makedirs(self.log_dir, exist_ok=True)
            system.secure_path(self.log_dir, DIR_MODE, self.config['burnin_group'])
            Logger.init_logging(self.log_dir)
            Logger.attach_summary(self.summary_path)
            self.store.initialize()
        except BaseException:
            self.process_lock.release()
            raise

        self._write_summary_header()
        self._mark_idle()
        self._install_signal_handlers()

    def complete(self) -> None:
        self._mark_idle()
        self._completed = True
        self.summary.info(f"Run {self.run_id} finished. Summary: {self.summary_path}")

    def shutdown(self) -> None:
        self._restore_signal_handlers()
        self.process_lock.release()

    @contextmanager
    def session(self):
        """
        Run the orchestrator between startup() and shutdown().

        Errors escaping the body, and leaving the body without complete()
        or abort(), both end in abort().
        """
        self.startup()
        try:
            try:
                yield self
            except KeyboardInterrupt:
                self.abort('SIGINT', 128 + signal.SIGINT)
            except BurnInAbort:
                raise
            except Exception as e:
                logger.exception("Unrecoverable error")
                self.abort(f"fatal: {e}")
            else:
                self.complete()
            finally:
                if not self._completed and not self._aborting:
                    self.abort('Unexpected exit')
        finally:
            self.shutdown()

    @property
    def aborting(self) -> bool:
        return self._aborting

    # ------------------------------------------------------------------
    # Signals and waits
    # ------------------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        if not self.install_signal_handlers:
            return
        if threading.current_thread() is not threading.main_thread():
            logger.warning("Not on the main thread; signal handlers not installed")
            return
        for sig in HANDLED_SIGNALS:
            self._previous_handlers[sig] = signal.signal(sig, self._handle_signal)

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._previous_handlers.items():
            signal.signal(sig, handler)
        self._previous_handlers = {}

    def _handle_signal(self, signum, frame) -> None:
        name = signal.Signals(signum).name
        if self._aborting:
            logger.warning(f"{name} received while aborting; ignored")
            return
        self.cancel_token.cancel(name, 128 + signum)
        if not self.context.active:
            # Idle at a prompt: nothing is waiting on the token
            self.abort(name, 128 + signum)

    def _checkpoint(self) -> None:
        if self.cancel_token.cancelled:
            self.abort(self.cancel_token.reason, self.cancel_token.exit_code or EXIT_ABORTED)

    def _sleep(self, seconds: float) -> None:
        self.cancel_token.wait(seconds)
        self._checkpoint()

    def _monitored_wait(self, total_seconds: float, interval: float) -> None:
        """Wait total_seconds, running the temperature monitor every interval."""
        deadline = time.monotonic() + total_seconds
        while True:
            self._checkpoint()
            self.monitor.tick(self.context)
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            self._sleep(min(interval, remaining) if interval > 0 else remaining)

    # ------------------------------------------------------------------
    # Status and records
    # ------------------------------------------------------------------

    def status_document(self) -> CurrentRunStatus:
        ctx = self.context
        return CurrentRunStatus(
            run_id=self.run_id,
            status=ctx.status.value,
            phase=ctx.phase.value,
            phase_started_at=ctx.phase_started_at,
            last_update=now_iso(),
            selected_drives=[d.key for d in ctx.selected],
            selected_device_nodes=[d.device_node for d in ctx.selected],
            abort_reason=ctx.abort_reason,
            temp_max_c=dict(ctx.temp_max),
            log_dir=self.log_dir,
            summary_path=self.summary_path,
            limits={
                'max_temp_c': self.config['max_temp_c'],
                'block_size': self.config['block_size'],
                'max_triage_drives': self.config['max_triage_drives'],
                'max_scan_drives': self.config['max_scan_drives'],
                'scan_passes': self.config['scan_passes'],
            },
        )

    def _write_status(self) -> None:
        self.store.write_status(self.status_document())

    def _mark_idle(self) -> None:
        ctx = self.context
        ctx.phase = Phase.IDLE
        ctx.status = RunStatus.IDLE
        ctx.phase_started_at = ''
        ctx.reset_selection()
        self._write_status()

    def _begin_phase(self, phase: Phase, drives: List[DriveIdentity]) -> None:
        ctx = self.context
        ctx.reset_selection()
        ctx.selected = list(drives)
        ctx.phase = phase
        ctx.status = RunStatus.RUNNING
        ctx.phase_started_at = now_iso()
        ctx.abort_reason = ''
        self._write_status()
        self.summary.info('')
        self.summary.info(f"=== {phase.value} started {ctx.phase_started_at} ===")
        for drive in drives:
            self.summary.info(
                f"  {drive.device_node}  {drive.key}  {drive.model}  {drive.stable_alias or '-'}"
            )

    def _write_summary_header(self) -> None:
        cfg = self.config
        self.summary.info(f"HDD burn-in run {self.run_id}")
        self.summary.info(f"Started: {now_iso()}")
        self.summary.info(f"Log dir: {self.log_dir}")
        self.summary.info(
            f"MAX_TEMP={cfg['max_temp_c']}C MAX_TRIAGE={cfg['max_triage_drives']} "
            f"MAX_SCAN={cfg['max_scan_drives']} BLOCK_SIZE={cfg['block_size']} "
            f"SCAN_PASSES={cfg['scan_passes']} SMART_TIMEOUT={cfg['smart_timeout_seconds']}s"
        )

    def _capture_path(self, phase: Phase, kind: str, stage: str, drive: DriveIdentity) -> str:
        return os.path.join(self.log_dir, f"{phase.value.lower()}_{kind}_{stage}_{drive.file_tag}.log")

    def _capture_dmesg(self, tag: str) -> None:
        if not self.config['capture_dmesg']:
            return
        out_path = os.path.join(self.log_dir, f"dmesg_{tag}.log")
        if not system.capture_dmesg(out_path):
            logger.warning(f"dmesg capture unavailable ({tag})")

    def _record(
        self,
        phase: Phase,
        outcome: Outcome,
        drive: DriveIdentity,
        health: str,
        attributes: Optional[SmartAttributes],
    ) -> RunRecord:
        attrs = attributes or SmartAttributes()
        record = RunRecord(
            run_id=self.run_id,
            timestamp=now_iso(),
            phase=phase.value,
            outcome=outcome.value,
            drive_key=drive.key,
            alternate_id=drive.alternate_id,
            model=drive.model,
            size_bytes=drive.size_bytes,
            power_on_hours=attrs.power_on_hours,
            reallocated_sectors=attrs.reallocated,
            pending_sectors=attrs.pending,
            offline_uncorrectable=attrs.offline_uncorrectable,
            interface_error_count=attrs.udma_crc,
            health_verdict=health,
            max_temperature_c=self.context.temp_max.get(drive.key),
            log_directory=self.log_dir,
        )
        self.store.append_run(record)
        return record

    # ------------------------------------------------------------------
    # TRIAGE
    # ------------------------------------------------------------------

    def run_triage(self, drives: List[DriveIdentity]) -> List[RunRecord]:
        """
        Non-destructive SMART triage of the selected drives.

        Raises:
            BurnInSelectionError: More drives than max_triage_drives
        """
        cfg = self.config
        drives = list(drives)
        if not drives:
            logger.info("TRIAGE skipped: no drives selected")
            return []
        if len(drives) > cfg['max_triage_drives']:
            raise BurnInSelectionError(
                f"Selected {len(drives)} drives for triage, max is {cfg['max_triage_drives']}"
            )

        self._begin_phase(Phase.TRIAGE, drives)
        self._capture_dmesg('pre_triage')

        captures: Dict[str, List[bool]] = {d.key: [] for d in drives}
        for drive in drives:
            self._checkpoint()
            device = drive.current_device()
            ok = self.probe.dump_extended(device, self._capture_path(Phase.TRIAGE, 'smart', 'pre', drive))
            captures[drive.key].append(ok)
            if not ok:
                self.summary.warning(f"[!] Pre-test SMART dump unavailable for {drive.label}")
            self.probe.start_selftest(device, 'short')
            if self.probe.supports_conveyance(device):
                self.probe.start_selftest(device, 'conveyance')
            else:
                logger.info(f"Conveyance self-test not supported on {device}")

        logger.info(f"Waiting {cfg['settle_seconds']}s for short/conveyance self-tests")
        self._monitored_wait(cfg['settle_seconds'], cfg['monitor_interval_seconds'])

        for drive in drives:
            self._checkpoint()
            device = drive.current_device()
            captures[drive.key].append(self.probe.selftest_log(
                device, self._capture_path(Phase.TRIAGE, 'selftest', 'after_short', drive)))
            captures[drive.key].append(self.probe.error_log(
                device, self._capture_path(Phase.TRIAGE, 'errorlog', 'after_short', drive)))

        for drive in drives:
            self._checkpoint()
            self.probe.start_selftest(drive.current_device(), 'long')

        while True:
            self._checkpoint()
            self.monitor.tick(self.context)
            busy = [d for d in drives if self.probe.selftest_in_progress(d.current_device())]
            if not busy:
                break
            logger.info(f"Long self-test in progress on {', '.join(d.key for d in busy)}")
            self._sleep(cfg['selftest_poll_seconds'])

        records = []
        for drive in drives:
            self._checkpoint()
            device = drive.current_device()
            drive_captures = captures[drive.key]
            drive_captures.append(self.probe.dump_extended(
                device, self._capture_path(Phase.TRIAGE, 'smart', 'post', drive)))
            selftest_path = self._capture_path(Phase.TRIAGE, 'selftest', 'after_long', drive)
            selftest_ok = self.probe.selftest_log(device, selftest_path)
            drive_captures.append(selftest_ok)
            drive_captures.append(self.probe.error_log(
                device, self._capture_path(Phase.TRIAGE, 'errorlog', 'after_long', drive)))

            health = self.probe.health(device)
            self.context.last_health[drive.key] = health
            attributes = self.probe.attributes(device)
            selftest_failed = False
            if selftest_ok:
                with open(selftest_path, 'r', encoding='utf-8') as f:
                    selftest_failed = SmartProbe.selftest_log_failed(f.read())

            outcome, reason = triage_verdict(health, attributes, selftest_failed, drive_captures)
            records.append(self._record(Phase.TRIAGE, outcome, drive, health, attributes))
            self.summary.info(f"[TRIAGE RESULT] {drive.label} {outcome.value}: {reason}")

        self._capture_dmesg('post_triage')
        self._mark_idle()
        return records

    # ------------------------------------------------------------------
    # SCAN
    # ------------------------------------------------------------------

    def confirm_scan(self, drives: List[DriveIdentity]) -> bool:
        token = self.config['confirm_token']
        print('')
        print('!!! DESTRUCTIVE SURFACE SCAN - ALL DATA ON THESE DRIVES WILL BE ERASED !!!')
        for drive in drives:
            print(f"  {drive.device_node}  {drive.key}  {drive.model}")
        answer = self.confirm_fn(f"Type {token} to continue: ")
        return (answer or '').strip() == token

    def run_scan(self, drives: List[DriveIdentity]) -> bool:
        """
        Destructive multi-pass surface scan of the selected drives.

        Returns:
            bool: True if any drive FAILED (batch failure)

        Raises:
            BurnInSelectionError: More drives than max_scan_drives
            BurnInSafetyError: A drive is not eligible for erasure
        """
        cfg = self.config
        drives = list(drives)
        if not drives:
            logger.info("SCAN skipped: no drives selected")
            return False
        if len(drives) > cfg['max_scan_drives']:
            raise BurnInSelectionError(
                f"Selected {len(drives)} drives for scan, max is {cfg['max_scan_drives']}"
            )

        self.safety.check_all([d.current_device() for d in drives])

        if not self.confirm_scan(drives):
            self.summary.info("SCAN cancelled: confirmation not given")
            return False

        self._begin_phase(Phase.SCAN, drives)
        self._capture_dmesg('pre_scan')
        self.workers.clear()

        pre_ok: Dict[str, bool] = {}
        for drive in drives:
            self._checkpoint()
            device = drive.current_device()
            pre_ok[drive.key] = self.probe.dump_extended(
                device, self._capture_path(Phase.SCAN, 'smart', 'pre', drive))
            if not pre_ok[drive.key]:
                self.summary.warning(f"[!] Pre-scan SMART dump unavailable for {drive.label}")
            self.workers.start_worker(drive)

        while True:
            self._checkpoint()
            self.monitor.tick(self.context)
            if not self.workers.any_running():
                break
            self.workers.report_progress()
            self._sleep(cfg['scan_poll_seconds'])

        exit_codes = self.workers.exit_codes()
        batch_failed = False
        for drive in drives:
            self._checkpoint()
            device = drive.current_device()
            code = exit_codes.get(drive.key)
            if code != 0:
                self.summary.warning(f"[!] Scan worker for {drive.label} exited with {code}")

            bad_blocks = read_bad_blocks(bad_blocks_path(self.log_dir, drive.file_tag))
            post_ok = self.probe.dump_extended(
                device, self._capture_path(Phase.SCAN, 'smart', 'post', drive))
            health = self.probe.health(device)
            self.context.last_health[drive.key] = health
            attributes = self.probe.attributes(device)

            outcome, reason = scan_verdict(health, attributes, bad_blocks, [pre_ok[drive.key], post_ok])
            self._record(Phase.SCAN, outcome, drive, health, attributes)
            self.summary.info(f"[SCAN RESULT] {drive.label} {outcome.value}: {reason}")
            if outcome == Outcome.FAIL:
                batch_failed = True

        self._capture_dmesg('post_scan')
        self._mark_idle()
        return batch_failed

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def run_action(self, action: str, drives: List[DriveIdentity]) -> bool:
        """
        Run triage, scan or both on drives.

        Safety and selection violations, interrupts and unexpected errors
        end in abort().

        Returns:
            bool: True on scan batch failure
        """
        if action not in ACTIONS:
            raise ValueError(f"Unknown action: {action}")
        try:
            batch_failed = False
            if action == ACTION_BOTH and len(drives) > self.config['max_scan_drives']:
                raise BurnInSelectionError(
                    f"Selected {len(drives)} drives for scan, max is {self.config['max_scan_drives']}"
                )
            if action in (ACTION_TRIAGE, ACTION_BOTH):
                self.run_triage(drives)
            if action in (ACTION_SCAN, ACTION_BOTH):
                batch_failed = self.run_scan(drives)
            return batch_failed
        except (BurnInSafetyError, BurnInSelectionError) as e:
            self.abort(f"Refusing: {e}")
        except KeyboardInterrupt:
            self.abort('SIGINT', 128 + signal.SIGINT)
        except Exception as e:
            logger.exception(f"Unrecoverable error during {action}")
            self.abort(f"fatal: {e}")

    # ------------------------------------------------------------------
    # Abort
    # ------------------------------------------------------------------

    def abort(self, reason: str, exit_code: int = EXIT_ABORTED) -> None:
        """
        Unified abort path. Never returns.

        Marks the status aborted, stops every scan worker, records one ABORTED
        row for every drive selected in the active phase and raises
        BurnInAbort. A second call while aborting raises immediately.
        """
        if self._aborting:
            raise BurnInAbort(reason, self._abort_code)
        self._aborting = True
        self._abort_code = exit_code

        ctx = self.context
        reason = reason or 'unknown'
        ctx.status = RunStatus.ABORTED
        ctx.abort_reason = reason
        self.summary.error(f"[ABORT] {reason}")

        try:
            self._write_status()
        except Exception:
            logger.exception("Could not write aborted status")

        try:
            self.workers.stop_all(self.config['kill_grace_seconds'])
        except Exception:
            logger.exception("Could not stop scan workers")

        if ctx.active:
            for drive in ctx.selected:
                health = ctx.last_health.get(drive.key, Health.UNKNOWN.value)
                try:
                    self._record(ctx.phase, Outcome.ABORTED, drive, health, None)
                except Exception:
                    logger.exception(f"Could not record ABORTED row for {drive.key}")

        try:
            self._write_status()
        except Exception:
            logger.exception("Could not write aborted status")

        self.summary.error(f"[ABORT] Summary: {self.summary_path}")
        print(f"ABORTED: {reason}")
        print(f"Summary: {self.summary_path}")
        raise BurnInAbort(reason, exit_code)

    def __repr__(self) -> str:
        return (
            f"BurnInOrchestrator(run_id={self.run_id!r}, phase={self.context.phase.value}, "
            f"status={self.context.status.value})"
        )
