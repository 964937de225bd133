"""
Persistent State Layer

Owns the files a burn-in run leaves behind:

- ``drives.tsv``: drive registry, one row per identity, updated in place
- ``runs.tsv``: run history, append-only
- ``current_run.json``: live-status document, replaced atomically

A process-lifetime ProcessLock keeps a second orchestrator out. Each table
mutation additionally takes its own short-lived lock on ``<table>.lock``.
"""

import json
import os
import re
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import filelock

from .exceptions import BurnInLockError, BurnInStateError
from .models import (
    CurrentRunStatus,
    DriveIdentity,
    REGISTRY_COLUMNS,
    RUN_COLUMNS,
    RegistryEntry,
    RunRecord,
)
from . import system
from hddlib.logger import get_module_logger

logger = get_module_logger(__name__)

DIR_MODE = 0o750
FILE_MODE = 0o640


def now_iso() -> str:
    return datetime.now().astimezone().isoformat(timespec='seconds')


def clean_field(value) -> str:
    """Make a value safe for one TSV cell: no tabs, newlines or pipes."""
    text = re.sub(r'[\t\r\n|]', ' ', str(value if value is not None else ''))
    return re.sub(r'\s+', ' ', text).strip()


def _later(current: str, candidate: str) -> str:
    """Return whichever ISO timestamp is later; unparseable values lose."""
    try:
        current_dt = datetime.fromisoformat(current)
    except ValueError:
        return candidate
    try:
        candidate_dt = datetime.fromisoformat(candidate)
    except ValueError:
        return current
    try:
        return candidate if candidate_dt >= current_dt else current
    except TypeError:
        # naive vs aware
        return candidate


class ProcessLock:
    """
    Non-blocking advisory lock held for the orchestrator's lifetime.

    Example:
        >>> lock = ProcessLock('/var/lock/hdd_validate.lock')
        >>> lock.acquire()
        >>> ...
        >>> lock.release()
    """

    def __init__(self, lock_path: str):
        self.lock_path = lock_path
        self._lock = filelock.FileLock(lock_path)

    def acquire(self) -> None:
        Path(self.lock_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._lock.acquire(timeout=0)
        except filelock.Timeout:
            raise BurnInLockError(
                f"Another orchestrator is already running (lock: {self.lock_path})"
            )
        logger.debug(f"Process lock acquired: {self.lock_path}")

    def release(self) -> None:
        if self._lock.is_locked:
            self._lock.release(force=True)

    @property
    def is_locked(self) -> bool:
        return self._lock.is_locked


class StateStore:
    """
    Flat-file registry, run history and live status.

    Example:
        >>> store = StateStore('/var/lib/hdd_burnin')
        >>> store.initialize()
        >>> store.upsert_drive(identity)
        >>> store.append_run(record)
    """

    DRIVES_FILE = 'drives.tsv'
    RUNS_FILE = 'runs.tsv'
    STATUS_FILE = 'current_run.json'

    def __init__(self, state_dir: str, group: str = '', lock_timeout: float = 30):
        self.state_dir = Path(state_dir)
        self.group = group
        self.lock_timeout = lock_timeout
        self.drives_path = self.state_dir / self.DRIVES_FILE
        self.runs_path = self.state_dir / self.RUNS_FILE
        self.status_path = self.state_dir / self.STATUS_FILE

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Create the state directory and table headers if missing."""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        system.secure_path(str(self.state_dir), DIR_MODE, self.group)
        self._ensure_table(self.drives_path, REGISTRY_COLUMNS)
        self._ensure_table(self.runs_path, RUN_COLUMNS)

    def _ensure_table(self, path: Path, columns: List[str]) -> None:
        with self._table_lock(path):
            if not path.exists() or path.stat().st_size == 0:
                with open(path, 'w', encoding='utf-8') as f:
                    f.write('\t'.join(columns) + '\n')
            else:
                with open(path, 'r', encoding='utf-8') as f:
                    header = f.readline().rstrip('\n').split('\t')
                if header != columns:
                    raise BurnInStateError(
                        f"{path} has unexpected header: {' '.join(header)}"
                    )
        system.secure_path(str(path), FILE_MODE, self.group)

    def _table_lock(self, path: Path) -> filelock.FileLock:
        return filelock.FileLock(str(path) + '.lock', timeout=self.lock_timeout)

    # ------------------------------------------------------------------
    # Drive registry
    # ------------------------------------------------------------------

    def _read_rows(self, path: Path) -> List[List[str]]:
        if not path.exists():
            return []
        with open(path, 'r', encoding='utf-8') as f:
            lines = f.read().splitlines()
        return [line.split('\t') for line in lines[1:] if line.strip()]

    def read_drives(self) -> Dict[str, RegistryEntry]:
        return {
            entry.key: entry
            for entry in (RegistryEntry.from_row(row) for row in self._read_rows(self.drives_path))
        }

    def upsert_drive(self, identity: DriveIdentity, seen_at: Optional[str] = None) -> Optional[RegistryEntry]:
        """
        Record an observation of identity.

        New keys get first_seen = last_seen = seen_at. Known keys keep
        first_seen, move last_seen forward only, and fill alternate_id
        only when it was blank.

        Returns:
            The stored entry, or None if identity has no key
        """
        key = clean_field(identity.key)
        if not key:
            return None
        seen_at = seen_at or now_iso()

        try:
            with self._table_lock(self.drives_path):
                entries = self.read_drives()
                entry = entries.get(key)
                if entry is None:
                    entry = RegistryEntry(
                        key=key,
                        alternate_id=clean_field(identity.alternate_id),
                        model=clean_field(identity.model),
                        size_bytes=identity.size_bytes,
                        first_seen=seen_at,
                        last_seen=seen_at,
                    )
                    entries[key] = entry
                else:
                    entry.last_seen = _later(entry.last_seen, seen_at)
                    new_alt = clean_field(identity.alternate_id)
                    if not entry.alternate_id and new_alt:
                        entry.alternate_id = new_alt
                    if not entry.model and identity.model:
                        entry.model = clean_field(identity.model)
                    if not entry.size_bytes and identity.size_bytes:
                        entry.size_bytes = identity.size_bytes
                self._rewrite(self.drives_path, REGISTRY_COLUMNS,
                              [e.to_row() for e in entries.values()])
        except filelock.Timeout:
            raise BurnInStateError(f"Timed out waiting for lock on {self.drives_path}")
        return entry

    def _rewrite(self, path: Path, columns: List[str], rows: List[List[str]]) -> None:
        fd, tmp_path = tempfile.mkstemp(prefix=path.name + '.', dir=str(path.parent))
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write('\t'.join(columns) + '\n')
                for row in rows:
                    f.write('\t'.join(clean_field(cell) for cell in row) + '\n')
            system.secure_path(tmp_path, FILE_MODE, self.group)
            os.replace(tmp_path, str(path))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    # ------------------------------------------------------------------
    # Run history
    # ------------------------------------------------------------------

    def append_run(self, record: RunRecord) -> None:
        line = '\t'.join(clean_field(cell) for cell in record.to_row()) + '\n'
        try:
            with self._table_lock(self.runs_path):
                with open(self.runs_path, 'a', encoding='utf-8') as f:
                    f.write(line)
                    f.flush()
                    os.fsync(f.fileno())
        except filelock.Timeout:
            raise BurnInStateError(f"Timed out waiting for lock on {self.runs_path}")
        logger.info(
            f"Recorded {record.phase} {record.outcome} for {record.drive_key} (run {record.run_id})"
        )

    def read_runs(self) -> List[RunRecord]:
        return [RunRecord.from_row(row) for row in self._read_rows(self.runs_path)]

    def last_run(self, key: str) -> Optional[RunRecord]:
        """Most recent history row for key, if any."""
        latest = None
        for record in self.read_runs():
            if record.drive_key == key:
                latest = record
        return latest

    # ------------------------------------------------------------------
    # Live status
    # ------------------------------------------------------------------

    def write_status(self, status: CurrentRunStatus) -> None:
        """Atomically replace current_run.json (temp file in the same dir, then rename)."""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix='.current_run.', suffix='.tmp', dir=str(self.state_dir))
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(status.to_dict(), f, indent=2)
                f.write('\n')
                f.flush()
                os.fsync(f.fileno())
            system.secure_path(tmp_path, FILE_MODE, self.group)
            os.replace(tmp_path, str(self.status_path))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
