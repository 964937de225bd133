"""
Burn-in Data Model

Dataclasses for drive identity, registry rows, run history rows, the
live-status document, scan worker state and the orchestrator run context.
"""

import os
import re
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, List, Optional


class Phase(str, Enum):
    IDLE = 'IDLE'
    TRIAGE = 'TRIAGE'
    SCAN = 'SCAN'


class Outcome(str, Enum):
    PASS = 'PASS'
    WARN = 'WARN'
    FAIL = 'FAIL'
    ABORTED = 'ABORTED'


class RunStatus(str, Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    ABORTED = 'aborted'


class Health(str, Enum):
    PASSED = 'PASSED'
    FAILED = 'FAILED'
    UNKNOWN = 'UNKNOWN'


REGISTRY_COLUMNS = ['sn', 'wwn', 'model', 'size_bytes', 'first_seen', 'last_seen', 'notes']

RUN_COLUMNS = [
    'run_id', 'ts', 'phase', 'outcome', 'sn', 'wwn', 'model', 'size_bytes',
    'poh', 'realloc', 'pending', 'offline_unc', 'udma_crc', 'smart_health',
    'temp_max', 'log_dir',
]


@dataclass
class DriveIdentity:
    """
    Durable identity of one physical drive.

    ``key`` is the registry primary key: the serial number when usable,
    otherwise ``WWN_<alternate_id>``, otherwise ``DEV_<basename>``.
    ``device_node`` is the kernel name seen at resolution time; use
    ``current_device()`` to follow the stable alias if it moved.
    """
    key: str
    serial_number: str = ''
    alternate_id: str = ''
    model: str = ''
    size_bytes: int = 0
    stable_alias: str = ''
    device_node: str = ''

    def current_device(self) -> str:
        if self.stable_alias:
            return os.path.realpath(self.stable_alias)
        return self.device_node

    @property
    def label(self) -> str:
        return f"{self.key} ({self.device_node})"

    @property
    def file_tag(self) -> str:
        """Key made safe for use in file names."""
        return re.sub(r'[^A-Za-z0-9._-]', '_', self.key)


@dataclass
class RegistryEntry:
    key: str
    alternate_id: str = ''
    model: str = ''
    size_bytes: int = 0
    first_seen: str = ''
    last_seen: str = ''
    notes: str = ''

    def to_row(self) -> List[str]:
        return [self.key, self.alternate_id, self.model, str(self.size_bytes),
                self.first_seen, self.last_seen, self.notes]

    @classmethod
    def from_row(cls, row: List[str]) -> 'RegistryEntry':
        row = list(row) + [''] * (len(REGISTRY_COLUMNS) - len(row))
        return cls(
            key=row[0],
            alternate_id=row[1],
            model=row[2],
            size_bytes=_to_int(row[3]),
            first_seen=row[4],
            last_seen=row[5],
            notes=row[6],
        )


@dataclass
class RunRecord:
    """One append-only run history row (one drive, one phase attempt)."""
    run_id: str
    timestamp: str
    phase: str
    outcome: str
    drive_key: str
    alternate_id: str = ''
    model: str = ''
    size_bytes: int = 0
    power_on_hours: int = 0
    reallocated_sectors: int = 0
    pending_sectors: int = 0
    offline_uncorrectable: int = 0
    interface_error_count: int = 0
    health_verdict: str = Health.UNKNOWN.value
    max_temperature_c: Optional[int] = None
    log_directory: str = ''

    def to_row(self) -> List[str]:
        temp = '' if self.max_temperature_c is None else str(self.max_temperature_c)
        return [
            self.run_id, self.timestamp, self.phase, self.outcome, self.drive_key,
            self.alternate_id, self.model, str(self.size_bytes),
            str(self.power_on_hours), str(self.reallocated_sectors),
            str(self.pending_sectors), str(self.offline_uncorrectable),
            str(self.interface_error_count), self.health_verdict, temp,
            self.log_directory,
        ]

    @classmethod
    def from_row(cls, row: List[str]) -> 'RunRecord':
        row = list(row) + [''] * (len(RUN_COLUMNS) - len(row))
        return cls(
            run_id=row[0],
            timestamp=row[1],
            phase=row[2],
            outcome=row[3],
            drive_key=row[4],
            alternate_id=row[5],
            model=row[6],
            size_bytes=_to_int(row[7]),
            power_on_hours=_to_int(row[8]),
            reallocated_sectors=_to_int(row[9]),
            pending_sectors=_to_int(row[10]),
            offline_uncorrectable=_to_int(row[11]),
            interface_error_count=_to_int(row[12]),
            health_verdict=row[13],
            max_temperature_c=_to_int(row[14]) if row[14] else None,
            log_directory=row[15],
        )


@dataclass
class ScanWorkerState:
    """Supervisor-side view of one running scan worker."""
    drive_key: str
    drive_path: str
    total_passes: int
    progress_file: str
    bad_block_file: str
    process_id: Optional[int] = None
    current_pass: int = 0
    pattern: str = ''
    status: str = 'starting'
    exit_code: Optional[int] = None


@dataclass
class CurrentRunStatus:
    """Live-status document, rewritten atomically on every transition."""
    run_id: str
    status: str = RunStatus.IDLE.value
    phase: str = Phase.IDLE.value
    phase_started_at: str = ''
    last_update: str = ''
    selected_drives: List[str] = field(default_factory=list)
    selected_device_nodes: List[str] = field(default_factory=list)
    abort_reason: str = ''
    temp_max_c: Dict[str, int] = field(default_factory=dict)
    log_dir: str = ''
    summary_path: str = ''
    limits: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class RunContext:
    """
    Mutable state owned by one orchestrator instance.

    Handed to the temperature monitor; never stored at module level.
    """
    phase: Phase = Phase.IDLE
    status: RunStatus = RunStatus.IDLE
    phase_started_at: str = ''
    selected: List[DriveIdentity] = field(default_factory=list)
    temp_max: Dict[str, int] = field(default_factory=dict)
    last_health: Dict[str, str] = field(default_factory=dict)
    abort_reason: str = ''

    @property
    def active(self) -> bool:
        return self.phase != Phase.IDLE

    def reset_selection(self) -> None:
        self.selected = []
        self.temp_max = {}
        self.last_health = {}


def _to_int(value: str) -> int:
    try:
        return int(str(value).strip())
    except ValueError:
        return 0
