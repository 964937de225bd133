"""
SMART Diagnostic Probe

Issues smartctl queries with transport negotiation and extracts health,
attribute, temperature and self-test information. Every call is bounded
by the configured timeout; a timeout, a missing binary, a failed exit
status or empty output is reported as ``None`` ("unavailable"), never as
a zero value.
"""

import re
import subprocess
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .models import Health
from hddlib.logger import get_module_logger

logger = get_module_logger(__name__)

# Transport hints tried in order on first contact with a device
TRANSPORT_HINTS: List[List[str]] = [[], ['-d', 'sat'], ['-d', 'scsi']]

# smartctl exit bits: command line did not parse, device open failed
COMMAND_FAILED_BITS = 0x3

SELFTEST_KINDS = ('short', 'conveyance', 'long')

ATTR_POWER_ON_HOURS = 'Power_On_Hours'
ATTR_REALLOCATED = 'Reallocated_Sector_Ct'
ATTR_PENDING = 'Current_Pending_Sector'
ATTR_OFFLINE_UNC = 'Offline_Uncorrectable'
ATTR_UDMA_CRC = 'UDMA_CRC_Error_Count'

# Attributes whose non-zero raw value means defective media
SECTOR_ATTRIBUTES = (ATTR_REALLOCATED, ATTR_PENDING, ATTR_OFFLINE_UNC)

TEMPERATURE_ATTRIBUTES = ('Temperature_Celsius', 'Temperature_Internal', 'Airflow_Temperature_Cel')


@dataclass
class SmartAttributes:
    """
    Raw attribute values from ``smartctl -A``.

    ``get()`` returns 0 for an attribute the drive does not report; an
    unavailable probe is represented by the absence of a SmartAttributes
    object, not by zeros.
    """
    values: Dict[str, int] = field(default_factory=dict)

    def get(self, name: str) -> int:
        return self.values.get(name, 0)

    @property
    def power_on_hours(self) -> int:
        return self.get(ATTR_POWER_ON_HOURS)

    @property
    def reallocated(self) -> int:
        return self.get(ATTR_REALLOCATED)

    @property
    def pending(self) -> int:
        return self.get(ATTR_PENDING)

    @property
    def offline_uncorrectable(self) -> int:
        return self.get(ATTR_OFFLINE_UNC)

    @property
    def udma_crc(self) -> int:
        return self.get(ATTR_UDMA_CRC)

    def has_bad_sectors(self) -> bool:
        return any(self.get(name) > 0 for name in SECTOR_ATTRIBUTES)


class SmartProbe:
    """
    smartctl wrapper with a per-instance transport cache.

    Example:
        >>> probe = SmartProbe(timeout=5)
        >>> probe.health('/dev/sdb')
        'PASSED'
        >>> attrs = probe.attributes('/dev/sdb')
        >>> attrs.reallocated if attrs else 'unavailable'
        0
    """

    _PATTERNS = {
        'serial':           re.compile(r'^Serial Number:\s*(.+?)\s*$', re.MULTILINE | re.IGNORECASE),
        'wwn':              re.compile(r'^(?:LU WWN Device Id|WWN|Logical Unit id):\s*(.+?)\s*$',
                                       re.MULTILINE | re.IGNORECASE),
        'health_passed':    re.compile(r'SMART overall-health self-assessment test result:.*PASSED'
                                       r'|SMART Health Status:\s*OK', re.IGNORECASE),
        'health_failed':    re.compile(r'SMART.*FAILED|FAILED!'),
        'scsi_temperature': re.compile(r'^Current Drive Temperature:\s*(\d+)', re.MULTILINE),
        'nvme_temperature': re.compile(r'^Temperature:\s*(\d+)', re.MULTILINE),
        'in_progress':      re.compile(r'in progress', re.IGNORECASE),
        'no_conveyance':    re.compile(r'No Conveyance Self-test supported', re.IGNORECASE),
        'conveyance':       re.compile(r'Conveyance Self-test supported', re.IGNORECASE),
        'attribute_table':  re.compile(r'^ID#\s+ATTRIBUTE_NAME', re.MULTILINE),
        'selftest_failure': re.compile(
            r'read failure|write failure|completed:.*failure|Completed:.*error'
            r'|Interrupted.*host reset|self-test.*failed',
            re.IGNORECASE
        ),
    }

    def __init__(self, smartctl_path: str = 'smartctl', timeout: float = 5):
        self.smartctl_path = smartctl_path
        self.timeout = timeout
        self._transport_cache: Dict[str, List[str]] = {}

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    def _execute(self, device: str, args: List[str], transport: List[str]) -> Tuple[bool, str]:
        """Run smartctl; return (answered, output). Output is kept even when it did not answer."""
        cmd = [self.smartctl_path] + transport + args + [device]
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                universal_newlines=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"smartctl timed out after {self.timeout}s: {' '.join(cmd)}")
            return False, ''
        except OSError as e:
            logger.warning(f"smartctl could not be started: {e}")
            return False, ''

        output = result.stdout or ''
        # The banner is printed on every call; only exit bits 0-1 say the
        # command line parsed and the device answered
        if result.returncode & COMMAND_FAILED_BITS:
            logger.debug(f"smartctl exited {result.returncode}: {' '.join(cmd)}")
            return False, output
        return bool(output.strip()), output

    def _invoke(self, device: str, args: List[str], transport: List[str]) -> Optional[str]:
        answered, output = self._execute(device, args, transport)
        return output if answered else None

    def negotiate(self, device: str) -> List[str]:
        """
        Return the transport hint for device, negotiating on first contact.

        The first hint whose identify query produces output is cached. If
        none does, the empty hint is cached so later polls do not repeat
        the negotiation.
        """
        if device in self._transport_cache:
            return self._transport_cache[device]

        chosen: List[str] = []
        for hint in TRANSPORT_HINTS:
            if self._invoke(device, ['-i'], hint) is not None:
                chosen = hint
                break
        else:
            logger.warning(f"No smartctl transport answered for {device}")

        self._transport_cache[device] = chosen
        logger.debug(f"Transport for {device}: {' '.join(chosen) or 'auto'}")
        return chosen

    def query(self, device: str, *args: str) -> Optional[str]:
        """Run smartctl with the negotiated transport; None when unavailable."""
        return self._invoke(device, list(args), self.negotiate(device))

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def identify(self, device: str) -> Optional[str]:
        return self.query(device, '-i')

    def serial_number(self, device: str) -> Optional[str]:
        text = self.identify(device)
        if text is None:
            return None
        return self.parse_serial(text)

    @classmethod
    def parse_serial(cls, text: str) -> Optional[str]:
        match = cls._PATTERNS['serial'].search(text)
        return match.group(1).strip() if match else None

    @classmethod
    def parse_wwn(cls, text: str) -> Optional[str]:
        """Normalize an identify-report WWN to udev's ``0x<hex>`` form."""
        match = cls._PATTERNS['wwn'].search(text)
        if not match:
            return None
        raw = re.sub(r'\s+', '', match.group(1)).lower()
        if raw.startswith('0x'):
            raw = raw[2:]
        if not raw or not re.fullmatch(r'[0-9a-f]+', raw):
            return None
        return '0x' + raw

    # ------------------------------------------------------------------
    # Health and attributes
    # ------------------------------------------------------------------

    def health(self, device: str) -> str:
        """Return PASSED, FAILED or UNKNOWN (UNKNOWN also covers unavailable)."""
        text = self.query(device, '-H')
        if text is None:
            return Health.UNKNOWN.value
        return self.parse_health(text)

    @classmethod
    def parse_health(cls, text: str) -> str:
        if cls._PATTERNS['health_passed'].search(text):
            return Health.PASSED.value
        if cls._PATTERNS['health_failed'].search(text):
            return Health.FAILED.value
        return Health.UNKNOWN.value

    def attributes(self, device: str) -> Optional[SmartAttributes]:
        """Parsed attribute table; None when the report carries no table."""
        text = self.query(device, '-A')
        if text is None or not self._PATTERNS['attribute_table'].search(text):
            return None
        return self.parse_attributes(text)

    @staticmethod
    def parse_attributes(text: str) -> SmartAttributes:
        """
        Parse the ATA attribute table.

        Rows look like:
            ID# ATTRIBUTE_NAME FLAG VALUE WORST THRESH TYPE UPDATED WHEN_FAILED RAW_VALUE
        The raw value is the tenth column; only its leading integer is kept
        (``34 (Min/Max 20/41)`` -> 34).
        """
        values: Dict[str, int] = {}
        for line in text.splitlines():
            fields = line.split()
            if len(fields) < 10 or not fields[0].isdigit():
                continue
            raw = re.match(r'\d+', fields[9])
            if raw:
                values[fields[1]] = int(raw.group(0))
        return SmartAttributes(values)

    def temperature(self, device: str) -> Optional[int]:
        text = self.query(device, '-A')
        if text is None:
            return None
        return self.parse_temperature(text)

    @classmethod
    def parse_temperature(cls, text: str) -> Optional[int]:
        attrs = cls.parse_attributes(text)
        for name in TEMPERATURE_ATTRIBUTES:
            if name in attrs.values:
                return attrs.values[name]
        for key in ('scsi_temperature', 'nvme_temperature'):
            match = cls._PATTERNS[key].search(text)
            if match:
                return int(match.group(1))
        return None

    # ------------------------------------------------------------------
    # Captures
    # ------------------------------------------------------------------

    def _capture(self, device: str, out_path: str, *args: str) -> bool:
        answered, output = self._execute(device, list(args), self.negotiate(device))
        with open(out_path, 'w', encoding='utf-8') as f:
            f.write(output)
        return answered

    def dump_extended(self, device: str, out_path: str) -> bool:
        """Write ``smartctl -x`` to out_path; False when the probe was unavailable."""
        return self._capture(device, out_path, '-x')

    def selftest_log(self, device: str, out_path: str) -> bool:
        return self._capture(device, out_path, '-l', 'selftest')

    def error_log(self, device: str, out_path: str) -> bool:
        return self._capture(device, out_path, '-l', 'error')

    @classmethod
    def selftest_log_failed(cls, text: str) -> bool:
        return bool(cls._PATTERNS['selftest_failure'].search(text))

    # ------------------------------------------------------------------
    # Self-tests
    # ------------------------------------------------------------------

    def start_selftest(self, device: str, kind: str) -> bool:
        if kind not in SELFTEST_KINDS:
            raise ValueError(f"Unknown self-test kind: {kind}")
        output = self.query(device, '-t', kind)
        if output is None:
            logger.warning(f"Could not start {kind} self-test on {device}")
            return False
        return True

    def capabilities(self, device: str) -> Optional[str]:
        return self.query(device, '-c')

    def supports_conveyance(self, device: str) -> bool:
        text = self.capabilities(device)
        if text is None or self._PATTERNS['no_conveyance'].search(text):
            return False
        return bool(self._PATTERNS['conveyance'].search(text))

    def selftest_in_progress(self, device: str) -> bool:
        """True while a self-test runs; an unavailable probe counts as not running."""
        text = self.capabilities(device)
        return bool(text and self._PATTERNS['in_progress'].search(text))
