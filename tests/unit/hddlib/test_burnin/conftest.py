"""
Pytest configuration and fixtures for burn-in unit tests.

All system utilities are replaced by fakes: no test touches a real disk.
"""

import os
import sys
import tempfile
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).resolve().parents[4]
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from hddlib.burnin.controller import BurnInOrchestrator
from hddlib.burnin.exceptions import BurnInSafetyError
from hddlib.burnin.models import DriveIdentity
from hddlib.burnin.scan_worker import bad_blocks_path
from hddlib.burnin.smart_probe import SmartAttributes
from hddlib.burnin.state_store import StateStore


SMART_PASSED = "SMART overall-health self-assessment test result: PASSED\n"

SELFTEST_CLEAN = (
    "SMART Self-test log structure revision number 1\n"
    "Num  Test_Description    Status                  Remaining  LifeTime(hours)\n"
    "# 1  Extended offline    Completed without error       00%     12345         -\n"
)


class FakeProbe:
    """
    In-memory stand-in for SmartProbe.

    Per-device behaviour is set through the dicts; unset devices look
    like a healthy, cool drive.
    """

    def __init__(self):
        self.temperatures = {}        # device -> int, None or list of readings
        self.health_by_device = {}    # device -> PASSED / FAILED / UNKNOWN
        self.attrs_by_device = {}     # device -> dict or None (unavailable)
        self.dump_ok = {}             # device -> bool
        self.selftest_text = {}       # device -> str
        self.in_progress_polls = {}   # device -> number of polls still busy
        self.conveyance = True
        self.started = []
        self.temperature_calls = 0

    def identify(self, device):
        return "Serial Number: FAKE\n"

    def temperature(self, device):
        self.temperature_calls += 1
        value = self.temperatures.get(device, 30)
        if isinstance(value, list):
            return value.pop(0) if len(value) > 1 else value[0]
        return value

    def _write(self, path, text):
        with open(path, 'w', encoding='utf-8') as f:
            f.write(text or '')

    def dump_extended(self, device, out_path):
        ok = self.dump_ok.get(device, True)
        self._write(out_path, "smartctl -x output\n" if ok else '')
        return ok

    def selftest_log(self, device, out_path):
        self._write(out_path, self.selftest_text.get(device, SELFTEST_CLEAN))
        return True

    def error_log(self, device, out_path):
        self._write(out_path, "No Errors Logged\n")
        return True

    def start_selftest(self, device, kind):
        self.started.append((device, kind))
        return True

    def supports_conveyance(self, device):
        return self.conveyance

    def selftest_in_progress(self, device):
        remaining = self.in_progress_polls.get(device, 0)
        if remaining > 0:
            self.in_progress_polls[device] = remaining - 1
            return True
        return False

    def health(self, device):
        return self.health_by_device.get(device, 'PASSED')

    def attributes(self, device):
        values = self.attrs_by_device.get(device, {'Power_On_Hours': 12345})
        if values is None:
            return None
        return SmartAttributes(dict(values))


class FakeSafety:
    """Safety checker that rejects the devices listed in ``reject``."""

    def __init__(self, reject=None):
        self.reject = dict(reject or {})
        self.checked = []

    def check_all(self, devices):
        for device in devices:
            self.checked.append(device)
            if device in self.reject:
                raise BurnInSafetyError(f"{device} {self.reject[device]}")


class FakeWorkers:
    """Worker manager whose workers finish after ``polls`` liveness checks."""

    def __init__(self, log_dir, polls=0, bad_blocks=None, exit_code=0):
        self.log_dir = log_dir
        self.polls = polls
        self.bad_blocks = dict(bad_blocks or {})
        self.exit_code = exit_code
        self.passes = 4
        self.block_size = 4096
        self.started = []
        self.stop_calls = 0
        self.progress_reports = 0

    def clear(self):
        self.started = []

    def start_worker(self, identity):
        self.started.append(identity)
        with open(bad_blocks_path(self.log_dir, identity.file_tag), 'w') as f:
            for block in self.bad_blocks.get(identity.key, []):
                f.write(f"{block}\n")

    def any_running(self):
        if self.polls > 0:
            self.polls -= 1
            return True
        return False

    def report_progress(self):
        self.progress_reports += 1
        return []

    def exit_codes(self):
        return {identity.key: self.exit_code for identity in self.started}

    def stop_all(self, timeout=5):
        self.stop_calls += 1


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def sample_config(temp_dir):
    """Configuration with every wait at zero and paths under temp_dir."""
    return {
        'log_root': os.path.join(temp_dir, 'log'),
        'state_dir': os.path.join(temp_dir, 'state'),
        'lock_file': os.path.join(temp_dir, 'hdd_validate.lock'),
        'burnin_group': '',
        'require_root': False,
        'required_tools': [],
        'capture_dmesg': False,
        'settle_seconds': 0,
        'monitor_interval_seconds': 0,
        'selftest_poll_seconds': 0,
        'scan_poll_seconds': 0,
        'kill_grace_seconds': 0,
    }


@pytest.fixture
def store(temp_dir):
    state = StateStore(os.path.join(temp_dir, 'state'))
    state.initialize()
    return state


@pytest.fixture
def make_identity():
    def _make(key='ZA1B2C3D', device='/dev/sdb', **kwargs):
        defaults = {
            'serial_number': key,
            'alternate_id': '0x5000c500a1b2c3d4',
            'model': 'ST4000NM0033',
            'size_bytes': 4000787030016,
        }
        defaults.update(kwargs)
        return DriveIdentity(key=key, device_node=device, **defaults)
    return _make


@pytest.fixture
def two_drives(make_identity):
    return [
        make_identity('SERIAL_A', '/dev/sdb'),
        make_identity('SERIAL_B', '/dev/sdc', alternate_id='0x5000c500deadbeef'),
    ]


@pytest.fixture
def fake_probe():
    return FakeProbe()


@pytest.fixture
def orchestrator_factory(sample_config, fake_probe):
    """Build orchestrators wired to fakes; shut each down afterwards."""
    created = []

    def _make(config=None, safety=None, worker_kwargs=None, confirm='ERASE', start=True):
        cfg = dict(sample_config)
        cfg.update(config or {})
        orchestrator = BurnInOrchestrator(
            cfg,
            probe=fake_probe,
            resolver=None,
            safety=safety or FakeSafety(),
            store=StateStore(cfg['state_dir']),
            confirm_fn=lambda prompt: confirm,
            run_id='20240101_120000',
            install_signal_handlers=False,
        )
        orchestrator.workers = FakeWorkers(orchestrator.log_dir, **(worker_kwargs or {}))
        if start:
            orchestrator.startup()
        created.append(orchestrator)
        return orchestrator

    yield _make

    for orchestrator in created:
        orchestrator.shutdown()
