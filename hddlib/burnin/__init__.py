"""
Burn-in Package

This package qualifies used drives before their return window closes.

Main Components:
- BurnInOrchestrator: Phase state machine (TRIAGE, SCAN) and unified abort path
- BurnInConfig: Configuration management and validation
- SmartProbe: Time-bounded smartctl queries with transport negotiation
- IdentityResolver: Durable drive identity (serial, WWN, by-id alias)
- SafetyChecker: Refuses to erase mounted or system disks
- StateStore: Drive registry, run history and live-status document
- ScanWorkerManager: Supervision of per-drive badblocks workers
- Custom exceptions for error handling

Usage:
    from hddlib.burnin import BurnInOrchestrator

    orchestrator = BurnInOrchestrator({'max_temp_c': 45, 'scan_passes': 4})

    with orchestrator.session():
        entries = orchestrator.inventory.scan()
        drives = orchestrator.inventory.select(entries, '1 2')

        # Non-destructive SMART triage
        orchestrator.run_triage(drives)

        # Destructive surface scan (asks for the ERASE token)
        if orchestrator.run_scan(drives):
            print("Surface scan found failing drives")
"""

__version__ = '1.0.0'

from .exceptions import (
    EXIT_OK,
    EXIT_BATCH_FAILED,
    EXIT_CONFIG_ERROR,
    EXIT_ABORTED,
    BurnInError,
    BurnInConfigError,
    BurnInLockError,
    BurnInSafetyError,
    BurnInSelectionError,
    BurnInProcessError,
    BurnInStateError,
    BurnInAbort,
)

from .config import BurnInConfig
from .models import (
    DriveIdentity,
    RegistryEntry,
    RunRecord,
    CurrentRunStatus,
    ScanWorkerState,
    RunContext,
    Phase,
    Outcome,
    Health,
)
from .smart_probe import SmartProbe, SmartAttributes
from .identity import IdentityResolver
from .safety import SafetyChecker
from .state_store import StateStore, ProcessLock
from .process_manager import ScanWorkerManager
from .monitor import CancelToken, TemperatureMonitor
from .inventory import DriveInventory
from .controller import BurnInOrchestrator

__all__ = [
    # Exit codes
    'EXIT_OK',
    'EXIT_BATCH_FAILED',
    'EXIT_CONFIG_ERROR',
    'EXIT_ABORTED',
    # Exceptions
    'BurnInError',
    'BurnInConfigError',
    'BurnInLockError',
    'BurnInSafetyError',
    'BurnInSelectionError',
    'BurnInProcessError',
    'BurnInStateError',
    'BurnInAbort',
    # Config
    'BurnInConfig',
    # Data model
    'DriveIdentity',
    'RegistryEntry',
    'RunRecord',
    'CurrentRunStatus',
    'ScanWorkerState',
    'RunContext',
    'Phase',
    'Outcome',
    'Health',
    # Components
    'SmartProbe',
    'SmartAttributes',
    'IdentityResolver',
    'SafetyChecker',
    'StateStore',
    'ProcessLock',
    'ScanWorkerManager',
    'CancelToken',
    'TemperatureMonitor',
    'DriveInventory',
    # Controller
    'BurnInOrchestrator',
]
