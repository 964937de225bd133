"""
Temperature monitor and cancellation token.

The monitor polls every selected drive once per tick, keeps the running
maximum in the RunContext and hands any reading at or above the threshold
to the abort callable. CancelToken carries signal-driven cancellation
into the orchestrator's bounded waits.
"""

import threading
from typing import Callable, Optional

from .models import RunContext
from .smart_probe import SmartProbe
from hddlib.logger import get_module_logger

logger = get_module_logger(__name__)


class CancelToken:
    """
    Interruptible wait primitive.

    ``wait()`` returns early once ``cancel()`` has been called, so a
    signal never has to wait out a full poll interval.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason = ''
        self.exit_code: Optional[int] = None

    def cancel(self, reason: str, exit_code: Optional[int] = None) -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self.exit_code = exit_code
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to seconds. Returns True if cancelled."""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)


class TemperatureMonitor:
    """
    Thermal guard for the drives selected in the active phase.

    Args:
        probe: Diagnostic probe used for readings
        max_temp_c: Abort threshold (inclusive)
        on_breach: Called with a reason string; expected not to return
        on_update: Called after each tick so the status can be persisted
    """

    def __init__(
        self,
        probe: SmartProbe,
        max_temp_c: int,
        on_breach: Callable[[str], None],
        on_update: Optional[Callable[[], None]] = None,
    ):
        self.probe = probe
        self.max_temp_c = max_temp_c
        self.on_breach = on_breach
        self.on_update = on_update

    def tick(self, context: RunContext) -> None:
        breach = None
        for drive in context.selected:
            device = drive.current_device()
            reading = self.probe.temperature(device)
            if reading is None:
                logger.debug(f"No temperature reading for {drive.label}")
                continue

            previous = context.temp_max.get(drive.key)
            if previous is None or reading > previous:
                context.temp_max[drive.key] = reading

            if reading >= self.max_temp_c and breach is None:
                breach = f"TEMP {drive.key} ({device}) hit {reading}C >= {self.max_temp_c}C"

        if self.on_update is not None:
            self.on_update()
        if breach is not None:
            logger.error(breach)
            self.on_breach(breach)
