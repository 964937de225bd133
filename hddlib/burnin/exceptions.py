"""
Burn-in Custom Exceptions

This module defines custom exception classes for burn-in orchestration.
All recoverable errors inherit from BurnInError. The terminal abort path
raises BurnInAbort, which is a SystemExit so that generic ``except
Exception`` handlers never swallow it.
"""

# Process exit codes
EXIT_OK = 0
EXIT_BATCH_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_ABORTED = 130


class BurnInError(Exception):
    """
    Base exception class for all burn-in errors.

    Example:
        >>> try:
        ...     orchestrator.run_triage(drives)
        ... except BurnInError as e:
        ...     print(f"Burn-in error occurred: {e}")
    """
    pass


class BurnInConfigError(BurnInError):
    """
    Configuration error exception.

    Raised when:
    - Invalid configuration parameters are provided
    - Configuration file is missing or malformed
    - A required system utility is not installed
    - The orchestrator is not started as root

    Example:
        >>> raise BurnInConfigError("max_temp_c must be >= 1")
    """
    pass


class BurnInLockError(BurnInError):
    """
    Process lock error exception.

    Raised when:
    - Another orchestrator instance already holds the process lock

    Example:
        >>> raise BurnInLockError("Another run is active (lock: /var/lock/hdd_validate.lock)")
    """
    pass


class BurnInSafetyError(BurnInError):
    """
    Destructive-eligibility violation.

    Raised when:
    - The path is not a block device
    - The path is a partition rather than a whole disk
    - The device or one of its partitions is mounted
    - The device backs a mounted root filesystem or active swap

    Example:
        >>> raise BurnInSafetyError("/dev/sda is a system disk")
    """
    pass


class BurnInSelectionError(BurnInError):
    """
    Drive selection error exception.

    Raised when:
    - The operator enters a drive number that is not in the inventory
    - The selection is empty
    - More drives are selected than the phase allows
    """
    pass


class BurnInProcessError(BurnInError):
    """
    Scan worker process control error.

    Raised when:
    - A scan worker cannot be started
    - A worker process cannot be terminated
    """
    pass


class BurnInStateError(BurnInError):
    """
    Persistent state error exception.

    Raised when:
    - A state table has an unexpected header
    - A table lock cannot be acquired in time
    """
    pass


class BurnInAbort(SystemExit):
    """
    Terminal abort of the orchestrator process.

    Raised only by the unified abort path after status, workers and run
    history have been settled. ``code`` is the process exit code.
    """

    def __init__(self, reason: str, code: int = EXIT_ABORTED):
        super().__init__(code)
        self.reason = reason

    def __str__(self) -> str:
        return f"{self.reason} (exit {self.code})"
