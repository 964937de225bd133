"""
System utility helpers.

Thin wrappers around the block-device utilities (lsblk, udevadm, findmnt,
swapon, dmesg). Every call is time-bounded; a missing binary, a timeout or
a non-zero exit yields None rather than an exception.
"""

import json
import os
import shutil
import subprocess
from typing import Any, Dict, List, Optional, Sequence

from hddlib.logger import get_module_logger

logger = get_module_logger(__name__)

DEFAULT_TIMEOUT = 10


def run_capture(
    cmd: Sequence[str],
    timeout: float = DEFAULT_TIMEOUT,
    accept_nonzero: bool = False,
) -> Optional[str]:
    """
    Run a command and return its stdout.

    Args:
        cmd: Command and arguments
        timeout: Seconds before the command is killed
        accept_nonzero: Return output even when the exit code is non-zero

    Returns:
        Optional[str]: stdout text, or None if unavailable
    """
    try:
        result = subprocess.run(
            list(cmd),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            universal_newlines=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        logger.warning(f"Command timed out after {timeout}s: {' '.join(cmd)}")
        return None
    except OSError as e:
        logger.warning(f"Command failed to start: {' '.join(cmd)}: {e}")
        return None

    if result.returncode != 0 and not accept_nonzero:
        logger.debug(f"Command exited {result.returncode}: {' '.join(cmd)}")
        return None
    return result.stdout


def lsblk_json(args: Sequence[str], timeout: float = DEFAULT_TIMEOUT) -> List[Dict[str, Any]]:
    """Run ``lsblk -J`` and return its top-level blockdevices list."""
    output = run_capture(['lsblk', '-J'] + list(args), timeout=timeout)
    if not output:
        return []
    try:
        data = json.loads(output)
    except ValueError:
        logger.warning("lsblk returned unparseable JSON")
        return []
    return data.get('blockdevices') or []


def walk_devices(devices: List[Dict[str, Any]]):
    """Yield every lsblk node including nested children."""
    for device in devices:
        yield device
        yield from walk_devices(device.get('children') or [])


def canonical_path(path: str) -> str:
    return os.path.realpath(path)


def missing_tools(tools: Sequence[str]) -> List[str]:
    """Return the subset of tools not found on PATH."""
    return [tool for tool in tools if shutil.which(tool) is None]


def capture_dmesg(out_path: str, lines: int = 500, timeout: float = DEFAULT_TIMEOUT) -> bool:
    """Write the last kernel log lines to out_path. Returns False if unavailable."""
    output = run_capture(['dmesg', '-T'], timeout=timeout)
    if output is None:
        return False
    tail = output.splitlines()[-lines:]
    with open(out_path, 'w', encoding='utf-8') as f:
        f.write('\n'.join(tail))
        if tail:
            f.write('\n')
    return True


def secure_path(path: str, mode: int, group: str = '') -> None:
    """
    Apply mode and, when the group exists, group ownership to path.

    Ownership changes need root; failures are logged, not raised.
    """
    os.chmod(path, mode)
    if not group:
        return
    try:
        shutil.chown(path, group=group)
    except LookupError:
        logger.debug(f"Group {group} does not exist; leaving ownership of {path}")
    except PermissionError as e:
        logger.warning(f"Cannot set group {group} on {path}: {e}")
