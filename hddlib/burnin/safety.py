"""
Safety Invariant Checker

Decides whether a device may be erased. A device is eligible only if it is
a whole-disk block device, nothing on it is mounted, and it does not back
a mounted filesystem or active swap. Any violation raises
BurnInSafetyError; drives are never silently skipped.
"""

import os
import stat
from typing import Iterable, List, Set

from .exceptions import BurnInSafetyError
from . import system
from hddlib.logger import get_module_logger

logger = get_module_logger(__name__)


class SafetyChecker:
    """
    Destructive-eligibility checks.

    Example:
        >>> checker = SafetyChecker()
        >>> checker.check_all(['/dev/sdb', '/dev/sdc'])
    """

    def __init__(self, timeout: float = 10):
        self.timeout = timeout

    @staticmethod
    def is_block_device(path: str) -> bool:
        try:
            return stat.S_ISBLK(os.stat(path).st_mode)
        except OSError:
            return False

    def device_type(self, device: str) -> str:
        nodes = system.lsblk_json(['-d', '-o', 'NAME,TYPE', device], timeout=self.timeout)
        return (nodes[0].get('type') or '') if nodes else ''

    def mountpoints(self, device: str) -> List[str]:
        """Mountpoints of device and all of its children (swap shows as [SWAP])."""
        nodes = system.lsblk_json(['-o', 'NAME,MOUNTPOINT', device], timeout=self.timeout)
        found = []
        for node in system.walk_devices(nodes):
            mountpoint = node.get('mountpoint')
            if mountpoint:
                found.append(mountpoint)
        return found

    def _mounted_sources(self) -> List[str]:
        sources = []
        output = system.run_capture(['findmnt', '-rn', '-o', 'SOURCE'], timeout=self.timeout)
        for line in (output or '').splitlines():
            source = line.strip()
            # btrfs subvolumes report as /dev/sda2[/@]
            source = source.split('[', 1)[0]
            if source.startswith('/dev/'):
                sources.append(source)

        output = system.run_capture(
            ['swapon', '--noheadings', '--raw', '--output=NAME'], timeout=self.timeout
        )
        for line in (output or '').splitlines():
            name = line.strip()
            if name.startswith('/dev/'):
                sources.append(name)
        return sources

    def system_disks(self) -> Set[str]:
        """
        Canonical paths of every whole disk under a mounted filesystem or swap.

        ``lsblk -s`` walks from the source up through partitions, LVM and
        md layers to the underlying disks.
        """
        disks: Set[str] = set()
        for source in self._mounted_sources():
            canonical = system.canonical_path(source)
            nodes = system.lsblk_json(['-s', '-o', 'NAME,TYPE', canonical], timeout=self.timeout)
            for node in system.walk_devices(nodes):
                if node.get('type') == 'disk':
                    disks.add(system.canonical_path('/dev/' + node['name']))
        if not disks:
            logger.warning("Could not determine system disks; relying on mount checks only")
        return disks

    def check(self, device: str, system_disks: Set[str] = None) -> None:
        """
        Raise BurnInSafetyError unless device is eligible for a destructive scan.

        Args:
            device: Device path (alias or kernel node)
            system_disks: Precomputed system_disks() result
        """
        if not self.is_block_device(device):
            raise BurnInSafetyError(f"{device} is not a block device")

        canonical = system.canonical_path(device)
        dev_type = self.device_type(canonical)
        if dev_type != 'disk':
            raise BurnInSafetyError(
                f"{canonical} is not a whole disk (TYPE={dev_type or 'unknown'})"
            )

        mounted = self.mountpoints(canonical)
        if mounted:
            raise BurnInSafetyError(
                f"{canonical} has mounted filesystems: {', '.join(mounted)}"
            )

        if system_disks is None:
            system_disks = self.system_disks()
        if canonical in system_disks:
            raise BurnInSafetyError(f"{canonical} backs the running system")

    def check_all(self, devices: Iterable[str]) -> None:
        """Check every device; the first violation aborts the whole batch."""
        system_disks = self.system_disks()
        for device in devices:
            self.check(device, system_disks)
            logger.info(f"Safety checks passed for {device}")
