"""
Drive inventory.

Lists whole disks, resolves and registers their identities, and turns the
operator's drive-number answer into a selection.
"""

import re
from dataclasses import dataclass
from typing import List, Optional

from .exceptions import BurnInSelectionError
from .identity import IdentityResolver
from .models import DriveIdentity, RunRecord
from .state_store import StateStore
from . import system
from hddlib.logger import get_module_logger

logger = get_module_logger(__name__)


@dataclass
class InventoryEntry:
    number: int
    identity: DriveIdentity
    last_run: Optional[RunRecord] = None

    @property
    def last_run_text(self) -> str:
        if self.last_run is None:
            return '-'
        return f"{self.last_run.phase}:{self.last_run.outcome} {self.last_run.timestamp[:10]}"


def format_size(size_bytes: int) -> str:
    """Human-readable binary size, lsblk style (931.5G)."""
    size = float(size_bytes)
    for unit in ('B', 'K', 'M', 'G', 'T', 'P'):
        if size < 1024 or unit == 'P':
            if unit == 'B':
                return f"{int(size)}B"
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size_bytes}B"


def list_disks(timeout: float = 10) -> List[str]:
    """Kernel device nodes of every whole disk, smallest first."""
    nodes = system.lsblk_json(['-b', '-d', '-o', 'NAME,TYPE,SIZE'], timeout=timeout)
    disks = []
    for node in nodes:
        if node.get('type') != 'disk':
            continue
        try:
            size = int(node.get('size') or 0)
        except (TypeError, ValueError):
            size = 0
        disks.append((size, node['name']))
    return [f"/dev/{name}" for _size, name in sorted(disks)]


class DriveInventory:
    """
    Inventory of attached drives.

    Example:
        >>> inventory = DriveInventory(resolver, store)
        >>> entries = inventory.scan()
        >>> print(inventory.format_table(entries))
        >>> drives = inventory.select(entries, '1 3')
    """

    def __init__(self, resolver: IdentityResolver, store: StateStore, timeout: float = 10):
        self.resolver = resolver
        self.store = store
        self.timeout = timeout

    def scan(self) -> List[InventoryEntry]:
        entries = []
        for number, device in enumerate(list_disks(self.timeout), start=1):
            identity = self.resolver.resolve(device)
            self.store.upsert_drive(identity)
            entries.append(InventoryEntry(number, identity, self.store.last_run(identity.key)))
        logger.info(f"Inventory: {len(entries)} disk(s)")
        return entries

    @staticmethod
    def format_table(entries: List[InventoryEntry]) -> str:
        header = f"{'No.':<4} {'Device':<10} {'Size':>8}  {'Model':<24} {'Serial/ID':<22} {'Last Run':<24} Stable by-id"
        lines = [header, '-' * len(header)]
        for entry in entries:
            identity = entry.identity
            lines.append(
                f"{entry.number:<4} {identity.device_node:<10} {format_size(identity.size_bytes):>8}  "
                f"{identity.model[:24]:<24} {identity.key[:22]:<22} {entry.last_run_text:<24} "
                f"{identity.stable_alias or '-'}"
            )
        return '\n'.join(lines)

    @staticmethod
    def select(entries: List[InventoryEntry], answer: str) -> List[DriveIdentity]:
        """
        Parse drive numbers ("1 3", "1,3") into identities.

        Duplicates are dropped, order is kept.

        Raises:
            BurnInSelectionError: On an empty answer or unknown number
        """
        tokens = [t for t in re.split(r'[\s,]+', answer.strip()) if t]
        if not tokens:
            raise BurnInSelectionError("No drives selected")

        by_number = {entry.number: entry for entry in entries}
        selected: List[DriveIdentity] = []
        seen = set()
        for token in tokens:
            if not token.isdigit() or int(token) not in by_number:
                raise BurnInSelectionError(f"Invalid drive number: {token}")
            number = int(token)
            if number in seen:
                continue
            seen.add(number)
            selected.append(by_number[number].identity)
        return selected
