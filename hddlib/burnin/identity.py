"""
Drive Identity Resolver

Maps a raw block device to a durable DriveIdentity. Pure query: the
caller persists the result through the state store.
"""

import os
from typing import Dict, Optional, Tuple

from .models import DriveIdentity
from .smart_probe import SmartProbe
from . import system
from hddlib.logger import get_module_logger

logger = get_module_logger(__name__)

BY_ID_DIR = '/dev/disk/by-id'

# Alternate-id links first, transport-type links after
ALIAS_PREFIXES: Tuple[str, ...] = ('wwn-', 'nvme-eui.', 'ata-', 'scsi-', 'nvme-')

PLACEHOLDER_SERIALS = {
    'UNKNOWN_SN', 'UNKNOWN', 'N/A', 'NA', 'NONE', 'NULL', '0',
    'DEFAULT STRING', 'TO BE FILLED BY O.E.M.', 'NOT SPECIFIED',
}


def is_placeholder_serial(serial: Optional[str]) -> bool:
    if serial is None:
        return True
    value = serial.strip()
    if not value:
        return True
    if value.upper() in PLACEHOLDER_SERIALS:
        return True
    return set(value) <= {'0', ' ', '-'}


def identity_key(serial: Optional[str], alternate_id: Optional[str], device: str) -> str:
    """
    Derive the registry key.

    Serial wins when usable; the WWN and device fallbacks are prefixed so
    they never collide with a real serial number.
    """
    if not is_placeholder_serial(serial):
        return serial.strip()
    if alternate_id:
        return f"WWN_{alternate_id}"
    return f"DEV_{os.path.basename(device)}"


class IdentityResolver:
    """
    Resolve durable drive identities.

    Example:
        >>> resolver = IdentityResolver(SmartProbe())
        >>> identity = resolver.resolve('/dev/sdb')
        >>> identity.key
        'ZA1B2C3D'
    """

    def __init__(self, probe: SmartProbe, by_id_dir: str = BY_ID_DIR, timeout: float = 5):
        self.probe = probe
        self.by_id_dir = by_id_dir
        self.timeout = timeout

    def device_properties(self, device: str) -> Dict[str, str]:
        """udev properties for device as a dict (empty when unavailable)."""
        output = system.run_capture(
            ['udevadm', 'info', '--query=property', f'--name={device}'],
            timeout=self.timeout,
        )
        props: Dict[str, str] = {}
        for line in (output or '').splitlines():
            name, sep, value = line.partition('=')
            if sep:
                props[name.strip()] = value.strip()
        return props

    def block_info(self, device: str) -> Tuple[str, int]:
        """Model and size in bytes from lsblk."""
        nodes = system.lsblk_json(['-b', '-d', '-o', 'NAME,MODEL,SIZE', device], timeout=self.timeout)
        if not nodes:
            return '', 0
        node = nodes[0]
        model = (node.get('model') or '').strip()
        try:
            size = int(node.get('size') or 0)
        except (TypeError, ValueError):
            size = 0
        return model, size

    def stable_alias(self, device: str) -> Optional[str]:
        """
        Find the preferred /dev/disk/by-id link for device.

        Links ending in a partition suffix are skipped.
        """
        canonical = system.canonical_path(device)
        try:
            names = sorted(os.listdir(self.by_id_dir))
        except OSError:
            return None

        for prefix in ALIAS_PREFIXES:
            for name in names:
                if not name.startswith(prefix) or '-part' in name:
                    continue
                link = os.path.join(self.by_id_dir, name)
                if system.canonical_path(link) == canonical:
                    return link
        return None

    def resolve(self, device: str) -> DriveIdentity:
        canonical = system.canonical_path(device)
        identify_text = self.probe.identify(canonical)
        props = self.device_properties(canonical)

        serial = SmartProbe.parse_serial(identify_text) if identify_text else None
        if is_placeholder_serial(serial):
            serial = props.get('ID_SERIAL_SHORT') or None

        alternate_id = props.get('ID_WWN') or ''
        if not alternate_id and identify_text:
            alternate_id = SmartProbe.parse_wwn(identify_text) or ''

        model, size = self.block_info(canonical)
        if not model:
            model = props.get('ID_MODEL', '').replace('_', ' ')

        key = identity_key(serial, alternate_id, canonical)
        if key.startswith('DEV_'):
            logger.warning(f"{canonical}: no serial or WWN, using device-derived key {key}")

        return DriveIdentity(
            key=key,
            serial_number=serial.strip() if serial and not is_placeholder_serial(serial) else '',
            alternate_id=alternate_id,
            model=model,
            size_bytes=size,
            stable_alias=self.stable_alias(canonical) or '',
            device_node=canonical,
        )
