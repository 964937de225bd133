"""
Verdict rules for triage and scan.

Hard failure evidence (health FAILED, non-zero sector counts, failed
self-test, bad blocks) always wins. Otherwise any diagnostic capture that
was unavailable makes the outcome WARN; PASS requires complete data.
"""

from typing import List, Optional, Tuple

from .models import Health, Outcome
from .smart_probe import SmartAttributes


def triage_verdict(
    health: str,
    attributes: Optional[SmartAttributes],
    selftest_failed: bool,
    captures_ok: List[bool],
) -> Tuple[Outcome, str]:
    """
    Compute the triage outcome.

    Args:
        health: PASSED / FAILED / UNKNOWN
        attributes: Parsed attributes, None if the read was unavailable
        selftest_failed: Self-test log contains a failure string
        captures_ok: Availability of each diagnostic capture (dumps, logs)

    Returns:
        (outcome, reason)
    """
    if health == Health.FAILED.value:
        return Outcome.FAIL, 'SMART health FAILED'
    if attributes is not None and attributes.has_bad_sectors():
        return Outcome.FAIL, (
            f"bad sectors (realloc={attributes.reallocated} pending={attributes.pending} "
            f"offline_unc={attributes.offline_uncorrectable})"
        )
    if selftest_failed:
        return Outcome.FAIL, 'self-test log reports a failure'
    return _warn_or_pass(health, attributes, captures_ok)


def scan_verdict(
    health: str,
    attributes: Optional[SmartAttributes],
    bad_blocks: List[int],
    captures_ok: List[bool],
) -> Tuple[Outcome, str]:
    """Compute the surface-scan outcome; see triage_verdict for the argument shapes."""
    if health == Health.FAILED.value:
        return Outcome.FAIL, 'SMART health FAILED'
    if attributes is not None and attributes.has_bad_sectors():
        return Outcome.FAIL, (
            f"bad sectors (realloc={attributes.reallocated} pending={attributes.pending} "
            f"offline_unc={attributes.offline_uncorrectable})"
        )
    if bad_blocks:
        return Outcome.FAIL, f"{len(bad_blocks)} bad blocks found"
    return _warn_or_pass(health, attributes, captures_ok)


def _warn_or_pass(health, attributes, captures_ok) -> Tuple[Outcome, str]:
    if not all(captures_ok):
        return Outcome.WARN, 'diagnostic capture unavailable'
    if attributes is None:
        return Outcome.WARN, 'SMART attributes unavailable'
    if health != Health.PASSED.value:
        return Outcome.WARN, 'SMART health unknown'
    return Outcome.PASS, 'all checks passed'
