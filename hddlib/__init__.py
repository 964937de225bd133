"""
hddlib - drive qualification toolkit.

Subpackages:
- burnin: burn-in orchestration (SMART triage and destructive surface scan)
"""

__version__ = '1.0.0'
