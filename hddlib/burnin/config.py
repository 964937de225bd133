"""
Burn-in Configuration Management

This module provides configuration management and validation for the
burn-in orchestrator. Values come from defaults, an optional JSON file,
environment variables and command line flags, in that order.
"""

import json
import os
import re
from pathlib import Path
from typing import Dict, Any, Optional, Mapping


class BurnInConfig:
    """
    Configuration manager for burn-in parameters.

    This class provides:
    - Default configuration values
    - Configuration validation
    - Environment variable overrides
    - Configuration merging

    Example:
        >>> config = BurnInConfig.get_default_config()
        >>> print(config['max_temp_c'])
        45
        >>> BurnInConfig.validate_config({'scan_passes': 8})
        True
    """

    DEFAULT_CONFIG: Dict[str, Any] = {
        # Thermal and batch limits
        'max_temp_c': 45,
        'max_triage_drives': 4,
        'max_scan_drives': 3,

        # Surface scan
        'block_size': 4096,
        'scan_passes': 4,
        'scan_nice': 10,
        'use_ionice': True,
        'confirm_token': 'ERASE',

        # Diagnostic probe
        'smart_timeout_seconds': 5,
        'smartctl_path': 'smartctl',
        'badblocks_path': 'badblocks',

        # Wait intervals
        'settle_seconds': 300,
        'monitor_interval_seconds': 60,
        'selftest_poll_seconds': 300,
        'scan_poll_seconds': 60,
        'kill_grace_seconds': 5,

        # Paths and permissions
        'log_root': '/var/log',
        'state_dir': '/var/lib/hdd_burnin',
        'lock_file': '/var/lock/hdd_validate.lock',
        'burnin_group': 'burnin',

        # Startup checks
        'require_root': True,
        'capture_dmesg': True,
        'required_tools': ['smartctl', 'badblocks', 'lsblk', 'udevadm', 'findmnt'],
    }

    VALID_PARAMS = set(DEFAULT_CONFIG.keys())

    PARAM_TYPES: Dict[str, Any] = {
        'max_temp_c': int,
        'max_triage_drives': int,
        'max_scan_drives': int,
        'block_size': int,
        'scan_passes': int,
        'scan_nice': int,
        'use_ionice': bool,
        'confirm_token': str,
        'smart_timeout_seconds': (int, float),
        'smartctl_path': str,
        'badblocks_path': str,
        'settle_seconds': (int, float),
        'monitor_interval_seconds': (int, float),
        'selftest_poll_seconds': (int, float),
        'scan_poll_seconds': (int, float),
        'kill_grace_seconds': (int, float),
        'log_root': str,
        'state_dir': str,
        'lock_file': str,
        'burnin_group': str,
        'require_root': bool,
        'capture_dmesg': bool,
        'required_tools': list,
    }

    PARAM_CONSTRAINTS: Dict[str, Dict[str, Any]] = {
        'max_temp_c': {'min': 1, 'max': 100},
        'max_triage_drives': {'min': 1, 'max': 64},
        'max_scan_drives': {'min': 1, 'max': 64},
        'block_size': {'min': 512, 'max': 1048576},
        'scan_passes': {'min': 1, 'max': 100},
        'scan_nice': {'min': 0, 'max': 19},
        'smart_timeout_seconds': {'min': 1, 'max': 600},
        'settle_seconds': {'min': 0, 'max': 86400},
        'monitor_interval_seconds': {'min': 0, 'max': 3600},
        'selftest_poll_seconds': {'min': 0, 'max': 3600},
        'scan_poll_seconds': {'min': 0, 'max': 3600},
        'kill_grace_seconds': {'min': 0, 'max': 300},
        'confirm_token': {'pattern': r'^\S+$'},
        'log_root': {'pattern': r'^.+$'},
        'state_dir': {'pattern': r'^.+$'},
        'lock_file': {'pattern': r'^.+$'},
    }

    # Environment variable -> configuration key
    ENV_MAP: Dict[str, str] = {
        'MAX_TEMP': 'max_temp_c',
        'MAX_PHASE0': 'max_triage_drives',
        'MAX_PHASEB': 'max_scan_drives',
        'BLOCK_SIZE': 'block_size',
        'SMART_TIMEOUT': 'smart_timeout_seconds',
        'BADBLOCKS_PASSES': 'scan_passes',
        'LOG_ROOT': 'log_root',
        'STATE_DIR': 'state_dir',
        'LOCK_FILE': 'lock_file',
        'BURNIN_GROUP': 'burnin_group',
    }

    @staticmethod
    def validate_config(config: Dict[str, Any]) -> bool:
        """
        Validate configuration dictionary.

        Checks:
        - Parameter names are valid
        - Parameter types are correct
        - Parameter values are within acceptable ranges

        Args:
            config: Configuration dictionary to validate

        Returns:
            True if configuration is valid

        Raises:
            ValueError: If validation fails with detailed error message

        Example:
            >>> BurnInConfig.validate_config({'max_temp_c': 0})
            Traceback (most recent call last):
            ...
            ValueError: max_temp_c must be >= 1
        """
        for key, value in config.items():
            if key not in BurnInConfig.VALID_PARAMS:
                raise ValueError(f"Unknown configuration parameter: {key}")

            expected_type = BurnInConfig.PARAM_TYPES.get(key)
            if expected_type is not None:
                # bool is an int subclass; never accept it for numeric params
                if isinstance(value, bool) and expected_type is not bool:
                    raise ValueError(f"{key} must be numeric, got bool")
                if isinstance(expected_type, tuple):
                    if not isinstance(value, expected_type):
                        raise ValueError(
                            f"{key} must be one of types {expected_type}, got {type(value).__name__}"
                        )
                elif not isinstance(value, expected_type):
                    raise ValueError(
                        f"{key} must be of type {expected_type.__name__}, got {type(value).__name__}"
                    )

            if key in BurnInConfig.PARAM_CONSTRAINTS:
                constraints = BurnInConfig.PARAM_CONSTRAINTS[key]

                if 'min' in constraints and value < constraints['min']:
                    raise ValueError(f"{key} must be >= {constraints['min']}")
                if 'max' in constraints and value > constraints['max']:
                    raise ValueError(f"{key} must be <= {constraints['max']}")

                if 'pattern' in constraints:
                    if not re.match(constraints['pattern'], str(value)):
                        raise ValueError(
                            f"{key} must match pattern {constraints['pattern']}"
                        )

        return True

    @staticmethod
    def get_default_config() -> Dict[str, Any]:
        """
        Get a copy of default configuration.

        Returns:
            Dict[str, Any]: Copy of default configuration dictionary
        """
        config = BurnInConfig.DEFAULT_CONFIG.copy()
        config['required_tools'] = list(config['required_tools'])
        return config

    @staticmethod
    def merge_config(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge configuration dictionaries.

        Updates are applied to base, base values are preserved if not in updates.

        Example:
            >>> merged = BurnInConfig.merge_config({'max_temp_c': 45}, {'max_temp_c': 50})
            >>> merged['max_temp_c']
            50
        """
        merged = base.copy()
        merged.update(updates)
        return merged

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        """
        Collect overrides from environment variables.

        Numeric parameters are converted with int(); unset or empty
        variables are ignored.

        Args:
            environ: Mapping to read, defaults to os.environ

        Returns:
            Dict[str, Any]: Overrides keyed by configuration name

        Raises:
            ValueError: If a numeric variable cannot be converted
        """
        if environ is None:
            environ = os.environ

        overrides: Dict[str, Any] = {}
        for env_name, key in BurnInConfig.ENV_MAP.items():
            raw = environ.get(env_name)
            if raw is None or raw.strip() == '':
                continue
            expected_type = BurnInConfig.PARAM_TYPES[key]
            if expected_type is str:
                overrides[key] = raw.strip()
                continue
            try:
                overrides[key] = int(raw.strip())
            except ValueError:
                raise ValueError(f"{env_name} must be an integer, got {raw!r}")
        return overrides

    @staticmethod
    def load_json(path: str, section: str = 'burnin') -> Dict[str, Any]:
        """
        Load one section of a JSON configuration file.

        Args:
            path: JSON file path
            section: Top-level key holding the burn-in settings

        Returns:
            Dict[str, Any]: The section contents (empty if absent)

        Raises:
            ValueError: If the file is missing or not valid JSON
        """
        config_path = Path(path)
        if not config_path.is_file():
            raise ValueError(f"Config file not found: {path}")
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {path}: {e}")
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a JSON object")
        section_data = data.get(section, {})
        if not isinstance(section_data, dict):
            raise ValueError(f"Section '{section}' in {path} must be an object")
        return section_data

    @staticmethod
    def resolve(
        json_path: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Build the effective configuration: defaults < JSON < env < overrides.

        Raises:
            ValueError: If any layer is invalid
        """
        config = BurnInConfig.get_default_config()
        if json_path:
            config = BurnInConfig.merge_config(config, BurnInConfig.load_json(json_path))
        config = BurnInConfig.merge_config(config, BurnInConfig.from_env(environ))
        if overrides:
            config = BurnInConfig.merge_config(
                config, {k: v for k, v in overrides.items() if v is not None}
            )
        BurnInConfig.validate_config(config)
        return config
