"""
hr_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files directly.  Returns a frozen ``EngineConfig``.

Architecture position:
    Configuration -- sits beside ``hr_kernel``.  The kernel never imports
    from ``hr_config``; modules and services receive the parsed config
    sections they need.

Failure modes:
    - ``FileNotFoundError`` -- the requested file does not exist.
    - ``ValueError`` -- unknown keys or out-of-range values.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``HR_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying every decision back to the configuration in force.
"""

from __future__ import annotations

import logging
from pathlib import Path

from hr_config.loader import load_yaml_file, parse_engine_config
from hr_config.schema import (
    AdvancePolicyConfig,
    EngineConfig,
    LeaseConfig,
    RetryPolicyConfig,
)

_logger = logging.getLogger("hr_kernel.config")

# Default configuration file
DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> EngineConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load.  Defaults to ``hr_config/sets/default.yaml``.

    Returns:
        Frozen ``EngineConfig`` whose checksum identifies the source.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If configuration validation fails.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = parse_engine_config(load_yaml_file(config_path))

    _logger.info(
        "HR_CONFIG_TRACE",
        extra={
            "trace_type": "HR_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "lease_backend": config.lease.backend,
        },
    )
    return config


__all__ = [
    "get_active_config",
    "EngineConfig",
    "AdvancePolicyConfig",
    "RetryPolicyConfig",
    "LeaseConfig",
    "DEFAULT_CONFIG_PATH",
]
