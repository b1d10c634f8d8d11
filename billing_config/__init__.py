"""
billing_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides ``get_active_config()``: the bundled ``defaults.yaml`` merged
    with an optional override file, parsed into a frozen ``EngineConfig``.

Architecture position:
    Configuration. Sits above ``billing_kernel`` and ``billing_engines``
    and below ``billing_services``. Neither the kernel nor the engines
    import this package; ``billing_config.bridges`` translates config into
    engine inputs.

Invariants enforced:
    - The override path is taken from the explicit argument, else from the
      ``BILLING_ENGINE_CONFIG`` environment variable, else none.
    - Override documents may set any subset of keys; the rest come from
      the bundled defaults.

Failure modes:
    - ``FileNotFoundError`` -- the override file does not exist.
    - ``ConfigurationError`` -- a value is malformed or out of range.

Audit relevance:
    Every successful call emits a ``BILLING_CONFIG_TRACE`` log entry with
    the source path and checksum of the merged document.
"""

from __future__ import annotations

import os
from pathlib import Path

from billing_config.loader import load_config, load_yaml_file, parse_config
from billing_config.schema import (
    BusinessRules,
    ConversionDefaults,
    EngineConfig,
    InvoiceNumberConfig,
    ReminderConfig,
    ReminderTierConfig,
)
from billing_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_ENV_VAR = "BILLING_ENGINE_CONFIG"
DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | str | None = None) -> EngineConfig:
    """The public configuration entrypoint."""
    override = config_path or os.environ.get(CONFIG_ENV_VAR) or None
    defaults = load_yaml_file(DEFAULTS_PATH)
    if override:
        config = load_config(override, base=defaults)
    else:
        config = parse_config(defaults, source=str(DEFAULTS_PATH))

    _logger.info(
        "BILLING_CONFIG_TRACE",
        extra={
            "trace_type": "BILLING_CONFIG_TRACE",
            "source": config.source,
            "checksum": config.checksum,
            "overridden": bool(override),
        },
    )
    return config


__all__ = [
    "CONFIG_ENV_VAR",
    "DEFAULTS_PATH",
    "BusinessRules",
    "ConversionDefaults",
    "EngineConfig",
    "InvoiceNumberConfig",
    "ReminderConfig",
    "ReminderTierConfig",
    "get_active_config",
    "load_config",
]
