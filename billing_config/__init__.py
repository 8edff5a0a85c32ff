"""
billing_config -- single public entrypoint for billing configuration.

Responsibility:
    ``get_active_config()`` is the only way services obtain settings
    (tenant prefixes, GST home state, numbering style, EMI risk thresholds,
    cache TTL, notification cooldown). Nothing else reads configuration
    files.

Architecture position:
    Sits above ``billing_kernel`` and below ``billing_services``. The
    kernel never imports from here.

Failure modes:
    - ``FileNotFoundError`` when an explicit path does not exist.
    - ``yaml.YAMLError`` for malformed YAML.
    - ``ConfigurationError`` for well-formed YAML with invalid values.
"""

from __future__ import annotations

import logging
from pathlib import Path

from billing_config.loader import load_yaml_file, parse_settings
from billing_config.schema import (
    BillingSettings,
    CacheSettings,
    EMISettings,
    GSTSettings,
    NotificationSettings,
    NumberingSettings,
    TenantSettings,
)

_logger = logging.getLogger("billing_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> BillingSettings:
    """
    Load and validate the billing settings.

    Args:
        path: YAML file to load. Defaults to billing_config/sets/default.yaml.

    Returns:
        Frozen ``BillingSettings``.
    """
    config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH
    settings = parse_settings(load_yaml_file(config_path), source=str(config_path))
    _logger.info(
        "billing_config_loaded",
        extra={
            "source": settings.source,
            "tenants": sorted(settings.tenants),
            "numbering_style": settings.numbering.style,
            "home_state": settings.gst.home_state,
        },
    )
    return settings


__all__ = [
    "get_active_config",
    "BillingSettings",
    "CacheSettings",
    "EMISettings",
    "GSTSettings",
    "NotificationSettings",
    "NumberingSettings",
    "TenantSettings",
]
