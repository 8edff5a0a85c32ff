"""
YAML loader for billing settings.

Parses a configuration set into ``BillingSettings``. Missing sections and
keys take the schema defaults; present but malformed values raise
``ConfigurationError`` naming the offending key.

Malformed YAML -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from billing_config.schema import (
    NUMBERING_STYLES,
    BillingSettings,
    CacheSettings,
    EMISettings,
    GSTSettings,
    NotificationSettings,
    NumberingSettings,
    TenantSettings,
)
from billing_kernel.exceptions import ConfigurationError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(key, "must be a mapping")
    return value


def _positive_int(section: dict[str, Any], key: str, default: int, path: str) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(f"{path}.{key}", f"must be a positive integer, got {value!r}")
    return value


def _non_negative_int(section: dict[str, Any], key: str, default: int, path: str) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigurationError(f"{path}.{key}", f"must be a non-negative integer, got {value!r}")
    return value


def parse_tenants(data: dict[str, Any]) -> dict[str, TenantSettings]:
    tenants: dict[str, TenantSettings] = {}
    for name, body in data.items():
        if not isinstance(body, dict) or not body.get("prefix"):
            raise ConfigurationError(f"tenants.{name}.prefix", "is required")
        tenants[str(name)] = TenantSettings(name=str(name), prefix=str(body["prefix"]))
    return tenants


def parse_gst(data: dict[str, Any]) -> GSTSettings:
    defaults = GSTSettings()
    home_state = data.get("home_state", defaults.home_state)
    if not isinstance(home_state, str) or not home_state.strip():
        raise ConfigurationError("gst.home_state", "must be a non-empty string")
    return GSTSettings(
        home_state=home_state.strip().lower(),
        default_slab=_non_negative_int(data, "default_slab", defaults.default_slab, "gst"),
    )


def parse_numbering(data: dict[str, Any]) -> NumberingSettings:
    defaults = NumberingSettings()
    style = data.get("style", defaults.style)
    if style not in NUMBERING_STYLES:
        raise ConfigurationError(
            "numbering.style", f"must be one of {', '.join(NUMBERING_STYLES)}"
        )
    width_default = defaults.sequence_width if style == "tax_mode" else 4
    return NumberingSettings(
        style=style,
        sequence_width=_positive_int(data, "sequence_width", width_default, "numbering"),
    )


def parse_emi(data: dict[str, Any]) -> EMISettings:
    defaults = EMISettings()
    settings = EMISettings(
        frequent_change_threshold=_positive_int(
            data, "frequent_change_threshold", defaults.frequent_change_threshold, "emi"
        ),
        review_threshold=_positive_int(
            data, "review_threshold", defaults.review_threshold, "emi"
        ),
        upcoming_window_days=_positive_int(
            data, "upcoming_window_days", defaults.upcoming_window_days, "emi"
        ),
    )
    if settings.review_threshold < settings.frequent_change_threshold:
        raise ConfigurationError(
            "emi.review_threshold", "must not be below frequent_change_threshold"
        )
    return settings


def parse_settings(data: dict[str, Any], source: str = "<memory>") -> BillingSettings:
    """Build ``BillingSettings`` from an already-loaded YAML mapping."""
    if not isinstance(data, dict):
        raise ConfigurationError("<root>", "configuration must be a mapping")

    defaults = BillingSettings()
    tenants_data = _section(data, "tenants")
    tenants = parse_tenants(tenants_data) if tenants_data else dict(defaults.tenants)

    cache = _section(data, "cache")
    notifications = _section(data, "notifications")
    return BillingSettings(
        tenants=MappingProxyType(tenants),
        gst=parse_gst(_section(data, "gst")),
        numbering=parse_numbering(_section(data, "numbering")),
        emi=parse_emi(_section(data, "emi")),
        cache=CacheSettings(
            ttl_seconds=_non_negative_int(cache, "ttl_seconds", 180, "cache"),
        ),
        notifications=NotificationSettings(
            cooldown_seconds=_non_negative_int(
                notifications, "cooldown_seconds", 10, "notifications"
            ),
            due_window_days=_positive_int(
                notifications, "due_window_days", 7, "notifications"
            ),
        ),
        source=source,
    )
