"""
BillingSettings schema.

The YAML configuration set is parsed into these frozen dataclasses by the
loader. Defaults here are the values the billing core uses when a key is
absent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

NUMBERING_STYLES = ("tax_mode", "monthly")


@dataclass(frozen=True)
class TenantSettings:
    """One business line (``userType``) and its invoice-number prefix."""

    name: str
    prefix: str


@dataclass(frozen=True)
class GSTSettings:
    home_state: str = "gujarat"
    default_slab: int = 18


@dataclass(frozen=True)
class NumberingSettings:
    # tax_mode: EL_GST_001 / monthly: EL2024010001
    style: str = "tax_mode"
    sequence_width: int = 3


@dataclass(frozen=True)
class EMISettings:
    frequent_change_threshold: int = 3
    review_threshold: int = 5
    upcoming_window_days: int = 7


@dataclass(frozen=True)
class CacheSettings:
    ttl_seconds: int = 180


@dataclass(frozen=True)
class NotificationSettings:
    cooldown_seconds: int = 10
    due_window_days: int = 7


def _default_tenants() -> Mapping[str, TenantSettings]:
    return MappingProxyType(
        {
            "electronics": TenantSettings("electronics", "EL"),
            "furniture": TenantSettings("furniture", "FN"),
        }
    )


@dataclass(frozen=True)
class BillingSettings:
    """Complete runtime configuration for the billing services."""

    tenants: Mapping[str, TenantSettings] = field(default_factory=_default_tenants)
    gst: GSTSettings = field(default_factory=GSTSettings)
    numbering: NumberingSettings = field(default_factory=NumberingSettings)
    emi: EMISettings = field(default_factory=EMISettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    source: str = "<defaults>"

    def prefix_for(self, tenant: str) -> str:
        """Invoice prefix of ``tenant``; unknown tenants use their first two letters."""
        settings = self.tenants.get(tenant)
        if settings is not None:
            return settings.prefix
        return tenant[:2].upper()
