"""
Tests for billing configuration loading.

Covers:
- The bundled default set matches the schema defaults
- Partial files fall back to defaults per key
- Invalid values raise ConfigurationError naming the key
- Malformed YAML and missing files propagate
"""

import pytest
import yaml

from billing_config import get_active_config
from billing_config.loader import parse_settings
from billing_config.schema import BillingSettings
from billing_kernel.exceptions import ConfigurationError


class TestDefaultSet:
    def test_bundled_defaults(self, captured_logs):
        settings = get_active_config()
        defaults = BillingSettings()

        assert dict(settings.tenants) == dict(defaults.tenants)
        assert settings.gst == defaults.gst
        assert settings.numbering == defaults.numbering
        assert settings.emi == defaults.emi
        assert settings.cache == defaults.cache
        assert settings.notifications == defaults.notifications
        assert settings.source.endswith("default.yaml")

        [record] = [r for r in captured_logs() if r["message"] == "billing_config_loaded"]
        assert record["tenants"] == ["electronics", "furniture"]
        assert record["numbering_style"] == "tax_mode"

    def test_prefix_fallback(self):
        settings = BillingSettings()
        assert settings.prefix_for("furniture") == "FN"
        assert settings.prefix_for("mobiles") == "MO"


class TestPartialFiles:
    def test_file_overrides(self, tmp_path):
        path = tmp_path / "shop.yaml"
        path.write_text(
            "tenants:\n"
            "  appliances:\n"
            "    prefix: AP\n"
            "gst:\n"
            "  home_state: ' Maharashtra '\n"
            "numbering:\n"
            "  style: monthly\n"
        )

        settings = get_active_config(path)

        assert list(settings.tenants) == ["appliances"]
        assert settings.prefix_for("appliances") == "AP"
        assert settings.gst.home_state == "maharashtra"
        assert settings.numbering.style == "monthly"
        assert settings.numbering.sequence_width == 4
        assert settings.cache.ttl_seconds == 180

    def test_empty_mapping_is_all_defaults(self):
        settings = parse_settings({})
        assert settings.emi.review_threshold == 5
        assert settings.source == "<memory>"


class TestInvalidValues:
    @pytest.mark.parametrize(
        "data, key",
        [
            ({"numbering": {"style": "yearly"}}, "numbering.style"),
            ({"numbering": {"sequence_width": 0}}, "numbering.sequence_width"),
            ({"emi": {"frequent_change_threshold": 6}}, "emi.review_threshold"),
            ({"emi": {"review_threshold": "five"}}, "emi.review_threshold"),
            ({"cache": {"ttl_seconds": -1}}, "cache.ttl_seconds"),
            ({"notifications": {"due_window_days": True}}, "notifications.due_window_days"),
            ({"tenants": {"electronics": {}}}, "tenants.electronics.prefix"),
            ({"gst": {"home_state": ""}}, "gst.home_state"),
            ({"gst": "gujarat"}, "gst"),
        ],
    )
    def test_rejected(self, data, key):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_settings(data)
        assert exc_info.value.key == key

    def test_root_must_be_mapping(self):
        with pytest.raises(ConfigurationError):
            parse_settings(["not", "a", "mapping"])

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("gst: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            get_active_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")
