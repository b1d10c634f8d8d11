"""
Tests for configuration loading.

Covers:
- Bundled defaults match the engine's built-in constants
- Override files via argument and environment variable
- Rejection of malformed or inconsistent values
- Bridges into engine inputs
"""

from decimal import Decimal

import pytest

from billing_config import CONFIG_ENV_VAR, DEFAULTS_PATH, EngineConfig, get_active_config
from billing_config.bridges import build_contract_builder, build_validation_limits
from billing_config.loader import compute_checksum, load_yaml_file, merge_documents, parse_config
from billing_engines.validation import DEFAULT_LIMITS
from billing_kernel.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def _no_env_override(monkeypatch):
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)


def _write(tmp_path, text, name="override.yaml"):
    path = tmp_path / name
    path.write_text(text)
    return path


class TestDefaults:

    def test_bundled_defaults_equal_builtins(self):
        config = get_active_config()
        builtin = EngineConfig()

        assert config.numbering == builtin.numbering
        assert config.reminders == builtin.reminders
        assert config.rules == builtin.rules
        assert config.conversion == builtin.conversion
        assert config.source == str(DEFAULTS_PATH)

    def test_checksum_is_deterministic(self):
        assert get_active_config().checksum == get_active_config().checksum
        assert len(get_active_config().checksum) == 64

    def test_trace_logged(self, captured_logs):
        config = get_active_config()

        traces = [r for r in captured_logs() if r["message"] == "BILLING_CONFIG_TRACE"]
        assert traces[-1]["checksum"] == config.checksum
        assert traces[-1]["overridden"] is False


class TestOverrides:

    def test_override_via_argument(self, tmp_path):
        path = _write(tmp_path, "numbering:\n  prefix: WEB\nconversion:\n  tax_rate: '0.05'\n")

        config = get_active_config(path)

        assert config.numbering.prefix == "WEB"
        assert config.numbering.sequence_length == 4
        assert config.conversion.tax_rate == Decimal("0.05")
        assert config.conversion.currency == "USD"
        assert config.source == str(path)

    def test_override_via_environment(self, tmp_path, monkeypatch):
        path = _write(tmp_path, "reminders:\n  final:\n    days_offset: 45\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        config = get_active_config()

        assert config.reminders.final.days_offset == 45
        assert config.reminders.final.email_template == "final_notice"

    def test_override_changes_checksum(self, tmp_path):
        path = _write(tmp_path, "rules:\n  overdue_warning_days: 14\n")

        assert get_active_config(path).checksum != get_active_config().checksum

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_currency_normalised(self, tmp_path):
        path = _write(tmp_path, "conversion:\n  currency: eur\n")

        assert get_active_config(path).conversion.currency == "EUR"


class TestRejections:

    @pytest.mark.parametrize("text, setting", [
        ("numbering:\n  suffix: X\n", "numbering"),
        ("invoices: {}\n", "<root>"),
        ("numbering:\n  year_format: Y\n", "numbering.year_format"),
        ("numbering:\n  sequence_length: 0\n", "numbering.sequence_length"),
        ("conversion:\n  currency: XYZ\n", "conversion.currency"),
        ("conversion:\n  tax_rate: '1.5'\n", "conversion.tax_rate"),
        ("conversion:\n  late_fee_percentage: '30'\n", "conversion.late_fee_percentage"),
        ("reminders:\n  firm:\n    days_offset: 60\n", "reminders"),
        ("rules:\n  min_hourly_rate: '600'\n", "rules.min_hourly_rate"),
        ("rules:\n  max_unit_price: lots\n", "rules.max_unit_price"),
        ("rules: [1, 2]\n", "rules"),
    ])
    def test_invalid_values(self, tmp_path, text, setting):
        path = _write(tmp_path, text)

        with pytest.raises(ConfigurationError) as exc_info:
            get_active_config(path)

        assert exc_info.value.setting == setting
        assert exc_info.value.code == "CONFIGURATION_ERROR"

    def test_non_mapping_document(self, tmp_path):
        path = _write(tmp_path, "- just\n- a list\n")

        with pytest.raises(ConfigurationError):
            load_yaml_file(path)


class TestLoaderHelpers:

    def test_merge_is_recursive(self):
        merged = merge_documents(
            {"a": {"x": 1, "y": 2}, "b": 1},
            {"a": {"y": 3}, "c": 4},
        )
        assert merged == {"a": {"x": 1, "y": 3}, "b": 1, "c": 4}

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})

    def test_empty_document_uses_builtins(self):
        config = parse_config({})
        assert config.rules == EngineConfig().rules
        assert config.source == "<inline>"


class TestBridges:

    def test_default_limits(self):
        assert build_validation_limits(get_active_config()) == DEFAULT_LIMITS

    def test_limits_follow_rules(self, tmp_path):
        path = _write(tmp_path, "rules:\n  max_late_fee_percentage: '10'\n")

        limits = build_validation_limits(get_active_config(path))

        assert limits.max_late_fee_percentage == Decimal("10")

    def test_contract_builder_uses_provider(self, tmp_path):
        path = _write(
            tmp_path,
            "conversion:\n  provider_name: Pixel Works\n  provider_title: Founder\n",
        )

        builder = build_contract_builder(get_active_config(path))

        assert builder.provider_name == "Pixel Works"
        assert builder.provider_title == "Founder"
