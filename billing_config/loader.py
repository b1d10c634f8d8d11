"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Loads YAML configuration files and parses them into typed
``billing_config.schema`` dataclasses. Runtime callers should go through
``billing_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Out-of-range or malformed values raise ``ConfigurationError`` naming the
  dotted setting; nothing is silently clamped.
* Unknown keys are rejected so typos do not fall back to defaults.
* ``compute_checksum`` produces a deterministic SHA-256 over the merged
  document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid value  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import (
    YEAR_FORMATS,
    BusinessRules,
    ConversionDefaults,
    EngineConfig,
    InvoiceNumberConfig,
    ReminderConfig,
    ReminderTierConfig,
)
from billing_kernel.domain.currency import CurrencyRegistry
from billing_kernel.exceptions import ConfigurationError

SECTIONS = ("numbering", "reminders", "rules", "conversion")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigurationError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top-level YAML document must be a mapping")
    return data


def merge_documents(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursive dict merge; override wins on leaves."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_documents(merged[key], value)
        else:
            merged[key] = value
    return merged


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


# ---------------------------------------------------------------------------
# Value parsers
# ---------------------------------------------------------------------------


def _check_keys(section: str, data: dict[str, Any], allowed: set[str]) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ConfigurationError(section, f"unknown keys: {', '.join(unknown)}")


def _decimal(setting: str, value: Any, minimum: Decimal | None = None,
             maximum: Decimal | None = None) -> Decimal:
    if isinstance(value, bool):
        raise ConfigurationError(setting, f"expected a number, got {value!r}")
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ConfigurationError(setting, f"expected a number, got {value!r}") from None
    if not parsed.is_finite():
        raise ConfigurationError(setting, "must be finite")
    if minimum is not None and parsed < minimum:
        raise ConfigurationError(setting, f"must be >= {minimum}")
    if maximum is not None and parsed > maximum:
        raise ConfigurationError(setting, f"must be <= {maximum}")
    return parsed


def _int(setting: str, value: Any, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(setting, f"expected an integer, got {value!r}")
    if minimum is not None and value < minimum:
        raise ConfigurationError(setting, f"must be >= {minimum}")
    return value


def _str(setting: str, value: Any, allow_empty: bool = False) -> str:
    if not isinstance(value, str):
        raise ConfigurationError(setting, f"expected a string, got {value!r}")
    if not allow_empty and not value.strip():
        raise ConfigurationError(setting, "must not be empty")
    return value


# ---------------------------------------------------------------------------
# Section parsers
# ---------------------------------------------------------------------------


def parse_numbering(data: dict[str, Any]) -> InvoiceNumberConfig:
    defaults = InvoiceNumberConfig()
    _check_keys("numbering", data, {f.name for f in fields(InvoiceNumberConfig)})
    year_format = _str("numbering.year_format", data.get("year_format", defaults.year_format))
    if year_format not in YEAR_FORMATS:
        raise ConfigurationError("numbering.year_format", "must be YY or YYYY")
    return InvoiceNumberConfig(
        prefix=_str("numbering.prefix", data.get("prefix", defaults.prefix), allow_empty=True),
        year_format=year_format,
        sequence_length=_int(
            "numbering.sequence_length", data.get("sequence_length", defaults.sequence_length), 1,
        ),
        separator=_str("numbering.separator", data.get("separator", defaults.separator),
                       allow_empty=True),
    )


def parse_reminders(data: dict[str, Any]) -> ReminderConfig:
    defaults = ReminderConfig()
    _check_keys("reminders", data, {"gentle", "firm", "final"})
    tiers: dict[str, ReminderTierConfig] = {}
    for tier in ("gentle", "firm", "final"):
        default: ReminderTierConfig = getattr(defaults, tier)
        raw = data.get(tier, {}) or {}
        _check_keys(f"reminders.{tier}", raw, {"days_offset", "email_template"})
        tiers[tier] = ReminderTierConfig(
            days_offset=_int(f"reminders.{tier}.days_offset",
                             raw.get("days_offset", default.days_offset)),
            email_template=_str(f"reminders.{tier}.email_template",
                                raw.get("email_template", default.email_template)),
        )
    if not tiers["gentle"].days_offset <= tiers["firm"].days_offset <= tiers["final"].days_offset:
        raise ConfigurationError("reminders", "tier offsets must escalate gentle <= firm <= final")
    return ReminderConfig(**tiers)


def parse_rules(data: dict[str, Any]) -> BusinessRules:
    defaults = BusinessRules()
    _check_keys("rules", data, {f.name for f in fields(BusinessRules)})
    rules = BusinessRules(
        min_duration_days=_int("rules.min_duration_days",
                               data.get("min_duration_days", defaults.min_duration_days), 0),
        max_duration_days=_int("rules.max_duration_days",
                               data.get("max_duration_days", defaults.max_duration_days), 1),
        min_hourly_rate=_decimal("rules.min_hourly_rate",
                                 data.get("min_hourly_rate", defaults.min_hourly_rate), Decimal("0")),
        max_hourly_rate=_decimal("rules.max_hourly_rate",
                                 data.get("max_hourly_rate", defaults.max_hourly_rate), Decimal("0")),
        max_late_fee_percentage=_decimal(
            "rules.max_late_fee_percentage",
            data.get("max_late_fee_percentage", defaults.max_late_fee_percentage),
            Decimal("0"), Decimal("100"),
        ),
        min_milestone_amount=_decimal(
            "rules.min_milestone_amount",
            data.get("min_milestone_amount", defaults.min_milestone_amount), Decimal("0"),
        ),
        max_invoice_amount=_decimal(
            "rules.max_invoice_amount",
            data.get("max_invoice_amount", defaults.max_invoice_amount), Decimal("0"),
        ),
        overdue_warning_days=_int("rules.overdue_warning_days",
                                  data.get("overdue_warning_days", defaults.overdue_warning_days), 0),
        max_item_quantity=_decimal("rules.max_item_quantity",
                                   data.get("max_item_quantity", defaults.max_item_quantity),
                                   Decimal("0")),
        max_unit_price=_decimal("rules.max_unit_price",
                                data.get("max_unit_price", defaults.max_unit_price), Decimal("0")),
    )
    if rules.min_duration_days > rules.max_duration_days:
        raise ConfigurationError("rules.min_duration_days", "must not exceed max_duration_days")
    if rules.min_hourly_rate > rules.max_hourly_rate:
        raise ConfigurationError("rules.min_hourly_rate", "must not exceed max_hourly_rate")
    return rules


def parse_conversion(data: dict[str, Any]) -> ConversionDefaults:
    defaults = ConversionDefaults()
    _check_keys("conversion", data, {f.name for f in fields(ConversionDefaults)})
    currency = _str("conversion.currency", data.get("currency", defaults.currency)).upper()
    if not CurrencyRegistry.is_valid(currency):
        raise ConfigurationError(
            "conversion.currency",
            f"unsupported currency {currency}; supported: {', '.join(sorted(CurrencyRegistry.all_codes()))}",
        )
    return ConversionDefaults(
        tax_rate=_decimal("conversion.tax_rate", data.get("tax_rate", defaults.tax_rate),
                          Decimal("0"), Decimal("1")),
        payment_terms=_str("conversion.payment_terms",
                           data.get("payment_terms", defaults.payment_terms)),
        currency=currency,
        late_fee_percentage=_decimal(
            "conversion.late_fee_percentage",
            data.get("late_fee_percentage", defaults.late_fee_percentage), Decimal("0"),
        ),
        template_id=_str("conversion.template_id", data.get("template_id", defaults.template_id)),
        provider_name=_str("conversion.provider_name",
                           data.get("provider_name", defaults.provider_name)),
        provider_title=_str("conversion.provider_title",
                            data.get("provider_title", defaults.provider_title)),
        date_format=_str("conversion.date_format", data.get("date_format", defaults.date_format)),
    )


def parse_config(data: dict[str, Any], source: str = "<inline>") -> EngineConfig:
    """Parse a full configuration document."""
    _check_keys("<root>", data, set(SECTIONS))
    for section in SECTIONS:
        if data.get(section) is not None and not isinstance(data[section], dict):
            raise ConfigurationError(section, "must be a mapping")
    config = EngineConfig(
        numbering=parse_numbering(data.get("numbering") or {}),
        reminders=parse_reminders(data.get("reminders") or {}),
        rules=parse_rules(data.get("rules") or {}),
        conversion=parse_conversion(data.get("conversion") or {}),
        source=source,
        checksum=compute_checksum(data),
    )
    if config.conversion.late_fee_percentage > config.rules.max_late_fee_percentage:
        raise ConfigurationError(
            "conversion.late_fee_percentage", "exceeds rules.max_late_fee_percentage",
        )
    return config


def load_config(path: Path | str, base: dict[str, Any] | None = None) -> EngineConfig:
    """
    Load a YAML file, optionally layered over a base document.

    Raises:
        FileNotFoundError, yaml.YAMLError, ConfigurationError.
    """
    path = Path(path)
    data = load_yaml_file(path)
    if base is not None:
        data = merge_documents(base, data)
    return parse_config(data, source=str(path))
