"""
Billing engine configuration schema.

Frozen dataclasses for every tunable of the conversion engine. YAML
fragments are parsed into these types by ``billing_config.loader``; the
defaults here mirror the bundled ``defaults.yaml``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# ---------------------------------------------------------------------------
# Invoice numbering
# ---------------------------------------------------------------------------

YEAR_FORMATS = frozenset({"YY", "YYYY"})


@dataclass(frozen=True)
class InvoiceNumberConfig:
    """``{prefix}{separator}{year}{separator}{sequence}``, e.g. INV-2024-0001."""

    prefix: str = "INV"
    year_format: str = "YYYY"
    sequence_length: int = 4
    separator: str = "-"


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReminderTierConfig:
    """Day offset from the due date and the email template for one tier."""

    days_offset: int
    email_template: str


@dataclass(frozen=True)
class ReminderConfig:
    gentle: ReminderTierConfig = ReminderTierConfig(-3, "gentle_reminder")
    firm: ReminderTierConfig = ReminderTierConfig(7, "firm_reminder")
    final: ReminderTierConfig = ReminderTierConfig(30, "final_notice")


# ---------------------------------------------------------------------------
# Business rules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BusinessRules:
    """Hard limits (errors) and advisory limits (warnings)."""

    min_duration_days: int = 1
    max_duration_days: int = 730
    min_hourly_rate: Decimal = Decimal("25")
    max_hourly_rate: Decimal = Decimal("500")
    max_late_fee_percentage: Decimal = Decimal("25")
    min_milestone_amount: Decimal = Decimal("100")
    max_invoice_amount: Decimal = Decimal("1000000")
    overdue_warning_days: int = 30
    max_item_quantity: Decimal = Decimal("1000")
    max_unit_price: Decimal = Decimal("10000")


# ---------------------------------------------------------------------------
# Conversion defaults
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConversionDefaults:
    tax_rate: Decimal = Decimal("0.0875")
    payment_terms: str = "Net 30"
    currency: str = "USD"
    late_fee_percentage: Decimal = Decimal("1.5")
    template_id: str = "web-design-template"
    provider_name: str = "Your Company Name"
    provider_title: str = "Owner/Director"
    date_format: str = "%m/%d/%Y"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    """Complete, validated engine configuration."""

    numbering: InvoiceNumberConfig = field(default_factory=InvoiceNumberConfig)
    reminders: ReminderConfig = field(default_factory=ReminderConfig)
    rules: BusinessRules = field(default_factory=BusinessRules)
    conversion: ConversionDefaults = field(default_factory=ConversionDefaults)
    source: str = "<defaults>"
    checksum: str = ""
