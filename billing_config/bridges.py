"""
Config -> Engine Bridges.

Functions that convert an EngineConfig into engine inputs. These live in
billing_config because engines never import configuration.

Usage:
    from billing_config import get_active_config
    from billing_config.bridges import build_contract_builder, build_validation_limits

    config = get_active_config()
    limits = build_validation_limits(config)
"""

from __future__ import annotations

from billing_config.schema import EngineConfig
from billing_engines.contracts import ContractBuilder, TemplateCatalogue
from billing_engines.validation import ValidationLimits


def build_validation_limits(config: EngineConfig) -> ValidationLimits:
    rules = config.rules
    return ValidationLimits(
        min_duration_days=rules.min_duration_days,
        max_duration_days=rules.max_duration_days,
        min_hourly_rate=rules.min_hourly_rate,
        max_hourly_rate=rules.max_hourly_rate,
        max_late_fee_percentage=rules.max_late_fee_percentage,
        min_milestone_amount=rules.min_milestone_amount,
        max_invoice_amount=rules.max_invoice_amount,
        overdue_warning_days=rules.overdue_warning_days,
        max_item_quantity=rules.max_item_quantity,
        max_unit_price=rules.max_unit_price,
    )


def build_contract_builder(
    config: EngineConfig, catalogue: TemplateCatalogue | None = None,
) -> ContractBuilder:
    conversion = config.conversion
    return ContractBuilder(
        catalogue=catalogue,
        provider_name=conversion.provider_name,
        provider_title=conversion.provider_title,
        date_format=conversion.date_format,
    )
