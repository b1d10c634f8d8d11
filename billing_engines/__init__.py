"""
Module: billing_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines. This is the import surface for billing_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import billing_kernel and sibling engine modules only.
    MUST NOT import billing_services or billing_config.

Invariants enforced:
    - Purity: engines never call ``datetime.now()`` or ``date.today()``.
      Timestamps and dates are explicit parameters supplied by services.
    - Decimal-only arithmetic for every monetary amount.
    - Determinism: identical inputs produce identical outputs (apart from
      freshly generated entity ids).

Usage:
    from billing_engines.calculator import calculate_totals
    from billing_engines.schedule import generate_schedule
    from billing_engines.contracts import ContractBuilder
    from billing_engines.invoicing import generate_invoices
    from billing_engines.aging import AgingCalculator
    from billing_engines.validation import validate_invoice
"""

from billing_kernel.logging_config import get_logger

logger = get_logger("engines")

from billing_engines.aging import (
    STANDARD_BUCKETS,
    AgeBucket,
    AgedInvoice,
    AgingCalculator,
    AgingReport,
)
from billing_engines.calculator import InvoiceTotals, calculate_totals, round_money
from billing_engines.contracts import (
    DEFAULT_TEMPLATE_ID,
    ContractBuilder,
    ContractTemplate,
    Placeholder,
    RenderedDocument,
    TemplateCatalogue,
    apply_invoice_to_contract,
    apply_payment_to_contract,
    substitute_placeholders,
    validate_contract,
)
from billing_engines.invoicing import (
    DEFAULT_TAX_RATE,
    build_line_items,
    categorize_feature,
    classify_invoice_type,
    generate_ad_hoc_invoice,
    generate_invoice,
    generate_invoices,
)
from billing_engines.schedule import (
    MilestoneTemplate,
    generate_schedule,
    milestone_steps_for_price,
    template_schedule,
)
from billing_engines.timeline import parse_timeline_weeks
from billing_engines.tracer import compute_input_fingerprint, traced_engine
from billing_engines.validation import (
    ValidationLimits,
    validate_contract_full,
    validate_contract_rules,
    validate_contract_schema,
    validate_conversion_options,
    validate_invoice,
    validate_milestones,
    validate_quote,
)

__all__ = [
    "AgeBucket",
    "AgedInvoice",
    "AgingCalculator",
    "AgingReport",
    "ContractBuilder",
    "ContractTemplate",
    "DEFAULT_TAX_RATE",
    "DEFAULT_TEMPLATE_ID",
    "InvoiceTotals",
    "MilestoneTemplate",
    "Placeholder",
    "RenderedDocument",
    "STANDARD_BUCKETS",
    "TemplateCatalogue",
    "ValidationLimits",
    "apply_invoice_to_contract",
    "apply_payment_to_contract",
    "build_line_items",
    "calculate_totals",
    "categorize_feature",
    "classify_invoice_type",
    "compute_input_fingerprint",
    "generate_ad_hoc_invoice",
    "generate_invoice",
    "generate_invoices",
    "generate_schedule",
    "milestone_steps_for_price",
    "parse_timeline_weeks",
    "round_money",
    "substitute_placeholders",
    "template_schedule",
    "traced_engine",
    "validate_contract",
    "validate_contract_full",
    "validate_contract_rules",
    "validate_contract_schema",
    "validate_conversion_options",
    "validate_invoice",
    "validate_milestones",
    "validate_quote",
]
