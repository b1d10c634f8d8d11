"""
Validator - Schema and business-rule checks for quotes, contracts and invoices.

Responsibility:
    Two independent passes per aggregate:

    1. Structural: the aggregate's payload against its RecordSchema
       (required fields, types, enumerations, length minimums). Findings
       are field-keyed errors.
    2. Business rules: hard limits become errors, advisory limits become
       warnings.

Architecture position:
    Engines -- pure. The as-of date for overdue checks is a parameter.

Invariants enforced:
    - Validators never raise for data problems; they return a
      ValidationReport with separate error and warning channels.
    - Warnings never make a report invalid.

Rules (defaults in ``ValidationLimits``):
    duration > 730 days              error    DURATION_TOO_LONG
    duration < 1 day                 warning  DURATION_TOO_SHORT
    hourly rate outside [25, 500]    warning  UNUSUAL_HOURLY_RATE
    late fee > 25%                   error    EXCESSIVE_LATE_FEE
    milestone amount < 100           warning  SMALL_MILESTONE_AMOUNT
    invoice total > 1,000,000        warning  HIGH_INVOICE_AMOUNT
    overdue > 30 days                warning  SEVERELY_OVERDUE
    item quantity > 1000             warning  HIGH_QUANTITY
    item unit price > 10,000         warning  HIGH_UNIT_PRICE
    due date before issue date       error    DUE_BEFORE_ISSUE
    tax rate outside [0, 1]          error    INVALID_TAX_RATE
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from billing_engines.contracts import validate_contract
from billing_kernel.domain.dtos import ValidationIssue, ValidationReport
from billing_kernel.domain.models import (
    Contract,
    ConversionOptions,
    Invoice,
    MilestoneDraft,
    PaymentMilestone,
    Quote,
)
from billing_kernel.domain.record_validator import validate_record
from billing_kernel.domain.schemas import CONTRACT_SCHEMA, INVOICE_SCHEMA, QUOTE_SCHEMA
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.validation")

HUNDRED = Decimal("100")
PERCENT_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class ValidationLimits:
    """Thresholds for business-rule validation."""

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


DEFAULT_LIMITS = ValidationLimits()


def _report(entity: str, issues: list[ValidationIssue]) -> ValidationReport:
    report = ValidationReport.from_issues(issues)
    if issues:
        logger.debug("validation_completed", extra={
            "entity": entity,
            "error_codes": report.error_codes,
            "warning_codes": report.warning_codes,
        })
    return report


def _hourly_rate_issue(
    amount: Decimal, hours: Decimal | None, limits: ValidationLimits,
) -> ValidationIssue | None:
    if not hours or hours <= 0:
        return None
    rate = amount / hours
    if rate < limits.min_hourly_rate or rate > limits.max_hourly_rate:
        return ValidationIssue.warning(
            "UNUSUAL_HOURLY_RATE",
            f"Hourly rate seems unusual (${rate.quantize(Decimal('0.01'))}/hour)",
            "total_hours",
            hourly_rate=str(rate.quantize(Decimal("0.01"))),
        )
    return None


# -----------------------------------------------------------------------------
# Quote
# -----------------------------------------------------------------------------


def validate_quote(quote: Quote, limits: ValidationLimits = DEFAULT_LIMITS) -> ValidationReport:
    """Schema check plus the implied-hourly-rate advisory."""
    issues = validate_record(quote.to_payload(), QUOTE_SCHEMA)
    rate_issue = _hourly_rate_issue(quote.final_price, quote.total_hours, limits)
    if rate_issue:
        issues.append(rate_issue)
    return _report("quote", issues)


# -----------------------------------------------------------------------------
# Milestones / conversion options
# -----------------------------------------------------------------------------


def validate_milestones(
    milestones: Sequence[PaymentMilestone | MilestoneDraft],
    limits: ValidationLimits = DEFAULT_LIMITS,
    require_names: bool = False,
    label: str = "Payment schedule",
) -> ValidationReport:
    """
    Percentages total 100 +/- 0.01 and each is positive.

    Milestones that carry an amount are also checked against the minimum
    milestone amount (advisory).
    """
    issues: list[ValidationIssue] = []
    if not milestones:
        issues.append(ValidationIssue.error(
            "SCHEDULE_REQUIRED", f"{label} is required", "milestones"))
        return _report("milestones", issues)

    total = Decimal("0")
    for i, m in enumerate(milestones):
        n = i + 1
        path = f"milestones[{i}]"
        if require_names and not m.name:
            issues.append(ValidationIssue.error(
                "MILESTONE_NAME_REQUIRED", f"Milestone {n} name is required", f"{path}.name"))
        pct = m.percentage
        if pct is None or pct <= 0:
            issues.append(ValidationIssue.error(
                "MILESTONE_PERCENTAGE_POSITIVE",
                f"Milestone {n} percentage must be greater than 0",
                f"{path}.percentage",
            ))
        else:
            total += pct
        amount = getattr(m, "amount", None)
        if amount is not None and amount < limits.min_milestone_amount:
            issues.append(ValidationIssue.warning(
                "SMALL_MILESTONE_AMOUNT",
                f"Milestone {n} amount is very small (${amount})",
                f"{path}.amount",
                amount=str(amount),
            ))

    if abs(total - HUNDRED) > PERCENT_TOLERANCE:
        issues.append(ValidationIssue.error(
            "SCHEDULE_TOTAL_PERCENTAGE",
            f"{'Custom milestones' if require_names else label} must total 100%",
            "milestones",
            total_percentage=str(total),
        ))
    return _report("milestones", issues)


def validate_conversion_options(options: ConversionOptions) -> ValidationReport:
    """Custom milestones must be named, positive and total 100%; tax rate in [0, 1]."""
    report = ValidationReport.success()
    if options.custom_milestones:
        report = validate_milestones(options.custom_milestones, require_names=True)
    if options.tax_rate is not None and (options.tax_rate < 0 or options.tax_rate > 1):
        report = report.merge(ValidationReport.from_issues([ValidationIssue.error(
            "INVALID_TAX_RATE", "Tax rate must be between 0 and 1", "tax_rate",
            tax_rate=str(options.tax_rate),
        )]))
    return report


# -----------------------------------------------------------------------------
# Contract
# -----------------------------------------------------------------------------


def validate_contract_schema(contract: Contract) -> ValidationReport:
    return _report("contract", validate_record(contract.to_payload(), CONTRACT_SCHEMA))


def validate_contract_rules(
    contract: Contract, limits: ValidationLimits = DEFAULT_LIMITS,
) -> ValidationReport:
    """Duration, hourly rate, late-fee cap and milestone-size rules."""
    issues: list[ValidationIssue] = []

    duration = (contract.project.end_date - contract.project.start_date).days
    if duration > limits.max_duration_days:
        issues.append(ValidationIssue.error(
            "DURATION_TOO_LONG", "Project duration cannot exceed 2 years", "end_date",
            duration_days=duration,
        ))
    elif duration < limits.min_duration_days:
        issues.append(ValidationIssue.warning(
            "DURATION_TOO_SHORT", "Project duration is less than 1 day", "end_date",
            duration_days=duration,
        ))

    quote = contract.project.source_quote
    if quote is not None:
        rate_issue = _hourly_rate_issue(contract.total_amount, quote.total_hours, limits)
        if rate_issue:
            issues.append(rate_issue)

    late_fee = contract.payment.late_fee_percentage
    if late_fee is not None and late_fee > limits.max_late_fee_percentage:
        issues.append(ValidationIssue.error(
            "EXCESSIVE_LATE_FEE",
            f"Late fee percentage cannot exceed {limits.max_late_fee_percentage}%",
            "payment.late_fee_percentage",
            late_fee_percentage=str(late_fee),
        ))

    for m in contract.milestones:
        if m.amount < limits.min_milestone_amount:
            issues.append(ValidationIssue.warning(
                "SMALL_MILESTONE_AMOUNT",
                f"Milestone {m.number} amount is very small (${m.amount})",
                f"milestones[{m.number - 1}].amount",
                amount=str(m.amount),
            ))
    return _report("contract", issues)


def validate_contract_full(
    contract: Contract, limits: ValidationLimits = DEFAULT_LIMITS,
) -> ValidationReport:
    """Schema, business validation and rule checks merged into one report."""
    return validate_contract_schema(contract).merge(
        validate_contract(contract),
        validate_contract_rules(contract, limits),
    )


# -----------------------------------------------------------------------------
# Invoice
# -----------------------------------------------------------------------------


def validate_invoice(
    invoice: Invoice,
    as_of: date | None = None,
    limits: ValidationLimits = DEFAULT_LIMITS,
) -> ValidationReport:
    """
    Schema plus invoice rules.

    The overdue advisory is only evaluated when ``as_of`` is given and the
    invoice is still open.
    """
    issues = validate_record(invoice.to_payload(), INVOICE_SCHEMA)

    if invoice.due_date < invoice.issue_date:
        issues.append(ValidationIssue.error(
            "DUE_BEFORE_ISSUE", "Due date must be after issue date", "due_date"))

    for i, item in enumerate(invoice.items):
        path = f"items[{i}]"
        if item.tax_rate < 0 or item.tax_rate > 1:
            issues.append(ValidationIssue.error(
                "INVALID_TAX_RATE", "Tax rate must be between 0 and 1", f"{path}.tax_rate"))
        if item.quantity > limits.max_item_quantity:
            issues.append(ValidationIssue.warning(
                "HIGH_QUANTITY", f"Item {i + 1} has a very high quantity", f"{path}.quantity",
                quantity=str(item.quantity),
            ))
        if item.unit_price > limits.max_unit_price:
            issues.append(ValidationIssue.warning(
                "HIGH_UNIT_PRICE", f"Item {i + 1} has a very high unit price", f"{path}.unit_price",
                unit_price=str(item.unit_price),
            ))

    if invoice.total > limits.max_invoice_amount:
        issues.append(ValidationIssue.warning(
            "HIGH_INVOICE_AMOUNT", "Invoice amount is unusually high", "total",
            total=str(invoice.total),
        ))

    if as_of is not None and not invoice.status.is_closed:
        days_overdue = invoice.days_overdue(as_of)
        if days_overdue > limits.overdue_warning_days:
            issues.append(ValidationIssue.warning(
                "SEVERELY_OVERDUE", f"Invoice is {days_overdue} days overdue", "due_date",
                days_overdue=days_overdue,
            ))
    return _report("invoice", issues)
