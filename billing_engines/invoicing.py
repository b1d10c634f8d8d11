"""
Invoice Generator - Turn payment milestones into invoices.

Responsibility:
    - One Invoice per milestone of a contract's schedule, or a single
      ad hoc invoice outside any schedule.
    - Line-item strategy: one consolidated item per milestone, or (when
      detailed items are requested and the quote lists several features)
      a 30% base-services item plus per-feature items sharing 70%.
    - Invoice type classification and client/internal notes.

Architecture position:
    Engines -- pure calculation. Issue timestamps are passed in; numbers
    come from an optional caller-supplied number source.

Invariants enforced:
    - Line items of a milestone invoice sum to exactly the milestone
      amount; the last item absorbs cent residue.
    - Totals always come from ``calculate_totals`` over the stored items,
      so recomputing reproduces subtotal, tax and total exactly.
    - Generation either returns complete invoices or raises; nothing is
      partially populated.

Failure modes:
    - MilestoneNotFoundError when the milestone is not on the contract.
    - SchemaError for an ad hoc invoice without items or client name.
    - BusinessRuleError for a tax rate outside [0, 1].
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import ROUND_DOWN, Decimal
from uuid import UUID, uuid4

from billing_engines.calculator import calculate_totals, round_money
from billing_engines.tracer import traced_engine
from billing_kernel.domain.models import (
    Contract,
    Invoice,
    InvoiceType,
    LineItem,
    LineItemCategory,
    PaymentMilestone,
    Quote,
)
from billing_kernel.exceptions import BusinessRuleError, MilestoneNotFoundError, SchemaError
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.invoicing")

DEFAULT_TAX_RATE = Decimal("0.0875")
DEFAULT_PAYMENT_TERMS_DAYS = 30
DEPOSIT_MIN_PERCENTAGE = Decimal("40")
BASE_SERVICE_SHARE = Decimal("0.3")
FEATURE_SHARE = Decimal("0.7")
HOURS_QUANTUM = Decimal("0.01")

NumberSource = Callable[[date], str]

_CATEGORY_KEYWORDS: tuple[tuple[LineItemCategory, tuple[str, ...]], ...] = (
    (LineItemCategory.DESIGN, ("design", "ui", "ux")),
    (LineItemCategory.SEO, ("seo", "optimization")),
    (LineItemCategory.CONTENT, ("content", "cms")),
    (LineItemCategory.MAINTENANCE, ("maintenance", "support")),
)


def categorize_feature(feature: str) -> LineItemCategory:
    """Keyword match of feature text onto a line-item category (first match wins)."""
    lowered = feature.lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return LineItemCategory.DEVELOPMENT


def classify_invoice_type(index: int, milestone_count: int, percentage: Decimal) -> InvoiceType:
    """
    Role of the milestone at ``index`` (0-based) within its schedule.

    A single-milestone schedule is ``custom``; a first milestone of at least
    40% is the ``deposit``; the last is ``final``; anything else is a
    ``milestone`` invoice.
    """
    if milestone_count == 1:
        return InvoiceType.CUSTOM
    if index == 0 and percentage >= DEPOSIT_MIN_PERCENTAGE:
        return InvoiceType.DEPOSIT
    if index == milestone_count - 1:
        return InvoiceType.FINAL
    return InvoiceType.MILESTONE


def _check_tax_rate(tax_rate: Decimal) -> Decimal:
    tax_rate = Decimal(str(tax_rate))
    if tax_rate < 0 or tax_rate > 1:
        raise BusinessRuleError(
            "tax_rate_range", "Tax rate must be between 0 and 1", {"tax_rate": tax_rate},
        )
    return tax_rate


def _hours(value: Decimal) -> Decimal:
    return value.quantize(HOURS_QUANTUM)


def build_line_items(
    quote: Quote,
    contract: Contract,
    milestone: PaymentMilestone,
    tax_rate: Decimal = DEFAULT_TAX_RATE,
    detailed: bool = False,
) -> tuple[LineItem, ...]:
    """
    Line items billing one milestone.

    Detailed mode (more than one feature): base services take 30% of the
    milestone amount, the features share the remaining 70% evenly. Feature
    prices are rounded down and the final feature item absorbs the
    non-negative residue, so the items total the milestone amount exactly.
    """
    currency = contract.currency
    amount = milestone.amount
    milestone_share = milestone.percentage / Decimal("100")
    total_hours = quote.total_hours or Decimal("0")

    if not (detailed and len(quote.features) > 1):
        return (
            LineItem(
                id=uuid4(),
                description=f"{milestone.name} - {contract.project.title}",
                quantity=Decimal("1"),
                unit_price=amount,
                category=LineItemCategory.CUSTOM,
                hours_allocated=_hours(total_hours * milestone_share),
                related_features=quote.features,
                milestone_phase=milestone.name,
                tax_rate=tax_rate,
            ),
        )

    base_amount = round_money(amount * BASE_SERVICE_SHARE, currency)
    feature_count = len(quote.features)
    per_feature = round_money((amount - base_amount) / feature_count, currency, ROUND_DOWN)
    feature_hours = _hours(total_hours * FEATURE_SHARE * milestone_share / feature_count)

    items = [
        LineItem(
            id=uuid4(),
            description=f"{milestone.name} - Base Web Design Services",
            quantity=Decimal("1"),
            unit_price=base_amount,
            category=LineItemCategory.DESIGN,
            hours_allocated=_hours(total_hours * BASE_SERVICE_SHARE * milestone_share),
            milestone_phase=milestone.name,
            tax_rate=tax_rate,
        ),
    ]
    allocated_so_far = base_amount
    for i, feature in enumerate(quote.features):
        if i == feature_count - 1:
            price = amount - allocated_so_far
        else:
            price = per_feature
        allocated_so_far += price
        items.append(LineItem(
            id=uuid4(),
            description=f"{milestone.name} - {feature}",
            quantity=Decimal("1"),
            unit_price=price,
            category=categorize_feature(feature),
            hours_allocated=feature_hours,
            related_features=(feature,),
            milestone_phase=milestone.name,
            tax_rate=tax_rate,
        ))
    return tuple(items)


def invoice_notes(quote: Quote, milestone: PaymentMilestone, invoice_type: InvoiceType) -> str:
    """Client-facing notes for a milestone invoice."""
    lines = [
        f"{milestone.name} for {quote.business_name}",
        "",
        "Project Details:",
        f"• {quote.page_count} pages",
        f"• Industry: {quote.industry}",
        f"• Timeline: {quote.timeline}",
        "",
        "Milestone Deliverables:",
        *(f"• {d}" for d in milestone.deliverables),
    ]
    if invoice_type == InvoiceType.DEPOSIT:
        lines += ["", "This is the initial deposit to begin your project. "
                      "Work will commence upon receipt of payment."]
    elif invoice_type == InvoiceType.FINAL:
        lines += ["", "This is the final payment for your project. "
                      "All deliverables will be completed upon receipt."]
    return "\n".join(lines)


def internal_notes(quote: Quote, contract: Contract, milestone: PaymentMilestone) -> str:
    """Audit notes tying an invoice back to its quote and contract."""
    lines = [
        f"Auto-generated from Quote {quote.id} via Contract {contract.contract_number}",
        "",
        "Original Quote Data:",
        f"• Budget: {quote.budget}",
        f"• Total Hours: {quote.total_hours}",
        f"• Features: {', '.join(quote.features)}",
        "",
        f"Milestone: {milestone.number} of {len(contract.milestones)}",
        f"Percentage: {milestone.percentage.normalize():f}%",
    ]
    if milestone.dependencies:
        lines.append(f"Dependencies: {', '.join(milestone.dependencies)}")
    return "\n".join(lines)


def generate_invoice(
    quote: Quote,
    contract: Contract,
    milestone: PaymentMilestone,
    *,
    now: datetime,
    tax_rate: Decimal = DEFAULT_TAX_RATE,
    detailed_items: bool = False,
    invoice_number: str | None = None,
    created_by: str | None = None,
) -> Invoice:
    """
    Invoice for one milestone of a contract.

    Raises:
        MilestoneNotFoundError: Milestone is not part of the contract.
        BusinessRuleError: Tax rate outside [0, 1].
    """
    tax_rate = _check_tax_rate(tax_rate)
    schedule = contract.milestones
    index = next((i for i, m in enumerate(schedule) if m.id == milestone.id), None)
    if index is None:
        raise MilestoneNotFoundError(str(milestone.id), contract.contract_number)

    invoice_type = classify_invoice_type(index, len(schedule), milestone.percentage)
    items = build_line_items(quote, contract, milestone, tax_rate, detailed_items)
    totals = calculate_totals(items, contract.currency)

    invoice = Invoice(
        id=uuid4(),
        invoice_number=invoice_number,
        client_name=quote.display_client_name,
        invoice_type=invoice_type,
        items=items,
        currency=contract.currency,
        subtotal=totals.subtotal.amount,
        discount=totals.discount_amount.amount,
        tax=totals.tax_amount.amount,
        total=totals.total_amount.amount,
        issue_date=now.date(),
        due_date=milestone.due_date,
        created_at=now,
        updated_at=now,
        client_email=quote.client_email or "",
        client_address=quote.client_address or "",
        client_id=quote.client_id,
        contract_id=contract.id,
        quote_id=quote.id,
        milestone_id=milestone.id,
        milestone_number=milestone.number,
        total_milestones=len(schedule),
        milestone_percentage=milestone.percentage,
        payment_terms=contract.payment.payment_terms,
        notes=invoice_notes(quote, milestone, invoice_type),
        internal_notes=internal_notes(quote, contract, milestone),
        created_by=created_by,
    )
    logger.info("invoice_generated", extra={
        "invoice_number": invoice_number,
        "contract_number": contract.contract_number,
        "milestone_number": milestone.number,
        "invoice_type": invoice_type.value,
        "item_count": len(items),
        "subtotal": str(invoice.subtotal),
        "tax": str(invoice.tax),
        "total": str(invoice.total),
    })
    return invoice


@traced_engine("invoicing", "1.0", fingerprint_fields=("quote", "tax_rate", "detailed_items"))
def generate_invoices(
    quote: Quote,
    contract: Contract,
    *,
    now: datetime,
    tax_rate: Decimal = DEFAULT_TAX_RATE,
    detailed_items: bool = False,
    number_source: NumberSource | None = None,
    created_by: str | None = None,
) -> tuple[Invoice, ...]:
    """
    One invoice per milestone, in schedule order.

    ``number_source`` is called with the issue date for each invoice; when
    omitted the invoices are left unnumbered for the registry to number.
    """
    tax_rate = _check_tax_rate(tax_rate)
    invoices = []
    for milestone in contract.milestones:
        number = number_source(now.date()) if number_source else None
        invoices.append(generate_invoice(
            quote, contract, milestone,
            now=now,
            tax_rate=tax_rate,
            detailed_items=detailed_items,
            invoice_number=number,
            created_by=created_by,
        ))
    logger.info("invoices_generated", extra={
        "contract_number": contract.contract_number,
        "invoice_count": len(invoices),
        "grand_total": str(sum((i.total for i in invoices), Decimal("0"))),
    })
    return tuple(invoices)


def generate_ad_hoc_invoice(
    client_name: str,
    items: Sequence[LineItem],
    *,
    now: datetime,
    currency: str = "USD",
    tax_rate: Decimal | None = None,
    due_date: date | None = None,
    payment_terms: str = "Net 30",
    client_email: str | None = None,
    contract_id: UUID | None = None,
    quote_id: str | None = None,
    invoice_number: str | None = None,
    notes: str = "",
    created_by: str | None = None,
) -> Invoice:
    """
    A ``custom`` invoice not tied to any milestone.

    ``tax_rate``, when given, replaces every item's own rate. The due date
    defaults to 30 days after issue.

    Raises:
        SchemaError: Missing client name or no items.
        BusinessRuleError: Tax rate outside [0, 1].
    """
    field_errors: dict[str, str] = {}
    if not client_name or not client_name.strip():
        field_errors["client_name"] = "Client name is required"
    if not items:
        field_errors["items"] = "At least one item is required"
    if field_errors:
        raise SchemaError("invoice", field_errors)

    if tax_rate is not None:
        tax_rate = _check_tax_rate(tax_rate)
        items = [replace(item, tax_rate=tax_rate) for item in items]
    items = tuple(items)

    issue_date = now.date()
    totals = calculate_totals(items, currency)
    invoice = Invoice(
        id=uuid4(),
        invoice_number=invoice_number,
        client_name=client_name,
        invoice_type=InvoiceType.CUSTOM,
        items=items,
        currency=str(totals.currency),
        subtotal=totals.subtotal.amount,
        discount=totals.discount_amount.amount,
        tax=totals.tax_amount.amount,
        total=totals.total_amount.amount,
        issue_date=issue_date,
        due_date=due_date or issue_date + timedelta(days=DEFAULT_PAYMENT_TERMS_DAYS),
        created_at=now,
        updated_at=now,
        client_email=client_email,
        contract_id=contract_id,
        quote_id=quote_id,
        payment_terms=payment_terms,
        notes=notes,
        created_by=created_by,
    )
    logger.info("ad_hoc_invoice_generated", extra={
        "invoice_number": invoice_number,
        "item_count": len(items),
        "total": str(invoice.total),
        "currency": invoice.currency,
    })
    return invoice
