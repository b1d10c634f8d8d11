"""
Billing Domain Models (``billing_kernel.domain.models``).

Responsibility
--------------
Frozen dataclass value objects for the nouns of the conversion pipeline:
quotes, payment milestones, contracts, line items, invoices and payment
reminders, plus the enumerations that type their states.

Architecture position
---------------------
**Kernel > Domain** -- pure data definitions with ZERO I/O. Produced by the
engines, stored by the services, returned to callers.

Invariants enforced
-------------------
* All models are ``frozen=True``; every change produces a new instance via
  ``dataclasses.replace``.
* All monetary fields are ``Decimal`` in the model's ``currency``.
* ``Invoice.amount_due`` is always ``total - amount_paid`` (derived, never
  stored separately).

Failure modes
-------------
* ``InvoiceStatus.parse`` raises ``ValueError`` on an unknown status.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class PaymentStructureType(str, Enum):
    """How a contract's price is split into milestones."""

    SINGLE = "single"
    DEPOSIT_FINAL = "deposit_final"
    MILESTONE = "milestone"
    PROGRESS = "progress"
    CUSTOM = "custom"


class MilestoneStatus(str, Enum):
    """Payment milestone lifecycle, driven by invoice events."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    INVOICED = "invoiced"
    PAID = "paid"


class ContractStatus(str, Enum):
    """Contract lifecycle states."""

    DRAFT = "draft"
    SENT = "sent"
    UNDER_REVIEW = "under_review"
    SIGNED = "signed"
    ACTIVE = "active"
    COMPLETED = "completed"
    TERMINATED = "terminated"


class InvoiceType(str, Enum):
    """Role of an invoice within its contract's schedule."""

    DEPOSIT = "deposit"
    MILESTONE = "milestone"
    FINAL = "final"
    PROGRESS = "progress"
    CUSTOM = "custom"


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states."""

    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: InvoiceStatus | str) -> InvoiceStatus:
        """
        Normalize a status at the boundary.

        Accepts enum members and strings in any case, so the legacy
        capitalized set (``Draft``, ``Sent``, ``Paid``, ``Overdue``) maps onto
        the canonical lowercase states.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Invalid invoice status: {value!r}")
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Invalid invoice status: {value!r}") from None

    @property
    def is_closed(self) -> bool:
        """Paid and cancelled invoices no longer carry a collectible balance."""
        return self in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED)


class LineItemCategory(str, Enum):
    """Work category of an invoice line item."""

    DESIGN = "design"
    DEVELOPMENT = "development"
    CONTENT = "content"
    SEO = "seo"
    MAINTENANCE = "maintenance"
    CUSTOM = "custom"


class ReminderTier(str, Enum):
    """Escalating payment-reminder stages."""

    GENTLE = "gentle"
    FIRM = "firm"
    FINAL = "final"


class ReminderStatus(str, Enum):
    """Delivery state of a scheduled reminder."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


# -----------------------------------------------------------------------------
# Quote (input, read-only)
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Quote:
    """An accepted sales quote. Read-only to the engine."""

    id: str
    business_name: str
    industry: str
    page_count: int
    features: tuple[str, ...]
    timeline: str
    final_price: Decimal
    total_hours: Decimal = Decimal("0")
    budget: str = ""
    client_name: str | None = None
    client_email: str | None = None
    client_phone: str | None = None
    client_address: str | None = None
    client_id: str | None = None
    requirements: str | None = None
    additional_notes: str | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.final_price, Decimal):
            object.__setattr__(self, "final_price", Decimal(str(self.final_price)))
        if not isinstance(self.total_hours, Decimal):
            object.__setattr__(self, "total_hours", Decimal(str(self.total_hours or 0)))
        if not isinstance(self.features, tuple):
            object.__setattr__(self, "features", tuple(self.features))

    @property
    def display_client_name(self) -> str:
        """Client name, falling back to the business name."""
        return self.client_name or self.business_name

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "business_name": self.business_name,
            "industry": self.industry,
            "page_count": self.page_count,
            "features": list(self.features),
            "timeline": self.timeline,
            "final_price": self.final_price,
            "total_hours": self.total_hours,
            "client_email": self.client_email or None,
        }


# -----------------------------------------------------------------------------
# Payment schedule
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class MilestoneDraft:
    """
    Caller-supplied milestone for ``custom`` schedules.

    Every field is optional; the schedule generator fills defaults.
    """

    name: str | None = None
    description: str | None = None
    percentage: Decimal | None = None
    due_date: date | None = None
    deliverables: tuple[str, ...] | None = None
    dependencies: tuple[str, ...] | None = None
    id: UUID | None = None

    def __post_init__(self) -> None:
        if self.percentage is not None and not isinstance(self.percentage, Decimal):
            object.__setattr__(self, "percentage", Decimal(str(self.percentage)))


@dataclass(frozen=True)
class PaymentMilestone:
    """One scheduled portion of a contract's total payment."""

    id: UUID
    number: int
    name: str
    description: str
    percentage: Decimal
    amount: Decimal
    due_date: date
    deliverables: tuple[str, ...] = field(default_factory=tuple)
    dependencies: tuple[str, ...] = field(default_factory=tuple)
    status: MilestoneStatus = MilestoneStatus.PENDING
    invoice_id: UUID | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "percentage": self.percentage,
            "due_date": self.due_date,
            "deliverables": list(self.deliverables),
        }


@dataclass(frozen=True)
class PaymentSchedule:
    """Ordered milestones for one contract."""

    structure: PaymentStructureType
    currency: str
    total_amount: Decimal
    milestones: tuple[PaymentMilestone, ...]
    start_date: date
    end_date: date
    timeline_weeks: int

    @property
    def total_percentage(self) -> Decimal:
        return sum((m.percentage for m in self.milestones), Decimal("0"))

    @property
    def total_scheduled(self) -> Decimal:
        return sum((m.amount for m in self.milestones), Decimal("0"))

    def __len__(self) -> int:
        return len(self.milestones)


@dataclass(frozen=True)
class PaymentStructure:
    """Payment block of a contract."""

    type: PaymentStructureType
    currency: str
    total_amount: Decimal
    milestones: tuple[PaymentMilestone, ...]
    payment_terms: str = "Net 30"
    late_fee_percentage: Decimal | None = None

    @property
    def total_percentage(self) -> Decimal:
        return sum((m.percentage for m in self.milestones), Decimal("0"))

    def find(self, milestone_id: UUID) -> PaymentMilestone | None:
        for m in self.milestones:
            if m.id == milestone_id:
                return m
        return None


# -----------------------------------------------------------------------------
# Contract
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ProjectDetails:
    """Project block of a contract, including the originating quote snapshot."""

    title: str
    description: str
    scope: tuple[str, ...]
    deliverables: tuple[str, ...]
    timeline: str
    start_date: date
    end_date: date
    source_quote: Quote | None = None


@dataclass(frozen=True)
class ContractTerms:
    """Legal terms, one text per clause."""

    service_description: str
    client_responsibilities: tuple[str, ...]
    provider_responsibilities: tuple[str, ...]
    intellectual_property: str
    confidentiality: str
    termination: str
    dispute_resolution: str
    governing_law: str

    def as_text(self) -> str:
        """All clauses concatenated, used for length checks and previews."""
        parts = [
            self.service_description,
            *self.client_responsibilities,
            *self.provider_responsibilities,
            self.intellectual_property,
            self.confidentiality,
            self.termination,
            self.dispute_resolution,
            self.governing_law,
        ]
        return "\n".join(p for p in parts if p)


@dataclass(frozen=True)
class Contract:
    """A binding agreement derived from a quote."""

    id: UUID
    contract_number: str
    quote_id: str | None
    client_name: str
    client_email: str
    contract_title: str
    project: ProjectDetails
    payment: PaymentStructure
    terms: ContractTerms
    template_id: str
    created_at: datetime
    updated_at: datetime
    status: ContractStatus = ContractStatus.DRAFT
    invoice_ids: tuple[UUID, ...] = field(default_factory=tuple)
    total_invoiced: Decimal = Decimal("0")
    total_paid: Decimal = Decimal("0")
    created_by: str | None = None

    @property
    def total_amount(self) -> Decimal:
        return self.payment.total_amount

    @property
    def currency(self) -> str:
        return self.payment.currency

    @property
    def milestones(self) -> tuple[PaymentMilestone, ...]:
        return self.payment.milestones

    @property
    def scope_of_work(self) -> str:
        return (
            f"Development of {self.project.source_quote.page_count} page website "
            f"with specified features."
            if self.project.source_quote is not None
            else "; ".join(self.project.scope)
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "contract_number": self.contract_number,
            "contract_title": self.contract_title,
            "client_name": self.client_name,
            "client_email": self.client_email,
            "start_date": self.project.start_date,
            "end_date": self.project.end_date,
            "terms": self.terms.as_text(),
            "total_amount": self.total_amount,
            "currency": self.currency,
            "milestones": [m.to_payload() for m in self.milestones],
            "scope_of_work": self.scope_of_work,
            "status": self.status.value,
        }


# -----------------------------------------------------------------------------
# Invoice
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class LineItem:
    """A single line on an invoice."""

    id: UUID
    description: str
    quantity: Decimal
    unit_price: Decimal
    category: LineItemCategory | None = None
    hours_allocated: Decimal | None = None
    related_features: tuple[str, ...] = field(default_factory=tuple)
    milestone_phase: str | None = None
    discount_rate: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        for name in ("quantity", "unit_price", "discount_rate", "tax_rate"):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))

    @property
    def line_total(self) -> Decimal:
        """Unrounded quantity x unit price."""
        return self.quantity * self.unit_price

    def to_payload(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
        }


@dataclass(frozen=True)
class Invoice:
    """A billable document derived from one milestone (or ad hoc)."""

    id: UUID
    invoice_number: str | None
    client_name: str
    invoice_type: InvoiceType
    items: tuple[LineItem, ...]
    currency: str
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    issue_date: date
    due_date: date
    created_at: datetime
    updated_at: datetime
    discount: Decimal = Decimal("0")
    amount_paid: Decimal = Decimal("0")
    status: InvoiceStatus = InvoiceStatus.DRAFT
    client_email: str | None = None
    client_address: str | None = None
    client_id: str | None = None
    contract_id: UUID | None = None
    quote_id: str | None = None
    milestone_id: UUID | None = None
    milestone_number: int | None = None
    total_milestones: int | None = None
    milestone_percentage: Decimal | None = None
    paid_date: date | None = None
    payment_terms: str = "Net 30"
    notes: str = ""
    internal_notes: str = ""
    created_by: str | None = None

    @property
    def amount_due(self) -> Decimal:
        return self.total - self.amount_paid

    def days_overdue(self, as_of: date) -> int:
        """Whole days past due as of the given date (negative if not yet due)."""
        return (as_of - self.due_date).days

    def to_payload(self) -> dict[str, Any]:
        return {
            "invoice_number": self.invoice_number,
            "client_name": self.client_name,
            "client_email": self.client_email or None,
            "issue_date": self.issue_date,
            "due_date": self.due_date,
            "items": [item.to_payload() for item in self.items],
            "total": self.total,
            "currency": self.currency,
            "invoice_type": self.invoice_type.value,
            "status": self.status.value,
        }


# -----------------------------------------------------------------------------
# Reminders
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class PaymentReminder:
    """A scheduled collection reminder for one invoice."""

    id: str
    invoice_id: UUID
    tier: ReminderTier
    scheduled_date: date
    email_template: str
    status: ReminderStatus = ReminderStatus.PENDING
    sent_date: date | None = None
    failure_reason: str | None = None


# -----------------------------------------------------------------------------
# Conversion options
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ConversionOptions:
    """
    Caller choices for a quote conversion.

    ``None`` means "use the configured default". Without an explicit
    ``payment_structure`` the contract template's default schedule applies.
    """

    template_id: str | None = None
    payment_structure: PaymentStructureType | None = None
    custom_milestones: tuple[MilestoneDraft, ...] = field(default_factory=tuple)
    tax_rate: Decimal | None = None
    payment_terms: str | None = None
    late_fee_percentage: Decimal | None = None
    include_detailed_items: bool = False
    auto_generate_invoices: bool = True
    start_date: date | None = None
    currency: str | None = None
    user_id: str | None = None

    def __post_init__(self) -> None:
        if self.payment_structure is not None and not isinstance(
            self.payment_structure, PaymentStructureType
        ):
            object.__setattr__(
                self, "payment_structure", PaymentStructureType(self.payment_structure)
            )
        if not isinstance(self.custom_milestones, tuple):
            object.__setattr__(self, "custom_milestones", tuple(self.custom_milestones))
        for name in ("tax_rate", "late_fee_percentage"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))
