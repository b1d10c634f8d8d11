"""
Module: billing_engines.aging
Responsibility:
    Classify open invoices into days-overdue buckets for collections
    reporting.

Architecture position:
    Engines -- pure calculation layer, zero I/O. The as-of date is always
    passed in.

Invariants enforced:
    - Bucket assignment is a partition: every open invoice lands in exactly
      one bucket, and the per-bucket totals sum to the grand total.
    - Paid and cancelled invoices are excluded.
    - Amounts aged are the outstanding balance (``amount_due``).
    - Decimal-only arithmetic; one currency per report.

Failure modes:
    - ValueError when an age does not fall into any configured bucket.
    - BusinessRuleError when the invoices span several currencies and no
      currency filter was given.

Usage:
    from billing_engines.aging import AgingCalculator
    from datetime import date

    report = AgingCalculator().generate_report(invoices, as_of_date=date(2024, 3, 1))
    report.totals["days31to60"]   # Decimal
    report.totals["grandTotal"]   # Decimal
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from billing_engines.tracer import traced_engine
from billing_kernel.domain.models import Invoice
from billing_kernel.exceptions import BusinessRuleError
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.aging")

GRAND_TOTAL = "grandTotal"


@dataclass(frozen=True)
class AgeBucket:
    """
    A contiguous range of days overdue.

    ``max_days`` of None means unbounded (e.g. 90+).
    """

    name: str
    min_days: int
    max_days: int | None

    def __post_init__(self) -> None:
        if self.min_days < 0:
            raise ValueError("min_days cannot be negative")
        if self.max_days is not None and self.max_days < self.min_days:
            raise ValueError("max_days cannot be less than min_days")

    def contains(self, age_days: int) -> bool:
        if age_days < self.min_days:
            return False
        if self.max_days is None:
            return True
        return age_days <= self.max_days


STANDARD_BUCKETS: tuple[AgeBucket, ...] = (
    AgeBucket("current", 0, 0),
    AgeBucket("days1to30", 1, 30),
    AgeBucket("days31to60", 31, 60),
    AgeBucket("days61to90", 61, 90),
    AgeBucket("over90Days", 91, None),
)


@dataclass(frozen=True)
class AgedInvoice:
    """An open invoice with its age classification."""

    invoice: Invoice
    age_days: int
    bucket: AgeBucket

    @property
    def amount(self) -> Decimal:
        return self.invoice.amount_due

    @property
    def days_past_due(self) -> int:
        return max(0, self.age_days)


@dataclass(frozen=True)
class AgingReport:
    """
    Aging snapshot.

    ``buckets`` maps each bucket name to its invoices (most overdue first);
    ``totals`` carries the same keys plus ``grandTotal``.
    """

    as_of_date: date
    currency: str | None
    items: tuple[AgedInvoice, ...]
    buckets: dict[str, tuple[Invoice, ...]]
    totals: dict[str, Decimal]

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def grand_total(self) -> Decimal:
        return self.totals[GRAND_TOTAL]

    def items_in_bucket(self, bucket_name: str) -> tuple[AgedInvoice, ...]:
        return tuple(i for i in self.items if i.bucket.name == bucket_name)

    def overdue_items(self) -> tuple[AgedInvoice, ...]:
        return tuple(i for i in self.items if i.age_days > 0)


class AgingCalculator:
    """
    Ages invoices against an as-of date.

    Pure -- no I/O, no clock. All dates are parameters.
    """

    DEFAULT_BUCKETS = STANDARD_BUCKETS

    def __init__(self, buckets: Sequence[AgeBucket] | None = None):
        self.buckets = tuple(buckets) if buckets is not None else self.DEFAULT_BUCKETS

    def calculate_age(self, due_date: date, as_of_date: date) -> int:
        """Days past due; negative when not yet due."""
        return (as_of_date - due_date).days

    def classify(self, age_days: int) -> AgeBucket:
        """
        Bucket for an age. Ages below zero (not yet due) map to the bucket
        starting at zero.

        Raises:
            ValueError: If age doesn't fit any bucket.
        """
        if age_days < 0:
            for bucket in self.buckets:
                if bucket.min_days == 0:
                    return bucket
            return self.buckets[0]

        for bucket in self.buckets:
            if bucket.contains(age_days):
                return bucket

        logger.warning("age_classification_no_bucket", extra={
            "age_days": age_days,
            "bucket_count": len(self.buckets),
        })
        raise ValueError(f"Age {age_days} does not fit any bucket")

    def age_invoice(self, invoice: Invoice, as_of_date: date) -> AgedInvoice:
        age_days = self.calculate_age(invoice.due_date, as_of_date)
        return AgedInvoice(invoice=invoice, age_days=age_days, bucket=self.classify(age_days))

    @traced_engine("aging", "1.0", fingerprint_fields=("as_of_date", "currency"))
    def generate_report(
        self,
        invoices: Sequence[Invoice],
        as_of_date: date,
        currency: str | None = None,
    ) -> AgingReport:
        """
        Bucket every open invoice by days past due.

        Args:
            invoices: Candidate invoices; closed ones are skipped.
            as_of_date: Report date.
            currency: Restrict to one currency. Required when the open
                invoices span more than one.
        """
        open_invoices = [i for i in invoices if not i.status.is_closed]
        if currency is not None:
            open_invoices = [i for i in open_invoices if i.currency == currency]
        currencies = {i.currency for i in open_invoices}
        if len(currencies) > 1:
            raise BusinessRuleError(
                "aging_single_currency",
                "Aging report spans several currencies; pass a currency",
                {"currencies": sorted(currencies)},
            )
        report_currency = currency or (currencies.pop() if currencies else None)

        aged = sorted(
            (self.age_invoice(i, as_of_date) for i in open_invoices),
            key=lambda a: a.age_days,
            reverse=True,
        )

        buckets: dict[str, tuple[Invoice, ...]] = {}
        totals: dict[str, Decimal] = {}
        grand_total = Decimal("0")
        for bucket in self.buckets:
            members = [a for a in aged if a.bucket.name == bucket.name]
            bucket_total = sum((a.amount for a in members), Decimal("0"))
            buckets[bucket.name] = tuple(a.invoice for a in members)
            totals[bucket.name] = bucket_total
            grand_total += bucket_total
        totals[GRAND_TOTAL] = grand_total

        logger.info("aging_report_generated", extra={
            "as_of_date": as_of_date.isoformat(),
            "item_count": len(aged),
            "currency": report_currency,
            "bucket_counts": {name: len(v) for name, v in buckets.items()},
            "grand_total": str(grand_total),
        })

        return AgingReport(
            as_of_date=as_of_date,
            currency=report_currency,
            items=tuple(aged),
            buckets=buckets,
            totals=totals,
        )
