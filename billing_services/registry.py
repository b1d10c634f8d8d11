"""
InvoiceRegistry -- keyed in-memory store of invoices and contracts.

Responsibility:
    Validates, numbers and stores invoices; applies status changes and
    payments through the invoice workflow; keeps contracts' milestone
    state and running totals in step with their invoices; drives the
    ReminderScheduler; produces overdue lists, aging reports and portfolio
    metrics.

Architecture position:
    Services -- imperative shell. Holds the only mutable invoice state.
    Time comes from an injected Clock. There is no module-level instance:
    every caller constructs (or is handed) its own registry.

Invariants enforced:
    - Every mutation is a critical section keyed by invoice id: updates to
      one invoice are serialized, updates to different invoices are not.
      Contract updates additionally take the contract's key. Reminder
      scheduling and cancellation run inside the same section, so a paid
      or cancelled invoice never keeps pending reminders.
    - Mutations return a RegistryResult. On failure nothing is written:
      new state is computed first and committed in one step.
    - Invoice numbers are unique across the registry.
    - Status changes follow INVOICE_WORKFLOW. Reaching ``paid`` or
      ``cancelled`` cancels every pending reminder of the invoice.

Failure modes (reported through RegistryResult, never raised):
    - SchemaError            -- invoice failed validation.
    - DuplicateInvoiceNumberError, InvalidStatusTransitionError.
    - MilestoneAlreadyInvoicedError / MilestoneNotFoundError -- contract
      linkage rejected the invoice.
    - InvoiceNotFoundError, BusinessRuleError (payment checks).

    ``get`` and ``get_contract`` raise their NotFoundError directly.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from uuid import UUID

from billing_config.bridges import build_validation_limits
from billing_config.schema import EngineConfig
from billing_engines.aging import AgingCalculator, AgingReport
from billing_engines.contracts import apply_invoice_to_contract, apply_payment_to_contract
from billing_engines.validation import DEFAULT_LIMITS, ValidationLimits, validate_invoice
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dtos import ValidationIssue, ValidationReport
from billing_kernel.domain.models import Contract, Invoice, InvoiceStatus
from billing_kernel.domain.workflows import INVOICE_WORKFLOW, PAST_DUE
from billing_kernel.exceptions import (
    BillingEngineError,
    BusinessRuleError,
    ContractNotFoundError,
    DuplicateInvoiceNumberError,
    InvalidStatusTransitionError,
    InvoiceNotFoundError,
    SchemaError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_services.numbering import InvoiceNumberSequence
from billing_services.reminders import ReminderScheduler

logger = get_logger("services.registry")

RATE_QUANTUM = Decimal("0.0001")
DAYS_QUANTUM = Decimal("0.1")


@dataclass(frozen=True)
class RegistryResult:
    """Outcome of a registry mutation."""

    success: bool
    invoice: Invoice | None = None
    report: ValidationReport = field(default_factory=ValidationReport.success)
    error: BillingEngineError | None = None

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error is not None else None

    @property
    def warnings(self) -> tuple[ValidationIssue, ...]:
        return self.report.warnings

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, invoice: Invoice, report: ValidationReport | None = None) -> RegistryResult:
        return cls(True, invoice, report or ValidationReport.success())

    @classmethod
    def failed(
        cls,
        error: BillingEngineError,
        invoice: Invoice | None = None,
        report: ValidationReport | None = None,
    ) -> RegistryResult:
        return cls(False, invoice, report or ValidationReport.success(), error)


@dataclass(frozen=True)
class PortfolioMetrics:
    """
    Portfolio-level receivables figures.

    ``payment_rate`` is paid count / invoice count. ``average_payment_days``
    is the mean of (paid date - issue date) over paid invoices, falling back
    to (due date - issue date) for paid invoices without a paid date.
    """

    currency: str | None
    total_invoices: int
    paid_invoices: int
    overdue_invoices: int
    total_amount: Decimal
    paid_amount: Decimal
    outstanding_amount: Decimal
    overdue_amount: Decimal
    payment_rate: Decimal
    average_payment_days: Decimal


class _KeyedLocks:
    """One lock per key, created on demand."""

    def __init__(self) -> None:
        self._locks: dict[Hashable, threading.Lock] = {}
        self._guard = threading.Lock()

    def __call__(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock


class InvoiceRegistry:
    """
    In-memory invoice store.

    Usage:
        registry = InvoiceRegistry(clock=DeterministicClock())
        result = registry.create(invoice)
        if result:
            registry.update_status(result.invoice.id, "sent")
    """

    def __init__(
        self,
        clock: Clock | None = None,
        numbering: InvoiceNumberSequence | None = None,
        reminders: ReminderScheduler | None = None,
        limits: ValidationLimits = DEFAULT_LIMITS,
        aging: AgingCalculator | None = None,
    ):
        self._clock = clock or SystemClock()
        self.numbering = numbering or InvoiceNumberSequence()
        self.reminders = reminders or ReminderScheduler()
        self._limits = limits
        self._aging = aging or AgingCalculator()

        self._invoices: dict[UUID, Invoice] = {}
        self._by_number: dict[str, UUID] = {}
        self._contracts: dict[UUID, Contract] = {}
        self._store_lock = threading.Lock()
        self._locks = _KeyedLocks()

    @classmethod
    def from_config(cls, config: EngineConfig, clock: Clock | None = None) -> InvoiceRegistry:
        """Registry wired with the configured numbering, reminders and limits."""
        return cls(
            clock=clock,
            numbering=InvoiceNumberSequence(config.numbering),
            reminders=ReminderScheduler(config.reminders),
            limits=build_validation_limits(config),
        )

    # -- contracts ------------------------------------------------------------

    def register_contract(self, contract: Contract) -> None:
        """Track a contract so its invoices update its milestones and totals."""
        with self._locks(("contract", contract.id)):
            with self._store_lock:
                self._contracts[contract.id] = contract
        logger.info("contract_registered", extra={
            "contract_id": str(contract.id),
            "contract_number": contract.contract_number,
            "milestone_count": len(contract.milestones),
        })

    def get_contract(self, contract_id: UUID) -> Contract:
        contract = self._contracts.get(contract_id)
        if contract is None:
            raise ContractNotFoundError(str(contract_id))
        return contract

    # -- queries --------------------------------------------------------------

    def get(self, key: UUID | str) -> Invoice:
        """Look up by invoice id or invoice number."""
        invoice_id = key if isinstance(key, UUID) else self._by_number.get(key)
        invoice = self._invoices.get(invoice_id) if invoice_id is not None else None
        if invoice is None:
            raise InvoiceNotFoundError(str(key))
        return invoice

    def list(
        self,
        status: InvoiceStatus | str | None = None,
        contract_id: UUID | None = None,
    ) -> list[Invoice]:
        wanted = InvoiceStatus.parse(status) if status is not None else None
        with self._store_lock:
            invoices = list(self._invoices.values())
        return sorted(
            (
                i for i in invoices
                if (wanted is None or i.status == wanted)
                and (contract_id is None or i.contract_id == contract_id)
            ),
            key=lambda i: (i.issue_date, i.invoice_number or ""),
        )

    def __len__(self) -> int:
        return len(self._invoices)

    # -- create ---------------------------------------------------------------

    def create(self, invoice: Invoice) -> RegistryResult:
        """
        Validate, number and store an invoice, then schedule its reminders.

        An invoice bound to a registered contract's milestone marks that
        milestone invoiced; a milestone that is already invoiced rejects
        the invoice.
        """
        today = self._clock.today()
        candidate = invoice
        if not invoice.invoice_number:
            candidate = replace(invoice, invoice_number=self.numbering.peek(invoice.issue_date))
        report = validate_invoice(candidate, today, self._limits)
        if not report.is_valid:
            logger.warning("invoice_rejected", extra={
                "invoice_id": str(invoice.id),
                "error_codes": report.error_codes,
            })
            return RegistryResult.failed(
                SchemaError("invoice", report.field_errors()), invoice, report,
            )

        with LogContext.bind(invoice_id=str(invoice.id)), self._locks(("invoice", invoice.id)):
            contract = self._contracts.get(invoice.contract_id) if invoice.contract_id else None
            if contract is not None and invoice.milestone_id is not None:
                with self._locks(("contract", contract.id)):
                    contract = self._contracts[contract.id]
                    try:
                        updated_contract = apply_invoice_to_contract(
                            contract, invoice, invoice.milestone_id, self._clock.now(),
                        )
                    except BillingEngineError as exc:
                        logger.warning("invoice_rejected", extra={
                            "invoice_id": str(invoice.id), "error_code": exc.code,
                        })
                        return RegistryResult.failed(exc, invoice, report)
                    result = self._insert(invoice, updated_contract, report)
            else:
                result = self._insert(invoice, None, report)
            if result.success:
                self.reminders.schedule(result.invoice)

        if result.success:
            logger.info("invoice_registered", extra={
                "invoice_id": str(result.invoice.id),
                "invoice_number": result.invoice.invoice_number,
                "total": str(result.invoice.total),
                "warning_codes": report.warning_codes,
            })
        return result

    def _insert(
        self, invoice: Invoice, contract: Contract | None, report: ValidationReport,
    ) -> RegistryResult:
        with self._store_lock:
            if invoice.id in self._invoices:
                return RegistryResult.failed(BusinessRuleError(
                    "invoice_id_unique", f"Invoice {invoice.id} is already registered",
                ), invoice, report)
            number = invoice.invoice_number
            if number and number in self._by_number:
                return RegistryResult.failed(
                    DuplicateInvoiceNumberError(number, str(self._by_number[number])),
                    invoice, report,
                )
            if number:
                self.numbering.observe(number, invoice.issue_date)
            else:
                number = self.numbering.next_number(invoice.issue_date)
                invoice = replace(invoice, invoice_number=number)
            self._invoices[invoice.id] = invoice
            self._by_number[number] = invoice.id
            if contract is not None:
                self._contracts[contract.id] = contract
        return RegistryResult.ok(invoice, report)

    # -- status / payments ----------------------------------------------------

    def _commit(self, invoice: Invoice, contract: Contract | None = None) -> None:
        with self._store_lock:
            self._invoices[invoice.id] = invoice
            if contract is not None:
                self._contracts[contract.id] = contract

    def _settle(self, invoice: Invoice) -> RegistryResult:
        """Commit a newly paid invoice together with its contract milestone."""
        contract = self._contracts.get(invoice.contract_id) if invoice.contract_id else None
        if contract is None or invoice.milestone_id is None:
            self._commit(invoice)
            return RegistryResult.ok(invoice)
        with self._locks(("contract", contract.id)):
            contract = self._contracts[contract.id]
            try:
                updated = apply_payment_to_contract(contract, invoice, self._clock.now())
            except BillingEngineError as exc:
                return RegistryResult.failed(exc, invoice)
            self._commit(invoice, updated)
        return RegistryResult.ok(invoice)

    def update_status(
        self,
        invoice_id: UUID,
        status: InvoiceStatus | str,
        paid_date: date | None = None,
    ) -> RegistryResult:
        """
        Move an invoice along the workflow.

        ``paid`` settles the remaining balance; ``overdue`` requires the due
        date to be in the past.
        """
        try:
            target = InvoiceStatus.parse(status)
        except ValueError as exc:
            return RegistryResult.failed(BusinessRuleError("invoice_status_known", str(exc)))

        with LogContext.bind(invoice_id=str(invoice_id)), self._locks(("invoice", invoice_id)):
            current = self._invoices.get(invoice_id)
            if current is None:
                return RegistryResult.failed(InvoiceNotFoundError(str(invoice_id)))
            if current.status == target:
                return RegistryResult.ok(current)

            transition = INVOICE_WORKFLOW.find(current.status.value, target.value)
            if transition is None:
                logger.warning("invoice_transition_rejected", extra={
                    "from_status": current.status.value,
                    "to_status": target.value,
                })
                return RegistryResult.failed(InvalidStatusTransitionError(
                    str(invoice_id), current.status.value, target.value,
                ), current)

            today = self._clock.today()
            if transition.guard is PAST_DUE and not current.due_date < today:
                return RegistryResult.failed(BusinessRuleError(
                    "invoice_past_due", "Invoice is not past its due date",
                    {"due_date": current.due_date, "today": today},
                ), current)

            changes: dict[str, object] = {"status": target, "updated_at": self._clock.now()}
            if target == InvoiceStatus.PAID:
                changes["amount_paid"] = current.total
                changes["paid_date"] = paid_date or today
            updated = replace(current, **changes)

            if target == InvoiceStatus.PAID:
                result = self._settle(updated)
                if not result.success:
                    return result
            else:
                self._commit(updated)

            logger.info("invoice_status_changed", extra={
                "invoice_number": current.invoice_number,
                "from_status": current.status.value,
                "to_status": target.value,
                "action": transition.action,
            })
            if transition.cancels_reminders:
                self.reminders.cancel_pending(invoice_id)
        return RegistryResult.ok(updated)

    def record_payment(
        self,
        invoice_id: UUID,
        amount: Decimal,
        paid_on: date | None = None,
    ) -> RegistryResult:
        """
        Apply a payment to an open (sent, viewed or overdue) invoice.

        A payment that clears the balance moves the invoice to ``paid``.
        """
        amount = Decimal(str(amount))
        with LogContext.bind(invoice_id=str(invoice_id)), self._locks(("invoice", invoice_id)):
            current = self._invoices.get(invoice_id)
            if current is None:
                return RegistryResult.failed(InvoiceNotFoundError(str(invoice_id)))
            if current.status == InvoiceStatus.DRAFT or current.status.is_closed:
                return RegistryResult.failed(BusinessRuleError(
                    "payment_requires_open_invoice",
                    f"Cannot record a payment on a {current.status.value} invoice",
                ), current)
            if amount <= 0:
                return RegistryResult.failed(BusinessRuleError(
                    "payment_amount_positive", "Payment amount must be greater than 0",
                    {"amount": amount},
                ), current)
            if amount > current.amount_due:
                return RegistryResult.failed(BusinessRuleError(
                    "payment_exceeds_balance", "Payment exceeds the amount due",
                    {"amount": amount, "amount_due": current.amount_due},
                ), current)

            amount_paid = current.amount_paid + amount
            settled = amount_paid == current.total
            changes: dict[str, object] = {
                "amount_paid": amount_paid,
                "updated_at": self._clock.now(),
            }
            if settled:
                changes["status"] = InvoiceStatus.PAID
                changes["paid_date"] = paid_on or self._clock.today()
            updated = replace(current, **changes)

            if settled:
                result = self._settle(updated)
                if not result.success:
                    return result
            else:
                self._commit(updated)

            logger.info("payment_recorded", extra={
                "invoice_number": current.invoice_number,
                "amount": str(amount),
                "amount_paid": str(amount_paid),
                "amount_due": str(updated.amount_due),
                "settled": settled,
            })
            if settled:
                self.reminders.cancel_pending(invoice_id)
        return RegistryResult.ok(updated)

    def mark_overdue(self) -> list[Invoice]:
        """Move every sent or viewed invoice past its due date to ``overdue``."""
        today = self._clock.today()
        candidates = [
            i for i in self.list()
            if i.status in (InvoiceStatus.SENT, InvoiceStatus.VIEWED) and i.due_date < today
        ]
        moved = []
        for invoice in candidates:
            result = self.update_status(invoice.id, InvoiceStatus.OVERDUE)
            if result.success:
                moved.append(result.invoice)
        return moved

    # -- reporting ------------------------------------------------------------

    def get_overdue(self) -> list[Invoice]:
        """Open invoices past their due date, most overdue first."""
        today = self._clock.today()
        overdue = [
            i for i in self.list() if not i.status.is_closed and i.due_date < today
        ]
        return sorted(overdue, key=lambda i: (i.due_date, i.invoice_number or ""))

    def generate_aging_report(self, currency: str | None = None) -> AgingReport:
        return self._aging.generate_report(self.list(), self._clock.today(), currency)

    def get_metrics(self, currency: str | None = None) -> PortfolioMetrics:
        invoices = [
            i for i in self.list()
            if i.status != InvoiceStatus.CANCELLED and (currency is None or i.currency == currency)
        ]
        currencies = {i.currency for i in invoices}
        if len(currencies) > 1:
            raise BusinessRuleError(
                "metrics_single_currency",
                "Metrics span several currencies; pass a currency",
                {"currencies": sorted(currencies)},
            )
        today = self._clock.today()
        paid = [i for i in invoices if i.status == InvoiceStatus.PAID]
        overdue = [i for i in invoices if i.status != InvoiceStatus.PAID and i.due_date < today]

        def total(values) -> Decimal:
            return sum(values, Decimal("0"))

        payment_days = [
            ((i.paid_date or i.due_date) - i.issue_date).days for i in paid
        ]
        average_days = (
            (Decimal(sum(payment_days)) / len(payment_days)).quantize(DAYS_QUANTUM)
            if payment_days else Decimal("0")
        )
        rate = (
            (Decimal(len(paid)) / len(invoices)).quantize(RATE_QUANTUM)
            if invoices else Decimal("0")
        )
        metrics = PortfolioMetrics(
            currency=currency or (next(iter(currencies)) if currencies else None),
            total_invoices=len(invoices),
            paid_invoices=len(paid),
            overdue_invoices=len(overdue),
            total_amount=total(i.total for i in invoices),
            paid_amount=total(i.amount_paid for i in invoices),
            outstanding_amount=total(i.amount_due for i in invoices),
            overdue_amount=total(i.amount_due for i in overdue),
            payment_rate=rate,
            average_payment_days=average_days,
        )
        logger.debug("metrics_computed", extra={
            "total_invoices": metrics.total_invoices,
            "payment_rate": str(metrics.payment_rate),
            "outstanding_amount": str(metrics.outstanding_amount),
        })
        return metrics
