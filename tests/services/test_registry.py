"""
Tests for the invoice registry.

Covers:
- Create: validation, numbering, uniqueness, reminder scheduling
- Status workflow, including the past-due guard
- Payments and settlement
- Contract milestone linkage
- Overdue lists, aging and portfolio metrics
- Per-invoice serialization under concurrent writers
"""

import threading
from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_engines.invoicing import generate_invoices
from billing_kernel.domain.models import InvoiceStatus, MilestoneStatus
from billing_kernel.exceptions import ContractNotFoundError, InvoiceNotFoundError
from billing_services.registry import InvoiceRegistry
from billing_services.reminders import ReminderScheduler

TODAY = date(2024, 1, 15)


def _past_due(factory, days, unit_price="1000.00", **kwargs):
    due = TODAY - timedelta(days=days)
    return factory(issue_date=due - timedelta(days=30), due_date=due, unit_price=unit_price, **kwargs)


class TestCreate:

    def test_numbers_and_stores(self, registry, invoice_factory):
        result = registry.create(invoice_factory())

        assert result.success
        assert result.invoice.invoice_number == "INV-2024-0001"
        assert registry.get("INV-2024-0001") == result.invoice
        assert registry.get(result.invoice.id) == result.invoice
        assert len(registry) == 1

    def test_sequential_numbers(self, registry, invoice_factory):
        numbers = [registry.create(invoice_factory()).invoice.invoice_number for _ in range(3)]
        assert numbers == ["INV-2024-0001", "INV-2024-0002", "INV-2024-0003"]

    def test_supplied_number_kept_and_observed(self, registry, invoice_factory):
        registry.create(invoice_factory(invoice_number="INV-2024-0010"))

        assert registry.create(invoice_factory()).invoice.invoice_number == "INV-2024-0011"

    def test_duplicate_number_rejected(self, registry, invoice_factory):
        first = registry.create(invoice_factory(invoice_number="INV-2024-0005"))
        second = registry.create(invoice_factory(invoice_number="INV-2024-0005"))

        assert not second.success
        assert second.error_code == "DUPLICATE_INVOICE_NUMBER"
        assert second.error.existing_invoice_id == str(first.invoice.id)
        assert len(registry) == 1

    def test_same_invoice_twice_rejected(self, registry, invoice_factory):
        invoice = invoice_factory()
        registry.create(invoice)

        assert registry.create(invoice).error.rule == "invoice_id_unique"

    def test_invalid_invoice_not_stored(self, registry, invoice_factory):
        invoice = invoice_factory(issue_date=date(2024, 2, 1), due_date=date(2024, 1, 1))

        result = registry.create(invoice)

        assert not result
        assert result.error_code == "SCHEMA_ERROR"
        assert result.report.error_codes == ["DUE_BEFORE_ISSUE"]
        assert len(registry) == 0
        assert registry.numbering.issued_count(2024) == 0

    def test_warnings_surface_without_blocking(self, registry, invoice_factory):
        invoice = replace(_past_due(invoice_factory, 45), status=InvoiceStatus.SENT)

        result = registry.create(invoice)

        assert result.success
        assert [w.code for w in result.warnings] == ["SEVERELY_OVERDUE"]

    def test_reminders_scheduled(self, registry, invoice_factory):
        invoice = registry.create(invoice_factory()).invoice
        assert len(registry.reminders.pending_for(invoice.id)) == 3

    def test_lookup_misses(self, registry):
        with pytest.raises(InvoiceNotFoundError):
            registry.get("INV-1999-0001")
        with pytest.raises(ContractNotFoundError):
            registry.get_contract(uuid4())


class TestStatus:

    def test_sent_then_paid(self, registry, invoice_factory):
        invoice = registry.create(invoice_factory()).invoice
        registry.update_status(invoice.id, "sent")

        result = registry.update_status(invoice.id, "paid")

        assert result.success
        assert result.invoice.status == InvoiceStatus.PAID
        assert result.invoice.amount_paid == result.invoice.total
        assert result.invoice.amount_due == Decimal("0")
        assert result.invoice.paid_date == TODAY
        assert registry.reminders.pending_for(invoice.id) == []

    def test_legacy_capitalized_status(self, registry, invoice_factory):
        invoice = registry.create(invoice_factory()).invoice
        assert registry.update_status(invoice.id, "Sent").invoice.status == InvoiceStatus.SENT

    def test_invalid_transition(self, registry, invoice_factory):
        invoice = registry.create(invoice_factory()).invoice

        result = registry.update_status(invoice.id, InvoiceStatus.PAID)

        assert result.error_code == "INVALID_STATUS_TRANSITION"
        assert registry.get(invoice.id).status == InvoiceStatus.DRAFT

    def test_unknown_status(self, registry, invoice_factory):
        invoice = registry.create(invoice_factory()).invoice
        assert registry.update_status(invoice.id, "archived").error.rule == "invoice_status_known"

    def test_overdue_requires_past_due(self, registry, invoice_factory):
        invoice = registry.create(invoice_factory()).invoice
        registry.update_status(invoice.id, "sent")

        result = registry.update_status(invoice.id, "overdue")

        assert result.error.rule == "invoice_past_due"

    def test_cancel_drops_reminders(self, registry, invoice_factory):
        invoice = registry.create(invoice_factory()).invoice

        assert registry.update_status(invoice.id, "cancelled").success
        assert registry.reminders.pending_for(invoice.id) == []

    def test_same_status_is_noop(self, registry, invoice_factory):
        invoice = registry.create(invoice_factory()).invoice
        assert registry.update_status(invoice.id, "draft").invoice == invoice

    def test_mark_overdue(self, registry, invoice_factory):
        late = registry.create(_past_due(invoice_factory, 5)).invoice
        current = registry.create(invoice_factory()).invoice
        for inv in (late, current):
            registry.update_status(inv.id, "sent")

        moved = registry.mark_overdue()

        assert [i.id for i in moved] == [late.id]
        assert registry.get(late.id).status == InvoiceStatus.OVERDUE
        assert registry.get(current.id).status == InvoiceStatus.SENT


class TestPayments:

    def _sent(self, registry, invoice_factory, **kwargs):
        invoice = registry.create(invoice_factory(**kwargs)).invoice
        return registry.update_status(invoice.id, "sent").invoice

    def test_partial_then_full(self, registry, invoice_factory):
        invoice = self._sent(registry, invoice_factory)

        partial = registry.record_payment(invoice.id, Decimal("400.00"))
        assert partial.invoice.status == InvoiceStatus.SENT
        assert partial.invoice.amount_due == Decimal("600.00")
        assert len(registry.reminders.pending_for(invoice.id)) == 3

        final = registry.record_payment(invoice.id, Decimal("600.00"), paid_on=date(2024, 1, 20))
        assert final.invoice.status == InvoiceStatus.PAID
        assert final.invoice.paid_date == date(2024, 1, 20)
        assert registry.reminders.pending_for(invoice.id) == []

    def test_draft_cannot_be_paid(self, registry, invoice_factory):
        invoice = registry.create(invoice_factory()).invoice
        assert registry.record_payment(invoice.id, Decimal("1")).error.rule == "payment_requires_open_invoice"

    def test_overpayment_rejected(self, registry, invoice_factory):
        invoice = self._sent(registry, invoice_factory)

        result = registry.record_payment(invoice.id, Decimal("1000.01"))

        assert result.error.rule == "payment_exceeds_balance"
        assert registry.get(invoice.id).amount_paid == Decimal("0")

    def test_non_positive_rejected(self, registry, invoice_factory):
        invoice = self._sent(registry, invoice_factory)
        assert registry.record_payment(invoice.id, Decimal("0")).error.rule == "payment_amount_positive"

    def test_unknown_invoice(self, registry):
        result = registry.record_payment(uuid4(), Decimal("1"))
        assert result.error_code == "INVOICE_NOT_FOUND"

    def test_concurrent_payments_serialize(self, registry, invoice_factory):
        invoice = self._sent(registry, invoice_factory)
        results = []
        guard = threading.Lock()

        def pay():
            result = registry.record_payment(invoice.id, Decimal("100.00"))
            with guard:
                results.append(result)

        threads = [threading.Thread(target=pay) for _ in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(1 for r in results if r.success) == 10
        stored = registry.get(invoice.id)
        assert stored.amount_paid == Decimal("1000.00")
        assert stored.status == InvoiceStatus.PAID


class TestContractLinkage:

    def test_invoices_mark_milestones(self, registry, quote, contract, clock):
        registry.register_contract(contract)
        for invoice in generate_invoices(quote, contract, now=clock.now()):
            assert registry.create(invoice).success

        stored = registry.get_contract(contract.id)
        assert all(m.status == MilestoneStatus.INVOICED for m in stored.milestones)
        assert stored.total_invoiced == contract.total_amount
        assert len(registry.list(contract_id=contract.id)) == 4

    def test_milestone_invoiced_once(self, registry, quote, contract, clock):
        registry.register_contract(contract)
        first = generate_invoices(quote, contract, now=clock.now())
        second = generate_invoices(quote, contract, now=clock.now())
        registry.create(first[0])

        result = registry.create(second[0])

        assert result.error_code == "MILESTONE_ALREADY_INVOICED"
        assert len(registry) == 1

    def test_payment_marks_milestone_paid(self, registry, quote, contract, clock):
        registry.register_contract(contract)
        invoice = registry.create(generate_invoices(quote, contract, now=clock.now())[0]).invoice
        registry.update_status(invoice.id, "sent")

        registry.update_status(invoice.id, "paid")

        stored = registry.get_contract(contract.id)
        assert stored.milestones[0].status == MilestoneStatus.PAID
        assert stored.total_paid == invoice.subtotal


class TestReporting:

    def test_overdue_excludes_closed(self, registry, invoice_factory):
        late = registry.create(_past_due(invoice_factory, 40)).invoice
        later = registry.create(_past_due(invoice_factory, 70)).invoice
        paid = registry.create(_past_due(invoice_factory, 10)).invoice
        registry.update_status(paid.id, "sent")
        registry.update_status(paid.id, "paid")
        cancelled = registry.create(_past_due(invoice_factory, 10)).invoice
        registry.update_status(cancelled.id, "cancelled")

        assert [i.id for i in registry.get_overdue()] == [later.id, late.id]

    def test_aging_report(self, registry, invoice_factory):
        invoice = replace(_past_due(invoice_factory, 40), status=InvoiceStatus.SENT)
        registry.create(invoice)

        report = registry.generate_aging_report()

        assert report.as_of_date == TODAY
        assert [i.id for i in report.buckets["days31to60"]] == [invoice.id]

    def test_metrics(self, registry, invoice_factory):
        paid = registry.create(invoice_factory(issue_date=date(2024, 1, 1), unit_price="500.00")).invoice
        registry.update_status(paid.id, "sent")
        registry.update_status(paid.id, "paid", paid_date=date(2024, 1, 11))
        registry.create(_past_due(invoice_factory, 5, unit_price="300.00"))
        registry.create(invoice_factory(unit_price="200.00"))
        cancelled = registry.create(invoice_factory(unit_price="999.00")).invoice
        registry.update_status(cancelled.id, "cancelled")

        metrics = registry.get_metrics()

        assert metrics.total_invoices == 3
        assert metrics.paid_invoices == 1
        assert metrics.overdue_invoices == 1
        assert metrics.total_amount == Decimal("1000.00")
        assert metrics.paid_amount == Decimal("500.00")
        assert metrics.outstanding_amount == Decimal("500.00")
        assert metrics.overdue_amount == Decimal("300.00")
        assert metrics.payment_rate == Decimal("0.3333")
        assert metrics.average_payment_days == Decimal("10.0")
        assert metrics.currency == "USD"

    def test_metrics_empty(self, registry):
        metrics = registry.get_metrics()
        assert metrics.total_invoices == 0
        assert metrics.payment_rate == Decimal("0")


class TestConcurrentCreate:

    def test_numbers_unique_and_contiguous(self, clock, config, invoice_factory):
        registry = InvoiceRegistry.from_config(config, clock=clock)
        invoices = [invoice_factory() for _ in range(60)]
        chunks = [invoices[i::6] for i in range(6)]

        def worker(chunk):
            for invoice in chunk:
                assert registry.create(invoice).success

        threads = [threading.Thread(target=worker, args=(c,)) for c in chunks]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        numbers = sorted(i.invoice_number for i in registry.list())
        assert numbers == [f"INV-2024-{n:04d}" for n in range(1, 61)]


class _PayDuringSchedule(ReminderScheduler):
    """Starts a send-then-pay writer for the invoice while its reminders are being scheduled."""

    def __init__(self):
        super().__init__()
        self.registry = None
        self.writer = None

    def schedule(self, invoice):
        if self.writer is None:
            def send_and_pay():
                self.registry.update_status(invoice.id, "sent")
                self.registry.update_status(invoice.id, "paid")

            self.writer = threading.Thread(target=send_and_pay)
            self.writer.start()
            self.writer.join(timeout=0.2)
        return super().schedule(invoice)


class TestRemindersUnderConcurrentPayment:

    def test_paid_invoice_keeps_no_pending_reminders(self, clock, invoice_factory):
        scheduler = _PayDuringSchedule()
        registry = InvoiceRegistry(clock=clock, reminders=scheduler)
        scheduler.registry = registry
        invoice = invoice_factory()

        assert registry.create(invoice).success
        scheduler.writer.join()

        assert registry.get(invoice.id).status == InvoiceStatus.PAID
        assert scheduler.pending_for(invoice.id) == []
