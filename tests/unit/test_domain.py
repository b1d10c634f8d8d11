"""
Unit tests for the billing domain layer.

Covers:
- ValidationReport channels and merging
- Record schema validation
- Invoice workflow table
- Model coercion and derived fields
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_kernel.domain.dtos import Severity, ValidationIssue, ValidationReport
from billing_kernel.domain.models import (
    ConversionOptions,
    Invoice,
    InvoiceStatus,
    InvoiceType,
    LineItem,
    MilestoneDraft,
    PaymentStructureType,
)
from billing_kernel.domain.record_validator import validate_record
from billing_kernel.domain.schemas import (
    INVOICE_SCHEMA,
    QUOTE_SCHEMA,
    FieldSchema,
    FieldType,
    RecordSchema,
)
from billing_kernel.domain.workflows import (
    ALL_MILESTONES_PAID,
    CONTRACT_WORKFLOW,
    INVOICE_WORKFLOW,
    PAST_DUE,
    is_invoice_transition_allowed,
)
from billing_kernel.exceptions import SchemaError


class TestValidationReport:

    def test_from_issues_partitions_by_severity(self):
        report = ValidationReport.from_issues([
            ValidationIssue.error("E1", "bad", "a"),
            ValidationIssue.warning("W1", "hmm"),
        ])
        assert report.error_codes == ["E1"]
        assert report.warning_codes == ["W1"]
        assert report.warnings[0].severity == Severity.WARNING

    def test_warnings_do_not_invalidate(self):
        report = ValidationReport.from_issues([ValidationIssue.warning("W1", "hmm")])
        assert report.is_valid
        assert bool(report)

    def test_field_errors_first_message_wins(self):
        report = ValidationReport.from_issues([
            ValidationIssue.error("E1", "first", "name"),
            ValidationIssue.error("E2", "second", "name"),
            ValidationIssue.error("E3", "no field"),
        ])
        assert report.field_errors() == {"name": "first", "E3": "no field"}

    def test_merge_preserves_order(self):
        a = ValidationReport.from_issues([ValidationIssue.error("A", "a")])
        b = ValidationReport.from_issues([ValidationIssue.error("B", "b"), ValidationIssue.warning("W", "w")])
        merged = a.merge(b)
        assert merged.error_codes == ["A", "B"]
        assert merged.warning_codes == ["W"]

    def test_raise_for_errors(self):
        report = ValidationReport.from_issues([ValidationIssue.error("E1", "Client name is required", "client_name")])
        with pytest.raises(SchemaError) as exc_info:
            report.raise_for_errors("invoice")
        assert exc_info.value.field_errors == {"client_name": "Client name is required"}

    def test_issue_details(self):
        issue = ValidationIssue.warning("W", "w", "f", days=40)
        assert issue.details == {"days": 40}
        assert not issue.is_error


class TestRecordValidator:

    def _quote_payload(self, **overrides):
        payload = {
            "id": "Q-1",
            "business_name": "Acme",
            "industry": "Retail",
            "page_count": 5,
            "features": ["Blog"],
            "timeline": "4 weeks",
            "final_price": Decimal("5000"),
            "total_hours": Decimal("40"),
            "client_email": None,
        }
        payload.update(overrides)
        return payload

    def test_valid_quote(self):
        assert validate_record(self._quote_payload(), QUOTE_SCHEMA) == []

    def test_missing_required_uses_custom_message(self):
        errors = validate_record(self._quote_payload(business_name="  "), QUOTE_SCHEMA)
        assert [(e.code, e.message) for e in errors] == [
            ("MISSING_REQUIRED_FIELD", "Business name is required"),
        ]

    def test_negative_price(self):
        errors = validate_record(self._quote_payload(final_price=Decimal("-1")), QUOTE_SCHEMA)
        assert errors[0].code == "VALUE_TOO_SMALL"
        assert errors[0].field == "final_price"

    def test_bad_email_pattern(self):
        errors = validate_record(self._quote_payload(client_email="not-an-email"), QUOTE_SCHEMA)
        assert errors[0].code == "PATTERN_MISMATCH"
        assert errors[0].message == "Invalid email address"

    def test_wrong_type(self):
        errors = validate_record(self._quote_payload(page_count="five"), QUOTE_SCHEMA)
        assert errors[0].code == "INVALID_TYPE"

    def test_bool_is_not_an_integer(self):
        errors = validate_record(self._quote_payload(page_count=True), QUOTE_SCHEMA)
        assert errors[0].code == "INVALID_TYPE"

    def test_nested_item_paths(self):
        payload = {
            "invoice_number": "INV-2024-0001",
            "client_name": "Jane",
            "issue_date": date(2024, 1, 1),
            "due_date": "2024-01-31",
            "items": [{"description": "", "quantity": Decimal("0"), "unit_price": Decimal("1")}],
            "total": Decimal("1"),
            "currency": "USD",
            "invoice_type": "custom",
            "status": "draft",
        }
        fields = {e.field for e in validate_record(payload, INVOICE_SCHEMA)}
        assert fields == {"items[0].description", "items[0].quantity"}

    def test_unsupported_currency(self):
        payload = self._quote_payload()
        schema_field = FieldSchema("currency", FieldType.CURRENCY)
        errors = validate_record({**payload, "currency": "XYZ"}, RecordSchema("x", (schema_field,)))
        assert errors[0].code == "INVALID_CURRENCY"

    def test_array_field_requires_item_definition(self):
        with pytest.raises(ValueError):
            FieldSchema("things", FieldType.ARRAY)


class TestInvoiceWorkflow:

    @pytest.mark.parametrize("src,dst", [
        (InvoiceStatus.DRAFT, InvoiceStatus.SENT),
        (InvoiceStatus.SENT, InvoiceStatus.VIEWED),
        (InvoiceStatus.SENT, InvoiceStatus.PAID),
        (InvoiceStatus.VIEWED, InvoiceStatus.OVERDUE),
        (InvoiceStatus.OVERDUE, InvoiceStatus.PAID),
        (InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED),
    ])
    def test_allowed(self, src, dst):
        assert is_invoice_transition_allowed(src, dst)

    @pytest.mark.parametrize("src,dst", [
        (InvoiceStatus.DRAFT, InvoiceStatus.PAID),
        (InvoiceStatus.PAID, InvoiceStatus.SENT),
        (InvoiceStatus.CANCELLED, InvoiceStatus.SENT),
        (InvoiceStatus.OVERDUE, InvoiceStatus.SENT),
    ])
    def test_rejected(self, src, dst):
        assert not is_invoice_transition_allowed(src, dst)

    def test_terminal_states(self):
        assert INVOICE_WORKFLOW.terminal_states() == frozenset({"paid", "cancelled"})

    def test_overdue_transitions_are_guarded(self):
        assert INVOICE_WORKFLOW.find("sent", "overdue").guard is PAST_DUE

    def test_paid_and_cancelled_cancel_reminders(self):
        for t in INVOICE_WORKFLOW.transitions:
            assert t.cancels_reminders == (t.to_state in ("paid", "cancelled"))


class TestContractWorkflow:

    def test_completion_only_from_active(self):
        sources = {t.from_state for t in CONTRACT_WORKFLOW.transitions if t.to_state == "completed"}
        assert sources == {"active"}
        assert not CONTRACT_WORKFLOW.can_transition("draft", "completed")

    def test_completion_guarded(self):
        assert CONTRACT_WORKFLOW.find("active", "completed").guard is ALL_MILESTONES_PAID

    def test_terminal_states(self):
        assert CONTRACT_WORKFLOW.terminal_states() == frozenset({"completed", "terminated"})


class TestModels:

    def test_status_parse_accepts_legacy_capitalized(self):
        assert InvoiceStatus.parse("Paid") is InvoiceStatus.PAID
        assert InvoiceStatus.parse(" OVERDUE ") is InvoiceStatus.OVERDUE

    def test_status_parse_rejects_unknown(self):
        with pytest.raises(ValueError, match="Invalid invoice status"):
            InvoiceStatus.parse("archived")

    def test_closed_statuses(self):
        assert {s for s in InvoiceStatus if s.is_closed} == {InvoiceStatus.PAID, InvoiceStatus.CANCELLED}

    def test_line_item_coerces_numbers(self):
        item = LineItem(id=uuid4(), description="x", quantity=2, unit_price="10.5")
        assert item.line_total == Decimal("21.0")

    def test_amount_due_and_days_overdue(self):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        invoice = Invoice(
            id=uuid4(), invoice_number="INV-2024-0001", client_name="Jane",
            invoice_type=InvoiceType.CUSTOM, items=(), currency="USD",
            subtotal=Decimal("100"), tax=Decimal("0"), total=Decimal("100"),
            issue_date=date(2024, 1, 1), due_date=date(2024, 1, 31),
            created_at=now, updated_at=now, amount_paid=Decimal("40"),
        )
        assert invoice.amount_due == Decimal("60")
        assert invoice.days_overdue(date(2024, 2, 10)) == 10
        assert invoice.days_overdue(date(2024, 1, 30)) == -1

    def test_conversion_options_coercion(self):
        options = ConversionOptions(
            payment_structure="custom",
            custom_milestones=[MilestoneDraft(name="A", percentage=100)],
            tax_rate=0.05,
        )
        assert options.payment_structure is PaymentStructureType.CUSTOM
        assert isinstance(options.custom_milestones, tuple)
        assert options.custom_milestones[0].percentage == Decimal("100")
        assert options.tax_rate == Decimal("0.05")
