"""
Tests for the contract builder, template catalogue and placeholder rendering.

Covers:
- Contract construction from a quote and schedule
- Contract numbering
- Template registration and placeholder rejection
- Document rendering with unresolved placeholders reported
- Milestone state folded back from invoice and payment events
"""

import re
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_engines.contracts import (
    DEFAULT_TEMPLATE_ID,
    ContractTemplate,
    Placeholder,
    TemplateCatalogue,
    apply_invoice_to_contract,
    apply_payment_to_contract,
    format_percent,
    substitute_placeholders,
    validate_contract,
)
from billing_engines.invoicing import generate_invoice
from billing_engines.schedule import generate_schedule
from billing_kernel.domain.models import (
    ContractStatus,
    MilestoneStatus,
    PaymentStructureType,
)
from billing_kernel.exceptions import (
    MilestoneAlreadyInvoicedError,
    MilestoneNotFoundError,
    SchemaError,
    TemplateNotFoundError,
    UnknownPlaceholderError,
)

FIXED_NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)
TODAY = FIXED_NOW.date()


class TestBuild:

    def test_contract_fields(self, contract, quote):
        assert contract.client_name == "Jane Baker"
        assert contract.client_email == "jane@acmebakery.example"
        assert contract.contract_title == "Website Development Contract - Acme Bakery"
        assert contract.status == ContractStatus.DRAFT
        assert contract.template_id == DEFAULT_TEMPLATE_ID
        assert contract.total_amount == Decimal("22500")
        assert contract.currency == "USD"
        assert contract.project.source_quote is quote
        assert contract.project.start_date == TODAY
        assert contract.created_at == FIXED_NOW

    def test_scope_lists_each_feature(self, contract):
        assert "Implement Online ordering" in contract.project.scope
        assert contract.project.scope[0] == "Design and develop 8 custom web pages"

    def test_payment_block_carries_terms(self, contract):
        assert contract.payment.payment_terms == "Net 30"
        assert contract.payment.late_fee_percentage == Decimal("1.5")
        assert contract.payment.total_percentage == Decimal("100")

    def test_client_name_falls_back_to_business_name(self, builder, quote_factory):
        quote = quote_factory(client_name=None, client_email=None)
        schedule = generate_schedule(quote.final_price, quote.timeline, PaymentStructureType.SINGLE, TODAY)

        contract = builder.build(quote, schedule, now=FIXED_NOW)

        assert contract.client_name == "Acme Bakery"
        assert contract.client_email == ""

    def test_unknown_template_rejected(self, builder, quote):
        schedule = generate_schedule(quote.final_price, quote.timeline, PaymentStructureType.SINGLE, TODAY)

        with pytest.raises(TemplateNotFoundError):
            builder.build(quote, schedule, now=FIXED_NOW, template_id="missing")

    def test_invalid_email_fails_schema(self, builder, quote_factory):
        quote = quote_factory(client_email="not-an-email")
        schedule = generate_schedule(quote.final_price, quote.timeline, PaymentStructureType.SINGLE, TODAY)

        with pytest.raises(SchemaError) as exc_info:
            builder.build(quote, schedule, now=FIXED_NOW)
        assert exc_info.value.field_errors == {"client_email": "Invalid email address"}


class TestContractNumbering:

    def test_format(self, builder):
        assert re.fullmatch(r"CON-2024-\d{6}", builder.next_contract_number(FIXED_NOW))

    def test_numbers_strictly_increase_for_same_instant(self, builder):
        numbers = [builder.next_contract_number(FIXED_NOW) for _ in range(5)]
        assert len(set(numbers)) == 5
        assert numbers == sorted(numbers)


class TestValidateContract:

    def test_valid(self, contract):
        assert validate_contract(contract).is_valid

    def test_percentages_must_total_100(self, contract):
        milestones = tuple(replace(m, percentage=Decimal("20")) for m in contract.milestones)
        broken = replace(contract, payment=replace(contract.payment, milestones=milestones))

        report = validate_contract(broken)

        assert report.error_codes == ["SCHEDULE_TOTAL_PERCENTAGE"]

    def test_missing_fields(self, contract):
        broken = replace(
            contract,
            client_name="",
            payment=replace(contract.payment, total_amount=Decimal("0"), milestones=()),
        )

        codes = validate_contract(broken).error_codes

        assert codes == ["CLIENT_NAME_REQUIRED", "TOTAL_AMOUNT_REQUIRED", "SCHEDULE_REQUIRED"]


class TestTemplates:

    def test_default_template_always_present(self):
        catalogue = TemplateCatalogue()
        assert [t.id for t in catalogue.list_templates()] == [DEFAULT_TEMPLATE_ID]

    def test_unknown_placeholder_rejected_on_register(self):
        template = ContractTemplate(
            id="bad", name="Bad", description="", category="custom",
            sections={"intro": "Hello {{client_name}} from {{bogus_key}}"},
        )

        with pytest.raises(UnknownPlaceholderError) as exc_info:
            TemplateCatalogue([template])
        assert exc_info.value.placeholders == ["bogus_key"]

    def test_inactive_template_not_found(self):
        template = ContractTemplate(
            id="old", name="Old", description="", category="custom",
            sections={"intro": "{{client_name}}"}, is_active=False,
        )
        catalogue = TemplateCatalogue([template])

        with pytest.raises(TemplateNotFoundError):
            catalogue.get_template("old")

    def test_catalogues_are_independent(self):
        template = ContractTemplate(
            id="extra", name="Extra", description="", category="custom",
            sections={"intro": "{{client_name}}"},
        )
        first = TemplateCatalogue([template])
        second = TemplateCatalogue()

        assert first.get_template("extra") is template
        with pytest.raises(TemplateNotFoundError):
            second.get_template("extra")


class TestRendering:

    def test_substitution_keeps_missing_values_visible(self):
        document = substitute_placeholders(
            "Dear {{client_name}}, {{ client_title }}",
            {Placeholder.CLIENT_NAME: "Jane", Placeholder.CLIENT_TITLE: None},
        )

        assert document.text == "Dear Jane, {{client_title}}"
        assert document.unresolved == ("client_title",)
        assert not document.is_complete

    def test_substitution_rejects_unknown_keys(self):
        with pytest.raises(UnknownPlaceholderError):
            substitute_placeholders("{{nope}}", {})

    def test_preview_reports_client_title(self, builder, contract):
        document = builder.render_preview(contract, TODAY)

        assert document.unresolved == ("client_title",)
        assert "Total Project Cost: 22,500.00 USD" in document.text
        assert "1. Project Start & Deposit - 30% (USD 6,750.00) - Due: 01/25/2024" in document.text
        assert "• Implement SEO optimization" in document.text

    def test_overrides_complete_document(self, builder, contract):
        document = builder.render_preview(
            contract, TODAY, overrides={Placeholder.CLIENT_TITLE: "Owner"},
        )

        assert document.is_complete
        assert "Title: Owner" in document.text
        assert "{{" not in document.text

    @pytest.mark.parametrize("value,expected", [
        (Decimal("40"), "40"),
        (Decimal("40.0"), "40"),
        (Decimal("33.3"), "33.3"),
        (Decimal("1.5"), "1.5"),
    ])
    def test_format_percent(self, value, expected):
        assert format_percent(value) == expected


class TestInvoiceLinkage:

    def _invoice(self, quote, contract, index=0):
        return generate_invoice(quote, contract, contract.milestones[index], now=FIXED_NOW)

    def test_invoice_marks_milestone(self, quote, contract):
        invoice = self._invoice(quote, contract)

        updated = apply_invoice_to_contract(contract, invoice, contract.milestones[0].id, FIXED_NOW)

        assert updated.milestones[0].status == MilestoneStatus.INVOICED
        assert updated.milestones[0].invoice_id == invoice.id
        assert updated.invoice_ids == (invoice.id,)
        assert updated.total_invoiced == Decimal("6750.00")
        assert contract.milestones[0].status == MilestoneStatus.PENDING

    def test_milestone_invoiced_once(self, quote, contract):
        invoice = self._invoice(quote, contract)
        updated = apply_invoice_to_contract(contract, invoice, contract.milestones[0].id, FIXED_NOW)

        with pytest.raises(MilestoneAlreadyInvoicedError):
            apply_invoice_to_contract(updated, invoice, contract.milestones[0].id, FIXED_NOW)

    def test_foreign_milestone(self, quote, contract):
        invoice = self._invoice(quote, contract)

        with pytest.raises(MilestoneNotFoundError):
            apply_invoice_to_contract(contract, invoice, uuid4(), FIXED_NOW)

    def test_all_paid_completes_contract(self, quote, contract):
        invoices = [self._invoice(quote, contract, i) for i in range(len(contract.milestones))]
        for invoice in invoices:
            contract = apply_invoice_to_contract(contract, invoice, invoice.milestone_id, FIXED_NOW)
        for invoice in invoices[:-1]:
            contract = apply_payment_to_contract(contract, invoice, FIXED_NOW)
        assert contract.status == ContractStatus.ACTIVE

        contract = apply_payment_to_contract(contract, invoices[-1], FIXED_NOW)

        assert contract.status == ContractStatus.COMPLETED
        assert contract.total_paid == Decimal("22500.00")
        assert all(m.status == MilestoneStatus.PAID for m in contract.milestones)

    def _invoiced(self, quote, contract):
        invoices = [self._invoice(quote, contract, i) for i in range(len(contract.milestones))]
        for invoice in invoices:
            contract = apply_invoice_to_contract(contract, invoice, invoice.milestone_id, FIXED_NOW)
        return contract, invoices

    def test_first_payment_activates_draft(self, quote, contract):
        contract, invoices = self._invoiced(quote, contract)
        assert contract.status == ContractStatus.DRAFT

        contract = apply_payment_to_contract(contract, invoices[0], FIXED_NOW)

        assert contract.status == ContractStatus.ACTIVE

    def test_terminated_contract_never_completes(self, quote, contract):
        contract, invoices = self._invoiced(quote, contract)
        contract = replace(contract, status=ContractStatus.TERMINATED)

        for invoice in invoices:
            contract = apply_payment_to_contract(contract, invoice, FIXED_NOW)

        assert all(m.status == MilestoneStatus.PAID for m in contract.milestones)
        assert contract.total_paid == Decimal("22500.00")
        assert contract.status == ContractStatus.TERMINATED

    def test_repeat_payment_is_noop(self, quote, contract):
        invoice = self._invoice(quote, contract)
        paid = apply_payment_to_contract(contract, invoice, FIXED_NOW)

        assert apply_payment_to_contract(paid, invoice, FIXED_NOW) is paid
