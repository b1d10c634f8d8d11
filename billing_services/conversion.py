"""
QuoteConverter -- the quote -> contract -> invoices entry point.

Responsibility:
    Orchestrates one conversion: validate the quote and options, build the
    payment schedule, bind the contract, generate invoices and (when a
    registry is attached) register the contract and its invoices.

Architecture position:
    Services -- imperative shell over the pure engines. Reads the clock
    once per conversion and passes the timestamp down.

Invariants enforced:
    - A conversion either returns a complete ConversionResult or raises;
      invoices are all validated before any of them is registered.
    - Invoice numbers are drawn only after every invoice has validated, so
      a rejected conversion leaves the number sequence untouched.
    - Without an explicit payment structure the contract template's default
      schedule applies (40/30/30 for the default template).
    - Every log record emitted during a conversion carries the quote id and
      a fresh correlation id.

Failure modes:
    - SchemaError            -- quote fails structural validation.
    - BusinessRuleError      -- invalid options, invalid custom schedule,
      or contract rule errors (e.g. late fee above the cap).
    - TemplateNotFoundError  -- unknown template id.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from uuid import uuid4

from billing_config.bridges import build_contract_builder, build_validation_limits
from billing_config.schema import EngineConfig
from billing_engines.contracts import ContractBuilder
from billing_engines.invoicing import generate_invoices
from billing_engines.schedule import generate_schedule, template_schedule
from billing_engines.validation import (
    validate_contract_full,
    validate_conversion_options,
    validate_invoice,
    validate_quote,
)
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dtos import ValidationReport
from billing_kernel.domain.models import (
    Contract,
    ConversionOptions,
    Invoice,
    PaymentSchedule,
    PaymentStructureType,
    Quote,
)
from billing_kernel.domain.values import Money
from billing_kernel.exceptions import BusinessRuleError, SchemaError
from billing_kernel.logging_config import LogContext, get_logger
from billing_services.numbering import InvoiceNumberSequence
from billing_services.registry import InvoiceRegistry

logger = get_logger("services.conversion")


@dataclass(frozen=True)
class ConversionSummary:
    total_amount: Decimal
    number_of_invoices: int
    first_invoice_amount: Decimal
    estimated_completion_date: date
    preserved_quote_data: bool = True


@dataclass(frozen=True)
class ConversionResult:
    """Everything a conversion produced, plus its non-blocking warnings."""

    contract: Contract
    invoices: tuple[Invoice, ...]
    payment_schedule: PaymentSchedule
    summary: ConversionSummary
    report: ValidationReport

    @property
    def warnings(self):
        return self.report.warnings


class QuoteConverter:
    """
    Converts accepted quotes into contracts and invoices.

    Usage:
        converter = QuoteConverter(config=get_active_config(), registry=registry)
        result = converter.convert(quote, ConversionOptions(include_detailed_items=True))
        print(render_conversion_summary(result))
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        registry: InvoiceRegistry | None = None,
        clock: Clock | None = None,
        builder: ContractBuilder | None = None,
    ):
        self._config = config or EngineConfig()
        self._registry = registry
        self._clock = clock or SystemClock()
        self._builder = builder or build_contract_builder(self._config)
        self._limits = build_validation_limits(self._config)
        self.numbering = (
            registry.numbering if registry is not None
            else InvoiceNumberSequence(self._config.numbering)
        )

    @property
    def builder(self) -> ContractBuilder:
        return self._builder

    def _schedule(
        self, quote: Quote, options: ConversionOptions, template_id: str,
        start: date, currency: str,
    ) -> PaymentSchedule:
        project_name = f"{quote.business_name} Website"
        if options.custom_milestones or options.payment_structure == PaymentStructureType.CUSTOM:
            return generate_schedule(
                quote.final_price, quote.timeline, PaymentStructureType.CUSTOM, start,
                custom_milestones=options.custom_milestones, currency=currency,
                project_name=project_name,
            )
        if options.payment_structure is not None:
            return generate_schedule(
                quote.final_price, quote.timeline, options.payment_structure, start,
                currency=currency, project_name=project_name,
            )
        template = self._builder.catalogue.get_template(template_id)
        if template.default_milestones:
            return template_schedule(
                template.default_milestones, quote.final_price, quote.timeline, start,
                currency=currency, project_name=project_name,
            )
        return generate_schedule(
            quote.final_price, quote.timeline, PaymentStructureType.MILESTONE, start,
            currency=currency, project_name=project_name,
        )

    def convert(self, quote: Quote, options: ConversionOptions | None = None) -> ConversionResult:
        """
        Convert a quote.

        Raises:
            SchemaError, BusinessRuleError, TemplateNotFoundError.
        """
        options = options or ConversionOptions()
        defaults = self._config.conversion

        with LogContext.bind(
            correlation_id=str(uuid4()), quote_id=quote.id, actor_id=options.user_id,
        ):
            quote_report = validate_quote(quote, self._limits)
            if not quote_report.is_valid:
                logger.warning("conversion_rejected", extra={
                    "stage": "quote", "error_codes": quote_report.error_codes,
                })
                raise SchemaError("quote", quote_report.field_errors())

            options_report = validate_conversion_options(options)
            if not options_report.is_valid:
                logger.warning("conversion_rejected", extra={
                    "stage": "options", "error_codes": options_report.error_codes,
                })
                raise BusinessRuleError(
                    "conversion_options", "; ".join(options_report.error_messages),
                    {"errors": options_report.error_messages},
                )

            now = self._clock.now()
            template_id = options.template_id or defaults.template_id
            currency = options.currency or defaults.currency
            tax_rate = options.tax_rate if options.tax_rate is not None else defaults.tax_rate
            late_fee = (
                options.late_fee_percentage if options.late_fee_percentage is not None
                else defaults.late_fee_percentage
            )
            start = options.start_date or now.date()

            schedule = self._schedule(quote, options, template_id, start, currency)
            contract = self._builder.build(
                quote, schedule,
                now=now,
                template_id=template_id,
                payment_terms=options.payment_terms or defaults.payment_terms,
                late_fee_percentage=late_fee,
                created_by=options.user_id,
            )

            with LogContext.bind(contract_id=str(contract.id)):
                contract_report = validate_contract_full(contract, self._limits)
                if not contract_report.is_valid:
                    logger.warning("conversion_rejected", extra={
                        "stage": "contract", "error_codes": contract_report.error_codes,
                    })
                    raise BusinessRuleError(
                        "contract_rules", "; ".join(contract_report.error_messages),
                        {"errors": contract_report.error_messages},
                    )

                invoices: tuple[Invoice, ...] = ()
                if options.auto_generate_invoices:
                    invoices = generate_invoices(
                        quote, contract,
                        now=now,
                        tax_rate=tax_rate,
                        detailed_items=options.include_detailed_items,
                        created_by=options.user_id,
                    )
                invoice_reports = [
                    validate_invoice(
                        replace(i, invoice_number=self.numbering.peek(i.issue_date)),
                        now.date(), self._limits,
                    )
                    for i in invoices
                ]
                for invoice_report in invoice_reports:
                    invoice_report.raise_for_errors("invoice")

                if self._registry is None:
                    invoices = tuple(
                        replace(i, invoice_number=self.numbering.next_number(i.issue_date))
                        for i in invoices
                    )
                else:
                    self._registry.register_contract(contract)
                    registered = []
                    for invoice in invoices:
                        result = self._registry.create(invoice)
                        if not result.success:
                            raise result.error
                        registered.append(result.invoice)
                    invoices = tuple(registered)
                    contract = self._registry.get_contract(contract.id)

                report = quote_report.merge(options_report, contract_report, *invoice_reports)
                summary = ConversionSummary(
                    total_amount=contract.total_amount,
                    number_of_invoices=len(invoices),
                    first_invoice_amount=invoices[0].total if invoices else Decimal("0"),
                    estimated_completion_date=contract.project.end_date,
                )
                logger.info("quote_converted", extra={
                    "contract_number": contract.contract_number,
                    "structure": schedule.structure.value,
                    "invoice_count": len(invoices),
                    "total_amount": str(summary.total_amount),
                    "warning_codes": report.warning_codes,
                    "registered": self._registry is not None,
                })
                return ConversionResult(
                    contract=contract,
                    invoices=invoices,
                    payment_schedule=schedule,
                    summary=summary,
                    report=report,
                )


def render_conversion_summary(result: ConversionResult, date_format: str = "%m/%d/%Y") -> str:
    """Human-readable summary of a conversion."""
    contract, summary = result.contract, result.summary
    currency = contract.currency
    lines = [
        "Conversion Summary",
        "================",
        "",
        f"Contract: {contract.contract_number}",
        f"Client: {contract.client_name}",
        f"Project: {contract.project.title}",
        f"Total Amount: {currency} {Money.of(summary.total_amount, currency).format()}",
        f"Payment Structure: {contract.payment.type.value}",
        f"Number of Invoices: {summary.number_of_invoices}",
        f"Estimated Completion: {summary.estimated_completion_date.strftime(date_format)}",
        "",
        "Invoice Schedule:",
    ]
    for n, invoice in enumerate(result.invoices, start=1):
        lines.append(
            f"{n}. {invoice.invoice_number} - {invoice.invoice_type.value} - "
            f"{invoice.currency} {Money.of(invoice.total, invoice.currency).format()} "
            f"(Due: {invoice.due_date.strftime(date_format)})"
        )
    lines += ["", f"Quote Data Preserved: {'Yes' if summary.preserved_quote_data else 'No'}"]
    return "\n".join(lines) + "\n"
