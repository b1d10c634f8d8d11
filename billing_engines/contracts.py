"""
Contract Builder - Bind a quote and its payment schedule into a Contract.

Responsibility:
    - Hold the catalogue of contract document templates (a default template
      is always available) and reject templates that reference unknown
      placeholders.
    - Build the Contract aggregate from a Quote plus a PaymentSchedule.
    - Populate a template's text sections with contract-derived values.
    - Business-level contract validation (``validate_contract``).
    - Fold invoice and payment events back into the contract's milestones
      and running totals.

Architecture position:
    Engines -- pure calculation. Timestamps are passed in; the only state
    is the template catalogue and the contract-number high-water mark.

Invariants enforced:
    - Placeholder substitution is plain token replacement over a typed
      key table. Keys outside ``Placeholder`` raise UnknownPlaceholderError;
      known keys without a value stay visible as ``{{key}}`` and are
      reported as unresolved.
    - A milestone is invoiced at most once (MilestoneAlreadyInvoicedError).
    - Contract numbers are ``CON-{year}-{last 6 digits of a strictly
      increasing millisecond stamp}``.

Failure modes:
    - TemplateNotFoundError for unknown or inactive template ids.
    - SchemaError / BusinessRuleError when a built contract fails validation.
    - MilestoneNotFoundError when an event references a foreign milestone.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from billing_engines.schedule import MilestoneTemplate
from billing_engines.tracer import traced_engine
from billing_kernel.domain.dtos import ValidationIssue, ValidationReport
from billing_kernel.domain.models import (
    Contract,
    ContractStatus,
    ContractTerms,
    Invoice,
    MilestoneStatus,
    PaymentSchedule,
    PaymentStructure,
    ProjectDetails,
    Quote,
)
from billing_kernel.domain.record_validator import validate_record
from billing_kernel.domain.schemas import CONTRACT_SCHEMA
from billing_kernel.domain.workflows import CONTRACT_WORKFLOW, MILESTONE_WORKFLOW
from billing_kernel.domain.values import Money
from billing_kernel.exceptions import (
    BusinessRuleError,
    MilestoneAlreadyInvoicedError,
    MilestoneNotFoundError,
    SchemaError,
    TemplateNotFoundError,
    UnknownPlaceholderError,
)
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.contracts")

DEFAULT_TEMPLATE_ID = "web-design-template"
PERCENT_TOLERANCE = Decimal("0.01")

_TOKEN = re.compile(r"\{\{\s*([A-Za-z0-9_]+)\s*\}\}")


class Placeholder(str, Enum):
    """Every token a contract template may reference."""

    CONTRACT_DATE = "contract_date"
    CLIENT_NAME = "client_name"
    PROVIDER_NAME = "provider_name"
    BUSINESS_NAME = "business_name"
    INDUSTRY = "industry"
    PAGE_COUNT = "page_count"
    FEATURES_LIST = "features_list"
    TIMELINE = "timeline"
    START_DATE = "start_date"
    END_DATE = "end_date"
    TOTAL_AMOUNT = "total_amount"
    CURRENCY = "currency"
    PAYMENT_SCHEDULE = "payment_schedule"
    PAYMENT_TERMS = "payment_terms"
    LATE_FEE_PERCENTAGE = "late_fee_percentage"
    ADDITIONAL_DELIVERABLES = "additional_deliverables"
    INTELLECTUAL_PROPERTY_TERMS = "intellectual_property_terms"
    CLIENT_RESPONSIBILITIES = "client_responsibilities"
    PROVIDER_RESPONSIBILITIES = "provider_responsibilities"
    CONFIDENTIALITY_TERMS = "confidentiality_terms"
    TERMINATION_TERMS = "termination_terms"
    DISPUTE_RESOLUTION = "dispute_resolution"
    GOVERNING_LAW = "governing_law"
    CLIENT_TITLE = "client_title"
    PROVIDER_TITLE = "provider_title"

    @classmethod
    def keys(cls) -> frozenset[str]:
        return frozenset(p.value for p in cls)


def find_placeholders(text: str) -> list[str]:
    """All ``{{key}}`` tokens in order of appearance."""
    return _TOKEN.findall(text)


# -----------------------------------------------------------------------------
# Templates
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ContractTemplate:
    """A contract document template with an optional default schedule."""

    id: str
    name: str
    description: str
    category: str
    sections: Mapping[str, str]
    default_milestones: tuple[MilestoneTemplate, ...] = field(default_factory=tuple)
    is_active: bool = True

    def referenced_placeholders(self) -> list[str]:
        found: list[str] = []
        for text in self.sections.values():
            for key in find_placeholders(text):
                if key not in found:
                    found.append(key)
        return found

    def unknown_placeholders(self) -> list[str]:
        known = Placeholder.keys()
        return [key for key in self.referenced_placeholders() if key not in known]

    def full_text(self) -> str:
        return "\n\n".join(self.sections.values())


WEB_DESIGN_TEMPLATE = ContractTemplate(
    id=DEFAULT_TEMPLATE_ID,
    name="Web Design & Development Contract",
    description="Comprehensive contract for web design and development projects",
    category="full_service",
    sections={
        "introduction": (
            'This Web Design and Development Agreement ("Agreement") is entered into on '
            '{{contract_date}} between {{client_name}} ("Client") and {{provider_name}} '
            '("Provider") for the creation of a {{page_count}}-page website for '
            "{{business_name}} in the {{industry}} industry."
        ),
        "scope": (
            "The Provider agrees to design and develop a professional website including:\n\n"
            "{{features_list}}\n\n"
            "The website will be optimized for modern browsers and mobile devices, "
            "following current web standards and best practices."
        ),
        "deliverables": (
            "The Provider will deliver:\n\n"
            "1. Custom website design mockups\n"
            "2. Fully functional website with {{page_count}} pages\n"
            "3. Content Management System (CMS) integration\n"
            "4. Basic SEO optimization\n"
            "5. Mobile-responsive design\n"
            "6. {{additional_deliverables}}\n\n"
            "All deliverables will be completed according to the project timeline outlined below."
        ),
        "timeline": (
            "Project Timeline: {{timeline}}\n\n"
            "Start Date: {{start_date}}\n"
            "Estimated Completion: {{end_date}}\n\n"
            "The project will be completed in phases with regular client review and approval "
            "points. Any changes to the scope or timeline must be agreed upon in writing."
        ),
        "payment": (
            "Total Project Cost: {{total_amount}} {{currency}}\n\n"
            "Payment Schedule:\n{{payment_schedule}}\n\n"
            "Payment Terms: {{payment_terms}}\n"
            "Late payments may incur a {{late_fee_percentage}}% monthly fee."
        ),
        "terms": (
            "1. INTELLECTUAL PROPERTY\n{{intellectual_property_terms}}\n\n"
            "2. CLIENT RESPONSIBILITIES\n{{client_responsibilities}}\n\n"
            "3. PROVIDER RESPONSIBILITIES\n{{provider_responsibilities}}\n\n"
            "4. CONFIDENTIALITY\n{{confidentiality_terms}}\n\n"
            "5. TERMINATION\n{{termination_terms}}\n\n"
            "6. DISPUTE RESOLUTION\n{{dispute_resolution}}\n\n"
            "7. GOVERNING LAW\n{{governing_law}}"
        ),
        "signatures": (
            "By signing below, both parties agree to the terms and conditions outlined in "
            "this agreement.\n\n"
            "CLIENT:\n\n"
            "Signature: ___________________________ Date: ___________\n"
            "Print Name: {{client_name}}\n"
            "Title: {{client_title}}\n\n"
            "PROVIDER:\n\n"
            "Signature: ___________________________ Date: ___________\n"
            "Print Name: {{provider_name}}\n"
            "Title: {{provider_title}}"
        ),
    },
    default_milestones=(
        MilestoneTemplate(
            "Project Initiation & Deposit", Decimal("40"),
            ("Project kickoff meeting", "Requirements document", "Initial wireframes", "Design concepts"),
            description="Project kickoff, requirements gathering, and initial design concepts",
        ),
        MilestoneTemplate(
            "Design Approval", Decimal("30"),
            ("Final design mockups", "Design system", "Client approval", "Development setup"),
            description="Final design approval and development initiation",
            dependencies=("Milestone 1 completion", "Client feedback on designs"),
        ),
        MilestoneTemplate(
            "Development & Launch", Decimal("30"),
            ("Fully developed website", "Testing completion", "Launch", "Training and documentation"),
            description="Website development, testing, and launch",
            dependencies=("Milestone 2 completion", "Content provided by client"),
        ),
    ),
)


class TemplateCatalogue:
    """
    Registry of contract templates.

    Each catalogue starts with the default web-design template. Instances
    are independent; there is no process-wide catalogue.
    """

    def __init__(self, templates: Iterable[ContractTemplate] = ()):
        self._templates: dict[str, ContractTemplate] = {}
        self._lock = threading.Lock()
        self.register_template(WEB_DESIGN_TEMPLATE)
        for template in templates:
            self.register_template(template)

    def register_template(self, template: ContractTemplate) -> None:
        """Add or replace a template. Unknown placeholders are rejected."""
        unknown = template.unknown_placeholders()
        if unknown:
            logger.warning("template_rejected", extra={
                "template_id": template.id,
                "unknown_placeholders": unknown,
            })
            raise UnknownPlaceholderError(template.id, unknown)
        with self._lock:
            self._templates[template.id] = template
        logger.debug("template_registered", extra={
            "template_id": template.id,
            "placeholder_count": len(template.referenced_placeholders()),
        })

    def get_template(self, template_id: str) -> ContractTemplate:
        template = self._templates.get(template_id)
        if template is None or not template.is_active:
            raise TemplateNotFoundError(template_id)
        return template

    def list_templates(self) -> list[ContractTemplate]:
        return [t for t in self._templates.values() if t.is_active]


# -----------------------------------------------------------------------------
# Rendering
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class RenderedDocument:
    """Populated template text plus the placeholders left unresolved."""

    template_id: str
    text: str
    unresolved: tuple[str, ...] = ()

    @property
    def is_complete(self) -> bool:
        return not self.unresolved


def _bullets(items: Iterable[str]) -> str:
    return "\n".join(f"• {item}" for item in items)


def format_percent(value: Decimal) -> str:
    """``Decimal("40.0")`` -> ``"40"``, ``Decimal("33.3")`` -> ``"33.3"``."""
    normalized = value.normalize()
    return format(normalized, "f")


def substitute_placeholders(
    text: str,
    values: Mapping[Placeholder, str | None],
    template_id: str = "<inline>",
) -> RenderedDocument:
    """
    Replace ``{{key}}`` tokens in text.

    Raises:
        UnknownPlaceholderError: A token is not a Placeholder key.
    """
    known = Placeholder.keys()
    unknown = [key for key in find_placeholders(text) if key not in known]
    if unknown:
        raise UnknownPlaceholderError(template_id, unknown)

    by_key = {p.value: v for p, v in values.items()}
    unresolved: list[str] = []

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        value = by_key.get(key)
        if value is None or value == "":
            if key not in unresolved:
                unresolved.append(key)
            return "{{" + key + "}}"
        return value

    rendered = _TOKEN.sub(_replace, text)
    return RenderedDocument(template_id=template_id, text=rendered, unresolved=tuple(unresolved))


# -----------------------------------------------------------------------------
# Contract validation
# -----------------------------------------------------------------------------


def validate_contract(contract: Contract) -> ValidationReport:
    """
    Business-level contract checks.

    Client name, project title and description present; total amount > 0;
    a non-empty schedule whose percentages total 100 +/- 0.01.
    """
    issues: list[ValidationIssue] = []
    if not contract.client_name:
        issues.append(ValidationIssue.error(
            "CLIENT_NAME_REQUIRED", "Client name is required", "client_name"))
    if not contract.project.title:
        issues.append(ValidationIssue.error(
            "PROJECT_TITLE_REQUIRED", "Project title is required", "project.title"))
    if not contract.project.description:
        issues.append(ValidationIssue.error(
            "PROJECT_DESCRIPTION_REQUIRED", "Project description is required", "project.description"))
    if contract.total_amount is None or contract.total_amount <= 0:
        issues.append(ValidationIssue.error(
            "TOTAL_AMOUNT_REQUIRED", "Valid total amount is required", "payment.total_amount"))
    if not contract.milestones:
        issues.append(ValidationIssue.error(
            "SCHEDULE_REQUIRED", "Payment schedule is required", "payment.milestones"))
    else:
        total_pct = contract.payment.total_percentage
        if abs(total_pct - Decimal("100")) > PERCENT_TOLERANCE:
            issues.append(ValidationIssue.error(
                "SCHEDULE_TOTAL_PERCENTAGE", "Payment schedule must total 100%",
                "payment.milestones", total_percentage=str(total_pct),
            ))
    return ValidationReport.from_issues(issues)


# -----------------------------------------------------------------------------
# Builder
# -----------------------------------------------------------------------------

CLIENT_RESPONSIBILITIES: tuple[str, ...] = (
    "Provide all necessary content, images, and materials in a timely manner",
    "Review and provide feedback on designs and development within 5 business days",
    "Provide access to hosting and domain accounts as needed",
    "Make timely payments according to the agreed schedule",
    "Communicate any changes or concerns promptly",
)

PROVIDER_RESPONSIBILITIES: tuple[str, ...] = (
    "Deliver all agreed-upon features and functionality",
    "Ensure website is mobile-responsive and cross-browser compatible",
    "Provide regular project updates and maintain communication",
    "Deliver project within agreed timeline",
    "Provide 30 days of post-launch support",
    "Maintain confidentiality of client information",
)


def standard_terms(quote: Quote) -> ContractTerms:
    """Default legal terms for a web design engagement."""
    return ContractTerms(
        service_description=(
            f"Professional web design and development services for {quote.business_name}, "
            f"including custom design, development, and launch of a {quote.page_count}-page "
            "website with specified features and functionality."
        ),
        client_responsibilities=CLIENT_RESPONSIBILITIES,
        provider_responsibilities=PROVIDER_RESPONSIBILITIES,
        intellectual_property=(
            "Upon full payment of all invoices, all intellectual property rights, including "
            "but not limited to design, code, and content created specifically for this "
            "project, will transfer to the Client. The Provider retains rights to general "
            "methodologies, techniques, and any pre-existing intellectual property."
        ),
        confidentiality=(
            "Both parties agree to maintain confidentiality of all proprietary information "
            "shared during the course of this project. This includes but is not limited to "
            "business strategies, technical specifications, and any sensitive business "
            "information."
        ),
        termination=(
            "Either party may terminate this agreement with 30 days written notice. In the "
            "event of termination, the Client will pay for all work completed up to the "
            "termination date. Any work in progress will be delivered in its current state."
        ),
        dispute_resolution=(
            "Any disputes arising from this agreement will first be addressed through good "
            "faith negotiation. If resolution cannot be reached, disputes will be resolved "
            "through binding arbitration in accordance with the rules of the American "
            "Arbitration Association."
        ),
        governing_law=(
            "This agreement shall be governed by and construed in accordance with the laws "
            "of [Your State/Province], without regard to its conflict of law provisions."
        ),
    )


class ContractBuilder:
    """
    Builds Contract aggregates and renders contract documents.

    Holds a TemplateCatalogue and the document settings used when rendering
    (provider identity, date format). All timestamps are supplied by callers.
    """

    def __init__(
        self,
        catalogue: TemplateCatalogue | None = None,
        provider_name: str = "Your Company Name",
        provider_title: str = "Owner/Director",
        date_format: str = "%m/%d/%Y",
    ):
        self.catalogue = catalogue or TemplateCatalogue()
        self.provider_name = provider_name
        self.provider_title = provider_title
        self.date_format = date_format
        self._last_stamp = 0
        self._number_lock = threading.Lock()

    # -- numbering ------------------------------------------------------------

    def next_contract_number(self, now: datetime) -> str:
        """``CON-{year}-{last6}`` from a strictly increasing millisecond stamp."""
        stamp = int(now.timestamp() * 1000)
        with self._number_lock:
            if stamp <= self._last_stamp:
                stamp = self._last_stamp + 1
            self._last_stamp = stamp
        return f"CON-{now.year}-{str(stamp)[-6:]}"

    # -- build ----------------------------------------------------------------

    @traced_engine("contract_builder", "1.0", fingerprint_fields=("quote", "template_id"))
    def build(
        self,
        quote: Quote,
        schedule: PaymentSchedule,
        *,
        now: datetime,
        template_id: str = DEFAULT_TEMPLATE_ID,
        payment_terms: str = "Net 30",
        late_fee_percentage: Decimal | None = Decimal("1.5"),
        created_by: str | None = None,
    ) -> Contract:
        """
        Bind a quote and schedule into a draft Contract.

        Raises:
            TemplateNotFoundError: Unknown template id.
            SchemaError: Contract fails structural validation.
            BusinessRuleError: Contract fails business validation.
        """
        self.catalogue.get_template(template_id)

        scope = (
            f"Design and develop {quote.page_count} custom web pages",
            *(f"Implement {feature}" for feature in quote.features),
            "Mobile-responsive design",
            "Basic SEO optimization",
            "Content management system integration",
            "Cross-browser compatibility testing",
        )
        deliverables = (
            "Custom website design mockups",
            f"Fully functional {quote.page_count}-page website",
            "Content Management System (CMS)",
            "Mobile-responsive design",
            "Basic SEO setup",
            "Website documentation and training",
            "Post-launch support (30 days)",
        )
        features_text = ", ".join(quote.features) if quote.features else "standard features"

        contract = Contract(
            id=uuid4(),
            contract_number=self.next_contract_number(now),
            quote_id=quote.id,
            client_name=quote.display_client_name,
            client_email=quote.client_email or "",
            contract_title=f"Website Development Contract - {quote.business_name}",
            project=ProjectDetails(
                title=f"{quote.business_name} Website Design & Development",
                description=(
                    f"Professional {quote.page_count}-page website for {quote.business_name} "
                    f"in the {quote.industry} industry, featuring {features_text}."
                ),
                scope=scope,
                deliverables=deliverables,
                timeline=quote.timeline,
                start_date=schedule.start_date,
                end_date=schedule.end_date,
                source_quote=quote,
            ),
            payment=PaymentStructure(
                type=schedule.structure,
                currency=schedule.currency,
                total_amount=schedule.total_amount,
                milestones=schedule.milestones,
                payment_terms=payment_terms,
                late_fee_percentage=late_fee_percentage,
            ),
            terms=standard_terms(quote),
            template_id=template_id,
            created_at=now,
            updated_at=now,
            created_by=created_by,
        )

        schema_errors = validate_record(contract.to_payload(), CONTRACT_SCHEMA)
        if schema_errors:
            logger.warning("contract_schema_invalid", extra={
                "quote_id": quote.id,
                "error_codes": [e.code for e in schema_errors],
            })
            raise SchemaError("contract", ValidationReport.from_issues(schema_errors).field_errors())

        report = validate_contract(contract)
        if not report.is_valid:
            logger.warning("contract_rules_invalid", extra={
                "quote_id": quote.id,
                "errors": report.error_messages,
            })
            raise BusinessRuleError(
                "contract_validation", "; ".join(report.error_messages),
                {"errors": report.error_messages},
            )

        logger.info("contract_built", extra={
            "contract_number": contract.contract_number,
            "quote_id": quote.id,
            "template_id": template_id,
            "structure": schedule.structure.value,
            "milestone_count": len(schedule.milestones),
            "total_amount": str(schedule.total_amount),
        })
        return contract

    # -- rendering ------------------------------------------------------------

    def _fmt_date(self, value: date) -> str:
        return value.strftime(self.date_format)

    def placeholder_values(
        self, contract: Contract, contract_date: date,
    ) -> dict[Placeholder, str | None]:
        """Typed token table for a contract."""
        quote = contract.project.source_quote
        currency = contract.currency
        schedule_lines = "\n".join(
            f"{m.number}. {m.name} - {format_percent(m.percentage)}% "
            f"({currency} {Money.of(m.amount, currency).format()}) - "
            f"Due: {self._fmt_date(m.due_date)}"
            for m in contract.milestones
        )
        late_fee = contract.payment.late_fee_percentage
        return {
            Placeholder.CONTRACT_DATE: self._fmt_date(contract_date),
            Placeholder.CLIENT_NAME: contract.client_name,
            Placeholder.PROVIDER_NAME: self.provider_name,
            Placeholder.BUSINESS_NAME: quote.business_name if quote else contract.client_name,
            Placeholder.INDUSTRY: quote.industry if quote else None,
            Placeholder.PAGE_COUNT: str(quote.page_count) if quote else None,
            Placeholder.FEATURES_LIST: _bullets(contract.project.scope),
            Placeholder.TIMELINE: contract.project.timeline,
            Placeholder.START_DATE: self._fmt_date(contract.project.start_date),
            Placeholder.END_DATE: self._fmt_date(contract.project.end_date),
            Placeholder.TOTAL_AMOUNT: Money.of(contract.total_amount, currency).format(),
            Placeholder.CURRENCY: currency,
            Placeholder.PAYMENT_SCHEDULE: schedule_lines,
            Placeholder.PAYMENT_TERMS: contract.payment.payment_terms,
            Placeholder.LATE_FEE_PERCENTAGE: format_percent(late_fee) if late_fee is not None else None,
            Placeholder.ADDITIONAL_DELIVERABLES: _bullets(contract.project.deliverables[4:]),
            Placeholder.INTELLECTUAL_PROPERTY_TERMS: contract.terms.intellectual_property,
            Placeholder.CLIENT_RESPONSIBILITIES: _bullets(contract.terms.client_responsibilities),
            Placeholder.PROVIDER_RESPONSIBILITIES: _bullets(contract.terms.provider_responsibilities),
            Placeholder.CONFIDENTIALITY_TERMS: contract.terms.confidentiality,
            Placeholder.TERMINATION_TERMS: contract.terms.termination,
            Placeholder.DISPUTE_RESOLUTION: contract.terms.dispute_resolution,
            Placeholder.GOVERNING_LAW: contract.terms.governing_law,
            Placeholder.CLIENT_TITLE: None,
            Placeholder.PROVIDER_TITLE: self.provider_title,
        }

    def populate_template(
        self,
        template: ContractTemplate,
        contract: Contract,
        contract_date: date,
        overrides: Mapping[Placeholder, str] | None = None,
    ) -> RenderedDocument:
        """
        Substitute contract values into every section of a template.

        ``overrides`` supplies or replaces individual values (e.g. the
        client's title, which the contract does not carry).
        """
        values = self.placeholder_values(contract, contract_date)
        if overrides:
            values.update(overrides)
        document = substitute_placeholders(template.full_text(), values, template.id)
        if document.unresolved:
            logger.info("template_unresolved_placeholders", extra={
                "template_id": template.id,
                "contract_number": contract.contract_number,
                "unresolved": list(document.unresolved),
            })
        return document

    def render_preview(
        self,
        contract: Contract,
        contract_date: date,
        template_id: str = DEFAULT_TEMPLATE_ID,
        overrides: Mapping[Placeholder, str] | None = None,
    ) -> RenderedDocument:
        """Populate the named template for a contract."""
        return self.populate_template(
            self.catalogue.get_template(template_id), contract, contract_date, overrides,
        )


# -----------------------------------------------------------------------------
# Invoice / payment linkage
# -----------------------------------------------------------------------------


def apply_invoice_to_contract(
    contract: Contract,
    invoice: Invoice,
    milestone_id: UUID,
    now: datetime,
) -> Contract:
    """
    Mark a milestone invoiced and bind the invoice to it.

    ``total_invoiced`` grows by the invoice subtotal (pre-tax, matching
    the contract's pre-tax total).

    Raises:
        MilestoneNotFoundError: Milestone is not in this contract.
        MilestoneAlreadyInvoicedError: Milestone is already invoiced or paid.
    """
    milestone = contract.payment.find(milestone_id)
    if milestone is None:
        raise MilestoneNotFoundError(str(milestone_id), contract.contract_number)
    if not MILESTONE_WORKFLOW.can_transition(milestone.status.value, MilestoneStatus.INVOICED.value):
        raise MilestoneAlreadyInvoicedError(
            str(milestone_id), milestone.status.value,
            str(milestone.invoice_id) if milestone.invoice_id else None,
        )

    schedule = tuple(
        replace(m, status=MilestoneStatus.INVOICED, invoice_id=invoice.id)
        if m.id == milestone_id else m
        for m in contract.milestones
    )
    updated = replace(
        contract,
        payment=replace(contract.payment, milestones=schedule),
        invoice_ids=(*contract.invoice_ids, invoice.id),
        total_invoiced=contract.total_invoiced + invoice.subtotal,
        updated_at=now,
    )
    logger.info("contract_milestone_invoiced", extra={
        "contract_number": contract.contract_number,
        "milestone_number": milestone.number,
        "invoice_id": str(invoice.id),
        "total_invoiced": str(updated.total_invoiced),
    })
    return updated


def _status_after_payment(current: ContractStatus, all_paid: bool) -> ContractStatus:
    """Walk the contract workflow: a payment activates, the last payment completes."""
    status = current
    if CONTRACT_WORKFLOW.can_transition(status.value, ContractStatus.ACTIVE.value):
        status = ContractStatus.ACTIVE
    if all_paid and CONTRACT_WORKFLOW.can_transition(status.value, ContractStatus.COMPLETED.value):
        status = ContractStatus.COMPLETED
    return status


def apply_payment_to_contract(
    contract: Contract,
    invoice: Invoice,
    now: datetime,
) -> Contract:
    """
    Mark the invoice's milestone paid and grow ``total_paid``.

    A milestone that is already paid leaves the contract unchanged. Status
    follows CONTRACT_WORKFLOW: a payment moves a draft, sent, under-review
    or signed contract to ``active``, and the payment that settles the last
    milestone moves an active contract to ``completed``. A terminated
    contract records the payment but keeps its status.

    Raises:
        MilestoneNotFoundError: The invoice is not bound to a milestone here.
    """
    milestone = contract.payment.find(invoice.milestone_id) if invoice.milestone_id else None
    if milestone is None:
        raise MilestoneNotFoundError(str(invoice.milestone_id), contract.contract_number)
    if milestone.status == MilestoneStatus.PAID:
        logger.debug("contract_milestone_already_paid", extra={
            "contract_number": contract.contract_number,
            "milestone_number": milestone.number,
        })
        return contract

    schedule = tuple(
        replace(m, status=MilestoneStatus.PAID, invoice_id=m.invoice_id or invoice.id)
        if m.id == milestone.id else m
        for m in contract.milestones
    )
    all_paid = all(m.status == MilestoneStatus.PAID for m in schedule)
    updated = replace(
        contract,
        payment=replace(contract.payment, milestones=schedule),
        total_paid=contract.total_paid + invoice.subtotal,
        status=_status_after_payment(contract.status, all_paid),
        updated_at=now,
    )
    logger.info("contract_milestone_paid", extra={
        "contract_number": contract.contract_number,
        "milestone_number": milestone.number,
        "invoice_id": str(invoice.id),
        "total_paid": str(updated.total_paid),
        "contract_status": updated.status.value,
    })
    return updated
