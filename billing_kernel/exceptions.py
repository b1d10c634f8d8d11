"""
Typed Exception Hierarchy for the Billing Engine.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from BillingEngineError:

    BillingEngineError (base)
    |
    +-- SchemaError
    +-- BusinessRuleError
    |
    +-- NotFoundError
    |   +-- TemplateNotFoundError
    |   +-- MilestoneNotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- ReminderNotFoundError
    |   +-- ContractNotFoundError
    |
    +-- StateError
    |   +-- MilestoneAlreadyInvoicedError
    |   +-- InvalidStatusTransitionError
    |   +-- DuplicateInvoiceNumberError
    |
    +-- TemplateError
    |   +-- UnknownPlaceholderError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Schema          | SCHEMA_ERROR                | Required field missing, bad type/enum
Business rule   | BUSINESS_RULE_VIOLATION     | Hard limit exceeded (late fee, 100%)
----------------|-----------------------------|-----------------------------------------
Not found       | TEMPLATE_NOT_FOUND          | Unknown contract template id
                | MILESTONE_NOT_FOUND         | Milestone id not in the schedule
                | INVOICE_NOT_FOUND           | Invoice id not in the registry
                | REMINDER_NOT_FOUND          | Reminder id not tracked
                | CONTRACT_NOT_FOUND          | Contract id not in the registry
----------------|-----------------------------|-----------------------------------------
State           | MILESTONE_ALREADY_INVOICED  | Milestone already invoiced or paid
                | INVALID_STATUS_TRANSITION   | Transition not in the workflow table
                | DUPLICATE_INVOICE_NUMBER    | Invoice number already registered
----------------|-----------------------------|-----------------------------------------
Template        | UNKNOWN_PLACEHOLDER         | {{key}} outside the placeholder set
Configuration   | CONFIGURATION_ERROR         | Invalid configuration value

Business-rule *warnings* are never raised. They travel as ValidationIssue
records with severity WARNING on a ValidationReport so callers can decide to
proceed past them.
"""

from typing import Any


class BillingEngineError(Exception):
    """
    Base exception for all billing engine errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "BILLING_ENGINE_ERROR"


# Validation exceptions


class SchemaError(BillingEngineError):
    """Structural field violations on an aggregate or input record."""

    code: str = "SCHEMA_ERROR"

    def __init__(self, entity: str, field_errors: dict[str, str]):
        self.entity = entity
        self.field_errors = dict(field_errors)
        super().__init__(
            f"Schema validation failed for {entity}: "
            f"{len(self.field_errors)} error(s)"
        )


class BusinessRuleError(BillingEngineError):
    """A hard business limit was exceeded."""

    code: str = "BUSINESS_RULE_VIOLATION"

    def __init__(
        self,
        rule: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.rule = rule
        self.details = dict(details or {})
        super().__init__(f"{rule}: {message}")


# Lookup exceptions


class NotFoundError(BillingEngineError):
    """Base exception for references to unknown identifiers."""

    code: str = "NOT_FOUND"


class TemplateNotFoundError(NotFoundError):
    """Contract template does not exist or is inactive."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template {template_id} not found")


class MilestoneNotFoundError(NotFoundError):
    """Milestone id is not part of the contract's schedule."""

    code: str = "MILESTONE_NOT_FOUND"

    def __init__(self, milestone_id: str, contract_number: str | None = None):
        self.milestone_id = milestone_id
        self.contract_number = contract_number
        suffix = f" in contract {contract_number}" if contract_number else ""
        super().__init__(f"Milestone {milestone_id} not found{suffix}")


class InvoiceNotFoundError(NotFoundError):
    """Invoice id is not registered."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} not found")


class ContractNotFoundError(NotFoundError):
    """Contract id is not registered."""

    code: str = "CONTRACT_NOT_FOUND"

    def __init__(self, contract_id: str):
        self.contract_id = contract_id
        super().__init__(f"Contract {contract_id} not found")


class ReminderNotFoundError(NotFoundError):
    """Reminder id is not tracked by the scheduler."""

    code: str = "REMINDER_NOT_FOUND"

    def __init__(self, reminder_id: str):
        self.reminder_id = reminder_id
        super().__init__(f"Reminder {reminder_id} not found")


# State exceptions


class StateError(BillingEngineError):
    """Base exception for operations invalid in the current state."""

    code: str = "STATE_ERROR"


class MilestoneAlreadyInvoicedError(StateError):
    """Milestone has already been invoiced (or paid) and cannot be re-invoiced."""

    code: str = "MILESTONE_ALREADY_INVOICED"

    def __init__(self, milestone_id: str, status: str, invoice_id: str | None = None):
        self.milestone_id = milestone_id
        self.status = status
        self.invoice_id = invoice_id
        super().__init__(
            f"Milestone {milestone_id} is already {status}"
            + (f" (invoice {invoice_id})" if invoice_id else "")
        )


class InvalidStatusTransitionError(StateError):
    """Requested status change is not allowed by the invoice workflow."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, invoice_id: str, from_status: str, to_status: str):
        self.invoice_id = invoice_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invoice {invoice_id} cannot move from {from_status} to {to_status}"
        )


class DuplicateInvoiceNumberError(StateError):
    """Invoice number is already assigned to another registered invoice."""

    code: str = "DUPLICATE_INVOICE_NUMBER"

    def __init__(self, invoice_number: str, existing_invoice_id: str):
        self.invoice_number = invoice_number
        self.existing_invoice_id = existing_invoice_id
        super().__init__(
            f"Invoice number {invoice_number} already used by {existing_invoice_id}"
        )


# Template exceptions


class TemplateError(BillingEngineError):
    """Base exception for contract template problems."""

    code: str = "TEMPLATE_ERROR"


class UnknownPlaceholderError(TemplateError):
    """Template text references placeholder keys outside the known set."""

    code: str = "UNKNOWN_PLACEHOLDER"

    def __init__(self, template_id: str, placeholders: list[str]):
        self.template_id = template_id
        self.placeholders = sorted(set(placeholders))
        super().__init__(
            f"Template {template_id} references unknown placeholder(s): "
            f"{', '.join(self.placeholders)}"
        )


# Configuration exceptions


class ConfigurationError(BillingEngineError):
    """Configuration value is missing or out of range."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, setting: str, message: str):
        self.setting = setting
        super().__init__(f"Invalid configuration '{setting}': {message}")
