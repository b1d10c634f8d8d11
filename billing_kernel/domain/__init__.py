"""
Pure domain layer.

Value objects, aggregates and validation DTOs with NO dependencies on
time, I/O or mutable shared state. All domain objects are immutable.
"""

from billing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from billing_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from billing_kernel.domain.dtos import Severity, ValidationIssue, ValidationReport
from billing_kernel.domain.models import (
    Contract,
    ContractStatus,
    ContractTerms,
    ConversionOptions,
    Invoice,
    InvoiceStatus,
    InvoiceType,
    LineItem,
    LineItemCategory,
    MilestoneDraft,
    MilestoneStatus,
    PaymentMilestone,
    PaymentReminder,
    PaymentSchedule,
    PaymentStructure,
    PaymentStructureType,
    ProjectDetails,
    Quote,
    ReminderStatus,
    ReminderTier,
)
from billing_kernel.domain.values import Currency, Money

__all__ = [
    "Clock",
    "Contract",
    "ContractStatus",
    "ContractTerms",
    "ConversionOptions",
    "Currency",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DeterministicClock",
    "Invoice",
    "InvoiceStatus",
    "InvoiceType",
    "LineItem",
    "LineItemCategory",
    "MilestoneDraft",
    "MilestoneStatus",
    "Money",
    "PaymentMilestone",
    "PaymentReminder",
    "PaymentSchedule",
    "PaymentStructure",
    "PaymentStructureType",
    "ProjectDetails",
    "Quote",
    "ReminderStatus",
    "ReminderTier",
    "Severity",
    "SystemClock",
    "ValidationIssue",
    "ValidationReport",
]
