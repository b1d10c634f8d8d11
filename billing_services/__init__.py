"""
billing_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the pure engines: invoice numbering, the
    invoice registry, reminder scheduling, quote conversion and CSV export.
    This is the only layer that reads the clock or holds mutable state.

Architecture position:
    Services -- imperative shell over engines + kernel.

    Dependency direction:
        billing_services/ -> billing_engines/, billing_config/, billing_kernel/
        billing_engines/  -> billing_services/ (FORBIDDEN)
        billing_kernel/   -> billing_services/ (FORBIDDEN)

Invariants enforced:
    - No module-level singletons: registries, sequences and schedulers are
      constructed by the caller and passed where needed.

Failure modes:
    - ImportError at startup if a service's dependency graph is broken.
"""

from billing_kernel.logging_config import get_logger

logger = get_logger("services")

from billing_services.conversion import (
    ConversionResult,
    ConversionSummary,
    QuoteConverter,
    render_conversion_summary,
)
from billing_services.export import CSV_HEADER, export_invoices_csv
from billing_services.numbering import InvoiceNumberSequence
from billing_services.registry import InvoiceRegistry, PortfolioMetrics, RegistryResult
from billing_services.reminders import ReminderScheduler, reminder_id

__all__ = [
    "CSV_HEADER",
    "ConversionResult",
    "ConversionSummary",
    "InvoiceNumberSequence",
    "InvoiceRegistry",
    "PortfolioMetrics",
    "QuoteConverter",
    "RegistryResult",
    "ReminderScheduler",
    "export_invoices_csv",
    "reminder_id",
    "render_conversion_summary",
]
