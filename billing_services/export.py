"""CSV export of invoices for spreadsheets and collections follow-up."""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from billing_kernel.domain.models import Invoice
from billing_kernel.logging_config import get_logger

logger = get_logger("services.export")

CSV_HEADER = (
    "Invoice Number",
    "Client Name",
    "Issue Date",
    "Due Date",
    "Amount",
    "Status",
    "Days Overdue",
)

_CENTS = Decimal("0.01")


def invoice_row(invoice: Invoice, as_of: date, date_format: str = "%m/%d/%Y") -> list[str]:
    return [
        invoice.invoice_number or "",
        invoice.client_name,
        invoice.issue_date.strftime(date_format),
        invoice.due_date.strftime(date_format),
        str(invoice.total.quantize(_CENTS, rounding=ROUND_HALF_UP)),
        invoice.status.value,
        str(max(0, invoice.days_overdue(as_of))),
    ]


def export_invoices_csv(
    invoices: Iterable[Invoice],
    as_of: date,
    date_format: str = "%m/%d/%Y",
) -> str:
    """
    Render invoices as CSV text with every field quoted.

    ``Days Overdue`` is ``max(0, as_of - due_date)`` in days.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    count = 0
    for invoice in invoices:
        writer.writerow(invoice_row(invoice, as_of, date_format))
        count += 1
    logger.info("invoices_exported", extra={
        "format": "csv",
        "row_count": count,
        "as_of": as_of.isoformat(),
    })
    return buffer.getvalue()
