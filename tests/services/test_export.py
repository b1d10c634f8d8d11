"""Tests for CSV invoice export."""

import csv
import io
from dataclasses import replace
from datetime import date
from decimal import Decimal

from billing_kernel.domain.models import InvoiceStatus
from billing_services.export import CSV_HEADER, export_invoices_csv

AS_OF = date(2024, 3, 1)


class TestExportCsv:

    def test_header_only(self):
        assert export_invoices_csv([], AS_OF) == (
            '"Invoice Number","Client Name","Issue Date","Due Date","Amount","Status","Days Overdue"\n'
        )

    def test_rows_fully_quoted(self, invoice_factory):
        invoice = invoice_factory(
            issue_date=date(2024, 1, 1), due_date=date(2024, 1, 31),
            invoice_number="INV-2024-0001", unit_price="1234.5",
        )
        invoice = replace(invoice, status=InvoiceStatus.SENT)

        lines = export_invoices_csv([invoice], AS_OF).splitlines()

        assert lines[1] == (
            '"INV-2024-0001","Jane Baker","01/01/2024","01/31/2024","1234.50","sent","30"'
        )

    def test_days_overdue_floor_zero(self, invoice_factory):
        invoice = invoice_factory(issue_date=date(2024, 2, 20), due_date=date(2024, 3, 20))

        rows = list(csv.reader(io.StringIO(export_invoices_csv([invoice], AS_OF))))

        assert rows[0] == list(CSV_HEADER)
        assert rows[1][6] == "0"
        assert rows[1][0] == ""

    def test_client_name_with_comma_and_quote(self, invoice_factory):
        invoice = invoice_factory(client_name='Baker, "Jane" & Co')

        rows = list(csv.reader(io.StringIO(export_invoices_csv([invoice], AS_OF))))

        assert rows[1][1] == 'Baker, "Jane" & Co'

    def test_amount_is_total_with_tax(self, invoice_factory):
        invoice = invoice_factory(unit_price="100.00", tax_rate="0.0875")

        rows = list(csv.reader(io.StringIO(export_invoices_csv([invoice], AS_OF))))

        assert Decimal(rows[1][4]) == Decimal("108.75")

    def test_custom_date_format(self, invoice_factory):
        invoice = invoice_factory(issue_date=date(2024, 1, 1), due_date=date(2024, 1, 31))

        rows = list(csv.reader(io.StringIO(
            export_invoices_csv([invoice], AS_OF, date_format="%Y-%m-%d"),
        )))

        assert rows[1][2:4] == ["2024-01-01", "2024-01-31"]
