"""
Pytest fixtures for the billing engine test suite.

Provides:
- Structured logging configured once per session, LogContext cleared per test
- A deterministic clock pinned to 2024-01-15 12:00 UTC
- Quote / contract / invoice factories
- Registries and converters wired to the deterministic clock
"""

import json
import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from billing_config import get_active_config
from billing_config.schema import EngineConfig
from billing_engines.contracts import ContractBuilder
from billing_engines.invoicing import generate_ad_hoc_invoice
from billing_engines.schedule import generate_schedule
from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.domain.models import LineItem, PaymentStructureType, Quote
from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from billing_services.conversion import QuoteConverter
from billing_services.registry import InvoiceRegistry

FIXED_NOW = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
TODAY = FIXED_NOW.date()


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture billing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, converter, quote):
            converter.convert(quote)
            logs = captured_logs()
            assert any(r["message"] == "quote_converted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("billing_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Clock / config
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def config() -> EngineConfig:
    return get_active_config()


# =============================================================================
# Domain factories
# =============================================================================


def make_quote(**overrides) -> Quote:
    values = dict(
        id="Q-1001",
        business_name="Acme Bakery",
        industry="Food & Beverage",
        page_count=8,
        features=("Online ordering", "Custom design", "SEO optimization"),
        timeline="6-8 weeks",
        final_price=Decimal("22500"),
        total_hours=Decimal("150"),
        budget="$20k-$25k",
        client_name="Jane Baker",
        client_email="jane@acmebakery.example",
        client_address="1 Main St",
    )
    values.update(overrides)
    return Quote(**values)


def make_item(description="Consulting", quantity="1", unit_price="100.00", tax_rate="0") -> LineItem:
    return LineItem(
        id=uuid4(),
        description=description,
        quantity=Decimal(quantity),
        unit_price=Decimal(unit_price),
        tax_rate=Decimal(tax_rate),
    )


def make_invoice(
    *,
    issue_date: date = TODAY,
    due_date: date | None = None,
    client_name: str = "Jane Baker",
    unit_price: str = "1000.00",
    tax_rate: str = "0",
    currency: str = "USD",
    invoice_number: str | None = None,
):
    now = datetime.combine(issue_date, datetime.min.time(), tzinfo=timezone.utc)
    return generate_ad_hoc_invoice(
        client_name,
        [make_item(unit_price=unit_price, tax_rate=tax_rate)],
        now=now,
        currency=currency,
        due_date=due_date or issue_date + timedelta(days=30),
        invoice_number=invoice_number,
    )


@pytest.fixture
def quote() -> Quote:
    return make_quote()


@pytest.fixture
def builder() -> ContractBuilder:
    return ContractBuilder()


@pytest.fixture
def contract(quote, builder):
    schedule = generate_schedule(
        quote.final_price, quote.timeline, PaymentStructureType.MILESTONE, TODAY,
    )
    return builder.build(quote, schedule, now=FIXED_NOW)


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def registry(clock, config) -> InvoiceRegistry:
    return InvoiceRegistry.from_config(config, clock=clock)


@pytest.fixture
def converter(clock, config, registry) -> QuoteConverter:
    return QuoteConverter(config=config, registry=registry, clock=clock)


@pytest.fixture
def quote_factory():
    return make_quote


@pytest.fixture
def item_factory():
    return make_item


@pytest.fixture
def invoice_factory():
    return make_invoice
