"""
InvoiceNumberSequence -- per-year invoice number allocation.

Responsibility:
    Allocates invoice numbers of the form
    ``{PREFIX}{SEP}{YEAR}{SEP}{SEQ}`` (default ``INV-2024-0001``) where SEQ
    is the 1-based count of numbers already issued in that calendar year,
    zero-padded to the configured width.

Architecture position:
    Services -- imperative shell. Owned by the InvoiceRegistry; the
    conversion service hands ``next_number`` to the invoice generator as
    its number source.

Invariants enforced:
    - Sequences are strictly increasing per calendar year; each year
      restarts at 1.
    - Allocation is a critical section (one lock per sequence object), so
      concurrent callers never receive the same number.
    - ``observe`` advances the counter past externally supplied numbers so
      later allocations cannot collide with them.

Failure modes:
    - ConfigurationError from ``configure`` on invalid format settings.
"""

from __future__ import annotations

import re
import threading
from dataclasses import asdict
from datetime import date

from billing_config.loader import parse_numbering
from billing_config.schema import InvoiceNumberConfig
from billing_kernel.logging_config import get_logger

logger = get_logger("services.numbering")


class InvoiceNumberSequence:
    """
    Thread-safe invoice number allocator.

    Usage:
        sequence = InvoiceNumberSequence()
        sequence.next_number(date(2024, 3, 1))   # "INV-2024-0001"
        sequence.next_number(date(2024, 3, 2))   # "INV-2024-0002"
        sequence.peek(date(2025, 1, 1))          # "INV-2025-0001"
    """

    def __init__(self, config: InvoiceNumberConfig | None = None):
        self._config = config or InvoiceNumberConfig()
        self._counters: dict[int, int] = {}
        self._lock = threading.Lock()

    @property
    def config(self) -> InvoiceNumberConfig:
        return self._config

    def configure(self, **changes: object) -> InvoiceNumberConfig:
        """
        Partially update the format (prefix, year_format, sequence_length,
        separator). Counters are kept.

        Raises:
            ConfigurationError: Unknown key or invalid value.
        """
        merged = {**asdict(self._config), **changes}
        config = parse_numbering(merged)
        with self._lock:
            self._config = config
        logger.info("numbering_configured", extra={
            "prefix": config.prefix,
            "year_format": config.year_format,
            "sequence_length": config.sequence_length,
            "separator": config.separator,
        })
        return config

    def format_number(self, year: int, sequence: int) -> str:
        cfg = self._config
        year_text = str(year)[-2:] if cfg.year_format == "YY" else str(year)
        seq_text = str(sequence).zfill(cfg.sequence_length)
        return f"{cfg.prefix}{cfg.separator}{year_text}{cfg.separator}{seq_text}"

    def next_number(self, issue_date: date) -> str:
        """Allocate the next number for the issue date's calendar year."""
        with self._lock:
            value = self._counters.get(issue_date.year, 0) + 1
            self._counters[issue_date.year] = value
            number = self.format_number(issue_date.year, value)
        logger.debug("invoice_number_allocated", extra={
            "year": issue_date.year,
            "sequence": value,
            "invoice_number": number,
        })
        return number

    def peek(self, issue_date: date) -> str:
        """The number ``next_number`` would return, without consuming it."""
        with self._lock:
            value = self._counters.get(issue_date.year, 0) + 1
        return self.format_number(issue_date.year, value)

    def issued_count(self, year: int) -> int:
        return self._counters.get(year, 0)

    def _pattern(self) -> re.Pattern:
        cfg = self._config
        sep = re.escape(cfg.separator)
        year_digits = 2 if cfg.year_format == "YY" else 4
        return re.compile(
            rf"^{re.escape(cfg.prefix)}{sep}(\d{{{year_digits}}}){sep}(\d+)$"
        )

    def observe(self, invoice_number: str, issue_date: date) -> None:
        """
        Advance the issue year's counter past an externally assigned number.

        Numbers that do not match the current format are ignored.
        """
        match = self._pattern().match(invoice_number)
        if match is None:
            return
        value = int(match.group(2))
        with self._lock:
            if value > self._counters.get(issue_date.year, 0):
                self._counters[issue_date.year] = value
                logger.debug("invoice_number_observed", extra={
                    "year": issue_date.year,
                    "sequence": value,
                    "invoice_number": invoice_number,
                })
