"""
ReminderScheduler -- gentle / firm / final payment reminders.

Responsibility:
    Derives three reminder events per invoice from its due date
    (default offsets -3, +7 and +30 days) and tracks their delivery state.
    Sending is an external concern: callers poll ``due_reminders`` and
    report back through ``mark_sent`` / ``mark_failed``.

Architecture position:
    Services -- owns the pending-reminder set. Driven by the
    InvoiceRegistry (schedule on create, cancel on paid or cancelled).

Invariants enforced:
    - Reminder ids are ``{invoice_id}_{tier}``; scheduling an invoice twice
      replaces its pending reminders instead of duplicating them.
    - Paid and cancelled invoices never get reminders.
    - After ``cancel_pending(invoice_id)`` no pending reminder remains for
      that invoice. Sent and failed reminders are kept as history.

Failure modes:
    - ReminderNotFoundError from ``mark_sent`` / ``mark_failed``.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import date, timedelta
from uuid import UUID

from billing_config.schema import ReminderConfig, ReminderTierConfig
from billing_kernel.domain.models import (
    Invoice,
    PaymentReminder,
    ReminderStatus,
    ReminderTier,
)
from billing_kernel.exceptions import ReminderNotFoundError
from billing_kernel.logging_config import get_logger

logger = get_logger("services.reminders")


def reminder_id(invoice_id: UUID, tier: ReminderTier) -> str:
    return f"{invoice_id}_{tier.value}"


class ReminderScheduler:
    """In-memory reminder store with a single short-held lock."""

    def __init__(self, config: ReminderConfig | None = None):
        self._config = config or ReminderConfig()
        self._reminders: dict[str, PaymentReminder] = {}
        self._lock = threading.Lock()

    def _tier_config(self, tier: ReminderTier) -> ReminderTierConfig:
        return getattr(self._config, tier.value)

    def schedule(self, invoice: Invoice) -> tuple[PaymentReminder, ...]:
        """Create (or re-create) the pending reminders for an invoice."""
        if invoice.status.is_closed:
            logger.debug("reminders_skipped_closed_invoice", extra={
                "invoice_id": str(invoice.id),
                "status": invoice.status.value,
            })
            return ()

        created = []
        with self._lock:
            for tier in ReminderTier:
                rid = reminder_id(invoice.id, tier)
                existing = self._reminders.get(rid)
                if existing is not None and existing.status != ReminderStatus.PENDING:
                    continue
                tier_config = self._tier_config(tier)
                reminder = PaymentReminder(
                    id=rid,
                    invoice_id=invoice.id,
                    tier=tier,
                    scheduled_date=invoice.due_date + timedelta(days=tier_config.days_offset),
                    email_template=tier_config.email_template,
                )
                self._reminders[rid] = reminder
                created.append(reminder)

        logger.info("reminders_scheduled", extra={
            "invoice_id": str(invoice.id),
            "invoice_number": invoice.invoice_number,
            "count": len(created),
            "dates": [r.scheduled_date.isoformat() for r in created],
        })
        return tuple(created)

    def cancel_pending(self, invoice_id: UUID) -> int:
        """Drop every pending reminder of an invoice. Returns how many."""
        with self._lock:
            doomed = [
                rid for rid, r in self._reminders.items()
                if r.invoice_id == invoice_id and r.status == ReminderStatus.PENDING
            ]
            for rid in doomed:
                del self._reminders[rid]
        logger.info("reminders_cancelled", extra={
            "invoice_id": str(invoice_id),
            "count": len(doomed),
        })
        return len(doomed)

    def due_reminders(self, as_of: date) -> list[PaymentReminder]:
        """Pending reminders scheduled on or before ``as_of``, earliest first."""
        with self._lock:
            due = [
                r for r in self._reminders.values()
                if r.status == ReminderStatus.PENDING and r.scheduled_date <= as_of
            ]
        return sorted(due, key=lambda r: (r.scheduled_date, r.id))

    def _update(self, rid: str, **changes: object) -> PaymentReminder:
        with self._lock:
            reminder = self._reminders.get(rid)
            if reminder is None:
                raise ReminderNotFoundError(rid)
            updated = replace(reminder, **changes)
            self._reminders[rid] = updated
        return updated

    def mark_sent(self, rid: str, sent_on: date) -> PaymentReminder:
        updated = self._update(rid, status=ReminderStatus.SENT, sent_date=sent_on)
        logger.info("reminder_sent", extra={
            "reminder_id": rid,
            "tier": updated.tier.value,
            "sent_date": sent_on.isoformat(),
        })
        return updated

    def mark_failed(self, rid: str, reason: str) -> PaymentReminder:
        updated = self._update(rid, status=ReminderStatus.FAILED, failure_reason=reason)
        logger.warning("reminder_failed", extra={
            "reminder_id": rid,
            "tier": updated.tier.value,
            "reason": reason,
        })
        return updated

    def reminders_for(self, invoice_id: UUID) -> list[PaymentReminder]:
        with self._lock:
            found = [r for r in self._reminders.values() if r.invoice_id == invoice_id]
        return sorted(found, key=lambda r: r.scheduled_date)

    def pending_for(self, invoice_id: UUID) -> list[PaymentReminder]:
        return [r for r in self.reminders_for(invoice_id) if r.status == ReminderStatus.PENDING]
