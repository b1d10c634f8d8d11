"""
Schedule Generator - Split a contract price into dated payment milestones.

Responsibility:
    Given a price, a free-text timeline, a payment structure type and a start
    date, produce an ordered PaymentSchedule whose milestones sum to exactly
    100% of the percentage and exactly the price in amount.

Architecture position:
    Engines -- pure calculation, zero I/O. The start date is always passed
    in; this module never reads the clock.

Invariants enforced:
    - Milestone numbers are the contiguous sequence 1..N.
    - sum(percentage) == 100 and sum(amount) == price. Each amount is
      percentage x price rounded ROUND_HALF_UP to the minor unit; the final
      milestone absorbs the residue (amount = price - allocated_so_far).
    - Due dates are non-decreasing and never before the start date. When
      steps divide the timeline with a remainder, the final step absorbs
      it and falls due on the project end date.
    - Custom schedules are verified, never corrected: a custom list that
      does not total 100% raises BusinessRuleError.

Behavior by structure:
    single         one milestone, 100%, due at start + weeks
    deposit_final  50/50, due at start and start + weeks
    milestone      price < 5,000 degrades to deposit_final;
                   price < 15,000 uses 40/30/30; otherwise 30/25/25/20.
                   Step i is due at start + (i+1) x floor(weeks*7 / steps).
    progress       ceil(weeks/4) monthly payments of 100/count percent
    custom         caller milestones with defaults filled

Usage:
    from datetime import date
    from decimal import Decimal
    from billing_engines.schedule import generate_schedule
    from billing_kernel.domain.models import PaymentStructureType

    schedule = generate_schedule(
        Decimal("22500"), "6-8 weeks", PaymentStructureType.MILESTONE,
        start_date=date(2024, 3, 1),
    )
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_DOWN, Decimal
from uuid import uuid4

from billing_engines.calculator import round_money
from billing_engines.timeline import add_days, add_months, parse_timeline_weeks
from billing_engines.tracer import traced_engine
from billing_kernel.domain.models import (
    MilestoneDraft,
    PaymentMilestone,
    PaymentSchedule,
    PaymentStructureType,
)
from billing_kernel.exceptions import BusinessRuleError
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.schedule")

HUNDRED = Decimal("100")
PERCENT_TOLERANCE = Decimal("0.01")
PERCENT_QUANTUM = Decimal("0.1")

DEPOSIT_FINAL_THRESHOLD = Decimal("5000")
LARGE_PROJECT_THRESHOLD = Decimal("15000")
CUSTOM_SPACING_DAYS = 30


@dataclass(frozen=True)
class MilestoneTemplate:
    """A milestone shape without amount, date or identity."""

    name: str
    percentage: Decimal
    deliverables: tuple[str, ...]
    description: str | None = None
    dependencies: tuple[str, ...] = field(default_factory=tuple)


SINGLE_STEPS: tuple[MilestoneTemplate, ...] = (
    MilestoneTemplate(
        "Full Payment", Decimal("100"),
        ("Complete website", "All features implemented", "Testing completed", "Launch and training"),
        description="Complete project payment",
    ),
)

DEPOSIT_FINAL_STEPS: tuple[MilestoneTemplate, ...] = (
    MilestoneTemplate(
        "Project Deposit", Decimal("50"),
        ("Project kickoff", "Requirements gathering", "Initial designs"),
        description="Initial deposit to begin project",
    ),
    MilestoneTemplate(
        "Final Payment", Decimal("50"),
        ("Complete website", "Testing", "Launch", "Training"),
        description="Final payment upon project completion",
    ),
)

THREE_STEP_MILESTONES: tuple[MilestoneTemplate, ...] = (
    MilestoneTemplate("Project Start & Deposit", Decimal("40"),
                      ("Project kickoff", "Requirements", "Wireframes")),
    MilestoneTemplate("Design Approval", Decimal("30"),
                      ("Visual designs", "Content integration", "Development start")),
    MilestoneTemplate("Project Completion", Decimal("30"),
                      ("Final development", "Testing", "Launch")),
)

FOUR_STEP_MILESTONES: tuple[MilestoneTemplate, ...] = (
    MilestoneTemplate("Project Start & Deposit", Decimal("30"),
                      ("Project kickoff", "Requirements", "Wireframes")),
    MilestoneTemplate("Design Phase", Decimal("25"),
                      ("Visual designs", "Design system", "Client approval")),
    MilestoneTemplate("Development Phase", Decimal("25"),
                      ("Frontend development", "Backend integration", "Content management")),
    MilestoneTemplate("Launch & Completion", Decimal("20"),
                      ("Testing", "Launch", "Training", "Documentation")),
)


def milestone_steps_for_price(price: Decimal) -> tuple[MilestoneTemplate, ...]:
    """Price-tiered template for the ``milestone`` structure."""
    if price < DEPOSIT_FINAL_THRESHOLD:
        return DEPOSIT_FINAL_STEPS
    if price < LARGE_PROJECT_THRESHOLD:
        return THREE_STEP_MILESTONES
    return FOUR_STEP_MILESTONES


def _allocate_amounts(
    price: Decimal, percentages: Sequence[Decimal], currency: str,
) -> list[Decimal]:
    amounts: list[Decimal] = []
    allocated_so_far = Decimal("0")
    last = len(percentages) - 1
    for i, pct in enumerate(percentages):
        if i == last:
            amount = round_money(price - allocated_so_far, currency)
        else:
            amount = round_money(price * pct / HUNDRED, currency)
        allocated_so_far += amount
        amounts.append(amount)
    return amounts


def _spaced_due_dates(start_date: date, weeks: int, steps: int) -> list[date]:
    total_days = weeks * 7
    spacing = total_days // steps
    dates = [add_days(start_date, (i + 1) * spacing) for i in range(steps - 1)]
    dates.append(add_days(start_date, total_days))
    return dates


def _build(
    templates: Sequence[MilestoneTemplate],
    due_dates: Sequence[date],
    price: Decimal,
    currency: str,
    project_name: str | None,
) -> tuple[PaymentMilestone, ...]:
    amounts = _allocate_amounts(price, [t.percentage for t in templates], currency)
    milestones = []
    for i, (tmpl, due, amount) in enumerate(zip(templates, due_dates, amounts)):
        description = tmpl.description or (
            f"{tmpl.name} for {project_name}" if project_name else tmpl.name
        )
        milestones.append(PaymentMilestone(
            id=uuid4(),
            number=i + 1,
            name=tmpl.name,
            description=description,
            percentage=tmpl.percentage,
            amount=amount,
            due_date=due,
            deliverables=tmpl.deliverables,
            dependencies=tmpl.dependencies,
        ))
    return tuple(milestones)


def _progress_templates(weeks: int) -> list[MilestoneTemplate]:
    count = max(1, math.ceil(weeks / 4))
    share = (HUNDRED / count).quantize(PERCENT_QUANTUM, rounding=ROUND_DOWN)
    templates = []
    for i in range(count):
        pct = share if i < count - 1 else HUNDRED - share * (count - 1)
        templates.append(MilestoneTemplate(
            name=f"Progress Payment {i + 1}",
            percentage=pct,
            deliverables=(f"Month {i + 1} deliverables", "Progress review", "Client approval"),
            description=f"Monthly progress payment {i + 1} of {count}",
        ))
    return templates


def _custom_milestones(
    drafts: Sequence[MilestoneDraft],
    price: Decimal,
    start_date: date,
    currency: str,
) -> tuple[PaymentMilestone, ...]:
    if not drafts:
        raise BusinessRuleError(
            "custom_schedule_empty",
            "Custom payment structure requires at least one milestone",
        )

    percentages: list[Decimal] = []
    for i, draft in enumerate(drafts):
        if draft.percentage is None or draft.percentage <= 0:
            raise BusinessRuleError(
                "milestone_percentage_positive",
                f"Milestone {i + 1} percentage must be greater than 0",
                {"milestone_number": i + 1, "percentage": draft.percentage},
            )
        percentages.append(draft.percentage)

    total_pct = sum(percentages, Decimal("0"))
    if abs(total_pct - HUNDRED) > PERCENT_TOLERANCE:
        raise BusinessRuleError(
            "schedule_total_percentage",
            "Custom milestones must total 100%",
            {"total_percentage": total_pct},
        )

    amounts = _allocate_amounts(price, percentages, currency)
    milestones: list[PaymentMilestone] = []
    previous_due = start_date
    for i, (draft, pct, amount) in enumerate(zip(drafts, percentages, amounts)):
        n = i + 1
        due = draft.due_date or add_days(start_date, n * CUSTOM_SPACING_DAYS)
        if due < start_date:
            raise BusinessRuleError(
                "milestone_due_before_start",
                f"Milestone {n} is due before the schedule start date",
                {"milestone_number": n, "due_date": due, "start_date": start_date},
            )
        if due < previous_due:
            raise BusinessRuleError(
                "milestone_due_order",
                f"Milestone {n} is due before milestone {n - 1}",
                {"milestone_number": n, "due_date": due, "previous_due_date": previous_due},
            )
        previous_due = due
        milestones.append(PaymentMilestone(
            id=draft.id or uuid4(),
            number=n,
            name=draft.name or f"Milestone {n}",
            description=draft.description or f"Custom milestone {n}",
            percentage=pct,
            amount=amount,
            due_date=due,
            deliverables=tuple(draft.deliverables) if draft.deliverables else (f"Milestone {n} deliverables",),
            dependencies=tuple(draft.dependencies or ()),
        ))
    return tuple(milestones)


@traced_engine(
    "schedule", "1.0",
    fingerprint_fields=("price", "timeline", "structure", "start_date", "currency"),
)
def generate_schedule(
    price: Decimal,
    timeline: str,
    structure: PaymentStructureType,
    start_date: date,
    custom_milestones: Sequence[MilestoneDraft] = (),
    currency: str = "USD",
    project_name: str | None = None,
) -> PaymentSchedule:
    """
    Generate a payment schedule for a price and structure.

    Args:
        price: Contract price (pre-tax).
        timeline: Free-text timeline, parsed by ``parse_timeline_weeks``.
        structure: Payment structure type.
        start_date: Schedule start; the earliest possible due date.
        custom_milestones: Caller milestones, used only for ``custom``.
        currency: Currency of ``price``.
        project_name: Used in generated milestone descriptions.

    Raises:
        BusinessRuleError: Negative price, or an invalid custom schedule.
    """
    price = Decimal(str(price)) if not isinstance(price, Decimal) else price
    structure = PaymentStructureType(structure)
    if price < 0:
        raise BusinessRuleError(
            "price_non_negative", "Schedule price cannot be negative", {"price": price},
        )

    weeks = parse_timeline_weeks(timeline)
    end_date = add_days(start_date, weeks * 7)
    effective = structure

    if structure == PaymentStructureType.CUSTOM:
        milestones = _custom_milestones(custom_milestones, price, start_date, currency)
    elif structure == PaymentStructureType.SINGLE:
        milestones = _build(SINGLE_STEPS, [end_date], price, currency, project_name)
    elif structure == PaymentStructureType.DEPOSIT_FINAL:
        milestones = _build(
            DEPOSIT_FINAL_STEPS, [start_date, end_date], price, currency, project_name,
        )
    elif structure == PaymentStructureType.MILESTONE:
        steps = milestone_steps_for_price(price)
        if steps is DEPOSIT_FINAL_STEPS:
            effective = PaymentStructureType.DEPOSIT_FINAL
            due_dates = [start_date, end_date]
        else:
            due_dates = _spaced_due_dates(start_date, weeks, len(steps))
        milestones = _build(steps, due_dates, price, currency, project_name)
    else:
        templates = _progress_templates(weeks)
        due_dates = [add_months(start_date, i + 1) for i in range(len(templates))]
        milestones = _build(templates, due_dates, price, currency, project_name)

    schedule = PaymentSchedule(
        structure=effective,
        currency=currency,
        total_amount=price,
        milestones=milestones,
        start_date=start_date,
        end_date=end_date,
        timeline_weeks=weeks,
    )
    logger.info("schedule_generated", extra={
        "requested_structure": structure.value,
        "structure": effective.value,
        "price": str(price),
        "currency": currency,
        "timeline_weeks": weeks,
        "milestone_count": len(milestones),
        "percentages": [str(m.percentage) for m in milestones],
        "amounts": [str(m.amount) for m in milestones],
    })
    return schedule


@traced_engine(
    "template_schedule", "1.0",
    fingerprint_fields=("price", "timeline", "start_date", "currency"),
)
def template_schedule(
    steps: Sequence[MilestoneTemplate],
    price: Decimal,
    timeline: str,
    start_date: date,
    currency: str = "USD",
    structure: PaymentStructureType = PaymentStructureType.MILESTONE,
    project_name: str | None = None,
) -> PaymentSchedule:
    """
    Build a schedule from a contract template's default milestones.

    Steps are evenly spaced over the parsed timeline exactly like the
    ``milestone`` structure. Prices below the deposit/final threshold
    degrade to a 50/50 deposit/final schedule.

    Raises:
        BusinessRuleError: Template steps that do not total 100%.
    """
    price = Decimal(str(price)) if not isinstance(price, Decimal) else price
    if price < DEPOSIT_FINAL_THRESHOLD or not steps:
        return generate_schedule(
            price, timeline, PaymentStructureType.DEPOSIT_FINAL, start_date,
            currency=currency, project_name=project_name,
        )

    total_pct = sum((s.percentage for s in steps), Decimal("0"))
    if abs(total_pct - HUNDRED) > PERCENT_TOLERANCE:
        raise BusinessRuleError(
            "schedule_total_percentage",
            "Template milestones must total 100%",
            {"total_percentage": total_pct},
        )

    weeks = parse_timeline_weeks(timeline)
    end_date = add_days(start_date, weeks * 7)
    milestones = _build(
        steps, _spaced_due_dates(start_date, weeks, len(steps)), price, currency, project_name,
    )
    logger.info("schedule_generated", extra={
        "requested_structure": structure.value,
        "structure": structure.value,
        "price": str(price),
        "currency": currency,
        "timeline_weeks": weeks,
        "milestone_count": len(milestones),
        "source": "template",
    })
    return PaymentSchedule(
        structure=structure,
        currency=currency,
        total_amount=price,
        milestones=milestones,
        start_date=start_date,
        end_date=end_date,
        timeline_weeks=weeks,
    )
