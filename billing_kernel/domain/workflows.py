"""
Invoice and Contract Workflows.

State machines for invoice status changes, milestone progression and the
contract lifecycle. The registry consults ``INVOICE_WORKFLOW`` before applying
any status change; contract payments follow ``CONTRACT_WORKFLOW``.
"""

from dataclasses import dataclass

from billing_kernel.domain.models import ContractStatus, InvoiceStatus, MilestoneStatus
from billing_kernel.logging_config import get_logger

logger = get_logger("domain.workflows")


@dataclass(frozen=True)
class Guard:
    """A condition for a transition."""
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    cancels_reminders: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]

    def find(self, from_state: str, to_state: str) -> Transition | None:
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t
        return None

    def can_transition(self, from_state: str, to_state: str) -> bool:
        return self.find(from_state, to_state) is not None

    def terminal_states(self) -> frozenset[str]:
        sources = {t.from_state for t in self.transitions}
        return frozenset(s for s in self.states if s not in sources)


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

BALANCE_ZERO = Guard(
    name="balance_zero",
    description="Invoice balance is zero",
)

PAST_DUE = Guard(
    name="past_due",
    description="Invoice due date is before today",
)

ALL_MILESTONES_PAID = Guard(
    name="all_milestones_paid",
    description="Every milestone in the payment schedule is paid",
)


# -----------------------------------------------------------------------------
# Invoice Workflow
# -----------------------------------------------------------------------------

_D = InvoiceStatus.DRAFT.value
_S = InvoiceStatus.SENT.value
_V = InvoiceStatus.VIEWED.value
_P = InvoiceStatus.PAID.value
_O = InvoiceStatus.OVERDUE.value
_C = InvoiceStatus.CANCELLED.value

INVOICE_WORKFLOW = Workflow(
    name="billing_invoice",
    description="Client invoice lifecycle",
    initial_state=_D,
    states=tuple(s.value for s in InvoiceStatus),
    transitions=(
        Transition(_D, _S, action="send"),
        Transition(_D, _C, action="cancel", cancels_reminders=True),
        Transition(_S, _V, action="mark_viewed"),
        Transition(_S, _P, action="record_payment", guard=BALANCE_ZERO, cancels_reminders=True),
        Transition(_S, _O, action="mark_overdue", guard=PAST_DUE),
        Transition(_S, _C, action="cancel", cancels_reminders=True),
        Transition(_V, _P, action="record_payment", guard=BALANCE_ZERO, cancels_reminders=True),
        Transition(_V, _O, action="mark_overdue", guard=PAST_DUE),
        Transition(_V, _C, action="cancel", cancels_reminders=True),
        Transition(_O, _P, action="record_payment", guard=BALANCE_ZERO, cancels_reminders=True),
        Transition(_O, _C, action="cancel", cancels_reminders=True),
    ),
)

logger.debug(
    "invoice_workflow_registered",
    extra={
        "workflow_name": INVOICE_WORKFLOW.name,
        "state_count": len(INVOICE_WORKFLOW.states),
        "transition_count": len(INVOICE_WORKFLOW.transitions),
        "initial_state": INVOICE_WORKFLOW.initial_state,
    },
)


# -----------------------------------------------------------------------------
# Milestone Workflow
# -----------------------------------------------------------------------------

MILESTONE_WORKFLOW = Workflow(
    name="billing_milestone",
    description="Payment milestone progression driven by invoice events",
    initial_state=MilestoneStatus.PENDING.value,
    states=tuple(s.value for s in MilestoneStatus),
    transitions=(
        Transition("pending", "in_progress", action="start_work"),
        Transition("pending", "invoiced", action="invoice"),
        Transition("in_progress", "completed", action="complete_work"),
        Transition("in_progress", "invoiced", action="invoice"),
        Transition("completed", "invoiced", action="invoice"),
        Transition("invoiced", "paid", action="record_payment"),
    ),
)


# -----------------------------------------------------------------------------
# Contract Workflow
# -----------------------------------------------------------------------------

CONTRACT_WORKFLOW = Workflow(
    name="billing_contract",
    description="Contract lifecycle; payments activate and complete contracts",
    initial_state=ContractStatus.DRAFT.value,
    states=tuple(s.value for s in ContractStatus),
    transitions=(
        Transition("draft", "sent", action="send"),
        Transition("sent", "under_review", action="review"),
        Transition("under_review", "sent", action="revise"),
        Transition("sent", "signed", action="sign"),
        Transition("under_review", "signed", action="sign"),
        Transition("draft", "active", action="record_payment"),
        Transition("sent", "active", action="record_payment"),
        Transition("under_review", "active", action="record_payment"),
        Transition("signed", "active", action="activate"),
        Transition("active", "completed", action="record_payment", guard=ALL_MILESTONES_PAID),
        Transition("draft", "terminated", action="terminate"),
        Transition("sent", "terminated", action="terminate"),
        Transition("under_review", "terminated", action="terminate"),
        Transition("signed", "terminated", action="terminate"),
        Transition("active", "terminated", action="terminate"),
    ),
)


def is_invoice_transition_allowed(
    from_status: InvoiceStatus, to_status: InvoiceStatus,
) -> bool:
    """True when the invoice workflow permits ``from_status -> to_status``."""
    return INVOICE_WORKFLOW.can_transition(from_status.value, to_status.value)
