"""
Purchase order lifecycle

    draft -> pending_approval | approved
    pending_approval -> approved | rejected | changes_requested
    approved -> ordered -> partially_received -> completed

Any state before ``ordered`` except ``rejected`` may move to ``cancelled``.
"""
from sgst.exceptions import ConflictError

DRAFT = 'draft'
PENDING_APPROVAL = 'pending_approval'
APPROVED = 'approved'
REJECTED = 'rejected'
CHANGES_REQUESTED = 'changes_requested'
ORDERED = 'ordered'
PARTIALLY_RECEIVED = 'partially_received'
COMPLETED = 'completed'
CANCELLED = 'cancelled'

ALL_STATUSES = (
    DRAFT, PENDING_APPROVAL, APPROVED, REJECTED, CHANGES_REQUESTED,
    ORDERED, PARTIALLY_RECEIVED, COMPLETED, CANCELLED
)

TERMINAL_STATUSES = frozenset({COMPLETED, CANCELLED, REJECTED})

OPEN_STATUSES = (DRAFT, PENDING_APPROVAL, APPROVED, CHANGES_REQUESTED, ORDERED, PARTIALLY_RECEIVED)

ALLOWED_TRANSITIONS = {
    DRAFT: {PENDING_APPROVAL, APPROVED, CANCELLED},
    PENDING_APPROVAL: {APPROVED, REJECTED, CHANGES_REQUESTED, CANCELLED},
    APPROVED: {ORDERED, CANCELLED},
    CHANGES_REQUESTED: {CANCELLED},
    ORDERED: {PARTIALLY_RECEIVED, COMPLETED},
    PARTIALLY_RECEIVED: {PARTIALLY_RECEIVED, COMPLETED},
    REJECTED: set(),
    COMPLETED: set(),
    CANCELLED: set(),
}

PRIORITIES = ('low', 'normal', 'high', 'urgent')

# Approval row states
APPROVAL_PENDING = 'pending'
APPROVAL_APPROVED = 'approved'
APPROVAL_REJECTED = 'rejected'
APPROVAL_CHANGES_REQUESTED = 'changes_requested'
APPROVAL_MOOT = 'moot'

APPROVAL_DECISIONS = (APPROVAL_APPROVED, APPROVAL_REJECTED, APPROVAL_CHANGES_REQUESTED)


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def ensure_transition(order, target: str) -> None:
    """Raise ConflictError unless ``order`` may move to ``target``"""
    if not can_transition(order.status, target):
        raise ConflictError(
            f"Purchase order {order.id} cannot move from '{order.status}' to '{target}'",
            code='invalid_transition',
            details={
                'purchase_order_id': order.id,
                'current_status': order.status,
                'attempted_status': target
            }
        )
