"""
Document lifecycle states and the transitions allowed between them.

Payment-driven states (Open, Partially Paid, Paid) are derived from the
balance; Cancelled, Deleted and Converted are set by explicit actions.
"""

from decimal import Decimal
import enum


class DocumentStatus(enum.Enum):
    OPEN = "open"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    CANCELLED = "cancelled"
    DELETED = "deleted"
    CONVERTED = "converted"  # Purchase orders turned into a purchase bill


ALLOWED_TRANSITIONS = {
    DocumentStatus.OPEN: {
        DocumentStatus.PARTIALLY_PAID,
        DocumentStatus.PAID,
        DocumentStatus.CANCELLED,
        DocumentStatus.DELETED,
        DocumentStatus.CONVERTED,
    },
    DocumentStatus.PARTIALLY_PAID: {DocumentStatus.OPEN, DocumentStatus.PAID},
    DocumentStatus.PAID: {DocumentStatus.OPEN, DocumentStatus.PARTIALLY_PAID},
    DocumentStatus.CANCELLED: {DocumentStatus.DELETED},
    DocumentStatus.CONVERTED: {DocumentStatus.DELETED},
    DocumentStatus.DELETED: set(),
}

# No new allocations may be applied to documents in these states
ALLOCATION_LOCKED = frozenset({
    DocumentStatus.PAID,
    DocumentStatus.CANCELLED,
    DocumentStatus.DELETED,
    DocumentStatus.CONVERTED,
})

# Only these states may have their items and totals edited
EDITABLE = frozenset({DocumentStatus.OPEN})

# Open for payment: shows up in unpaid-document listings
UNSETTLED = (DocumentStatus.OPEN, DocumentStatus.PARTIALLY_PAID)


def status_for_balance(balance: Decimal, total: Decimal) -> DocumentStatus:
    if total <= 0:
        # Nothing to collect; stays editable until cancelled or deleted
        return DocumentStatus.OPEN
    if balance <= 0:
        return DocumentStatus.PAID
    if balance < total:
        return DocumentStatus.PARTIALLY_PAID
    return DocumentStatus.OPEN


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    return current == target or target in ALLOWED_TRANSITIONS[current]
