# fulfillment/enums.py
from enum import Enum


class QueueKind(Enum):
    OUTBOUND = "outbound"   # we send items to the counterparty
    INBOUND = "inbound"     # we ask the counterparty to send items


class FulfillmentStatus(Enum):
    EMPTY = "empty"
    PROPOSAL_CREATED = "proposal_created"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"

    @property
    def rank(self) -> int:
        return _RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (FulfillmentStatus.FULFILLED, FulfillmentStatus.REJECTED)


_RANK = {
    FulfillmentStatus.EMPTY: 0,
    FulfillmentStatus.PROPOSAL_CREATED: 1,
    FulfillmentStatus.FULFILLED: 2,
    FulfillmentStatus.REJECTED: 2,
}


class ProposalOutcome(Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"
    CANCELED = "canceled"
    INVALID_ITEMS = "invalid_items"
    COUNTERED = "countered"


class OfferState(Enum):
    """Steam ETradeOfferState values."""
    INVALID = 1
    ACTIVE = 2
    ACCEPTED = 3
    COUNTERED = 4
    EXPIRED = 5
    CANCELED = 6
    DECLINED = 7
    INVALID_ITEMS = 8
    CREATED_NEEDS_CONFIRMATION = 9
    CANCELED_BY_SECOND_FACTOR = 10
    IN_ESCROW = 11
