# fulfillment/models.py
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Tuple

from fulfillment.enums import QueueKind, FulfillmentStatus, ProposalOutcome

# Offset between a 32-bit account id and the 64-bit individual steam id.
STEAM_ID64_BASE = 76561197960265728

OrderKey = Tuple[QueueKind, int]


@dataclass
class OrderRecord:
    row_id: int                 # 1-based sheet row, stable across reads/writes
    queue: QueueKind
    username: str               # display only
    quantity_raw: str
    link_raw: str
    order_status: str           # producer-owned, read only
    fulfillment_status: Optional[FulfillmentStatus]   # None = unrecognized label
    fulfillment_raw: str = ""

    @property
    def key(self) -> OrderKey:
        return (self.queue, self.row_id)


@dataclass(frozen=True)
class PartnerLink:
    account_id: int
    access_token: str

    @property
    def steam_id64(self) -> str:
        return str(self.account_id + STEAM_ID64_BASE)


@dataclass(frozen=True)
class InventoryItem:
    asset_id: str
    name: str
    app_id: int = 440
    context_id: str = "2"
    amount: int = 1

    def as_asset(self) -> dict:
        return {
            "appid": self.app_id,
            "contextid": str(self.context_id),
            "amount": self.amount,
            "assetid": str(self.asset_id),
        }


@dataclass
class Proposal:
    proposal_id: str
    queue: QueueKind
    row_id: int
    partner: PartnerLink
    item_count: int
    status: FulfillmentStatus = FulfillmentStatus.PROPOSAL_CREATED
    created_ms: int = 0
    resolved_ms: Optional[int] = None
    outcome: Optional[ProposalOutcome] = None
    ledger_status: Optional[FulfillmentStatus] = None   # last value written successfully

    @property
    def order_key(self) -> OrderKey:
        return (self.queue, self.row_id)


@dataclass(frozen=True)
class TrackedOrder:
    """What the planner needs to know about an order with an unsettled proposal."""
    status: FulfillmentStatus       # status the ledger should show
    partner: PartnerLink
    write_pending: bool             # last write of `status` failed


@dataclass
class CycleIntent:
    """One order the cycle intends to dispatch."""
    order: OrderRecord
    partner: PartnerLink
    quantity: int


@dataclass
class CyclePlan:
    queue: QueueKind
    intents: List[CycleIntent] = field(default_factory=list)
    repairs: List[OrderRecord] = field(default_factory=list)    # our own status write failed
    released: List[OrderKey] = field(default_factory=list)      # row no longer holds the tracked order
    skipped: Dict[int, str] = field(default_factory=dict)   # row_id -> reason


@dataclass
class CycleReport:
    seen: int = 0
    eligible: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    aborted_queues: List[QueueKind] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def aborted(self) -> bool:
        return bool(self.aborted_queues)

    def merge_plan(self, plan: CyclePlan, seen: int) -> None:
        self.seen += seen
        self.eligible += len(plan.intents)
        self.skipped += len(plan.skipped)


@dataclass(frozen=True)
class ProposalResolved:
    """Terminal outcome reported by the trading network for a sent proposal."""
    proposal_id: str
    outcome: ProposalOutcome
