# fulfillment/ports.py
from __future__ import annotations

from typing import List, Protocol, Sequence

from fulfillment.enums import QueueKind
from fulfillment.models import OrderRecord, InventoryItem


# ========== Ledger: row storage for the two order queues ==========
class LedgerGateway(Protocol):
    async def list_orders(self, queue: QueueKind) -> List[OrderRecord]: ...
    async def write_field(self, queue: QueueKind, row_id: int, field: str, value: str) -> None: ...
    async def validate_schema(self) -> None: ...


# ========== Trading network: one proposal under construction ==========
class ProposalHandle(Protocol):
    def attach_item(self, item: InventoryItem) -> None: ...
    def set_message(self, message: str) -> None: ...
    async def send(self) -> str: ...


class TradeSession(Protocol):
    def create_proposal(self, partner_id64: str, access_token: str) -> ProposalHandle: ...
    async def cancel_proposal(self, proposal_id: str) -> None: ...


# ========== Inventory: point-in-time snapshot of our own items ==========
class InventorySource(Protocol):
    async def fetch_inventory(self, app_id: int, context_id: str) -> Sequence[InventoryItem]: ...
