# fulfillment/stores/proposal_store.py
from typing import Dict, List, Optional

from fulfillment.models import Proposal, OrderKey, TrackedOrder


class ProposalStore:
    """
    In-memory proposal mirror keyed by proposal id and by order key.
    Lost on restart; the ledger stays the source of truth.

    A proposal is kept only while it is unsettled: still open, or resolved
    with a status the ledger has not accepted yet. Settled proposals are
    dropped so a row id can be reused by the next order written into it.
    """

    def __init__(self) -> None:
        self._by_id: Dict[str, Proposal] = {}
        self._by_order: Dict[OrderKey, Proposal] = {}

    def upsert(self, proposal: Proposal) -> None:
        """Insert or update a proposal mirror."""
        self._by_id[proposal.proposal_id] = proposal
        self._by_order[proposal.order_key] = proposal

    def get(self, proposal_id: str) -> Optional[Proposal]:
        return self._by_id.get(proposal_id)

    def get_by_order(self, key: OrderKey) -> Optional[Proposal]:
        return self._by_order.get(key)

    def owns(self, proposal: Proposal) -> bool:
        """True while the proposal is still the one bound to its ledger row."""
        return self._by_order.get(proposal.order_key) is proposal

    def open_proposals(self) -> List[Proposal]:
        """Proposals sent but not yet resolved."""
        return [p for p in self._by_id.values() if not p.status.is_terminal]

    def tracked(self) -> Dict[OrderKey, TrackedOrder]:
        return {
            key: TrackedOrder(status=p.status, partner=p.partner, write_pending=p.ledger_status is not p.status)
            for key, p in self._by_order.items()
        }

    def release(self, key: OrderKey) -> Optional[Proposal]:
        """
        Unbind a row from its proposal. An open proposal stays reachable by id
        so its outcome can still be observed, but it no longer writes the row.
        """
        proposal = self._by_order.pop(key, None)
        if proposal is not None and proposal.status.is_terminal:
            self._by_id.pop(proposal.proposal_id, None)
        return proposal

    def discard(self, proposal: Proposal) -> None:
        self._by_id.pop(proposal.proposal_id, None)
        if self.owns(proposal):
            del self._by_order[proposal.order_key]

    def __len__(self) -> int:
        return len(self._by_id)
