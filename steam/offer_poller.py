# steam/offer_poller.py
from __future__ import annotations

import asyncio
from typing import Dict, Optional

from fulfillment.enums import OfferState, ProposalOutcome
from fulfillment.event_bus import EventBus, TOPIC_PROPOSAL_RESOLVED
from fulfillment.models import ProposalResolved
from fulfillment.stores.proposal_store import ProposalStore
from utils.logger import logger as default_logger

# Active, needs-confirmation and in-escrow offers are still pending.
TERMINAL_STATES: Dict[OfferState, ProposalOutcome] = {
    OfferState.ACCEPTED: ProposalOutcome.ACCEPTED,
    OfferState.DECLINED: ProposalOutcome.DECLINED,
    OfferState.EXPIRED: ProposalOutcome.EXPIRED,
    OfferState.CANCELED: ProposalOutcome.CANCELED,
    OfferState.CANCELED_BY_SECOND_FACTOR: ProposalOutcome.CANCELED,
    OfferState.INVALID: ProposalOutcome.CANCELED,
    OfferState.INVALID_ITEMS: ProposalOutcome.INVALID_ITEMS,
    OfferState.COUNTERED: ProposalOutcome.COUNTERED,
}


class OfferPoller:
    """
    Polls the state of every unresolved proposal and publishes
    TOPIC_PROPOSAL_RESOLVED once Steam reports a terminal state.
    """

    def __init__(self, client, store: ProposalStore, event_bus: EventBus,
                 interval_s: float = 10.0, *, logger=None) -> None:
        self._client = client
        self._store = store
        self._bus = event_bus
        self._interval = interval_s
        self._log = logger or default_logger
        self._stop = asyncio.Event()

    async def poll_once(self) -> int:
        resolved = 0
        for proposal in self._store.open_proposals():
            if proposal.outcome is not None:
                continue
            try:
                state = await self._client.get_offer_state(proposal.proposal_id)
            except Exception as e:
                self._log.warning(f"[poller] state query for {proposal.proposal_id} failed: {e}")
                continue
            outcome = TERMINAL_STATES.get(state)
            if outcome is None:
                continue
            self._log.info(f"[poller] offer {proposal.proposal_id} is {state.name}")
            await self._bus.publish(TOPIC_PROPOSAL_RESOLVED, ProposalResolved(proposal.proposal_id, outcome))
            resolved += 1
        return resolved

    async def run_forever(self) -> None:
        while not self._stop.is_set():
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._log.opt(exception=e).error(f"[poller] unexpected error: {e}")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        self._stop.set()
