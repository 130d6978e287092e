# fulfillment/services/offer_service.py
from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from fulfillment.config import FulfillmentSettings, StatusLabels
from fulfillment.enums import QueueKind, FulfillmentStatus, ProposalOutcome
from fulfillment.errors import FulfillmentError, SendError, InventoryFetchError
from fulfillment.event_bus import EventBus, TOPIC_PROPOSAL_RESOLVED
from fulfillment.models import CycleIntent, OrderKey, OrderRecord, Proposal, ProposalResolved
from fulfillment.ports import InventorySource, LedgerGateway, TradeSession
from fulfillment.services.inventory_matcher import select_items
from fulfillment.stores.proposal_store import ProposalStore
from utils.logger import logger as default_logger
from utils.time import utc_ms

STATUS_FIELD = "fulfillment_status"

OUTCOME_TO_STATUS = {
    ProposalOutcome.ACCEPTED: FulfillmentStatus.FULFILLED,
    ProposalOutcome.DECLINED: FulfillmentStatus.REJECTED,
}


def render_message(template: str, quantity: int) -> str:
    # operator text may carry literal braces, so only the one placeholder is substituted
    return template.replace("{quantity}", str(quantity))


class OfferService:
    """
    Creates, sends and resolves trade proposals, mirroring each transition into
    the order's fulfillment status.

    Status writes only move forward (Empty -> ProposalCreated -> Fulfilled|Rejected);
    a terminal value is never overwritten. Outcome events and the scheduler's row
    processing are serialized through `lock`.
    """

    def __init__(
        self,
        session: TradeSession,
        inventory: InventorySource,
        ledger: LedgerGateway,
        store: ProposalStore,
        event_bus: EventBus,
        settings: FulfillmentSettings,
        labels: StatusLabels,
        *,
        logger=None,
    ) -> None:
        self._session = session
        self._inventory = inventory
        self._ledger = ledger
        self._store = store
        self._bus = event_bus
        self._settings = settings
        self._labels = labels
        self._log = logger or default_logger
        self.lock = asyncio.Lock()
        # order key -> status the ledger should hold but a write failed to store
        self.inconsistencies: Dict[OrderKey, FulfillmentStatus] = {}

        self._bus.subscribe(TOPIC_PROPOSAL_RESOLVED, self.on_resolved)

    @property
    def store(self) -> ProposalStore:
        return self._store

    # ---- Created -> Sent ----------------------------------------------------
    async def dispatch(self, intent: CycleIntent) -> Proposal:
        """
        Build and send one proposal for an eligible order.
        Raises ValidationError/TransportError without touching the ledger when
        nothing was sent, so the order stays Empty and is retried next cycle.
        """
        order = intent.order
        partner = intent.partner

        if order.queue is QueueKind.OUTBOUND:
            # fresh snapshot per order, no cross-order reservation
            try:
                snapshot = await self._inventory.fetch_inventory(self._settings.app_id, self._settings.context_id)
            except FulfillmentError:
                raise
            except Exception as e:
                raise InventoryFetchError(f"Inventory fetch failed: {e}", row=order.row_id) from e

            items = select_items(snapshot, self._settings.item_name, intent.quantity)
            handle = self._session.create_proposal(partner.steam_id64, partner.access_token)
            for it in items:
                handle.attach_item(it)
            handle.set_message(render_message(self._settings.outbound_message, intent.quantity))
        else:
            handle = self._session.create_proposal(partner.steam_id64, partner.access_token)
            handle.set_message(render_message(self._settings.inbound_message, intent.quantity))

        try:
            proposal_id = await handle.send()
        except SendError:
            raise
        except Exception as e:
            raise SendError(f"Send failed: {e}", queue=order.queue.value, row=order.row_id) from e

        proposal = Proposal(
            proposal_id=str(proposal_id),
            queue=order.queue,
            row_id=order.row_id,
            partner=partner,
            item_count=intent.quantity if order.queue is QueueKind.OUTBOUND else 0,
            created_ms=utc_ms(),
            ledger_status=order.fulfillment_status,
        )
        self._store.upsert(proposal)
        self._log.info(
            f"[offer] sent {order.queue.value} row={order.row_id} user={order.username!r} "
            f"qty={intent.quantity} id={proposal.proposal_id}"
        )
        await self._write_status(proposal, FulfillmentStatus.PROPOSAL_CREATED)
        return proposal

    # ---- Sent -> Resolved ---------------------------------------------------
    async def on_resolved(self, event: ProposalResolved) -> None:
        """Fold an asynchronous outcome into the ledger; redundant deliveries are no-ops."""
        async with self.lock:
            await self._apply_outcome(event.proposal_id, event.outcome)

    async def _apply_outcome(self, proposal_id: str, outcome: ProposalOutcome) -> None:
        proposal = self._store.get(proposal_id)
        if proposal is None:
            self._log.warning(f"[offer] outcome {outcome.value} for unknown proposal {proposal_id}, ignored")
            return

        if not self._store.owns(proposal):
            if proposal.outcome is None:
                proposal.outcome = outcome
                proposal.resolved_ms = utc_ms()
            self._log.warning(
                f"[offer] proposal {proposal_id} ended as {outcome.value} after row {proposal.row_id} "
                f"was taken by another order; ledger untouched"
            )
            self._store.discard(proposal)
            return

        target = OUTCOME_TO_STATUS.get(outcome)
        if target is None:
            if proposal.outcome is None:
                proposal.outcome = outcome
                proposal.resolved_ms = utc_ms()
                self._log.warning(
                    f"[offer] proposal {proposal_id} ended as {outcome.value}; "
                    f"row {proposal.row_id} left as {proposal.status.value}"
                )
            if self._settings.proposal_ttl_s is None and proposal.ledger_status is proposal.status:
                # no sweep will ever move this row again
                self._store.discard(proposal)
            return

        if proposal.status.is_terminal:
            if proposal.status is not target:
                self._log.warning(
                    f"[offer] conflicting outcome {outcome.value} for {proposal_id}, "
                    f"keeping {proposal.status.value}"
                )
            else:
                self._log.debug(f"[offer] duplicate outcome {outcome.value} for {proposal_id}")
            # still retry a terminal write that previously failed
            await self._write_status(proposal, proposal.status)
            return

        proposal.outcome = outcome
        proposal.resolved_ms = utc_ms()
        self._log.info(f"[offer] proposal {proposal_id} {outcome.value} -> row {proposal.row_id} {target.value}")
        await self._write_status(proposal, target)

    # ---- ledger repair / release / expiry -----------------------------------
    async def repair(self, order: OrderRecord) -> bool:
        """
        Re-write a status whose earlier write failed, for an order this process
        sent a proposal for. Returns True when the order is tracked and must
        not be dispatched again.
        """
        proposal = self._store.get_by_order(order.key)
        if proposal is None:
            return False
        if order.fulfillment_status is not None and order.fulfillment_status.rank < proposal.status.rank:
            proposal.ledger_status = order.fulfillment_status
            self._log.info(
                f"[offer] ledger row {order.row_id} shows {order.fulfillment_status.value}, "
                f"re-writing {proposal.status.value}"
            )
            await self._write_status(proposal, proposal.status)
        return True

    def release(self, key: OrderKey) -> Optional[Proposal]:
        """Forget the row binding of an order the ledger no longer shows as ours."""
        proposal = self._store.release(key)
        self.inconsistencies.pop(key, None)
        if proposal is not None:
            self._log.info(
                f"[offer] {key[0].value} row {key[1]} no longer matches proposal {proposal.proposal_id} "
                f"({proposal.status.value}); treating it as a new order"
            )
        return proposal

    async def expire_stale(self, now_ms: Optional[int] = None) -> List[Proposal]:
        """Cancel and reject proposals left unanswered longer than proposal_ttl_s."""
        ttl = self._settings.proposal_ttl_s
        if ttl is None:
            return []
        now_ms = utc_ms() if now_ms is None else now_ms
        cutoff = now_ms - int(ttl * 1000)

        expired: List[Proposal] = []
        async with self.lock:
            for proposal in self._store.open_proposals():
                if proposal.created_ms > cutoff:
                    continue
                if proposal.outcome is None:
                    try:
                        await self._session.cancel_proposal(proposal.proposal_id)
                    except Exception as e:
                        self._log.warning(f"[offer] cancel of stale proposal {proposal.proposal_id} failed: {e}")
                        continue
                proposal.outcome = proposal.outcome or ProposalOutcome.EXPIRED
                proposal.resolved_ms = now_ms
                self._log.info(f"[offer] proposal {proposal.proposal_id} expired after {ttl:.0f}s")
                await self._write_status(proposal, FulfillmentStatus.REJECTED)
                expired.append(proposal)
        return expired

    # ---- precedence-guarded write ------------------------------------------
    async def _write_status(self, proposal: Proposal, target: FulfillmentStatus) -> bool:
        current = proposal.status
        if target.rank < current.rank or (current.is_terminal and target is not current):
            self._log.warning(
                f"[offer] refusing {target.value} over {current.value} for row {proposal.row_id}"
            )
            return False
        proposal.status = target
        if not self._store.owns(proposal):
            self._log.warning(
                f"[offer] row {proposal.row_id} no longer holds proposal {proposal.proposal_id}, "
                f"{target.value} not written"
            )
            if target.is_terminal:
                self._store.discard(proposal)
            return False
        if proposal.ledger_status is target:
            self._settle(proposal)
            return True

        key = proposal.order_key
        try:
            await self._ledger.write_field(proposal.queue, proposal.row_id, STATUS_FIELD, self._labels.label(target))
        except Exception as e:
            self.inconsistencies[key] = target
            self._log.error(
                f"[offer] ledger write failed: {proposal.queue.value} row={proposal.row_id} "
                f"status={target.value} proposal={proposal.proposal_id}: {e}"
            )
            return False

        proposal.ledger_status = target
        self.inconsistencies.pop(key, None)
        self._settle(proposal)
        return True

    def _settle(self, proposal: Proposal) -> None:
        """Terminal and written: nothing left to track."""
        if proposal.status.is_terminal and proposal.ledger_status is proposal.status:
            self._store.discard(proposal)
