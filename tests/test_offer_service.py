# tests/test_offer_service.py
import asyncio

import pytest

from fulfillment.enums import QueueKind, FulfillmentStatus, ProposalOutcome
from fulfillment.errors import InventoryFetchError, InsufficientInventoryError
from fulfillment.event_bus import TOPIC_PROPOSAL_RESOLVED
from fulfillment.models import CycleIntent, ProposalResolved
from fulfillment.services.link_parser import parse_partner_link
from fulfillment.services.reconcile_service import parse_quantity


def intent_for(order):
    return CycleIntent(order=order, partner=parse_partner_link(order.link_raw), quantity=parse_quantity(order.quantity_raw))


async def sent_proposal(engine, order):
    engine.ledger.add(order)
    async with engine.offers.lock:
        return await engine.offers.dispatch(intent_for(order))


def status_of(engine, row_id, queue=QueueKind.OUTBOUND):
    return engine.ledger.row(queue, row_id).fulfillment_status


@pytest.mark.asyncio
async def test_dispatch_registers_proposal_and_writes_created(engine, make_order):
    proposal = await sent_proposal(engine, make_order(2, quantity="3"))

    assert engine.store.get(proposal.proposal_id) is proposal
    assert proposal.item_count == 3
    assert proposal.status is FulfillmentStatus.PROPOSAL_CREATED
    assert proposal.ledger_status is FulfillmentStatus.PROPOSAL_CREATED
    assert proposal.created_ms > 0
    assert status_of(engine, 2) is FulfillmentStatus.PROPOSAL_CREATED


@pytest.mark.asyncio
async def test_dispatch_insufficient_inventory_sends_nothing(engine, make_order):
    engine.inventory.items = []
    with pytest.raises(InsufficientInventoryError) as ei:
        await sent_proposal(engine, make_order(2, quantity="1"))

    assert ei.value.have == 0 and ei.value.need == 1
    assert engine.session.sent == []
    assert len(engine.store) == 0


@pytest.mark.asyncio
async def test_dispatch_wraps_unexpected_inventory_errors(engine, make_order):
    engine.inventory.error = RuntimeError("boom")
    with pytest.raises(InventoryFetchError):
        await sent_proposal(engine, make_order(2))
    assert engine.ledger.writes == []


@pytest.mark.asyncio
async def test_accepted_marks_fulfilled(engine, make_order):
    proposal = await sent_proposal(engine, make_order(2))

    await engine.offers.on_resolved(ProposalResolved(proposal.proposal_id, ProposalOutcome.ACCEPTED))

    assert status_of(engine, 2) is FulfillmentStatus.FULFILLED
    assert proposal.outcome is ProposalOutcome.ACCEPTED
    assert proposal.resolved_ms is not None
    assert engine.store.open_proposals() == []


@pytest.mark.asyncio
async def test_declined_marks_rejected(engine, make_order):
    proposal = await sent_proposal(engine, make_order(3, queue=QueueKind.INBOUND))

    await engine.offers.on_resolved(ProposalResolved(proposal.proposal_id, ProposalOutcome.DECLINED))

    assert status_of(engine, 3, QueueKind.INBOUND) is FulfillmentStatus.REJECTED


@pytest.mark.asyncio
async def test_outcome_delivered_through_event_bus(engine, make_order):
    proposal = await sent_proposal(engine, make_order(2))

    await engine.bus.publish(TOPIC_PROPOSAL_RESOLVED, ProposalResolved(proposal.proposal_id, ProposalOutcome.ACCEPTED))

    assert status_of(engine, 2) is FulfillmentStatus.FULFILLED


@pytest.mark.asyncio
async def test_duplicate_outcome_is_noop(engine, make_order):
    proposal = await sent_proposal(engine, make_order(2))
    event = ProposalResolved(proposal.proposal_id, ProposalOutcome.ACCEPTED)

    await engine.offers.on_resolved(event)
    writes = list(engine.ledger.writes)
    await engine.offers.on_resolved(event)

    assert engine.ledger.writes == writes
    assert status_of(engine, 2) is FulfillmentStatus.FULFILLED


@pytest.mark.asyncio
async def test_conflicting_outcome_keeps_first_terminal(engine, make_order):
    proposal = await sent_proposal(engine, make_order(2))

    await engine.offers.on_resolved(ProposalResolved(proposal.proposal_id, ProposalOutcome.ACCEPTED))
    await engine.offers.on_resolved(ProposalResolved(proposal.proposal_id, ProposalOutcome.DECLINED))

    assert status_of(engine, 2) is FulfillmentStatus.FULFILLED
    assert proposal.outcome is ProposalOutcome.ACCEPTED


@pytest.mark.asyncio
async def test_late_created_write_never_overwrites_terminal(engine, make_order):
    proposal = await sent_proposal(engine, make_order(2))
    await engine.offers.on_resolved(ProposalResolved(proposal.proposal_id, ProposalOutcome.DECLINED))
    writes = list(engine.ledger.writes)

    ok = await engine.offers._write_status(proposal, FulfillmentStatus.PROPOSAL_CREATED)

    assert ok is False
    assert engine.ledger.writes == writes
    assert status_of(engine, 2) is FulfillmentStatus.REJECTED


@pytest.mark.asyncio
async def test_instant_accept_waits_for_created_write(engine, make_order):
    """An outcome raised while send() is still in flight lands after ProposalCreated."""
    tasks = []

    async def resolve_immediately(handle):
        tasks.append(asyncio.create_task(
            engine.bus.publish(TOPIC_PROPOSAL_RESOLVED, ProposalResolved(handle.id, ProposalOutcome.ACCEPTED))
        ))
        await asyncio.sleep(0)

    engine.session.on_send = resolve_immediately
    await sent_proposal(engine, make_order(2))
    await asyncio.gather(*tasks)

    assert [w[3] for w in engine.ledger.writes] == ["Трейд создан", "Выполнен"]
    assert status_of(engine, 2) is FulfillmentStatus.FULFILLED


@pytest.mark.asyncio
async def test_terminal_write_failure_is_tracked_then_retried(engine, make_order):
    proposal = await sent_proposal(engine, make_order(2))
    engine.ledger.fail_writes = 1
    event = ProposalResolved(proposal.proposal_id, ProposalOutcome.ACCEPTED)

    await engine.offers.on_resolved(event)

    assert engine.offers.inconsistencies == {(QueueKind.OUTBOUND, 2): FulfillmentStatus.FULFILLED}
    assert status_of(engine, 2) is FulfillmentStatus.PROPOSAL_CREATED
    assert engine.store.get_by_order((QueueKind.OUTBOUND, 2)) is proposal

    await engine.offers.on_resolved(event)

    assert engine.offers.inconsistencies == {}
    assert status_of(engine, 2) is FulfillmentStatus.FULFILLED
    assert engine.store.get_by_order((QueueKind.OUTBOUND, 2)) is None


@pytest.mark.asyncio
async def test_unmapped_outcome_leaves_row(engine, make_order):
    proposal = await sent_proposal(engine, make_order(2))
    writes = list(engine.ledger.writes)

    await engine.offers.on_resolved(ProposalResolved(proposal.proposal_id, ProposalOutcome.EXPIRED))

    assert engine.ledger.writes == writes
    assert proposal.outcome is ProposalOutcome.EXPIRED
    assert status_of(engine, 2) is FulfillmentStatus.PROPOSAL_CREATED


@pytest.mark.asyncio
async def test_unknown_proposal_is_ignored(engine):
    await engine.offers.on_resolved(ProposalResolved("nope", ProposalOutcome.ACCEPTED))
    assert engine.ledger.writes == []


@pytest.mark.asyncio
async def test_expire_stale_disabled_by_default(engine, make_order):
    await sent_proposal(engine, make_order(2))
    assert await engine.offers.expire_stale(now_ms=10 ** 15) == []
    assert engine.session.cancelled == []


@pytest.mark.asyncio
async def test_expire_stale_cancels_and_rejects(engine, make_order):
    engine.settings.proposal_ttl_s = 60
    old = await sent_proposal(engine, make_order(2))
    fresh = await sent_proposal(engine, make_order(3))
    old.created_ms = fresh.created_ms - 120_000

    expired = await engine.offers.expire_stale(now_ms=fresh.created_ms)

    assert expired == [old]
    assert engine.session.cancelled == [old.proposal_id]
    assert old.outcome is ProposalOutcome.EXPIRED
    assert status_of(engine, 2) is FulfillmentStatus.REJECTED
    assert status_of(engine, 3) is FulfillmentStatus.PROPOSAL_CREATED


@pytest.mark.asyncio
async def test_expire_stale_keeps_proposal_when_cancel_fails(engine, make_order):
    engine.settings.proposal_ttl_s = 60
    proposal = await sent_proposal(engine, make_order(2))
    engine.session.fail_cancel = True

    expired = await engine.offers.expire_stale(now_ms=proposal.created_ms + 61_000)

    assert expired == []
    assert status_of(engine, 2) is FulfillmentStatus.PROPOSAL_CREATED


@pytest.mark.asyncio
async def test_expire_stale_skips_cancel_for_ended_offers(engine, make_order):
    engine.settings.proposal_ttl_s = 60
    proposal = await sent_proposal(engine, make_order(2))
    await engine.offers.on_resolved(ProposalResolved(proposal.proposal_id, ProposalOutcome.COUNTERED))

    expired = await engine.offers.expire_stale(now_ms=proposal.created_ms + 61_000)

    assert expired == [proposal]
    assert engine.session.cancelled == []
    assert proposal.outcome is ProposalOutcome.COUNTERED
    assert status_of(engine, 2) is FulfillmentStatus.REJECTED


@pytest.mark.asyncio
async def test_settled_proposals_are_evicted(engine, make_order):
    accepted = await sent_proposal(engine, make_order(2))
    declined = await sent_proposal(engine, make_order(3))
    pending = await sent_proposal(engine, make_order(4))
    assert len(engine.store) == 3

    await engine.offers.on_resolved(ProposalResolved(accepted.proposal_id, ProposalOutcome.ACCEPTED))
    await engine.offers.on_resolved(ProposalResolved(declined.proposal_id, ProposalOutcome.DECLINED))

    assert len(engine.store) == 1
    assert engine.store.get(accepted.proposal_id) is None
    assert engine.store.get(pending.proposal_id) is pending
    assert set(engine.store.tracked()) == {(QueueKind.OUTBOUND, 4)}


@pytest.mark.asyncio
async def test_unmapped_outcome_without_ttl_stops_tracking(engine, make_order):
    proposal = await sent_proposal(engine, make_order(2))

    await engine.offers.on_resolved(ProposalResolved(proposal.proposal_id, ProposalOutcome.CANCELED))

    assert len(engine.store) == 0
    assert status_of(engine, 2) is FulfillmentStatus.PROPOSAL_CREATED


@pytest.mark.asyncio
async def test_message_braces_are_sent_verbatim(engine, make_order):
    engine.settings.outbound_message = "Keys {for} you: {quantity} {}"
    engine.settings.inbound_message = "Send {quantity} keys :}"
    await sent_proposal(engine, make_order(2, quantity="3"))
    await sent_proposal(engine, make_order(3, queue=QueueKind.INBOUND, quantity="5"))

    assert [h.message for h in engine.session.sent] == ["Keys {for} you: 3 {}", "Send 5 keys :}"]
