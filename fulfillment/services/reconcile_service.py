# fulfillment/services/reconcile_service.py
from __future__ import annotations

import asyncio
import re
import time
from typing import Iterable, Mapping, Optional, Sequence

from fulfillment.config import FulfillmentSettings, LedgerConfig
from fulfillment.enums import QueueKind, FulfillmentStatus
from fulfillment.errors import QuantityError, ValidationError
from fulfillment.models import CycleIntent, CyclePlan, CycleReport, OrderKey, OrderRecord, PartnerLink, TrackedOrder
from fulfillment.ports import LedgerGateway
from fulfillment.services.link_parser import parse_partner_link
from fulfillment.services.offer_service import OfferService
from utils.logger import logger as default_logger

QUEUE_ORDER = (QueueKind.OUTBOUND, QueueKind.INBOUND)

_QTY_RE = re.compile(r"\s*(\d+)\s*")


def parse_quantity(raw) -> int:
    """Strict positive integer; "3.5", "0", "-2", "three" are all rejected."""
    if isinstance(raw, bool):
        raise QuantityError("Quantity must be a positive integer", quantity=raw)
    if isinstance(raw, int):
        value = raw
    else:
        m = _QTY_RE.fullmatch(str(raw if raw is not None else ""))
        if not m:
            raise QuantityError("Quantity must be a positive integer", quantity=raw)
        value = int(m.group(1))
    if value <= 0:
        raise QuantityError("Quantity must be a positive integer", quantity=raw)
    return value


def _same_partner(row: OrderRecord, partner: PartnerLink) -> bool:
    try:
        return parse_partner_link(row.link_raw) == partner
    except ValidationError:
        return False


def plan_cycle(
    queue: QueueKind,
    rows: Sequence[OrderRecord],
    pending_label: str,
    tracked: Optional[Mapping[OrderKey, TrackedOrder]] = None,
) -> CyclePlan:
    """
    Decide, without side effects, what one queue needs this cycle:
    - intents: pending rows with Empty status and valid quantity/link, in ledger order
    - repairs: tracked rows still behind a status whose write failed
    - released: tracked rows that now hold a different order, or were reset by an operator
    - skipped: pending rows rejected by validation, with the reason
    Rows already in flight or done, and non-pending rows, are left out.

    A released row is planned like any other row in the same pass.
    """
    tracked = tracked or {}
    plan = CyclePlan(queue=queue)

    for row in rows:
        known = tracked.get(row.key)
        if known is not None:
            if _same_partner(row, known.partner):
                if row.fulfillment_status is None or row.fulfillment_status.rank >= known.status.rank:
                    continue
                if known.write_pending:
                    plan.repairs.append(row)
                    continue
            plan.released.append(row.key)

        if row.order_status.strip() != pending_label:
            continue
        if row.fulfillment_status is None:
            plan.skipped[row.row_id] = f"unrecognized fulfillment status {row.fulfillment_raw!r}"
            continue
        if row.fulfillment_status is not FulfillmentStatus.EMPTY:
            continue

        try:
            quantity = parse_quantity(row.quantity_raw)
            partner = parse_partner_link(row.link_raw)
        except ValidationError as e:
            plan.skipped[row.row_id] = str(e)
            continue
        plan.intents.append(CycleIntent(order=row, partner=partner, quantity=quantity))

    return plan


class ReconcileService:
    """
    Fixed-interval driver: each cycle loads both queues, plans them and
    dispatches eligible orders to the OfferService, one queue at a time. One bad
    row never aborts the cycle, and a queue whose ledger load fails is skipped
    while the other queue still runs.
    """

    def __init__(
        self,
        ledger: LedgerGateway,
        offers: OfferService,
        ledger_cfg: LedgerConfig,
        settings: FulfillmentSettings,
        *,
        logger=None,
    ) -> None:
        self._ledger = ledger
        self._offers = offers
        self._ledger_cfg = ledger_cfg
        self._settings = settings
        self._log = logger or default_logger
        self._stop = asyncio.Event()
        self.cycles = 0

    async def run_cycle(self, queues: Iterable[QueueKind] = QUEUE_ORDER) -> CycleReport:
        report = CycleReport()
        self.cycles += 1

        for queue in queues:
            try:
                rows = list(await self._ledger.list_orders(queue))
            except Exception as e:
                report.aborted_queues.append(queue)
                report.errors.append(f"{queue.value}: {e}")
                self._log.error(f"[cycle {self.cycles}] ledger load failed for {queue.value}, queue skipped: {e}")
                continue
            await self._run_queue(queue, rows, report)

        try:
            await self._offers.expire_stale()
        except Exception as e:
            self._log.error(f"[cycle {self.cycles}] stale proposal sweep failed: {e}")

        self._log.info(
            f"[cycle {self.cycles}] done: seen={report.seen} eligible={report.eligible} "
            f"sent={report.sent} skipped={report.skipped} failed={report.failed}"
            + (f" down={','.join(q.value for q in report.aborted_queues)}" if report.aborted else "")
        )
        return report

    async def _run_queue(self, queue: QueueKind, rows: Sequence[OrderRecord], report: CycleReport) -> None:
        pending_label = self._ledger_cfg.queue(queue).pending_label
        plan = plan_cycle(queue, rows, pending_label, self._offers.store.tracked())
        report.merge_plan(plan, seen=len(rows))
        self._log.debug(
            f"[cycle {self.cycles}] {queue.value}: rows={len(rows)} eligible={len(plan.intents)} "
            f"repairs={len(plan.repairs)} released={len(plan.released)} skipped={len(plan.skipped)}"
        )
        for row_id, reason in plan.skipped.items():
            self._log.warning(f"[cycle {self.cycles}] {queue.value} row {row_id} skipped: {reason}")

        if plan.released:
            async with self._offers.lock:
                for key in plan.released:
                    self._offers.release(key)

        for row in plan.repairs:
            try:
                async with self._offers.lock:
                    await self._offers.repair(row)
            except Exception as e:
                report.errors.append(f"{queue.value} row {row.row_id}: {e}")
                self._log.error(f"[cycle {self.cycles}] repair of {queue.value} row {row.row_id} failed: {e}")

        for intent in plan.intents:
            await self._process(intent, report)

    async def _process(self, intent: CycleIntent, report: CycleReport) -> None:
        order = intent.order
        tag = f"[cycle {self.cycles}] {order.queue.value} row {order.row_id}"
        try:
            async with self._offers.lock:
                await self._offers.dispatch(intent)
            report.sent += 1
        except ValidationError as e:
            report.skipped += 1
            self._log.warning(f"{tag} skipped: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            report.failed += 1
            report.errors.append(f"{order.queue.value} row {order.row_id}: {e}")
            self._log.error(f"{tag} failed: {e}")

    async def run_forever(self) -> None:
        interval = self._settings.poll_interval_s
        self._log.info(f"🚀 Reconciler started, polling every {interval:g}s")
        while not self._stop.is_set():
            started = time.monotonic()
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._log.opt(exception=e).error(f"[cycle {self.cycles}] unexpected error: {e}")

            delay = max(0.0, interval - (time.monotonic() - started))
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        self._log.info("Reconciler stopped")

    def stop(self) -> None:
        self._stop.set()
