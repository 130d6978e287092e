# tests/conftest.py
import os
import sys
import tempfile
from pathlib import Path
from types import SimpleNamespace

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
# keep test runs from writing into the project's logs/
os.environ.setdefault("KEYFLOW_LOG_DIR", tempfile.mkdtemp(prefix="keyflow-logs-"))

import pytest

from fulfillment.config import FulfillmentSettings, LedgerConfig, StatusLabels
from fulfillment.enums import QueueKind
from fulfillment.errors import LedgerReadError, LedgerWriteError, SendError
from fulfillment.event_bus import EventBus
from fulfillment.models import InventoryItem, OrderRecord
from fulfillment.services.offer_service import OfferService
from fulfillment.services.reconcile_service import ReconcileService
from fulfillment.stores.proposal_store import ProposalStore

KEY = "Mann Co. Supply Crate Key"
LINK = "https://steamcommunity.com/tradeoffer/new/?partner=111&token=ABC"


class FakeLedger:
    """In-memory ledger; writes are applied to the rows so later reads observe them."""

    def __init__(self, labels: StatusLabels):
        self.labels = labels
        self.rows = {QueueKind.OUTBOUND: [], QueueKind.INBOUND: []}
        self.writes = []
        self.reads = 0
        self.fail_reads = set()
        self.fail_writes = 0

    def add(self, order: OrderRecord) -> OrderRecord:
        self.rows[order.queue].append(order)
        return order

    def row(self, queue: QueueKind, row_id: int) -> OrderRecord:
        return next(r for r in self.rows[queue] if r.row_id == row_id)

    async def list_orders(self, queue):
        self.reads += 1
        if queue in self.fail_reads:
            raise LedgerReadError(f"{queue.value} unavailable")
        return [OrderRecord(**vars(r)) for r in self.rows[queue]]

    async def write_field(self, queue, row_id, field, value):
        if self.fail_writes:
            self.fail_writes -= 1
            raise LedgerWriteError("sheet quota exceeded", row=row_id)
        self.writes.append((queue, row_id, field, value))
        row = self.row(queue, row_id)
        row.fulfillment_raw = value
        row.fulfillment_status = self.labels.parse(value)

    async def validate_schema(self):
        return None


class FakeHandle:
    def __init__(self, session, partner_id64, access_token):
        self._session = session
        self.partner_id64 = partner_id64
        self.access_token = access_token
        self.items = []
        self.message = ""
        self.id = None

    def attach_item(self, item):
        self.items.append(item)

    def set_message(self, message):
        self.message = message

    async def send(self):
        if self._session.fail_sends:
            self._session.fail_sends -= 1
            raise SendError("steam busy")
        self._session.counter += 1
        self.id = f"offer-{self._session.counter}"
        self._session.sent.append(self)
        if self._session.on_send is not None:
            await self._session.on_send(self)
        return self.id


class FakeSession:
    def __init__(self):
        self.counter = 0
        self.sent = []
        self.cancelled = []
        self.fail_sends = 0
        self.fail_cancel = False
        self.on_send = None

    def create_proposal(self, partner_id64, access_token):
        return FakeHandle(self, partner_id64, access_token)

    async def cancel_proposal(self, proposal_id):
        if self.fail_cancel:
            raise SendError("cancel refused", id=proposal_id)
        self.cancelled.append(proposal_id)


class FakeInventory:
    def __init__(self, items=()):
        self.items = list(items)
        self.calls = 0
        self.error = None

    async def fetch_inventory(self, app_id, context_id):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.items)


def keys(n, name=KEY, start=1):
    return [InventoryItem(asset_id=str(i), name=name) for i in range(start, start + n)]


@pytest.fixture
def labels():
    return StatusLabels()


@pytest.fixture
def ledger_cfg():
    return LedgerConfig(spreadsheet_id="sheet-1")


@pytest.fixture
def settings():
    return FulfillmentSettings()


@pytest.fixture
def make_order(ledger_cfg, labels):
    def _make(row_id, queue=QueueKind.OUTBOUND, quantity="2", link=LINK, order_status=None, status=""):
        if order_status is None:
            order_status = ledger_cfg.queue(queue).pending_label
        return OrderRecord(
            row_id=row_id,
            queue=queue,
            username=f"user{row_id}",
            quantity_raw=quantity,
            link_raw=link,
            order_status=order_status,
            fulfillment_status=labels.parse(status),
            fulfillment_raw=status,
        )
    return _make


@pytest.fixture
def engine(labels, ledger_cfg, settings):
    """Wired engine over fakes: ledger, session, inventory, store, bus, offers, reconciler."""
    ledger = FakeLedger(labels)
    session = FakeSession()
    inventory = FakeInventory(keys(10))
    store = ProposalStore()
    bus = EventBus()
    offers = OfferService(session, inventory, ledger, store, bus, settings, labels)
    reconciler = ReconcileService(ledger, offers, ledger_cfg, settings)
    return SimpleNamespace(
        ledger=ledger, session=session, inventory=inventory, store=store,
        bus=bus, offers=offers, reconciler=reconciler, labels=labels, settings=settings,
    )
