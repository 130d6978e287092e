# ledger/sheets_gateway.py
from __future__ import annotations

import asyncio
from typing import Dict, List, Optional
from urllib.parse import quote

from fulfillment.config import LedgerConfig
from fulfillment.enums import QueueKind
from fulfillment.errors import LedgerReadError, LedgerSchemaError, LedgerWriteError, HttpError
from fulfillment.models import OrderRecord
from infra import HttpPort
from utils.logger import logger as default_logger

SHEETS_BASE = "https://sheets.googleapis.com"


def col_letter(index: int) -> str:
    """0-based column index -> A1 letter (0 -> A, 25 -> Z, 26 -> AA)."""
    if index < 0:
        raise ValueError("column index must be >= 0")
    letters = ""
    n = index + 1
    while n:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def _cell(row: List[str], idx: int) -> str:
    return str(row[idx]) if idx < len(row) and row[idx] is not None else ""


class SheetsLedgerGateway:
    """
    LedgerGateway over the Google Sheets v4 values API.

    Each queue is one sheet; row 1 holds headers and columns are located by
    header name (see ColumnSchema), never by letter. Row ids are 1-based
    sheet row numbers.
    """

    def __init__(self, http_client: HttpPort, ledger_cfg: LedgerConfig, *, logger=None) -> None:
        self._http = http_client
        self._cfg = ledger_cfg
        self._log = logger or default_logger
        self._columns: Dict[QueueKind, Dict[str, int]] = {}
        self._lock = asyncio.Lock()

    def _values_path(self, a1_range: str) -> str:
        return f"/v4/spreadsheets/{self._cfg.spreadsheet_id}/values/{quote(a1_range, safe='')}"

    def _sheet_range(self, queue: QueueKind, suffix: str = "") -> str:
        sheet = self._cfg.queue(queue).sheet.replace("'", "''")
        return f"'{sheet}'" + (f"!{suffix}" if suffix else "")

    def _map_headers(self, queue: QueueKind, header_row: List[str]) -> Dict[str, int]:
        headers = [str(h).strip() for h in header_row]
        mapping: Dict[str, int] = {}
        missing = []
        for field, header in self._cfg.columns.headers().items():
            if header in headers:
                mapping[field] = headers.index(header)
            else:
                missing.append(header)
        if missing:
            raise LedgerSchemaError(
                f"Sheet '{self._cfg.queue(queue).sheet}' is missing columns",
                missing=missing, found=headers,
            )
        return mapping

    async def _get_values(self, a1_range: str) -> List[List[str]]:
        payload = await self._http.get_json(
            self._values_path(a1_range),
            params={"majorDimension": "ROWS", "valueRenderOption": "FORMATTED_VALUE"},
        )
        return payload.get("values") or []

    async def validate_schema(self) -> None:
        """Check both sheets' header rows once at startup; raises LedgerSchemaError."""
        for queue in (QueueKind.OUTBOUND, QueueKind.INBOUND):
            try:
                values = await self._get_values(self._sheet_range(queue, "1:1"))
            except HttpError as e:
                raise LedgerSchemaError(
                    f"Cannot read header row of '{self._cfg.queue(queue).sheet}': {e}"
                ) from e
            mapping = self._map_headers(queue, values[0] if values else [])
            async with self._lock:
                self._columns[queue] = mapping
            self._log.info(f"[ledger] {queue.value} sheet '{self._cfg.queue(queue).sheet}' columns={mapping}")

    async def list_orders(self, queue: QueueKind) -> List[OrderRecord]:
        try:
            values = await self._get_values(self._sheet_range(queue))
        except HttpError as e:
            raise LedgerReadError(f"Loading {queue.value} sheet failed: {e}") from e
        if not values:
            return []

        mapping = self._map_headers(queue, values[0])
        async with self._lock:
            self._columns[queue] = mapping

        status_header = self._cfg.columns.order_status
        orders: List[OrderRecord] = []
        for offset, row in enumerate(values[1:]):
            row_id = offset + 2
            if not any(str(c).strip() for c in row):
                continue
            order_status = _cell(row, mapping["order_status"]).strip()
            if order_status == status_header:
                continue
            fulfillment_raw = _cell(row, mapping["fulfillment_status"]).strip()
            orders.append(OrderRecord(
                row_id=row_id,
                queue=queue,
                username=_cell(row, mapping["username"]).strip(),
                quantity_raw=_cell(row, mapping["quantity"]),
                link_raw=_cell(row, mapping["link"]).strip(),
                order_status=order_status,
                fulfillment_status=self._cfg.statuses.parse(fulfillment_raw),
                fulfillment_raw=fulfillment_raw,
            ))
        return orders

    async def _column_index(self, queue: QueueKind, field: str) -> int:
        async with self._lock:
            mapping: Optional[Dict[str, int]] = self._columns.get(queue)
        if mapping is None:
            await self.validate_schema()
            mapping = self._columns[queue]
        if field not in mapping:
            raise LedgerWriteError(f"Unknown ledger field {field!r}")
        return mapping[field]

    async def write_field(self, queue: QueueKind, row_id: int, field: str, value: str) -> None:
        if row_id < 2:
            raise LedgerWriteError("Refusing to write into the header row", row=row_id)
        try:
            a1 = self._sheet_range(queue, f"{col_letter(await self._column_index(queue, field))}{row_id}")
            await self._http.put_json(
                self._values_path(a1),
                {"range": a1, "majorDimension": "ROWS", "values": [[value]]},
                params={"valueInputOption": "RAW"},
            )
        except LedgerWriteError:
            raise
        except Exception as e:
            raise LedgerWriteError(f"Write {field}={value!r} failed: {e}", queue=queue.value, row=row_id) from e
        self._log.debug(f"[ledger] {queue.value} row {row_id} {field}={value!r}")
