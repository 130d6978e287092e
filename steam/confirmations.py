# steam/confirmations.py
from __future__ import annotations

import asyncio
from typing import Any, Dict, List

from fulfillment.errors import TransportError
from fulfillment.stores.proposal_store import ProposalStore
from infra import HttpPort
from steam.guard import device_id, generate_confirmation_key
from steam.trade_client import COMMUNITY
from utils.logger import logger as default_logger
from utils.time import utc_s

CONF_TYPE_TRADE = 2


class ConfirmationChecker:
    """
    Accepts pending mobile confirmations for trade offers this process sent.
    Outbound offers that move our items stay inactive until confirmed.
    """

    def __init__(self, http_client: HttpPort, steam_id64: str, identity_secret: str, store: ProposalStore,
                 interval_s: float = 15.0, *, logger=None) -> None:
        self._http = http_client
        self._steam_id = str(steam_id64)
        self._secret = identity_secret
        self._device = device_id(self._steam_id)
        self._store = store
        self._interval = interval_s
        self._log = logger or default_logger
        self._stop = asyncio.Event()

    def _params(self, tag: str) -> Dict[str, Any]:
        t = utc_s()
        return {
            "p": self._device,
            "a": self._steam_id,
            "k": generate_confirmation_key(self._secret, t, tag),
            "t": t,
            "m": "react",
            "tag": tag,
        }

    async def list_pending(self) -> List[Dict[str, Any]]:
        resp = await self._http.get_json(f"{COMMUNITY}/mobileconf/getlist", params=self._params("list"))
        if not resp.get("success"):
            raise TransportError(f"Confirmation list failed: {resp.get('message') or resp}")
        return list(resp.get("conf") or [])

    async def check_once(self) -> int:
        accepted = 0
        for conf in await self.list_pending():
            if int(conf.get("type", 0)) != CONF_TYPE_TRADE:
                continue
            offer_id = str(conf.get("creator_id"))
            if self._store.get(offer_id) is None:
                continue
            params = self._params("allow")
            params.update({"op": "allow", "cid": conf["id"], "ck": conf["nonce"]})
            resp = await self._http.get_json(f"{COMMUNITY}/mobileconf/ajaxop", params=params)
            if resp.get("success"):
                accepted += 1
                self._log.info(f"[confirm] offer {offer_id} confirmed")
            else:
                self._log.warning(f"[confirm] offer {offer_id} confirmation refused: {resp}")
        return accepted

    async def run_forever(self) -> None:
        while not self._stop.is_set():
            try:
                await self.check_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._log.warning(f"[confirm] check failed: {e}")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        self._stop.set()
