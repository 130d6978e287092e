# steam/trade_client.py
from __future__ import annotations

import json
import secrets
from typing import Any, Dict, List, Mapping, Optional

from fulfillment.config import SteamCredentials
from fulfillment.enums import OfferState
from fulfillment.errors import HttpError, InventoryFetchError, SendError, TransportError
from fulfillment.models import InventoryItem, STEAM_ID64_BASE
from infra import HttpClient, HttpPort
from utils.logger import logger as default_logger

COMMUNITY = "https://steamcommunity.com"
WEB_API = "https://api.steampowered.com"
INVENTORY_PAGE = 2000


class SteamProposal:
    """A trade offer being assembled; sent through the owning SteamTradeClient."""

    def __init__(self, client: "SteamTradeClient", partner_id64: str, access_token: str) -> None:
        self._client = client
        self.partner_id64 = str(partner_id64)
        self.access_token = access_token
        self.items: List[InventoryItem] = []
        self.message = ""
        self.id: Optional[str] = None

    def attach_item(self, item: InventoryItem) -> None:
        self.items.append(item)

    def set_message(self, message: str) -> None:
        self.message = message

    async def send(self) -> str:
        if self.id is not None:
            raise SendError("Proposal already sent", id=self.id)
        self.id = await self._client._send_offer(self)
        return self.id


class SteamTradeClient:
    """
    TradeSession + InventorySource over the steamcommunity.com web endpoints,
    authenticated by the steamLoginSecure cookie of an existing web session.
    """

    def __init__(self, http_client: HttpPort, steam_id64: str, access_token: str, session_id: str, *, logger=None) -> None:
        self._http = http_client
        self.steam_id64 = str(steam_id64)
        self._access_token = access_token
        self._session_id = session_id
        self._log = logger or default_logger

    @classmethod
    def from_credentials(cls, creds: SteamCredentials, http_cfg: Optional[Mapping[str, Any]] = None, *, logger=None) -> "SteamTradeClient":
        session_id = secrets.token_hex(12)
        http = HttpClient(
            cfg=http_cfg,
            logger=logger,
            cookies={"steamLoginSecure": creds.login_secure, "sessionid": session_id},
            headers={"User-Agent": "Mozilla/5.0 (keyflow)"},
        )
        return cls(http, creds.steam_id64, creds.access_token, session_id, logger=logger)

    @property
    def http(self):
        return self._http

    async def close(self) -> None:
        await self._http.close()

    # ---- TradeSession ---------------------------------------------------------
    def create_proposal(self, partner_id64: str, access_token: str) -> SteamProposal:
        return SteamProposal(self, partner_id64, access_token)

    async def _send_offer(self, proposal: SteamProposal) -> str:
        offer = {
            "newversion": True,
            "version": len(proposal.items) + 1,
            "me": {"assets": [it.as_asset() for it in proposal.items], "currency": [], "ready": False},
            "them": {"assets": [], "currency": [], "ready": False},
        }
        form = {
            "sessionid": self._session_id,
            "serverid": "1",
            "partner": proposal.partner_id64,
            "tradeoffermessage": proposal.message,
            "json_tradeoffer": json.dumps(offer, separators=(",", ":")),
            "captcha": "",
            "trade_offer_create_params": json.dumps({"trade_offer_access_token": proposal.access_token}),
        }
        account_id = int(proposal.partner_id64) - STEAM_ID64_BASE
        referer = f"{COMMUNITY}/tradeoffer/new/?partner={account_id}&token={proposal.access_token}"

        # no retry: a repeated POST could create a second offer
        try:
            resp = await self._http.post_form(f"{COMMUNITY}/tradeoffer/new/send", form,
                                              headers={"Referer": referer}, retry=False)
        except HttpError as e:
            raise SendError(f"Trade offer POST failed: {e}", partner=proposal.partner_id64) from e

        offer_id = (resp or {}).get("tradeofferid")
        if not offer_id:
            raise SendError(f"Trade offer rejected: {(resp or {}).get('strError') or resp}", partner=proposal.partner_id64)
        if resp.get("needs_mobile_confirmation"):
            self._log.info(f"[steam] offer {offer_id} awaits mobile confirmation")
        return str(offer_id)

    async def cancel_proposal(self, proposal_id: str) -> None:
        try:
            await self._http.post_form(f"{COMMUNITY}/tradeoffer/{proposal_id}/cancel",
                                       {"sessionid": self._session_id}, retry=False)
        except HttpError as e:
            raise TransportError(f"Cancel of offer {proposal_id} failed: {e}") from e

    async def get_offer_state(self, proposal_id: str) -> OfferState:
        resp = await self._http.get_json(
            f"{WEB_API}/IEconService/GetTradeOffer/v1/",
            params={"access_token": self._access_token, "tradeofferid": proposal_id, "language": "en"},
        )
        offer = (resp.get("response") or {}).get("offer")
        if not offer:
            raise TransportError(f"Offer {proposal_id} not found")
        return OfferState(int(offer["trade_offer_state"]))

    # ---- InventorySource ------------------------------------------------------
    async def fetch_inventory(self, app_id: int, context_id: str) -> List[InventoryItem]:
        """Tradable items of our own account, in the order Steam lists them."""
        url = f"{COMMUNITY}/inventory/{self.steam_id64}/{app_id}/{context_id}"
        params: Dict[str, Any] = {"l": "english", "count": INVENTORY_PAGE}
        items: List[InventoryItem] = []
        while True:
            try:
                page = await self._http.get_json(url, params=params)
            except HttpError as e:
                raise InventoryFetchError(f"Inventory fetch failed: {e}", app_id=app_id) from e
            if not page or page.get("success") not in (1, True):
                raise InventoryFetchError(f"Inventory fetch unsuccessful: {page}", app_id=app_id)

            items.extend(parse_inventory_page(page, app_id, context_id))
            if not page.get("more_items"):
                break
            params["start_assetid"] = page["last_assetid"]
        return items


def parse_inventory_page(page: Mapping[str, Any], app_id: int, context_id: str) -> List[InventoryItem]:
    descriptions = {
        (str(d.get("classid")), str(d.get("instanceid", "0"))): d
        for d in page.get("descriptions") or []
    }
    out: List[InventoryItem] = []
    for asset in page.get("assets") or []:
        desc = descriptions.get((str(asset.get("classid")), str(asset.get("instanceid", "0"))))
        if not desc or not desc.get("tradable"):
            continue
        out.append(InventoryItem(
            asset_id=str(asset["assetid"]),
            name=desc.get("name") or desc.get("market_hash_name", ""),
            app_id=int(asset.get("appid", app_id)),
            context_id=str(asset.get("contextid", context_id)),
            amount=int(asset.get("amount", 1)),
        ))
    return out
