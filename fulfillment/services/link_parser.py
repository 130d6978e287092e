# fulfillment/services/link_parser.py
from __future__ import annotations
import re
from typing import Any

from fulfillment.models import PartnerLink, STEAM_ID64_BASE
from fulfillment.errors import LinkFormatError

_PARTNER_RE = re.compile(r"partner=(\d+)")
_TOKEN_RE = re.compile(r"token=([A-Za-z0-9_-]+)")


def to_steam_id64(account_id: int | str) -> str:
    """Short-form account id from a trade URL -> 64-bit steam id."""
    return str(int(account_id) + STEAM_ID64_BASE)


def parse_partner_link(raw: Any) -> PartnerLink:
    """
    Extract partner account id and access token from a trade-offer URL, e.g.
    https://steamcommunity.com/tradeoffer/new/?partner=111&token=ABC

    Fields are matched independently, so parameter order does not matter.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise LinkFormatError("Empty trade link", link=raw)

    partner = _PARTNER_RE.search(raw)
    token = _TOKEN_RE.search(raw)
    if not partner or not token:
        raise LinkFormatError(
            "Trade link must contain partner and token",
            link=raw, partner=bool(partner), token=bool(token),
        )
    return PartnerLink(account_id=int(partner.group(1)), access_token=token.group(1))
