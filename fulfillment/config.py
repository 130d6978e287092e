# fulfillment/config.py
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from fulfillment.enums import QueueKind, FulfillmentStatus
from fulfillment.errors import ConfigError


class ColumnSchema(BaseModel):
    """Header names of the ledger columns, one named field each."""
    username: str = "Username"
    quantity: str = "Количество ключей"
    link: str = "Трейд-ссылка"
    order_status: str = "Статус заказа"
    fulfillment_status: str = "Статус отправки"

    def headers(self) -> Dict[str, str]:
        return self.model_dump()


class StatusLabels(BaseModel):
    """Cell values the ledger uses for each fulfillment status."""
    empty: str = ""
    proposal_created: str = "Трейд создан"
    fulfilled: str = "Выполнен"
    rejected: str = "Отклонён"

    def label(self, status: FulfillmentStatus) -> str:
        return getattr(self, status.value)

    def parse(self, raw: Optional[str]) -> Optional[FulfillmentStatus]:
        value = (raw or "").strip()
        if not value or value == self.empty:
            return FulfillmentStatus.EMPTY
        for st in FulfillmentStatus:
            if value == self.label(st):
                return st
        return None


class QueueConfig(BaseModel):
    sheet: str
    pending_label: str


class LedgerConfig(BaseModel):
    spreadsheet_id: str = Field(min_length=1)
    columns: ColumnSchema = ColumnSchema()
    statuses: StatusLabels = StatusLabels()
    outbound: QueueConfig = QueueConfig(sheet="Покупка_ключей", pending_label="Ожидает отправки")
    inbound: QueueConfig = QueueConfig(sheet="Продажа_ключей", pending_label="Ожидает получения")

    def queue(self, kind: QueueKind) -> QueueConfig:
        return self.outbound if kind is QueueKind.OUTBOUND else self.inbound


@dataclass
class SteamCredentials:
    """Trading session secrets; never logged in clear."""
    username: str
    password: str
    shared_secret: str
    identity_secret: str
    login_secure: str           # steamLoginSecure cookie, "<steamid64>||<access token>"

    @property
    def steam_id64(self) -> str:
        return self._split()[0]

    @property
    def access_token(self) -> str:
        return self._split()[1]

    def _split(self) -> tuple[str, str]:
        raw = self.login_secure.replace("%7C%7C", "||")
        steam_id, sep, token = raw.partition("||")
        if not sep or not steam_id.isdigit() or not token:
            raise ConfigError("Malformed STEAM_LOGIN_SECURE, expected '<steamid64>||<token>'")
        return steam_id, token


@dataclass
class FulfillmentSettings:
    """Engine runtime configuration."""
    poll_interval_s: float = 30.0
    proposal_ttl_s: Optional[float] = None      # None disables stale-proposal expiry

    item_name: str = "Mann Co. Supply Crate Key"
    app_id: int = 440
    context_id: str = "2"

    outbound_message: str = "Your TF2 keys from Law Firm Steam! Better call Saul!"
    inbound_message: str = "Please put {quantity} TF2 keys into this trade. After you confirm, I will send payment."

    offer_poll_interval_s: float = 10.0
    confirmation_interval_s: float = 15.0


@dataclass
class AppConfig:
    settings: FulfillmentSettings
    ledger: LedgerConfig
    steam: SteamCredentials
    google_credentials: Dict[str, Any]
    http: Dict[str, Any] = field(default_factory=dict)


_REQUIRED_ENV = {
    ("steam", "username"): "STEAM_USERNAME",
    ("steam", "password"): "STEAM_PASSWORD",
    ("steam", "shared_secret"): "SHARED_SECRET",
    ("steam", "identity_secret"): "IDENTITY_SECRET",
    ("steam", "login_secure"): "STEAM_LOGIN_SECURE",
    ("ledger", "spreadsheet_id"): "SPREADSHEET_ID",
    ("ledger", "credentials_json"): "GOOGLE_CREDENTIALS",
}


def _section(cfg: Mapping[str, Any], name: str) -> Dict[str, Any]:
    sec = cfg.get(name) or {}
    if not isinstance(sec, Mapping):
        raise ConfigError(f"config section '{name}' must be a mapping")
    return dict(sec)


def load_app_config(cfg: Mapping[str, Any]) -> AppConfig:
    """
    Build and validate the full runtime configuration from a resolved cfg dict
    (see utils.config.load_cfg). Any missing or malformed value raises ConfigError.
    """
    steam_cfg = _section(cfg, "steam")
    ledger_cfg = _section(cfg, "ledger")
    engine_cfg = _section(cfg, "engine")
    sections = {"steam": steam_cfg, "ledger": ledger_cfg}

    missing = [env for (sec, key), env in _REQUIRED_ENV.items() if not str(sections[sec].get(key) or "").strip()]
    if missing:
        raise ConfigError("Missing required configuration", missing=",".join(missing))

    raw_creds = ledger_cfg.pop("credentials_json")
    try:
        google_credentials = json.loads(raw_creds) if isinstance(raw_creds, str) else dict(raw_creds)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Malformed GOOGLE_CREDENTIALS: {e}") from e
    for key in ("client_email", "private_key"):
        if not google_credentials.get(key):
            raise ConfigError("GOOGLE_CREDENTIALS lacks a required field", field=key)

    try:
        ledger = LedgerConfig.model_validate(ledger_cfg)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid ledger config: {e}") from e

    steam = SteamCredentials(
        username=str(steam_cfg["username"]),
        password=str(steam_cfg["password"]),
        shared_secret=str(steam_cfg["shared_secret"]),
        identity_secret=str(steam_cfg["identity_secret"]),
        login_secure=str(steam_cfg["login_secure"]),
    )
    steam._split()

    known = FulfillmentSettings.__dataclass_fields__
    unknown = sorted(set(engine_cfg) - set(known))
    if unknown:
        raise ConfigError("Unknown engine settings", keys=",".join(unknown))
    try:
        settings = FulfillmentSettings(**engine_cfg)
        settings.poll_interval_s = float(settings.poll_interval_s)
        if settings.poll_interval_s <= 0:
            raise ValueError("poll_interval_s must be > 0")
        if settings.proposal_ttl_s is not None:
            settings.proposal_ttl_s = float(settings.proposal_ttl_s)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid engine settings: {e}") from e

    return AppConfig(
        settings=settings,
        ledger=ledger,
        steam=steam,
        google_credentials=google_credentials,
        http=_section(cfg, "http"),
    )
