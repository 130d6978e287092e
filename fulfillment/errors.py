# fulfillment/errors.py
class FulfillmentError(Exception):
    """Base fulfillment error."""
    def __init__(self, msg: str = "", **ctx):
        super().__init__(msg)
        self.msg = msg
        self.ctx = ctx

    def __str__(self):
        base = self.msg or self.__class__.__name__
        if self.ctx:
            details = ", ".join(f"{k}={v}" for k, v in self.ctx.items())
            return f"{base} [{details}]"
        return base


# ---- validation: row-local, row skipped, re-evaluated next cycle ----

class ValidationError(FulfillmentError):
    """Order row cannot be dispatched in its current form."""

class QuantityError(ValidationError):
    """Requested quantity is not a positive integer."""

class LinkFormatError(ValidationError):
    """Trade link lacks a partner id or an access token."""

class InsufficientInventoryError(ValidationError):
    """Fewer matching items held than the order needs."""

    def __init__(self, have: int, need: int, item_name: str = ""):
        super().__init__(f"Insufficient inventory: have {have}, need {need}", item=item_name)
        self.have = have
        self.need = need


# ---- transport ----

class TransportError(FulfillmentError):
    """Remote ledger or trading network call failed."""

class LedgerReadError(TransportError):
    """Loading ledger rows failed; aborts the current cycle."""

class LedgerWriteError(TransportError):
    """Writing a ledger cell failed; leaves a tracked inconsistency."""

class SendError(TransportError):
    """Trade offer could not be sent."""

class InventoryFetchError(TransportError):
    """Inventory snapshot could not be fetched."""

class HttpError(TransportError):
    def __init__(self, status: int, message: str, payload: dict | None = None):
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.payload = payload or {}


# ---- configuration: fatal at startup ----

class ConfigError(FulfillmentError):
    """Required startup configuration missing or malformed."""

class LedgerSchemaError(ConfigError):
    """Ledger header row does not match the configured column schema."""
