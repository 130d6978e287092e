# app/run_reconciler.py
import asyncio
import contextlib
import os
import signal
import sys

from utils import logger, load_cfg, utc_s
from fulfillment.config import load_app_config
from fulfillment.errors import ConfigError
from fulfillment.event_bus import EventBus
from fulfillment.services.offer_service import OfferService
from fulfillment.services.reconcile_service import ReconcileService
from fulfillment.stores.proposal_store import ProposalStore
from infra.http_client import HttpClient, _mask
from ledger.google_auth import ServiceAccountTokenProvider
from ledger.sheets_gateway import SheetsLedgerGateway, SHEETS_BASE
from steam.confirmations import ConfirmationChecker
from steam.guard import check_secrets
from steam.offer_poller import OfferPoller
from steam.trade_client import SteamTradeClient


async def main(cfg_path: str | None = None) -> int:
    try:
        app_cfg = load_app_config(load_cfg(cfg_path))
        token_provider = ServiceAccountTokenProvider(app_cfg.google_credentials)
        check_secrets(app_cfg.steam.shared_secret, app_cfg.steam.identity_secret, utc_s())
    except (ConfigError, OSError) as e:
        logger.error(f"❌ Configuration error: {e}")
        return 1

    settings = app_cfg.settings
    logger.info(
        f"Starting reconciler: steam_user={_mask(app_cfg.steam.username)} "
        f"sheets_account={token_provider.account_email} spreadsheet={_mask(app_cfg.ledger.spreadsheet_id)}"
    )

    sheets_http = HttpClient(SHEETS_BASE, app_cfg.http, logger, token_provider=token_provider)
    steam = SteamTradeClient.from_credentials(app_cfg.steam, app_cfg.http, logger=logger)
    ledger = SheetsLedgerGateway(sheets_http, app_cfg.ledger, logger=logger)

    try:
        try:
            await ledger.validate_schema()
        except ConfigError as e:
            logger.error(f"❌ Ledger schema error: {e}")
            return 1

        bus = EventBus()
        store = ProposalStore()
        offers = OfferService(steam, steam, ledger, store, bus, settings, app_cfg.ledger.statuses, logger=logger)
        reconciler = ReconcileService(ledger, offers, app_cfg.ledger, settings, logger=logger)
        poller = OfferPoller(steam, store, bus, settings.offer_poll_interval_s, logger=logger)
        confirmations = ConfirmationChecker(
            steam.http, steam.steam_id64, app_cfg.steam.identity_secret, store,
            settings.confirmation_interval_s, logger=logger,
        )

        def _shutdown() -> None:
            logger.info("Shutdown requested")
            reconciler.stop()
            poller.stop()
            confirmations.stop()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, _shutdown)

        await asyncio.gather(
            reconciler.run_forever(),
            poller.run_forever(),
            confirmations.run_forever(),
        )
        return 0
    finally:
        await steam.close()
        await sheets_http.close()


def run() -> None:
    sys.exit(asyncio.run(main(os.getenv("KEYFLOW_CONFIG"))))


if __name__ == "__main__":
    run()
