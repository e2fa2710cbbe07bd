"""Application assembly: webhook server with the reconcile loop in-process.

One store and one ShipStation client are built per process and handed to
both the ingress handler and the worker; nothing is module-global.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from shipnote import __version__
from shipnote.config import Settings, get_settings
from shipnote.orders.store import OrderStore
from shipnote.shipstation.client import ShipStationClient
from shipnote.webhooks.handlers import register_routes
from shipnote.webhooks.ingress import OrderIngress
from shipnote.webhooks.verification import ShopifyVerifier
from shipnote.worker.loop import ReconcileLoop

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    store: Any = None,
    client: Any = None,
    start_worker: bool | None = None,
) -> FastAPI:
    """Build the FastAPI app.  ``store``/``client`` overrides are for tests."""
    settings = settings or get_settings()
    store = store or OrderStore(
        settings.database_url,
        reopen_failed_on_reingest=settings.reopen_failed_on_reingest,
    )
    client = client or ShipStationClient.from_settings(settings)
    if start_worker is None:
        start_worker = settings.worker_enabled

    loop = ReconcileLoop.from_settings(settings, store, client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        missing = settings.missing_credentials()
        if missing:
            logger.error("Missing env vars: %s", ", ".join(missing))
        store.open()
        if start_worker:
            loop.start()
        try:
            yield
        finally:
            if start_worker:
                # Blocks until the record in flight has been advanced
                loop.stop(timeout=None)
            client.close()
            store.close()

    app = FastAPI(title="shipnote", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.loop = loop
    app.state.ingress = OrderIngress(store, ShopifyVerifier(settings.shopify_webhook_secret))
    register_routes(app)
    return app
