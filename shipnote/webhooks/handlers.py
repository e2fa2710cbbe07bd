"""Webhook HTTP handlers — FastAPI routes for inbound orders and operators.

The order webhook:
1. Reads the raw body (needed for HMAC verification)
2. Hands it to the ingress handler (verify, parse, format, upsert)
3. Returns 200 for every handled outcome, 401 only for signature failures

Security contract:
- Never return error details to the webhook caller (info disclosure)
- Return 200 even for malformed or skipped orders and internal errors;
  Shopify retries on anything else and a retry storm is worse than a lost note
- Log all webhook activity for audit trail
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from shipnote.errors import StorageError
from shipnote.webhooks.ingress import IngestOutcome
from shipnote.webhooks.verification import SHOP_HEADER, SIGNATURE_HEADER, TOPIC_HEADER

logger = logging.getLogger(__name__)

# Webhook receive counter per outcome (in-memory, per process)
_webhook_counts: dict[str, int] = {}


def _log_webhook(topic: str, shop: str, order: str, status: str) -> None:
    """Audit log for webhook activity."""
    _webhook_counts[status] = _webhook_counts.get(status, 0) + 1
    logger.info(
        "WEBHOOK_AUDIT topic=%s shop=%s order=%s status=%s count=%d",
        topic,
        shop,
        order or "unknown",
        status,
        _webhook_counts[status],
    )


async def _handle_order_created(request: Request) -> JSONResponse:
    start = time.time()
    body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}
    topic = headers.get(TOPIC_HEADER, "orders/create")
    shop = headers.get(SHOP_HEADER, "unknown")

    ingress = request.app.state.ingress
    try:
        result = await run_in_threadpool(ingress.handle, body, headers.get(SIGNATURE_HEADER))
    except StorageError:
        logger.exception("Failed to queue order from %s", shop)
        _log_webhook(topic, shop, "", "storage_error")
        return JSONResponse({"status": "ok"}, status_code=200)
    except Exception:
        logger.exception("Webhook handler error for %s", shop)
        _log_webhook(topic, shop, "", "error")
        return JSONResponse({"status": "ok"}, status_code=200)

    _log_webhook(topic, shop, result.order_number, result.outcome.value)

    if result.outcome is IngestOutcome.UNAUTHORIZED:
        return JSONResponse({"status": "unauthorized"}, status_code=401)

    elapsed_ms = (time.time() - start) * 1000
    logger.debug("Webhook processed in %.1fms: %s", elapsed_ms, result.outcome.value)
    return JSONResponse({"status": "ok"}, status_code=200)


def register_routes(app: FastAPI) -> None:
    """Register webhook and operator routes.

    Expects ``app.state.ingress`` and ``app.state.store`` (and optionally
    ``app.state.loop``) to be set before the first request.
    """

    @app.post("/webhooks/orders/create")
    async def order_created(request: Request):
        """Receive Shopify orders/create webhooks (signature-verified)."""
        return await _handle_order_created(request)

    @app.post("/webhooks/shopify/orders/create")
    async def shopify_order_created(request: Request):
        """Legacy path still configured in older Shopify app installs."""
        return await _handle_order_created(request)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/orders/stats")
    async def order_stats(request: Request):
        """Record counts per status plus webhook counters."""
        store = request.app.state.store
        try:
            counts = await run_in_threadpool(store.stats)
            detail = await run_in_threadpool(store.stats_detail)
        except StorageError:
            logger.exception("Failed to read order stats")
            return JSONResponse({"error": "store unavailable"}, status_code=503)
        return {"counts": counts, "detail": detail, "webhooks": dict(_webhook_counts)}

    @app.get("/orders/recent")
    async def recent_orders(request: Request, limit: int = Query(50, ge=1, le=500)):
        store = request.app.state.store
        try:
            records = await run_in_threadpool(store.list_recent, limit)
        except StorageError:
            logger.exception("Failed to list recent orders")
            return JSONResponse({"error": "store unavailable"}, status_code=503)
        return {"orders": [r.to_dict() for r in records]}

    @app.get("/orders/failed")
    async def failed_orders(request: Request, limit: int = Query(100, ge=1, le=500)):
        """Orders that exhausted their attempts and need manual follow-up."""
        store = request.app.state.store
        try:
            records = await run_in_threadpool(store.list_failed, limit)
        except StorageError:
            logger.exception("Failed to list failed orders")
            return JSONResponse({"error": "store unavailable"}, status_code=503)
        return {"orders": [r.to_dict() for r in records]}

    @app.get("/worker/status")
    async def worker_status(request: Request):
        loop = getattr(request.app.state, "loop", None)
        if loop is None:
            return {"running": False}
        return loop.status()

    logger.info("Routes registered: /webhooks/orders/create, /orders/*, /worker/status")
