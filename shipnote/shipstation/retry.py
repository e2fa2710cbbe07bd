"""In-call backoff for ShipStation requests.

ShipStation allows 40 requests per minute per API key.  Past that it
answers 429 with ``X-Rate-Limit-Reset`` (seconds until the window
reopens); gateways in front of it occasionally answer 5xx or drop the
connection.  Those failures get a couple of quick retries inside the
same request.  Anything still failing goes back to the worker, which
counts the attempt and tries again on a later cycle.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# Checked in order; ShipStation sends the first, proxies the second
WAIT_HINT_HEADERS = ("X-Rate-Limit-Reset", "Retry-After")


def is_retryable(exc: httpx.HTTPError) -> bool:
    """Rate limits, gateway errors and transport failures are worth retrying."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, httpx.TransportError)


def wait_hint(response: httpx.Response | None) -> float | None:
    """Seconds the server asked us to wait, if it said."""
    if response is None:
        return None
    for header in WAIT_HINT_HEADERS:
        value = response.headers.get(header)
        if not value:
            continue
        try:
            return float(value)
        except ValueError:
            logger.debug("Ignoring unparseable %s header: %r", header, value)
    return None


def compute_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    jitter: float,
    response: httpx.Response | None = None,
) -> float:
    """Seconds to wait before retry ``attempt`` (0-based).

    A server hint wins over the exponential schedule; both are capped at
    ``max_delay``.  Jitter only applies to the computed schedule.
    """
    hint = wait_hint(response)
    if hint is not None:
        return min(hint, max_delay)
    delay = min(base_delay * 2**attempt, max_delay)
    spread = delay * jitter
    return max(0.1, delay + random.uniform(-spread, spread))


@dataclass(frozen=True)
class Backoff:
    """Retry schedule for one ShipStation request."""

    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.3

    def pause(self, attempt: int, exc: httpx.HTTPError, call: str) -> bool:
        """Sleep before retrying ``call`` after failure number ``attempt`` (0-based).

        Returns False, without sleeping, when the failure should surface.
        """
        if attempt >= self.max_retries or not is_retryable(exc):
            return False
        response = exc.response if isinstance(exc, httpx.HTTPStatusError) else None
        delay = compute_delay(attempt, self.base_delay, self.max_delay, self.jitter, response)
        reason = f"HTTP {response.status_code}" if response is not None else type(exc).__name__
        logger.warning(
            "ShipStation %s: %s, retry %d/%d in %.1fs",
            call, reason, attempt + 1, self.max_retries, delay,
        )
        time.sleep(delay)
        return True
