"""Provider health checks: ping every registered provider before running a pipeline."""

import asyncio
import logging

from chorus.models import Request
from chorus.providers.base import AIProvider

logger = logging.getLogger(__name__)

_PING_REQUEST = Request(prompt="Reply with the word OK only.", max_tokens=16)
_TIMEOUT_SEC = 15.0


async def _check_one(name: str, provider: AIProvider) -> tuple[str, bool, str]:
    """Ping a single provider. Returns (name, ok, error_message)."""
    try:
        await asyncio.wait_for(provider.generate(_PING_REQUEST), timeout=_TIMEOUT_SEC)
    except asyncio.TimeoutError:
        return name, False, f"no response within {_TIMEOUT_SEC:.0f}s"
    except Exception as exc:
        logger.debug("Health check failed for %s: %s", name, exc)
        return name, False, str(exc)
    return name, True, ""


async def run_health_checks(
    providers: dict[str, AIProvider],
) -> dict[str, tuple[bool, str]]:
    """Ping all providers concurrently.

    Returns:
        Dict mapping provider name -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(n, p) for n, p in providers.items()))
    return {name: (ok, err) for name, ok, err in results}
