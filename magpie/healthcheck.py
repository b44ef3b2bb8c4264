"""Provider health checks — ping each backend before starting a review."""

import asyncio
import logging

from magpie.models import Message
from magpie.providers.base import ChatProvider

logger = logging.getLogger(__name__)

_PING_MESSAGES = [Message("user", "Reply with the word OK only.")]
_TIMEOUT_SEC = 15.0


async def _check_one(name: str, provider: ChatProvider) -> tuple[str, bool, str]:
    """Ping a single provider. Returns (name, ok, error_message)."""
    try:
        await asyncio.wait_for(provider.chat(_PING_MESSAGES), timeout=_TIMEOUT_SEC)
        return name, True, ""
    except TimeoutError:
        return name, False, f"No reply within {_TIMEOUT_SEC:.0f}s"
    except Exception as exc:
        return name, False, str(exc)


async def run_health_checks(
    providers: dict[str, ChatProvider],
) -> dict[str, tuple[bool, str]]:
    """Ping all providers in parallel.

    Returns:
        Dict mapping provider label -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(n, p) for n, p in providers.items()))
    for name, ok, err in results:
        if not ok:
            logger.debug("Health check failed for %s: %s", name, err)
    return {name: (ok, err) for name, ok, err in results}
