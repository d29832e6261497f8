"""Bounded calls to external quote and execution providers."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any

import aiohttp

from .errors import ProviderError

logger = logging.getLogger(__name__)

# Failures expected from a remote provider. Anything else is a bug and propagates.
PROVIDER_FAILURES = (ProviderError, asyncio.TimeoutError, aiohttp.ClientError, OSError)


@dataclass(frozen=True)
class ProviderResult:
    """Outcome of a guarded provider call."""

    ok: bool
    value: Any = None
    error: str | None = None


async def guarded_call(
    provider: str, call: Awaitable[Any], timeout: float | None
) -> ProviderResult:
    """Await ``call`` for at most ``timeout`` seconds.

    Expected provider failures (including the timeout) are logged and
    returned as a failed ``ProviderResult`` instead of raised.
    """
    try:
        value = await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError:
        message = f"{provider} timed out after {timeout}s"
        logger.warning("Provider call failed: provider=%s error=%s", provider, message)
        return ProviderResult(ok=False, error=message)
    except PROVIDER_FAILURES as e:
        message = str(e) or type(e).__name__
        logger.warning(
            "Provider call failed: provider=%s error_type=%s error=%s",
            provider,
            type(e).__name__,
            message,
        )
        return ProviderResult(ok=False, error=message)
    return ProviderResult(ok=True, value=value)
