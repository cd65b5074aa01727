"""Deadline enforcement for credential store calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

from keygate.core.errors import StoreTimeoutAppError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_store_timeout(call: Awaitable[T], *, timeout_seconds: float, operation: str) -> T:
    """Await a store call, failing with StoreTimeoutAppError past the deadline.

    Args:
        call: Awaitable store operation.
        timeout_seconds: Deadline in seconds.
        operation: Short operation name for logs (e.g., "get", "increment").

    Returns:
        The store call result.

    Raises:
        StoreTimeoutAppError: If the call exceeds ``timeout_seconds``.
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        logger.warning(
            "store.timeout",
            extra={"operation": operation, "timeout_s": timeout_seconds},
        )
        raise StoreTimeoutAppError(
            code="store_timeout",
            message=f"Credential store '{operation}' exceeded {timeout_seconds}s",
            details={"operation": operation, "timeout_s": timeout_seconds},
        ) from exc
