"""Helpers for releasing vendor streams."""

from __future__ import annotations

import inspect
import logging

logger = logging.getLogger(__name__)


async def close_stream(stream: object) -> None:
    """Close a vendor stream or response, releasing its connection.

    Works for SDK stream objects (``close()``), async generators
    (``aclose()``) and objects exposing neither. Errors while closing are
    logged: the caller is already unwinding and must see its own error.
    """
    close = getattr(stream, "aclose", None) or getattr(stream, "close", None)
    if close is None:
        return
    try:
        result = close()
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.debug("Ignoring error while closing stream", exc_info=True)
