from __future__ import annotations

import asyncio


async def wait_or_stop(stop_event: asyncio.Event, timeout: float) -> bool:
    """
    Sleep for `timeout` seconds unless `stop_event` fires first.
    Returns True when the event is set.
    """
    if stop_event.is_set():
        return True
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        return False
    return True


__all__ = ["wait_or_stop"]
