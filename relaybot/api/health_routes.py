from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from relaybot.deps import get_runtime
from relaybot.runtime import RelayRuntime

router = APIRouter(tags=["system"])


@router.get("/health")
async def health(runtime: RelayRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    """
    Status of each dependency: storage tier, durable store, assistant
    backend, circuit breakers and the dispatch queue.
    """
    return await runtime.health()


__all__ = ["router"]
