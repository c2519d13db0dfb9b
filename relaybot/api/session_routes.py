from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status
from fastapi.responses import Response
from pydantic import BaseModel

from relaybot.deps import get_runtime
from relaybot.errors import BreakerOpenError, DependencyError, not_found, service_unavailable
from relaybot.runtime import RelayRuntime
from relaybot.schemas import ConversationSession

router = APIRouter(prefix="/sessions", tags=["sessions"])


class HandoffRequest(BaseModel):
    enabled: bool


def _unavailable(exc: Exception):
    details = None
    if isinstance(exc, BreakerOpenError):
        details = {"breaker": exc.name, "retry_after": round(exc.retry_after, 3)}
    return service_unavailable("Service temporarily unavailable", details=details)


@router.get("", response_model=List[ConversationSession])
async def list_sessions(runtime: RelayRuntime = Depends(get_runtime)) -> List[ConversationSession]:
    try:
        return await runtime.registry.list_active_sessions()
    except (BreakerOpenError, DependencyError) as exc:
        raise _unavailable(exc) from exc


@router.get("/{conversation_id}", response_model=ConversationSession)
async def get_session_endpoint(
    conversation_id: str,
    runtime: RelayRuntime = Depends(get_runtime),
) -> ConversationSession:
    try:
        session = await runtime.registry.get_session(conversation_id)
    except (BreakerOpenError, DependencyError) as exc:
        raise _unavailable(exc) from exc
    if session is None:
        raise not_found(f"Session '{conversation_id}' not found")
    return session


@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session_endpoint(
    conversation_id: str,
    runtime: RelayRuntime = Depends(get_runtime),
) -> Response:
    """
    Administrative cleanup of a conversation session across all tiers.
    """
    try:
        existed = await runtime.registry.delete_session(conversation_id)
    except (BreakerOpenError, DependencyError) as exc:
        raise _unavailable(exc) from exc
    if not existed:
        raise not_found(f"Session '{conversation_id}' not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{conversation_id}/handoff", response_model=ConversationSession)
async def set_handoff_endpoint(
    conversation_id: str,
    body: HandoffRequest,
    runtime: RelayRuntime = Depends(get_runtime),
) -> ConversationSession:
    handoff = runtime.relay.handoff
    try:
        if body.enabled:
            result = await handoff.enable(conversation_id, source="api")
        else:
            result = await handoff.disable(conversation_id)
        if not result.ok:
            raise not_found(f"Session '{conversation_id}' not found")
        session = await runtime.registry.get_session(conversation_id)
    except (BreakerOpenError, DependencyError) as exc:
        raise _unavailable(exc) from exc
    if session is None:
        raise not_found(f"Session '{conversation_id}' not found")
    return session


__all__ = ["router"]
