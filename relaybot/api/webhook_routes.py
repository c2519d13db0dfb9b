from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request

from relaybot.deps import get_relay
from relaybot.logging_config import logger
from relaybot.relay import RelayService

router = APIRouter(tags=["webhook"])


@router.post("/webhook")
async def webhook(request: Request, relay: RelayService = Depends(get_relay)) -> dict:
    """
    Transport callback. Always answers 200 so the transport does not retry;
    processing continues in the background.
    """
    try:
        update = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Webhook received a malformed body: %s", exc)
        return {"ok": True}

    try:
        await relay.accept_update(update)
    except Exception:
        logger.exception("Webhook processing failed")
    return {"ok": True}


__all__ = ["router"]
