"""REST API for a user's conversation history."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from relaybot.core.errors import ReplyError
from relaybot.services.container import ServiceContainer, get_services

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/{discord_id}/messages")
async def list_messages(
    discord_id: str, limit: int = 50, services: ServiceContainer = Depends(get_services)
):
    messages = services.recorder.history(discord_id, limit=limit)
    if messages is None:
        logger.debug(f"User {discord_id} not found")
        raise HTTPException(status_code=404, detail="User not found")

    return [
        {
            "id": m.id,
            "content": m.content,
            "is_bot_message": m.is_bot_message,
            "conversation_id": m.conversation_id,
            "exchange_id": m.exchange_id,
            "timestamp": m.timestamp.isoformat(),
        }
        for m in messages
    ]


@router.delete("/{discord_id}/messages")
async def reset_messages(discord_id: str, services: ServiceContainer = Depends(get_services)):
    try:
        reset = await services.recorder.reset(discord_id)
    except ReplyError as e:
        logger.error(f"Reset for {discord_id} failed: {e!r}")
        raise HTTPException(status_code=500, detail="Reset failed")

    if not reset:
        logger.debug(f"Reset: user {discord_id} not found")
        raise HTTPException(status_code=404, detail="User not found")
    logger.debug(f"Reset conversation for {discord_id}")
    return {"status": "reset"}
