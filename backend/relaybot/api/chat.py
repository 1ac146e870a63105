"""HTTP entry point for a single chat turn."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from relaybot.core.errors import ReplyError
from relaybot.services.container import ServiceContainer, get_services
from relaybot.services.conversations import ReplyMode

router = APIRouter()
logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    user_id: str
    username: str
    message: str
    assistant_name: str | None = None
    mode: ReplyMode = ReplyMode.TEXT


@router.post("/")
async def chat(body: ChatRequest, services: ServiceContainer = Depends(get_services)):
    try:
        result = await services.chat.generate_reply(
            body.user_id,
            body.username,
            body.message,
            assistant_name=body.assistant_name,
            reply_mode=body.mode,
        )
    except ReplyError as e:
        logger.error(f"Chat turn for {body.user_id} failed: {e!r}")
        raise HTTPException(status_code=502, detail="message could not be processed")

    return {
        "reply": result.reply,
        "conversation_id": result.conversation_id,
        "exchange_id": result.exchange_id,
    }
