"""REST API for the assistant directory (name -> provider assistant id)."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from relaybot.services.container import ServiceContainer, get_services

router = APIRouter()


class AssistantCreate(BaseModel):
    name: str
    assistant_id: str


@router.get("/")
async def list_assistants(services: ServiceContainer = Depends(get_services)):
    return [
        {"name": a.name, "assistant_id": a.assistant_id, "created_at": a.created_at.isoformat()}
        for a in services.directory.list()
    ]


@router.post("/")
async def register_assistant(body: AssistantCreate, services: ServiceContainer = Depends(get_services)):
    assistant = services.directory.register(body.name, body.assistant_id)
    return {"name": assistant.name, "assistant_id": assistant.assistant_id, "status": "registered"}
