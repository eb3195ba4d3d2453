"""
=============================================================================
API.PY - REST endpoints under /api
=============================================================================

ENDPOINTS:
----------
GET  /api/health                              Liveness + environment
GET  /api/agents                              Full agent list
POST /api/agents                              Create an agent
GET  /api/agents/{id}                         One agent
PUT  /api/agents/{id}/status                  {status}
PUT  /api/agents/{id}/metrics                 {metrics}
POST /api/maintenance/cleanup-duplicates      Remove same-name agents
GET  /api/agents/{id}/tasks                   Tasks assigned to an agent
GET  /api/digital-twins                       All twin profiles
POST /api/digital-twins                       Create a twin profile
GET  /api/digital-twins/{id}                  One twin profile
PATCH /api/digital-twins/{id}                 Partial update
DELETE /api/digital-twins/{id}                Remove a twin profile
GET  /api/tasks                               All tasks
POST /api/tasks                               Create a task
GET  /api/tasks/{id}                          One task
PUT  /api/tasks/{id}/status                   {status}
GET  /api/conversations                       All conversations
POST /api/conversations                       Save a conversation
GET  /api/conversations/{id}                  One conversation
GET  /api/conversations/participant/{name}    By participant
POST /api/voice/synthesize                    {text, persona} -> audio/mpeg
GET  /api/voices                              Available voices

Agent mutations made here are pushed to realtime clients exactly like
intents arriving over /ws. Validation failures answer 400 rather than
FastAPI's default 422.
"""

from datetime import datetime, timezone
from typing import Type, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from loguru import logger
from pydantic import BaseModel, ValidationError

from .broadcaster import UpdateBroadcaster
from .config import Settings
from .protocol import (
    MAX_ID,
    DigitalTwinUpdate,
    MetricsUpdate,
    NewAgent,
    NewConversation,
    NewDigitalTwin,
    NewTask,
    StatusUpdate,
    SynthesisRequest,
)
from .storage import AgentStore
from .voice_service import VoiceService

router = APIRouter(prefix="/api")

BodyModel = TypeVar("BodyModel", bound=BaseModel)


def get_store(request: Request) -> AgentStore:
    return request.app.state.store


def get_broadcaster(request: Request) -> UpdateBroadcaster:
    return request.app.state.broadcaster


def get_voice_service(request: Request) -> VoiceService:
    return request.app.state.voice_service


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def read_body(request: Request, model: Type[BodyModel]) -> BodyModel:
    """Parse and validate a JSON body, answering 400 on any problem."""
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(400, "Request body must be JSON")
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise HTTPException(400, f"Invalid request data: {e.error_count()} error(s)")


def parse_id(raw: str, what: str = "agent") -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise HTTPException(400, f"Invalid {what} ID")
    if not 0 <= value <= MAX_ID:
        raise HTTPException(400, f"Invalid {what} ID")
    return value


# ========== HEALTH ==========

@router.get("/health")
async def health(settings: Settings = Depends(get_settings)):
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.environment,
    }


# ========== AGENTS ==========

@router.get("/agents")
async def list_agents(store: AgentStore = Depends(get_store)):
    agents = await store.get_agents()
    return [agent.to_dict() for agent in agents]


@router.post("/agents")
async def create_agent(
    request: Request,
    store: AgentStore = Depends(get_store),
    broadcaster: UpdateBroadcaster = Depends(get_broadcaster),
):
    body = await read_body(request, NewAgent)
    agent = await store.create_agent(**body.model_dump())
    logger.info(f"Created agent: {agent.name} (ID: {agent.id})")
    await broadcaster.broadcast()
    return agent.to_dict()


@router.get("/agents/{agent_id}")
async def get_agent(agent_id: str, store: AgentStore = Depends(get_store)):
    agent = await store.get_agent(parse_id(agent_id))
    if not agent:
        raise HTTPException(404, "Agent not found")
    return agent.to_dict()


@router.put("/agents/{agent_id}/status")
async def update_agent_status(
    agent_id: str,
    request: Request,
    store: AgentStore = Depends(get_store),
    broadcaster: UpdateBroadcaster = Depends(get_broadcaster),
):
    target = parse_id(agent_id)
    body = await read_body(request, StatusUpdate)

    agent = await store.update_agent_status(target, body.status)
    if not agent:
        raise HTTPException(404, "Agent not found")

    await broadcaster.broadcast()
    return {"success": True, "agent": agent.to_dict()}


@router.put("/agents/{agent_id}/metrics")
async def update_agent_metrics(
    agent_id: str,
    request: Request,
    store: AgentStore = Depends(get_store),
    broadcaster: UpdateBroadcaster = Depends(get_broadcaster),
):
    target = parse_id(agent_id)
    body = await read_body(request, MetricsUpdate)

    agent = await store.update_agent_metrics(target, body.metrics.model_dump())
    if not agent:
        raise HTTPException(404, "Agent not found")

    await broadcaster.broadcast()
    return {"success": True, "agent": agent.to_dict()}


@router.post("/maintenance/cleanup-duplicates")
async def cleanup_duplicates(
    store: AgentStore = Depends(get_store),
    broadcaster: UpdateBroadcaster = Depends(get_broadcaster),
):
    removed = await store.cleanup_duplicate_agents()
    if removed:
        await broadcaster.broadcast()
    return {
        "success": True,
        "message": f"Successfully cleaned up {removed} duplicate agents",
        "removed": removed,
    }


# ========== DIGITAL TWINS ==========

@router.get("/digital-twins")
async def list_digital_twins(store: AgentStore = Depends(get_store)):
    twins = await store.get_digital_twins()
    return [t.to_dict() for t in twins]


@router.post("/digital-twins")
async def create_digital_twin(request: Request, store: AgentStore = Depends(get_store)):
    body = await read_body(request, NewDigitalTwin)
    twin = await store.create_digital_twin(**body.model_dump())
    logger.info(f"Created digital twin: {twin.name} (ID: {twin.id})")
    return twin.to_dict()


@router.get("/digital-twins/{twin_id}")
async def get_digital_twin(twin_id: str, store: AgentStore = Depends(get_store)):
    twin = await store.get_digital_twin(parse_id(twin_id, "digital twin"))
    if not twin:
        raise HTTPException(404, "Digital twin not found")
    return twin.to_dict()


@router.patch("/digital-twins/{twin_id}")
async def update_digital_twin(twin_id: str, request: Request, store: AgentStore = Depends(get_store)):
    target = parse_id(twin_id, "digital twin")
    body = await read_body(request, DigitalTwinUpdate)

    # null only clears the nullable description
    updates = {
        name: value
        for name, value in body.model_dump(exclude_unset=True).items()
        if value is not None or name == "description"
    }
    twin = await store.update_digital_twin(target, **updates)
    if not twin:
        raise HTTPException(404, "Digital twin not found")
    return twin.to_dict()


@router.delete("/digital-twins/{twin_id}")
async def delete_digital_twin(twin_id: str, store: AgentStore = Depends(get_store)):
    if not await store.delete_digital_twin(parse_id(twin_id, "digital twin")):
        raise HTTPException(404, "Digital twin not found")
    return {"success": True}


# ========== TASKS ==========

@router.get("/tasks")
async def list_tasks(store: AgentStore = Depends(get_store)):
    tasks = await store.get_tasks()
    return [t.to_dict() for t in tasks]


@router.post("/tasks")
async def create_task(request: Request, store: AgentStore = Depends(get_store)):
    body = await read_body(request, NewTask)

    if body.assigned_agent_id is not None and not await store.get_agent(body.assigned_agent_id):
        raise HTTPException(400, "Assigned agent not found")
    if body.assigned_twin_id is not None and not await store.get_digital_twin(body.assigned_twin_id):
        raise HTTPException(400, "Assigned digital twin not found")

    task = await store.create_task(**body.model_dump())
    return task.to_dict()


@router.get("/tasks/{task_id}")
async def get_task(task_id: str, store: AgentStore = Depends(get_store)):
    task = await store.get_task(parse_id(task_id, "task"))
    if not task:
        raise HTTPException(404, "Task not found")
    return task.to_dict()


@router.put("/tasks/{task_id}/status")
async def update_task_status(task_id: str, request: Request, store: AgentStore = Depends(get_store)):
    target = parse_id(task_id, "task")
    body = await read_body(request, StatusUpdate)

    task = await store.update_task_status(target, body.status)
    if not task:
        raise HTTPException(404, "Task not found")
    return {"success": True, "task": task.to_dict()}


@router.get("/agents/{agent_id}/tasks")
async def tasks_for_agent(agent_id: str, store: AgentStore = Depends(get_store)):
    tasks = await store.get_tasks_by_agent(parse_id(agent_id))
    return [t.to_dict() for t in tasks]


# ========== CONVERSATIONS ==========

@router.get("/conversations")
async def list_conversations(store: AgentStore = Depends(get_store)):
    conversations = await store.get_conversations()
    return [c.to_dict() for c in conversations]


@router.post("/conversations")
async def create_conversation(request: Request, store: AgentStore = Depends(get_store)):
    body = await read_body(request, NewConversation)
    conversation = await store.create_conversation(**body.model_dump())
    return conversation.to_dict()


@router.get("/conversations/participant/{name}")
async def conversations_by_participant(name: str, store: AgentStore = Depends(get_store)):
    conversations = await store.get_conversations_by_participant(name)
    return [c.to_dict() for c in conversations]


@router.get("/conversations/{conversation_id}")
async def get_conversation(conversation_id: str, store: AgentStore = Depends(get_store)):
    conversation = await store.get_conversation(parse_id(conversation_id, "conversation"))
    if not conversation:
        raise HTTPException(404, "Conversation not found")
    return conversation.to_dict()


# ========== VOICE ==========

@router.post("/voice/synthesize")
async def synthesize(request: Request, voice: VoiceService = Depends(get_voice_service)):
    body = await read_body(request, SynthesisRequest)
    logger.info(f"Voice synthesis request: \"{body.text[:30]}...\" with persona: {body.persona or 'default'}")

    result = await voice.synthesize_speech(body.text, body.persona)
    if isinstance(result, dict):
        return result

    return Response(
        content=result,
        media_type="audio/mpeg",
        headers={"Cache-Control": "no-cache"},
    )


@router.get("/voices")
async def list_voices(voice: VoiceService = Depends(get_voice_service)):
    return await voice.get_voices()
