"""Wire protocol for the /ws channel and request bodies for the REST API.

Outbound frames are snapshots: {"type": "agents_update", "data": [agent, ...]}.
Inbound frames are intents addressed to one agent:

    {"type": "update_status", "agentId": 1, "status": "idle"}
    {"type": "update_metrics", "agentId": 1, "metrics": {...}}

No other message types exist. Intents are never acknowledged.
"""

import json
from datetime import datetime
from typing import Any, Dict, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

AGENTS_UPDATE = "agents_update"
UPDATE_STATUS = "update_status"
UPDATE_METRICS = "update_metrics"

Number = Union[int, float]

# Largest value a signed 64-bit INTEGER column can hold
MAX_ID = 2**63 - 1


class ProtocolError(ValueError):
    """An inbound frame could not be decoded into an intent."""


class AgentMetrics(BaseModel):
    """Per-agent metrics record. Always replaced as a whole."""
    model_config = ConfigDict(extra="ignore")

    requests_handled: Number
    success_rate: Number
    avg_response_time: Number


class StatusIntent(BaseModel):
    """Client -> Server: set one agent's status."""
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["update_status"] = UPDATE_STATUS
    agent_id: int = Field(..., alias="agentId", ge=0, le=MAX_ID)
    status: str = Field(..., min_length=1)


class MetricsIntent(BaseModel):
    """Client -> Server: replace one agent's metrics."""
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["update_metrics"] = UPDATE_METRICS
    agent_id: int = Field(..., alias="agentId", ge=0, le=MAX_ID)
    metrics: AgentMetrics


Intent = Union[StatusIntent, MetricsIntent]

_INTENT_TYPES = {
    UPDATE_STATUS: StatusIntent,
    UPDATE_METRICS: MetricsIntent,
}


def parse_intent(raw: Union[str, bytes]) -> Optional[Intent]:
    """Decode an inbound frame.

    Returns None for well-formed messages of an unknown type, which callers
    ignore. Raises ProtocolError for anything that is not a JSON object or
    that fails validation for its declared type.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError("Message must be a JSON object")

    model = _INTENT_TYPES.get(data.get("type"))
    if model is None:
        return None

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid {data['type']} message: {e.error_count()} error(s)") from e


def snapshot_message(agents: Iterable[Any]) -> dict:
    """Build an agents_update envelope from Agent rows or plain dicts."""
    data: List[dict] = [
        agent if isinstance(agent, dict) else agent.to_dict()
        for agent in agents
    ]
    return {"type": AGENTS_UPDATE, "data": data}


# ========== REST BODIES ==========

class StatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)


class MetricsUpdate(BaseModel):
    metrics: AgentMetrics


class NewAgent(BaseModel):
    name: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    capabilities: List[str] = Field(default_factory=list)
    avatar: str = Field(..., min_length=1)
    status: str = Field(default="idle", min_length=1)


class NewConversation(BaseModel):
    title: str = Field(..., min_length=1)
    participants: List[str] = Field(..., min_length=1)
    topic: str = Field(..., min_length=1)
    transcript: str


class SynthesisRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=500)
    persona: Optional[str] = None


class NewDigitalTwin(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    type: str = Field(..., min_length=1)
    status: str = Field(default="active", min_length=1)
    avatar: str = Field(..., min_length=1)
    capabilities: List[str] = Field(default_factory=list)
    configuration: Optional[Dict[str, Any]] = None


class DigitalTwinUpdate(BaseModel):
    """Partial update; only the fields sent are applied."""
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    type: Optional[str] = Field(default=None, min_length=1)
    status: Optional[str] = Field(default=None, min_length=1)
    avatar: Optional[str] = Field(default=None, min_length=1)
    capabilities: Optional[List[str]] = None
    configuration: Optional[Dict[str, Any]] = None


class NewTask(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: str = Field(default="pending", min_length=1)
    priority: str = Field(default="medium", min_length=1)
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")
    assigned_agent_id: Optional[int] = Field(default=None, alias="assignedAgentId", ge=0, le=MAX_ID)
    assigned_twin_id: Optional[int] = Field(default=None, alias="assignedTwinId", ge=0, le=MAX_ID)
    metadata: Dict[str, Any] = Field(default_factory=dict)
