"""
=============================================================================
MODELS.PY - SQLAlchemy Database Models
=============================================================================

Database schema for the digital twin dashboard. Uses SQLAlchemy ORM with
async support (aiosqlite for SQLite by default, asyncpg for PostgreSQL).

TABLES:
-------
- agents: the digital twin personas shown on the dashboard, with a
  free-form status and a metrics record
- digital_twins: configurable twin profiles (voice, personality)
- tasks: work items, optionally assigned to an agent and/or a twin
- conversations: saved transcripts of persona conversations

Agent names are not unique at the schema level. Duplicates are removed after
the fact by AgentStore.cleanup_duplicate_agents().

Tables are auto-created on application startup (see main.py lifespan).
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, ForeignKey, Integer, String, Text, DateTime, JSON
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def default_metrics() -> dict:
    return {
        "requests_handled": 0,
        "success_rate": 0,
        "avg_response_time": 0,
    }


class Agent(Base):
    """
    A digital twin persona.

    Attributes:
        id: Primary key, assigned on insert
        name: Display name (e.g., "Albert Einstein")
        status: Free-form status, usually "idle" or "active"
        type: Persona field (e.g., "Theoretical Physics")
        capabilities: Ordered list of capability labels
        avatar: Avatar image URL
        metrics: {requests_handled, success_rate, avg_response_time},
            always replaced as a whole
    """
    __tablename__ = "agents"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(256), nullable=False, index=True)
    status = Column(String(64), nullable=False, default="idle")
    type = Column(String(256), nullable=False)
    capabilities = Column(JSON, nullable=False, default=list)
    avatar = Column(Text, nullable=False)
    metrics = Column(JSON, nullable=False, default=default_metrics)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "type": self.type,
            "capabilities": list(self.capabilities or []),
            "avatar": self.avatar,
            "metrics": dict(self.metrics or default_metrics()),
        }


class Conversation(Base):
    """
    A saved conversation between personas.

    Attributes:
        id: Primary key
        title: Short title for listings
        participants: Names of the personas taking part
        topic: What the conversation was about
        transcript: Full transcript text
        meta: Free-form JSON (exposed as "metadata" in the API)
        created_at / updated_at: Timestamps
    """
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(256), nullable=False)
    participants = Column(JSON, nullable=False, default=list)
    topic = Column(String(512), nullable=False)
    transcript = Column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=True, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "participants": list(self.participants or []),
            "topic": self.topic,
            "transcript": self.transcript,
            "metadata": dict(self.meta or {}),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


def default_twin_configuration() -> dict:
    return {
        "personality": "friendly",
        "voice_id": "21m00Tcm4TlvDq8ikWAM",
        "voice_settings": {
            "stability": 0.75,
            "similarityBoost": 0.75,
            "style": 0.5,
            "speakerBoost": True,
        },
    }


class DigitalTwin(Base):
    """
    A configurable twin profile, separate from the live agent roster.

    Attributes:
        id: Primary key
        name / description / type: Display fields
        status: Free-form, "active" by default
        avatar: Avatar image URL
        capabilities: Ordered list of capability labels
        meta: Free-form JSON (exposed as "metadata")
        configuration: {personality, voice_id, voice_settings}
        created_at / updated_at: Timestamps
    """
    __tablename__ = "digital_twins"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(256), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(256), nullable=False)
    status = Column(String(64), nullable=False, default="active")
    avatar = Column(Text, nullable=False)
    capabilities = Column(JSON, nullable=False, default=list)
    meta = Column("metadata", JSON, nullable=True, default=dict)
    configuration = Column(JSON, nullable=False, default=default_twin_configuration)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "status": self.status,
            "avatar": self.avatar,
            "capabilities": list(self.capabilities or []),
            "metadata": dict(self.meta or {}),
            "configuration": dict(self.configuration or {}),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class Task(Base):
    """
    A unit of work, optionally assigned to an agent and/or a digital twin.

    Deleting the assignee leaves the task in place with the reference cleared.
    """
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(256), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(64), nullable=False, default="pending")
    priority = Column(String(32), nullable=False, default="medium")
    due_date = Column(DateTime(timezone=True), nullable=True)
    assigned_agent_id = Column(
        Integer, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True, index=True
    )
    assigned_twin_id = Column(
        Integer, ForeignKey("digital_twins.id", ondelete="SET NULL"), nullable=True
    )
    meta = Column("metadata", JSON, nullable=True, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "dueDate": _iso(self.due_date),
            "assignedAgentId": self.assigned_agent_id,
            "assignedTwinId": self.assigned_twin_id,
            "metadata": dict(self.meta or {}),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
