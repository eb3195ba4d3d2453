"""
=============================================================================
STORAGE.PY - Async relational store for agents, twins, tasks and conversations
=============================================================================

AgentStore owns the SQLAlchemy engine and session factory. Every public
method opens its own short-lived session, so concurrent requests never share
ORM state. Writes are last-write-wins per row; the database's own transaction
semantics are the only serialization.

Instances are created once by the app factory (see main.py) and handed to
route handlers and the broadcaster; there is no module-level store.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from .models import Agent, Base, Conversation, DigitalTwin, Task, default_metrics, utcnow

TWIN_UPDATABLE = {
    "name", "description", "type", "status", "avatar", "capabilities", "configuration",
}


class AgentStore:
    """CRUD over the agents, digital_twins, tasks and conversations tables."""

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url

        engine_kwargs: Dict[str, Any] = {"echo": echo, "future": True}
        if not database_url.startswith("sqlite"):
            engine_kwargs.update(
                pool_size=5,
                max_overflow=10,
                pool_pre_ping=True,
                pool_recycle=1800,
                pool_timeout=30,
            )
        self.engine = create_async_engine(database_url, **engine_kwargs)

        self._session_factory = sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
        )

    def session(self) -> AsyncSession:
        return self._session_factory()

    async def init_models(self) -> None:
        """Create missing tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created/verified")

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("Database connections closed")

    # ========== AGENTS ==========

    async def get_agents(self) -> List[Agent]:
        async with self.session() as db:
            result = await db.execute(select(Agent).order_by(Agent.id))
            return list(result.scalars().all())

    async def get_agent(self, agent_id: int) -> Optional[Agent]:
        async with self.session() as db:
            result = await db.execute(select(Agent).filter(Agent.id == agent_id))
            return result.scalar_one_or_none()

    async def create_agent(
        self,
        name: str,
        type: str,
        capabilities: List[str],
        avatar: str,
        status: str = "idle",
        metrics: Optional[Dict[str, Any]] = None,
    ) -> Agent:
        agent = Agent(
            name=name,
            type=type,
            capabilities=list(capabilities),
            avatar=avatar,
            status=status,
            metrics=dict(metrics) if metrics is not None else default_metrics(),
        )
        async with self.session() as db:
            db.add(agent)
            await db.commit()
            await db.refresh(agent)
        return agent

    async def update_agent_status(self, agent_id: int, status: str) -> Optional[Agent]:
        """Set an agent's status. Returns None if no such agent."""
        async with self.session() as db:
            result = await db.execute(select(Agent).filter(Agent.id == agent_id))
            agent = result.scalar_one_or_none()
            if not agent:
                return None
            agent.status = status
            await db.commit()
            await db.refresh(agent)
            return agent

    async def update_agent_metrics(self, agent_id: int, metrics: Dict[str, Any]) -> Optional[Agent]:
        """Replace an agent's metrics record. Returns None if no such agent."""
        async with self.session() as db:
            result = await db.execute(select(Agent).filter(Agent.id == agent_id))
            agent = result.scalar_one_or_none()
            if not agent:
                return None
            agent.metrics = dict(metrics)
            await db.commit()
            await db.refresh(agent)
            return agent

    async def cleanup_duplicate_agents(self) -> int:
        """Delete agents sharing a name with a lower-id agent.

        Returns the number of rows removed.
        """
        keep: Dict[str, int] = {}
        doomed: List[Agent] = []
        for agent in await self.get_agents():
            if agent.name in keep:
                doomed.append(agent)
            else:
                keep[agent.name] = agent.id

        if not doomed:
            return 0

        doomed_ids = [a.id for a in doomed]
        async with self.session() as db:
            await db.execute(
                update(Task)
                .where(Task.assigned_agent_id.in_(doomed_ids))
                .values(assigned_agent_id=None)
            )
            await db.execute(delete(Agent).where(Agent.id.in_(doomed_ids)))
            await db.commit()

        for agent in doomed:
            logger.info(f"Removed duplicate agent: {agent.name} (ID: {agent.id})")
        return len(doomed)

    # ========== TASKS ==========

    async def get_tasks(self) -> List[Task]:
        async with self.session() as db:
            result = await db.execute(select(Task).order_by(Task.id))
            return list(result.scalars().all())

    async def get_task(self, task_id: int) -> Optional[Task]:
        async with self.session() as db:
            result = await db.execute(select(Task).filter(Task.id == task_id))
            return result.scalar_one_or_none()

    async def create_task(
        self,
        title: str,
        description: Optional[str] = None,
        status: str = "pending",
        priority: str = "medium",
        due_date: Optional[datetime] = None,
        assigned_agent_id: Optional[int] = None,
        assigned_twin_id: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Task:
        task = Task(
            title=title,
            description=description,
            status=status,
            priority=priority,
            due_date=due_date,
            assigned_agent_id=assigned_agent_id,
            assigned_twin_id=assigned_twin_id,
            meta=dict(metadata or {}),
        )
        async with self.session() as db:
            db.add(task)
            await db.commit()
            await db.refresh(task)
        return task

    async def update_task_status(self, task_id: int, status: str) -> Optional[Task]:
        async with self.session() as db:
            result = await db.execute(select(Task).filter(Task.id == task_id))
            task = result.scalar_one_or_none()
            if not task:
                return None
            task.status = status
            task.updated_at = utcnow()
            await db.commit()
            await db.refresh(task)
            return task

    async def get_tasks_by_agent(self, agent_id: int) -> List[Task]:
        async with self.session() as db:
            result = await db.execute(
                select(Task).filter(Task.assigned_agent_id == agent_id).order_by(Task.id)
            )
            return list(result.scalars().all())

    # ========== DIGITAL TWINS ==========

    async def get_digital_twins(self) -> List[DigitalTwin]:
        async with self.session() as db:
            result = await db.execute(select(DigitalTwin).order_by(DigitalTwin.id))
            return list(result.scalars().all())

    async def get_digital_twin(self, twin_id: int) -> Optional[DigitalTwin]:
        async with self.session() as db:
            result = await db.execute(select(DigitalTwin).filter(DigitalTwin.id == twin_id))
            return result.scalar_one_or_none()

    async def create_digital_twin(
        self,
        name: str,
        type: str,
        avatar: str,
        capabilities: List[str],
        description: Optional[str] = None,
        status: str = "active",
        configuration: Optional[Dict[str, Any]] = None,
    ) -> DigitalTwin:
        twin = DigitalTwin(
            name=name,
            type=type,
            avatar=avatar,
            capabilities=list(capabilities),
            description=description,
            status=status,
            meta={},
        )
        if configuration is not None:
            twin.configuration = dict(configuration)
        async with self.session() as db:
            db.add(twin)
            await db.commit()
            await db.refresh(twin)
        return twin

    async def update_digital_twin(self, twin_id: int, **updates: Any) -> Optional[DigitalTwin]:
        """Apply a partial update. Unknown field names raise ValueError."""
        unknown = set(updates) - TWIN_UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update digital twin fields: {sorted(unknown)}")

        async with self.session() as db:
            result = await db.execute(select(DigitalTwin).filter(DigitalTwin.id == twin_id))
            twin = result.scalar_one_or_none()
            if not twin:
                return None
            for name, value in updates.items():
                setattr(twin, name, value)
            twin.updated_at = utcnow()
            await db.commit()
            await db.refresh(twin)
            return twin

    async def delete_digital_twin(self, twin_id: int) -> bool:
        async with self.session() as db:
            await db.execute(
                update(Task)
                .where(Task.assigned_twin_id == twin_id)
                .values(assigned_twin_id=None)
            )
            result = await db.execute(delete(DigitalTwin).where(DigitalTwin.id == twin_id))
            await db.commit()
        return result.rowcount > 0

    # ========== CONVERSATIONS ==========

    async def get_conversations(self) -> List[Conversation]:
        async with self.session() as db:
            result = await db.execute(select(Conversation).order_by(Conversation.id))
            return list(result.scalars().all())

    async def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        async with self.session() as db:
            result = await db.execute(
                select(Conversation).filter(Conversation.id == conversation_id)
            )
            return result.scalar_one_or_none()

    async def create_conversation(
        self,
        title: str,
        participants: List[str],
        topic: str,
        transcript: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Conversation:
        conversation = Conversation(
            title=title,
            participants=list(participants),
            topic=topic,
            transcript=transcript,
            meta=dict(metadata or {}),
        )
        async with self.session() as db:
            db.add(conversation)
            await db.commit()
            await db.refresh(conversation)
        return conversation

    async def get_conversations_by_participant(self, participant: str) -> List[Conversation]:
        # JSON containment differs per dialect; the table is small
        return [
            c for c in await self.get_conversations()
            if participant in (c.participants or [])
        ]
