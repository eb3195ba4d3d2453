"""
=============================================================================
REALTIME.PY - WebSocket endpoint at /ws
=============================================================================

Each connection:
1. is registered with the UpdateBroadcaster, which queues the current
   snapshot for it straight away;
2. gets a sender task that drains its queue onto the socket;
3. reads intents in a loop, applies them to the store, and asks the
   broadcaster to push the new full list to everybody.

Bad frames (non-JSON, wrong shape, unknown agent) are logged and dropped.
They never close the connection and never reach other connections. Unknown
message types are ignored. The sender of an intent only learns the outcome
from the next snapshot.
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from .broadcaster import UpdateBroadcaster
from .protocol import Intent, MetricsIntent, ProtocolError, StatusIntent, parse_intent
from .storage import AgentStore

router = APIRouter()


async def apply_intent(intent: Intent, store: AgentStore) -> bool:
    """Apply one intent to the store. Returns False if the agent is unknown."""
    if isinstance(intent, StatusIntent):
        agent = await store.update_agent_status(intent.agent_id, intent.status)
    elif isinstance(intent, MetricsIntent):
        agent = await store.update_agent_metrics(intent.agent_id, intent.metrics.model_dump())
    else:
        return False
    return agent is not None


async def handle_frame(raw: Optional[str], store: AgentStore, broadcaster: UpdateBroadcaster) -> None:
    """Decode, apply and broadcast one inbound text frame."""
    if raw is None:
        logger.warning("Ignoring non-text WebSocket frame")
        return

    try:
        intent = parse_intent(raw)
    except ProtocolError as e:
        logger.warning(f"Ignoring malformed WebSocket message: {e}")
        return

    if intent is None:
        logger.debug(f"Ignoring WebSocket message of unknown type: {raw[:80]}")
        return

    try:
        if not await apply_intent(intent, store):
            logger.warning(f"{intent.type} ignored: agent {intent.agent_id} not found")
            return
        await broadcaster.broadcast()
    except SQLAlchemyError as e:
        logger.error(f"Store error handling {intent.type} for agent {intent.agent_id}: {e}")


async def _pump_snapshots(websocket: WebSocket, connection_queue: asyncio.Queue) -> None:
    """Drain a connection's queue onto its socket, in order."""
    while True:
        message = await connection_queue.get()
        await websocket.send_json(message)


@router.websocket("/ws")
async def agents_websocket(websocket: WebSocket):
    """Realtime agent snapshots and intents."""
    store: AgentStore = websocket.app.state.store
    broadcaster: UpdateBroadcaster = websocket.app.state.broadcaster

    await websocket.accept()
    logger.info("New WebSocket connection established")

    connection_queue = await broadcaster.register()
    sender = asyncio.create_task(_pump_snapshots(websocket, connection_queue))

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            try:
                await handle_frame(message.get("text"), store, broadcaster)
            except Exception as e:
                # One bad frame never ends the connection
                logger.exception(f"Error handling WebSocket message: {e}")
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.exception(f"WebSocket error: {e}")
    finally:
        broadcaster.unregister(connection_queue)
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"Snapshot sender stopped with error: {e}")
        logger.info("WebSocket connection closed")
