"""
=============================================================================
SYNC_CLIENT.PY - Realtime agent sync with polling fallback
=============================================================================

SyncClient keeps a local copy of the agent list in step with the server.

MODES:
------
    DISCONNECTED --connect()--> CONNECTING --handshake ok--> REALTIME
                                   |   ^                       |
                                   |   +----socket closed------+
                                   |        (backoff wait)
                                   +--retry budget spent / realtime off--> POLLING

    any mode --disconnect()--> DISCONNECTED

- REALTIME: snapshots arrive over /ws; intents are sent on the socket.
- POLLING: GET /api/agents every poll_interval; intents become PUT calls.
  Once the retry budget is spent the instance never tries /ws again.
- Reconnect waits start at reconnect_delay and grow by reconnect_multiplier
  up to max_reconnect_delay. A successful handshake resets them.

Everything runs as asyncio tasks on the caller's loop, so connect() must be
called from a coroutine. Subscriber callbacks are plain functions called on
that loop.
"""

import asyncio
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import aiohttp
from loguru import logger

from .config import Settings
from .protocol import AGENTS_UPDATE, UPDATE_METRICS, UPDATE_STATUS

AgentList = List[Dict[str, Any]]
AgentsCallback = Callable[[AgentList], None]
ConnectionCallback = Callable[[bool], None]
SleepFn = Callable[[float], Awaitable[Any]]

TRANSPORT_ERRORS = (aiohttp.ClientError, ConnectionError, asyncio.TimeoutError)


class ConnectionMode(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    REALTIME = "connected-realtime"
    POLLING = "polling-fallback"


class SyncClient:
    """Client side of the agent sync protocol."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        realtime_enabled: bool = True,
        reconnect_delay: float = 1.0,
        reconnect_multiplier: float = 1.5,
        max_reconnect_delay: float = 30.0,
        max_reconnect_attempts: int = 10,
        poll_interval: float = 5.0,
        request_timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Optional[SleepFn] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.realtime_enabled = realtime_enabled
        self.reconnect_delay = reconnect_delay
        self.reconnect_multiplier = reconnect_multiplier
        self.max_reconnect_delay = max_reconnect_delay
        self.max_reconnect_attempts = max_reconnect_attempts
        self.poll_interval = poll_interval
        self.request_timeout = aiohttp.ClientTimeout(total=request_timeout)

        self._session = session
        self._owns_session = session is None
        self._sleep = sleep or asyncio.sleep

        self._mode = ConnectionMode.DISCONNECTED
        self._connected = False
        self._agents: Optional[AgentList] = None
        self._listeners: List[AgentsCallback] = []
        self._connection_listeners: List[ConnectionCallback] = []

        # Bumped by connect() and disconnect(); results from an older epoch
        # are never delivered.
        self._epoch = 0
        self._current_delay = reconnect_delay
        self._failures = 0
        self._realtime_exhausted = False

        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._runner: Optional[asyncio.Task] = None
        self._sender: Optional[asyncio.Task] = None
        self._outbox: Optional[asyncio.Queue] = None
        self._poll_tasks: Set[asyncio.Task] = set()
        self._poll_sequence = 0
        self._delivered_poll = 0

    @classmethod
    def from_settings(cls, settings: Settings, base_url: Optional[str] = None, **kwargs) -> "SyncClient":
        """Client configured from the same settings the server uses."""
        kwargs.setdefault("realtime_enabled", settings.realtime_enabled)
        kwargs.setdefault("poll_interval", settings.poll_interval)
        kwargs.setdefault("max_reconnect_attempts", settings.max_reconnect_attempts)
        return cls(base_url=base_url or f"http://{settings.host}:{settings.port}", **kwargs)

    # ========== STATE ==========

    @property
    def mode(self) -> ConnectionMode:
        return self._mode

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def agents(self) -> Optional[AgentList]:
        """Most recently delivered snapshot, if any."""
        return self._agents

    @property
    def ws_url(self) -> str:
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):] + "/ws"
        if self.base_url.startswith("http://"):
            return "ws://" + self.base_url[len("http://"):] + "/ws"
        return self.base_url + "/ws"

    @property
    def api_url(self) -> str:
        return f"{self.base_url}/api"

    def _set_mode(self, mode: ConnectionMode) -> None:
        self._mode = mode
        self._set_connected(mode in (ConnectionMode.REALTIME, ConnectionMode.POLLING))

    def _set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        for listener in list(self._connection_listeners):
            try:
                listener(connected)
            except Exception:
                logger.exception("Connection listener failed")

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    # ========== SUBSCRIPTIONS ==========

    def subscribe(self, callback: AgentsCallback) -> Callable[[], None]:
        """Call `callback(agents)` for every future snapshot.

        Returns a function that removes the subscription.
        """
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def on_connection_change(self, callback: ConnectionCallback) -> Callable[[], None]:
        """Call `callback(connected)` now and whenever connectivity flips."""
        self._connection_listeners.append(callback)
        try:
            callback(self._connected)
        except Exception:
            logger.exception("Connection listener failed")

        def unsubscribe() -> None:
            if callback in self._connection_listeners:
                self._connection_listeners.remove(callback)

        return unsubscribe

    def _deliver(self, agents: AgentList, epoch: int) -> None:
        if epoch != self._epoch:
            return
        self._agents = agents
        for listener in list(self._listeners):
            try:
                listener(agents)
            except Exception:
                logger.exception("Agent listener failed")

    # ========== LIFECYCLE ==========

    def connect(self) -> None:
        """Start syncing. Does nothing unless currently disconnected."""
        if self._mode is not ConnectionMode.DISCONNECTED:
            return

        self._epoch += 1
        epoch = self._epoch
        self._set_mode(ConnectionMode.CONNECTING)

        self._outbox = asyncio.Queue()
        self._sender = asyncio.create_task(self._send_intents(self._outbox))
        self._runner = asyncio.create_task(self._run(epoch))

    def disconnect(self) -> None:
        """Stop syncing and cancel every pending timer, fetch and socket."""
        self._epoch += 1

        tasks = [self._runner, self._sender, *self._poll_tasks]
        for task in tasks:
            if task is not None and not task.done():
                task.cancel()

        self._runner = None
        self._sender = None
        self._outbox = None
        self._poll_tasks.clear()

        if self._mode is not ConnectionMode.DISCONNECTED:
            logger.info("Sync client disconnected")
        self._set_mode(ConnectionMode.DISCONNECTED)

    async def close(self) -> None:
        """disconnect() and release the HTTP session if this client made it."""
        runner = self._runner
        self.disconnect()
        if runner is not None:
            # Lets the socket's close handshake finish
            await asyncio.gather(runner, return_exceptions=True)
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _run(self, epoch: int) -> None:
        if not self.realtime_enabled or self._realtime_exhausted:
            logger.info("Realtime transport unavailable, using polling instead of WebSocket")
            await self._poll_forever(epoch)
            return

        self._current_delay = self.reconnect_delay
        self._failures = 0

        while True:
            try:
                await self._run_socket(epoch)
            except TRANSPORT_ERRORS as e:
                logger.warning(f"WebSocket connection to {self.ws_url} failed: {e}")

            self._set_mode(ConnectionMode.CONNECTING)
            self._failures += 1

            if self._failures >= self.max_reconnect_attempts:
                logger.error("Max reconnection attempts reached, switching to polling")
                self._realtime_exhausted = True
                await self._poll_forever(epoch)
                return

            delay = self._current_delay
            logger.info(
                f"Reconnecting in {delay:.2f}s "
                f"(attempt {self._failures + 1}/{self.max_reconnect_attempts})"
            )
            await self._sleep(delay)
            self._current_delay = min(
                self._current_delay * self.reconnect_multiplier,
                self.max_reconnect_delay,
            )

    async def _run_socket(self, epoch: int) -> None:
        """One connection lifetime: handshake, read until closed."""
        ws = await self._ensure_session().ws_connect(self.ws_url)
        self._ws = ws
        try:
            self._current_delay = self.reconnect_delay
            self._failures = 0
            self._set_mode(ConnectionMode.REALTIME)
            logger.info(f"WebSocket connected: {self.ws_url}")

            async for message in ws:
                if message.type == aiohttp.WSMsgType.TEXT:
                    self._handle_text(message.data, epoch)
                elif message.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"WebSocket error: {ws.exception()}")
                    break

            logger.info("WebSocket disconnected, attempting reconnect...")
        finally:
            if self._ws is ws:
                self._ws = None
            await ws.close()

    def _handle_text(self, data: str, epoch: int) -> None:
        try:
            message = json.loads(data)
        except ValueError as e:
            logger.error(f"WebSocket message parsing error: {e}")
            return

        if not isinstance(message, dict) or message.get("type") != AGENTS_UPDATE:
            return

        agents = message.get("data")
        if not isinstance(agents, list):
            logger.error("agents_update without an agent list, ignoring")
            return
        self._deliver(agents, epoch)

    # ========== POLLING ==========

    async def _poll_forever(self, epoch: int) -> None:
        self._set_mode(ConnectionMode.POLLING)
        logger.info(f"Starting polling for agents data every {self.poll_interval}s")

        while True:
            # Each tick is its own task, so a slow fetch never delays the next
            self._poll_sequence += 1
            task = asyncio.create_task(self._poll_agents(self._poll_sequence, epoch))
            self._poll_tasks.add(task)
            task.add_done_callback(self._poll_tasks.discard)
            await self._sleep(self.poll_interval)

    async def _poll_agents(self, sequence: int, epoch: int) -> None:
        url = f"{self.api_url}/agents"
        try:
            async with self._ensure_session().get(
                url,
                headers={"Accept": "application/json"},
                timeout=self.request_timeout,
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f"Failed to fetch agents: {response.status} - {error_text[:200]}")
                    return
                agents = await response.json()
        except TRANSPORT_ERRORS as e:
            logger.error(f"Error polling agents from {url}: {e}")
            return
        except ValueError as e:
            logger.error(f"Agent list was not valid JSON: {e}")
            return

        if sequence <= self._delivered_poll:
            logger.debug(f"Dropping stale poll #{sequence}")
            return
        self._delivered_poll = sequence
        self._deliver(agents, epoch)

    # ========== INTENTS ==========

    def update_agent_status(self, agent_id: int, status: str) -> None:
        """Ask the server to set an agent's status. Fire-and-forget."""
        self._dispatch({"type": UPDATE_STATUS, "agentId": agent_id, "status": status})

    def update_metrics(self, agent_id: int, metrics: Dict[str, Any]) -> None:
        """Ask the server to replace an agent's metrics. Fire-and-forget."""
        self._dispatch({"type": UPDATE_METRICS, "agentId": agent_id, "metrics": metrics})

    def _dispatch(self, intent: Dict[str, Any]) -> None:
        if self._outbox is None or self._mode not in (ConnectionMode.REALTIME, ConnectionMode.POLLING):
            logger.warning(f"Dropping {intent['type']} for agent {intent['agentId']}: not connected")
            return
        self._outbox.put_nowait(intent)

    async def _send_intents(self, outbox: asyncio.Queue) -> None:
        """Single sender, so intents leave in call order."""
        while True:
            intent = await outbox.get()
            try:
                if self._mode is ConnectionMode.REALTIME and self._ws is not None:
                    await self._ws.send_json(intent)
                elif self._mode is ConnectionMode.POLLING:
                    await self._put_intent(intent)
                else:
                    logger.warning(f"Dropping {intent['type']} for agent {intent['agentId']}: connection lost")
            except TRANSPORT_ERRORS as e:
                logger.error(f"Error sending {intent['type']} for agent {intent['agentId']}: {e}")

    async def _put_intent(self, intent: Dict[str, Any]) -> None:
        field = "status" if intent["type"] == UPDATE_STATUS else "metrics"
        url = f"{self.api_url}/agents/{intent['agentId']}/{field}"
        async with self._ensure_session().put(
            url,
            json={field: intent[field]},
            timeout=self.request_timeout,
        ) as response:
            if response.status != 200:
                error_text = await response.text()
                logger.error(f"Error updating agent {field}: {response.status} - {error_text[:200]}")
