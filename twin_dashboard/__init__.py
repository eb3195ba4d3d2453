"""Digital twin dashboard: realtime agent sync over WebSocket with REST polling fallback."""

from .broadcaster import UpdateBroadcaster
from .config import Settings, configure_logging
from .main import create_app
from .models import Agent, Conversation, DigitalTwin, Task
from .seed import DIGITAL_TWINS, seed_agents
from .storage import AgentStore
from .sync_client import ConnectionMode, SyncClient
from .voice_service import VoiceService

__version__ = "0.1.0"

__all__ = [
    "Agent",
    "AgentStore",
    "ConnectionMode",
    "Conversation",
    "DIGITAL_TWINS",
    "DigitalTwin",
    "Settings",
    "SyncClient",
    "Task",
    "UpdateBroadcaster",
    "VoiceService",
    "configure_logging",
    "create_app",
    "seed_agents",
]
