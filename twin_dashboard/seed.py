"""Seeds the fixed roster of digital twin personas."""

from typing import Any, Dict, List

from loguru import logger

from .storage import AgentStore

AVATAR_URL = "https://api.dicebear.com/7.x/avataaars/svg?seed={seed}"

DIGITAL_TWINS: List[Dict[str, Any]] = [
    {
        "name": "Albert Einstein",
        "type": "Theoretical Physics",
        "capabilities": ["Innovation", "Research", "Problem Solving"],
        "avatar": AVATAR_URL.format(seed="Einstein"),
        "status": "active",
    },
    {
        "name": "Elon Musk",
        "type": "Tech Entrepreneur",
        "capabilities": ["Innovation", "Strategic Thinking", "Product Development"],
        "avatar": AVATAR_URL.format(seed="Musk"),
        "status": "active",
    },
    {
        "name": "Emad Mostaque",
        "type": "AI Innovator",
        "capabilities": ["Artificial Intelligence", "Leadership", "Technical Vision"],
        "avatar": AVATAR_URL.format(seed="Mostaque"),
        "status": "active",
    },
    {
        "name": "Fei-Fei Li",
        "type": "AI Research",
        "capabilities": ["Artificial Intelligence", "Research", "Technical Vision"],
        "avatar": AVATAR_URL.format(seed="Li"),
        "status": "active",
    },
    {
        "name": "Leonardo da Vinci",
        "type": "Renaissance Innovator",
        "capabilities": ["Innovation", "Art", "Engineering"],
        "avatar": AVATAR_URL.format(seed="DaVinci"),
        "status": "active",
    },
    {
        "name": "Steve Jobs",
        "type": "Tech Visionary",
        "capabilities": ["Innovation", "Product Development", "Design"],
        "avatar": AVATAR_URL.format(seed="Jobs"),
        "status": "active",
    },
    {
        "name": "Walt Disney",
        "type": "Creative Visionary",
        "capabilities": ["Creativity", "Innovation", "Storytelling"],
        "avatar": AVATAR_URL.format(seed="Disney"),
        "status": "active",
    },
]


async def seed_agents(store: AgentStore) -> int:
    """Create any of the seven personas that are missing.

    Existing rows are de-duplicated by name first. Returns the number of
    agents created.
    """
    existing = await store.get_agents()
    if existing:
        removed = await store.cleanup_duplicate_agents()
        if removed:
            logger.info(f"Cleaned up {removed} duplicate agents")

    existing_names = {agent.name for agent in existing}
    created = 0
    for twin in DIGITAL_TWINS:
        if twin["name"] in existing_names:
            logger.debug(f"Agent already exists: {twin['name']}")
            continue
        await store.create_agent(**twin)
        created += 1
        logger.info(f"Created agent: {twin['name']}")

    logger.info(f"Digital twin initialization complete ({created} created)")
    return created
