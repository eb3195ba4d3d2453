"""
=============================================================================
VOICE_SERVICE.PY - ElevenLabs text-to-speech proxy
=============================================================================

Wraps the two ElevenLabs REST calls the dashboard needs:
- POST /v1/text-to-speech/{voice_id}  (returns audio/mpeg bytes)
- GET  /v1/voices

Without an API key, or on any provider error, synthesis returns a fallback
payload {"fallback": True, "text": ..., "persona": ...} so the caller can
use a local voice instead. Voice listing falls back to a canned list.
"""

import asyncio
import time
from typing import Dict, List, Optional, Union

import aiohttp
from loguru import logger

ELEVENLABS_API_URL = "https://api.elevenlabs.io/v1"

LEONARDO_VOICE_ID = "ThT5KcBeYPX3keUQqHPh"
JOBS_VOICE_ID = "AZnzlk1XvdvUeBnXmlld"

DEFAULT_VOICES = [
    {"voice_id": LEONARDO_VOICE_ID, "name": "Leonardo da Vinci"},
    {"voice_id": JOBS_VOICE_ID, "name": "Steve Jobs"},
]

MAX_CHARS = 150

SynthesisResult = Union[bytes, Dict[str, object]]


def voice_for_persona(persona: Optional[str]) -> tuple:
    """Pick the voice id and settings for a persona name."""
    is_leonardo = bool(persona) and "leonardo" in persona.lower()
    settings = {
        "stability": 0.8 if is_leonardo else 0.67,
        "similarity_boost": 0.80 if is_leonardo else 0.85,
        "style": 0.35 if is_leonardo else 0.65,
        "use_speaker_boost": True,
    }
    return (LEONARDO_VOICE_ID if is_leonardo else JOBS_VOICE_ID), settings


class VoiceService:
    """Speech synthesis with a canned fallback."""

    def __init__(
        self,
        api_key: str = "",
        rate_limit_delay: float = 1.0,
        timeout: float = 15.0,
        api_url: str = ELEVENLABS_API_URL,
    ):
        self.api_key = api_key or ""
        self.rate_limit_delay = rate_limit_delay
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.api_url = api_url.rstrip("/")
        self._last_call = 0.0
        self._rate_lock = asyncio.Lock()

        if self.enabled:
            logger.info(f"ElevenLabs service initialized with API key: {self.api_key[:4]}...")
        else:
            logger.info("ElevenLabs API key not found - falling back to default voices")

    @property
    def enabled(self) -> bool:
        return len(self.api_key) > 10

    @staticmethod
    def fallback(text: str, persona: Optional[str]) -> Dict[str, object]:
        return {"fallback": True, "text": text, "persona": persona}

    async def _respect_rate_limit(self) -> None:
        elapsed = time.monotonic() - self._last_call
        if elapsed < self.rate_limit_delay:
            await asyncio.sleep(self.rate_limit_delay - elapsed)

    async def synthesize_speech(self, text: str, persona: Optional[str] = None) -> SynthesisResult:
        """Return MP3 bytes, or the fallback payload."""
        if not self.enabled:
            logger.warning("Using fallback voice mode since ElevenLabs is not available")
            return self.fallback(text, persona)

        truncated = text if len(text) <= MAX_CHARS else text[:MAX_CHARS] + "..."
        voice_id, voice_settings = voice_for_persona(persona)

        headers = {
            "Accept": "audio/mpeg",
            "Content-Type": "application/json",
            "xi-api-key": self.api_key,
        }
        payload = {
            "text": truncated,
            "model_id": "eleven_monolingual_v1",
            "voice_settings": voice_settings,
        }

        # Calls start at least rate_limit_delay apart, even when concurrent
        async with self._rate_lock:
            await self._respect_rate_limit()
            try:
                async with aiohttp.ClientSession(timeout=self.timeout) as session:
                    async with session.post(
                        f"{self.api_url}/text-to-speech/{voice_id}",
                        headers=headers,
                        json=payload,
                    ) as response:
                        if response.status != 200:
                            error_text = await response.text()
                            logger.error(f"ElevenLabs API error: {response.status} - {error_text[:200]}")
                            return self.fallback(text, persona)
                        audio = await response.read()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error(f"Speech synthesis failed: {e}")
                return self.fallback(text, persona)
            finally:
                self._last_call = time.monotonic()

        logger.info(f"Voice synthesis successful: persona={persona}, {len(audio)} bytes")
        return audio

    async def get_voices(self) -> List[Dict[str, str]]:
        """List provider voices, or the canned pair."""
        if not self.enabled:
            return [dict(v, name=f"{v['name']} (Fallback)") for v in DEFAULT_VOICES]

        headers = {"Accept": "application/json", "xi-api-key": self.api_key}
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(f"{self.api_url}/voices", headers=headers) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        logger.error(f"Error fetching voices: {response.status} - {error_text[:200]}")
                        return [dict(v) for v in DEFAULT_VOICES]
                    data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error fetching voices: {e}")
            return [dict(v) for v in DEFAULT_VOICES]

        return [
            {"voice_id": v["voice_id"], "name": v["name"]}
            for v in data.get("voices", [])
        ]
