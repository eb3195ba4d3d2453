"""Tests for the ElevenLabs proxy."""

import asyncio
import time

import aiohttp

from twin_dashboard import voice_service
from twin_dashboard.voice_service import (
    JOBS_VOICE_ID,
    LEONARDO_VOICE_ID,
    VoiceService,
    voice_for_persona,
)

API_KEY = "sk_test_0123456789abcdef"


class FakeResponse:
    def __init__(self, status, body=b"", payload=None):
        self.status = status
        self.body = body
        self.payload = payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def read(self):
        return self.body

    async def text(self):
        return "error"

    async def json(self):
        return self.payload


class FakeSession:
    calls = []

    def __init__(self, response):
        self.response = response

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def post(self, url, headers=None, json=None):
        FakeSession.calls.append((url, json))
        return self.response

    def get(self, url, headers=None):
        FakeSession.calls.append((url, None))
        return self.response


def session_factory(response):
    FakeSession.calls = []

    def make(*args, **kwargs):
        return FakeSession(response)

    return make


def test_voice_for_persona():
    voice_id, settings = voice_for_persona("Leonardo da Vinci")
    assert voice_id == LEONARDO_VOICE_ID
    assert settings["stability"] == 0.8

    assert voice_for_persona("Steve Jobs")[0] == JOBS_VOICE_ID
    assert voice_for_persona(None)[0] == JOBS_VOICE_ID


def test_short_key_disables_service():
    assert not VoiceService("short").enabled
    assert VoiceService(API_KEY).enabled


async def test_fallback_without_key():
    service = VoiceService("")
    result = await service.synthesize_speech("Stay hungry", "Steve Jobs")
    assert result == {"fallback": True, "text": "Stay hungry", "persona": "Steve Jobs"}


async def test_fallback_voices_without_key():
    voices = await VoiceService("").get_voices()
    assert [v["name"] for v in voices] == ["Leonardo da Vinci (Fallback)", "Steve Jobs (Fallback)"]


async def test_synthesis_returns_audio(monkeypatch):
    monkeypatch.setattr(
        voice_service.aiohttp, "ClientSession",
        session_factory(FakeResponse(200, body=b"mp3-bytes")),
    )
    service = VoiceService(API_KEY, rate_limit_delay=0)

    audio = await service.synthesize_speech("x" * 200, "Leonardo da Vinci")

    assert audio == b"mp3-bytes"
    url, payload = FakeSession.calls[0]
    assert url.endswith(f"/text-to-speech/{LEONARDO_VOICE_ID}")
    assert payload["text"] == "x" * 150 + "..."


async def test_provider_error_falls_back(monkeypatch):
    monkeypatch.setattr(
        voice_service.aiohttp, "ClientSession",
        session_factory(FakeResponse(401)),
    )
    service = VoiceService(API_KEY, rate_limit_delay=0)

    result = await service.synthesize_speech("Hello", "Steve Jobs")
    assert result["fallback"] is True


async def test_network_error_falls_back(monkeypatch):
    def broken(*args, **kwargs):
        raise aiohttp.ClientConnectionError("unreachable")

    monkeypatch.setattr(voice_service.aiohttp, "ClientSession", broken)
    service = VoiceService(API_KEY, rate_limit_delay=0)

    assert (await service.synthesize_speech("Hello"))["fallback"] is True
    assert [v["voice_id"] for v in await service.get_voices()] == [LEONARDO_VOICE_ID, JOBS_VOICE_ID]


async def test_provider_voice_list(monkeypatch):
    payload = {"voices": [{"voice_id": "abc", "name": "Narrator", "category": "premade"}]}
    monkeypatch.setattr(
        voice_service.aiohttp, "ClientSession",
        session_factory(FakeResponse(200, payload=payload)),
    )

    voices = await VoiceService(API_KEY).get_voices()
    assert voices == [{"voice_id": "abc", "name": "Narrator"}]


async def test_concurrent_requests_are_spaced(monkeypatch):
    started = []

    class TimedSession(FakeSession):
        def post(self, url, headers=None, json=None):
            started.append(time.monotonic())
            return self.response

    monkeypatch.setattr(
        voice_service.aiohttp, "ClientSession",
        lambda *args, **kwargs: TimedSession(FakeResponse(200, body=b"mp3")),
    )
    service = VoiceService(API_KEY, rate_limit_delay=0.1)

    results = await asyncio.gather(
        service.synthesize_speech("one"),
        service.synthesize_speech("two"),
    )

    assert results == [b"mp3", b"mp3"]
    assert len(started) == 2
    assert started[1] - started[0] >= 0.09
