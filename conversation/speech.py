"""Speech synthesis of the assistant's opening line (ElevenLabs)."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

import httpx

from config.settings import Settings

logger = logging.getLogger(__name__)

ELEVENLABS_API_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"


class Speaker(Protocol):
    async def speak(self, text: str) -> None: ...


def find_speech_cut(text: str, min_cut: int = 100, max_cut: int = 400) -> int | None:
    """Where the opening segment of a growing reply ends, if it is ready.

    The boundary is the last newline so far, or failing that the last
    ". ". It only counts when it falls strictly between min_cut and max_cut.
    """
    cut = text.rfind("\n")
    if cut < 0:
        cut = text.rfind(". ")
    if min_cut < cut < max_cut:
        return cut
    return None


class ElevenLabsSpeaker:
    """Posts text to the ElevenLabs TTS endpoint and hands the audio to a player."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        on_audio: Optional[Callable[[bytes], Awaitable[None] | None]] = None,
    ):
        self.settings = settings or Settings()
        self.client = client or httpx.AsyncClient(timeout=30.0)
        self.on_audio = on_audio

    @property
    def enabled(self) -> bool:
        return bool(self.settings.ELEVENLABS_API_KEY)

    async def speak(self, text: str) -> None:
        if not self.enabled:
            logger.debug("Speech skipped, no ElevenLabs API key configured")
            return
        response = await self.client.post(
            ELEVENLABS_API_URL.format(voice_id=self.settings.ELEVENLABS_VOICE_ID),
            headers={
                "xi-api-key": self.settings.ELEVENLABS_API_KEY,
                "Accept": "audio/mpeg",
            },
            json={"text": text, "model_id": self.settings.ELEVENLABS_MODEL_ID},
        )
        response.raise_for_status()
        audio = response.content
        logger.debug("Synthesized %d chars into %d bytes of audio", len(text), len(audio))
        if self.on_audio is not None:
            result = self.on_audio(audio)
            if asyncio.iscoroutine(result):
                await result

    async def aclose(self) -> None:
        await self.client.aclose()
