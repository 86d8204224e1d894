import uuid
from typing import Optional

from loguru import logger

from core.config import StoryConfig
from core.state import SpeakStatus, now_ms
from device.base import EngineRef
from speech.story import StoryPacer
from tts.registry import TTSService

XIAOMI_MODE = "xiaomi"
URL_MODE = "url"


class SpeechService:
    """Device-affecting operations shared by the HTTP API and voice handler.

    Every method here talks to the speaker and is meant to run inside a
    TaskQueue job, never directly from a request handler.
    """

    def __init__(self, engine: EngineRef, tts: TTSService, story_config: StoryConfig):
        self.engine = engine
        self.tts = tts
        self.story = StoryPacer(engine, tts, story_config)
        self.status = SpeakStatus()

    async def speak(self, text: str, interrupt: bool = False, story_mode: bool = False) -> str:
        """Say `text` and return the output mode that was used.

        Single-shot TTS failures fall back to the speaker's own voice.
        Story-mode failures are not recovered and reach the caller.
        """
        engine = self.engine.require()

        if interrupt:
            await engine.abort()

        provider = self.tts.active_provider

        if self.tts.can_synthesize():
            if story_mode:
                await self.story.speak_story(text)
                return self.status.record(f"tts:{provider}:story")

            try:
                audio_url = await self.tts.synthesize(text)
                await engine.play(url=audio_url)
                return self.status.record(f"tts:{provider}")
            except Exception as e:
                logger.warning("TTS({}) failed, falling back to speaker voice: {}", provider, e)

        await engine.play(text=text)
        return self.status.record(XIAOMI_MODE)

    async def ask_and_speak(
        self, text: str, interrupt: bool = False, story_mode: bool = False, system_prompt: str = ""
    ) -> tuple[Optional[str], str]:
        """Ask the AI backend and speak its reply. Returns (mode, reply_text)."""
        engine = self.engine.require()

        if interrupt:
            await engine.abort()

        message = {
            "id": str(uuid.uuid4()),
            "sender": "user",
            "text": f"{text}\n{system_prompt}" if system_prompt else text,
            "timestamp": now_ms(),
        }
        reply = await engine.ask_ai(message)
        reply_text = (reply.text or "").strip() if reply else ""

        if not reply_text:
            logger.info("AI returned an empty reply for '{}'", text[:50])
            return None, ""

        mode = await self.speak(reply_text, interrupt=False, story_mode=story_mode)
        return mode, reply_text

    async def play_url(self, url: str, interrupt: bool = False, blocking: bool = False) -> str:
        engine = self.engine.require()

        if interrupt:
            await engine.abort()

        await engine.play(url=url, blocking=blocking)
        return URL_MODE

    async def stop(self) -> None:
        """Silence the speaker: interrupt speech, then stop media playback.

        Each step is attempted even if the other fails.
        """
        engine = self.engine.require()
        try:
            await engine.abort()
        except Exception as e:
            logger.warning("Failed to interrupt speaker: {}", e)
        try:
            await engine.stop()
        except Exception as e:
            logger.warning("Failed to stop playback: {}", e)
