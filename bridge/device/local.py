import asyncio
import subprocess
import sys
import uuid
from typing import Optional

from loguru import logger

from core.config import AIConfig
from core.state import now_ms
from device.base import AIReply, MessageCallback, PlaybackStatus, SpeakerEngine, Utterance

PLAYER_COMMAND = ["ffplay", "-nodisp", "-autoexit", "-loglevel", "quiet"]
VOICE_COMMAND = ["espeak-ng", "-v", "cmn"]


class LocalSpeaker(SpeakerEngine):
    """Development stand-in for a smart speaker.

    Plays audio URLs with ffplay, reads text aloud with espeak-ng, answers
    AI requests through an OpenAI-compatible API, and treats every line
    typed on stdin as a recognized utterance.
    """

    def __init__(self, ai: AIConfig, system_prompt: str = ""):
        self.ai = ai
        self.system_prompt = system_prompt
        self._process: subprocess.Popen | None = None
        self._client = None
        self._running = False

    def _ensure_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.ai.api_key, base_url=self.ai.base_url)

    async def abort(self) -> None:
        proc = self._process
        if proc is not None and proc.poll() is None:
            proc.kill()
            logger.info("Playback interrupted (killed {}).", proc.args[0])
        self._process = None

    async def stop(self) -> None:
        await self.abort()

    async def play(
        self, text: Optional[str] = None, url: Optional[str] = None, blocking: bool = False
    ) -> None:
        if url:
            command = PLAYER_COMMAND + [url]
        elif text:
            command = VOICE_COMMAND + [text]
        else:
            return

        # A speaker plays one thing at a time: a new play replaces the old one.
        await self.abort()
        try:
            self._process = subprocess.Popen(
                command, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
            )
        except FileNotFoundError:
            logger.error("{} not found. Install it to hear local playback.", command[0])
            return

        logger.info("Playing {}", url or f"'{text[:50]}'")
        if blocking:
            loop = asyncio.get_event_loop()
            await loop.run_in_executor(None, self._process.wait)

    async def get_playback_status(self) -> PlaybackStatus:
        proc = self._process
        return PlaybackStatus(is_playing=proc is not None and proc.poll() is None)

    async def ask_ai(self, message: dict) -> AIReply:
        self._ensure_client()

        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": message["text"]})

        response = await self._client.chat.completions.create(
            model=self.ai.model,
            messages=messages,
            temperature=self.ai.temperature,
            max_tokens=self.ai.max_tokens,
        )
        content = response.choices[0].message.content if response.choices else ""
        return AIReply(text=content or "")

    async def run(self, on_message: MessageCallback) -> None:
        """Read utterances from stdin until EOF or close()."""
        self._running = True
        loop = asyncio.get_event_loop()
        reader = asyncio.StreamReader()
        await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
        logger.info("Local speaker ready. Type an utterance and press Enter.")

        while self._running:
            line = await reader.readline()
            if not line:
                logger.info("stdin closed, local speaker stopping.")
                break
            text = line.decode("utf-8", errors="replace").strip()
            if not text:
                continue

            utterance = Utterance(text=text, id=str(uuid.uuid4()), timestamp=now_ms())
            result = await on_message(self, utterance)
            if result is None:
                logger.info("Not handled; the speaker would answer '{}' itself.", text)

    async def close(self) -> None:
        self._running = False
        await self.abort()
