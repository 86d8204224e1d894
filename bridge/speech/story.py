import asyncio
import re
import time

from loguru import logger

from core.config import StoryConfig
from core.errors import PlaybackWaitTimeout
from device.base import EngineRef
from tts.registry import TTSService

# A sentence with its terminator, or a trailing fragment without one.
SENTENCE = re.compile(r"[^。！？!?]+[。！？!?]*")
TERMINATORS = "。！？!?"


def split_sentences(text: str) -> list[str]:
    sentences = []
    for match in SENTENCE.finditer(text):
        sentence = match.group(0).strip()
        if not sentence.rstrip(TERMINATORS).strip():
            continue
        if sentence[-1] not in TERMINATORS:
            sentence += "。"
        sentences.append(sentence)
    return sentences


def split_story(text: str, first_chunk_max_chars: int, normal_chunk_max_chars: int) -> list[str]:
    """Group sentences into playback segments.

    The first segment is kept short so audio starts quickly; later segments
    may be longer. Sentences are never split, so a single sentence longer
    than the limit becomes a segment of its own.
    """
    chunks: list[str] = []
    current = ""

    for sentence in split_sentences(text):
        limit = first_chunk_max_chars if not chunks else normal_chunk_max_chars
        candidate = current + sentence
        if current and len(candidate) > limit:
            chunks.append(current)
            current = sentence
        else:
            current = candidate

    if current:
        chunks.append(current)
    return chunks


class StoryPacer:
    """Plays long text as consecutive segments on a single-playback speaker.

    The speaker can only be polled for "is it still playing", so each
    segment after the first waits for the previous one to finish before
    it is synthesized and played.
    """

    def __init__(self, engine: EngineRef, tts: TTSService, config: StoryConfig):
        self.engine = engine
        self.tts = tts
        self.config = config

    async def speak_story(self, text: str) -> str:
        chunks = split_story(text, self.config.first_chunk_max_chars, self.config.normal_chunk_limit)
        logger.info("Story mode: {} chars in {} segment(s)", len(text), len(chunks))

        for index, chunk in enumerate(chunks):
            if index > 0:
                await self.wait_for_playback_complete()
            # Synthesis errors propagate: the rest of the story is dropped.
            audio_url = await self.tts.synthesize(chunk)
            await self.engine.require().play(url=audio_url)
            logger.debug("Story segment {}/{} playing", index + 1, len(chunks))

        return "story"

    async def wait_for_playback_complete(self) -> None:
        """Poll the speaker until it is idle, or raise PlaybackWaitTimeout."""
        engine = self.engine.require()
        interval = self.config.poll_interval
        timeout = self.config.wait_timeout
        deadline = time.monotonic() + timeout

        while time.monotonic() < deadline:
            status = await engine.get_playback_status()
            if not status.is_playing:
                return
            await asyncio.sleep(interval)

        raise PlaybackWaitTimeout(timeout)
