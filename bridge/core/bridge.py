from typing import Optional

from loguru import logger

from core.config import AppConfig
from core.state import ConversationState
from core.task_queue import TaskQueue
from device.base import EngineRef, SpeakerEngine, Utterance
from speech.service import SpeechService
from tts.registry import TTSService
from voice.handler import MessageHandler, handled


class Bridge:
    """Owns the process-wide services and wires them together.

    Single-writer discipline: the queue status is written only by the
    TaskQueue, the conversation mode only by the MessageHandler.
    """

    def __init__(self, config: AppConfig, tts: Optional[TTSService] = None):
        self.config = config
        self.engine = EngineRef()
        self.queue = TaskQueue()
        self.conversation = ConversationState()
        self.tts = tts or TTSService(config.tts)
        self.speech = SpeechService(self.engine, self.tts, config.story)
        self.handler = MessageHandler(
            config.wakeup, config.story, self.engine, self.queue, self.speech, self.conversation
        )

    def bind_engine(self, engine: SpeakerEngine) -> None:
        if self.engine.bind(engine):
            logger.info("Speaker engine bound: {}", type(engine).__name__)

    async def on_message(self, engine: SpeakerEngine, message) -> Optional[dict]:
        """Callback for every utterance the speaker recognizes."""
        self.bind_engine(engine)

        if isinstance(message, dict):
            message = Utterance(
                text=message.get("text") or "",
                id=message.get("id") or "",
                sender=message.get("sender") or "user",
                timestamp=message.get("timestamp") or 0,
            )

        try:
            return await self.handler.handle(message)
        except Exception as e:
            logger.error("Failed to handle message '{}': {}", message.text, e)
            return handled()

    async def close(self) -> None:
        await self.queue.close()
