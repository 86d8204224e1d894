import asyncio
from typing import Optional

from loguru import logger

from core.config import StoryConfig, WakeupConfig
from core.state import ConversationState
from core.task_queue import TaskQueue
from device.base import EngineRef, Utterance
from speech.service import SpeechService
from voice.commands import CommandKind, classify, is_story_request

TASK_STOP = "voice:stop"
TASK_ENTER_AI_MODE = "voice:enter-ai-mode"
TASK_EXIT_AI_MODE = "voice:exit-ai-mode"
TASK_CHAT = "voice:chat"


def handled() -> dict:
    """A fresh reply telling the speaker not to answer on its own."""
    return {"handled": True}


class MessageHandler:
    """Turns recognized utterances into queued speaker work.

    Returning {"handled": True} keeps the speaker from answering on its own;
    returning None lets it reply as usual.
    """

    def __init__(
        self,
        wakeup: WakeupConfig,
        story: StoryConfig,
        engine: EngineRef,
        queue: TaskQueue,
        speech: SpeechService,
        conversation: ConversationState,
    ):
        self.wakeup = wakeup
        self.story = story
        self.engine = engine
        self.queue = queue
        self.speech = speech
        self.conversation = conversation

    async def handle(self, message: Utterance) -> Optional[dict]:
        if not self.engine.is_ready:
            logger.warning("Engine not ready, skipping message.")
            return None

        text = message.text or ""
        command = classify(text, self.wakeup, self.conversation.ai_mode)
        logger.debug("Voice '{}' -> {}", text, command.kind.value)

        if command.kind == CommandKind.STOP:
            await self.queue.enqueue(self.speech.stop, TASK_STOP)
            return handled()

        if command.kind == CommandKind.ENTER_AI_MODE:
            self.conversation.enter_ai_mode()
            logger.info("AI conversation mode on.")
            await self.queue.enqueue(
                lambda: self.speech.speak(self.wakeup.enter_message, interrupt=True),
                TASK_ENTER_AI_MODE,
            )
            return handled()

        if command.kind == CommandKind.EXIT_AI_MODE:
            self.conversation.exit_ai_mode()
            logger.info("AI conversation mode off.")
            await self.queue.enqueue(
                lambda: self.speech.speak(self.wakeup.exit_message, interrupt=True),
                TASK_EXIT_AI_MODE,
            )
            return handled()

        if command.kind == CommandKind.IGNORE:
            return None

        if command.is_noop:
            return handled()

        # Answer in the background; the speaker must be told "handled" right
        # away or it starts its own reply.
        future = self.queue.submit(lambda: self._chat(command.intent), TASK_CHAT)
        future.add_done_callback(self._log_chat_outcome)
        return handled()

    async def _chat(self, intent: str):
        story_mode = is_story_request(intent, self.story.trigger_pattern)
        return await self.speech.ask_and_speak(
            intent,
            interrupt=True,
            story_mode=story_mode,
            system_prompt=self.story.system_prompt if story_mode else "",
        )

    @staticmethod
    def _log_chat_outcome(future: asyncio.Future) -> None:
        if future.cancelled():
            logger.warning("Voice chat task was cancelled.")
            return
        error = future.exception()
        if error is not None:
            logger.error("Voice chat failed: {}", error)
            return
        mode, reply_text = future.result()
        logger.info("Voice chat answered via {}: '{}'", mode, reply_text[:50])
