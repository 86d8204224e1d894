import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional


def now_ms() -> int:
    return int(time.time() * 1000)


class ConversationMode(str, Enum):
    IDLE = "idle"                  # Only wake-keyword utterances reach the AI
    AI_CONVERSATION = "ai"         # Every utterance is an AI query until exited


@dataclass
class TaskError:
    type: str
    message: str
    at: int


@dataclass
class QueueStatus:
    """Snapshot of the task queue. Written only by TaskQueue."""

    depth: int = 0
    last_task_type: Optional[str] = None
    last_task_error: Optional[TaskError] = None
    last_task_finished_at: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ConversationState:
    """Session state of the voice interpreter. Written only by MessageHandler."""

    mode: ConversationMode = ConversationMode.IDLE

    @property
    def ai_mode(self) -> bool:
        return self.mode == ConversationMode.AI_CONVERSATION

    def enter_ai_mode(self) -> None:
        self.mode = ConversationMode.AI_CONVERSATION

    def exit_ai_mode(self) -> None:
        self.mode = ConversationMode.IDLE


@dataclass
class SpeakStatus:
    """Which output path served the most recent speak request."""

    last_speak_mode: Optional[str] = None
    last_speak_at: Optional[int] = None

    def record(self, mode: str) -> str:
        self.last_speak_mode = mode
        self.last_speak_at = now_ms()
        return mode

