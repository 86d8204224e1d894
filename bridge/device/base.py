from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from core.errors import EngineNotReady, InvalidArgument


@dataclass
class PlaybackStatus:
    is_playing: bool


@dataclass
class AIReply:
    text: str = ""


@dataclass
class Utterance:
    """One phrase recognized by the speaker."""

    text: str
    id: str = ""
    sender: str = "user"
    timestamp: int = 0


# Return {"handled": True} to suppress the speaker's own reply, None to let it answer.
MessageCallback = Callable[["SpeakerEngine", Utterance], Awaitable[Optional[dict]]]


class SpeakerEngine(ABC):
    """The physical (or simulated) speaker the bridge drives.

    Device authentication, protocol framing and the AI model call live
    behind this interface; the bridge only sequences calls into it.
    """

    @property
    def is_ready(self) -> bool:
        return True

    @abstractmethod
    async def abort(self) -> None:
        """Interrupt whatever the speaker is currently saying."""
        ...

    async def stop(self) -> None:
        """Stop media playback."""
        pass

    @abstractmethod
    async def play(
        self, text: Optional[str] = None, url: Optional[str] = None, blocking: bool = False
    ) -> None:
        """Speak `text` with the speaker's own voice, or play audio from `url`."""
        ...

    @abstractmethod
    async def get_playback_status(self) -> PlaybackStatus:
        ...

    @abstractmethod
    async def ask_ai(self, message: dict) -> AIReply:
        """Send a {id, sender, text, timestamp} message to the AI backend."""
        ...

    async def run(self, on_message: MessageCallback) -> None:
        """Deliver recognized utterances to `on_message` until stopped."""
        pass

    async def close(self) -> None:
        pass


class EngineRef:
    """Holds the current engine so collaborators never keep a stale one."""

    def __init__(self, engine: Optional[SpeakerEngine] = None):
        self._engine = engine

    def get(self) -> Optional[SpeakerEngine]:
        return self._engine

    def bind(self, engine: SpeakerEngine) -> bool:
        """Point at `engine`. Returns True when the reference changed."""
        if engine is None:
            raise InvalidArgument("engine is required")
        changed = engine is not self._engine
        self._engine = engine
        return changed

    @property
    def is_ready(self) -> bool:
        return self._engine is not None and self._engine.is_ready

    def require(self) -> SpeakerEngine:
        if not self.is_ready:
            raise EngineNotReady()
        return self._engine
