"""Shared fixtures: a scripted speaker and a TTS service with a fake provider."""
from typing import Optional

import pytest

from core.config import AppConfig, StoryConfig, TTSConfig, WakeupConfig
from device.base import AIReply, EngineRef, PlaybackStatus, SpeakerEngine
from tts.registry import CallableProvider, TTSService


class FakeEngine(SpeakerEngine):
    """Records every device call in order."""

    def __init__(self, reply: str = "", playing: Optional[list[bool]] = None, ready: bool = True):
        self.calls: list[tuple] = []
        self.messages: list[dict] = []
        self.reply = reply
        self._playing = list(playing or [])
        self._ready = ready

    @property
    def is_ready(self) -> bool:
        return self._ready

    async def abort(self) -> None:
        self.calls.append(("abort",))

    async def stop(self) -> None:
        self.calls.append(("stop",))

    async def play(self, text=None, url=None, blocking=False) -> None:
        self.calls.append(("play", url or text))

    async def get_playback_status(self) -> PlaybackStatus:
        self.calls.append(("status",))
        return PlaybackStatus(is_playing=self._playing.pop(0) if self._playing else False)

    async def ask_ai(self, message: dict) -> AIReply:
        self.messages.append(message)
        self.calls.append(("ask", message["text"]))
        return AIReply(text=self.reply)

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]


class FakeSynth:
    """Synthesizes `text` into a predictable URL, optionally failing."""

    def __init__(self, fail_on: Optional[str] = None):
        self.texts: list[str] = []
        self.fail_on = fail_on

    async def __call__(self, text: str) -> str:
        from core.errors import SynthesisFailed

        self.texts.append(text)
        if self.fail_on is not None and self.fail_on in text:
            raise SynthesisFailed("upstream exploded", code=500)
        return f"http://audio.local/{len(self.texts)}.mp3"


@pytest.fixture
def engine():
    return FakeEngine(reply="今天晴天")


@pytest.fixture
def engine_ref(engine):
    return EngineRef(engine)


@pytest.fixture
def synth():
    return FakeSynth()


@pytest.fixture
def tts_config(tmp_path):
    return TTSConfig(provider="fake", cache_dir=str(tmp_path / "cache"), public_base_url="http://bridge.local/api/audio")


@pytest.fixture
def tts(tts_config, synth):
    service = TTSService(tts_config)
    service.register("fake", CallableProvider(synth))
    return service


@pytest.fixture
def story_config():
    return StoryConfig(
        first_chunk_max_chars=5,
        normal_chunk_max_chars=10,
        poll_interval=0.01,
        wait_timeout=0.2,
    )


@pytest.fixture
def wakeup():
    return WakeupConfig(
        keywords=["请"],
        enter_ai_mode=["进入模式"],
        exit_ai_mode=["退出模式"],
        stop_keywords=["闭嘴"],
        enter_message="你好",
        exit_message="再见",
    )


@pytest.fixture
def app_config(tmp_path, wakeup, story_config):
    config = AppConfig(wakeup=wakeup, story=story_config)
    config.tts.cache_dir = str(tmp_path / "cache")
    return config


@pytest.fixture
def make_engine():
    return FakeEngine


@pytest.fixture
def make_synth():
    return FakeSynth
