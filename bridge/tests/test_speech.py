"""Tests for speak / chat / play semantics against a scripted speaker."""
import pytest

from core.config import TTSConfig
from core.errors import EngineNotReady, SynthesisFailed
from device.base import EngineRef
from speech.service import SpeechService
from tts.registry import CallableProvider, TTSService


@pytest.fixture
def speech(engine_ref, tts, story_config):
    return SpeechService(engine_ref, tts, story_config)


class TestSpeak:
    @pytest.mark.asyncio
    async def test_speaker_voice_without_interrupt(self, engine_ref, engine, story_config, tmp_path):
        tts = TTSService(TTSConfig(provider="xiaomi", cache_dir=str(tmp_path)))
        speech = SpeechService(engine_ref, tts, story_config)

        mode = await speech.speak("你好", interrupt=False)

        assert mode == "xiaomi"
        assert engine.calls == [("play", "你好")]
        assert speech.status.last_speak_mode == "xiaomi"
        assert speech.status.last_speak_at is not None

    @pytest.mark.asyncio
    async def test_tts_single_shot(self, speech, engine):
        mode = await speech.speak("你好", interrupt=True)

        assert mode == "tts:fake"
        assert engine.calls == [("abort",), ("play", "http://audio.local/1.mp3")]

    @pytest.mark.asyncio
    async def test_tts_failure_falls_back_to_speaker_voice(self, engine_ref, engine, tts, story_config, make_synth):
        tts.register("fake", CallableProvider(make_synth(fail_on="")))
        speech = SpeechService(engine_ref, tts, story_config)

        mode = await speech.speak("你好")

        assert mode == "xiaomi"
        assert engine.calls == [("play", "你好")]

    @pytest.mark.asyncio
    async def test_provider_crash_falls_back_to_speaker_voice(self, engine_ref, engine, tts, story_config):
        async def crashing(text):
            raise RuntimeError("provider crashed")

        tts.register("fake", CallableProvider(crashing))
        speech = SpeechService(engine_ref, tts, story_config)

        assert await speech.speak("你好") == "xiaomi"
        assert engine.calls == [("play", "你好")]

    @pytest.mark.asyncio
    async def test_story_mode(self, speech, engine):
        mode = await speech.speak("第一句。第二句。", story_mode=True)

        assert mode == "tts:fake:story"
        assert engine.names() == ["play", "status", "play"]

    @pytest.mark.asyncio
    async def test_story_failure_is_not_recovered(self, engine_ref, engine, tts, story_config, make_synth):
        tts.register("fake", CallableProvider(make_synth(fail_on="第一句")))
        speech = SpeechService(engine_ref, tts, story_config)

        with pytest.raises(SynthesisFailed):
            await speech.speak("第一句。第二句。", story_mode=True)
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_story_mode_without_synthesis_uses_speaker_voice(self, engine_ref, engine, story_config, tmp_path):
        tts = TTSService(TTSConfig(provider="xiaomi", cache_dir=str(tmp_path)))
        speech = SpeechService(engine_ref, tts, story_config)

        assert await speech.speak("第一句。第二句。", story_mode=True) == "xiaomi"
        assert engine.calls == [("play", "第一句。第二句。")]

    @pytest.mark.asyncio
    async def test_engine_not_ready(self, tts, story_config, make_engine):
        speech = SpeechService(EngineRef(make_engine(ready=False)), tts, story_config)
        with pytest.raises(EngineNotReady):
            await speech.speak("你好")


class TestAskAndSpeak:
    @pytest.mark.asyncio
    async def test_reply_is_spoken(self, speech, engine):
        mode, reply = await speech.ask_and_speak("天气怎么样", interrupt=True)

        assert (mode, reply) == ("tts:fake", "今天晴天")
        assert engine.names() == ["abort", "ask", "play"]
        message = engine.messages[0]
        assert message["text"] == "天气怎么样"
        assert message["sender"] == "user"
        assert message["id"]
        assert message["timestamp"] > 0

    @pytest.mark.asyncio
    async def test_system_prompt_is_appended(self, speech, engine):
        await speech.ask_and_speak("讲个故事", system_prompt="多用短句")
        assert engine.messages[0]["text"] == "讲个故事\n多用短句"

    @pytest.mark.asyncio
    async def test_empty_reply_speaks_nothing(self, speech, engine):
        engine.reply = ""
        assert await speech.ask_and_speak("嗯") == (None, "")
        assert engine.names() == ["ask"]


class TestPlayAndStop:
    @pytest.mark.asyncio
    async def test_play_url(self, speech, engine):
        assert await speech.play_url("http://music/1.mp3", interrupt=True) == "url"
        assert engine.calls == [("abort",), ("play", "http://music/1.mp3")]

    @pytest.mark.asyncio
    async def test_stop_tries_both_steps(self, speech, engine):
        async def broken_abort():
            raise RuntimeError("abort failed")

        engine.abort = broken_abort
        await speech.stop()
        assert engine.calls == [("stop",)]
