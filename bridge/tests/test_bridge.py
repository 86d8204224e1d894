"""Tests for wiring: the utterance callback and engine loading."""
import pytest

from core.bridge import Bridge
from core.errors import ConfigError
from core.main import load_engine_factory


class TestOnMessage:
    @pytest.mark.asyncio
    async def test_binds_engine_and_accepts_dicts(self, app_config, engine):
        bridge = Bridge(app_config)
        assert not bridge.engine.is_ready

        result = await bridge.on_message(engine, {"text": "闭嘴", "id": "m1"})

        assert result == {"handled": True}
        assert bridge.engine.get() is engine
        assert engine.calls == [("abort",), ("stop",)]
        await bridge.close()

    @pytest.mark.asyncio
    async def test_handler_errors_are_contained(self, app_config, engine):
        bridge = Bridge(app_config)

        async def broken(message):
            raise RuntimeError("bad message")

        bridge.handler.handle = broken
        assert await bridge.on_message(engine, {"text": "hi"}) == {"handled": True}


class TestEngineFactory:
    def test_resolves_import_path(self):
        assert load_engine_factory("device.local:LocalSpeaker").__name__ == "LocalSpeaker"

    @pytest.mark.parametrize("path", ["nocolon", "missing.module:make", "device.local:nothing"])
    def test_bad_specs(self, path):
        with pytest.raises(ConfigError):
            load_engine_factory(path)


class TestLocalSpeaker:
    @pytest.mark.asyncio
    async def test_ask_ai_sends_system_prompt(self):
        from types import SimpleNamespace

        from core.config import AIConfig
        from device.local import LocalSpeaker

        seen = {}

        async def create(**kwargs):
            seen.update(kwargs)
            message = SimpleNamespace(content="你好呀")
            return SimpleNamespace(choices=[SimpleNamespace(message=message)])

        speaker = LocalSpeaker(AIConfig(model="test-model", max_tokens=64), system_prompt="你是小爱")
        speaker._client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))

        reply = await speaker.ask_ai({"id": "1", "sender": "user", "text": "在吗", "timestamp": 0})

        assert reply.text == "你好呀"
        assert seen["model"] == "test-model"
        assert seen["max_tokens"] == 64
        assert seen["messages"] == [
            {"role": "system", "content": "你是小爱"},
            {"role": "user", "content": "在吗"},
        ]

    @pytest.mark.asyncio
    async def test_missing_player_is_not_playing(self, monkeypatch):
        import device.local
        from core.config import AIConfig

        monkeypatch.setattr(device.local, "VOICE_COMMAND", ["xiaoai-bridge-no-such-binary"])
        speaker = device.local.LocalSpeaker(AIConfig())

        await speaker.play(text="你好")

        assert (await speaker.get_playback_status()).is_playing is False
        await speaker.close()
