"""Tests for the HTTP control surface."""
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from api.server import create_app
from core.bridge import Bridge
from tts.registry import CallableProvider

TOKEN = "s3cret"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def bridge(app_config, engine):
    app_config.api.token = TOKEN
    b = Bridge(app_config)
    b.bind_engine(engine)
    return b


@pytest.fixture
def client(bridge):
    with TestClient(create_app(bridge)) as c:
        yield c


class TestAuth:
    def test_health_needs_no_token(self, client, bridge):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["ok"] is True
        assert data["engine_ready"] is True
        assert data["ai_mode"] is False
        assert data["tts_provider"] == "xiaomi"
        assert data["queue_depth"] == 0
        assert data["last_task_error"] is None

    def test_missing_token(self, client):
        resp = client.post("/api/speak", json={"text": "你好"})
        assert resp.status_code == 401
        assert resp.json() == {"ok": False, "error": "Unauthorized"}

    def test_wrong_token(self, client):
        resp = client.post("/api/speak", json={"text": "你好"}, headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    def test_no_token_configured_allows_all(self, app_config, engine):
        app_config.api.token = ""
        bridge = Bridge(app_config)
        bridge.bind_engine(engine)
        with TestClient(create_app(bridge)) as c:
            assert c.post("/api/speak", json={"text": "你好"}).status_code == 200


class TestSpeak:
    def test_speaker_voice_without_interrupt(self, client, engine):
        resp = client.post("/api/speak", json={"text": " 你好 ", "interrupt": False}, headers=AUTH)

        assert resp.status_code == 200
        data = resp.json()
        assert data["ok"] is True
        assert data["type"] == "speak"
        assert data["mode"] == "xiaomi"
        assert data["text"] == "你好"
        assert data["waited_ms"] >= 0
        assert engine.calls == [("play", "你好")]

    def test_tts_story_mode(self, client, bridge, engine, make_synth):
        bridge.config.tts.provider = "fake"
        bridge.tts.register("fake", CallableProvider(make_synth()))

        resp = client.post("/api/speak", json={"text": "第一句。第二句。", "storyMode": True}, headers=AUTH)

        assert resp.json()["mode"] == "tts:fake:story"
        assert engine.names() == ["abort", "play", "status", "play"]

    def test_text_required(self, client, engine):
        resp = client.post("/api/speak", json={"text": "   "}, headers=AUTH)
        assert resp.status_code == 400
        assert resp.json() == {"ok": False, "error": "text is required"}
        assert engine.calls == []

    def test_invalid_json(self, client):
        resp = client.post(
            "/api/speak", content=b"{not json", headers={**AUTH, "Content-Type": "application/json"}
        )
        assert resp.status_code == 400
        assert resp.json()["ok"] is False

    def test_body_too_large(self, client, bridge):
        text = "长" * bridge.config.api.max_body_bytes
        resp = client.post("/api/speak", json={"text": text}, headers=AUTH)
        assert resp.status_code == 413

    def test_chunked_body_too_large(self, client, bridge, engine):
        limit = bridge.config.api.max_body_bytes

        def body():
            yield b'{"text": "'
            for _ in range(limit // 1000 + 2):
                yield b"a" * 1000
            yield b'"}'

        resp = client.post(
            "/api/speak", content=body(), headers={**AUTH, "Content-Type": "application/json"}
        )

        assert resp.status_code == 413
        assert resp.json() == {"ok": False, "error": "Request body too large"}
        assert engine.calls == []

    def test_engine_not_ready_is_not_queued(self, app_config, make_engine):
        app_config.api.token = ""
        bridge = Bridge(app_config)
        bridge.bind_engine(make_engine(ready=False))
        with TestClient(create_app(bridge)) as c:
            resp = c.post("/api/speak", json={"text": "你好"})
            health = c.get("/api/health").json()

        assert resp.status_code == 503
        assert resp.json()["error"] == "Engine not ready"
        assert health["engine_ready"] is False
        assert health["last_task_type"] is None

    def test_task_failure_is_reported(self, client, engine):
        async def broken_play(text=None, url=None, blocking=False):
            raise RuntimeError("speaker offline")

        engine.play = broken_play
        resp = client.post("/api/speak", json={"text": "你好"}, headers=AUTH)

        assert resp.status_code == 500
        assert "speaker offline" in resp.json()["error"]

        health = client.get("/api/health").json()
        assert health["last_task_type"] == "api:speak"
        assert health["last_task_error"]["message"] == "speaker offline"


class TestChatAndPlay:
    def test_chat(self, client, engine):
        resp = client.post("/api/chat", json={"text": "天气"}, headers=AUTH)

        data = resp.json()
        assert data["type"] == "chat"
        assert data["mode"] == "xiaomi"
        assert data["reply_text"] == "今天晴天"
        assert data["replyText"] == "今天晴天"
        assert engine.names() == ["abort", "ask", "play"]

    def test_play(self, client, engine):
        resp = client.post("/api/play", json={"url": "http://music/a.mp3", "blocking": True}, headers=AUTH)

        assert resp.json()["mode"] == "url"
        assert engine.calls == [("abort",), ("play", "http://music/a.mp3")]

    def test_play_requires_url(self, client):
        resp = client.post("/api/play", json={}, headers=AUTH)
        assert resp.status_code == 400
        assert resp.json()["error"] == "url is required"


class TestAudio:
    def test_serves_cached_file(self, client, bridge):
        cache_dir = Path(bridge.config.tts.cache_dir)
        cache_dir.mkdir(parents=True, exist_ok=True)
        (cache_dir / "tts-1-abc.mp3").write_bytes(b"ID3data")

        resp = client.get("/api/audio/tts-1-abc.mp3")

        assert resp.status_code == 200
        assert resp.content == b"ID3data"
        assert resp.headers["content-type"] == "audio/mpeg"

    def test_missing_file(self, client):
        resp = client.get("/api/audio/tts-0-gone.mp3")
        assert resp.status_code == 404
        assert resp.json()["ok"] is False

    def test_nul_in_filename_is_rejected(self, client):
        resp = client.get("/api/audio/tts%00.mp3")
        assert resp.status_code == 400
        assert resp.json()["ok"] is False
