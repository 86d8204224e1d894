import time

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from api.middleware.auth import require_api_token
from core.config import APIPaths
from core.errors import InvalidArgument


class SpeakBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = ""
    interrupt: bool = True
    story_mode: bool = Field(default=False, alias="storyMode")


class ChatBody(SpeakBody):
    pass


class PlayBody(BaseModel):
    url: str = ""
    interrupt: bool = True
    blocking: bool = False


def _required(value: str, name: str) -> str:
    value = (value or "").strip()
    if not value:
        raise InvalidArgument(f"{name} is required")
    return value


def _waited_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def speak(body: SpeakBody, request: Request, _=Depends(require_api_token)):
    """Make the speaker say `text`."""
    text = _required(body.text, "text")
    bridge = request.app.state.bridge
    bridge.engine.require()  # Fail fast with 503; no ordering against an absent device

    started = time.monotonic()
    mode = await bridge.queue.enqueue(
        lambda: bridge.speech.speak(text, interrupt=body.interrupt, story_mode=body.story_mode),
        "api:speak",
    )
    return {"ok": True, "type": "speak", "mode": mode, "text": text, "waited_ms": _waited_ms(started)}


async def chat(body: ChatBody, request: Request, _=Depends(require_api_token)):
    """Ask the AI and have the speaker read out the reply."""
    text = _required(body.text, "text")
    bridge = request.app.state.bridge
    bridge.engine.require()

    started = time.monotonic()
    mode, reply_text = await bridge.queue.enqueue(
        lambda: bridge.speech.ask_and_speak(text, interrupt=body.interrupt, story_mode=body.story_mode),
        "api:chat",
    )
    return {
        "ok": True,
        "type": "chat",
        "mode": mode,
        "reply_text": reply_text,
        "replyText": reply_text,
        "waited_ms": _waited_ms(started),
    }


async def play(body: PlayBody, request: Request, _=Depends(require_api_token)):
    """Play audio from a URL."""
    url = _required(body.url, "url")
    bridge = request.app.state.bridge
    bridge.engine.require()

    started = time.monotonic()
    mode = await bridge.queue.enqueue(
        lambda: bridge.speech.play_url(url, interrupt=body.interrupt, blocking=body.blocking),
        "api:play",
    )
    return {"ok": True, "type": "play", "mode": mode, "url": url, "waited_ms": _waited_ms(started)}


def build_router(paths: APIPaths) -> APIRouter:
    router = APIRouter(tags=["control"])
    router.add_api_route(paths.speak, speak, methods=["POST"])
    router.add_api_route(paths.chat, chat, methods=["POST"])
    router.add_api_route(paths.play, play, methods=["POST"])
    return router
