import hmac
import re

from fastapi import HTTPException, Request, status
from starlette.datastructures import Headers
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

BEARER = re.compile(r"^Bearer\s+", re.IGNORECASE)
TOO_LARGE = "Request body too large"


def verify_token(header: str, expected: str) -> bool:
    """Compare an Authorization header against the configured token."""
    token = BEARER.sub("", header or "")
    return hmac.compare_digest(token.encode(), expected.encode())


async def require_api_token(request: Request) -> None:
    """Dependency: require `Authorization: Bearer <token>` when a token is configured."""
    expected = request.app.state.bridge.config.api.token
    if not expected:
        return

    if not verify_token(request.headers.get("Authorization", ""), expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


class BodySizeLimitMiddleware:
    """Rejects request bodies larger than `max_body_bytes` with 413.

    A declared Content-Length is checked up front; chunked bodies are
    counted as they are received.
    """

    def __init__(self, app: ASGIApp, max_body_bytes: int):
        self.app = app
        self.max_body_bytes = max_body_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        length = Headers(scope=scope).get("Content-Length")
        if length is not None:
            try:
                too_large = int(length) > self.max_body_bytes
            except ValueError:
                response = JSONResponse(
                    {"ok": False, "error": "Invalid Content-Length"},
                    status_code=status.HTTP_400_BAD_REQUEST,
                )
                await response(scope, receive, send)
                return
            if too_large:
                response = JSONResponse(
                    {"ok": False, "error": TOO_LARGE},
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                )
                await response(scope, receive, send)
                return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_body_bytes:
                    # Raised inside body parsing; the app's HTTPException handler answers.
                    raise HTTPException(
                        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                        detail=TOO_LARGE,
                    )
            return message

        await self.app(scope, limited_receive, send)

