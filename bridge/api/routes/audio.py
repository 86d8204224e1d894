from fastapi import APIRouter, Request
from fastapi.responses import FileResponse, JSONResponse

from core.config import APIPaths
from tts.cache import mime_type_for


async def get_audio(filename: str, request: Request):
    """Stream a synthesized audio file to the speaker. No auth: the speaker can't send one."""
    cache = request.app.state.bridge.tts.cache
    path = cache.resolve(filename)  # InvalidArgument -> 400

    # The file may have been evicted between synthesis and this request.
    if not path.is_file():
        return JSONResponse({"ok": False, "error": "File not found"}, status_code=404)

    return FileResponse(
        path,
        media_type=mime_type_for(path),
        headers={"Accept-Ranges": "bytes", "Cache-Control": "public, max-age=3600"},
    )


def build_router(paths: APIPaths) -> APIRouter:
    router = APIRouter(tags=["audio"])
    router.add_api_route(f"{paths.audio.rstrip('/')}/{{filename}}", get_audio, methods=["GET"])
    return router
