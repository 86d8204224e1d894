import asyncio
import time
from pathlib import Path
from typing import Optional

from loguru import logger

from core.errors import InvalidArgument

FILE_PREFIX = "tts"

MIME_TYPES = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".m4a": "audio/mp4",
    ".flac": "audio/flac",
    ".pcm": "audio/L16",
}


class AudioCache:
    """On-disk store of synthesized audio.

    Every file is written once under a unique name and never modified.
    Directory listing plus mtime is the only bookkeeping: files older than
    `max_age` seconds are swept before each new write.
    """

    def __init__(self, cache_dir: Path, max_age: float = 1800.0):
        self.cache_dir = Path(cache_dir)
        self.max_age = max_age

    async def store(self, data: bytes, request_id: str, ext: str = "mp3") -> str:
        """Write `data` to a new cache file and return its filename."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._store_sync, data, request_id, ext)

    def _store_sync(self, data: bytes, request_id: str, ext: str) -> str:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.evict_expired()

        filename = f"{FILE_PREFIX}-{int(time.time() * 1000)}-{request_id}.{ext}"
        (self.cache_dir / filename).write_bytes(data)
        logger.debug("TTS: cached {} bytes as {}", len(data), filename)
        return filename

    def evict_expired(self, now: Optional[float] = None) -> int:
        """Delete files older than max_age. Failures are logged, never raised."""
        now = time.time() if now is None else now
        removed = 0
        try:
            entries = list(self.cache_dir.iterdir())
        except OSError as e:
            logger.warning("Failed to list TTS cache {}: {}", self.cache_dir, e)
            return 0

        for path in entries:
            try:
                stat = path.stat()
                if path.is_file() and now - stat.st_mtime > self.max_age:
                    path.unlink()
                    removed += 1
            except FileNotFoundError:
                continue  # Already gone (concurrent sweep)
            except OSError as e:
                logger.warning("Failed to evict cached audio {}: {}", path.name, e)

        if removed:
            logger.info("TTS cache: evicted {} expired file(s).", removed)
        return removed

    def resolve(self, filename: str) -> Path:
        """Map a requested filename to a path inside the cache directory."""
        if not filename or filename in (".", ".."):
            raise InvalidArgument("Filename required")
        if "\0" in filename:
            raise InvalidArgument("Invalid filename")

        root = self.cache_dir.resolve()
        path = (root / filename).resolve()
        if path.parent != root:
            raise InvalidArgument("Invalid filename")
        return path


def mime_type_for(path: Path) -> str:
    return MIME_TYPES.get(path.suffix.lower(), "application/octet-stream")
