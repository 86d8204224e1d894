import base64
import binascii
import uuid
from typing import Optional

import httpx
from loguru import logger

from core.config import TTSConfig
from core.errors import ConfigError, SynthesisFailed
from tts.cache import AudioCache
from tts.registry import TTSProvider

SUCCESS_CODE = 3000
USER_UID = "xiaoai-bridge"

EXTENSIONS = {
    "mp3": "mp3",
    "wav": "wav",
    "pcm": "pcm",
    "ogg_opus": "ogg",
}


class VolcanoProvider(TTSProvider):
    """Volcano Engine (Doubao) HTTP TTS.

    Posts the text with voice settings, receives base64 audio, writes it to
    the audio cache and returns a public URL for the speaker to fetch.
    """

    can_synthesize = True

    def __init__(
        self,
        config: TTSConfig,
        cache: AudioCache,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.cache = cache
        self._client = client

    @property
    def settings(self):
        return self.config.volcano

    def _validate(self) -> None:
        if not self.config.public_base_url:
            raise ConfigError("tts.public_base_url is required so the speaker can fetch audio")
        if not self.settings.endpoint:
            raise ConfigError("tts.volcano.endpoint is required")
        if self.settings.auth_mode == "api_key" and not self.settings.api_key:
            raise ConfigError("tts.volcano.api_key is required when auth_mode=api_key")
        if self.settings.auth_mode == "token" and not (self.settings.app_id and self.settings.token):
            raise ConfigError("tts.volcano.app_id and tts.volcano.token are required when auth_mode=token")

    def build_request(self, text: str, request_id: str) -> tuple[dict, dict]:
        """Return (headers, body) for one synthesis call."""
        s = self.settings
        headers = {"Content-Type": "application/json"}
        app: dict = {"cluster": s.cluster}

        if s.auth_mode == "api_key":
            headers["X-Api-Key"] = s.api_key
            if s.app_id:
                headers["X-Api-App-Key"] = s.app_id
                app["appid"] = s.app_id
        else:
            headers["Authorization"] = f"Bearer;{s.token}"
            app["appid"] = s.app_id
            app["token"] = s.token

        body = {
            "app": app,
            "user": {"uid": USER_UID},
            "audio": {
                "voice_type": s.voice_type,
                "encoding": s.encoding,
                "rate": s.sample_rate,
                "speed_ratio": s.speed_ratio,
                "volume_ratio": s.volume_ratio,
                "pitch_ratio": s.pitch_ratio,
            },
            "request": {
                "reqid": request_id,
                "text": text,
                "text_type": "plain",
                "operation": "query",
            },
        }
        return headers, body

    async def _post(self, headers: dict, body: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(
                self.settings.endpoint, headers=headers, json=body, timeout=self.settings.timeout
            )
        async with httpx.AsyncClient() as client:
            return await client.post(
                self.settings.endpoint, headers=headers, json=body, timeout=self.settings.timeout
            )

    async def synthesize(self, text: str) -> str:
        self._validate()

        request_id = str(uuid.uuid4())
        headers, body = self.build_request(text, request_id)

        try:
            response = await self._post(headers, body)
        except httpx.HTTPError as e:
            raise SynthesisFailed(f"TTS request failed: {e}") from e

        if not response.is_success:
            raise SynthesisFailed(f"TTS HTTP request failed: {response.status_code}", code=response.status_code)

        try:
            result = response.json()
        except ValueError as e:
            raise SynthesisFailed("TTS service returned invalid JSON") from e

        if not isinstance(result, dict):
            raise SynthesisFailed(f"TTS service returned unexpected payload: {str(result)[:100]}")

        code = result.get("code")
        if code != SUCCESS_CODE or not result.get("data"):
            message = result.get("message") or "unknown"
            raise SynthesisFailed(f"TTS service error: code={code}, message={message}", code=code)

        try:
            audio = base64.b64decode(result["data"])
        except (binascii.Error, TypeError, ValueError) as e:
            raise SynthesisFailed("TTS service returned undecodable audio") from e

        ext = EXTENSIONS.get(self.settings.encoding, self.settings.encoding)
        try:
            filename = await self.cache.store(audio, request_id, ext)
        except OSError as e:
            raise SynthesisFailed(f"Failed to write synthesized audio: {e}") from e

        url = f"{self.config.public_base_url.rstrip('/')}/{filename}"
        logger.info("TTS(volcano): {} chars -> {}", len(text), filename)
        return url
