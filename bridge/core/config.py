import json
import re
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from core.errors import ConfigError

DEFAULT_TTS_PROVIDER = "xiaomi"
BUILTIN_TTS_PROVIDERS = ("xiaomi", "volcano")
BUILTIN_TTS_ALIASES = {"doubao": "volcano"}


class SpeakerConfig(BaseModel):
    engine: str = "local"  # "local" or "package.module:factory"
    user_id: str = ""
    password: str = ""
    pass_token: str = ""
    did: str = ""


class AIConfig(BaseModel):
    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 1024
    system_prompt: str = "你是一个友好的智能音箱助手，回答简洁口语化。{{greeting}}"


class WakeupConfig(BaseModel):
    keywords: list[str] = Field(default_factory=lambda: ["请", "帮我"])
    enter_ai_mode: list[str] = Field(default_factory=lambda: ["开启AI模式", "进入AI模式"])
    exit_ai_mode: list[str] = Field(default_factory=lambda: ["关闭AI模式", "退出AI模式"])
    stop_keywords: list[str] = Field(default_factory=lambda: ["闭嘴", "别说了", "停止播放"])
    enter_message: str = "已进入AI模式"
    exit_message: str = "已退出AI模式"


class StoryConfig(BaseModel):
    trigger_pattern: str = "讲.*故事"
    system_prompt: str = "请讲一个完整的故事，多用短句，不要使用标题和列表。"
    first_chunk_max_chars: int = 60
    normal_chunk_max_chars: Optional[int] = 200
    poll_interval: float = 0.5    # seconds between playback-status polls
    wait_timeout: float = 120.0   # seconds to wait for one segment to finish

    @field_validator("trigger_pattern")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid trigger_pattern: {e}") from e
        return value

    @property
    def normal_chunk_limit(self) -> int:
        return self.normal_chunk_max_chars or self.first_chunk_max_chars


class VolcanoConfig(BaseModel):
    endpoint: str = "https://openspeech.bytedance.com/api/v1/tts"
    auth_mode: str = "api_key"  # "api_key" or "token"
    api_key: str = ""
    app_id: str = ""
    token: str = ""
    cluster: str = "volcano_tts"
    voice_type: str = "BV700_streaming"
    encoding: str = "mp3"
    sample_rate: int = 24000
    speed_ratio: float = 1.0
    volume_ratio: float = 1.0
    pitch_ratio: float = 1.0
    timeout: float = 15.0

    @field_validator("auth_mode")
    @classmethod
    def _known_auth_mode(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("api_key", "token"):
            raise ValueError("auth_mode must be 'api_key' or 'token'")
        return value


class TTSConfig(BaseModel):
    provider: str = DEFAULT_TTS_PROVIDER
    cache_dir: str = "./tts-cache"
    max_cache_age: float = 1800.0  # seconds
    public_base_url: str = ""
    volcano: VolcanoConfig = Field(default_factory=VolcanoConfig)


class APIPaths(BaseModel):
    health: str = "/api/health"
    speak: str = "/api/speak"
    chat: str = "/api/chat"
    play: str = "/api/play"
    audio: str = "/api/audio"


class APIConfig(BaseModel):
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080
    token: str = ""
    max_body_bytes: int = 64 * 1024
    paths: APIPaths = Field(default_factory=APIPaths)


class PromptContextConfig(BaseModel):
    enabled: bool = False
    location: str = ""
    user_name: str = ""
    assistant_name: str = ""


class AppConfig(BaseModel):
    speaker: SpeakerConfig = Field(default_factory=SpeakerConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    wakeup: WakeupConfig = Field(default_factory=WakeupConfig)
    story: StoryConfig = Field(default_factory=StoryConfig)
    tts: TTSConfig = Field(default_factory=TTSConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    prompt_context: PromptContextConfig = Field(default_factory=PromptContextConfig)


def canonical_tts_provider(name: Optional[str]) -> str:
    raw = (name or DEFAULT_TTS_PROVIDER).strip().lower() or DEFAULT_TTS_PROVIDER
    return BUILTIN_TTS_ALIASES.get(raw, raw)


def validate_config(config: AppConfig) -> AppConfig:
    """Cross-field checks that pydantic field validators cannot express."""
    if config.api.enabled and not config.api.token:
        logger.warning("HTTP API is enabled without a token; requests will not be authenticated.")

    provider = canonical_tts_provider(config.tts.provider)
    if provider == "volcano":
        volcano = config.tts.volcano
        if not config.tts.public_base_url:
            raise ConfigError("tts.public_base_url is required when tts.provider=volcano")
        if volcano.auth_mode == "api_key" and not volcano.api_key:
            raise ConfigError("tts.volcano.api_key is required when auth_mode=api_key")
        if volcano.auth_mode == "token" and not (volcano.app_id and volcano.token):
            raise ConfigError("tts.volcano.app_id and tts.volcano.token are required when auth_mode=token")
    elif provider not in BUILTIN_TTS_PROVIDERS:
        logger.warning("Custom tts.provider={}; make sure it is registered at startup.", provider)

    return config


class ConfigManager:
    """Loads and validates the bridge configuration from a JSON file."""

    def __init__(self, config_path: Path):
        self.config_path = Path(config_path)
        self._config: Optional[AppConfig] = None

    @property
    def config(self) -> AppConfig:
        if self._config is None:
            self._config = self._load()
        return self._config

    def _load(self) -> AppConfig:
        """Load config from disk. Returns defaults if no config exists."""
        if not self.config_path.exists():
            logger.info("No config found at {}. Using defaults.", self.config_path)
            return validate_config(AppConfig())

        try:
            data = json.loads(self.config_path.read_text(encoding="utf-8"))
            config = AppConfig(**data)
        except json.JSONDecodeError as e:
            raise ConfigError(f"{self.config_path} is not valid JSON: {e}") from e
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration in {self.config_path}: {e}") from e

        logger.info("Configuration loaded from {}", self.config_path)
        return validate_config(config)
