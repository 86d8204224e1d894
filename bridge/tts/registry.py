from typing import Awaitable, Callable, Optional

from loguru import logger

from core.config import BUILTIN_TTS_ALIASES, DEFAULT_TTS_PROVIDER, TTSConfig
from core.errors import InvalidArgument, SynthesisNotSupported, UnsupportedProvider
from tts.cache import AudioCache


class TTSProvider:
    """A named way of producing speech.

    The base provider has no synthesis capability: the speaker reads text
    with its own voice. Subclasses that can turn text into an audio URL set
    `can_synthesize = True` and override `synthesize`.
    """

    can_synthesize = False

    async def synthesize(self, text: str) -> str:
        raise NotImplementedError


class CallableProvider(TTSProvider):
    """Wraps a plain `async def synthesize(text) -> url` function."""

    can_synthesize = True

    def __init__(self, synthesize: Callable[[str], Awaitable[str]]):
        self._synthesize = synthesize

    async def synthesize(self, text: str) -> str:
        return await self._synthesize(text)


def _normalize(name: Optional[str]) -> str:
    return str(name or "").strip().lower()


class TTSService:
    """Registry of TTS providers plus the alias table used to look them up."""

    def __init__(self, config: TTSConfig, cache: Optional[AudioCache] = None):
        self.config = config
        self.cache = cache or AudioCache(config.cache_dir, config.max_cache_age)
        self._providers: dict[str, TTSProvider] = {}
        self._aliases: dict[str, str] = dict(BUILTIN_TTS_ALIASES)
        self._register_builtins()

    def _register_builtins(self) -> None:
        from tts.volcano import VolcanoProvider

        self.register("xiaomi", TTSProvider())
        self.register("volcano", VolcanoProvider(self.config, self.cache))

    def register(self, name: str, provider: Optional[TTSProvider] = None) -> None:
        key = _normalize(name)
        if not key:
            raise InvalidArgument("TTS provider name is required")
        self._providers[key] = provider or TTSProvider()
        logger.debug("TTS provider registered: {}", key)

    def register_alias(self, alias: str, target: str) -> None:
        alias_key = _normalize(alias)
        target_key = _normalize(target)
        if not alias_key or not target_key:
            raise InvalidArgument("TTS alias and target are required")
        self._aliases[alias_key] = target_key

    def resolve(self, name: Optional[str]) -> str:
        """Canonical provider name. Follows at most one alias hop."""
        key = _normalize(name) or DEFAULT_TTS_PROVIDER
        return self._aliases.get(key, key)

    def list_providers(self) -> list[str]:
        return list(self._providers)

    @property
    def active_provider(self) -> str:
        return self.resolve(self.config.provider)

    def _lookup(self, name: str) -> TTSProvider:
        provider = self._providers.get(name)
        if provider is None:
            raise UnsupportedProvider(name)
        return provider

    def can_synthesize(self, provider: Optional[str] = None) -> bool:
        name = self.resolve(provider or self.config.provider)
        entry = self._providers.get(name)
        return entry is not None and entry.can_synthesize

    async def synthesize(self, text: str, provider: Optional[str] = None) -> str:
        """Synthesize `text` and return a URL the speaker can fetch."""
        name = self.resolve(provider or self.config.provider)
        entry = self._lookup(name)
        if not entry.can_synthesize:
            raise SynthesisNotSupported(name)
        return await entry.synthesize(text)
