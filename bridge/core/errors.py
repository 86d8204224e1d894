class BridgeError(Exception):
    """Base class for all errors raised by the bridge."""


class InvalidArgument(BridgeError, ValueError):
    pass


class ConfigError(BridgeError):
    pass


class TTSError(BridgeError):
    """Anything that goes wrong while turning text into an audio URL."""


class UnsupportedProvider(TTSError):
    def __init__(self, provider: str):
        super().__init__(f"Unsupported TTS provider: {provider}")
        self.provider = provider


class SynthesisNotSupported(TTSError):
    def __init__(self, provider: str):
        super().__init__(f"TTS provider '{provider}' does not synthesize audio")
        self.provider = provider


class SynthesisFailed(TTSError):
    """Upstream TTS service rejected the request or could not be reached."""

    def __init__(self, message: str, code=None):
        super().__init__(message)
        self.code = code


class EngineNotReady(BridgeError):
    def __init__(self, message: str = "Engine not ready"):
        super().__init__(message)


class PlaybackWaitTimeout(BridgeError):
    def __init__(self, timeout: float):
        super().__init__(f"Timed out after {timeout:.1f}s waiting for playback to finish")
        self.timeout = timeout


class TaskFailed(BridgeError):
    """Wraps an unexpected exception raised by a queued task body."""

    def __init__(self, task_type: str, cause: BaseException):
        super().__init__(f"Task '{task_type}' failed: {cause}")
        self.task_type = task_type
        self.cause = cause
