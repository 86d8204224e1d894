import argparse
import asyncio
import importlib
import signal
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from core.bridge import Bridge
from core.config import AppConfig, ConfigManager
from core.errors import ConfigError
from core.prompt_context import PromptContext, current_hour, greeting
from device.base import SpeakerEngine

DEFAULT_CONFIG = Path("config.json")


def load_engine_factory(target: str):
    """Resolve "package.module:factory" to a callable."""
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise ConfigError(f"speaker.engine must be 'local' or 'module:factory', got '{target}'")
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise ConfigError(f"Cannot load speaker engine '{target}': {e}") from e


class Orchestrator:
    """Boots the bridge: config, services, HTTP API and the speaker engine."""

    def __init__(self, config_path: Path = DEFAULT_CONFIG):
        self.config_manager = ConfigManager(config_path)
        self.bridge: Optional[Bridge] = None
        self._engine: Optional[SpeakerEngine] = None
        self._api_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    async def start(self):
        logger.info("=== XiaoAI Bridge starting ===")
        config = self.config_manager.config

        self.bridge = Bridge(config)
        tts = self.bridge.tts
        if tts.can_synthesize():
            logger.info("TTS provider: {}", tts.active_provider)
        else:
            logger.info("TTS: speaker's own voice ({})", tts.active_provider)

        system_prompt = await self._render_system_prompt(config)
        self._engine = self._create_engine(config, system_prompt)
        # Bind before the first utterance so the API never reports a missing engine
        self.bridge.bind_engine(self._engine)

        if config.api.enabled:
            await self._start_api_server(config)
        else:
            logger.warning("HTTP API disabled.")

        logger.info("=== Bridge is ready. ===")
        engine_task = asyncio.create_task(self._engine.run(self.bridge.on_message))
        stop_task = asyncio.create_task(self._stop_event.wait())
        await asyncio.wait({engine_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        for task in (engine_task, stop_task):
            task.cancel()

        await self.shutdown()

    async def _render_system_prompt(self, config: AppConfig) -> str:
        if not config.prompt_context.enabled:
            return config.ai.system_prompt

        context = PromptContext(config.prompt_context)
        context.set("greeting", greeting())
        context.set("hour", current_hour())
        prompt = await context.render(config.ai.system_prompt)
        logger.info("System prompt rendered.")
        return prompt

    def _create_engine(self, config: AppConfig, system_prompt: str) -> SpeakerEngine:
        if config.speaker.engine == "local":
            from device.local import LocalSpeaker
            return LocalSpeaker(config.ai, system_prompt)

        factory = load_engine_factory(config.speaker.engine)
        return factory(config, system_prompt)

    async def _start_api_server(self, config: AppConfig):
        """Start the FastAPI server in the background."""
        from api.server import create_app

        app = create_app(self.bridge)

        import uvicorn
        server_config = uvicorn.Config(
            app, host=config.api.host, port=config.api.port, log_level="warning"
        )
        server = uvicorn.Server(server_config)
        self._api_task = asyncio.create_task(server.serve())
        logger.info(
            "API server started on http://{}:{} ({})",
            config.api.host,
            config.api.port,
            ", ".join(config.api.paths.model_dump().values()),
        )

    def request_stop(self):
        self._stop_event.set()

    async def shutdown(self):
        """Graceful shutdown."""
        logger.info("Shutting down...")
        if self._engine is not None:
            try:
                await self._engine.stop()
            finally:
                await self._engine.close()
        if self._api_task is not None:
            self._api_task.cancel()
        if self.bridge is not None:
            await self.bridge.close()
        logger.info("Shutdown complete.")


def main():
    """Entry point."""
    parser = argparse.ArgumentParser(description="Bridge a smart speaker to external TTS and AI backends.")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG, help="Path to config.json")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write DEBUG logs here")
    args = parser.parse_args()

    logger.remove()
    logger.add(sys.stderr, level="INFO", format="{time:HH:mm:ss} | {level:<7} | {message}")
    if args.log_file:
        logger.add(args.log_file, rotation="10 MB", retention="7 days", level="DEBUG")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    orchestrator = Orchestrator(args.config)
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, orchestrator.request_stop)
        except NotImplementedError:
            pass  # Windows: fall back to KeyboardInterrupt

    try:
        loop.run_until_complete(orchestrator.start())
    except ConfigError as e:
        logger.error("Configuration error: {}", e)
        sys.exit(1)
    except KeyboardInterrupt:
        loop.run_until_complete(orchestrator.shutdown())
    finally:
        loop.close()


if __name__ == "__main__":
    main()
