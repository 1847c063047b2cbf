"""
Mediabot - WhatsApp media assistant
Main Entry Point

This module initializes and starts all components of the Mediabot system.
"""

import argparse
import asyncio
import os
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load .env BEFORE any other imports that read os.environ or settings
load_dotenv(dotenv_path=Path(".") / ".env", override=True)

from mediabot.channels.base import Message  # noqa: E402
from mediabot.channels.whatsapp import WhatsAppChannel  # noqa: E402
from mediabot.core.llm_router import LLMRouter  # noqa: E402
from mediabot.core.operation_lease import OperationLeaseStore  # noqa: E402
from mediabot.core.orchestrator import Orchestrator  # noqa: E402
from mediabot.tools.providers import ProviderHub  # noqa: E402
from mediabot.tools.registry import ToolRegistry  # noqa: E402
from mediabot.utils.config import get_settings, reload_settings  # noqa: E402
from mediabot.utils.logging import get_logger, setup_logging  # noqa: E402

logger = get_logger(__name__)


class MediabotApplication:
    """Main application that wires and runs all components."""

    def __init__(self) -> None:
        self.settings = get_settings()
        self.shutdown_event = asyncio.Event()

        self.llm_router: LLMRouter | None = None
        self.registry: ToolRegistry | None = None
        self.channel: WhatsAppChannel | None = None
        self.orchestrator: Orchestrator | None = None
        self.leases = OperationLeaseStore(self.settings.agent.lease_ttl_seconds)

    async def initialize(self, disabled_toolsets: list[str] | None = None) -> None:
        """Initialize all components."""
        self.settings.ensure_directories()

        self.llm_router = LLMRouter(self.settings.llm)
        await self.llm_router.initialize()

        self.registry = ToolRegistry()
        self.registry.initialize(disabled=disabled_toolsets)

        self.channel = WhatsAppChannel(self.settings.channels.whatsapp)
        self.orchestrator = Orchestrator(
            llm=self.llm_router,
            registry=self.registry,
            transport=self.channel,
            providers=ProviderHub(self.settings.providers),
            leases=self.leases,
            settings=self.settings,
        )

        self.channel.on_message(self._handle_message)
        self.channel.on_echo(self._handle_echo)
        logger.info("Components initialized", tools=self.registry.get_stats()["total_tools"])

    async def _handle_message(self, message: Message) -> None:
        request = self.channel.to_request(message)
        if not request.user_text.strip() and not request.has_media:
            return
        await self.channel.send_typing_indicator(request.chat_id)
        await self.orchestrator.handle_request(request)

    async def _handle_echo(self, message: Message) -> None:
        await self.orchestrator.record_outgoing_echo(message.chat_id, message.content, {"message_id": message.id})

    async def start(self) -> None:
        """Start the channel and wait for shutdown."""
        if not self.settings.channels.whatsapp.enabled:
            logger.warning("WhatsApp channel is disabled, nothing to do")
            return

        await self.channel.start()
        logger.info("Mediabot is running")
        await self.shutdown_event.wait()

    async def shutdown(self) -> None:
        """Trigger graceful shutdown."""
        logger.info("Shutdown requested")
        self.shutdown_event.set()

    async def cleanup(self) -> None:
        """Clean up resources."""
        logger.info("Cleaning up resources...")
        if self.channel:
            await self.channel.stop()


async def main(disabled_toolsets: list[str] | None = None, log_level: str | None = None) -> None:
    """Main entry point."""
    setup_logging(level=log_level)
    logger.info("Starting Mediabot", version=get_settings().app.version)

    app = MediabotApplication()

    loop = asyncio.get_running_loop()

    def signal_handler() -> None:
        asyncio.create_task(app.shutdown())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.initialize(disabled_toolsets)
        await app.start()
    except Exception as e:
        logger.error("Fatal error", error=str(e), exc_info=True)
        sys.exit(1)
    finally:
        await app.cleanup()


def run() -> None:
    """Synchronous entry point with CLI argument parsing."""
    parser = argparse.ArgumentParser(
        prog="mediabot",
        description="Mediabot - WhatsApp media assistant",
    )
    parser.add_argument(
        "--config",
        default=None,
        metavar="PATH",
        help="Path to settings.yaml (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override logging.level",
    )
    parser.add_argument(
        "--disable-toolset",
        action="append",
        default=[],
        metavar="NAME",
        help="Skip a builtin toolset (repeatable), e.g. --disable-toolset search",
    )
    args = parser.parse_args()

    if args.config:
        os.environ["MEDIABOT_CONFIG"] = args.config
        reload_settings()

    asyncio.run(main(args.disable_toolset, log_level=args.log_level))


if __name__ == "__main__":
    run()
