"""
Sandbox fleet control plane.

Runs the background loops (auto-scale, auto-stop, stale task
reconciliation, sandbox health) until SIGINT/SIGTERM.

Usage:
    python main.py
"""

import asyncio
import logging
import os
import signal

import sentry_sdk
from sentry_sdk.integrations.httpx import HttpxIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from config import settings
from services.container import ControlPlane

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def init_sentry() -> None:
    if not settings.sentry_dsn:
        logger.warning("SENTRY_DSN not set, Sentry monitoring disabled")
        return

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        integrations=[
            HttpxIntegration(),
            LoggingIntegration(
                level=logging.INFO,  # Capture INFO+ as breadcrumbs
                event_level=logging.ERROR,  # Create events for ERROR+
            ),
        ],
        release=f"sandbox-control-plane@{os.getenv('VERSION', '1.0.0')}",
        before_send=lambda event, hint: {
            **event,
            "tags": {**event.get("tags", {}), "service": "sandbox-control-plane"},
        },
    )
    logger.info(f"Sentry initialized (environment: {settings.sentry_environment})")


async def main() -> None:
    init_sentry()

    plane = ControlPlane(settings)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await plane.start()
    logger.info("Control plane running, waiting for shutdown signal")
    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down...")
        await plane.stop()


if __name__ == "__main__":
    asyncio.run(main())
