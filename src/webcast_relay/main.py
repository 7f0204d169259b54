"""
webcast-relay Entry Point
=========================

Boots the relay: loads configuration, installs signal handlers, and runs
the ProcessSupervisor until SIGTERM/SIGINT.

Exit codes:
    0 - Graceful shutdown
    1 - Invalid configuration at boot

Usage:
    python -m webcast_relay --config config.yaml
    webcast-relay
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any, Dict, List, Optional

import uvicorn

from webcast_relay import __version__
from webcast_relay.config import Settings, load_config, setup_logging
from webcast_relay.errors import ConfigError
from webcast_relay.relay import ProcessSupervisor, RelaySupervisor
from webcast_relay.server import create_app


logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="webcast-relay",
        description="Relay a live web page to an RTMP endpoint",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $RELAY_CONFIG or ./config.yaml)",
    )
    return parser.parse_args(argv)


def _log_banner(settings: Settings) -> None:
    video = settings.video
    logger.info("=" * 60)
    logger.info(f"webcast-relay {__version__}")
    logger.info(f"Target:     {settings.target.url}")
    logger.info(f"Resolution: {video.width}x{video.height} @ {video.fps}fps")
    logger.info(f"Bitrate:    {video.bitrate}")
    logger.info(f"Capture:    {settings.capture.mode.value}")
    logger.info(f"Output:     {settings.masked_target}")
    logger.info("=" * 60)


def _handle_loop_exception(loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
    """Log uncaught asynchronous errors without stopping the process."""
    error = context.get("exception")
    message = context.get("message", "Unhandled error in event loop")
    if error is not None:
        logger.error(f"Uncaught async error: {message}: {error!r}")
    else:
        logger.error(f"Uncaught async error: {message}")


def _install_signal_handlers(supervisor: ProcessSupervisor) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, supervisor.request_shutdown, sig.name)
        except NotImplementedError:
            # Windows event loops
            signal.signal(
                sig,
                lambda signum, frame: loop.call_soon_threadsafe(
                    supervisor.request_shutdown, signal.Signals(signum).name
                ),
            )


async def _serve(settings: Settings) -> None:
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(_handle_loop_exception)

    relay = RelaySupervisor(settings)
    supervisor = ProcessSupervisor(
        relay,
        restart_delay=settings.supervisor.restart_delay_seconds,
    )
    _install_signal_handlers(supervisor)

    server: Optional[uvicorn.Server] = None
    server_task: Optional[asyncio.Task] = None
    if settings.server.enabled:
        server = uvicorn.Server(uvicorn.Config(
            create_app(relay.status),
            host=settings.server.host,
            port=settings.server.port,
            log_level=settings.logging.level.lower(),
        ))
        server_task = asyncio.create_task(server.serve(), name="health_server")
        # uvicorn may take over the termination signals while it serves
        server_task.add_done_callback(
            lambda _: supervisor.request_shutdown("health server exited")
        )
        logger.info(f"Health endpoint on {settings.server.host}:{settings.server.port}")

    await supervisor.run()

    if server is not None and server_task is not None:
        server.should_exit = True
        await server_task
    logger.info("Shutdown complete")


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    try:
        settings = load_config(args.config)
    except ConfigError as e:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
        logger.error(f"Configuration error: {e}")
        return 1

    setup_logging(settings)
    _log_banner(settings)

    try:
        asyncio.run(_serve(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
