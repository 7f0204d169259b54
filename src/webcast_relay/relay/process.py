"""
Process Supervisor
==================

Top-level loop that keeps the relay alive.

Loop:
    1. relay.run() until it fails or is stopped
    2. relay.stop() (idempotent)
    3. Wait restart_delay, unless shutdown was requested
    4. Repeat

The loop only ends when request_shutdown() has been called, typically
from a SIGTERM/SIGINT handler.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from webcast_relay.errors import RelayError
from webcast_relay.relay.supervisor import RelaySupervisor


logger = logging.getLogger(__name__)


class ProcessSupervisor:
    """
    Restarts the relay from a clean slate after every fatal error.

    Attributes:
        relay: The single RelaySupervisor this process owns
        restart_delay: Seconds between a failure and the next attempt
        attempts: Number of relay runs started
        last_error: Error that ended the most recent failed run
    """

    def __init__(
        self,
        relay: RelaySupervisor,
        restart_delay: float,
        delay: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self.relay = relay
        self.restart_delay = restart_delay
        self._delay = delay
        self._shutdown = asyncio.Event()
        self._stop_task: Optional[asyncio.Task] = None

        self.attempts: int = 0
        self.last_error: Optional[BaseException] = None

    @property
    def shutting_down(self) -> bool:
        return self._shutdown.is_set()

    async def run(self) -> None:
        """Run the relay until shutdown is requested."""
        while not self._shutdown.is_set():
            self.attempts += 1
            logger.info(f"Starting relay (attempt {self.attempts})")
            try:
                await self.relay.run()
            except RelayError as e:
                self.last_error = e
                logger.error(f"Relay failed: {e}")
            except Exception as e:
                self.last_error = e
                logger.exception(f"Unexpected relay error: {e}")
            finally:
                await self.relay.stop()

            if self._shutdown.is_set():
                break

            logger.info(f"Restarting relay in {self.restart_delay:.1f}s...")
            await self._wait_restart_delay()

        if self._stop_task is not None:
            await self._stop_task
        logger.info("Process supervisor exiting")

    def request_shutdown(self, reason: str = "shutdown requested") -> None:
        """
        Ask the loop to exit after tearing down the current relay.

        Non-blocking; safe to call from a signal handler on the loop.
        """
        if self._shutdown.is_set():
            return
        logger.info(f"Shutdown requested ({reason})")
        self._shutdown.set()
        self._stop_task = asyncio.get_running_loop().create_task(
            self.relay.stop(),
            name="relay_shutdown",
        )

    async def _wait_restart_delay(self) -> None:
        if self._delay is not None:
            await self._delay(self.restart_delay)
            return
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=self.restart_delay)
        except asyncio.TimeoutError:
            pass
