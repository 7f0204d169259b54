"""
Relay Supervisor
================

Composes a VisualSession, a FrameSource and an EncoderSink into one
running pipeline.

State machine:
    STOPPED --start()--> STARTING
        session, then source, then sink are created and started in order.
        Any failure tears down what exists in reverse order, returns to
        STOPPED and raises a single StartupError. A stop() during this
        phase aborts the current step the same way, without an error.
    STARTING --(all started)--> RUNNING
        Frame flow and the rejuvenation timer begin.
    RUNNING --(fatal error | stop())--> STOPPING --> STOPPED
        Sink, then source, then session are stopped best-effort.

Only this class mutates RunState. A supervisor instance may be started
again after it has returned to STOPPED; every start builds fresh
components from the factories.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from webcast_relay.capture import FrameSource, Sleep, create_frame_source
from webcast_relay.config import Settings
from webcast_relay.encoder import EncoderSink
from webcast_relay.errors import RelayError, SessionError, StartupError
from webcast_relay.lifecycle import Clock, FatalSignal
from webcast_relay.models.state import RunState
from webcast_relay.session.base import VisualSession


logger = logging.getLogger(__name__)


SessionFactory = Callable[[Settings], VisualSession]
SourceFactory = Callable[[Settings], FrameSource]
SinkFactory = Callable[[Settings], EncoderSink]


class RelaySupervisor:
    """
    Runs one pipeline attempt at a time.

    Attributes:
        settings: Immutable configuration for every attempt
        attempts: Number of start() calls so far
    """

    def __init__(
        self,
        settings: Settings,
        *,
        session_factory: Optional[SessionFactory] = None,
        source_factory: Optional[SourceFactory] = None,
        sink_factory: Optional[SinkFactory] = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self._clock = clock
        self._sleep = sleep
        self._session_factory = session_factory or self._browser_session
        self._source_factory = source_factory or (
            lambda s: create_frame_source(s, clock=clock, sleep=sleep)
        )
        self._sink_factory = sink_factory or EncoderSink.from_settings

        self._state: RunState = RunState.STOPPED
        self._idle = asyncio.Event()
        self._idle.set()
        self._stop_requested = asyncio.Event()
        self._fatal = FatalSignal()

        self._session: Optional[VisualSession] = None
        self._source: Optional[FrameSource] = None
        self._sink: Optional[EncoderSink] = None
        self._tasks: List[asyncio.Task] = []

        self.attempts: int = 0

    def _browser_session(self, settings: Settings) -> VisualSession:
        from webcast_relay.session.browser import BrowserSession

        return BrowserSession(settings, clock=self._clock)

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def session(self) -> Optional[VisualSession]:
        return self._session

    @property
    def source(self) -> Optional[FrameSource]:
        return self._source

    @property
    def sink(self) -> Optional[EncoderSink]:
        return self._sink

    def _set_state(self, state: RunState) -> None:
        if state is self._state:
            return
        logger.info(f"Relay state: {self._state.value} -> {state.value}")
        self._state = state
        if state is RunState.STOPPED:
            self._idle.set()
        else:
            self._idle.clear()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """
        Start session, source and sink in dependency order.

        Returns once RUNNING, or once back in STOPPED if stop() was
        requested while starting.

        Raises:
            StartupError: A component failed to start; everything that had
                started was torn down
            RelayError: The supervisor was not STOPPED
        """
        if self._state is not RunState.STOPPED:
            raise RelayError(f"Relay cannot start from state {self._state.value}")

        self._stop_requested = asyncio.Event()
        self._fatal = FatalSignal()
        self.attempts += 1
        self._set_state(RunState.STARTING)

        stage = "session"
        try:
            self._session = self._session_factory(self.settings)
            proceed = await self._start_step(self._session.start())

            if proceed:
                stage = "source"
                self._source = self._source_factory(self.settings)
                proceed = await self._start_step(self._source.start(self._session))

            if proceed:
                stage = "sink"
                self._sink = self._sink_factory(self.settings)
                proceed = await self._start_step(self._sink.start())
        except Exception as e:
            logger.error(f"Relay start failed at {stage}: {e}")
            errors = await self._teardown()
            self._set_state(RunState.STOPPED)
            raise StartupError(stage, e, errors) from e
        except asyncio.CancelledError:
            await self._teardown()
            self._set_state(RunState.STOPPED)
            raise

        if not proceed:
            logger.info(f"Stop requested while starting {stage}")
            await self._teardown()
            self._set_state(RunState.STOPPED)
            return

        self._set_state(RunState.RUNNING)
        self._source.begin_flow(self._sink)
        self._tasks = [
            asyncio.create_task(self._rejuvenation_loop(), name="relay_rejuvenation"),
            asyncio.create_task(self._watch("session", self._session.failure), name="watch_session"),
            asyncio.create_task(self._watch("source", self._source.failure), name="watch_source"),
            asyncio.create_task(self._watch("sink", self._sink.failure), name="watch_sink"),
        ]
        logger.info(f"Relay running (attempt {self.attempts})")

    async def run(self) -> None:
        """
        Start, then hold the pipeline until a fatal error or stop().

        Raises:
            StartupError: Start failed
            RelayError: The fatal error that ended the run, after teardown
        """
        await self.start()
        if self._state is not RunState.RUNNING:
            return

        stop_wait = asyncio.create_task(self._stop_requested.wait())
        fatal_wait = asyncio.create_task(self._fatal.wait())
        try:
            await asyncio.wait({stop_wait, fatal_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_wait.cancel()
            fatal_wait.cancel()

        if self._stop_requested.is_set() or self._state is not RunState.RUNNING:
            await self._idle.wait()
            return

        error = self._fatal.error
        await self._shutdown()
        raise error

    async def stop(self) -> None:
        """Stop the pipeline. Safe to call repeatedly and from any state."""
        if self._state is RunState.STOPPED:
            return
        self._stop_requested.set()
        if self._state is RunState.RUNNING:
            await self._shutdown()
        else:
            await self._idle.wait()

    async def maybe_rejuvenate(self) -> bool:
        """
        Rejuvenate the session if it has reached the configured age.

        Returns:
            True if a rejuvenation ran

        Raises:
            SessionError: The reload failed
        """
        if self._state is not RunState.RUNNING or self._session is None:
            return False
        interval = self.settings.supervisor.rejuvenation_interval_seconds
        if self._session.age < interval:
            return False
        await self._session.rejuvenate()
        return True

    def status(self) -> Dict[str, Any]:
        """Snapshot for the status endpoint."""
        session = self._session
        return {
            "state": self._state.value,
            "attempts": self.attempts,
            "capture_mode": self.settings.capture.mode.value,
            "session": None if session is None else {
                "ready": session.ready,
                "age_seconds": round(session.age, 1),
                "rejuvenations": session.rejuvenation_count,
            },
            "source": None if self._source is None else self._source.metrics.to_dict(),
            "sink": None if self._sink is None else {
                "status": self._sink.status.value,
                **self._sink.metrics.to_dict(),
            },
        }

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _start_step(self, step: Awaitable[None]) -> bool:
        """
        Run one start step, racing it against a stop request.

        Returns:
            False if stop() was requested; the step is cancelled if it was
            still in progress
        """
        task = asyncio.ensure_future(step)
        stop_wait = asyncio.create_task(self._stop_requested.wait())
        try:
            await asyncio.wait({task, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_wait.cancel()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        if self._stop_requested.is_set():
            if not task.cancelled() and task.exception() is not None:
                logger.warning(f"Start step failed during stop: {task.exception()}")
            return False
        task.result()
        return True

    async def _watch(self, name: str, signal: FatalSignal) -> None:
        error = await signal.wait()
        self._on_fatal(name, error)

    def _on_fatal(self, name: str, error: BaseException) -> None:
        if self._fatal.trip(error):
            logger.error(f"Fatal {name} error: {error}")

    async def _rejuvenation_loop(self) -> None:
        supervisor = self.settings.supervisor
        check = min(supervisor.rejuvenation_check_seconds, supervisor.rejuvenation_interval_seconds)
        while True:
            await self._sleep(check)
            try:
                await self.maybe_rejuvenate()
            except SessionError as e:
                self._on_fatal("session", e)
                return

    async def _shutdown(self) -> None:
        self._set_state(RunState.STOPPING)

        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self._teardown()
        self._set_state(RunState.STOPPED)

    async def _teardown(self) -> List[BaseException]:
        """Stop sink, source, session in that order; collect errors."""
        errors: List[BaseException] = []
        for name in ("sink", "source", "session"):
            component = getattr(self, f"_{name}")
            if component is None:
                continue
            try:
                await component.stop()
            except Exception as e:
                logger.warning(f"Error stopping {name}: {e}")
                errors.append(e)
            setattr(self, f"_{name}", None)
        return errors
