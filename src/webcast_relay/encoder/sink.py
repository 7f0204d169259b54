"""
Encoder Sink
============

Owns the external encoder subprocess and feeds it frames.

This module provides the EncoderSink class which:
    - Launches the encoder with stdin open for frames and stderr captured
    - Writes frames to stdin without ever queueing beyond the pipe buffer
    - Reports BACKPRESSURED when the pipe is saturated or the encoder is
      between generations, and exposes wait_drained() as the drain signal
    - Relaunches the encoder after a crash, escalating to SinkFatal when
      crashes exceed the crash-loop threshold inside the window
    - Stops by closing stdin, sending SIGTERM and killing after a grace period

Design Rules:
    - At most one live EncoderHandle; a new one is launched only after the
      previous process has fully exited
    - A single crash is absorbed here and never reaches the supervisor
    - stop() is idempotent and bounded by the grace period
"""

import asyncio
import logging
import re
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional

from webcast_relay.config import Settings
from webcast_relay.encoder.command import build_encoder_command, mask_command, reads_stdin
from webcast_relay.errors import SinkCrash, SinkError, SinkFatal
from webcast_relay.lifecycle import Clock, FailureWindow, FatalSignal
from webcast_relay.models.state import EncoderStatus, SendResult
from webcast_relay.stream.frame import Frame


logger = logging.getLogger(__name__)


_LINE_SPLIT = re.compile(rb"[\r\n]")


@dataclass
class EncoderHandle:
    """
    One running encoder subprocess.

    Attributes:
        process: The asyncio subprocess
        generation: 1 for the first launch, incremented per relaunch
        started_at: Clock reading at launch
        exit_code: Set once the process has exited and been reaped
    """

    process: asyncio.subprocess.Process
    generation: int
    started_at: float
    exit_code: Optional[int] = None

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def alive(self) -> bool:
        return self.process.returncode is None

    @property
    def stdin(self) -> Optional[asyncio.StreamWriter]:
        return self.process.stdin


class SinkMetrics:
    """Metrics for EncoderSink observability."""

    __slots__ = (
        "frames_accepted",
        "frames_backpressured",
        "bytes_written",
        "launches",
        "crashes",
        "last_exit_code",
    )

    def __init__(self) -> None:
        self.frames_accepted: int = 0
        self.frames_backpressured: int = 0
        self.bytes_written: int = 0
        self.launches: int = 0
        self.crashes: int = 0
        self.last_exit_code: Optional[int] = None

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "frames_accepted": self.frames_accepted,
            "frames_backpressured": self.frames_backpressured,
            "bytes_written": self.bytes_written,
            "launches": self.launches,
            "crashes": self.crashes,
            "last_exit_code": self.last_exit_code,
        }


class EncoderSink:
    """
    Supervised encoder subprocess with a backpressure-aware input.

    Example:
        sink = EncoderSink.from_settings(settings)
        await sink.start()

        if sink.send(frame) is SendResult.BACKPRESSURED:
            await sink.wait_drained()

        await sink.stop()
    """

    def __init__(
        self,
        command: List[str],
        *,
        feed_stdin: bool = True,
        relaunch_delay: float = 2.0,
        crash_loop_threshold: int = 3,
        crash_loop_window: float = 60.0,
        startup_probe: float = 0.5,
        stop_grace: float = 5.0,
        write_buffer_high_water: int = 4 * 1024 * 1024,
        drain_timeout: float = 5.0,
        progress_log_interval: float = 30.0,
        secret: str = "",
        env: Optional[Dict[str, str]] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        """
        Initialize encoder sink.

        Args:
            command: Encoder argv
            feed_stdin: Open stdin for frames (False for delegated capture)
            relaunch_delay: Seconds between a crash and the relaunch
            crash_loop_threshold: Crashes tolerated inside crash_loop_window
            crash_loop_window: Seconds over which crashes are counted
            startup_probe: An exit within this many seconds fails start()
            stop_grace: Seconds to wait after SIGTERM before SIGKILL
            write_buffer_high_water: Buffered stdin bytes that count as saturated
            drain_timeout: Default bound for wait_drained()
            progress_log_interval: Minimum spacing of progress log lines
            secret: String masked out of every log line
            env: Environment for the subprocess (None = inherit)
            clock: Monotonic clock
        """
        if not command:
            raise ValueError("command must not be empty")
        self.command = list(command)
        self.feed_stdin = feed_stdin
        self.relaunch_delay = relaunch_delay
        self.startup_probe = startup_probe
        self.stop_grace = stop_grace
        self.write_buffer_high_water = write_buffer_high_water
        self.drain_timeout = drain_timeout
        self.progress_log_interval = progress_log_interval
        self._secret = secret
        self._env = env
        self._clock = clock

        # State
        self._status: EncoderStatus = EncoderStatus.IDLE
        self._running: bool = False
        self._handle: Optional[EncoderHandle] = None
        self._generation: int = 0
        self._handle_changed: asyncio.Event = asyncio.Event()
        self._supervise_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._stop_started: bool = False
        self._stopped_event: asyncio.Event = asyncio.Event()
        self._crashes = FailureWindow(crash_loop_threshold, crash_loop_window, clock=clock)
        self._recent_output: Deque[str] = deque(maxlen=20)
        self._last_progress_log: float = float("-inf")

        self.failure = FatalSignal()
        self.metrics = SinkMetrics()

    @classmethod
    def from_settings(cls, settings: Settings) -> "EncoderSink":
        encoder = settings.encoder
        return cls(
            build_encoder_command(settings),
            feed_stdin=reads_stdin(settings),
            relaunch_delay=encoder.relaunch_delay_seconds,
            crash_loop_threshold=encoder.crash_loop_threshold,
            crash_loop_window=encoder.crash_loop_window_seconds,
            startup_probe=encoder.startup_probe_seconds,
            stop_grace=encoder.stop_grace_seconds,
            write_buffer_high_water=encoder.write_buffer_high_water,
            drain_timeout=encoder.drain_timeout_seconds,
            progress_log_interval=encoder.progress_log_interval_seconds,
            secret=settings.stream.stream_key,
        )

    @property
    def status(self) -> EncoderStatus:
        return self._status

    @property
    def handle(self) -> Optional[EncoderHandle]:
        return self._handle

    @property
    def crash_loop_threshold(self) -> int:
        return self._crashes.limit

    @property
    def recent_output(self) -> List[str]:
        """Last lines of encoder diagnostics, oldest first."""
        return list(self._recent_output)

    @property
    def saturated(self) -> bool:
        """Whether stdin holds more than the high-water mark."""
        handle = self._handle
        if handle is None or handle.stdin is None:
            return False
        return handle.stdin.transport.get_write_buffer_size() > self.write_buffer_high_water

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """
        Launch the encoder.

        Raises:
            SinkError: Launch failed or the encoder exited during the
                startup probe
        """
        if self._running:
            return
        if self._stop_started:
            raise SinkError("Encoder sink has been stopped")

        logger.info(f"Starting encoder: {mask_command(self.command, self._secret)}")
        self._running = True
        try:
            handle = await self._launch()
            if self.startup_probe > 0:
                await self._probe_startup(handle)
        except BaseException:
            self._running = False
            self._status = EncoderStatus.FAILED
            if self._handle is not None and self._handle.alive:
                await self._terminate(self._handle)
            raise

        self._supervise_task = asyncio.create_task(
            self._supervise(),
            name="encoder_supervisor",
        )
        logger.info("Encoder started - stream is live")

    async def stop(self) -> None:
        """
        Stop the encoder: close stdin, SIGTERM, then SIGKILL after the grace.

        Safe to call repeatedly; concurrent callers wait for the same
        teardown.
        """
        if self._stop_started:
            await self._stopped_event.wait()
            return
        self._stop_started = True
        self._running = False
        logger.info("Stopping encoder...")

        try:
            self._notify_handle_changed()

            if self._supervise_task is not None:
                self._supervise_task.cancel()
                try:
                    await self._supervise_task
                except asyncio.CancelledError:
                    pass
                self._supervise_task = None

            handle = self._handle
            if handle is not None and handle.alive:
                await self._terminate(handle)

            await self._finish_stderr()
            if self._status is not EncoderStatus.FAILED:
                self._status = EncoderStatus.STOPPED
            logger.info("Encoder stopped")
        finally:
            self._stopped_event.set()

    # -------------------------------------------------------------------------
    # Frame input
    # -------------------------------------------------------------------------

    def send(self, frame: Frame) -> SendResult:
        """
        Write one frame to the encoder's stdin.

        Returns:
            ACCEPTED if written, BACKPRESSURED if the pipe is saturated or
            the encoder is relaunching. A backpressured frame is dropped;
            the caller must wait_drained() before sending again.

        Raises:
            SinkFatal: The encoder crash-looped
            SinkError: The sink is not running or takes no frame input
        """
        if self.failure.tripped:
            raise self.failure.error
        if not self._running:
            raise SinkError("Encoder sink is not running")
        if not self.feed_stdin:
            raise SinkError("Encoder reads its video directly; it accepts no frames")

        handle = self._handle
        if (
            handle is None
            or not handle.alive
            or handle.stdin is None
            or handle.stdin.is_closing()
            or self.saturated
        ):
            self.metrics.frames_backpressured += 1
            return SendResult.BACKPRESSURED

        try:
            handle.stdin.write(frame.data)
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug(f"Encoder stdin closed while writing frame {frame.sequence}: {e}")
            self.metrics.frames_backpressured += 1
            return SendResult.BACKPRESSURED

        self.metrics.frames_accepted += 1
        self.metrics.bytes_written += frame.size
        return SendResult.ACCEPTED

    async def wait_drained(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the drain signal.

        Returns once stdin is below its low-water mark, waiting across an
        encoder relaunch if necessary.

        Args:
            timeout: Maximum seconds to wait. None = drain_timeout.

        Returns:
            True if drained, False on timeout or if the sink stopped/failed.
        """
        timeout = self.drain_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(self._drained(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Encoder input did not drain within {timeout:.1f}s")
            return False

    async def _drained(self) -> bool:
        while self._running and not self.failure.tripped:
            handle = self._handle
            if handle is None or not handle.alive or handle.stdin is None:
                await self._wait_for_new_handle(handle)
                continue
            try:
                await handle.stdin.drain()
                return True
            except (BrokenPipeError, ConnectionResetError):
                await self._wait_for_new_handle(handle)
        return False

    async def _wait_for_new_handle(self, current: Optional[EncoderHandle]) -> None:
        event = self._handle_changed
        while self._running and not self.failure.tripped and self._handle is current:
            await event.wait()
            event = self._handle_changed

    def _notify_handle_changed(self) -> None:
        event, self._handle_changed = self._handle_changed, asyncio.Event()
        event.set()

    # -------------------------------------------------------------------------
    # Process management
    # -------------------------------------------------------------------------

    async def _launch(self) -> EncoderHandle:
        stdin = asyncio.subprocess.PIPE if self.feed_stdin else asyncio.subprocess.DEVNULL
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=stdin,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                env=self._env,
            )
        except FileNotFoundError as e:
            raise SinkError(f"Encoder binary not found: {self.command[0]}") from e
        except OSError as e:
            raise SinkError(f"Failed to launch encoder: {e}") from e

        self._generation += 1
        handle = EncoderHandle(
            process=process,
            generation=self._generation,
            started_at=self._clock(),
        )
        self._handle = handle
        if process.stdin is not None:
            process.stdin.transport.set_write_buffer_limits(high=self.write_buffer_high_water)

        await self._finish_stderr()
        self._stderr_task = asyncio.create_task(
            self._pump_stderr(handle),
            name=f"encoder_stderr_{handle.generation}",
        )

        self.metrics.launches += 1
        self._status = EncoderStatus.RUNNING
        self._notify_handle_changed()
        logger.info(f"Encoder launched (pid={handle.pid}, generation={handle.generation})")
        return handle

    async def _probe_startup(self, handle: EncoderHandle) -> None:
        try:
            exit_code = await asyncio.wait_for(
                asyncio.shield(handle.process.wait()),
                timeout=self.startup_probe,
            )
        except asyncio.TimeoutError:
            return
        await self._finish_stderr()
        handle.exit_code = exit_code
        self.metrics.last_exit_code = exit_code
        raise SinkError(
            f"Encoder exited during startup with code {exit_code}: {self._output_tail()}"
        )

    async def _supervise(self) -> None:
        """Reap each encoder generation and relaunch it while running."""
        while self._running:
            handle = self._handle
            exit_code = await handle.process.wait()
            await self._finish_stderr()
            handle.exit_code = exit_code
            self.metrics.last_exit_code = exit_code
            if not self._running:
                return

            self._status = EncoderStatus.CRASHED
            self.metrics.crashes += 1
            self._notify_handle_changed()
            crash = SinkCrash(exit_code, self._output_tail())
            crash_count = self._crashes.record()
            logger.warning(
                f"Encoder crashed (generation={handle.generation}): {crash} "
                f"[{crash_count} in {self._crashes.window_seconds:.0f}s]"
            )

            if crash_count > self._crashes.limit:
                self._fail(SinkFatal(
                    f"Encoder crash loop: {crash_count} exits within "
                    f"{self._crashes.window_seconds:.0f}s (last exit code {exit_code})"
                ))
                return

            logger.info(f"Relaunching encoder in {self.relaunch_delay:.1f}s...")
            await asyncio.sleep(self.relaunch_delay)
            if not self._running:
                return
            try:
                await self._launch()
            except SinkError as e:
                self._fail(SinkFatal(f"Encoder relaunch failed: {e}"))
                return

    def _fail(self, error: SinkError) -> None:
        self._status = EncoderStatus.FAILED
        logger.error(f"Encoder sink failed: {error}")
        self.failure.trip(error)
        self._notify_handle_changed()

    async def _terminate(self, handle: EncoderHandle) -> None:
        process = handle.process
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        try:
            process.terminate()
        except ProcessLookupError:
            pass
        try:
            handle.exit_code = await asyncio.wait_for(process.wait(), timeout=self.stop_grace)
        except asyncio.TimeoutError:
            logger.warning(
                f"Encoder did not exit within {self.stop_grace:.1f}s, killing (pid={handle.pid})"
            )
            try:
                process.kill()
            except ProcessLookupError:
                pass
            handle.exit_code = await process.wait()
        self.metrics.last_exit_code = handle.exit_code

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    async def _pump_stderr(self, handle: EncoderHandle) -> None:
        stream = handle.process.stderr
        if stream is None:
            return
        pending = b""
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            pending += chunk
            *lines, pending = _LINE_SPLIT.split(pending)
            for raw in lines:
                self._handle_output(raw)
        if pending:
            self._handle_output(pending)

    async def _finish_stderr(self) -> None:
        task, self._stderr_task = self._stderr_task, None
        if task is None:
            return
        try:
            await asyncio.wait_for(task, timeout=1.0)
        except asyncio.TimeoutError:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _handle_output(self, raw: bytes) -> None:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            return
        if self._secret:
            line = line.replace(self._secret, "****")
        self._recent_output.append(line)

        if "frame=" in line or "fps=" in line:
            now = self._clock()
            if now - self._last_progress_log >= self.progress_log_interval:
                self._last_progress_log = now
                logger.info(f"Encoder: {line}")
            else:
                logger.debug(f"Encoder: {line}")
        elif "error" in line.lower():
            logger.error(f"Encoder: {line}")
        elif line.startswith("Output"):
            logger.info(f"Encoder: {line}")
        else:
            logger.debug(f"Encoder: {line}")

    def _output_tail(self, lines: int = 3) -> str:
        return " | ".join(list(self._recent_output)[-lines:])
