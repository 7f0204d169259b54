"""
Visual Session
==============

Abstraction over the rendering surface that produces frames.

This module provides the VisualSession protocol and BaseSession, which
implements the lifecycle bookkeeping every session shares: readiness,
age since the last (re)load, and the rejuvenating flag FrameSources use to
classify errors during a reload as transient.

Design Rules:
    - Age is measured with an injectable monotonic clock
    - start() either returns with a settled page or raises SessionError
      after releasing whatever it had acquired
    - stop() is idempotent and never raises
"""

import logging
import time
from typing import Any, Callable, Optional, Protocol

from webcast_relay.errors import SessionError
from webcast_relay.lifecycle import Clock, FatalSignal


logger = logging.getLogger(__name__)


FrameCallback = Callable[[bytes, Any], None]


class VisualSession(Protocol):
    """
    Protocol for rendering sessions.

    Polled capture uses capture_frame(). Pushed capture uses the
    screencast hooks: the session invokes the callback with
    (jpeg_bytes, ack_token) and must not push the next frame until
    ack_frame(ack_token) has been called.
    """

    failure: FatalSignal
    rejuvenation_count: int

    @property
    def ready(self) -> bool: ...

    @property
    def rejuvenating(self) -> bool: ...

    @property
    def age(self) -> float: ...

    async def start(self) -> None: ...

    async def rejuvenate(self) -> None: ...

    async def stop(self) -> None: ...

    async def capture_frame(self) -> bytes: ...

    async def start_screencast(self, on_frame: FrameCallback) -> None: ...

    async def ack_frame(self, ack_token: Any) -> None: ...

    async def restart_screencast(self) -> None: ...

    async def stop_screencast(self) -> None: ...


class BaseSession:
    """
    Lifecycle bookkeeping shared by session implementations.

    Subclasses implement _open(), _reload() and _close(), plus whichever
    capture hooks their renderer supports.

    Attributes:
        failure: Tripped when the renderer dies underneath the session
        rejuvenation_count: Completed rejuvenations since start
    """

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._loaded_at: Optional[float] = None
        self._ready: bool = False
        self._rejuvenating: bool = False
        self._stopped: bool = False
        self.rejuvenation_count: int = 0
        self.failure = FatalSignal()

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def rejuvenating(self) -> bool:
        return self._rejuvenating

    @property
    def age(self) -> float:
        """Seconds since the page was last loaded or reloaded."""
        if self._loaded_at is None:
            return 0.0
        return self._clock() - self._loaded_at

    async def start(self) -> None:
        """
        Establish the surface and wait for the target to settle.

        Raises:
            SessionError: Launch, navigation or settle failed
        """
        if self._ready:
            return
        self._stopped = False
        try:
            await self._open()
        except BaseException as e:
            await self._close_quietly()
            if isinstance(e, SessionError) or not isinstance(e, Exception):
                raise
            raise SessionError(f"Session start failed: {type(e).__name__}: {e}") from e
        self._loaded_at = self._clock()
        self._ready = True
        logger.info("Session ready")

    async def rejuvenate(self) -> None:
        """
        Reload the target in place and reset the session age.

        Raises:
            SessionError: Session not started or reload failed
        """
        if not self._ready:
            raise SessionError("Cannot rejuvenate a session that is not running")
        logger.info(f"Rejuvenating session (age {self.age:.0f}s)")
        self._rejuvenating = True
        try:
            await self._reload()
        except SessionError:
            raise
        except Exception as e:
            raise SessionError(f"Rejuvenation failed: {type(e).__name__}: {e}") from e
        finally:
            self._rejuvenating = False
        self._loaded_at = self._clock()
        self.rejuvenation_count += 1
        logger.info(f"Session rejuvenated (count={self.rejuvenation_count})")

    async def stop(self) -> None:
        """Release all session resources. Safe to call repeatedly."""
        if self._stopped:
            return
        self._stopped = True
        self._ready = False
        await self._close_quietly()
        self._loaded_at = None
        logger.info("Session stopped")

    async def _close_quietly(self) -> None:
        try:
            await self._close()
        except Exception as e:
            logger.warning(f"Error releasing session resources: {e}")

    # Subclass hooks

    async def _open(self) -> None:
        raise NotImplementedError

    async def _reload(self) -> None:
        raise NotImplementedError

    async def _close(self) -> None:
        raise NotImplementedError

    # Capture hooks (optional per renderer)

    async def capture_frame(self) -> bytes:
        raise NotImplementedError(f"{type(self).__name__} does not support polled capture")

    async def start_screencast(self, on_frame: FrameCallback) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not support pushed capture")

    async def ack_frame(self, ack_token: Any) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not support pushed capture")

    async def restart_screencast(self) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not support pushed capture")

    async def stop_screencast(self) -> None:
        return None
