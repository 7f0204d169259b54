"""
Relay Errors
============

Exception hierarchy for the webcast relay.

Propagation Rules:
    - AcquisitionError is transient: logged, frame dropped
    - SinkCrash is absorbed by EncoderSink and relaunched
    - SourceError, SessionError, SinkFatal are fatal to the pipeline run
    - ConfigError is fatal to the process (exit code 1, no retry)
"""

from typing import List, Optional


class RelayError(Exception):
    """Base class for all relay errors."""


class ConfigError(RelayError):
    """Missing or invalid required setting."""


class AcquisitionError(RelayError):
    """A single frame capture call failed."""


class SourceError(RelayError):
    """FrameSource can no longer honour its contract."""


class SessionError(RelayError):
    """Rendering surface failed to start, navigate, settle or reload."""


class SinkError(RelayError):
    """Encoder subprocess could not be launched or is not running."""


class SinkCrash(SinkError):
    """Encoder subprocess exited while it was supposed to be running."""

    def __init__(self, exit_code: Optional[int], detail: str = "") -> None:
        self.exit_code = exit_code
        message = f"encoder exited with code {exit_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class SinkFatal(SinkError):
    """Encoder crash-looped past the configured threshold."""


class StartupError(RelayError):
    """
    Aggregated failure of RelaySupervisor.start().

    Attributes:
        stage: Name of the component that failed to start
        cause: The original error
        teardown_errors: Secondary errors raised while unwinding
    """

    def __init__(
        self,
        stage: str,
        cause: BaseException,
        teardown_errors: Optional[List[BaseException]] = None,
    ) -> None:
        self.stage = stage
        self.cause = cause
        self.teardown_errors = list(teardown_errors or [])
        message = f"{stage} failed to start: {cause}"
        if self.teardown_errors:
            message += f" ({len(self.teardown_errors)} teardown error(s))"
        super().__init__(message)
