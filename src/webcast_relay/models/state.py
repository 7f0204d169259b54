"""
Relay State Models
==================

Enumerations shared across the relay components.

Core Concepts:
    - RunState: RelaySupervisor lifecycle (owned and mutated by the supervisor only)
    - CaptureMode: Frame acquisition strategy selector
    - SendResult: Outcome of handing a frame to the encoder
    - EncoderStatus: Lifecycle of the encoder subprocess

RunState transitions:
    STOPPED → STARTING → RUNNING → STOPPING → STOPPED
    STARTING → STOPPED (start failure or stop requested mid-start)
"""

from enum import Enum


class RunState(str, Enum):
    """
    Lifecycle state of a RelaySupervisor.

    Attributes:
        STOPPED: No component is running
        STARTING: Components are being started in dependency order
        RUNNING: Frames flow and the rejuvenation timer is active
        STOPPING: Components are being torn down
    """

    STOPPED = "STOPPED"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"


class CaptureMode(str, Enum):
    """
    Frame acquisition strategy.

    Attributes:
        POLLED: Request a screenshot from the session every tick
        PUSHED: Receive screencast frames pushed by the session
        DELEGATED: The encoder grabs the display itself
    """

    POLLED = "polled"
    PUSHED = "pushed"
    DELEGATED = "delegated"


class SendResult(str, Enum):
    """Outcome of EncoderSink.send()."""

    ACCEPTED = "ACCEPTED"
    BACKPRESSURED = "BACKPRESSURED"


class EncoderStatus(str, Enum):
    """Lifecycle of the encoder subprocess inside an EncoderSink."""

    IDLE = "IDLE"
    RUNNING = "RUNNING"
    CRASHED = "CRASHED"
    FAILED = "FAILED"
    STOPPED = "STOPPED"
