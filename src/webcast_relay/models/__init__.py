"""
Data Models
===========

Shared enumerations for the webcast relay.

Models:
    - RunState: RelaySupervisor lifecycle states
    - CaptureMode: Polled / Pushed / Delegated selector
    - SendResult: ACCEPTED or BACKPRESSURED
    - EncoderStatus: Encoder subprocess lifecycle
"""

from webcast_relay.models.state import CaptureMode, EncoderStatus, RunState, SendResult

__all__ = [
    "RunState",
    "CaptureMode",
    "SendResult",
    "EncoderStatus",
]
