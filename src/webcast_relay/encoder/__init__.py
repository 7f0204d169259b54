"""
Encoder Module
==============

The external encoder/transport process and its supervision.

Components:
    - build_encoder_command: ffmpeg argv for the configured capture mode
    - EncoderSink: Supervised subprocess with backpressure-aware input
    - EncoderHandle: One running encoder generation
    - SinkMetrics: Counters for the health endpoint
"""

from webcast_relay.encoder.command import build_encoder_command, mask_command, reads_stdin
from webcast_relay.encoder.sink import EncoderHandle, EncoderSink, SinkMetrics


__all__ = [
    "build_encoder_command",
    "mask_command",
    "reads_stdin",
    "EncoderSink",
    "EncoderHandle",
    "SinkMetrics",
]
