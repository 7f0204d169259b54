"""
Frame Data Model
=================

Internal frame representation for the relay pipeline.

This module defines the typed Frame class that is passed from a
FrameSource to the EncoderSink.

Design Rules:
    - This is the ONLY frame format handed to the encoder
    - Does NOT decode or manipulate image data
    - Sequence numbers increase monotonically for the life of a FrameSource,
      including across session rejuvenation
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Frame:
    """
    One encoded raster image on its way to the encoder.

    It is immutable (frozen) to prevent accidental modification.
    Ownership passes to the EncoderSink on send.

    Attributes:
        sequence: Monotonically increasing frame counter
        timestamp: Monotonic clock reading when the frame was acquired
        data: JPEG-encoded image bytes
    """

    sequence: int
    timestamp: float
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the full image."""
        return (
            f"Frame(sequence={self.sequence}, "
            f"timestamp={self.timestamp:.3f}, "
            f"size={len(self.data)})"
        )
