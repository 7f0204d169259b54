"""
Stream Tests
============

Frame model and the single-slot mailbox used by pushed capture.
"""

import dataclasses

import pytest

from webcast_relay.stream import Frame, FrameMailbox


class TestFrame:
    """Tests for the Frame model."""

    def test_immutable(self):
        frame = Frame(sequence=1, timestamp=10.0, data=b"jpeg")

        with pytest.raises(dataclasses.FrozenInstanceError):
            frame.sequence = 2

    def test_repr_hides_payload(self):
        frame = Frame(sequence=7, timestamp=1.5, data=b"x" * 5000)

        assert "size=5000" in repr(frame)
        assert "xxxx" not in repr(frame)
        assert frame.size == 5000


class TestFrameMailbox:
    """Tests for FrameMailbox."""

    @pytest.mark.asyncio
    async def test_offer_then_take(self):
        mailbox = FrameMailbox()

        assert mailbox.offer(b"one", "token-1") is True
        assert mailbox.occupied

        item = await mailbox.take(timeout=1.0)
        assert item.data == b"one"
        assert item.ack_token == "token-1"
        assert not mailbox.occupied

    @pytest.mark.asyncio
    async def test_occupied_slot_rejects(self):
        """A second offer before take() is refused, never queued."""
        mailbox = FrameMailbox()
        mailbox.offer(b"one", 1)

        assert mailbox.offer(b"two", 2) is False
        assert mailbox.rejected_count == 1

        item = await mailbox.take(timeout=1.0)
        assert item.ack_token == 1
        assert await mailbox.take(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_take_timeout(self):
        assert await FrameMailbox().take(timeout=0.01) is None

    def test_clear(self):
        mailbox = FrameMailbox()
        mailbox.offer(b"one", 1)

        assert mailbox.clear() == 1
        assert mailbox.clear() == 0
        assert mailbox.metrics() == {
            "occupied": False,
            "rejected_count": 0,
            "total_offered": 1,
        }
