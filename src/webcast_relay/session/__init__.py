"""
Session Module
==============

Rendering sessions that produce the frames being streamed.

Components:
    - VisualSession: Protocol every session satisfies
    - BaseSession: Readiness, age and rejuvenation bookkeeping
    - BrowserSession: Playwright/Chromium implementation

BrowserSession is imported lazily by the relay so that the core can be
exercised without a browser installed.
"""

from webcast_relay.session.base import BaseSession, FrameCallback, VisualSession

__all__ = [
    "VisualSession",
    "BaseSession",
    "FrameCallback",
]
