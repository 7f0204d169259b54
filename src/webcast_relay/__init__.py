"""
webcast-relay
=============

Renders a live web page into frames and relays them, with an audio track,
through an ffmpeg subprocess to an RTMP endpoint, indefinitely.

Components:
    - session: Playwright/Chromium rendering session
    - capture: Polled, pushed and delegated frame acquisition
    - encoder: ffmpeg command builder and supervised encoder sink
    - relay: Pipeline supervisor and the top-level restart loop
    - server: Optional FastAPI liveness endpoint

Example:
    python -m webcast_relay --config config.yaml
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
