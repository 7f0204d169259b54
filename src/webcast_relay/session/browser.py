"""
Browser Session
===============

Chromium rendering session driven through Playwright.

This module provides BrowserSession, the production VisualSession:
    - Launches Chromium in kiosk mode sized to the output frame
    - Runs headful on the virtual display for delegated capture, headless
      otherwise
    - Navigates to the target, waits for network idle plus a settle delay
    - Supports polled capture (JPEG screenshots) and pushed capture
      (CDP Page.startScreencast with per-frame acknowledgement)

Design Rules:
    - Chromium stops the screencast on navigation, so a rejuvenating reload
      re-issues it
    - A renderer crash or browser disconnect trips the session failure
    - Every teardown step is bounded; stopping the Playwright driver
      terminates the browser process if it ignored close()
"""

import asyncio
import base64
import logging
import os
import time
from typing import Any, List, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    CDPSession,
    Dialog,
    Page,
    Playwright,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError

from webcast_relay.config import Settings
from webcast_relay.errors import AcquisitionError, SessionError
from webcast_relay.lifecycle import Clock
from webcast_relay.session.base import BaseSession, FrameCallback


logger = logging.getLogger(__name__)


_HIDE_CURSOR_SCRIPT = """
document.addEventListener('DOMContentLoaded', () => {
  const style = document.createElement('style');
  style.innerHTML = '* { cursor: none !important; }';
  document.head.appendChild(style);
});
"""

_HIDE_WEBDRIVER_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
"""

_WEBGL_PROBE_SCRIPT = """
() => {
  const canvas = document.createElement('canvas');
  const gl = canvas.getContext('webgl') || canvas.getContext('experimental-webgl');
  if (!gl) return 'unavailable';
  const info = gl.getExtension('WEBGL_debug_renderer_info');
  return info ? gl.getParameter(info.UNMASKED_RENDERER_WEBGL) : 'unknown renderer';
}
"""


def chromium_args(settings: Settings) -> List[str]:
    """Chromium flags for an unattended, chrome-less full-frame page."""
    width, height = settings.video.width, settings.video.height
    args = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        # WebGL
        "--enable-webgl",
        "--enable-webgl2",
        "--ignore-gpu-blocklist",
        "--enable-gpu-rasterization",
        # Full frame, no browser UI
        "--start-fullscreen",
        "--start-maximized",
        f"--window-size={width},{height}",
        "--window-position=0,0",
        "--kiosk",
        # No banners, prompts or background work
        "--disable-infobars",
        "--disable-blink-features=AutomationControlled",
        "--disable-translate",
        "--no-default-browser-check",
        "--no-first-run",
        "--disable-session-crashed-bubble",
        "--disable-background-networking",
        "--disable-default-apps",
        "--disable-extensions",
        "--disable-sync",
        "--disable-notifications",
        "--disable-popup-blocking",
        "--mute-audio",
        "--disable-background-timer-throttling",
        "--disable-backgrounding-occluded-windows",
        "--disable-renderer-backgrounding",
        "--autoplay-policy=no-user-gesture-required",
    ]
    args.extend(settings.browser.extra_args)
    return args


class BrowserSession(BaseSession):
    """
    Playwright-backed Chromium session.

    Example:
        session = BrowserSession(settings)
        await session.start()
        jpeg = await session.capture_frame()
        await session.rejuvenate()
        await session.stop()
    """

    def __init__(self, settings: Settings, clock: Clock = time.monotonic) -> None:
        super().__init__(clock=clock)
        self._settings = settings
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._cdp: Optional[CDPSession] = None
        self._on_frame: Optional[FrameCallback] = None
        self._closing: bool = False

    @property
    def page(self) -> Optional[Page]:
        return self._page

    # -------------------------------------------------------------------------
    # Lifecycle hooks
    # -------------------------------------------------------------------------

    async def _open(self) -> None:
        settings = self._settings
        headless = settings.browser_headless
        self._closing = False

        logger.info(
            f"Launching Chromium ({'headless' if headless else 'headful on ' + settings.capture.display})"
        )
        self._playwright = await async_playwright().start()

        env = dict(os.environ)
        env["DISPLAY"] = settings.capture.display
        self._browser = await self._playwright.chromium.launch(
            headless=headless,
            executable_path=settings.browser.executable_path,
            args=chromium_args(settings),
            ignore_default_args=["--enable-automation"],
            env=env,
        )
        self._browser.on("disconnected", self._on_browser_disconnected)

        if headless:
            self._context = await self._browser.new_context(
                viewport={"width": settings.video.width, "height": settings.video.height},
                user_agent=settings.browser.user_agent,
            )
        else:
            self._context = await self._browser.new_context(
                no_viewport=True,
                user_agent=settings.browser.user_agent,
            )
        await self._context.add_init_script(_HIDE_CURSOR_SCRIPT)
        await self._context.add_init_script(_HIDE_WEBDRIVER_SCRIPT)

        self._page = await self._context.new_page()
        self._page.on("dialog", self._on_dialog)
        self._page.on("pageerror", self._on_page_error)
        self._page.on("crash", self._on_page_crash)
        logger.info("Browser launched")

        await self._navigate()
        await self._log_webgl_status()

    async def _reload(self) -> None:
        if self._page is None:
            raise SessionError("No page to reload")
        target = self._settings.target
        try:
            await self._page.reload(
                wait_until="networkidle",
                timeout=target.navigation_timeout_seconds * 1000,
            )
        except PlaywrightError as e:
            raise SessionError(f"Reload failed: {e}") from e
        await asyncio.sleep(target.settle_seconds)

        if self._cdp is not None:
            await self.restart_screencast()

    async def _close(self) -> None:
        self._closing = True
        timeout = self._settings.browser.close_timeout_seconds

        if self._cdp is not None:
            await self.stop_screencast()

        for name, closer in (
            ("context", self._context.close if self._context else None),
            ("browser", self._browser.close if self._browser else None),
            ("playwright", self._playwright.stop if self._playwright else None),
        ):
            if closer is None:
                continue
            try:
                await asyncio.wait_for(closer(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Timed out closing {name} after {timeout:.0f}s")
            except PlaywrightError as e:
                logger.debug(f"Error closing {name}: {e}")

        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None

    async def _navigate(self) -> None:
        target = self._settings.target
        logger.info(f"Loading page: {target.url}")
        try:
            await self._page.goto(
                target.url,
                wait_until="networkidle",
                timeout=target.navigation_timeout_seconds * 1000,
            )
        except PlaywrightError as e:
            raise SessionError(f"Navigation to {target.url} failed: {e}") from e

        logger.info(f"Waiting {target.settle_seconds:.0f}s for content to settle")
        await asyncio.sleep(target.settle_seconds)

    async def _log_webgl_status(self) -> None:
        try:
            renderer = await self._page.evaluate(_WEBGL_PROBE_SCRIPT)
            logger.info(f"WebGL renderer: {renderer}")
        except PlaywrightError as e:
            logger.warning(f"WebGL probe failed: {e}")

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    async def _on_dialog(self, dialog: Dialog) -> None:
        logger.debug(f"Dismissing {dialog.type} dialog: {dialog.message}")
        try:
            await dialog.dismiss()
        except PlaywrightError as e:
            logger.debug(f"Dialog dismiss failed: {e}")

    def _on_page_error(self, error: Any) -> None:
        logger.debug(f"JS error on page: {error}")

    def _on_page_crash(self, page: Page) -> None:
        logger.error("Renderer crashed")
        self.failure.trip(SessionError("Renderer crashed"))

    def _on_browser_disconnected(self, browser: Browser) -> None:
        if self._closing:
            return
        logger.error("Browser disconnected unexpectedly")
        self.failure.trip(SessionError("Browser disconnected"))

    # -------------------------------------------------------------------------
    # Polled capture
    # -------------------------------------------------------------------------

    async def capture_frame(self) -> bytes:
        """
        Take a JPEG screenshot of the page.

        Raises:
            AcquisitionError: Session not ready or screenshot failed
        """
        if self._page is None or not self.ready:
            raise AcquisitionError("Session not ready")
        try:
            return await self._page.screenshot(
                type="jpeg",
                quality=self._settings.video.jpeg_quality,
                timeout=self._settings.capture.acquire_timeout_seconds * 1000,
            )
        except PlaywrightError as e:
            raise AcquisitionError(f"Screenshot failed: {e}") from e

    # -------------------------------------------------------------------------
    # Pushed capture
    # -------------------------------------------------------------------------

    async def start_screencast(self, on_frame: FrameCallback) -> None:
        """Attach a CDP session and start pushing frames to on_frame."""
        if self._page is None or self._context is None:
            raise SessionError("Session not ready for screencast")
        self._on_frame = on_frame
        try:
            self._cdp = await self._context.new_cdp_session(self._page)
            self._cdp.on("Page.screencastFrame", self._on_screencast_frame)
            await self._send_start_screencast()
        except PlaywrightError as e:
            self._cdp = None
            raise SessionError(f"Screencast start failed: {e}") from e
        logger.info("Screencast started")

    async def ack_frame(self, ack_token: Any) -> None:
        if self._cdp is None:
            raise AcquisitionError("Screencast not active")
        try:
            await self._cdp.send("Page.screencastFrameAck", {"sessionId": ack_token})
        except PlaywrightError as e:
            raise AcquisitionError(f"Frame ack failed: {e}") from e

    async def restart_screencast(self) -> None:
        """Stop and re-issue the screencast on the existing CDP session."""
        if self._cdp is None:
            raise AcquisitionError("Screencast not active")
        try:
            await self._cdp.send("Page.stopScreencast")
        except PlaywrightError as e:
            logger.debug(f"Stop screencast error (may not be running): {e}")
        try:
            await self._send_start_screencast()
        except PlaywrightError as e:
            raise AcquisitionError(f"Screencast restart failed: {e}") from e
        logger.info("Screencast restarted")

    async def stop_screencast(self) -> None:
        cdp, self._cdp = self._cdp, None
        self._on_frame = None
        if cdp is None:
            return
        try:
            await cdp.send("Page.stopScreencast")
            await cdp.detach()
        except PlaywrightError as e:
            logger.debug(f"Error stopping screencast: {e}")

    async def _send_start_screencast(self) -> None:
        await self._cdp.send("Page.startScreencast", {
            "format": "jpeg",
            "quality": self._settings.video.jpeg_quality,
            "maxWidth": self._settings.video.width,
            "maxHeight": self._settings.video.height,
            "everyNthFrame": 1,
        })

    def _on_screencast_frame(self, params: dict) -> None:
        callback = self._on_frame
        if callback is None:
            return
        try:
            data = base64.b64decode(params["data"])
            ack_token = params["sessionId"]
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Malformed screencast frame: {e}")
            return
        callback(data, ack_token)
