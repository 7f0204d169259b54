"""
Session Tests
=============

BaseSession lifecycle bookkeeping, exercised through the fake session, and
BrowserSession rejuvenation and teardown against stub Playwright objects.
"""

import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError

from webcast_relay.errors import SessionError
from webcast_relay.session.browser import BrowserSession, chromium_args


class TestBaseSession:
    """Readiness, age and rejuvenation."""

    @pytest.mark.asyncio
    async def test_start_sets_ready_and_age(self, fakes, clock):
        session = fakes.Session(clock=clock)
        assert not session.ready
        assert session.age == 0.0

        await session.start()
        clock.advance(42.0)

        assert session.ready
        assert session.age == pytest.approx(42.0)

    @pytest.mark.asyncio
    async def test_start_failure_releases_resources(self, fakes):
        session = fakes.Session(fail_open=RuntimeError("navigation timeout"))

        with pytest.raises(SessionError, match="navigation timeout"):
            await session.start()

        assert not session.ready
        assert session.closed == 1

    @pytest.mark.asyncio
    async def test_cancelled_start_releases_resources(self, fakes):
        gate = asyncio.Event()
        session = fakes.Session(open_gate=gate)

        task = asyncio.create_task(session.start())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert session.closed == 1
        assert not session.ready

    @pytest.mark.asyncio
    async def test_rejuvenate_resets_age(self, fakes, clock):
        session = fakes.Session(clock=clock)
        await session.start()
        clock.advance(3600.0)

        await session.rejuvenate()

        assert session.age == 0.0
        assert session.rejuvenation_count == 1
        assert session.reloads == 1
        assert not session.rejuvenating

    @pytest.mark.asyncio
    async def test_rejuvenating_flag_during_reload(self, fakes, wait_until):
        gate = asyncio.Event()
        session = fakes.Session(reload_gate=gate)
        await session.start()

        task = asyncio.create_task(session.rejuvenate())
        await wait_until(lambda: session.rejuvenating)
        gate.set()
        await task

        assert not session.rejuvenating

    @pytest.mark.asyncio
    async def test_rejuvenate_failure(self, fakes, clock):
        session = fakes.Session(clock=clock, fail_reload=RuntimeError("net::ERR_FAILED"))
        await session.start()
        clock.advance(10.0)

        with pytest.raises(SessionError, match="ERR_FAILED"):
            await session.rejuvenate()

        assert not session.rejuvenating
        assert session.rejuvenation_count == 0
        assert session.age == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_rejuvenate_requires_start(self, fakes):
        with pytest.raises(SessionError):
            await fakes.Session().rejuvenate()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, fakes):
        session = fakes.Session()
        await session.start()

        await session.stop()
        await session.stop()

        assert session.closed == 1
        assert not session.ready
        assert session.journal == ["session.start", "session.stop"]


class TestChromiumArgs:
    """Launch flags for the browser."""

    def test_window_matches_frame(self, make_settings):
        args = chromium_args(make_settings(video={"width": 1280, "height": 720}))

        assert "--window-size=1280,720" in args
        assert "--kiosk" in args
        assert "--enable-webgl" in args

    def test_extra_args_appended(self, make_settings):
        args = chromium_args(make_settings(browser={"extra_args": ["--use-gl=swiftshader"]}))

        assert args[-1] == "--use-gl=swiftshader"


class _StubCDP:
    """Records CDP commands sent by the session."""

    def __init__(self, journal):
        self.journal = journal
        self.handlers = {}

    def on(self, event, handler):
        self.handlers[event] = handler

    async def send(self, method, params=None):
        self.journal.append(method)

    async def detach(self):
        self.journal.append("cdp.detach")


class _StubPage:
    def __init__(self, journal, reload_error=None):
        self.journal = journal
        self.reload_error = reload_error

    async def reload(self, wait_until, timeout):
        self.journal.append("page.reload")
        if self.reload_error is not None:
            raise self.reload_error


class _StubHandle:
    """Stands in for the context, browser and driver; can hang on close."""

    def __init__(self, name, journal, page=None, hang=False):
        self.name = name
        self.journal = journal
        self.page = page
        self.hang = hang

    async def new_cdp_session(self, page):
        assert page is self.page
        return _StubCDP(self.journal)

    async def close(self):
        self.journal.append(f"{self.name}.close")
        if self.hang:
            await asyncio.Event().wait()

    async def stop(self):
        self.journal.append(f"{self.name}.stop")


class StubbedBrowserSession(BrowserSession):
    """BrowserSession whose launch installs stub Playwright objects."""

    def __init__(self, settings, journal, hang_on=(), reload_error=None):
        super().__init__(settings)
        self.journal = journal
        self.hang_on = hang_on
        self.reload_error = reload_error

    async def _open(self):
        page = _StubPage(self.journal, self.reload_error)
        self._page = page
        self._context = _StubHandle("context", self.journal, page, "context" in self.hang_on)
        self._browser = _StubHandle("browser", self.journal, hang="browser" in self.hang_on)
        self._playwright = _StubHandle("playwright", self.journal)


@pytest.fixture
def browser_settings(make_settings):
    return make_settings(
        target={"settle_seconds": 0.0},
        browser={"close_timeout_seconds": 0.05},
    )


class TestBrowserSession:
    """Rejuvenation and teardown of the Playwright session."""

    @pytest.mark.asyncio
    async def test_rejuvenate_restarts_screencast(self, browser_settings, journal):
        """The reload stops the screencast, so it is re-issued afterwards."""
        session = StubbedBrowserSession(browser_settings, journal)
        await session.start()
        await session.start_screencast(lambda data, token: None)
        journal.clear()

        await session.rejuvenate()

        assert journal == ["page.reload", "Page.stopScreencast", "Page.startScreencast"]
        assert session.rejuvenation_count == 1

    @pytest.mark.asyncio
    async def test_rejuvenate_without_screencast(self, browser_settings, journal):
        session = StubbedBrowserSession(browser_settings, journal)
        await session.start()

        await session.rejuvenate()

        assert journal == ["page.reload"]

    @pytest.mark.asyncio
    async def test_reload_error_is_session_error(self, browser_settings, journal):
        session = StubbedBrowserSession(
            browser_settings, journal, reload_error=PlaywrightError("net::ERR_FAILED")
        )
        await session.start()

        with pytest.raises(SessionError, match="Reload failed"):
            await session.rejuvenate()

        assert not session.rejuvenating

    @pytest.mark.asyncio
    async def test_stop_abandons_hung_close(self, browser_settings, journal):
        """A closer that outlives the timeout is skipped; later steps still run."""
        session = StubbedBrowserSession(browser_settings, journal, hang_on=("context",))
        await session.start()
        await session.start_screencast(lambda data, token: None)
        journal.clear()

        await asyncio.wait_for(session.stop(), timeout=2.0)

        assert journal == [
            "Page.stopScreencast",
            "cdp.detach",
            "context.close",
            "browser.close",
            "playwright.stop",
        ]
        assert session.page is None
        assert not session.ready

    @pytest.mark.asyncio
    async def test_second_stop_is_noop(self, browser_settings, journal):
        session = StubbedBrowserSession(browser_settings, journal, hang_on=("browser",))
        await session.start()
        await session.stop()
        closed = list(journal)

        await asyncio.wait_for(session.stop(), timeout=1.0)

        assert journal == closed
        assert closed.count("browser.close") == 1
