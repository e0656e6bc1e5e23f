"""Actuator: executes model actions against live remote browser sessions."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from browser import RemoteBrowser
from config import BrowserConfig
from exceptions import (
    ActuatorTimeoutError,
    BrowserActionError,
    BrowserNotConnectedError,
    InvalidActionTarget,
    NavigationError,
)
from item_types import (
    Action,
    ClickAction,
    DoubleClickAction,
    DragAction,
    KeyPressAction,
    MoveAction,
    Observation,
    ScreenshotAction,
    ScrollAction,
    Session,
    TypeAction,
    WaitAction,
)
from utils import get_trimmed_url, key_combination

T = TypeVar("T")

BrowserFactory = Callable[[Session], RemoteBrowser]


class Actuator:
    """Runs one action at a time per session and reports what the page looks like afterwards.

    Action-semantic failures (targets outside the viewport, empty drags, page
    errors) never raise: the action is skipped or best-efforted and the
    resulting observation carries an ``error`` note. Only transport failures
    and timeouts raise, as ``ActuatorTransportError`` subclasses.
    """

    def __init__(
        self,
        config: Optional[BrowserConfig] = None,
        browser_factory: Optional[BrowserFactory] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or BrowserConfig()
        self.logger = logger or logging.getLogger("actuator")
        self._browser_factory = browser_factory or self._default_browser
        self._browsers: dict[str, RemoteBrowser] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _default_browser(self, session: Session) -> RemoteBrowser:
        return RemoteBrowser(
            connect_endpoint=session.connect_endpoint,
            viewport_width=session.viewport_width,
            viewport_height=session.viewport_height,
            session_id=session.session_id,
            logger=self.logger.getChild("browser"),
        )

    def _lock_for(self, session: Session) -> asyncio.Lock:
        return self._locks.setdefault(session.session_id, asyncio.Lock())

    def _browser_for(self, session: Session) -> RemoteBrowser:
        browser = self._browsers.get(session.session_id)
        if browser is None:
            raise BrowserNotConnectedError()
        return browser

    async def _with_timeout(
        self, operation: str, session: Session, coro: Awaitable[T], timeout: float
    ) -> T:
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ActuatorTimeoutError(operation, timeout, session_id=session.session_id) from e

    # ─────────────────────────────────────────────────────────────────────────
    # Session connection
    # ─────────────────────────────────────────────────────────────────────────

    async def connect(self, session: Session, timeout: Optional[float] = None) -> None:
        """Attach to the session's browser; a no-op when already attached."""
        async with self._lock_for(session):
            await self._with_timeout(
                "connect",
                session,
                self._connect(session),
                timeout or self.config.connect_timeout,
            )

    async def _connect(self, session: Session) -> RemoteBrowser:
        browser = self._browsers.get(session.session_id)
        if browser is None:
            browser = self._browser_factory(session)
            self._browsers[session.session_id] = browser
        await browser.connect(timeout=self.config.connect_timeout * 1000)
        return browser

    async def disconnect(self, session: Session) -> None:
        """Drop the CDP connection; tearing the session down is the caller's job."""
        # The lock stays registered: coroutines may still be queued on it.
        async with self._lock_for(session):
            browser = self._browsers.pop(session.session_id, None)
            if browser is not None:
                await browser.close()

    # ─────────────────────────────────────────────────────────────────────────
    # Navigation
    # ─────────────────────────────────────────────────────────────────────────

    async def navigate(
        self, session: Session, url: str, timeout: Optional[float] = None
    ) -> Observation:
        """Load a URL; navigation errors are reported on the observation."""
        async with self._lock_for(session):
            return await self._with_timeout(
                "navigate",
                session,
                self._navigate(session, url),
                timeout or self.config.navigation_timeout + self.config.action_timeout,
            )

    async def _navigate(self, session: Session, url: str) -> Observation:
        browser = self._browser_for(session)
        error: Optional[str] = None
        self.logger.info(f"[{session.session_id}] goto {get_trimmed_url(url, 120)}")
        try:
            await browser.goto(url, timeout=self.config.navigation_timeout * 1000)
        except NavigationError as e:
            self.logger.warning(f"[{session.session_id}] navigation to {url} failed: {e}")
            error = str(e)
        return await self._observe(browser, error)

    async def back(self, session: Session, timeout: Optional[float] = None) -> Observation:
        """Go back one entry in the page history."""
        async with self._lock_for(session):
            return await self._with_timeout(
                "back", session, self._back(session), timeout or self.config.navigation_timeout
            )

    async def _back(self, session: Session) -> Observation:
        browser = self._browser_for(session)
        error: Optional[str] = None
        try:
            await browser.go_back(timeout=self.config.navigation_timeout * 1000)
        except BrowserActionError as e:
            self.logger.warning(f"[{session.session_id}] back failed: {e}")
            error = str(e)
        return await self._observe(browser, error)

    # ─────────────────────────────────────────────────────────────────────────
    # Actions
    # ─────────────────────────────────────────────────────────────────────────

    async def screenshot(self, session: Session, timeout: Optional[float] = None) -> Observation:
        """Capture state without touching the page, reconnecting if the connection lapsed."""
        async with self._lock_for(session):
            return await self._with_timeout(
                "screenshot", session, self._screenshot(session), timeout or self.config.action_timeout
            )

    async def _screenshot(self, session: Session) -> Observation:
        browser = self._browsers.get(session.session_id)
        if browser is None or not browser.is_connected():
            self.logger.info(f"[{session.session_id}] connection lapsed; reconnecting for screenshot")
            browser = await self._connect(session)
        return await self._observe(browser)

    async def execute(
        self, session: Session, action: Action, timeout: Optional[float] = None
    ) -> Observation:
        """Run one action and return the resulting observation."""
        if isinstance(action, ScreenshotAction):
            return await self.screenshot(session, timeout=timeout)
        async with self._lock_for(session):
            return await self._with_timeout(
                action.type,
                session,
                self._execute(session, action),
                timeout or self.config.action_timeout,
            )

    async def _execute(self, session: Session, action: Action) -> Observation:
        browser = self._browser_for(session)
        error: Optional[str] = None
        self.logger.info(f"[{session.session_id}] {action.type}: {action.model_dump(exclude={'type'})}")
        try:
            await self._dispatch(session, browser, action)
        except InvalidActionTarget as e:
            self.logger.warning(f"[{session.session_id}] skipped {action.type}: {e}")
            error = str(e)
        except BrowserActionError as e:
            self.logger.warning(f"[{session.session_id}] {action.type} failed on the page: {e}")
            error = str(e)
        await self._settle(browser, action)
        return await self._observe(browser, error)

    def _check_point(self, session: Session, action: str, x: float, y: float) -> None:
        if not (0 <= x < session.viewport_width and 0 <= y < session.viewport_height):
            raise InvalidActionTarget(
                f"({x}, {y}) is outside the {session.viewport_width}x{session.viewport_height} viewport",
                action=action,
                coordinates=(x, y),
            )

    async def _dispatch(self, session: Session, browser: RemoteBrowser, action: Action) -> None:
        if isinstance(action, ClickAction):
            if action.button not in ("back", "forward"):
                self._check_point(session, action.type, action.x, action.y)
            await browser.click(action.x, action.y, button=action.button)
        elif isinstance(action, DoubleClickAction):
            self._check_point(session, action.type, action.x, action.y)
            await browser.double_click(action.x, action.y)
        elif isinstance(action, TypeAction):
            await browser.type_text(action.text)
        elif isinstance(action, KeyPressAction):
            combination = key_combination(action.keys)
            if not combination:
                raise InvalidActionTarget("keypress without keys", action=action.type)
            await browser.press(combination)
        elif isinstance(action, ScrollAction):
            self._check_point(session, action.type, action.x, action.y)
            await browser.scroll(action.x, action.y, action.scroll_x, action.scroll_y)
        elif isinstance(action, DragAction):
            if not action.path:
                raise InvalidActionTarget("drag with an empty path", action=action.type)
            for point in action.path:
                self._check_point(session, action.type, point.x, point.y)
            await browser.drag([(point.x, point.y) for point in action.path])
        elif isinstance(action, MoveAction):
            self._check_point(session, action.type, action.x, action.y)
            await browser.move(action.x, action.y)
        elif isinstance(action, WaitAction):
            await browser.wait(self.config.wait_duration)
        elif isinstance(action, ScreenshotAction):
            pass
        else:
            raise TypeError(f"Unsupported action: {type(action).__name__}")

    async def _settle(self, browser: RemoteBrowser, action: Action) -> None:
        """Give the page a moment to react before capturing it."""
        if isinstance(action, (MoveAction, WaitAction, ScreenshotAction)):
            return
        if not isinstance(action, ScrollAction):
            await browser.wait_for_load_state()
        if self.config.settle_delay:
            await asyncio.sleep(self.config.settle_delay)

    async def _observe(self, browser: RemoteBrowser, error: Optional[str] = None) -> Observation:
        screenshot = await browser.screenshot()
        return Observation(screenshot=screenshot, current_url=browser.get_url(), error=error)
