"""Playwright controller attached to a remote browser session over CDP."""
from __future__ import annotations

import asyncio
import base64
import logging
from typing import Awaitable, Optional, TypeVar

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    async_playwright,
    TimeoutError as PlaywrightTimeout,
)

from exceptions import (
    ActuatorTransportError,
    BrowserActionError,
    BrowserNotConnectedError,
    NavigationError,
)

T = TypeVar("T")

# Playwright error texts that mean the session itself is gone.
_TRANSPORT_MARKERS = (
    "target page, context or browser has been closed",
    "target closed",
    "browser has been closed",
    "browser has disconnected",
    "connection closed",
    "websocket",
    "econnrefused",
    "econnreset",
)

# Model mouse buttons -> Playwright buttons; back/forward are history moves.
_MOUSE_BUTTONS = {"left": "left", "right": "right", "wheel": "middle"}


def is_transport_failure(exc: BaseException) -> bool:
    """Return True when a Playwright error means the remote session is unreachable."""
    text = str(exc).lower()
    return any(marker in text for marker in _TRANSPORT_MARKERS)


class RemoteBrowser:
    """One CDP connection to a remote browser session."""

    def __init__(
        self,
        connect_endpoint: str,
        viewport_width: int = 1024,
        viewport_height: int = 768,
        session_id: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.connect_endpoint = connect_endpoint
        self.viewport_width = viewport_width
        self.viewport_height = viewport_height
        self.session_id = session_id
        self.logger = logger or logging.getLogger("browser")

        self._playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    def _ensure_connected(self) -> None:
        """Raise if the CDP connection was never made or has dropped."""
        if self.page is None or not self.is_connected():
            raise BrowserNotConnectedError()

    def is_connected(self) -> bool:
        return self.browser is not None and self.browser.is_connected()

    async def connect(self, timeout: float = 30000) -> None:
        """Attach to the remote session and adopt its existing page."""
        if self.is_connected() and self.page is not None:
            return
        try:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            self.browser = await self._playwright.chromium.connect_over_cdp(
                self.connect_endpoint, timeout=timeout
            )
            contexts = self.browser.contexts
            self.context = contexts[0] if contexts else await self.browser.new_context(
                viewport={"width": self.viewport_width, "height": self.viewport_height}
            )
            pages = self.context.pages
            self.page = pages[0] if pages else await self.context.new_page()
            await self.page.set_viewport_size(
                {"width": self.viewport_width, "height": self.viewport_height}
            )
        except PlaywrightError as e:
            raise ActuatorTransportError(
                f"Could not connect to remote browser: {e}", session_id=self.session_id
            ) from e
        self.logger.info(f"Connected to remote browser session {self.session_id}")

    async def close(self) -> None:
        """Drop the CDP connection; the remote session itself stays alive."""
        if self.browser:
            try:
                await self.browser.close()
            except PlaywrightError as e:
                self.logger.warning(f"Error while closing CDP connection: {e}")
        if self._playwright:
            await self._playwright.stop()
        self.browser = None
        self.context = None
        self.page = None
        self._playwright = None
        self.logger.info(f"Disconnected from remote browser session {self.session_id}")

    async def _guard(self, action: str, operation: Awaitable[T]) -> T:
        """Run a Playwright call, splitting transport failures from page failures."""
        try:
            return await operation
        except PlaywrightTimeout as e:
            raise BrowserActionError(f"{action} timed out: {e}", action=action) from e
        except PlaywrightError as e:
            if is_transport_failure(e):
                raise ActuatorTransportError(
                    f"Remote browser unreachable during {action}: {e}", session_id=self.session_id
                ) from e
            raise BrowserActionError(f"{action} failed: {e}", action=action) from e

    # ─────────────────────────────────────────────────────────────────────────
    # Navigation
    # ─────────────────────────────────────────────────────────────────────────

    async def goto(self, url: str, timeout: float = 30000) -> None:
        """Navigate to a URL and wait for the DOM to be ready."""
        self._ensure_connected()
        try:
            await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout)
        except PlaywrightTimeout as e:
            raise NavigationError(f"Navigation timed out: {url}", url=url, timeout=timeout) from e
        except PlaywrightError as e:
            if is_transport_failure(e):
                raise ActuatorTransportError(
                    f"Remote browser unreachable during goto: {e}", session_id=self.session_id
                ) from e
            raise NavigationError(f"Navigation failed: {e}", url=url) from e

    async def go_back(self, timeout: float = 30000) -> None:
        """Go back in history."""
        self._ensure_connected()
        await self._guard("back", self.page.go_back(wait_until="domcontentloaded", timeout=timeout))

    async def go_forward(self, timeout: float = 30000) -> None:
        """Go forward in history."""
        self._ensure_connected()
        await self._guard(
            "forward", self.page.go_forward(wait_until="domcontentloaded", timeout=timeout)
        )

    def get_url(self) -> str:
        """Get current URL."""
        self._ensure_connected()
        return self.page.url

    # ─────────────────────────────────────────────────────────────────────────
    # Screenshots
    # ─────────────────────────────────────────────────────────────────────────

    async def screenshot(self) -> str:
        """Capture the viewport as a base64-encoded PNG."""
        self._ensure_connected()
        try:
            shot = await self.page.screenshot(type="png", full_page=False)
        except PlaywrightError as e:
            # Without a screenshot there is no observation to report.
            raise ActuatorTransportError(
                f"Screenshot failed: {e}", session_id=self.session_id
            ) from e
        return base64.b64encode(shot).decode("ascii")

    # ─────────────────────────────────────────────────────────────────────────
    # Mouse
    # ─────────────────────────────────────────────────────────────────────────

    async def click(self, x: float, y: float, button: str = "left") -> None:
        """Click at coordinates; back/forward buttons move through history."""
        self._ensure_connected()
        if button == "back":
            await self.go_back()
            return
        if button == "forward":
            await self.go_forward()
            return
        await self._guard(
            "click", self.page.mouse.click(x, y, button=_MOUSE_BUTTONS.get(button, "left"))
        )

    async def double_click(self, x: float, y: float) -> None:
        """Double-click at coordinates."""
        self._ensure_connected()
        await self._guard("double_click", self.page.mouse.dblclick(x, y))

    async def move(self, x: float, y: float) -> None:
        """Move cursor without clicking."""
        self._ensure_connected()
        await self._guard("move", self.page.mouse.move(x, y))

    async def scroll(self, x: float, y: float, scroll_x: int, scroll_y: int) -> None:
        """Scroll by a pixel delta with the cursor over (x, y)."""
        self._ensure_connected()
        await self._guard("scroll", self.page.mouse.move(x, y))
        await self._guard("scroll", self.page.mouse.wheel(scroll_x, scroll_y))

    async def drag(self, path: list[tuple[float, float]], steps: int = 10) -> None:
        """Press at the first point, move through the rest, release at the last."""
        self._ensure_connected()
        start_x, start_y = path[0]
        await self._guard("drag", self.page.mouse.move(start_x, start_y))
        await self._guard("drag", self.page.mouse.down())
        try:
            for x, y in path[1:]:
                await self._guard("drag", self.page.mouse.move(x, y, steps=steps))
        finally:
            await self._guard("drag", self.page.mouse.up())

    # ─────────────────────────────────────────────────────────────────────────
    # Keyboard
    # ─────────────────────────────────────────────────────────────────────────

    async def type_text(self, text: str, delay: int = 0) -> None:
        """Type text into the focused element."""
        self._ensure_connected()
        await self._guard("type", self.page.keyboard.type(text, delay=delay))

    async def press(self, combination: str) -> None:
        """Press a key or chord such as 'Control+a'."""
        self._ensure_connected()
        await self._guard("keypress", self.page.keyboard.press(combination))

    # ─────────────────────────────────────────────────────────────────────────
    # Timing
    # ─────────────────────────────────────────────────────────────────────────

    async def wait(self, seconds: float) -> None:
        """Let the page keep working without touching it."""
        self._ensure_connected()
        await asyncio.sleep(seconds)

    async def wait_for_load_state(self, timeout: float = 5000) -> None:
        """Best-effort wait for DOM readiness after an action."""
        self._ensure_connected()
        try:
            await self._guard(
                "load_state", self.page.wait_for_load_state("domcontentloaded", timeout=timeout)
            )
        except BrowserActionError as e:
            self.logger.debug(f"Page did not settle: {e}; continuing")
