"""Browser capability contract and its Playwright implementation.

The login flow only talks to ``PageSession``. ``PlaywrightPageSession``
wraps a Playwright ``Page`` and converts every Playwright failure into
``BrowserActionError``; ``PlaywrightClient`` owns the Playwright driver and
the launched browser and hands out one fresh, isolated session per login
attempt.
"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Optional, Protocol, runtime_checkable

from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from .errors import BrowserActionError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 10000


@runtime_checkable
class PageSession(Protocol):
    """Minimal browser capabilities the login flow relies on.

    Every method may raise ``BrowserActionError`` (``timeout=True`` when a
    wait expired).
    """

    async def navigate(self, url: str, timeout_ms: int = 30000) -> Optional[int]: ...

    async def reload(self, timeout_ms: int = 30000) -> None: ...

    async def wait_for_element(self, selector: str, state: str = "visible", timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None: ...

    async def is_visible(self, selector: str, timeout_ms: int = 0) -> bool: ...

    async def fill(self, selector: str, value: str) -> None: ...

    async def click(self, selector: str) -> None: ...

    async def get_attribute(self, selector: str, name: str) -> Optional[str]: ...

    async def text_content(self, selector: str) -> Optional[str]: ...

    async def input_value(self, selector: str) -> str: ...

    async def wait_for_url(self, matcher: Callable[[str], bool], timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None: ...

    async def wait_for_load(self, timeout_ms: int = 5000) -> None: ...

    def current_url(self) -> str: ...

    async def storage_state(self) -> Dict[str, Any]: ...

    async def clear_cookies(self) -> None: ...


class PlaywrightPageSession:
    """``PageSession`` backed by a Playwright page."""

    def __init__(self, page: Page) -> None:
        self._page = page

    def _error(self, action: str, selector: Optional[str], exc: Exception) -> BrowserActionError:
        return BrowserActionError(action, selector, str(exc), timeout=isinstance(exc, PlaywrightTimeout))

    async def navigate(self, url: str, timeout_ms: int = 30000) -> Optional[int]:
        """Load ``url`` and return the HTTP status of the main response, if any."""
        try:
            response = await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except PlaywrightError as exc:
            raise self._error("navigate", None, exc) from exc
        return response.status if response is not None else None

    async def reload(self, timeout_ms: int = 30000) -> None:
        try:
            await self._page.reload(wait_until="domcontentloaded", timeout=timeout_ms)
        except PlaywrightError as exc:
            raise self._error("reload", None, exc) from exc

    async def wait_for_element(self, selector: str, state: str = "visible", timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        try:
            await self._page.locator(selector).first.wait_for(state=state, timeout=timeout_ms)
        except PlaywrightError as exc:
            raise self._error("wait_for_element", selector, exc) from exc

    async def is_visible(self, selector: str, timeout_ms: int = 0) -> bool:
        locator = self._page.locator(selector).first
        if timeout_ms <= 0:
            try:
                return await locator.is_visible()
            except PlaywrightError:
                return False
        try:
            await locator.wait_for(state="visible", timeout=timeout_ms)
            return True
        except PlaywrightTimeout:
            return False
        except PlaywrightError as exc:
            logger.debug(f"Visibility probe failed for {selector!r}: {exc}")
            return False

    async def fill(self, selector: str, value: str) -> None:
        try:
            await self._page.locator(selector).first.fill(value)
        except PlaywrightError as exc:
            raise self._error("fill", selector, exc) from exc

    async def click(self, selector: str) -> None:
        try:
            await self._page.locator(selector).first.click()
        except PlaywrightError as exc:
            raise self._error("click", selector, exc) from exc

    async def get_attribute(self, selector: str, name: str) -> Optional[str]:
        try:
            return await self._page.locator(selector).first.get_attribute(name, timeout=5000)
        except PlaywrightError as exc:
            raise self._error("get_attribute", selector, exc) from exc

    async def text_content(self, selector: str) -> Optional[str]:
        try:
            return await self._page.locator(selector).first.text_content(timeout=5000)
        except PlaywrightError as exc:
            raise self._error("text_content", selector, exc) from exc

    async def input_value(self, selector: str) -> str:
        try:
            return await self._page.locator(selector).first.input_value(timeout=5000)
        except PlaywrightError as exc:
            raise self._error("input_value", selector, exc) from exc

    async def wait_for_url(self, matcher: Callable[[str], bool], timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        try:
            await self._page.wait_for_url(matcher, timeout=timeout_ms, wait_until="commit")
        except PlaywrightError as exc:
            raise self._error("wait_for_url", None, exc) from exc

    async def wait_for_load(self, timeout_ms: int = 5000) -> None:
        """Wait for DOMContentLoaded; a page that never settles is not an error."""
        try:
            await self._page.wait_for_load_state("domcontentloaded", timeout=timeout_ms)
        except PlaywrightTimeout:
            logger.debug("Page did not reach domcontentloaded, continuing")

    def current_url(self) -> str:
        return self._page.url

    async def storage_state(self) -> Dict[str, Any]:
        try:
            return await self._page.context.storage_state()
        except PlaywrightError as exc:
            raise self._error("storage_state", None, exc) from exc

    async def clear_cookies(self) -> None:
        try:
            await self._page.context.clear_cookies()
        except PlaywrightError as exc:
            raise self._error("clear_cookies", None, exc) from exc


class PlaywrightClient:
    """
    Owns the Playwright driver and one launched browser.

    Each call to ``session()`` opens a new isolated browser context, so
    cookies from a failed attempt never leak into the next one.

    Example:
        async with PlaywrightClient(headless=True) as client:
            async with client.session() as session:
                await session.navigate("https://example.com")
    """

    def __init__(
        self,
        browser_type: str = "chromium",
        headless: Optional[bool] = None,
        timeout_ms: int = 30000,
    ):
        self.browser_type = browser_type
        if headless is None:
            headless = os.getenv("PLAYWRIGHT_HEADLESS", "true").lower() in {"true", "1"}
        self.headless = headless
        self.timeout_ms = timeout_ms

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def __aenter__(self) -> "PlaywrightClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def connect(self) -> None:
        """Start Playwright and launch the configured browser."""
        self._playwright = await async_playwright().start()
        if self.browser_type == "firefox":
            launcher = self._playwright.firefox
        elif self.browser_type == "webkit":
            launcher = self._playwright.webkit
        else:
            launcher = self._playwright.chromium
        self._browser = await launcher.launch(headless=self.headless)
        logger.debug(f"Launched {self.browser_type} (headless={self.headless})")

    async def close(self) -> None:
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    @asynccontextmanager
    async def session(self) -> AsyncIterator[PlaywrightPageSession]:
        """Yield a page session in a fresh context; the context is closed afterwards."""
        if not self._browser:
            raise RuntimeError("Client not connected. Use 'async with' or call connect()")

        context = await self._browser.new_context()
        context.set_default_timeout(self.timeout_ms)
        try:
            page = await context.new_page()
            yield PlaywrightPageSession(page)
        finally:
            try:
                await context.close()
            except PlaywrightError as exc:
                logger.warning(f"Error closing browser context: {exc}")
