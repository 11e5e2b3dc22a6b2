"""
Tests for the PageSession contract and the Playwright adapter's error mapping.
"""

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from auth_session.browser import PageSession, PlaywrightClient, PlaywrightPageSession
from auth_session.errors import BrowserActionError

from fake_page import FakePage, single_step_pages


class StubLocator:
    def __init__(self, error=None, visible=True):
        self.error = error
        self.visible = visible

    @property
    def first(self):
        return self

    async def fill(self, value):
        if self.error:
            raise self.error

    async def click(self):
        if self.error:
            raise self.error

    async def is_visible(self):
        if self.error:
            raise self.error
        return self.visible

    async def wait_for(self, state='visible', timeout=None):
        if self.error:
            raise self.error


class StubPage:
    url = 'https://sso.example.com/realms/test'

    def __init__(self, locator):
        self._locator = locator

    def locator(self, selector):
        return self._locator


def test_fake_page_satisfies_protocol():
    assert isinstance(FakePage(single_step_pages()), PageSession)


@pytest.mark.asyncio
async def test_timeout_is_flagged():
    session = PlaywrightPageSession(StubPage(StubLocator(PlaywrightTimeout('Timeout 5000ms exceeded'))))

    with pytest.raises(BrowserActionError) as exc_info:
        await session.fill('#username', 'admin')

    assert exc_info.value.timeout
    assert exc_info.value.action == 'fill'
    assert exc_info.value.selector == '#username'


@pytest.mark.asyncio
async def test_other_playwright_errors_are_wrapped():
    session = PlaywrightPageSession(StubPage(StubLocator(PlaywrightError('Element is detached'))))

    with pytest.raises(BrowserActionError) as exc_info:
        await session.click('#kc-login')

    assert not exc_info.value.timeout
    assert 'detached' in str(exc_info.value)


@pytest.mark.asyncio
async def test_is_visible_never_raises():
    session = PlaywrightPageSession(StubPage(StubLocator(PlaywrightTimeout('Timeout 2000ms exceeded'))))

    assert await session.is_visible('#password') is False
    assert await session.is_visible('#password', timeout_ms=2000) is False


@pytest.mark.asyncio
async def test_is_visible_with_probe_timeout():
    session = PlaywrightPageSession(StubPage(StubLocator()))

    assert await session.is_visible('#password', timeout_ms=2000) is True
    assert session.current_url() == 'https://sso.example.com/realms/test'


@pytest.mark.asyncio
async def test_client_session_requires_connect():
    client = PlaywrightClient(headless=True)

    with pytest.raises(RuntimeError, match='not connected'):
        async with client.session():
            pass


def test_headless_from_environment(monkeypatch):
    monkeypatch.setenv('PLAYWRIGHT_HEADLESS', 'false')
    assert PlaywrightClient().headless is False
    monkeypatch.setenv('PLAYWRIGHT_HEADLESS', '1')
    assert PlaywrightClient().headless is True


class StubResponse:
    status = 302


class StubContext:
    def __init__(self, error=None):
        self.error = error
        self.cleared = False

    async def clear_cookies(self):
        if self.error:
            raise self.error
        self.cleared = True


class NavigatingStubPage(StubPage):
    def __init__(self, response=None, error=None):
        super().__init__(StubLocator())
        self.response = response
        self.error = error
        self.context = StubContext(error)

    async def goto(self, url, wait_until=None, timeout=None):
        if self.error:
            raise self.error
        return self.response

    async def reload(self, wait_until=None, timeout=None):
        if self.error:
            raise self.error


@pytest.mark.asyncio
async def test_navigate_returns_response_status():
    assert await PlaywrightPageSession(NavigatingStubPage(StubResponse())).navigate('https://app') == 302
    assert await PlaywrightPageSession(NavigatingStubPage(None)).navigate('https://app#top') is None


@pytest.mark.asyncio
async def test_reload_and_clear_cookies():
    page = NavigatingStubPage()
    session = PlaywrightPageSession(page)

    await session.reload()
    await session.clear_cookies()

    assert page.context.cleared


@pytest.mark.asyncio
async def test_reload_and_clear_cookies_errors_are_wrapped():
    session = PlaywrightPageSession(NavigatingStubPage(error=PlaywrightError('Target closed')))

    with pytest.raises(BrowserActionError) as exc_info:
        await session.reload()
    assert exc_info.value.action == 'reload'

    with pytest.raises(BrowserActionError) as exc_info:
        await session.clear_cookies()
    assert exc_info.value.action == 'clear_cookies'
