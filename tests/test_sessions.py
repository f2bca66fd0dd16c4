"""
Tests for remote session backends.

Coverage:
  Base:       launch-once, launch failure mapping, auth check never raises,
              unexpected delivery errors become DeliveryError, metrics
  Cookies:    base64 blob decoding, Playwright cookie mapping
  Messenger:  launch wiring, login probe, delivery against a mocked page,
              composer fallback order, composer missing, navigation timeout
  Factory:    backend selection
"""
import base64
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from channels.base import RemoteSession, decode_cookie_blob
from channels.factory import create_session
from channels.messenger_session import (
    COMPOSER_SELECTORS, LOGGED_IN_SELECTORS, MessengerSession, to_playwright_cookie,
)
from channels.scripted_session import ScriptedSession
from config.settings import SessionConfig
from core.errors import (
    ComposerNotFoundError, DeliveryError, NavigationTimeoutError, SessionUnavailableError,
)


def _blob(cookies) -> str:
    return base64.b64encode(json.dumps(cookies).encode()).decode()


def make_page(composer_selector=COMPOSER_SELECTORS[0], logged_in=True):
    page = MagicMock()
    page.goto = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.evaluate = AsyncMock(return_value=logged_in)
    composer = MagicMock()
    composer.focus = AsyncMock()

    async def query_selector(selector):
        return composer if selector == composer_selector else None

    page.query_selector = AsyncMock(side_effect=query_selector)
    page.keyboard.type = AsyncMock()
    page.keyboard.press = AsyncMock()
    page.composer = composer
    return page


def ready_session(page, **kwargs) -> MessengerSession:
    session = MessengerSession(composer_timeout_ms=0, **kwargs)
    session._page = page
    session._ready = True
    return session


# ══════════════════════════════════════════════════════════════
#  BASE SESSION
# ══════════════════════════════════════════════════════════════

class TestRemoteSessionBase:
    @pytest.mark.asyncio
    async def test_ensure_ready_is_idempotent(self):
        session = ScriptedSession()
        await session.ensure_ready()
        await session.ensure_ready()
        assert session.launch_attempts == 1
        assert session.is_ready

    @pytest.mark.asyncio
    async def test_launch_failure_raises_session_unavailable(self):
        session = ScriptedSession(launch_error="no display")
        with pytest.raises(SessionUnavailableError, match="no display"):
            await session.ensure_ready()
        assert not session.is_ready
        assert session.closed

    @pytest.mark.asyncio
    async def test_not_ready_is_not_authenticated(self):
        assert await ScriptedSession().is_authenticated() is False

    @pytest.mark.asyncio
    async def test_auth_check_errors_map_to_false(self):
        class Flaky(ScriptedSession):
            async def _check_authenticated(self):
                raise RuntimeError("page closed")

        session = Flaky()
        await session.ensure_ready()
        assert await session.is_authenticated() is False

    @pytest.mark.asyncio
    async def test_deliver_requires_ready(self):
        with pytest.raises(SessionUnavailableError):
            await ScriptedSession().deliver("1", "x")

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_delivery_error(self):
        class Broken(ScriptedSession):
            async def _do_deliver(self, thread_target, text):
                raise RuntimeError("target closed")

        session = Broken()
        await session.ensure_ready()
        with pytest.raises(DeliveryError, match="target closed") as exc:
            await session.deliver("42", "x")
        assert exc.value.thread_target == "42"
        assert session.metrics.failed == 1

    @pytest.mark.asyncio
    async def test_metrics_and_health(self):
        session = ScriptedSession()
        await session.ensure_ready()
        assert await session.is_authenticated() is True
        await session.deliver("1", "hi")
        health = await session.health_check()
        assert health["ready"] is True
        assert health["authenticated"] is True
        assert health["metrics"]["delivered"] == 1

    @pytest.mark.asyncio
    async def test_health_reports_cached_auth_without_checking(self):
        session = ScriptedSession()
        session._check_authenticated = AsyncMock(return_value=True)
        await session.ensure_ready()

        health = await session.health_check()
        assert health["authenticated"] is None
        session._check_authenticated.assert_not_awaited()

        await session.is_authenticated()
        session._check_authenticated.reset_mock()
        assert (await session.health_check())["authenticated"] is True
        session._check_authenticated.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_shutdown(self):
        session = ScriptedSession()
        await session.ensure_ready()
        await session.shutdown()
        assert session.closed
        assert not session.is_ready

    def test_is_abstract(self):
        with pytest.raises(TypeError):
            RemoteSession()


# ══════════════════════════════════════════════════════════════
#  COOKIES
# ══════════════════════════════════════════════════════════════

class TestCookieBlob:
    def test_decodes_cookie_list(self):
        cookies = [{"name": "c_user", "value": "1", "domain": ".messenger.com"}]
        assert decode_cookie_blob(_blob(cookies)) == cookies

    def test_empty_blob(self):
        assert decode_cookie_blob("") == []

    def test_invalid_base64(self):
        assert decode_cookie_blob("***not-base64***") == []

    def test_not_a_list(self):
        assert decode_cookie_blob(_blob({"name": "x"})) == []

    def test_drops_nameless_entries(self):
        assert decode_cookie_blob(_blob([{"value": "1"}, {"name": "xs", "value": "2"}])) == [
            {"name": "xs", "value": "2"}
        ]

    def test_maps_puppeteer_cookie(self):
        cookie = to_playwright_cookie({
            "name": "xs", "value": "abc", "domain": ".messenger.com", "path": "/",
            "expires": 1893456000, "httpOnly": True, "secure": True, "sameSite": "no_restriction",
            "session": False, "size": 10,
        }, "https://www.messenger.com")
        assert cookie == {
            "name": "xs", "value": "abc", "domain": ".messenger.com", "path": "/",
            "expires": 1893456000.0, "httpOnly": True, "secure": True, "sameSite": "None",
        }

    def test_session_cookie_without_domain_uses_url(self):
        cookie = to_playwright_cookie({"name": "a", "value": "b", "expires": -1}, "https://www.messenger.com")
        assert cookie == {"name": "a", "value": "b", "url": "https://www.messenger.com"}


# ══════════════════════════════════════════════════════════════
#  MESSENGER SESSION
# ══════════════════════════════════════════════════════════════

class TestMessengerSession:
    @pytest.mark.asyncio
    async def test_launch_loads_cookies_and_opens_home(self):
        page = make_page()
        context = MagicMock()
        context.add_cookies = AsyncMock()
        context.new_page = AsyncMock(return_value=page)
        browser = MagicMock()
        browser.new_context = AsyncMock(return_value=context)
        browser.close = AsyncMock()
        pw = MagicMock()
        pw.chromium.launch = AsyncMock(return_value=browser)
        pw.stop = AsyncMock()
        starter = MagicMock()
        starter.start = AsyncMock(return_value=pw)

        session = MessengerSession(
            headless=False,
            cookies_base64=_blob([{"name": "c_user", "value": "1", "domain": ".messenger.com"}]),
        )
        with patch("channels.messenger_session.async_playwright", return_value=starter):
            await session.ensure_ready()

        assert session.is_ready
        assert pw.chromium.launch.await_args.kwargs["headless"] is False
        assert "--no-sandbox" in pw.chromium.launch.await_args.kwargs["args"]
        context.add_cookies.assert_awaited_once()
        assert context.add_cookies.await_args.args[0][0]["name"] == "c_user"
        assert page.goto.await_args.args[0] == "https://www.messenger.com/"

        await session.shutdown()
        browser.close.assert_awaited_once()
        pw.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_home_page_failure_is_not_fatal(self):
        page = make_page()
        page.goto = AsyncMock(side_effect=PlaywrightTimeoutError("Timeout 60000ms exceeded"))
        context = MagicMock()
        context.new_page = AsyncMock(return_value=page)
        browser = MagicMock()
        browser.new_context = AsyncMock(return_value=context)
        pw = MagicMock()
        pw.chromium.launch = AsyncMock(return_value=browser)
        starter = MagicMock()
        starter.start = AsyncMock(return_value=pw)

        session = MessengerSession()
        with patch("channels.messenger_session.async_playwright", return_value=starter):
            await session.ensure_ready()
        assert session.is_ready

    @pytest.mark.asyncio
    async def test_browser_launch_failure(self):
        starter = MagicMock()
        starter.start = AsyncMock(side_effect=RuntimeError("Executable doesn't exist"))
        session = MessengerSession()
        with patch("channels.messenger_session.async_playwright", return_value=starter):
            with pytest.raises(SessionUnavailableError, match="Executable"):
                await session.ensure_ready()
        assert not session.is_ready

    @pytest.mark.asyncio
    async def test_login_probe(self):
        page = make_page(logged_in=True)
        session = ready_session(page)
        assert await session.is_authenticated() is True
        assert page.evaluate.await_args.args[1] == LOGGED_IN_SELECTORS

        page.evaluate = AsyncMock(return_value=False)
        assert await session.is_authenticated() is False

    @pytest.mark.asyncio
    async def test_deliver_types_and_submits(self):
        page = make_page()
        session = ready_session(page)

        await session.deliver("100012345", "hello")

        assert page.goto.await_args.args[0] == "https://www.messenger.com/t/100012345"
        assert page.goto.await_args.kwargs["wait_until"] == "networkidle"
        page.composer.focus.assert_awaited_once()
        page.keyboard.type.assert_awaited_once_with("hello", delay=20)
        page.keyboard.press.assert_awaited_once_with("Enter")
        assert session.metrics.delivered == 1

    @pytest.mark.asyncio
    async def test_multiline_text_uses_shift_enter(self):
        page = make_page()
        session = ready_session(page)

        await session.deliver("1", "line one\nline two")

        typed = [c.args[0] for c in page.keyboard.type.await_args_list]
        pressed = [c.args[0] for c in page.keyboard.press.await_args_list]
        assert typed == ["line one", "line two"]
        assert pressed == ["Shift+Enter", "Enter"]

    @pytest.mark.asyncio
    async def test_composer_fallback_selector(self):
        page = make_page(composer_selector=COMPOSER_SELECTORS[2])
        session = ready_session(page)

        await session.deliver("1", "hi")

        probed = [c.args[0] for c in page.query_selector.await_args_list]
        assert probed == COMPOSER_SELECTORS

    @pytest.mark.asyncio
    async def test_composer_not_found(self):
        page = make_page(composer_selector="nothing-matches")
        session = ready_session(page)

        with pytest.raises(ComposerNotFoundError, match="Composer not found on thread page"):
            await session.deliver("1", "hi")
        page.keyboard.type.assert_not_awaited()
        assert session.metrics.failed == 1

    @pytest.mark.asyncio
    async def test_navigation_timeout(self):
        page = make_page()
        page.goto = AsyncMock(side_effect=PlaywrightTimeoutError("Timeout 60000ms exceeded"))
        session = ready_session(page)

        with pytest.raises(NavigationTimeoutError) as exc:
            await session.deliver("1", "hi")
        assert isinstance(exc.value, DeliveryError)
        assert exc.value.thread_target == "1"

    def test_from_config(self):
        session = MessengerSession.from_config({
            "headless": False, "base_url": "https://example.test/", "navigation_timeout_ms": 5000,
        })
        assert session.headless is False
        assert session.base_url == "https://example.test"
        assert session.navigation_timeout_ms == 5000


# ══════════════════════════════════════════════════════════════
#  FACTORY
# ══════════════════════════════════════════════════════════════

class TestSessionFactory:
    def test_scripted_backend(self):
        assert isinstance(create_session({"backend": "scripted"}), ScriptedSession)

    def test_messenger_backend_from_dataclass(self):
        session = create_session(SessionConfig(headless=False))
        assert isinstance(session, MessengerSession)
        assert session.headless is False

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown session backend"):
            create_session({"backend": "carrier-pigeon"})
