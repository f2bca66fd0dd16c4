"""
Messenger Session — drives the Messenger web client with Playwright.

Provides:
- Chromium launch (headless toggle, sandbox flags, desktop user agent)
- Cookie injection from the COOKIES_BASE64 credential blob, once per launch
- Login detection by probing elements only present when signed in
- Delivery: open /t/<thread>, wait for the page to settle, probe composer
  selectors in order, type with a per-key delay, press Enter

There is no login automation. Without valid cookies the session launches but
reports not authenticated, and the worker retries on its next cycle.
"""
from __future__ import annotations

import asyncio
import time
import structlog
from typing import Any, Optional

from playwright.async_api import (
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from channels.base import RemoteSession, decode_cookie_blob
from core.errors import ComposerNotFoundError, NavigationTimeoutError

logger = structlog.get_logger()

DEFAULT_BASE_URL = "https://www.messenger.com"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120 Safari/537.36"
)
LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"]

COMPOSER_SELECTORS = [
    'div[contenteditable="true"][role="textbox"]',
    'div[aria-label="Message"]',
    'div.notranslate[contenteditable="true"]',
]

LOGGED_IN_SELECTORS = [
    'div[role="navigation"]',
    "nav",
    "#app_root",
]

_SAME_SITE = {"strict": "Strict", "lax": "Lax", "none": "None", "no_restriction": "None"}


def to_playwright_cookie(raw: dict[str, Any], base_url: str) -> dict[str, Any]:
    """Map a browser-exported cookie (puppeteer / extension format) to Playwright's shape."""
    cookie: dict[str, Any] = {"name": raw["name"], "value": str(raw.get("value", ""))}
    if raw.get("domain"):
        cookie["domain"] = raw["domain"]
        cookie["path"] = raw.get("path") or "/"
    else:
        cookie["url"] = base_url
    expires = raw.get("expires", raw.get("expirationDate"))
    if isinstance(expires, (int, float)) and expires > 0:
        cookie["expires"] = float(expires)
    for key in ("httpOnly", "secure"):
        if key in raw:
            cookie[key] = bool(raw[key])
    same_site = _SAME_SITE.get(str(raw.get("sameSite", "")).lower())
    if same_site:
        cookie["sameSite"] = same_site
    return cookie


class MessengerSession(RemoteSession):
    """
    Playwright-backed session against the Messenger web client.

    One browser, one context, one page for the whole process lifetime.
    """

    name = "messenger"

    def __init__(
        self,
        headless: bool = True,
        cookies_base64: str = "",
        base_url: str = DEFAULT_BASE_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        navigation_timeout_ms: int = 60000,
        composer_timeout_ms: int = 10000,
        settle_delay_ms: int = 1500,
        post_send_delay_ms: int = 1200,
        typing_delay_ms: int = 20,
    ):
        super().__init__()
        self.headless = headless
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.navigation_timeout_ms = navigation_timeout_ms
        self.composer_timeout_ms = composer_timeout_ms
        self.settle_delay_ms = settle_delay_ms
        self.post_send_delay_ms = post_send_delay_ms
        self.typing_delay_ms = typing_delay_ms
        self._cookies_base64 = cookies_base64
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> MessengerSession:
        return cls(
            headless=config.get("headless", True),
            cookies_base64=config.get("cookies_base64", ""),
            base_url=config.get("base_url", DEFAULT_BASE_URL),
            user_agent=config.get("user_agent", DEFAULT_USER_AGENT),
            navigation_timeout_ms=config.get("navigation_timeout_ms", 60000),
            composer_timeout_ms=config.get("composer_timeout_ms", 10000),
            settle_delay_ms=config.get("settle_delay_ms", 1500),
            post_send_delay_ms=config.get("post_send_delay_ms", 1200),
            typing_delay_ms=config.get("typing_delay_ms", 20),
        )

    # ── Lifecycle ─────────────────────────────────────────────

    async def _launch(self) -> None:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless, args=LAUNCH_ARGS,
        )
        self._context = await self._browser.new_context(user_agent=self.user_agent)
        loaded = await self._load_cookies()
        self._page = await self._context.new_page()

        try:
            await self._page.goto(
                f"{self.base_url}/", wait_until="networkidle", timeout=self.navigation_timeout_ms,
            )
        except (PlaywrightTimeoutError, PlaywrightError) as e:
            logger.warning("messenger_home_load_failed", error=str(e))

        logger.info("messenger_session_launched", headless=self.headless, cookies_loaded=loaded)

    async def _load_cookies(self) -> bool:
        raw = decode_cookie_blob(self._cookies_base64)
        if not raw:
            return False
        cookies = [to_playwright_cookie(c, self.base_url) for c in raw]
        try:
            await self._context.add_cookies(cookies)
        except PlaywrightError as e:
            logger.error("cookie_load_failed", error=str(e))
            return False
        logger.info("cookies_loaded", count=len(cookies))
        return True

    async def _close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._page = self._context = self._browser = self._playwright = None

    # ── Capabilities ──────────────────────────────────────────

    async def _check_authenticated(self) -> bool:
        if self._page is None:
            return False
        script = "selectors => selectors.some(s => !!document.querySelector(s))"
        return await self._page.evaluate(script, LOGGED_IN_SELECTORS)

    async def _do_deliver(self, thread_target: str, text: str) -> None:
        page = self._page
        thread_url = f"{self.base_url}/t/{thread_target}"
        logger.info("messenger_sending", thread_url=thread_url)

        try:
            await page.goto(thread_url, wait_until="networkidle", timeout=self.navigation_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeoutError(
                f"Timed out loading thread page after {self.navigation_timeout_ms} ms", thread_target,
            ) from e

        await page.wait_for_timeout(self.settle_delay_ms)
        composer = await self._find_composer()
        if composer is None:
            raise ComposerNotFoundError(thread_target)

        await composer.focus()
        await self._type_text(text)
        await page.keyboard.press("Enter")
        await page.wait_for_timeout(self.post_send_delay_ms)
        logger.info("messenger_message_submitted", thread=thread_target)

    async def _find_composer(self):
        """Probe COMPOSER_SELECTORS in order until one matches or the timeout passes."""
        deadline = time.monotonic() + self.composer_timeout_ms / 1000
        while True:
            for selector in COMPOSER_SELECTORS:
                try:
                    handle = await self._page.query_selector(selector)
                except PlaywrightError:
                    handle = None
                if handle is not None:
                    logger.debug("composer_found", selector=selector)
                    return handle
            if time.monotonic() >= deadline:
                return None
            await asyncio.sleep(0.5)

    async def _type_text(self, text: str) -> None:
        # Enter submits in the composer; line breaks need Shift+Enter.
        lines = text.split("\n")
        for i, line in enumerate(lines):
            if line:
                await self._page.keyboard.type(line, delay=self.typing_delay_ms)
            if i < len(lines) - 1:
                await self._page.keyboard.press("Shift+Enter")

    @property
    def page(self) -> Optional[Any]:
        return self._page
