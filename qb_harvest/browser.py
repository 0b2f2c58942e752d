"""Browser session protocol and its Playwright implementation."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Protocol, Tuple

from playwright.async_api import (
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from .config import Selectors

logger = logging.getLogger("qb_harvest")

# Scrolls in small steps so lazily rendered blocks and images get loaded.
AUTO_SCROLL_SCRIPT = """
async () => {
  await new Promise((resolve) => {
    let total = 0;
    const distance = 100;
    const timer = setInterval(() => {
      const scrollHeight = document.body.scrollHeight;
      window.scrollBy(0, distance);
      total += distance;
      if (total >= scrollHeight - window.innerHeight) {
        clearInterval(timer);
        resolve();
      }
    }, 100);
  });
}
"""

IMAGE_LOADED_SCRIPT = """
(selector) => {
  const img = document.querySelector(selector);
  return Boolean(img && img.complete && img.naturalWidth > 0);
}
"""


class BrowserSession(Protocol):
    """The narrow set of browser capabilities the navigator relies on."""

    async def snapshot(self) -> str: ...

    async def click(self, selector: str) -> None: ...

    async def wait_visible(self, selector: str, timeout: float) -> bool: ...

    async def scroll_to_bottom(self) -> None: ...

    async def screenshot_image(self, src: str, timeout: float) -> bytes: ...

    async def cookies(self) -> List[Tuple[str, str]]: ...

    async def location(self) -> str: ...

    async def pause(self, seconds: float) -> None: ...


def image_selector(src: str) -> str:
    return f"img[src={json.dumps(src, ensure_ascii=False)}]"


class PlaywrightSession:
    """BrowserSession backed by a single Playwright page."""

    def __init__(self, page: Page) -> None:
        self.page = page

    async def open(self, url: str, wait_until: str = "domcontentloaded") -> None:
        logger.info("Loading %s", url)
        await self.page.goto(url, wait_until=wait_until)

    async def login(
        self,
        login_url: str,
        username: str,
        password: str,
        selectors: Selectors,
    ) -> None:
        """Submit the login form and wait for the resulting navigation."""
        await self.open(login_url, wait_until="networkidle")
        await self.page.wait_for_selector(selectors.login_username, state="visible")
        await self.page.type(selectors.login_username, username, delay=100)
        await self.page.wait_for_selector(selectors.login_password, state="visible")
        await self.page.type(selectors.login_password, password, delay=100)
        async with self.page.expect_navigation(wait_until="networkidle"):
            await self.page.click(selectors.login_submit)
        logger.info("Logged in as %s", username)

    async def snapshot(self) -> str:
        return await self.page.content()

    async def click(self, selector: str) -> None:
        # DOM click: the site's overlays intercept synthetic pointer clicks.
        await self.page.eval_on_selector(selector, "(el) => el.click()")

    async def wait_visible(self, selector: str, timeout: float) -> bool:
        if timeout <= 0:
            return await self.page.is_visible(selector)
        try:
            await self.page.wait_for_selector(
                selector, state="visible", timeout=timeout * 1000
            )
        except PlaywrightTimeoutError:
            return False
        return True

    async def scroll_to_bottom(self) -> None:
        try:
            await self.page.evaluate(AUTO_SCROLL_SCRIPT)
        except PlaywrightError as exc:
            logger.debug("Scroll pass interrupted: %s", exc)

    async def screenshot_image(self, src: str, timeout: float) -> bytes:
        selector = image_selector(src)
        await self.page.wait_for_function(
            IMAGE_LOADED_SCRIPT, arg=selector, timeout=timeout * 1000
        )
        return await self.page.locator(selector).first.screenshot(type="png")

    async def cookies(self) -> List[Tuple[str, str]]:
        cookies = await self.page.context.cookies()
        return [(cookie["name"], cookie["value"]) for cookie in cookies]

    async def location(self) -> str:
        return self.page.url

    async def pause(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


@asynccontextmanager
async def launch_session(
    headless: bool = True,
    navigation_timeout: float = 30.0,
) -> AsyncIterator[PlaywrightSession]:
    """Start Chromium and yield a session bound to a fresh page."""
    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(headless=headless)
        try:
            page = await browser.new_page()
            page.set_default_navigation_timeout(navigation_timeout * 1000)
            yield PlaywrightSession(page)
        finally:
            await browser.close()
