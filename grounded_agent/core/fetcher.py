"""PageFetcher: retrieve one URL's text content.

Two stages:
- render: headless Chromium via Playwright (handles script-driven pages),
  main text extracted with trafilatura, structural hints as a second pass
- static: plain HTTP GET via httpx, structural hints parsed with BeautifulSoup

Both stages normalize whitespace and apply the same minimum-length gate.
Timeouts and non-success statuses produce empty text, never an exception.
"""

from __future__ import annotations

import asyncio
import logging
import re
from urllib.parse import urldefrag, urljoin, urlparse

import httpx
import trafilatura
from bs4 import BeautifulSoup

from ..types import FetchConfig, FetchedPage, Renderer

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")
_STRIP_TAGS = ["script", "style", "noscript", "template", "iframe", "svg"]


def normalize_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def passes_gate(text: str, min_chars: int) -> bool:
    """True when whitespace-normalized ``text`` is at least ``min_chars`` long."""
    return len(normalize_whitespace(text)) >= min_chars


def is_absolute_http_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc) and " " not in url


def extract_links(html: str, base_url: str) -> list[str]:
    """Absolute http(s) links from ``<a href>``, in document order, deduplicated."""
    soup = BeautifulSoup(html, "html.parser")
    links: list[str] = []
    seen: set[str] = set()
    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        if not href or href.startswith(("javascript:", "mailto:", "tel:", "#")):
            continue
        url, _ = urldefrag(urljoin(base_url, href))
        if url in seen or not is_absolute_http_url(url):
            continue
        seen.add(url)
        links.append(url)
    return links


def extract_structural_text(html: str) -> str:
    """Concatenate structural hints in a fixed priority order.

    title, og:description, meta description, first h1, first h2,
    main, article, section, then paragraph text.
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_STRIP_TAGS):
        tag.decompose()

    def meta(**attrs: str) -> str:
        el = soup.find("meta", attrs=attrs)
        return el.get("content", "") if el else ""

    def first_text(name: str) -> str:
        el = soup.find(name)
        return el.get_text(" ", strip=True) if el else ""

    parts = [
        soup.title.get_text(" ", strip=True) if soup.title else "",
        meta(property="og:description"),
        meta(name="description"),
        first_text("h1"),
        first_text("h2"),
        first_text("main"),
        first_text("article"),
        first_text("section"),
        "\n".join(p.get_text(" ", strip=True) for p in soup.find_all("p")),
    ]
    return normalize_whitespace("\n".join(p for p in parts if p))


def extract_main_text(html: str, url: str) -> str:
    """Readability-style main content via trafilatura."""
    text = trafilatura.extract(
        html,
        url=url,
        include_comments=False,
        include_tables=True,
        favor_recall=True,
    )
    return normalize_whitespace(text or "")


class PlaywrightRenderer:
    """Render a page in headless Chromium and return its final HTML."""

    def __init__(self, user_agent: str, timeout_seconds: float = 20.0) -> None:
        self.user_agent = user_agent
        self.timeout_seconds = timeout_seconds

    async def render(self, url: str) -> str:
        from playwright.async_api import async_playwright

        async with async_playwright() as pw:
            browser = await pw.chromium.launch(headless=True, args=["--no-sandbox"])
            try:
                page = await browser.new_page(user_agent=self.user_agent)
                await page.goto(
                    url,
                    wait_until="domcontentloaded",
                    timeout=int(self.timeout_seconds * 1000),
                )
                return await page.content()
            finally:
                await browser.close()


class PageFetcher:
    """Fetch a URL's normalized text, render path first, static path second."""

    def __init__(
        self,
        config: FetchConfig,
        renderer: Renderer | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        if renderer is None and config.render_enabled:
            renderer = PlaywrightRenderer(config.user_agent, config.render_timeout_seconds)
        self.renderer = renderer
        self._transport = transport

    async def fetch(self, url: str) -> str:
        """Return normalized page text, or "" when nothing usable was found."""
        page = await self.fetch_page(url)
        return page.text

    async def fetch_page(self, url: str) -> FetchedPage:
        """Return text plus outbound links from whichever stage succeeded.

        Links are kept even when the text fails the gate so a crawler can
        still follow them from a thin landing page.
        """
        if not is_absolute_http_url(url):
            logger.warning(f"Refusing to fetch non-http URL: {url!r}")
            return FetchedPage(url=url)

        fallback_links: list[str] = []

        if self.renderer is not None:
            html = await self._render_html(url)
            if html:
                page = await asyncio.to_thread(self._page_from_rendered, url, html)
                if page.text:
                    return page
                fallback_links = page.links

        html = await self._static_html(url)
        if html:
            page = await asyncio.to_thread(self._page_from_static, url, html)
            if page.text:
                return page
            fallback_links = page.links or fallback_links

        logger.info(f"No usable content for {url}")
        return FetchedPage(url=url, links=fallback_links)

    async def _render_html(self, url: str) -> str:
        try:
            return await asyncio.wait_for(
                self.renderer.render(url),
                timeout=self.config.render_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Render timeout for {url}")
        except Exception as e:
            logger.warning(f"Render failed for {url}: {e}")
        return ""

    async def _static_html(self, url: str) -> str:
        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout_seconds,
                follow_redirects=True,
                headers={"User-Agent": self.config.user_agent},
                transport=self._transport,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
                content_type = response.headers.get("content-type", "").split(";")[0].strip()
                if content_type and "html" not in content_type and not content_type.startswith("text/"):
                    logger.warning(f"Unsupported content type for {url}: {content_type}")
                    return ""
                return response.text
        except httpx.TimeoutException:
            logger.warning(f"Timeout fetching {url}")
        except httpx.HTTPStatusError as e:
            logger.warning(f"HTTP error fetching {url}: {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Error fetching {url}: {e}")
        return ""

    def _page_from_rendered(self, url: str, html: str) -> FetchedPage:
        links = extract_links(html, url)
        text = extract_main_text(html, url)
        if not passes_gate(text, self.config.min_content_chars):
            text = extract_structural_text(html)
        if not passes_gate(text, self.config.min_content_chars):
            logger.debug(f"Rendered text below gate for {url} ({len(text)} chars)")
            return FetchedPage(url=url, links=links)
        logger.info(f"Extracted {len(text)} chars from {url} via render")
        return FetchedPage(url=url, text=text, links=links, stage="render")

    def _page_from_static(self, url: str, html: str) -> FetchedPage:
        links = extract_links(html, url)
        text = extract_structural_text(html)
        if not passes_gate(text, self.config.min_content_chars):
            logger.debug(f"Static text below gate for {url} ({len(text)} chars)")
            return FetchedPage(url=url, links=links)
        logger.info(f"Extracted {len(text)} chars from {url} via static parse")
        return FetchedPage(url=url, text=text, links=links, stage="static")
