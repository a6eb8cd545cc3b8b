"""
HTML page fetcher backed by aiohttp and BeautifulSoup.
"""

import asyncio
import re
from typing import Optional, Union

import aiohttp
from bs4 import BeautifulSoup
from loguru import logger

from content_audit.config.settings import FETCH_TIMEOUT_SECONDS, USER_AGENT
from content_audit.providers.base import FetchedPage

_WHITESPACE_RE = re.compile(r"\s+")


def parse_html(url: str, html: Union[str, bytes], encoding: Optional[str] = None) -> FetchedPage:
    """Extract title, meta description, headings and main body text.

    Raw bytes are decoded by BeautifulSoup, trying *encoding* first and
    falling back to detection when the declared charset is wrong.
    """
    if isinstance(html, bytes):
        soup = BeautifulSoup(html, "html.parser", from_encoding=encoding)
    else:
        soup = BeautifulSoup(html, "html.parser")

    for tag in soup(["script", "style", "noscript", "iframe"]):
        tag.decompose()

    title_tag = soup.find("title")
    title = title_tag.get_text(strip=True) if title_tag else ""

    meta_tag = soup.find("meta", attrs={"name": "description"})
    meta_description = (meta_tag.get("content") or "").strip() if meta_tag else ""

    headings = {
        level: [h.get_text(strip=True) for h in soup.find_all(level) if h.get_text(strip=True)]
        for level in ("h1", "h2", "h3")
    }

    # Prefer the main content container over navigation chrome
    root = soup.find("main") or soup.find("article") or soup.find("body") or soup
    body_text = _WHITESPACE_RE.sub(" ", root.get_text(" ")).strip()
    word_count = len(body_text.split()) if body_text else 0

    return FetchedPage(
        url=url,
        title=title,
        meta_description=meta_description,
        headings=headings,
        body_text=body_text,
        word_count=word_count,
    )


class HtmlContentFetcher:
    """Fetch pages over HTTP; every failure becomes ``None``."""

    def __init__(self, timeout: float = FETCH_TIMEOUT_SECONDS, user_agent: str = USER_AGENT):
        self.timeout = timeout
        self.user_agent = user_agent

    async def fetch(self, url: str) -> Optional[FetchedPage]:
        logger.debug("Fetching {}", url)
        try:
            async with aiohttp.ClientSession(
                headers={"User-Agent": self.user_agent},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        logger.warning("Fetch of {} returned status {}", url, response.status)
                        return None
                    html = await response.read()
                    encoding = response.charset
        except asyncio.TimeoutError:
            logger.warning("Fetch of {} timed out after {}s", url, self.timeout)
            return None
        except aiohttp.ClientError as exc:
            logger.warning("Failed to fetch {}: {}", url, exc)
            return None

        return parse_html(url, html, encoding)
