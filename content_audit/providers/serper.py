"""
Ranking lookup through the Serper.dev Google search API.
"""

import asyncio

import aiohttp
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from content_audit.config.settings import FETCH_TIMEOUT_SECONDS, SERPER_API_KEY, SERPER_ENDPOINT
from content_audit.errors import ExternalServiceError, PreconditionFailedError
from content_audit.providers.base import SearchResult


class SerperRankingLookup:
    """Organic results for a keyword, localized by country and language."""

    def __init__(
        self,
        api_key: str = SERPER_API_KEY,
        endpoint: str = SERPER_ENDPOINT,
        timeout: float = FETCH_TIMEOUT_SECONDS,
    ):
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout = timeout

    async def search(self, keyword: str, country: str = "us", language: str = "en") -> list[SearchResult]:
        if not self.api_key:
            raise PreconditionFailedError("SERPER_API_KEY is not configured")

        logger.info("Searching for '{}' in {}/{} via Serper", keyword, country, language)
        try:
            data = await self._post({"q": keyword, "gl": country, "hl": language})
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ExternalServiceError(f"Ranking lookup failed for '{keyword}': {exc}") from exc

        results = []
        for index, item in enumerate(data.get("organic", []), start=1):
            link = item.get("link")
            if not link:
                continue
            results.append(SearchResult(
                position=item.get("position", index),
                url=link,
                title=item.get("title", ""),
                snippet=item.get("snippet", ""),
            ))
        return results

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
        reraise=True,
    )
    async def _post(self, body: dict) -> dict:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
            async with session.post(
                self.endpoint,
                json=body,
                headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"},
            ) as response:
                response.raise_for_status()
                return await response.json()
