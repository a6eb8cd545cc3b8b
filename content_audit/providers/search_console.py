"""
Page metrics from the Google Search Console search analytics API.
"""

import asyncio
import datetime
from urllib.parse import quote

import aiohttp
from loguru import logger

from content_audit.config.settings import FETCH_TIMEOUT_SECONDS, GSC_ACCESS_TOKEN
from content_audit.errors import ExternalServiceError, PreconditionFailedError
from content_audit.providers.base import PageMetrics

_API_ROOT = "https://www.googleapis.com/webmasters/v3/sites"


class SearchConsoleMetricsSource:
    """Query top pages by clicks with a pre-issued OAuth access token."""

    def __init__(self, access_token: str = GSC_ACCESS_TOKEN, timeout: float = FETCH_TIMEOUT_SECONDS):
        self.access_token = access_token
        self.timeout = timeout

    async def fetch_top_pages(
        self,
        property_url: str,
        start_date: datetime.date,
        end_date: datetime.date,
        limit: int,
    ) -> list[PageMetrics]:
        if not self.access_token:
            raise PreconditionFailedError("GSC_ACCESS_TOKEN is not configured")

        endpoint = f"{_API_ROOT}/{quote(property_url, safe='')}/searchAnalytics/query"
        body = {
            "startDate": start_date.isoformat(),
            "endDate": end_date.isoformat(),
            "dimensions": ["page"],
            "rowLimit": limit,
        }
        logger.info("Fetching top {} pages for {} ({} to {})", limit, property_url, start_date, end_date)

        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.post(
                    endpoint,
                    json=body,
                    headers={"Authorization": f"Bearer {self.access_token}"},
                ) as response:
                    response.raise_for_status()
                    data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ExternalServiceError(f"Search Console query failed for {property_url}: {exc}") from exc

        pages = []
        for row in data.get("rows", []):
            keys = row.get("keys") or []
            if not keys or not keys[0]:
                continue
            pages.append(PageMetrics(
                url=keys[0],
                clicks=int(row.get("clicks") or 0),
                impressions=int(row.get("impressions") or 0),
                ctr=float(row.get("ctr") or 0.0),
                position=float(row.get("position") or 0.0),
            ))
        return pages
