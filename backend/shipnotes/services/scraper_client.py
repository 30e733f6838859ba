"""Web scraping client (Firecrawl-compatible ``/v1/scrape`` API)."""

import logging
from typing import Optional
from urllib.parse import urlparse

import requests

logger = logging.getLogger(__name__)


class ScrapeError(Exception):
    """Scrape failed. ``retriable`` tells the caller whether trying again can help."""

    def __init__(self, message: str, retriable: bool):
        super().__init__(message)
        self.retriable = retriable


def is_valid_http_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc) and " " not in url


class ScraperClient:
    """Fetches the main content of a page as markdown."""

    def __init__(self, api_key: str, api_url: str = "https://api.firecrawl.dev", timeout: int = 60):
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def scrape_markdown(self, url: str) -> str:
        """Return the page's main content as markdown.

        Raises:
            ScrapeError: ``retriable=False`` for invalid URLs and rejected
                requests, ``retriable=True`` for network and server trouble.
        """
        if not is_valid_http_url(url):
            raise ScrapeError("Invalid URL", retriable=False)
        if not self.configured:
            raise ScrapeError("Web scraper is not configured", retriable=False)

        try:
            response = requests.post(
                f"{self.api_url}/v1/scrape",
                json={"url": url, "formats": ["markdown"], "onlyMainContent": True},
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            logger.warning("Scrape request failed: %s", type(exc).__name__)
            raise ScrapeError("Scraper request failed", retriable=True) from exc

        body: Optional[dict]
        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.ok or not body or not body.get("success", False):
            detail = str((body or {}).get("error") or (body or {}).get("details") or "")
            status = response.status_code
            if "invalid url" in detail.lower():
                raise ScrapeError("Invalid URL", retriable=False)
            retriable = status >= 500 or status in (408, 429) or response.ok
            logger.warning("Scraper returned %d: %s", status, detail[:200])
            raise ScrapeError(f"Failed to scrape website ({status})", retriable=retriable)

        markdown = (body.get("data") or {}).get("markdown") or ""
        if not markdown.strip():
            raise ScrapeError("No content found on the page", retriable=False)
        return markdown
