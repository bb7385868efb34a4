"""
Web retrieval module for fetching county listing pages and PDF documents.
"""

import time
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

import requests

from lienx.config import FetchConfig
from lienx.log import get_logger
from lienx.model import FetchError

logger = get_logger(__name__)


@dataclass
class FetchResponse:
    """
    A retrieved document.
    """

    url: str  # Final URL after redirects
    content: bytes
    content_type: str = ""
    status_code: int = 200

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    @property
    def is_pdf(self) -> bool:
        return "pdf" in self.content_type.lower() or self.content.lstrip()[:4] == b"%PDF"

    @property
    def is_html(self) -> bool:
        if "html" in self.content_type.lower():
            return True
        head = self.content.lstrip()[:100].lower()
        return head.startswith(b"<!doctype html") or head.startswith(b"<html")


class Fetcher:
    """
    HTTP GET with a browser-like identity, a hard timeout and retries.

    One instance (and one ``requests.Session``) is meant to serve a whole
    process and is passed to every scraper.
    """

    def __init__(self, cfg: Optional[FetchConfig] = None, session: Optional[requests.Session] = None):
        self.cfg = cfg or FetchConfig()
        self.session = session or requests.Session()
        self.session.headers.update(self.default_headers())

    def default_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self.cfg.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,application/pdf,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }

    def fetch(self, url: str, headers: Optional[Dict[str, str]] = None) -> FetchResponse:
        """
        Fetch a URL with retry logic and exponential backoff.

        Client errors (4xx) are not retried.

        Args:
            url: URL to fetch
            headers: Extra request headers

        Returns:
            The retrieved document

        Raises:
            FetchError: If every attempt failed
        """
        max_retries = self.cfg.max_retries
        last_exception = None

        for attempt in range(max_retries + 1):
            try:
                return self.fetch_once(url, headers)
            except requests.exceptions.HTTPError as e:
                last_exception = e
                status = e.response.status_code if e.response is not None else None
                logger.warning(f"HTTP {status} for {url} (attempt {attempt + 1}/{max_retries + 1})")
                if status is not None and status < 500:
                    break
            except requests.exceptions.ConnectionError as e:
                last_exception = e
                logger.warning(f"Connection error for {url} (attempt {attempt + 1}/{max_retries + 1}): {e}")
            except requests.exceptions.Timeout as e:
                last_exception = e
                logger.warning(f"Timeout for {url} after {self.cfg.timeout}s (attempt {attempt + 1}/{max_retries + 1})")
            except requests.exceptions.RequestException as e:
                last_exception = e
                logger.warning(f"Request error for {url} (attempt {attempt + 1}/{max_retries + 1}): {e}")

            # Don't sleep after the last attempt
            if attempt < max_retries:
                sleep_time = self.cfg.backoff_factor * (2 ** attempt)
                logger.info(f"Retrying in {sleep_time:.1f} seconds...")
                time.sleep(sleep_time)

        raise FetchError(f"Failed to fetch {url}: {last_exception}")

    def fetch_once(self, url: str, headers: Optional[Dict[str, str]] = None) -> FetchResponse:
        """
        Fetch a URL with a single request.

        Args:
            url: URL to fetch
            headers: Extra request headers

        Returns:
            The retrieved document
        """
        logger.debug(f"GET {url}")
        response = self.session.get(url, headers=headers, timeout=self.cfg.timeout, allow_redirects=True)
        response.raise_for_status()
        return FetchResponse(
            url=response.url or url,
            content=response.content,
            content_type=response.headers.get("Content-Type", ""),
            status_code=response.status_code,
        )

    def close(self) -> None:
        self.session.close()


def resolve_url(base_url: str, href: str) -> str:
    """
    Resolve a link found on a page against the page URL.

    Args:
        base_url: URL of the page the link was found on
        href: Link target, possibly relative ("../docs/sale.pdf")

    Returns:
        Absolute URL
    """
    return urljoin(base_url, href.strip())


def with_download_param(url: str) -> str:
    """
    Ask a document viewer link to serve the file itself.

    Args:
        url: Document URL

    Returns:
        URL with download=true added to its query string
    """
    parts = urlparse(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    if query.get("download") == "true":
        return url
    query["download"] = "true"
    return urlunparse(parts._replace(query=urlencode(query)))
