# client.py
"""
Shared HTTP plumbing: the per-request AsyncClient dependency, a retrying
fetch helper, session-cookie extraction and mirror-domain failover for
masteranime.
"""
import asyncio
import logging
import re
from typing import Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit

from fastapi import HTTPException
from httpx import AsyncClient, AsyncHTTPTransport, HTTPStatusError, RequestError, Response

import config

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

AJAX_HEADERS = {
    "Accept": "application/json, text/javascript, */*; q=0.01",
    "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
    "X-Requested-With": "XMLHttpRequest",
}

CHALLENGE_MARKERS = (
    "DDoS-Guard",
    "/.well-known/ddos-guard/",
    "cf-browser-verification",
    "challenge-platform",
    "Just a moment...",
)


def build_http_client(transport=None) -> AsyncClient:
    """Create the AsyncClient used for every upstream request."""
    if transport is None:
        transport = AsyncHTTPTransport(retries=config.MAX_RETRIES)
    return AsyncClient(
        transport=transport,
        headers={"User-Agent": config.USER_AGENT, **BROWSER_HEADERS},
        timeout=config.REQUEST_TIMEOUT,
        follow_redirects=True,
    )


# Dependency to provide HTTP client
async def get_http_client():
    client = build_http_client()
    try:
        yield client
    finally:
        await client.aclose()


async def fetch_with_retry(
    client: AsyncClient,
    url: str,
    method: str = "GET",
    retries: Optional[int] = None,
    delay: Optional[float] = None,
    **kwargs,
) -> Response:
    """
    Issue a request, retrying on network errors and error statuses.

    Backoff is linear: attempt N waits `delay * N` seconds. A 429 waits
    three times the base delay before the next attempt. The last error is
    re-raised once attempts run out.
    """
    retries = config.MAX_RETRIES if retries is None else retries
    delay = config.RETRY_DELAY if delay is None else delay
    last_error: Optional[Exception] = None

    for attempt in range(max(retries, 1)):
        try:
            response = await client.request(method, url, **kwargs)
            if response.status_code == 429:
                logger.warning(f"429 Too Many Requests from {url}, backing off")
                await asyncio.sleep(delay * 3)
            response.raise_for_status()
            return response
        except (HTTPStatusError, RequestError) as e:
            last_error = e
            logger.info(f"Retry {attempt + 1}/{retries} failed for {url}: {e}")
            if attempt < retries - 1:
                await asyncio.sleep(delay * (attempt + 1))

    raise last_error


def upstream_http_exception(error: Exception, url: str, not_found_detail: Optional[str] = None) -> HTTPException:
    """Map an httpx failure to the HTTPException the API returns for it."""
    if isinstance(error, HTTPStatusError):
        status_code = error.response.status_code
        logger.error(f"HTTP error {status_code} while scraping {url}: {error}")
        if status_code == 404:
            return HTTPException(status_code=404, detail=not_found_detail or f"Page not found: {url}")
        return HTTPException(status_code=502, detail=f"Failed to fetch data: {str(error)}")
    if isinstance(error, RequestError):
        logger.error(f"Network error while scraping {url}: {error}")
        return HTTPException(status_code=503, detail=f"Network error: {str(error)}")
    logger.exception(f"Unexpected error while scraping {url}: {error}")
    return HTTPException(status_code=500, detail=f"Scraping error: {str(error)}")


def extract_session_cookie(response: Response) -> str:
    """Return `name=value` pairs for the site session cookie(s) set by a response."""
    cookies = []
    for header in response.headers.get_list("set-cookie"):
        pair = header.split(";")[0].strip()
        if "=" in pair:
            cookies.append(pair)

    session = [c for c in cookies if c.split("=", 1)[0] == "PHPSESSID"]
    if not session:
        session = [c for c in cookies if re.search(r"sess|sid|session", c.split("=", 1)[0], re.IGNORECASE)]
    return "; ".join(session)


def is_challenge_page(html: str) -> bool:
    if not html:
        return False
    return any(marker in html for marker in CHALLENGE_MARKERS)


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


class DomainManager:
    """Tracks which masteranime mirror is currently reachable."""

    def __init__(self, domains: List[str]):
        if not domains:
            raise ValueError("At least one domain is required")
        self.domains = list(domains)
        self.active = self.domains[0]
        self.checking = False

    @property
    def base_url(self) -> str:
        return f"https://{self.active}"

    async def validate(self, domain: str, client: AsyncClient) -> bool:
        try:
            response = await client.get(f"https://{domain}", timeout=5.0)
            return response.status_code < 400
        except RequestError as e:
            logger.info(f"Domain {domain} validation failed: {e}")
            return False

    async def refresh(self, client: Optional[AsyncClient] = None) -> Optional[str]:
        """Activate the first mirror that answers; returns None when all fail."""
        if self.checking:
            return None

        self.checking = True
        owns_client = client is None
        if owns_client:
            client = build_http_client()
        try:
            for domain in self.domains:
                if await self.validate(domain, client):
                    self.active = domain
                    logger.info(f"Active domain set to: {domain}")
                    return domain
            logger.warning("All domains failed validation")
            return None
        finally:
            self.checking = False
            if owns_client:
                await client.aclose()

    def swap_host(self, url: str) -> str:
        parts = urlsplit(url)
        if not parts.netloc:
            return url
        return urlunsplit((parts.scheme, self.active, parts.path, parts.query, parts.fragment))

    def status(self) -> Dict[str, object]:
        return {
            "active": self.active,
            "checking": self.checking,
            "alternatives": list(self.domains),
        }


domain_manager = DomainManager(config.MASTERANIME_DOMAINS)
