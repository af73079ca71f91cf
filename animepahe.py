# animepahe.py
"""
animepahe episode link lookup.

The site sits behind DDoS-Guard. A challenge page is not solved: it is
reported as a 502 with the challenge's visible parameters attached, so
callers can tell protection apart from an outage.
"""
import logging
import re
from typing import Any, Dict, Optional

from fastapi import HTTPException
from httpx import AsyncClient, HTTPStatusError, RequestError

import config
from client import fetch_with_retry, is_challenge_page, upstream_http_exception

logger = logging.getLogger(__name__)

CHALLENGE_SCRIPT_RE = re.compile(r'src="(/\.well-known/ddos-guard/[^"]*?)"')
DATA_ATTR_RE = re.compile(r'(data-[a-z0-9_-]+)="([^"]*?)"')
INPUT_TAG_RE = re.compile(r'<input[^>]*name="[^"]*"[^>]*value="[^"]*"[^>]*>')
INPUT_NAME_RE = re.compile(r'name="([^"]*)"')
INPUT_VALUE_RE = re.compile(r'value="([^"]*)"')
FORM_ACTION_RE = re.compile(r'<form[^>]*action="([^"]*)"[^>]*>')


def parse_challenge(html: str) -> Dict[str, Any]:
    """Collect what a challenge page exposes: script, data-* attributes, form inputs and action."""
    challenge: Dict[str, Any] = {"params": {}}

    script = CHALLENGE_SCRIPT_RE.search(html)
    if script:
        challenge["script_src"] = script.group(1)

    for key, value in DATA_ATTR_RE.findall(html):
        challenge["params"][key] = value

    for tag in INPUT_TAG_RE.findall(html):
        name = INPUT_NAME_RE.search(tag)
        value = INPUT_VALUE_RE.search(tag)
        if name and value:
            challenge["params"][name.group(1)] = value.group(1)

    action = FORM_ACTION_RE.search(html)
    if action:
        challenge["form_action"] = action.group(1)

    return challenge


def _challenge_exception(html: str, url: str) -> HTTPException:
    challenge = parse_challenge(html)
    logger.error(f"Protection challenge returned by {url}: {challenge}")
    return HTTPException(
        status_code=502,
        detail={"error": "Upstream returned a protection challenge", "url": url, "challenge": challenge},
    )


async def fetch_links(
    client: AsyncClient,
    session_id: str,
    provider: str = "kwik",
    base_url: Optional[str] = None,
) -> Any:
    """Return the JSON from animepahe's `/api?m=links` endpoint for an episode session id."""
    if not session_id or not session_id.strip():
        raise HTTPException(status_code=400, detail="Episode session id cannot be empty")

    base_url = (base_url or config.ANIMEPAHE_BASE_URL).rstrip("/")
    home_url = f"{base_url}/"

    logger.info(f"Opening animepahe session at {home_url}")
    try:
        home = await fetch_with_retry(client, home_url)
    except HTTPStatusError as e:
        # DDoS-Guard answers the challenge with 403
        if is_challenge_page(e.response.text):
            raise _challenge_exception(e.response.text, home_url)
        raise upstream_http_exception(e, home_url)
    except RequestError as e:
        raise upstream_http_exception(e, home_url)
    if is_challenge_page(home.text):
        raise _challenge_exception(home.text, home_url)

    api_url = f"{base_url}/api"
    logger.info(f"Fetching animepahe links for {session_id} ({provider})")
    try:
        response = await client.get(
            api_url,
            params={"m": "links", "id": session_id, "p": provider},
            headers={
                "Accept": "application/json, text/plain, */*",
                "X-Requested-With": "XMLHttpRequest",
                "Referer": home_url,
            },
        )
        response.raise_for_status()
    except (HTTPStatusError, RequestError) as e:
        raise upstream_http_exception(e, api_url, not_found_detail=f"No links found for {session_id}")

    if is_challenge_page(response.text):
        raise _challenge_exception(response.text, api_url)
    try:
        return response.json()
    except ValueError:
        logger.error(f"animepahe returned non-JSON for {session_id}")
        raise HTTPException(status_code=502, detail="animepahe returned an invalid response")
