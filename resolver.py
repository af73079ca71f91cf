# resolver.py
"""
Stream resolution for episode pages.

The masteranime flow is: open a session, load the episode page, pull the
CTK token out of it, ask the AJAX endpoint for the player embed, then dig
the HLS manifest URL out of the embed page. Each extraction step is a
ladder of heuristics tried in order; the first hit wins.

Also hosts the smaller single-pass helpers: watch-page sniffing, m3u8
source listing and playlist analysis.
"""
import importlib.util
import json
import logging
import re
import time
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qs, quote, unquote, urljoin

from bs4 import BeautifulSoup
from fastapi import HTTPException
from httpx import AsyncClient, ConnectError, HTTPStatusError, RequestError

import config
from client import (
    AJAX_HEADERS,
    DomainManager,
    extract_session_cookie,
    fetch_with_retry,
    is_challenge_page,
    origin_of,
    upstream_http_exception,
)
from models import M3U8Sources, PlayerEmbed, PlaylistAnalysis, PlaylistVariant, StreamDebug, StreamResult

_PLAYWRIGHT_SPEC = importlib.util.find_spec("playwright")
if _PLAYWRIGHT_SPEC is not None:
    from playwright.async_api import Error as PlaywrightError
    from playwright.async_api import async_playwright
else:
    async_playwright = None

logger = logging.getLogger(__name__)

HLS_CONTENT_TYPES = ("application/vnd.apple.mpegurl", "application/x-mpegurl", "audio/mpegurl")

CTK_VALUE_RE = re.compile(r"^[a-f0-9]{32}$", re.IGNORECASE)

SCRIPT_CTK_PATTERNS = [
    re.compile(r"ctk\s*[:=]\s*['\"]([a-f0-9]{32})['\"]", re.IGNORECASE),
    re.compile(r"csrf\s*[:=]\s*['\"]([a-f0-9]{32})['\"]", re.IGNORECASE),
    re.compile(r"token\s*[:=]\s*['\"]([a-f0-9]{32})['\"]", re.IGNORECASE),
    re.compile(r"['\"]ctk['\"]\s*[:=]\s*['\"]([a-f0-9]{32})['\"]", re.IGNORECASE),
]

QUERY_CTK_PATTERNS = [
    re.compile(r"ctk=([a-f0-9]{32})", re.IGNORECASE),
    re.compile(r"csrf=([a-f0-9]{32})", re.IGNORECASE),
    re.compile(r"token=([a-f0-9]{32})", re.IGNORECASE),
]

FORM_ACTION_QUERY_RE = re.compile(r"<form[^>]+action=\"[^\"]+\?(.*?)\"", re.IGNORECASE)
AJAX_PATH_RE = re.compile(r"ajax/anime/([^\s'\"]+)")
SRC_ATTR_RE = re.compile(r"src=[\"']([^\"']+)[\"']")
HTTP_URL_RE = re.compile(r"(https?://[^\s\"']+)")
ABSOLUTE_M3U8_RE = re.compile(r"(https?://[^\s'\"<>]+\.m3u8[^\s'\"<>]*)", re.IGNORECASE)
MANIFEST_URL_RE = re.compile(r"\.m3u8($|\?)", re.IGNORECASE)

# Ordered from most to least specific; only the first one yields absolute URLs
M3U8_PATTERNS = [
    ABSOLUTE_M3U8_RE,
    re.compile(r"source\s+src=[\"']([^\"']+\.m3u8[^\"']*)", re.IGNORECASE),
    re.compile(r"file\s*:\s*[\"']([^\"']+\.m3u8[^\"']*)", re.IGNORECASE),
    re.compile(r"url\s*:\s*[\"']([^\"']+\.m3u8[^\"']*)", re.IGNORECASE),
    re.compile(r"hls(?:Source|Url|Path)[\"']?\s*:\s*[\"']([^\"']+\.m3u8[^\"']*)", re.IGNORECASE),
    re.compile(r"\"playlist_url\"\s*:\s*\"([^\"]+\.m3u8[^\"]*)\"", re.IGNORECASE),
    re.compile(r"(?:hls\.loadSource|player\.updateSrc)\(\s*[\"']([^\"']+\.m3u8[^\"']*)", re.IGNORECASE),
    re.compile(r"[\"'](/[^\"'\s]+/playlist\.m3u8[^\"']*)", re.IGNORECASE),
]

ALTERNATE_VIDEO_PATTERNS = [
    re.compile(r"source\s+src=[\"']([^\"']+)[\"']", re.IGNORECASE),
    re.compile(r"file\s*:\s*[\"']([^\"']+)[\"']", re.IGNORECASE),
    re.compile(r"url\s*:\s*[\"']([^\"']+)[\"']", re.IGNORECASE),
]
VIDEO_EXTENSION_RE = re.compile(r"\.(mp4|webm|m3u8|mpd)", re.IGNORECASE)


class StreamResolutionError(Exception):
    """A resolution pipeline gave up; carries the trace of steps it completed."""

    def __init__(self, message: str, debug: Optional[StreamDebug] = None, blocked: bool = False):
        super().__init__(message)
        self.message = message
        self.debug = debug or StreamDebug()
        # Upstream refused us (403 / connection refused); mirrors should be re-checked
        self.blocked = blocked

    @property
    def last_step(self) -> str:
        return self.debug.steps[-1] if self.debug.steps else "init"


def _mask(value: Optional[str], keep: int) -> Optional[str]:
    if not value:
        return None
    return value[:keep] + "..."


def _record_step(debug: StreamDebug, step: str) -> None:
    debug.steps.append(step)
    logger.info(f"Stream step {step} ({debug.episode_url or debug.domain})")


# ---------------------------------------------------------------- CTK

def extract_ctk(html: str) -> Optional[str]:
    """Find the episode page's CTK token, trying each known placement in turn."""
    if not html:
        return None
    soup = BeautifulSoup(html, "html.parser")

    def attr(selector: str, name: str) -> Optional[str]:
        element = soup.select_one(selector)
        return element.get(name) if element else None

    def scripts() -> Optional[str]:
        for script in soup.find_all("script"):
            text = script.string or script.get_text() or ""
            for pattern in SCRIPT_CTK_PATTERNS:
                match = pattern.search(text)
                if match:
                    return match.group(1)
        return None

    def form_action() -> Optional[str]:
        match = FORM_ACTION_QUERY_RE.search(html)
        if not match:
            return None
        values = parse_qs(match.group(1).replace("&amp;", "&")).get("ctk")
        return values[0] if values else None

    def whole_page() -> Optional[str]:
        for pattern in QUERY_CTK_PATTERNS:
            match = pattern.search(html)
            if match:
                return match.group(1)
        return None

    strategies = [
        ("meta name", lambda: attr('meta[name="ctk"]', "content")),
        ("meta property", lambda: attr('meta[property="ctk"]', "content")),
        ("hidden input", lambda: attr('input[name="ctk"]', "value")),
        ("data attribute", lambda: attr("[data-ctk]", "data-ctk")),
        ("inline script", scripts),
        ("form action", form_action),
        ("page text", whole_page),
    ]
    for name, strategy in strategies:
        candidate = strategy()
        if candidate and CTK_VALUE_RE.match(candidate.strip()):
            return candidate.strip()
        logger.debug(f"CTK strategy '{name}' found nothing usable")
    return None


# ---------------------------------------------------------------- embed reference

def parse_embed_response(payload) -> Optional[str]:
    """
    Pull the embed player URL out of the AJAX response.

    The endpoint usually answers `{"status": true, "value": "<iframe src=...>"}`
    but some servers return the URL under another key, or plain text.
    """
    data = payload
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except ValueError:
            pass

    if isinstance(data, dict):
        value = data.get("value")
        if isinstance(value, str):
            match = SRC_ATTR_RE.search(value)
            if match:
                return match.group(1)

        for field in data.values():
            if not isinstance(field, str):
                continue
            match = SRC_ATTR_RE.search(field)
            if match:
                return match.group(1)
            if "embed" in field or "player" in field:
                url_match = HTTP_URL_RE.search(field)
                if url_match:
                    return url_match.group(1)
        return None

    if isinstance(data, str):
        unescaped = data.replace("\\/", "/").replace('\\"', '"')
        match = re.search(r"src=[\"'](https?://[^\"']+)", unescaped)
        if match:
            return match.group(1)
    return None


# ---------------------------------------------------------------- manifest extraction

def normalize_script_text(text: str) -> str:
    """Undo the escaping players use to hide URLs in inline scripts."""
    text = re.sub(r"\\x([0-9a-fA-F]{2})", lambda m: chr(int(m.group(1), 16)), text)
    text = re.sub(r"\\u([0-9a-fA-F]{4})", lambda m: chr(int(m.group(1), 16)), text)
    text = text.replace("\\/", "/")
    text = re.sub(r"https?%3A%2F%2F[^\s\"'<>]+", lambda m: unquote(m.group(0)), text, flags=re.IGNORECASE)
    return text


def _absolute(url: str, base_url: Optional[str]) -> Optional[str]:
    url = url.strip().strip("\"'").rstrip("\\")
    if url.startswith("//"):
        url = "https:" + url
    if url.startswith(("http://", "https://")):
        return url
    if base_url:
        return urljoin(base_url, url)
    return None


def extract_m3u8_url(text: str, base_url: Optional[str] = None) -> Optional[str]:
    """Return the first HLS manifest URL found in an HTML page or script body."""
    if not text:
        return None
    content = normalize_script_text(text)

    for pattern in M3U8_PATTERNS:
        for match in pattern.finditer(content):
            url = _absolute(match.group(1), base_url)
            if url and ".m3u8" in url:
                return url
        logger.debug(f"M3U8 pattern {pattern.pattern!r} found nothing")

    soup = BeautifulSoup(content, "html.parser")
    for element in soup.select('[src*="m3u8"], [data-src*="m3u8"]'):
        src = element.get("src") or element.get("data-src")
        url = _absolute(src, base_url) if src else None
        if url:
            return url
    logger.debug("No element with an m3u8 src attribute")

    for tag_name in ("video", "source"):
        for element in soup.find_all(tag_name):
            src = element.get("src")
            if src and ".m3u8" in src:
                url = _absolute(src, base_url)
                if url:
                    return url
    logger.debug("No video or source tag points at an m3u8")
    return None


def extract_alternate_video_url(text: str) -> Optional[str]:
    """Last-resort lookup for any player source that points at a video file."""
    if not text:
        return None
    for pattern in ALTERNATE_VIDEO_PATTERNS:
        for match in pattern.finditer(text):
            url = match.group(1)
            if VIDEO_EXTENSION_RE.search(url):
                return url
    return None


def extract_iframe_src(html: str, base_url: str) -> Optional[str]:
    soup = BeautifulSoup(html or "", "html.parser")
    iframe = soup.find("iframe")
    if not iframe:
        return None
    src = iframe.get("src") or iframe.get("data-src")
    return _absolute(src, base_url) if src else None


def concatenated_scripts(html: str) -> str:
    soup = BeautifulSoup(html or "", "html.parser")
    return "\n".join(script.string or script.get_text() or "" for script in soup.find_all("script"))


async def render_embed(embed_url: str, referer: Optional[str] = None, wait: Optional[float] = None) -> Optional[str]:
    """
    Load the embed page in headless Chromium and watch its network traffic
    for a manifest request. Used when the URL is only built at runtime.
    """
    if not config.RENDER_EMBEDS or async_playwright is None:
        return None

    wait = config.RENDER_WAIT if wait is None else wait
    captured: List[str] = []

    def on_request(request):
        if ".m3u8" in request.url:
            captured.append(request.url)

    logger.info(f"Rendering embed page: {embed_url}")
    try:
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=True)
            try:
                context = await browser.new_context(
                    user_agent=config.USER_AGENT,
                    extra_http_headers={"Referer": referer} if referer else None,
                )
                page = await context.new_page()
                page.on("request", on_request)
                await page.goto(embed_url, wait_until="domcontentloaded", timeout=config.REQUEST_TIMEOUT * 1000)

                deadline = time.monotonic() + wait
                while not captured and time.monotonic() < deadline:
                    await page.wait_for_timeout(250)

                if captured:
                    return captured[0]
                return extract_m3u8_url(await page.content(), embed_url)
            finally:
                await browser.close()
    except PlaywrightError as e:
        logger.warning(f"Rendering {embed_url} failed: {e}")
        return None


async def resolve_final_url(client: AsyncClient, url: str, headers: Optional[Dict[str, str]] = None) -> str:
    """Follow redirects with a HEAD request; falls back to `url` when the HEAD fails."""
    try:
        response = await client.head(url, headers=headers, follow_redirects=True)
        response.raise_for_status()
    except (HTTPStatusError, RequestError) as e:
        logger.debug(f"HEAD {url} failed, keeping the URL as found: {e}")
        return url
    return str(response.url)


async def extract_m3u8_from_embed(
    client: AsyncClient, embed_url: str, referer: Optional[str] = None, debug: Optional[StreamDebug] = None
) -> Tuple[str, str]:
    """Return `(manifest_url, source)` for an embed player page."""
    debug = debug or StreamDebug()
    headers = {"Accept": "*/*"}
    if referer:
        headers["Referer"] = referer
        headers["Origin"] = origin_of(referer)

    response = await fetch_with_retry(client, embed_url, headers=headers)
    _record_step(debug, "embed_page_loaded")
    final_url = str(response.url)

    async def found(url: str, source: str = "primary_flow") -> Tuple[str, str]:
        return await resolve_final_url(client, url, headers={"Referer": embed_url}), source

    if MANIFEST_URL_RE.search(final_url):
        return await found(final_url)
    content_type = response.headers.get("content-type", "").lower()
    if any(kind in content_type for kind in HLS_CONTENT_TYPES):
        return await found(final_url)

    html = response.text
    url = extract_m3u8_url(html, final_url)
    if url:
        return await found(url)

    url = extract_m3u8_url(concatenated_scripts(html), final_url)
    if url:
        _record_step(debug, "script_extraction")
        return await found(url)

    url = await render_embed(embed_url, referer)
    if url:
        _record_step(debug, "rendered_extraction")
        return await found(url)

    url = extract_alternate_video_url(html)
    if url:
        _record_step(debug, "alternate_extraction_method")
        return await found(_absolute(url, final_url) or url, "alternate_method")

    raise StreamResolutionError("M3U8 URL not found in embed page", debug)


def generate_proxied_url(m3u8_url: str) -> str:
    return f"{config.HLS_PROXY_URL}{quote(m3u8_url, safe='')}"


# ---------------------------------------------------------------- pipelines

async def validate_manifest_url(client: AsyncClient, m3u8_url: str, embed_url: str, debug: StreamDebug) -> None:
    """HEAD the manifest with the embed page as referer; raises when the CDN refuses it."""
    try:
        response = await client.head(
            m3u8_url,
            headers={"Referer": embed_url, "Origin": origin_of(embed_url)},
            follow_redirects=True,
        )
        response.raise_for_status()
    except HTTPStatusError as e:
        raise StreamResolutionError(f"M3U8 URL validation failed: HTTP {e.response.status_code}", debug) from e
    except RequestError as e:
        raise StreamResolutionError(f"M3U8 URL validation failed: {e}", debug) from e
    _record_step(debug, "url_validated")


async def resolve_episode_stream(
    client: AsyncClient,
    domains: DomainManager,
    server: str,
    anime_slug: str,
    episode: str,
    use_proxy: bool = True,
    fetch_manifest: bool = False,
) -> StreamResult:
    """
    Run the full masteranime pipeline for one episode on one player server.

    A 403 from the site triggers one mirror refresh; when another mirror
    answers, the failed request is replayed against it and the rest of the
    pipeline stays there.
    """
    start = time.monotonic()
    base_url = domains.base_url
    debug = StreamDebug(domain=domains.active)
    failover_tried = False

    def finish(m3u8_url: str, source: str) -> StreamResult:
        _record_step(debug, "m3u8_url_found")
        proxied_url = generate_proxied_url(m3u8_url) if use_proxy else None
        _record_step(debug, "proxy_url_generated" if use_proxy else "using_direct_url")
        return StreamResult(
            success=True,
            source=source,
            m3u8_url=m3u8_url,
            proxied_url=proxied_url,
            use_proxy=use_proxy,
            debug=debug,
        )

    async def fetch_site(url: str, **kwargs):
        nonlocal base_url, failover_tried
        try:
            response = await fetch_with_retry(client, url, **kwargs)
        except HTTPStatusError as e:
            if e.response.status_code != 403 or failover_tried or len(domains.domains) < 2:
                raise
            failover_tried = True
            failed_domain, failed_base = domains.active, base_url
            logger.warning(f"{failed_domain} answered 403, checking mirrors")
            if await domains.refresh(client) in (None, failed_domain):
                raise
            base_url = domains.base_url
            debug.domain = domains.active
            _record_step(debug, "domain_switched")
            if "headers" in kwargs:
                kwargs["headers"] = {k: v.replace(failed_base, base_url) for k, v in kwargs["headers"].items()}
            url = domains.swap_host(url)
            response = await fetch_with_retry(client, url, **kwargs)

        if is_challenge_page(response.text):
            raise StreamResolutionError(f"Protection challenge served by {domains.active}", debug, blocked=True)
        return response

    current_url = base_url
    try:
        session_res = await fetch_site(base_url)
        debug.phpsessid = _mask(extract_session_cookie(session_res), 10) or "not_set"
        _record_step(debug, "session_acquired")

        episode_url = f"{base_url}/anime/watch/{anime_slug}/{episode}"
        current_url = episode_url
        debug.episode_url = episode_url
        episode_res = await fetch_site(episode_url, headers={"Referer": base_url})
        if str(episode_res.url) != episode_url:
            episode_url = debug.episode_url = str(episode_res.url)
        _record_step(debug, "episode_page_loaded")
        html = episode_res.text

        ctk = extract_ctk(html)
        api_url = f"{base_url}/ajax/anime/load_episodes_v2?s={server}"
        if ctk:
            debug.ctk = _mask(ctk, 8)
            _record_step(debug, "ctk_extracted")
        else:
            debug.errors.append("CTK extraction failed")
            logger.warning(f"No CTK on {episode_url}, looking for the AJAX path instead")
            api_match = AJAX_PATH_RE.search(html)
            if not api_match:
                raise StreamResolutionError("CTK extraction failed and no API URL found", debug)
            api_url = f"{base_url}/ajax/anime/{api_match.group(1)}"
            _record_step(debug, "api_url_extracted_directly")

        form = {"episode_id": episode}
        if ctk:
            form["ctk"] = ctk
        current_url = api_url
        api_res = await fetch_site(
            api_url,
            method="POST",
            data=form,
            headers={**AJAX_HEADERS, "Referer": episode_url, "Origin": base_url},
        )
        _record_step(debug, "api_response_received")

        embed_url = parse_embed_response(api_res.text)
        if not embed_url:
            direct = ABSOLUTE_M3U8_RE.search(normalize_script_text(api_res.text))
            if direct:
                _record_step(debug, "direct_m3u8_found_in_api")
                result = finish(direct.group(1), "api_direct")
                result.debug.duration_ms = int((time.monotonic() - start) * 1000)
                return result
            raise StreamResolutionError("Unable to extract embed URL", debug)

        embed_url = _absolute(embed_url, episode_url) or embed_url
        debug.embed_url = embed_url
        _record_step(debug, "embed_url_parsed")

        current_url = embed_url
        m3u8_url, source = await extract_m3u8_from_embed(client, embed_url, referer=episode_url, debug=debug)
        current_url = m3u8_url
        await validate_manifest_url(client, m3u8_url, embed_url, debug)
        result = finish(m3u8_url, source)

        if fetch_manifest:
            manifest_res = await fetch_with_retry(
                client,
                m3u8_url,
                headers={"Referer": embed_url, "Origin": origin_of(embed_url)},
            )
            result.m3u8_content = manifest_res.text
            _record_step(debug, "manifest_fetched")

        debug.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(f"Resolved {anime_slug}/{episode} via {server}: {m3u8_url}")
        return result

    except StreamResolutionError as e:
        debug.errors.append(e.message)
        debug.duration_ms = int((time.monotonic() - start) * 1000)
        logger.error(f"Stream resolution failed for {anime_slug}/{episode} at {e.last_step}: {e.message}")
        raise
    except HTTPStatusError as e:
        status_code = e.response.status_code
        message = f"HTTP {status_code} from {current_url}"
        debug.errors.append(message)
        debug.duration_ms = int((time.monotonic() - start) * 1000)
        logger.error(f"Stream resolution failed for {anime_slug}/{episode}: {message}")
        # A mirror check already ran during the request when failover was tried
        blocked = status_code == 403 and not failover_tried
        raise StreamResolutionError(message, debug, blocked=blocked) from e
    except RequestError as e:
        message = f"Network error while fetching {current_url}: {e}"
        debug.errors.append(message)
        debug.duration_ms = int((time.monotonic() - start) * 1000)
        logger.error(f"Stream resolution failed for {anime_slug}/{episode}: {message}")
        raise StreamResolutionError(message, debug, blocked=isinstance(e, ConnectError)) from e


async def resolve_watch_page(client: AsyncClient, watch_url: str) -> StreamResult:
    """Sniff a manifest URL out of a watch page, its scripts, or its first iframe."""
    start = time.monotonic()
    debug = StreamDebug(episode_url=watch_url)
    try:
        response = await fetch_with_retry(client, watch_url)
        _record_step(debug, "watch_page_loaded")
        html = response.text
        base_url = origin_of(str(response.url))

        m3u8_url = extract_m3u8_url(html, base_url)
        if not m3u8_url:
            m3u8_url = extract_m3u8_url(concatenated_scripts(html), base_url)
            if m3u8_url:
                _record_step(debug, "script_extraction")

        if not m3u8_url:
            iframe_url = extract_iframe_src(html, base_url)
            if iframe_url:
                debug.embed_url = iframe_url
                iframe_res = await fetch_with_retry(client, iframe_url, headers={"Referer": watch_url})
                _record_step(debug, "iframe_loaded")
                m3u8_url = extract_m3u8_url(iframe_res.text, str(iframe_res.url))

        if not m3u8_url:
            raise StreamResolutionError("Failed to extract stream: M3U8 URL not found", debug)
    except (HTTPStatusError, RequestError) as e:
        debug.errors.append(str(e))
        raise StreamResolutionError(f"Failed to extract stream: {e}", debug) from e
    finally:
        debug.duration_ms = int((time.monotonic() - start) * 1000)

    _record_step(debug, "m3u8_url_found")
    return StreamResult(success=True, source="watch_page", m3u8_url=m3u8_url, use_proxy=False, debug=debug)


# ---------------------------------------------------------------- single-pass helpers

def find_m3u8_sources(html: str) -> List[str]:
    soup = BeautifulSoup(html or "", "html.parser")
    sources: List[str] = []

    for script in soup.find_all("script"):
        content = script.string or script.get_text() or ""
        sources.extend(re.findall(r"(https?://[^\"'\s]+\.m3u8)", content))

    for source in soup.find_all("source"):
        src = source.get("src")
        if src and "m3u8" in src:
            sources.append(src)

    return list(dict.fromkeys(sources))


async def scrape_m3u8_sources(client: AsyncClient, url: str) -> M3U8Sources:
    if not url.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="URL must start with http:// or https://")

    logger.info(f"Scanning {url} for m3u8 sources")
    try:
        response = await client.get(url)
        response.raise_for_status()
    except (HTTPStatusError, RequestError) as e:
        raise upstream_http_exception(e, url)

    sources = find_m3u8_sources(response.text)
    if sources:
        return M3U8Sources(success=True, message="Found potential M3U8 sources", sources=sources)
    return M3U8Sources(
        success=False,
        message="No M3U8 sources found directly. Try analyzing network requests during video playback.",
    )


def analyze_playlist(text: str, url: str) -> PlaylistAnalysis:
    """Summarize an HLS playlist: variants for a master playlist, segments for a media one."""
    lines = [line.strip() for line in text.splitlines()]

    if any("#EXT-X-STREAM-INF" in line for line in lines):
        variants = []
        for index, line in enumerate(lines):
            if "#EXT-X-STREAM-INF" not in line:
                continue
            uri = next((candidate for candidate in lines[index + 1:] if candidate and not candidate.startswith("#")), None)
            if uri is None:
                continue
            resolution = re.search(r"RESOLUTION=(\d+x\d+)", line)
            bandwidth = re.search(r"BANDWIDTH=(\d+)", line)
            variants.append(PlaylistVariant(
                resolution=resolution.group(1) if resolution else "Unknown",
                bandwidth=bandwidth.group(1) if bandwidth else "Unknown",
                url=uri if uri.startswith("http") else urljoin(url, uri),
            ))
        return PlaylistAnalysis(type="Master Playlist", variant_count=len(variants), variants=variants)

    target_duration = re.search(r"#EXT-X-TARGETDURATION:(\d+)", text)
    return PlaylistAnalysis(
        type="Media Playlist",
        segment_count=sum(1 for line in lines if line.startswith("#EXTINF")),
        duration=target_duration.group(1) if target_duration else "Unknown",
    )


async def fetch_playlist_analysis(client: AsyncClient, url: str) -> PlaylistAnalysis:
    if not url.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="M3U8 URL is required")
    try:
        response = await client.get(url)
        response.raise_for_status()
    except (HTTPStatusError, RequestError) as e:
        raise upstream_http_exception(e, url, not_found_detail="Playlist not found")
    return analyze_playlist(response.text, str(response.url))


async def fetch_player_embed(client: AsyncClient, domains: DomainManager, server: str, episode: str) -> PlayerEmbed:
    api_url = f"{domains.base_url}/ajax/anime/load_episodes_v2?s={server}"
    try:
        response = await client.post(api_url, data={"episode_id": episode}, headers=AJAX_HEADERS)
        response.raise_for_status()
        data: Dict = response.json()
    except (HTTPStatusError, RequestError) as e:
        raise upstream_http_exception(e, api_url)
    except ValueError:
        logger.error(f"Player endpoint returned non-JSON for episode {episode}")
        raise HTTPException(status_code=502, detail="Invalid API response format")

    if not (data.get("status") and data.get("embed") and isinstance(data.get("value"), str)):
        logger.error(f"Response does not include a valid player embed: {data}")
        raise HTTPException(status_code=404, detail="Player not found in the response (status false).")

    iframe_html = data["value"].strip()
    iframe = BeautifulSoup(iframe_html, "html.parser").find("iframe")
    return PlayerEmbed(iframe_html=iframe_html, player_url=iframe.get("src") if iframe else None)
