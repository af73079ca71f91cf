#  app.py
import logging
import re
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Path, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from httpx import AsyncClient, HTTPStatusError, RequestError
from starlette.background import BackgroundTask

import config
import mangadex
from animepahe import fetch_links
from client import domain_manager, get_http_client, upstream_http_exception
from models import (
    AnimeDetails,
    DomainStatus,
    ErrorResponse,
    M3U8Sources,
    MangaDetailsResponse,
    MangaDexChaptersResponse,
    MangaDexListResponse,
    MangaDexManga,
    MangaDexMangaResponse,
    MangaDexSearchResponse,
    MangaFireResponse,
    MangaListResponse,
    PlaylistAnalysis,
    StatusResponse,
    StreamResult,
)
from resolver import (
    StreamResolutionError,
    fetch_player_embed,
    fetch_playlist_analysis,
    generate_proxied_url,
    resolve_episode_stream,
    resolve_watch_page,
    scrape_m3u8_sources,
)
from scraper import (
    scrape_anime_details,
    scrape_manga_details,
    scrape_mangafire_info,
    scrape_recent_chapters,
    scrape_trending_manga,
    scrape_url,
    search_anilist,
)

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

VERSION = "1.2.0"
DEFAULT_WATCH_URL = "https://gojo.wtf/watch/185736?ep=1&provider=zaza&subType=sub"
SLUG_RE = re.compile(r"^[\w.-]+$")

# Initialize FastAPI app
app = FastAPI(
    title="Anime & Manga Scraper API",
    description="Resolves HLS streams for masteranime episodes and scrapes anime/manga metadata from masteranime, MangaPill, MangaFire, MangaDex and AniList.",
    version=VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

STREAM_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing or invalid slug/episode"},
    500: {"description": "Stream resolution failed; body carries the step trace"},
}

SCRAPE_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid parameter"},
    404: {"model": ErrorResponse, "description": "Not found at the source"},
    500: {"model": ErrorResponse, "description": "Internal server error"},
    502: {"model": ErrorResponse, "description": "Failed to fetch data from source"},
    503: {"model": ErrorResponse, "description": "Network error"},
}


def stream_error_response(error: StreamResolutionError) -> JSONResponse:
    """500 body with the step trace; a blocked upstream also re-checks the mirrors in the background."""
    debug = error.debug.model_dump()
    debug["error_step"] = error.last_step
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": error.message,
            "domain_status": {"current": domain_manager.active, "checking": domain_manager.checking},
            "debug": debug,
        },
        background=BackgroundTask(domain_manager.refresh) if error.blocked else None,
    )


def validate_slug(value: str, name: str) -> str:
    value = value.strip().strip("/")
    if not value or not SLUG_RE.match(value):
        raise HTTPException(status_code=400, detail=f"{name} cannot be empty or invalid")
    return value


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Anime & Manga Scraper API",
        "version": VERSION,
        "endpoints": {
            "streams": {
                "resolve": "/get-m3u8?slug={anime_slug}&episode={episode_id}&proxy={true|false}&server={server}",
                "resolve_by_path": "/get-m3u8/{server}/{anime_slug}/{episode}",
                "proxy": "/proxy?url={m3u8_url}",
                "player": "/get-player?episode={episode_id}&server={server}",
                "watch_page": "/watch-stream?url={watch_url}&manifest={true|false}",
                "scrape": "POST /scrape {url}",
                "analyze": "/analyze-m3u8?url={m3u8_url}",
                "animepahe": "/animepahe/links?id={session}&p={provider}",
            },
            "anime": {
                "details": "/details/{id}",
            },
            "manga": {
                "featured": "/featured-mangas",
                "scrape_url": "/scrape-url?url={url}",
                "details": "/manga-details?id={id}",
                "recent_chapters": "/recent-chapters",
                "trending": "/trending-mangas",
                "mangafire": "/mangafire-info?id={id}",
            },
            "mangadex": {
                "list": "/api/manga",
                "detail": "/api/manga/{id}",
                "search": "/api/search?q={query}",
                "chapters": "/api/manga/{id}/chapters",
                "popular": "/api/popular",
                "recent": "/api/recent",
            },
            "service": {
                "health": "/health",
                "status": "/status?refresh={true|false}",
            },
        },
        "documentation": "/docs",
    }


@app.get("/health", tags=["Root"])
async def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "config": {
            "domain": domain_manager.active,
            "hls_proxy": config.HLS_PROXY_URL,
            "details_via_proxy": config.FETCH_DETAILS_VIA_PROXY,
            "render_embeds": config.RENDER_EMBEDS,
            "request": {"retries": config.MAX_RETRIES, "timeout": config.REQUEST_TIMEOUT},
        },
    }


@app.get(
    "/status",
    response_model=StatusResponse,
    tags=["Root"],
    summary="Service and mirror status",
    description="Reports the active masteranime mirror. `?refresh=true` re-checks every mirror first.",
)
async def status(
    refresh: bool = Query(False, description="Re-check mirrors before answering"),
    client: AsyncClient = Depends(get_http_client),
):
    if refresh:
        await domain_manager.refresh(client)
    return StatusResponse(
        version=VERSION,
        domain=DomainStatus(**domain_manager.status()),
        hls_proxy=config.HLS_PROXY_URL,
        render_embeds=config.RENDER_EMBEDS,
    )


# ---------------------------------------------------------------- streams

@app.get(
    "/get-m3u8",
    response_model=StreamResult,
    responses=STREAM_ERROR_RESPONSES,
    tags=["Streams"],
    summary="Resolve an episode's HLS manifest",
    description="Runs session → CTK → AJAX embed → manifest extraction on the active mirror. "
    "Accepts `slug=animeSlug&episode=id` or `slug=animeSlug/id`. Example: `?slug=detective-conan-sub.57016&episode=195390`",
)
async def get_m3u8(
    slug: Optional[str] = Query(None, description="Anime slug, or 'animeSlug/episode'"),
    episode: Optional[str] = Query(None, description="Episode id"),
    proxy: bool = Query(True, description="Also return the URL routed through the HLS proxy"),
    server: str = Query("tserver", description="Player server name"),
    manifest: bool = Query(False, description="Include the manifest body"),
    client: AsyncClient = Depends(get_http_client),
):
    if not slug or not slug.strip():
        raise HTTPException(status_code=400, detail="Missing slug parameter. Expected format: animeSlug/episode")

    slug = slug.strip().strip("/")
    if not episode and "/" in slug:
        slug, episode = slug.rsplit("/", 1)
    if not episode:
        raise HTTPException(status_code=400, detail="Invalid slug format. Expected format: animeSlug/episode")

    anime_slug = validate_slug(slug, "Anime slug")
    episode = validate_slug(episode, "Episode")
    try:
        return await resolve_episode_stream(
            client, domain_manager, server, anime_slug, episode, use_proxy=proxy, fetch_manifest=manifest
        )
    except StreamResolutionError as e:
        return stream_error_response(e)


@app.get(
    "/get-m3u8/{server}/{anime_slug}/{episode}",
    response_model=StreamResult,
    responses=STREAM_ERROR_RESPONSES,
    tags=["Streams"],
    summary="Resolve an episode's HLS manifest on a given server",
    description="Path form of /get-m3u8. Example: `/get-m3u8/vhserver/detective-conan-sub.57016/195390`",
)
async def get_m3u8_by_path(
    server: str = Path(..., description="Player server name"),
    anime_slug: str = Path(..., description="Anime slug"),
    episode: str = Path(..., description="Episode id"),
    proxy: bool = Query(True, description="Also return the URL routed through the HLS proxy"),
    client: AsyncClient = Depends(get_http_client),
):
    server = validate_slug(server, "Server")
    anime_slug = validate_slug(anime_slug, "Anime slug")
    episode = validate_slug(episode, "Episode")
    try:
        return await resolve_episode_stream(client, domain_manager, server, anime_slug, episode, use_proxy=proxy)
    except StreamResolutionError as e:
        return stream_error_response(e)


@app.get(
    "/proxy",
    status_code=307,
    responses={400: {"model": ErrorResponse, "description": "Missing URL parameter"}},
    tags=["Streams"],
    summary="Redirect to the HLS proxy",
)
async def proxy(url: Optional[str] = Query(None, description="Manifest URL to proxy")):
    if not url or not url.strip():
        raise HTTPException(status_code=400, detail="Missing URL parameter")
    return RedirectResponse(generate_proxied_url(url.strip()), status_code=307)


@app.get(
    "/get-player",
    response_class=HTMLResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Player not found in the response"},
        502: {"model": ErrorResponse, "description": "Invalid API response"},
        503: {"model": ErrorResponse, "description": "Network error"},
    },
    tags=["Streams"],
    summary="Full-page HTML wrapper around an episode's player iframe",
)
async def get_player(
    episode: str = Query(..., description="Episode id"),
    server: str = Query("hserver", description="Player server name"),
    client: AsyncClient = Depends(get_http_client),
):
    embed = await fetch_player_embed(client, domain_manager, server, validate_slug(episode, "Episode"))
    return HTMLResponse(f"""<html>
  <head>
    <title>Embedded Player</title>
    <style>
      html, body {{ margin: 0; height: 100%; }}
      iframe {{ width: 100%; height: 100%; border: none; }}
    </style>
  </head>
  <body>
    {embed.iframe_html}
  </body>
</html>""")


@app.get(
    "/watch-stream",
    response_model=StreamResult,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid watch URL"},
        500: {"description": "No manifest found; body carries the step trace"},
        502: {"model": ErrorResponse, "description": "Failed to fetch the manifest"},
    },
    tags=["Streams"],
    summary="Find the HLS manifest behind a watch page",
    description="Scans the page, its scripts and its first iframe. `manifest=true` returns the playlist itself.",
)
async def watch_stream(
    url: str = Query(DEFAULT_WATCH_URL, description="Watch page URL"),
    manifest: bool = Query(False, description="Return the manifest body instead of JSON"),
    client: AsyncClient = Depends(get_http_client),
):
    if not url.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="URL must start with http:// or https://")
    try:
        result = await resolve_watch_page(client, url)
    except StreamResolutionError as e:
        return stream_error_response(e)

    if not manifest:
        return result
    try:
        playlist = await client.get(result.m3u8_url, headers={"Referer": url})
        playlist.raise_for_status()
    except (HTTPStatusError, RequestError) as e:
        raise upstream_http_exception(e, result.m3u8_url, not_found_detail="Playlist not found")
    return Response(content=playlist.text, media_type="application/vnd.apple.mpegurl")


@app.post(
    "/scrape",
    response_model=M3U8Sources,
    responses=SCRAPE_ERROR_RESPONSES,
    tags=["Streams"],
    summary="Collect m3u8 URLs referenced by a page",
)
async def scrape_sources(request: Request, client: AsyncClient = Depends(get_http_client)):
    """Accepts the page URL as a form field or as a JSON body `{"url": ...}`."""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            payload = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Request body is not valid JSON")
        if not isinstance(payload, dict):
            payload = {}
    else:
        payload = await request.form()

    url = payload.get("url")
    if not isinstance(url, str) or not url.strip():
        raise HTTPException(status_code=400, detail="URL is required")
    return await scrape_m3u8_sources(client, url.strip())


@app.get(
    "/analyze-m3u8",
    response_model=PlaylistAnalysis,
    responses=SCRAPE_ERROR_RESPONSES,
    tags=["Streams"],
    summary="Summarize a master or media playlist",
)
async def analyze_m3u8(
    url: Optional[str] = Query(None, description="Playlist URL"),
    client: AsyncClient = Depends(get_http_client),
):
    if not url:
        raise HTTPException(status_code=400, detail="M3U8 URL is required")
    return await fetch_playlist_analysis(client, url.strip())


@app.get(
    "/animepahe/links",
    responses=SCRAPE_ERROR_RESPONSES,
    tags=["Streams"],
    summary="animepahe episode links",
    description="Proxies `/api?m=links`. A DDoS-Guard challenge is reported as 502 with its parameters.",
)
async def animepahe_links(
    id: str = Query(..., description="Episode session id"),
    p: str = Query("kwik", description="Link provider"),
    client: AsyncClient = Depends(get_http_client),
):
    return await fetch_links(client, id, provider=p)


# ---------------------------------------------------------------- anime details

@app.get(
    "/details/{id}",
    response_model=AnimeDetails,
    responses=SCRAPE_ERROR_RESPONSES,
    tags=["Anime"],
    summary="Anime info page",
    description="Scrapes masteranime /anime/info/{id}: title, synonyms, genres, cover, description and episodes.",
)
async def get_anime_details(
    id: str = Path(..., description="masteranime anime id"),
    client: AsyncClient = Depends(get_http_client),
):
    return await scrape_anime_details(validate_slug(id, "Anime id"), client, domain_manager)


# ---------------------------------------------------------------- MangaPill / MangaFire

@app.get(
    "/featured-mangas",
    response_model=MangaListResponse,
    responses=SCRAPE_ERROR_RESPONSES,
    tags=["Manga"],
    summary="Featured manga on the MangaPill home page",
)
async def featured_mangas(client: AsyncClient = Depends(get_http_client)):
    manga = await scrape_url(client)
    return MangaListResponse(count=len(manga), data=manga)


@app.get(
    "/scrape-url",
    response_model=MangaListResponse,
    responses=SCRAPE_ERROR_RESPONSES,
    tags=["Manga"],
    summary="Run the featured-manga parser on any page",
)
async def scrape_any_url(
    url: str = Query(..., description="Page URL (http/https)"),
    client: AsyncClient = Depends(get_http_client),
):
    manga = await scrape_url(client, url.strip())
    return MangaListResponse(count=len(manga), data=manga)


@app.get(
    "/manga-details",
    response_model=MangaDetailsResponse,
    responses=SCRAPE_ERROR_RESPONSES,
    tags=["Manga"],
    summary="MangaPill manga page, enriched with AniList metadata",
    description="Example: `?id=2/one-piece`",
)
async def manga_details(
    id: str = Query(..., description="MangaPill manga path, e.g. 2/one-piece"),
    client: AsyncClient = Depends(get_http_client),
):
    if not id.strip().strip("/"):
        raise HTTPException(status_code=400, detail="Manga ID is required")
    manga_id = id.strip().strip("/")
    details = await scrape_manga_details(manga_id, client)
    anilist = await search_anilist(client, details.title)
    return MangaDetailsResponse(
        url=f"{config.MANGAPILL_BASE_URL}/manga/{manga_id}",
        manga_pill=details,
        anilist=anilist,
    )


@app.get(
    "/recent-chapters",
    response_model=MangaListResponse,
    responses=SCRAPE_ERROR_RESPONSES,
    tags=["Manga"],
    summary="Recently released MangaPill chapters",
)
async def recent_chapters(client: AsyncClient = Depends(get_http_client)):
    chapters = await scrape_recent_chapters(client)
    return MangaListResponse(count=len(chapters), data=chapters)


@app.get(
    "/trending-mangas",
    response_model=MangaListResponse,
    responses=SCRAPE_ERROR_RESPONSES,
    tags=["Manga"],
    summary="Trending manga on MangaPill",
)
async def trending_mangas(client: AsyncClient = Depends(get_http_client)):
    trending = await scrape_trending_manga(client)
    return MangaListResponse(count=len(trending), data=trending)


@app.get(
    "/mangafire-info",
    response_model=MangaFireResponse,
    responses=SCRAPE_ERROR_RESPONSES,
    tags=["Manga"],
    summary="MangaFire manga page, enriched with AniList metadata",
    description="Example: `?id=one-piecee.dkw`",
)
async def mangafire_info(
    id: str = Query(..., description="MangaFire manga id"),
    client: AsyncClient = Depends(get_http_client),
):
    manga_id = id.strip().strip("/")
    if not manga_id:
        raise HTTPException(status_code=400, detail="Manga ID is required")
    info = await scrape_mangafire_info(manga_id, client)
    anilist = await search_anilist(client, info.manga_info.title)
    return MangaFireResponse(
        url=f"{config.MANGAFIRE_BASE_URL}/manga/{manga_id}",
        mangafire=info,
        anilist=anilist,
    )


# ---------------------------------------------------------------- MangaDex

@app.get(
    "/api/manga",
    response_model=MangaDexListResponse,
    responses=SCRAPE_ERROR_RESPONSES,
    tags=["MangaDex"],
    summary="List manga with optional filters",
)
async def list_manga(
    limit: int = Query(10, ge=1, description="Number of results (max 100)"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
    title: Optional[str] = Query(None),
    status: Optional[str] = Query(None, description="ongoing, completed, hiatus, cancelled"),
    publicationDemographic: Optional[str] = Query(None, description="shounen, shoujo, josei, seinen"),
    contentRating: Optional[str] = Query(None, description="safe, suggestive, erotica, pornographic"),
    tags: Optional[List[str]] = Query(None, description="Included tag ids"),
    order: Optional[str] = Query(None, description='JSON object, e.g. {"updatedAt": "desc"}'),
    client: AsyncClient = Depends(get_http_client),
):
    return await mangadex.list_manga(
        client,
        limit=limit,
        offset=offset,
        title=title,
        status=status,
        demographic=publicationDemographic,
        content_rating=contentRating,
        tags=tags,
        order=mangadex.parse_order(order),
    )


@app.get(
    "/api/manga/{id}",
    response_model=MangaDexMangaResponse,
    responses=SCRAPE_ERROR_RESPONSES,
    tags=["MangaDex"],
    summary="One manga by id",
)
async def get_manga(id: str = Path(...), client: AsyncClient = Depends(get_http_client)):
    return await mangadex.get_manga(client, id)


@app.get(
    "/api/search",
    response_model=MangaDexSearchResponse,
    responses=SCRAPE_ERROR_RESPONSES,
    tags=["MangaDex"],
    summary="Search manga by title",
)
async def search_manga(
    q: Optional[str] = Query(None, description="Search query"),
    limit: int = Query(20, ge=1),
    client: AsyncClient = Depends(get_http_client),
):
    return await mangadex.search_manga(client, q or "", limit=limit)


@app.get(
    "/api/manga/{id}/chapters",
    response_model=MangaDexChaptersResponse,
    responses=SCRAPE_ERROR_RESPONSES,
    tags=["MangaDex"],
    summary="Chapters of a manga, ascending",
)
async def get_manga_chapters(
    id: str = Path(...),
    limit: int = Query(20, ge=1),
    offset: int = Query(0, ge=0),
    translatedLanguage: List[str] = Query(["en"]),
    client: AsyncClient = Depends(get_http_client),
):
    return await mangadex.get_chapters(client, id, limit=limit, offset=offset, languages=translatedLanguage)


@app.get("/api/popular", responses=SCRAPE_ERROR_RESPONSES, tags=["MangaDex"], summary="Most followed manga")
async def popular_manga(limit: int = Query(20, ge=1), client: AsyncClient = Depends(get_http_client)):
    manga: List[MangaDexManga] = await mangadex.popular(client, limit=limit)
    return {"popular": [m.model_dump(by_alias=True) for m in manga]}


@app.get("/api/recent", responses=SCRAPE_ERROR_RESPONSES, tags=["MangaDex"], summary="Recently updated manga")
async def recent_manga(limit: int = Query(20, ge=1), client: AsyncClient = Depends(get_http_client)):
    manga: List[MangaDexManga] = await mangadex.recent(client, limit=limit)
    return {"recent": [m.model_dump(by_alias=True) for m in manga]}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app:app", host=config.HOST, port=config.PORT)
