# mangadex.py
"""
Thin client for the public MangaDex REST API.

MangaDex nests everything under `attributes` and `relationships`; the
functions here flatten manga and chapter records into the API's models.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from fastapi import HTTPException
from httpx import AsyncClient, HTTPStatusError, RequestError

import config
from client import upstream_http_exception
from models import MangaDexChapter, MangaDexManga, MangaDexTag

logger = logging.getLogger(__name__)

MANGADEX_USER_AGENT = "MangaDX-Scraper/1.0"
MANGADEX_TIMEOUT = 10.0
MANGADEX_COVERS_URL = "https://uploads.mangadex.org/covers"
MAX_LIMIT = 100
MANGA_INCLUDES = ("cover_art", "author", "artist")

Params = List[Tuple[str, Any]]


def cap_limit(limit: int) -> int:
    if limit < 1:
        raise HTTPException(status_code=400, detail="limit must be a positive integer")
    return min(limit, MAX_LIMIT)


def _order_params(order: Dict[str, str]) -> Params:
    return [(f"order[{field}]", direction) for field, direction in order.items()]


def _list_params(name: str, values: Sequence[str]) -> Params:
    return [(f"{name}[]", value) for value in values]


def parse_order(order: Optional[str]) -> Dict[str, str]:
    """Parse the JSON `order` query value, e.g. '{"updatedAt": "desc"}'."""
    if not order:
        return {"updatedAt": "desc"}
    try:
        parsed = json.loads(order)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"order must be a JSON object, got: {order}")
    if not isinstance(parsed, dict):
        raise HTTPException(status_code=400, detail=f"order must be a JSON object, got: {order}")
    return {str(k): str(v) for k, v in parsed.items()}


async def mangadex_get(client: AsyncClient, endpoint: str, params: Optional[Params] = None) -> Dict[str, Any]:
    url = f"{config.MANGADEX_API_URL}{endpoint}"
    logger.info(f"MangaDex request: {endpoint}")
    try:
        response = await client.get(
            url,
            params=params or [],
            headers={"User-Agent": MANGADEX_USER_AGENT, "Accept": "application/json"},
            timeout=MANGADEX_TIMEOUT,
        )
        response.raise_for_status()
        return response.json()
    except (HTTPStatusError, RequestError) as e:
        raise upstream_http_exception(e, url, not_found_detail=f"MangaDex resource not found: {endpoint}")
    except ValueError as e:
        logger.error(f"Invalid JSON from MangaDex for {endpoint}: {e}")
        raise HTTPException(status_code=502, detail="MangaDex returned an invalid response")


def process_manga(manga: Dict[str, Any]) -> MangaDexManga:
    attributes = manga.get("attributes") or {}
    relationships = manga.get("relationships") or []

    def related(kind: str) -> Dict[str, Any]:
        for relation in relationships:
            if relation.get("type") == kind:
                return relation
        return {}

    cover_url = None
    cover_art = related("cover_art")
    if cover_art:
        file_name = (cover_art.get("attributes") or {}).get("fileName")
        cover_url = f"{MANGADEX_COVERS_URL}/{manga['id']}/{file_name}"

    tags = [
        MangaDexTag(
            id=tag["id"],
            name=(tag.get("attributes") or {}).get("name") or {},
            group=(tag.get("attributes") or {}).get("group"),
        )
        for tag in attributes.get("tags") or []
    ]

    return MangaDexManga(
        id=manga["id"],
        title=attributes.get("title") or {},
        alt_titles=attributes.get("altTitles") or [],
        description=attributes.get("description") or {},
        status=attributes.get("status"),
        publication_demographic=attributes.get("publicationDemographic"),
        content_rating=attributes.get("contentRating"),
        year=attributes.get("year"),
        tags=tags,
        cover_url=cover_url,
        author=(related("author").get("attributes") or {}).get("name") or "Unknown",
        artist=(related("artist").get("attributes") or {}).get("name") or "Unknown",
        original_language=attributes.get("originalLanguage"),
        available_translated_languages=attributes.get("availableTranslatedLanguages") or [],
        last_volume=attributes.get("lastVolume"),
        last_chapter=attributes.get("lastChapter"),
        links=attributes.get("links") or {},
        created_at=attributes.get("createdAt"),
        updated_at=attributes.get("updatedAt"),
    )


def process_chapter(chapter: Dict[str, Any]) -> MangaDexChapter:
    attributes = chapter.get("attributes") or {}
    return MangaDexChapter(
        id=chapter["id"],
        title=attributes.get("title"),
        chapter=attributes.get("chapter"),
        volume=attributes.get("volume"),
        pages=attributes.get("pages"),
        translated_language=attributes.get("translatedLanguage"),
        publish_at=attributes.get("publishAt"),
        readable_at=attributes.get("readableAt"),
        created_at=attributes.get("createdAt"),
        updated_at=attributes.get("updatedAt"),
    )


async def list_manga(
    client: AsyncClient,
    limit: int = 10,
    offset: int = 0,
    title: Optional[str] = None,
    status: Optional[str] = None,
    demographic: Optional[str] = None,
    content_rating: Optional[str] = None,
    tags: Optional[List[str]] = None,
    order: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    params: Params = [("limit", cap_limit(limit)), ("offset", max(offset, 0))]
    params += _order_params(order or {"updatedAt": "desc"})
    params += _list_params("includes", MANGA_INCLUDES)
    if title:
        params.append(("title", title))
    if status:
        params.append(("status[]", status))
    if demographic:
        params.append(("publicationDemographic[]", demographic))
    if content_rating:
        params.append(("contentRating[]", content_rating))
    if tags:
        params += _list_params("includedTags", tags)

    data = await mangadex_get(client, "/manga", params)
    return {
        "result": data.get("result"),
        "response": data.get("response"),
        "total": data.get("total", 0),
        "limit": data.get("limit", 0),
        "offset": data.get("offset", 0),
        "manga": [process_manga(m) for m in data.get("data") or []],
    }


async def get_manga(client: AsyncClient, manga_id: str) -> Dict[str, Any]:
    data = await mangadex_get(client, f"/manga/{manga_id}", _list_params("includes", MANGA_INCLUDES))
    if not data.get("data"):
        raise HTTPException(status_code=404, detail=f"Manga not found: {manga_id}")
    return {"result": data.get("result"), "manga": process_manga(data["data"])}


async def search_manga(client: AsyncClient, query: str, limit: int = 20) -> Dict[str, Any]:
    if not query or not query.strip():
        raise HTTPException(status_code=400, detail='Please provide a search query using the "q" parameter')
    params: Params = [("title", query), ("limit", cap_limit(limit))]
    params += _list_params("includes", MANGA_INCLUDES)
    params += _order_params({"relevance": "desc"})

    data = await mangadex_get(client, "/manga", params)
    return {
        "query": query,
        "total": data.get("total", 0),
        "results": [process_manga(m) for m in data.get("data") or []],
    }


async def get_chapters(
    client: AsyncClient,
    manga_id: str,
    limit: int = 20,
    offset: int = 0,
    languages: Optional[List[str]] = None,
) -> Dict[str, Any]:
    params: Params = [("manga", manga_id), ("limit", cap_limit(limit)), ("offset", max(offset, 0))]
    params += _list_params("translatedLanguage", languages or ["en"])
    params += _order_params({"chapter": "asc"})
    params += _list_params("includes", ("scanlation_group", "user"))

    data = await mangadex_get(client, "/chapter", params)
    return {
        "manga_id": manga_id,
        "total": data.get("total", 0),
        "chapters": [process_chapter(c) for c in data.get("data") or []],
    }


async def _ordered_with_chapters(client: AsyncClient, limit: int, order: Dict[str, str]) -> List[MangaDexManga]:
    params: Params = [("limit", cap_limit(limit)), ("hasAvailableChapters", "true")]
    params += _order_params(order)
    params += _list_params("includes", MANGA_INCLUDES)
    data = await mangadex_get(client, "/manga", params)
    return [process_manga(m) for m in data.get("data") or []]


async def popular(client: AsyncClient, limit: int = 20) -> List[MangaDexManga]:
    return await _ordered_with_chapters(client, limit, {"followedCount": "desc"})


async def recent(client: AsyncClient, limit: int = 20) -> List[MangaDexManga]:
    return await _ordered_with_chapters(client, limit, {"updatedAt": "desc"})
