# scraper.py
"""
HTML scrapers for catalogue pages:
- masteranime.tv: anime info pages (title, genres, cover, episode list)
- mangapill.com: featured, recent chapters, trending and manga detail pages
- mangafire.to: manga info pages
- graphql.anilist.co: metadata lookup used to enrich manga details

Parsers take raw HTML and return models; the async `scrape_*` functions
fetch the page and translate upstream failures into HTTPExceptions.
"""
import copy
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from bs4 import BeautifulSoup
from fastapi import HTTPException
from httpx import AsyncClient, HTTPStatusError, RequestError

import config
from client import DomainManager, upstream_http_exception
from models import (
    AnimeDetails,
    AnimeEpisodeLink,
    CoverImage,
    FeaturedManga,
    MangaChapterLink,
    MangaFireChapter,
    MangaFireInfo,
    MangaFireMangaInfo,
    MangaPillDetails,
    RecentChapter,
    SimilarManga,
    TrendingManga,
)

logger = logging.getLogger(__name__)

ANILIST_SEARCH_MANGA_QUERY = """
query ($search: String) {
  Media(search: $search, type: MANGA) {
    id
    title { romaji english native }
    description
    coverImage { large extraLarge }
    bannerImage
    genres
    tags { name }
    averageScore
    popularity
    status
    chapters
    volumes
    startDate { year month day }
    endDate { year month day }
    synonyms
    siteUrl
  }
}
"""


def _text(root, selector: str) -> str:
    """Concatenated text of every element matching selector."""
    return "".join(element.get_text() for element in root.select(selector)).strip()


def _first_text(root, selector: str) -> str:
    element = root.select_one(selector)
    return element.get_text().strip() if element else ""


def _image_src(root, selector: str = "img") -> Optional[str]:
    img = root.select_one(selector)
    if not img:
        return None
    return img.get("src") or img.get("data-src")


def _strip_prefix(value: Optional[str], prefix: str) -> Optional[str]:
    if not value:
        return None
    return value.replace(prefix, "", 1) if value.startswith(prefix) else value


async def fetch_html(client: AsyncClient, url: str, not_found_detail: Optional[str] = None) -> str:
    logger.info(f"Scraping URL: {url}")
    try:
        response = await client.get(url)
        response.raise_for_status()
    except (HTTPStatusError, RequestError) as e:
        raise upstream_http_exception(e, url, not_found_detail)
    if not response.text:
        logger.warning(f"Empty response from {url}")
    return response.text


# ---------------------------------------------------------------- masteranime

def parse_anime_details(html: str, anime_id: str) -> AnimeDetails:
    soup = BeautifulSoup(html, "html.parser")

    head_background = None
    head_title = None
    head_synonyms = None
    head_genres: List[str] = []

    head = soup.select_one("#head")
    if head:
        bg_match = re.search(r"background-image:\s*url\(([^)]+)\)", head.get("style", ""))
        head_background = bg_match.group(1).strip("'\" ") if bg_match else None

        h1 = head.find("h1")
        if h1:
            # Title text without the nested links and the synonyms line
            title_only = copy.copy(h1)
            for child in title_only.find_all(["a", "small"]):
                child.decompose()
            head_title = title_only.get_text().strip()
            synonyms = h1.find("small")
            head_synonyms = synonyms.get_text().strip() if synonyms else ""

        for item in head.select(".ui.tag.horizontal.list a.item"):
            genre = item.get_text().strip()
            if genre:
                head_genres.append(genre)
    else:
        logger.warning(f"No #head element found for anime {anime_id}")

    details_cover = None
    details = soup.select_one("#details")
    if details:
        cover = details.select_one(".cover img")
        if cover:
            details_cover = CoverImage(src=cover.get("src"), alt=cover.get("alt"))
        else:
            logger.warning(f"No cover image found for anime {anime_id}")
    else:
        logger.warning(f"No #details element found for anime {anime_id}")

    episodes = []
    for thumbnail in soup.select(".ui.four.thumbnails .thumbnail.blur"):
        anchor = thumbnail.select_one("a.title")
        episode_url = anchor.get("href", "") if anchor else ""
        episode_text = _first_text(anchor, ".limit") if anchor else ""
        episode_id = None
        if "/anime/watch/" in episode_url:
            episode_id = episode_url.split("/anime/watch/", 1)[1]
        episodes.append(AnimeEpisodeLink(episode_id=episode_id, episode_url=episode_url, episode_text=episode_text))
    if not episodes:
        logger.warning(f"No episodes found for anime {anime_id}")

    description = ""
    for paragraph in soup.find_all("p"):
        if len(paragraph.get_text().strip()) > 50:
            description = paragraph.decode_contents().strip()
            break
    if not description:
        logger.warning(f"No description found for anime {anime_id}")

    return AnimeDetails(
        id=anime_id,
        head_background=head_background,
        head_title=head_title,
        head_synonyms=head_synonyms,
        head_genres=head_genres,
        details_cover=details_cover,
        description=description,
        episodes=episodes,
        scraped_at=datetime.now(timezone.utc).isoformat(),
    )


async def scrape_anime_details(anime_id: str, client: AsyncClient, domains: DomainManager) -> AnimeDetails:
    anime_id = anime_id.strip().strip("/")
    if not anime_id:
        raise HTTPException(status_code=400, detail="Anime id cannot be empty")

    url = f"{domains.base_url}/anime/info/{anime_id}"
    if config.FETCH_DETAILS_VIA_PROXY:
        url = f"{config.HLS_PROXY_URL}{quote(url, safe='')}"

    html = await fetch_html(
        client, url, not_found_detail="Anime not found. The ID may be invalid or the content has been removed."
    )
    try:
        details = parse_anime_details(html, anime_id)
    except Exception as e:
        logger.exception(f"Failed to parse anime details for {anime_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Scraping error: {str(e)}")
    logger.info(f"Successfully scraped data for ID: {anime_id}")
    return details


# ---------------------------------------------------------------- MangaPill

def parse_featured_manga(html: str) -> List[FeaturedManga]:
    soup = BeautifulSoup(html, "html.parser")
    manga_list = []

    for card in soup.select(".featured-grid .rounded"):
        manga_link = card.select_one('a[href^="/manga/"]')
        first_link = card.find("a")
        img = card.find("img")
        manga_list.append(FeaturedManga(
            id=_strip_prefix(manga_link.get("href") if manga_link else None, "/manga/"),
            chapter_number=_text(card, ".text-lg.font-black"),
            manga_id=_strip_prefix(first_link.get("href") if first_link else None, "/chapters/"),
            manga_title=_text(card, ".text-secondary"),
            image_url=(img.get("src") or img.get("data-src")) if img else None,
            image_alt=img.get("alt") if img else None,
        ))
    return manga_list


def parse_recent_chapters(html: str) -> List[RecentChapter]:
    soup = BeautifulSoup(html, "html.parser")
    chapters = []
    seen = set()

    for row in soup.select(".grid > div, .space-y-2 > div"):
        chapter_link = row.select_one('a[href^="/chapters/"]')
        if not chapter_link:
            continue
        chapter_href = chapter_link.get("href")
        if chapter_href in seen:
            continue
        seen.add(chapter_href)

        chapter_number = _first_text(row, ".text-lg.font-black")
        title_parts = re.split(r"\n\s+", _first_text(row, ".text-secondary"))
        manga_title = title_parts[0] if title_parts else ""
        manga_title2 = title_parts[1] if len(title_parts) > 1 else None

        manga_link = row.select_one('a[href^="/manga/"]')
        time_ago = row.find("time-ago")

        if not (chapter_number and manga_title):
            continue
        chapters.append(RecentChapter(
            id=_strip_prefix(manga_link.get("href") if manga_link else None, "/manga/"),
            chapter_number=chapter_number,
            manga_id=_strip_prefix(chapter_href, "/chapters/"),
            manga_title=manga_title,
            manga_title2=manga_title2 or None,
            image_url=_image_src(row),
            image_alt=row.find("img").get("alt") if row.find("img") else None,
            published_at=time_ago.get("datetime") if time_ago else None,
        ))
    return chapters


def parse_trending_manga(html: str) -> List[TrendingManga]:
    soup = BeautifulSoup(html, "html.parser")
    trending = []
    seen = set()

    for card in soup.select(".grid > div"):
        manga_link = card.select_one('a[href^="/manga/"]')
        link = manga_link.get("href") if manga_link else None
        if not link or link in seen:
            continue
        seen.add(link)

        title = _text(card, ".font-black.leading-tight")
        alternative_title = _text(card, ".text-xs.text-secondary")

        if not title or "#" in title or len(title) < 2:
            logger.warning(f"Skipping entry with corrupted title: {title}")
            continue
        if alternative_title and (re.match(r"^\d{4}-\d{2}-\d{2}", alternative_title) or "#" in alternative_title):
            logger.warning(f"Skipping entry with corrupted alternativeTitle: {alternative_title}")
            continue

        tags = [tag.get_text().strip() for tag in card.select(".text-xs.leading-5.font-semibold") if tag.get_text().strip()]
        img = card.find("img")
        trending.append(TrendingManga(
            id=_strip_prefix(link, "/manga/"),
            title=title,
            alternative_title=alternative_title or None,
            image_url=(img.get("src") or img.get("data-src")) if img else None,
            image_alt=img.get("alt") if img else None,
            type=tags[0] if len(tags) > 0 else None,
            year=tags[1] if len(tags) > 1 else None,
            status=tags[2] if len(tags) > 2 else None,
            link=link,
        ))
    return trending


def parse_manga_details(html: str) -> MangaPillDetails:
    soup = BeautifulSoup(html, "html.parser")

    chapters = [
        MangaChapterLink(title=a.get_text().strip(), link=a.get("href"), full_title=a.get("title"))
        for a in soup.select('#chapters a[href^="/chapters/"]')
    ]
    return MangaPillDetails(
        title=_text(soup, "h1"),
        image=_image_src(soup, ".flex-shrink-0 img"),
        description=_text(soup, ".text-sm.text--secondary"),
        type=_text(soup, ".grid.grid-cols-1 > div:nth-child(1) > div"),
        status=_text(soup, ".grid.grid-cols-1 > div:nth-child(2) > div"),
        year=_text(soup, ".grid.grid-cols-1 > div:nth-child(3) > div"),
        genres=[a.get_text().strip() for a in soup.select('a[href^="/search?genre="]')],
        chapters=chapters,
        total_chapters=len(chapters),
    )


async def scrape_url(client: AsyncClient, url: Optional[str] = None) -> List[FeaturedManga]:
    url = url or f"{config.MANGAPILL_BASE_URL}/"
    if not url.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="URL must start with http:// or https://")
    html = await fetch_html(client, url)
    manga = parse_featured_manga(html)
    logger.info(f"Scraped {len(manga)} featured manga from {url}")
    return manga


async def scrape_recent_chapters(client: AsyncClient) -> List[RecentChapter]:
    html = await fetch_html(client, f"{config.MANGAPILL_BASE_URL}/chapters")
    chapters = parse_recent_chapters(html)
    logger.info(f"Scraped {len(chapters)} recent chapters")
    return chapters


async def scrape_trending_manga(client: AsyncClient) -> List[TrendingManga]:
    html = await fetch_html(client, f"{config.MANGAPILL_BASE_URL}/")
    trending = parse_trending_manga(html)
    logger.info(f"Scraped {len(trending)} trending manga")
    return trending


async def scrape_manga_details(manga_id: str, client: AsyncClient) -> MangaPillDetails:
    url = f"{config.MANGAPILL_BASE_URL}/manga/{manga_id.strip('/')}"
    html = await fetch_html(client, url, not_found_detail=f"Manga not found: {manga_id}")
    return parse_manga_details(html)


# ---------------------------------------------------------------- MangaFire

def parse_mangafire_info(html: str) -> MangaFireInfo:
    soup = BeautifulSoup(html, "html.parser")
    info = MangaFireMangaInfo()

    title_tag = soup.select_one('h1[itemprop="name"]')
    if title_tag:
        info.title = title_tag.get_text().strip() or None
        alt_titles = "".join(h6.get_text() for h6 in title_tag.find_next_siblings("h6")).strip()
        info.alt_titles = alt_titles or None

    poster = soup.select_one(".poster img")
    info.poster = poster.get("src", "").strip() or None if poster else None
    info.status = _first_text(soup, ".info > p") or None
    info.type = _first_text(soup, ".min-info a") or None
    info.description = _text(soup, ".description").replace("Read more +", "").strip() or None
    info.author = _text(soup, '.meta div:-soup-contains("Author:") a') or None
    info.published = _text(soup, '.meta div:-soup-contains("Published:")').replace("Published:", "").strip() or None
    info.rating = _text(soup, ".rating-box .live-score") or None

    for genre in soup.select('.meta div:-soup-contains("Genres:") a'):
        name = genre.get_text().strip()
        if name:
            info.genres.append(name)

    for chapter in soup.select('#chapters-list a[href*="/read/"]'):
        chapter_title = chapter.get_text().strip()
        chapter_link = chapter.get("href")
        if chapter_title and chapter_link:
            info.chapters.append(MangaFireChapter(title=chapter_title, link=chapter_link))

    similar = []
    for unit in soup.select("section.side-manga.default-style div.original.card-sm.body a.unit"):
        href = unit.get("href") or ""
        manga_id = href.split("/")[-1] or None
        name = _text(unit, ".info h6") or None
        if manga_id and name:
            poster_img = unit.select_one(".poster img")
            similar.append(SimilarManga(
                id=manga_id,
                name=name,
                poster=(poster_img.get("src") or "").strip() or None if poster_img else None,
            ))

    return MangaFireInfo(manga_info=info, related_manga=[], similar_manga=similar)


async def scrape_mangafire_info(manga_id: str, client: AsyncClient) -> MangaFireInfo:
    url = f"{config.MANGAFIRE_BASE_URL}/manga/{manga_id.strip('/')}"
    html = await fetch_html(client, url, not_found_detail=f"Manga not found: {manga_id}")
    try:
        return parse_mangafire_info(html)
    except Exception as e:
        logger.exception(f"Error scraping MangaFire: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to scrape MangaFire: {str(e)}")


# ---------------------------------------------------------------- AniList

async def search_anilist(client: AsyncClient, title: Optional[str]) -> Optional[Dict[str, Any]]:
    """Look a manga up on AniList. Metadata is optional, so failures return None."""
    if not title:
        return None
    try:
        response = await client.post(
            config.ANILIST_API_URL,
            json={"query": ANILIST_SEARCH_MANGA_QUERY, "variables": {"search": title}},
            headers={"Accept": "application/json", "Content-Type": "application/json"},
        )
        response.raise_for_status()
        payload = response.json()
    except (HTTPStatusError, RequestError, ValueError) as e:
        logger.error(f"Error fetching from AniList for '{title}': {e}")
        return None
    return (payload.get("data") or {}).get("Media")
