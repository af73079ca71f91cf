# config.py
"""
Runtime settings for the scraper API.

Values come from environment variables; a local `.env` file is loaded
first when present so development setups don't need exported variables.
"""
import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


USER_AGENT = os.getenv(
    "USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
)
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "3"))
RETRY_DELAY = float(os.getenv("RETRY_DELAY", "2.0"))
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "15"))

# Mirrors tried in order when the active masteranime domain stops answering
MASTERANIME_DOMAINS = _get_list(
    "MASTERANIME_DOMAINS",
    ["masteranime.tv", "masterani.me", "anime-master.tv", "master-anime.cc"],
)
HLS_PROXY_URL = os.getenv("HLS_PROXY_URL", "https://hls.shrina.dev/proxy/")
# Fetch anime info pages through HLS_PROXY_URL instead of directly
FETCH_DETAILS_VIA_PROXY = _get_bool("FETCH_DETAILS_VIA_PROXY", False)

RENDER_EMBEDS = _get_bool("RENDER_EMBEDS", False)
RENDER_WAIT = float(os.getenv("RENDER_WAIT", "8"))

MANGAPILL_BASE_URL = os.getenv("MANGAPILL_BASE_URL", "https://mangapill.com")
MANGAFIRE_BASE_URL = os.getenv("MANGAFIRE_BASE_URL", "https://mangafire.to")
MANGADEX_API_URL = os.getenv("MANGADEX_API_URL", "https://api.mangadex.org")
ANILIST_API_URL = os.getenv("ANILIST_API_URL", "https://graphql.anilist.co")
ANIMEPAHE_BASE_URL = os.getenv("ANIMEPAHE_BASE_URL", "https://animepahe.ru")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
