# models.py
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class CamelModel(BaseModel):
    """Base for payloads whose JSON keys are camelCase (the upstream sites' naming)."""

    class Config:
        from_attributes = True
        populate_by_name = True


# ---------------------------------------------------------------- streams

class StreamDebug(BaseModel):
    steps: List[str] = Field(default_factory=list, description="Pipeline steps completed, in order")
    errors: List[str] = Field(default_factory=list, description="Non-fatal problems hit along the way")
    domain: Optional[str] = Field(default=None, description="Mirror domain used for the request")
    episode_url: Optional[str] = Field(default=None, description="Episode page URL")
    embed_url: Optional[str] = Field(default=None, description="Embed player URL returned by the AJAX endpoint")
    ctk: Optional[str] = Field(default=None, description="Masked CTK token")
    phpsessid: Optional[str] = Field(default=None, description="Masked session cookie")
    duration_ms: Optional[int] = Field(default=None, description="Time spent resolving")

    class Config:
        from_attributes = True


class StreamResult(BaseModel):
    success: bool = Field(True, description="Whether a manifest URL was found")
    source: str = Field(..., description="Which branch produced the URL: primary_flow, api_direct, alternate_method, watch_page")
    m3u8_url: str = Field(..., description="Resolved HLS manifest URL")
    proxied_url: Optional[str] = Field(default=None, description="Manifest URL routed through the HLS proxy")
    use_proxy: bool = Field(False, description="Whether proxied_url was requested")
    m3u8_content: Optional[str] = Field(default=None, description="Manifest body, when requested")
    debug: StreamDebug = Field(default_factory=StreamDebug, description="Resolution trace")

    class Config:
        from_attributes = True


class DomainStatus(BaseModel):
    active: str = Field(..., description="Domain currently used for masteranime requests")
    checking: bool = Field(False, description="Whether a mirror check is in progress")
    alternatives: List[str] = Field(default_factory=list, description="Mirror domains in failover order")


class StatusResponse(BaseModel):
    status: str = Field("online", description="Service status")
    version: str = Field(..., description="API version")
    domain: DomainStatus
    hls_proxy: str = Field(..., description="HLS proxy base URL")
    render_embeds: bool = Field(False, description="Whether headless rendering of embed pages is enabled")


class PlaylistVariant(BaseModel):
    resolution: str = Field("Unknown", description="Variant resolution, e.g. 1920x1080")
    bandwidth: str = Field("Unknown", description="Variant bandwidth in bits per second")
    url: str = Field(..., description="Absolute variant playlist URL")


class PlaylistAnalysis(CamelModel):
    success: bool = True
    type: str = Field(..., description="'Master Playlist' or 'Media Playlist'")
    variant_count: Optional[int] = Field(default=None, alias="variantCount")
    variants: Optional[List[PlaylistVariant]] = None
    segment_count: Optional[int] = Field(default=None, alias="segmentCount")
    duration: Optional[str] = Field(default=None, description="#EXT-X-TARGETDURATION value")


class M3U8Sources(BaseModel):
    success: bool = Field(..., description="Whether any manifest URL was found")
    message: str = Field(..., description="Human readable summary")
    sources: List[str] = Field(default_factory=list, description="Distinct manifest URLs in page order")


class PlayerEmbed(BaseModel):
    iframe_html: str = Field(..., description="Iframe markup returned by the AJAX endpoint")
    player_url: Optional[str] = Field(default=None, description="Iframe src")


# ---------------------------------------------------------------- anime details

class CoverImage(BaseModel):
    src: Optional[str] = None
    alt: Optional[str] = None


class AnimeEpisodeLink(CamelModel):
    episode_id: Optional[str] = Field(default=None, alias="episodeId", description="Path after /anime/watch/")
    episode_url: str = Field("", alias="episodeUrl")
    episode_text: str = Field("", alias="episodeText")


class AnimeDetails(CamelModel):
    id: str = Field(..., description="Anime id on masteranime")
    head_background: Optional[str] = Field(default=None, alias="headBackground")
    head_title: Optional[str] = Field(default=None, alias="headTitle")
    head_synonyms: Optional[str] = Field(default=None, alias="headSynonyms")
    head_genres: List[str] = Field(default_factory=list, alias="headGenres")
    details_cover: Optional[CoverImage] = Field(default=None, alias="detailsCover")
    description: str = Field("", description="Inner HTML of the synopsis paragraph")
    episodes: List[AnimeEpisodeLink] = Field(default_factory=list)
    success: bool = True
    scraped_at: str = Field(..., alias="scrapedAt")


# ---------------------------------------------------------------- manga (MangaPill / MangaFire)

class FeaturedManga(CamelModel):
    id: Optional[str] = Field(default=None, description="Manga path without /manga/")
    chapter_number: str = Field("", alias="chapterNumber")
    manga_id: Optional[str] = Field(default=None, alias="mangaID", description="Chapter path without /chapters/")
    manga_title: str = Field("", alias="mangaTitle")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    image_alt: Optional[str] = Field(default=None, alias="imageAlt")


class RecentChapter(CamelModel):
    id: Optional[str] = None
    chapter_number: str = Field(..., alias="chapterNumber")
    manga_id: str = Field(..., alias="mangaID")
    manga_title: str = Field(..., alias="mangaTitle")
    manga_title2: Optional[str] = Field(default=None, alias="mangaTitle2")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    image_alt: Optional[str] = Field(default=None, alias="imageAlt")
    published_at: Optional[str] = Field(default=None, alias="publishedAt")


class TrendingManga(CamelModel):
    id: str
    title: str
    alternative_title: Optional[str] = Field(default=None, alias="alternativeTitle")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    image_alt: Optional[str] = Field(default=None, alias="imageAlt")
    type: Optional[str] = None
    year: Optional[str] = None
    status: Optional[str] = None
    link: str


class MangaChapterLink(CamelModel):
    title: str
    link: Optional[str] = None
    full_title: Optional[str] = Field(default=None, alias="fullTitle")


class MangaPillDetails(CamelModel):
    title: str = ""
    image: Optional[str] = None
    description: str = ""
    type: str = ""
    status: str = ""
    year: str = ""
    genres: List[str] = Field(default_factory=list)
    chapters: List[MangaChapterLink] = Field(default_factory=list)
    total_chapters: int = Field(0, alias="totalChapters")


class MangaListResponse(BaseModel):
    success: bool = True
    count: int
    data: List[Any]


class MangaDetailsResponse(CamelModel):
    success: bool = True
    url: str
    manga_pill: MangaPillDetails = Field(..., alias="mangaPill")
    anilist: Optional[Dict[str, Any]] = None


class MangaFireChapter(BaseModel):
    title: str
    link: str


class SimilarManga(BaseModel):
    id: str
    name: str
    poster: Optional[str] = None


class MangaFireMangaInfo(CamelModel):
    title: Optional[str] = None
    alt_titles: Optional[str] = Field(default=None, alias="altTitles")
    poster: Optional[str] = None
    status: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None
    published: Optional[str] = None
    genres: List[str] = Field(default_factory=list)
    rating: Optional[str] = None
    chapters: List[MangaFireChapter] = Field(default_factory=list)


class MangaFireInfo(CamelModel):
    manga_info: MangaFireMangaInfo = Field(default_factory=MangaFireMangaInfo, alias="mangaInfo")
    related_manga: List[SimilarManga] = Field(default_factory=list, alias="relatedManga")
    similar_manga: List[SimilarManga] = Field(default_factory=list, alias="similarManga")


class MangaFireResponse(BaseModel):
    success: bool = True
    source: str = "MangaFire"
    url: str
    mangafire: MangaFireInfo
    anilist: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------- MangaDex

class MangaDexTag(BaseModel):
    id: str
    name: Dict[str, str] = Field(default_factory=dict)
    group: Optional[str] = None


class MangaDexManga(CamelModel):
    id: str
    title: Dict[str, str] = Field(default_factory=dict)
    alt_titles: List[Dict[str, str]] = Field(default_factory=list, alias="altTitles")
    description: Dict[str, str] = Field(default_factory=dict)
    status: Optional[str] = None
    publication_demographic: Optional[str] = Field(default=None, alias="publicationDemographic")
    content_rating: Optional[str] = Field(default=None, alias="contentRating")
    year: Optional[int] = None
    tags: List[MangaDexTag] = Field(default_factory=list)
    cover_url: Optional[str] = Field(default=None, alias="coverUrl")
    author: str = "Unknown"
    artist: str = "Unknown"
    original_language: Optional[str] = Field(default=None, alias="originalLanguage")
    available_translated_languages: List[Optional[str]] = Field(default_factory=list, alias="availableTranslatedLanguages")
    last_volume: Optional[str] = Field(default=None, alias="lastVolume")
    last_chapter: Optional[str] = Field(default=None, alias="lastChapter")
    links: Dict[str, str] = Field(default_factory=dict)
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")


class MangaDexListResponse(BaseModel):
    result: Optional[str] = None
    response: Optional[str] = None
    total: int = 0
    limit: int = 0
    offset: int = 0
    manga: List[MangaDexManga] = Field(default_factory=list)


class MangaDexMangaResponse(BaseModel):
    result: Optional[str] = None
    manga: MangaDexManga


class MangaDexSearchResponse(BaseModel):
    query: str
    total: int = 0
    results: List[MangaDexManga] = Field(default_factory=list)


class MangaDexChapter(CamelModel):
    id: str
    title: Optional[str] = None
    chapter: Optional[str] = None
    volume: Optional[str] = None
    pages: Optional[int] = None
    translated_language: Optional[str] = Field(default=None, alias="translatedLanguage")
    publish_at: Optional[str] = Field(default=None, alias="publishAt")
    readable_at: Optional[str] = Field(default=None, alias="readableAt")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")


class MangaDexChaptersResponse(CamelModel):
    manga_id: str = Field(..., alias="mangaId")
    total: int = 0
    chapters: List[MangaDexChapter] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error: str = Field(..., description="Error message")
    code: Optional[int] = Field(None, description="HTTP status code")
    details: Optional[str] = Field(None, description="Additional error details")

    class Config:
        from_attributes = True
