import httpx
import pytest

import config
from client import domain_manager
from tests.test_mangadex import RAW_MANGA
from tests.test_scraper import FEATURED_HTML, MANGA_DETAILS_HTML

CTK = "fedcba9876543210fedcba9876543210"


def anime_site(embed_text='<script>var hlsUrl = "https://cdn.test/hls/master.m3u8";</script>'):
    def handler(request):
        host, path = request.url.host, request.url.path
        if host == domain_manager.active:
            if path == "/":
                return httpx.Response(200, text="home")
            if path.startswith("/anime/watch/"):
                return httpx.Response(200, text=f'<meta name="ctk" content="{CTK}">')
            if path.startswith("/ajax/anime/"):
                return httpx.Response(200, json={"status": True, "embed": True, "value": '<iframe src="https://embed.test/e/1"></iframe>'})
        if host == "embed.test":
            return httpx.Response(200, text=embed_text)
        if host == "cdn.test":
            return httpx.Response(200, headers={"content-type": "application/vnd.apple.mpegurl"})
        return httpx.Response(404)

    return handler


def test_root_lists_endpoints(make_api):
    response = make_api(lambda request: httpx.Response(404)).get("/")
    assert response.status_code == 200
    assert "/get-m3u8/{server}/{anime_slug}/{episode}" in response.json()["endpoints"]["streams"]["resolve_by_path"]


def test_health(make_api):
    body = make_api(lambda request: httpx.Response(404)).get("/health").json()
    assert body["status"] == "ok"
    assert body["config"]["domain"] == domain_manager.active


def test_status_refresh(make_api):
    fallback = domain_manager.domains[1]

    def handler(request):
        return httpx.Response(200 if request.url.host == fallback else 503)

    body = make_api(handler).get("/status", params={"refresh": "true"}).json()
    assert body["status"] == "online"
    assert body["domain"]["active"] == fallback
    assert body["domain"]["alternatives"] == domain_manager.domains


class TestGetM3u8:
    def test_missing_slug(self, make_api):
        response = make_api(anime_site()).get("/get-m3u8")
        assert response.status_code == 400

    def test_slug_without_episode(self, make_api):
        response = make_api(anime_site()).get("/get-m3u8", params={"slug": "naruto"})
        assert response.status_code == 400

    def test_combined_slug(self, make_api):
        response = make_api(anime_site()).get("/get-m3u8", params={"slug": "naruto-sub.1/123", "proxy": "false"})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["m3u8_url"] == "https://cdn.test/hls/master.m3u8"
        assert body["proxied_url"] is None
        assert body["debug"]["episode_url"].endswith("/anime/watch/naruto-sub.1/123")

    def test_path_form(self, make_api):
        response = make_api(anime_site()).get("/get-m3u8/vhserver/naruto-sub.1/123")
        assert response.status_code == 200
        assert response.json()["proxied_url"].startswith(config.HLS_PROXY_URL)

    def test_failure_returns_trace(self, make_api, monkeypatch):
        refreshed = []

        async def fake_refresh(client=None):
            refreshed.append(True)

        monkeypatch.setattr(domain_manager, "refresh", fake_refresh)
        response = make_api(anime_site(embed_text="<p>no video</p>")).get(
            "/get-m3u8", params={"slug": "naruto-sub.1", "episode": "123"}
        )
        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "M3U8 URL not found in embed page"
        assert body["debug"]["error_step"] == "embed_page_loaded"
        assert body["domain_status"]["current"] == domain_manager.active
        assert refreshed == []

    def test_forbidden_checks_mirrors_once(self, make_api, monkeypatch):
        refreshed = []

        async def fake_refresh(client=None):
            refreshed.append(True)

        monkeypatch.setattr(domain_manager, "refresh", fake_refresh)
        response = make_api(lambda request: httpx.Response(403)).get(
            "/get-m3u8", params={"slug": "naruto-sub.1", "episode": "123"}
        )
        assert response.status_code == 500
        assert refreshed == [True]

    def test_challenge_schedules_domain_refresh(self, make_api, monkeypatch):
        refreshed = []

        async def fake_refresh(client=None):
            refreshed.append(True)

        monkeypatch.setattr(domain_manager, "refresh", fake_refresh)
        response = make_api(lambda request: httpx.Response(200, text="<title>DDoS-Guard</title>")).get(
            "/get-m3u8", params={"slug": "naruto-sub.1", "episode": "123"}
        )
        assert response.status_code == 500
        assert response.json()["debug"]["error_step"] == "init"
        assert refreshed == [True]


def test_proxy_redirect(make_api, monkeypatch):
    monkeypatch.setattr(config, "HLS_PROXY_URL", "https://proxy.test/proxy/")
    api = make_api(lambda request: httpx.Response(404))
    response = api.get("/proxy", params={"url": "https://cdn.test/a.m3u8"}, follow_redirects=False)
    assert response.status_code == 307
    assert response.headers["location"] == "https://proxy.test/proxy/https%3A%2F%2Fcdn.test%2Fa.m3u8"
    assert api.get("/proxy").status_code == 400


def test_get_player(make_api):
    response = make_api(anime_site()).get("/get-player", params={"episode": "195673"})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert '<iframe src="https://embed.test/e/1"></iframe>' in response.text


def test_watch_stream_manifest(make_api):
    def handler(request):
        if request.url.host == "watch.test":
            return httpx.Response(200, text='<script>const src = "https://cdn.test/w/index.m3u8";</script>')
        return httpx.Response(200, text="#EXTM3U\n#EXT-X-TARGETDURATION:6\n")

    api = make_api(handler)
    response = api.get("/watch-stream", params={"url": "https://watch.test/watch/1", "manifest": "true"})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/vnd.apple.mpegurl")
    assert response.text.startswith("#EXTM3U")

    body = api.get("/watch-stream", params={"url": "https://watch.test/watch/1"}).json()
    assert body["source"] == "watch_page"


def test_scrape_and_analyze(make_api):
    def handler(request):
        if request.url.path.endswith(".m3u8"):
            return httpx.Response(200, text="#EXTM3U\n#EXT-X-STREAM-INF:BANDWIDTH=1,RESOLUTION=1x1\nlow.m3u8\n")
        return httpx.Response(200, text='<script>play("https://cdn.test/v.m3u8")</script>')

    api = make_api(handler)
    body = api.post("/scrape", json={"url": "https://site.test/page"}).json()
    assert body == {"success": True, "message": "Found potential M3U8 sources", "sources": ["https://cdn.test/v.m3u8"]}

    analysis = api.get("/analyze-m3u8", params={"url": "https://cdn.test/v.m3u8"}).json()
    assert analysis["type"] == "Master Playlist"
    assert analysis["variantCount"] == 1
    assert analysis["variants"][0]["url"] == "https://cdn.test/low.m3u8"
    assert api.get("/analyze-m3u8").status_code == 400


def test_scrape_accepts_form_post(make_api):
    api = make_api(lambda request: httpx.Response(200, text='<script>load("https://cdn.test/f.m3u8")</script>'))
    response = api.post("/scrape", data={"url": " https://site.test/page "})
    assert response.status_code == 200
    assert response.json()["sources"] == ["https://cdn.test/f.m3u8"]


def test_scrape_requires_url(make_api):
    api = make_api(lambda request: httpx.Response(200))
    assert api.post("/scrape", data={"url": "  "}).status_code == 400
    assert api.post("/scrape", json={}).status_code == 400
    assert api.post("/scrape").status_code == 400


def test_anime_details_not_found(make_api):
    response = make_api(lambda request: httpx.Response(404)).get("/details/missing-anime")
    assert response.status_code == 404


def test_featured_mangas(make_api):
    body = make_api(lambda request: httpx.Response(200, text=FEATURED_HTML)).get("/featured-mangas").json()
    assert body["success"] is True
    assert body["count"] == 1
    assert body["data"][0]["mangaTitle"] == "One Piece"
    assert body["data"][0]["chapterNumber"] == "Chapter 1100"


def test_manga_details_with_anilist(make_api):
    def handler(request):
        if request.url.host == "graphql.anilist.co":
            return httpx.Response(200, json={"data": {"Media": {"id": 30013}}})
        return httpx.Response(200, text=MANGA_DETAILS_HTML)

    body = make_api(handler).get("/manga-details", params={"id": "2/one-piece"}).json()
    assert body["url"] == f"{config.MANGAPILL_BASE_URL}/manga/2/one-piece"
    assert body["mangaPill"]["title"] == "One Piece"
    assert body["mangaPill"]["totalChapters"] == 2
    assert body["anilist"] == {"id": 30013}


def test_mangadex_routes(make_api):
    def handler(request):
        if request.url.path.startswith("/manga/"):
            return httpx.Response(200, json={"result": "ok", "data": RAW_MANGA})
        return httpx.Response(200, json={"result": "ok", "data": [RAW_MANGA], "total": 1, "limit": 20, "offset": 0})

    api = make_api(handler)
    listing = api.get("/api/manga").json()
    assert listing["total"] == 1
    assert listing["manga"][0]["coverUrl"].endswith("/cover.jpg")

    detail = api.get(f"/api/manga/{RAW_MANGA['id']}").json()
    assert detail["manga"]["author"] == "Oda Eiichiro"

    assert api.get("/api/popular").json()["popular"][0]["id"] == RAW_MANGA["id"]
    assert api.get("/api/recent").json()["recent"][0]["contentRating"] == "safe"
    assert api.get("/api/search").status_code == 400
    assert api.get("/api/search", params={"q": "one"}).json()["query"] == "one"
