import asyncio

import httpx
import pytest

from client import DomainManager, extract_session_cookie, fetch_with_retry, is_challenge_page, upstream_http_exception
from tests.conftest import mock_client


def run(coro):
    return asyncio.run(coro)


class TestFetchWithRetry:
    def test_retries_until_success(self):
        calls = []

        def handler(request):
            calls.append(request.url)
            if len(calls) < 3:
                return httpx.Response(500, text="oops")
            return httpx.Response(200, text="ok")

        async def go():
            async with mock_client(handler) as client:
                return await fetch_with_retry(client, "https://site.test/page", delay=0)

        response = run(go())
        assert response.text == "ok"
        assert len(calls) == 3

    def test_raises_last_status_error(self):
        calls = []

        def handler(request):
            calls.append(request.url)
            return httpx.Response(503)

        async def go():
            async with mock_client(handler) as client:
                await fetch_with_retry(client, "https://site.test/page", retries=2, delay=0)

        with pytest.raises(httpx.HTTPStatusError):
            run(go())
        assert len(calls) == 2

    def test_raises_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async def go():
            async with mock_client(handler) as client:
                await fetch_with_retry(client, "https://site.test/page", delay=0)

        with pytest.raises(httpx.RequestError):
            run(go())

    def test_too_many_requests_then_ok(self):
        statuses = [429, 200]

        def handler(request):
            return httpx.Response(statuses.pop(0), text="done")

        async def go():
            async with mock_client(handler) as client:
                return await fetch_with_retry(client, "https://site.test/page", delay=0)

        assert run(go()).status_code == 200

    def test_post_forwards_form_data(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["body"] = request.content
            return httpx.Response(200, json={"status": True})

        async def go():
            async with mock_client(handler) as client:
                return await fetch_with_retry(client, "https://site.test/ajax", method="POST", data={"episode_id": "7"})

        run(go())
        assert seen["method"] == "POST"
        assert seen["body"] == b"episode_id=7"


class TestSessionCookie:
    def test_prefers_phpsessid(self):
        response = httpx.Response(200, headers=[
            ("set-cookie", "theme=dark; Path=/"),
            ("set-cookie", "PHPSESSID=abc123; path=/; HttpOnly"),
        ])
        assert extract_session_cookie(response) == "PHPSESSID=abc123"

    def test_falls_back_to_session_like_names(self):
        response = httpx.Response(200, headers=[
            ("set-cookie", "theme=dark"),
            ("set-cookie", "laravel_session=xyz; path=/"),
            ("set-cookie", "SID=42"),
        ])
        assert extract_session_cookie(response) == "laravel_session=xyz; SID=42"

    def test_no_cookies(self):
        assert extract_session_cookie(httpx.Response(200)) == ""


def test_is_challenge_page():
    assert is_challenge_page('<html><title>DDoS-Guard</title></html>')
    assert is_challenge_page("<title>Just a moment...</title>")
    assert not is_challenge_page("<html><body>Episode 1</body></html>")
    assert not is_challenge_page("")


class TestUpstreamHttpException:
    def _status_error(self, status_code):
        request = httpx.Request("GET", "https://site.test/x")
        response = httpx.Response(status_code, request=request)
        return httpx.HTTPStatusError("error", request=request, response=response)

    def test_not_found(self):
        exc = upstream_http_exception(self._status_error(404), "https://site.test/x", "Anime not found")
        assert exc.status_code == 404
        assert exc.detail == "Anime not found"

    def test_bad_gateway(self):
        assert upstream_http_exception(self._status_error(500), "https://site.test/x").status_code == 502

    def test_network_error(self):
        error = httpx.ConnectTimeout("timed out", request=httpx.Request("GET", "https://site.test/x"))
        assert upstream_http_exception(error, "https://site.test/x").status_code == 503

    def test_unexpected(self):
        assert upstream_http_exception(ValueError("bad"), "https://site.test/x").status_code == 500


class TestDomainManager:
    def test_requires_domains(self):
        with pytest.raises(ValueError):
            DomainManager([])

    def test_refresh_activates_first_reachable_domain(self):
        manager = DomainManager(["down.test", "blocked.test", "up.test", "also-up.test"])

        def handler(request):
            if request.url.host == "down.test":
                raise httpx.ConnectError("refused", request=request)
            if request.url.host == "blocked.test":
                return httpx.Response(403)
            return httpx.Response(200)

        async def go():
            async with mock_client(handler) as client:
                return await manager.refresh(client)

        assert run(go()) == "up.test"
        assert manager.active == "up.test"
        assert manager.base_url == "https://up.test"
        assert manager.checking is False

    def test_refresh_keeps_active_when_all_fail(self):
        manager = DomainManager(["a.test", "b.test"])

        def handler(request):
            return httpx.Response(503)

        async def go():
            async with mock_client(handler) as client:
                return await manager.refresh(client)

        assert run(go()) is None
        assert manager.active == "a.test"

    def test_refresh_skipped_while_checking(self):
        manager = DomainManager(["a.test", "b.test"])
        manager.checking = True

        def handler(request):
            raise AssertionError("no request expected")

        async def go():
            async with mock_client(handler) as client:
                return await manager.refresh(client)

        assert run(go()) is None
        assert manager.checking is True

    def test_swap_host_and_status(self):
        manager = DomainManager(["a.test", "b.test"])
        manager.active = "b.test"
        assert manager.swap_host("https://a.test/anime/watch/x/1?s=tserver") == "https://b.test/anime/watch/x/1?s=tserver"
        assert manager.swap_host("/relative/path") == "/relative/path"
        assert manager.status() == {"active": "b.test", "checking": False, "alternatives": ["a.test", "b.test"]}
