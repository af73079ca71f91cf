import httpx
import pytest
from fastapi.testclient import TestClient

import config
from client import build_http_client, domain_manager, get_http_client


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch):
    monkeypatch.setattr(config, "RETRY_DELAY", 0)
    monkeypatch.setattr(config, "RENDER_EMBEDS", False)
    monkeypatch.setattr(domain_manager, "active", domain_manager.domains[0])
    monkeypatch.setattr(domain_manager, "checking", False)


def mock_client(handler) -> httpx.AsyncClient:
    return build_http_client(transport=httpx.MockTransport(handler))


@pytest.fixture
def make_api():
    from app import app

    def factory(handler) -> TestClient:
        async def override():
            client = mock_client(handler)
            try:
                yield client
            finally:
                await client.aclose()

        app.dependency_overrides[get_http_client] = override
        return TestClient(app)

    yield factory
    app.dependency_overrides.clear()
