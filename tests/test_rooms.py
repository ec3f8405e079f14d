import asyncio

import pytest
from aiohttp.test_utils import TestClient, TestServer

from session_broker.core.registry import BrokerState, RoomRegistry
from session_broker.services.token_server import create_app

API_KEY = "test-api-key"


@pytest.mark.asyncio
async def test_first_request_creates_session(client, provider):
    resp = await client.get("/room/alpha")
    assert resp.status == 200
    payload = await resp.json()
    assert payload == {
        "apiKey": API_KEY,
        "sessionId": "session-1",
        "token": "token-1",
    }
    assert provider.sessions_created == 1


@pytest.mark.asyncio
async def test_same_room_reuses_session(client, provider):
    first = await (await client.get("/room/alpha")).json()
    second = await (await client.get("/room/alpha")).json()

    assert first["sessionId"] == second["sessionId"]
    assert first["token"] != second["token"]
    assert provider.sessions_created == 1


@pytest.mark.asyncio
async def test_different_rooms_get_different_sessions(client, state):
    alpha = await (await client.get("/room/alpha")).json()
    beta = await (await client.get("/room/beta")).json()

    assert alpha["sessionId"] != beta["sessionId"]
    assert state.registry.resolve("beta") == beta["sessionId"]


@pytest.mark.asyncio
async def test_connection_name_is_embedded_in_token(client, provider):
    payload = await (await client.get("/room/alpha/alice")).json()
    assert provider.tokens[-1] == (payload["sessionId"], "alice")


@pytest.mark.asyncio
async def test_token_without_connection_name(client, provider):
    resp = await client.get("/room/alpha")
    assert resp.status == 200
    assert provider.tokens[-1][1] is None


@pytest.mark.asyncio
async def test_concurrent_first_requests_create_one_session(client, provider):
    provider.create_delay = 0.05
    responses = await asyncio.gather(
        client.get("/room/gamma"),
        client.get("/room/gamma"),
        client.get("/room/gamma/bob"),
    )
    payloads = [await resp.json() for resp in responses]

    assert {p["sessionId"] for p in payloads} == {"session-1"}
    assert provider.sessions_created == 1


@pytest.mark.asyncio
async def test_create_session_failure(client, provider, state):
    provider.failures.add("create_session")

    resp = await client.get("/room/alpha")
    assert resp.status == 500
    payload = await resp.json()
    assert payload == {"error": "createSession error: create_session is unavailable"}
    assert "alpha" not in state.registry
    assert provider.tokens == []

    # 失败后下一次请求重新创建
    provider.failures.clear()
    resp = await client.get("/room/alpha")
    assert resp.status == 200
    assert state.registry.resolve("alpha") == "session-1"


@pytest.mark.asyncio
async def test_session_redirects(client):
    resp = await client.get("/session", allow_redirects=False)
    assert resp.status == 302
    assert resp.headers["Location"] == "/room/session"

    resp = await client.get("/session/bob", allow_redirects=False)
    assert resp.status == 302
    assert resp.headers["Location"] == "/room/session/bob"


@pytest.mark.asyncio
async def test_index_page(client):
    resp = await client.get("/")
    assert resp.status == 200
    assert resp.content_type == "text/html"
    assert "Session Broker" in await resp.text()


@pytest.mark.asyncio
async def test_cors_headers(client):
    resp = await client.get("/room/alpha")
    assert resp.headers["Access-Control-Allow-Origin"] == "*"

    resp = await client.options("/archive/start")
    assert resp.status == 204
    assert resp.headers["Access-Control-Allow-Methods"] == "GET, POST, OPTIONS"


@pytest.mark.asyncio
async def test_provider_closed_with_app(provider, state):
    test_client = TestClient(TestServer(create_app(provider, API_KEY, state)))
    await test_client.start_server()
    await test_client.close()
    assert provider.closed


@pytest.mark.asyncio
async def test_app_uses_injected_state(provider):
    registry = RoomRegistry()
    state = BrokerState(registry=registry)
    test_client = TestClient(TestServer(create_app(provider, API_KEY, state)))
    await test_client.start_server()
    try:
        await test_client.get("/room/alpha")
        assert state.registry is registry
        assert registry.resolve("alpha") == "session-1"
    finally:
        await test_client.close()


@pytest.mark.asyncio
async def test_cors_headers_on_redirects_and_errors(client, provider):
    resp = await client.get("/session/bob", allow_redirects=False)
    assert resp.status == 302
    assert resp.headers["Access-Control-Allow-Origin"] == "*"

    provider.archives["a1"] = {
        "id": "a1",
        "status": "available",
        "url": "https://cdn.example.com/a1.mp4",
    }
    resp = await client.get("/archive/a1/view", allow_redirects=False)
    assert resp.status == 302
    assert resp.headers["Access-Control-Allow-Origin"] == "*"

    resp = await client.get("/no/such/route")
    assert resp.status == 404
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
