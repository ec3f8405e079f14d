"""
测试公共 fixture：内存版 Provider 与 aiohttp 测试客户端
"""

import asyncio

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from session_broker.core.registry import BrokerState
from session_broker.services.provider import ProviderError
from session_broker.services.token_server import create_app

API_KEY = "test-api-key"


class FakeProvider:
    """与 LiveKitProvider 接口一致的内存实现，可按操作名注入失败"""

    def __init__(self):
        self.failures: set[str] = set()
        self.create_delay = 0.0
        self.sessions_created = 0
        self.tokens: list[tuple[str, str | None]] = []
        self.archives: dict[str, dict] = {}
        self.broadcasts: dict[str, dict] = {}
        self.archive_starts: list[tuple[str | None, str | None]] = []
        self.list_calls: list[dict] = []
        self.closed = False

    def _check(self, operation: str):
        if operation in self.failures:
            raise ProviderError(f"{operation} is unavailable")

    async def create_session(self, media_mode="routed"):
        await asyncio.sleep(self.create_delay)
        self._check("create_session")
        self.sessions_created += 1
        return f"session-{self.sessions_created}"

    def generate_token(self, session_id, data=None):
        self.tokens.append((session_id, data))
        return f"token-{len(self.tokens)}"

    async def start_archive(self, session_id, name=None):
        self._check("start_archive")
        self.archive_starts.append((session_id, name))
        archive = {
            "id": f"archive-{len(self.archive_starts)}",
            "sessionId": session_id,
            "name": name,
            "status": "started",
            "url": None,
        }
        self.archives[archive["id"]] = archive
        return archive

    async def stop_archive(self, archive_id):
        self._check("stop_archive")
        archive = await self.get_archive(archive_id)
        archive["status"] = "stopped"
        return archive

    async def get_archive(self, archive_id):
        self._check("get_archive")
        if archive_id not in self.archives:
            raise ProviderError(f"egress not found: {archive_id}")
        return self.archives[archive_id]

    async def list_archives(self, **options):
        self._check("list_archives")
        self.list_calls.append(options)
        items = list(self.archives.values())
        return {"count": len(items), "items": items}

    async def start_broadcast(self, session_id, max_duration=None, resolution=None,
                              layout=None, hls=None):
        self._check("start_broadcast")
        broadcast = {
            "id": f"broadcast-{len(self.broadcasts) + 1}",
            "sessionId": session_id,
            "status": "started",
            "maxDuration": max_duration,
            "resolution": resolution,
            "broadcastUrls": {"hls": "https://cdn.example.com/live.m3u8"},
        }
        self.broadcasts[broadcast["id"]] = broadcast
        return broadcast

    async def stop_broadcast(self, broadcast_id):
        self._check("stop_broadcast")
        broadcast = await self.get_broadcast(broadcast_id)
        broadcast["status"] = "stopped"
        return broadcast

    async def get_broadcast(self, broadcast_id):
        self._check("get_broadcast")
        if broadcast_id not in self.broadcasts:
            raise ProviderError(f"egress not found: {broadcast_id}")
        return self.broadcasts[broadcast_id]

    async def aclose(self):
        self.closed = True


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def state():
    return BrokerState()


@pytest_asyncio.fixture
async def client(provider, state):
    app = create_app(provider, api_key=API_KEY, state=state)
    test_client = TestClient(TestServer(app))
    await test_client.start_server()
    yield test_client
    await test_client.close()
