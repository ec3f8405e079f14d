"""
Session Broker HTTP 服务器模块
为客户端分配房间会话与访问 Token，并挂载录制 / 直播接口
"""

import logging
from typing import Optional

from aiohttp import web

from session_broker.core.config import BrokerConfig
from session_broker.core.registry import BrokerState
from session_broker.services import pages
from session_broker.services.archives import ArchiveController
from session_broker.services.broadcasts import BroadcastController
from session_broker.services.provider import ROUTED, LiveKitProvider, ProviderError
from session_broker.services.web_utils import (
    PROVIDER_KEY,
    STATE_KEY,
    cors_middleware,
    error_response,
)

logger = logging.getLogger(__name__)


class TokenIssuer:
    """按房间名分配会话，并为每次请求生成新的 Token"""

    def __init__(self, provider, state: BrokerState, api_key: str):
        self.provider = provider
        self.state = state
        self.api_key = api_key

    async def get_or_create_session(self, room_name: str) -> str:
        """
        返回房间对应的会话 ID，首次访问时创建

        创建失败抛出 ProviderError，注册表不会写入任何内容
        """
        registry = self.state.registry
        session_id = registry.resolve(room_name)
        if session_id is not None:
            return session_id

        async with registry.creation_lock(room_name):
            # 等锁期间可能已被其他请求创建
            session_id = registry.resolve(room_name)
            if session_id is None:
                session_id = await self.provider.create_session(media_mode=ROUTED)
                registry.bind(room_name, session_id)
        return session_id

    async def get_or_create_token(
        self, room_name: str, connection_name: Optional[str] = None
    ) -> dict:
        session_id = await self.get_or_create_session(room_name)
        token = self.provider.generate_token(session_id, data=connection_name)
        return {"apiKey": self.api_key, "sessionId": session_id, "token": token}

    async def handle_room(self, request: web.Request) -> web.Response:
        """
        GET /room/{name} 或 /room/{name}/{connection_name}

        返回:
            {
                "apiKey": "...",
                "sessionId": "session-...",
                "token": "eyJhbGciOiJIUz..."
            }
        """
        room_name = request.match_info["name"]
        connection_name = request.match_info.get("connection_name")
        logger.info(f"请求房间会话: room={room_name}, connection={connection_name}")

        try:
            payload = await self.get_or_create_token(room_name, connection_name)
        except ProviderError as e:
            logger.error(f"createSession 失败: room={room_name}, error={e}")
            return error_response(f"createSession error: {e}")
        return web.json_response(payload)


async def handle_session_redirect(request: web.Request) -> web.Response:
    """GET /session 与 /session/{name}：跳转到房间 "session" """
    name = request.match_info.get("name")
    location = f"/room/session/{name}" if name else "/room/session"
    raise web.HTTPFound(location)


def create_app(
    provider,
    api_key: str,
    state: Optional[BrokerState] = None,
) -> web.Application:
    """
    创建 aiohttp 应用

    参数:
        provider: Provider 实例（LiveKitProvider 或测试替身）
        api_key: 返回给客户端的公开 API Key
        state: 共享状态，默认新建
    """
    state = state if state is not None else BrokerState()
    issuer = TokenIssuer(provider, state, api_key)
    archives = ArchiveController(provider, state)
    broadcasts = BroadcastController(provider, state)

    app = web.Application(middlewares=[cors_middleware])
    app[STATE_KEY] = state
    app[PROVIDER_KEY] = provider

    router = app.router
    router.add_get("/", pages.handle_index)
    router.add_get("/session", handle_session_redirect)
    router.add_get("/session/{name}", handle_session_redirect)
    router.add_get("/room/{name}", issuer.handle_room)
    router.add_get("/room/{name}/{connection_name}", issuer.handle_room)

    router.add_post("/archive/start", archives.handle_start)
    router.add_post("/archive/{archive_id}/stop", archives.handle_stop)
    router.add_get("/archive/{archive_id}/view", archives.handle_view)
    router.add_get("/archive/{archive_id}", archives.handle_get)
    router.add_get("/archive", archives.handle_list)

    router.add_post("/broadcast/start", broadcasts.handle_start)
    router.add_get("/broadcast/id", broadcasts.handle_current_id)
    router.add_get("/broadcast/{broadcast_id}/stop", broadcasts.handle_stop)
    router.add_get("/broadcast/{broadcast_id}/view", broadcasts.handle_view)

    app.on_cleanup.append(_close_provider)
    return app


async def _close_provider(app: web.Application) -> None:
    await app[PROVIDER_KEY].aclose()


class TokenServer:
    """Session Broker HTTP 服务器"""

    def __init__(
        self,
        config: BrokerConfig,
        provider=None,
        state: Optional[BrokerState] = None,
    ):
        """
        参数:
            config: 服务配置
            provider: Provider 实例，默认在 start() 中创建 LiveKitProvider
            state: 共享状态，默认新建
        """
        self.config = config
        self.provider = provider
        self.state = state if state is not None else BrokerState()
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    async def start(self):
        """启动 HTTP 服务器"""
        if self.provider is None:
            self.provider = LiveKitProvider(self.config)

        self._app = create_app(self.provider, self.config.api_key, self.state)
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()

        logger.info(f"🚀 Session Broker 启动: http://localhost:{self.config.port}/")

    async def stop(self):
        """停止 HTTP 服务器"""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Session Broker 已停止")


async def start_token_server(config: BrokerConfig) -> TokenServer:
    """
    启动服务器的便捷函数

    参数:
        config: 服务配置

    返回:
        TokenServer 实例
    """
    server = TokenServer(config)
    await server.start()
    return server
