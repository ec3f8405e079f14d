"""
直播（Broadcast）接口

start / stop 失败时返回纯文本错误（与其他接口的 {"error": ...} 不同，保持原有行为）
"""

import logging

from aiohttp import web

from session_broker.core.registry import BrokerState
from session_broker.services.provider import ProviderError
from session_broker.services.web_utils import error_response, read_json_body

logger = logging.getLogger(__name__)


class BroadcastController:
    """HLS 直播控制，只记录最近一次成功启动的直播 ID"""

    def __init__(self, provider, state: BrokerState):
        self.provider = provider
        self.state = state

    async def handle_start(self, request: web.Request) -> web.Response:
        """
        POST /broadcast/start

        请求体:
            {
                "sessionId": "session-...",
                "maxDuration": 5400,
                "resolution": "1280x720",
                "layout": {"type": "bestFit"},
                "hls": {"lowLatency": true}
            }
        """
        data = await read_json_body(request)
        session_id = data.get("sessionId")

        try:
            broadcast = await self.provider.start_broadcast(
                session_id,
                max_duration=data.get("maxDuration"),
                resolution=data.get("resolution"),
                layout=data.get("layout"),
                hls=data.get("hls") or {},
            )
        except ProviderError as e:
            logger.error(f"startBroadcast 失败: session={session_id}, error={e}")
            return web.Response(status=500, text=str(e))

        self.state.current_broadcast_id = broadcast["id"]
        return web.json_response(broadcast)

    async def handle_stop(self, request: web.Request) -> web.Response:
        """GET /broadcast/{broadcast_id}/stop"""
        broadcast_id = request.match_info["broadcast_id"]
        logger.info(f"停止直播: {broadcast_id}")

        try:
            broadcast = await self.provider.stop_broadcast(broadcast_id)
        except ProviderError as e:
            logger.error(f"stopBroadcast 失败: broadcast={broadcast_id}, error={e}")
            return web.Response(status=500, text=str(e))
        return web.json_response(broadcast)

    async def handle_current_id(self, request: web.Request) -> web.Response:
        """GET /broadcast/id"""
        return web.json_response({"broadcastId": self.state.current_broadcast_id or None})

    async def handle_view(self, request: web.Request) -> web.Response:
        """GET /broadcast/{broadcast_id}/view"""
        broadcast_id = request.match_info["broadcast_id"]
        logger.info(f"查看直播: {broadcast_id}")

        try:
            broadcast = await self.provider.get_broadcast(broadcast_id)
        except ProviderError as e:
            logger.error(f"getBroadcast 失败: broadcast={broadcast_id}, error={e}")
            return error_response(f"getBroadcast error: {e}")
        return web.json_response(broadcast)
