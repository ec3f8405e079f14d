"""
录制（Archive）接口
"""

import logging

from aiohttp import web

from session_broker.core.registry import BrokerState
from session_broker.services import pages
from session_broker.services.provider import ProviderError
from session_broker.services.web_utils import error_response, read_json_body

logger = logging.getLogger(__name__)


class ArchiveController:
    """录制的开始 / 停止 / 查询 / 列表，直接转发给 Provider"""

    def __init__(self, provider, state: BrokerState):
        self.provider = provider
        self.state = state

    async def handle_start(self, request: web.Request) -> web.Response:
        """
        POST /archive/start

        请求体:
            {"sessionId": "session-..."}
        """
        data = await read_json_body(request)
        session_id = data.get("sessionId")
        # 录制名称取会话所属的房间名，未知会话为 None
        name = self.state.registry.reverse(session_id)

        try:
            archive = await self.provider.start_archive(session_id, name=name)
        except ProviderError as e:
            logger.error(f"startArchive 失败: session={session_id}, error={e}")
            return error_response(f"startArchive error: {e}")
        return web.json_response(archive)

    async def handle_stop(self, request: web.Request) -> web.Response:
        """POST /archive/{archive_id}/stop"""
        archive_id = request.match_info["archive_id"]
        logger.info(f"停止录制: {archive_id}")

        try:
            archive = await self.provider.stop_archive(archive_id)
        except ProviderError as e:
            logger.error(f"stopArchive 失败: archive={archive_id}, error={e}")
            return error_response(f"stopArchive error: {e}")
        return web.json_response(archive)

    async def handle_view(self, request: web.Request) -> web.Response:
        """
        GET /archive/{archive_id}/view

        录制可用时 302 跳转到录制文件地址，否则展示占位页
        """
        archive_id = request.match_info["archive_id"]
        logger.info(f"查看录制: {archive_id}")

        try:
            archive = await self.provider.get_archive(archive_id)
        except ProviderError as e:
            logger.error(f"getArchive 失败: archive={archive_id}, error={e}")
            return error_response(f"getArchive error: {e}")

        if archive.get("status") == "available":
            raise web.HTTPFound(archive["url"])
        return pages.render_pending()

    async def handle_get(self, request: web.Request) -> web.Response:
        """GET /archive/{archive_id}"""
        archive_id = request.match_info["archive_id"]

        try:
            archive = await self.provider.get_archive(archive_id)
        except ProviderError as e:
            logger.error(f"getArchive 失败: archive={archive_id}, error={e}")
            return error_response(f"getArchive error: {e}")
        return web.json_response(archive)

    async def handle_list(self, request: web.Request) -> web.Response:
        """
        GET /archive?count=&offset=

        只转发请求中出现的分页参数，其余使用 Provider 默认值
        """
        options = {
            key: request.query[key]
            for key in ("count", "offset")
            if key in request.query
        }

        try:
            archives = await self.provider.list_archives(**options)
        except ProviderError as e:
            logger.error(f"listArchives 失败: {e}")
            return error_response(f"listArchives error: {e}")
        return web.json_response(archives)
