"""
HTTP 公共工具：CORS、请求体解析、应用共享对象的 key
"""

import json
import logging

from aiohttp import web

from session_broker.core.registry import BrokerState

logger = logging.getLogger(__name__)

STATE_KEY = web.AppKey("state", BrokerState)
PROVIDER_KEY = web.AppKey("provider", object)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


@web.middleware
async def cors_middleware(request: web.Request, handler) -> web.StreamResponse:
    """所有响应附加 CORS 头，OPTIONS 预检直接返回 204"""
    if request.method == "OPTIONS":
        return web.Response(status=204, headers=CORS_HEADERS)

    try:
        response = await handler(request)
    except web.HTTPException as e:
        # 跳转与 404/405 等以异常形式返回，同样附加 CORS 头
        e.headers.update(CORS_HEADERS)
        raise
    response.headers.update(CORS_HEADERS)
    return response


async def read_json_body(request: web.Request) -> dict:
    """
    读取 JSON 请求体

    空请求体视为 {}，无法解析时返回 400 {"error": "Invalid JSON"}
    """
    if not request.can_read_body:
        return {}
    try:
        data = await request.json()
    except ValueError:
        # JSONDecodeError 与非 UTF-8 请求体的 UnicodeDecodeError
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Invalid JSON"}),
            content_type="application/json",
            headers=CORS_HEADERS,
        )
    return data if isinstance(data, dict) else {}


def error_response(message: str, status: int = 500) -> web.Response:
    return web.json_response({"error": message}, status=status)
