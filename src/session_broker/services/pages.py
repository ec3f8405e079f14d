"""
HTML 页面：首页与录制处理中的占位页
"""

from html import escape

from aiohttp import web

APP_TITLE = "Session Broker"

_PAGE = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <title>{title}</title>
  </head>
  <body>
    <h1>{title}</h1>
    {body}
  </body>
</html>
"""


def render(title: str, body: str = "") -> web.Response:
    return web.Response(
        text=_PAGE.format(title=escape(title), body=body),
        content_type="text/html",
    )


async def handle_index(request: web.Request) -> web.Response:
    """GET / 首页"""
    return render(
        APP_TITLE,
        "<p>Request <code>/room/&lt;name&gt;</code> to join a room.</p>",
    )


def render_pending() -> web.Response:
    # 录制尚未可用时展示，客户端可稍后刷新
    return render(
        "Archiving Pending",
        "<p>The archive is not available yet. Refresh this page later.</p>",
    )
