"""
LiveKit Provider 模块
封装会话创建、Token 生成、录制（Archive）与直播（Broadcast）接口

- 会话 = LiveKit 房间，会话 ID 即 create_room 返回的房间名
- 录制 = Room Composite Egress + MP4 文件输出
- 直播 = Room Composite Egress + HLS 分片输出
"""

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Any, Optional

import aiohttp
from livekit import api

from session_broker.core.config import BrokerConfig

logger = logging.getLogger(__name__)

# 对外只支持 routed（LiveKit 本身是 SFU）
ROUTED = "routed"

# 未指定分页参数时的默认值
DEFAULT_LIST_OFFSET = 0
DEFAULT_LIST_COUNT = 50

# 分辨率 -> Egress 编码预设
RESOLUTION_PRESETS = {
    "1280x720": "H264_720P_30",
    "1920x1080": "H264_1080P_30",
    "720x1280": "PORTRAIT_H264_720P_30",
    "1080x1920": "PORTRAIT_H264_1080P_30",
}

# 布局类型 -> LiveKit 模板布局
LAYOUTS = {
    "bestFit": "grid",
    "pip": "speaker",
    "verticalPresentation": "speaker",
    "horizontalPresentation": "speaker",
}

HLS_SEGMENT_SECONDS = 6
HLS_LOW_LATENCY_SEGMENT_SECONDS = 2

ARCHIVE_STATUS = {
    "EGRESS_STARTING": "started",
    "EGRESS_ACTIVE": "started",
    "EGRESS_ENDING": "stopped",
    "EGRESS_COMPLETE": "available",
    "EGRESS_LIMIT_REACHED": "available",
    "EGRESS_FAILED": "failed",
    "EGRESS_ABORTED": "failed",
}

BROADCAST_STATUS = {
    "EGRESS_STARTING": "started",
    "EGRESS_ACTIVE": "started",
    "EGRESS_ENDING": "stopped",
    "EGRESS_COMPLETE": "stopped",
    "EGRESS_LIMIT_REACHED": "stopped",
    "EGRESS_FAILED": "failed",
    "EGRESS_ABORTED": "failed",
}


class ProviderError(Exception):
    """Provider 调用失败，消息为 Provider 返回的错误描述"""


def _ns_to_ms(value: int) -> Optional[int]:
    return value // 1_000_000 if value else None


def layout_name(layout: Any) -> str:
    """把 {"type": "bestFit"} 或字符串形式的布局转换为 LiveKit 布局名"""
    if not layout:
        return ""
    if isinstance(layout, dict):
        layout = layout.get("type") or ""
    if not isinstance(layout, str):
        raise ProviderError(f"invalid layout: {layout!r}")
    return LAYOUTS.get(layout, layout)


def encoding_preset(resolution: Optional[str]) -> Optional[int]:
    """分辨率字符串转换为编码预设，None 表示使用默认"""
    if not resolution:
        return None
    name = RESOLUTION_PRESETS.get(resolution) if isinstance(resolution, str) else None
    if name is None:
        raise ProviderError(f"unsupported resolution: {resolution}")
    return api.EncodingOptionsPreset.Value(name)


class LiveKitProvider:
    """LiveKit Server API 客户端封装"""

    def __init__(
        self,
        config: BrokerConfig,
        lk_api: api.LiveKitAPI | None = None,
    ):
        """
        参数:
            config: 服务配置（凭证、URL、路径前缀等）
            lk_api: 已创建的 LiveKitAPI，默认在首次调用时创建
        """
        self.config = config
        self._api = lk_api
        # Egress 本身不保存名称和直播参数，这里按 ID 记录
        self._archive_names: dict[str, Optional[str]] = {}
        self._broadcast_options: dict[str, dict] = {}
        self._auto_stops: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    def _client(self) -> api.LiveKitAPI:
        # LiveKitAPI 内部会创建 aiohttp.ClientSession，必须在事件循环中初始化
        if self._api is None:
            self._api = api.LiveKitAPI(
                url=self.config.livekit_url,
                api_key=self.config.api_key,
                api_secret=self.config.api_secret,
            )
        return self._api

    async def _call(self, coro):
        """等待 SDK 调用，并把 SDK / 网络异常统一转换为 ProviderError"""
        try:
            return await coro
        except api.TwirpError as e:
            raise ProviderError(getattr(e, "message", None) or str(e)) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderError(str(e) or e.__class__.__name__) from e

    # ========== 会话与 Token ==========

    async def create_session(self, media_mode: str = ROUTED) -> str:
        """创建新会话（LiveKit 房间），返回会话 ID"""
        if media_mode != ROUTED:
            raise ProviderError(f"unsupported media mode: {media_mode}")

        name = f"{self.config.room_prefix}{uuid.uuid4().hex}"
        room = await self._call(
            self._client().room.create_room(api.CreateRoomRequest(name=name))
        )
        logger.info(f"LiveKit 房间已创建: name={room.name}, sid={room.sid}")
        return room.name

    def generate_token(self, session_id: str, data: Optional[str] = None) -> str:
        """
        为会话生成访问 Token

        参数:
            session_id: 会话 ID（LiveKit 房间名）
            data: 可选的连接标签，写入 Token metadata
        """
        token = (
            api.AccessToken(self.config.api_key, self.config.api_secret)
            .with_identity(f"conn-{uuid.uuid4().hex[:12]}")
            .with_ttl(timedelta(seconds=self.config.token_ttl))
            .with_grants(
                api.VideoGrants(
                    room_join=True,
                    room=session_id,
                    can_publish=True,
                    can_subscribe=True,
                )
            )
        )
        if data is not None:
            token = token.with_metadata(data)
        return token.to_jwt()

    # ========== 录制 ==========

    async def start_archive(
        self, session_id: Optional[str], name: Optional[str] = None
    ) -> dict:
        """开始录制会话，name 为录制名称（可为空）"""
        output = api.EncodedFileOutput(
            file_type=api.EncodedFileType.MP4,
            filepath=f"{self.config.archive_prefix}/{{room_name}}-{{time}}.mp4",
        )
        request = self._composite_request(
            room_name=session_id or "",
            file_outputs=[output],
        )
        info = await self._call(
            self._client().egress.start_room_composite_egress(request)
        )
        self._archive_names[info.egress_id] = name
        logger.info(f"录制已开始: archive={info.egress_id}, name={name}")
        return self.archive_descriptor(info)

    async def stop_archive(self, archive_id: str) -> dict:
        info = await self._call(
            self._client().egress.stop_egress(
                api.StopEgressRequest(egress_id=archive_id)
            )
        )
        return self.archive_descriptor(info)

    async def get_archive(self, archive_id: str) -> dict:
        return self.archive_descriptor(await self._get_egress(archive_id))

    async def list_archives(
        self, offset: Any = DEFAULT_LIST_OFFSET, count: Any = DEFAULT_LIST_COUNT
    ) -> dict:
        """
        分页获取录制列表（按开始时间倒序）

        返回:
            {"count": 总数, "items": [录制描述, ...]}
        """
        try:
            offset, count = int(offset), int(count)
        except (TypeError, ValueError) as e:
            raise ProviderError(f"invalid pagination: {e}") from e
        if offset < 0 or count < 0:
            raise ProviderError(f"invalid pagination: offset={offset}, count={count}")

        res = await self._call(
            self._client().egress.list_egress(api.ListEgressRequest())
        )
        archives = [info for info in res.items if self._is_archive(info)]
        archives.sort(key=lambda info: info.started_at, reverse=True)
        page = archives[offset:offset + count]
        return {
            "count": len(archives),
            "items": [self.archive_descriptor(info) for info in page],
        }

    @staticmethod
    def _composite_request(**fields) -> api.RoomCompositeEgressRequest:
        """构建 Egress 请求，字段类型错误（如非字符串的 sessionId）转换为 ProviderError"""
        try:
            return api.RoomCompositeEgressRequest(**fields)
        except (TypeError, ValueError) as e:
            raise ProviderError(f"invalid egress request: {e}") from e

    @staticmethod
    def _is_archive(info: api.EgressInfo) -> bool:
        return bool(info.file_results) or bool(info.room_composite.file_outputs)

    def archive_descriptor(self, info: api.EgressInfo) -> dict:
        """EgressInfo -> 录制描述"""
        file = info.file_results[0] if info.file_results else None
        url = file.location if file and file.location else None

        status = ARCHIVE_STATUS.get(api.EgressStatus.Name(info.status), "stopped")
        if status == "available" and not url:
            status = "stopped"

        return {
            "id": info.egress_id,
            "sessionId": info.room_name,
            "name": self._archive_names.get(info.egress_id),
            "status": status,
            "createdAt": _ns_to_ms(info.started_at),
            "duration": file.duration // 1_000_000_000 if file else 0,
            "size": file.size if file else 0,
            "url": url,
            "reason": info.error or None,
            "outputMode": "composed",
        }

    # ========== 直播 ==========

    async def start_broadcast(
        self,
        session_id: Optional[str],
        max_duration: Any = None,
        resolution: Optional[str] = None,
        layout: Any = None,
        hls: Optional[dict] = None,
    ) -> dict:
        """开始 HLS 直播，max_duration 秒后自动停止"""
        hls = hls or {}
        if not isinstance(hls, dict):
            raise ProviderError(f"invalid hls options: {hls!r}")

        if max_duration is None:
            duration = self.config.broadcast_max_duration
        else:
            try:
                duration = int(max_duration)
            except (TypeError, ValueError) as e:
                raise ProviderError(f"invalid maxDuration: {max_duration}") from e
            if duration <= 0:
                raise ProviderError(f"invalid maxDuration: {max_duration}")

        request = self._composite_request(
            room_name=session_id or "",
            layout=layout_name(layout),
            segment_outputs=[
                api.SegmentedFileOutput(
                    filename_prefix=f"{self.config.broadcast_prefix}/{{room_name}}-{{time}}",
                    playlist_name="playlist.m3u8",
                    live_playlist_name="live.m3u8",
                    segment_duration=(
                        HLS_LOW_LATENCY_SEGMENT_SECONDS
                        if hls.get("lowLatency")
                        else HLS_SEGMENT_SECONDS
                    ),
                )
            ],
        )
        preset = encoding_preset(resolution)
        if preset is not None:
            request.preset = preset

        info = await self._call(
            self._client().egress.start_room_composite_egress(request)
        )
        self._broadcast_options[info.egress_id] = {
            "maxDuration": duration,
            "resolution": resolution,
        }
        self._schedule_auto_stop(info.egress_id, duration)
        logger.info(f"直播已开始: broadcast={info.egress_id}, maxDuration={duration}s")
        return self.broadcast_descriptor(info)

    async def stop_broadcast(self, broadcast_id: str) -> dict:
        handle = self._auto_stops.pop(broadcast_id, None)
        if handle is not None:
            handle.cancel()

        info = await self._call(
            self._client().egress.stop_egress(
                api.StopEgressRequest(egress_id=broadcast_id)
            )
        )
        return self.broadcast_descriptor(info)

    async def get_broadcast(self, broadcast_id: str) -> dict:
        return self.broadcast_descriptor(await self._get_egress(broadcast_id))

    def broadcast_descriptor(self, info: api.EgressInfo) -> dict:
        """EgressInfo -> 直播描述"""
        segments = info.segment_results[0] if info.segment_results else None
        hls_url = None
        if segments is not None:
            hls_url = segments.live_playlist_location or segments.playlist_location or None

        descriptor = {
            "id": info.egress_id,
            "sessionId": info.room_name,
            "status": BROADCAST_STATUS.get(api.EgressStatus.Name(info.status), "stopped"),
            "createdAt": _ns_to_ms(info.started_at),
            "updatedAt": _ns_to_ms(info.updated_at),
            "broadcastUrls": {"hls": hls_url},
        }
        descriptor.update(self._broadcast_options.get(info.egress_id, {}))
        return descriptor

    def _schedule_auto_stop(self, broadcast_id: str, seconds: int) -> None:
        loop = asyncio.get_running_loop()
        self._auto_stops[broadcast_id] = loop.call_later(
            seconds, self._spawn_auto_stop, broadcast_id
        )

    def _spawn_auto_stop(self, broadcast_id: str) -> None:
        self._auto_stops.pop(broadcast_id, None)
        task = asyncio.ensure_future(self._auto_stop(broadcast_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _auto_stop(self, broadcast_id: str) -> None:
        try:
            await self.stop_broadcast(broadcast_id)
        except ProviderError as e:
            logger.warning(f"直播自动停止失败: broadcast={broadcast_id}, error={e}")
        else:
            logger.info(f"直播已达到最大时长，自动停止: {broadcast_id}")

    # ========== 通用 ==========

    async def _get_egress(self, egress_id: str) -> api.EgressInfo:
        res = await self._call(
            self._client().egress.list_egress(
                api.ListEgressRequest(egress_id=egress_id)
            )
        )
        if not res.items:
            raise ProviderError(f"egress not found: {egress_id}")
        return res.items[0]

    async def aclose(self) -> None:
        """取消自动停止任务并关闭 API 客户端"""
        for handle in self._auto_stops.values():
            handle.cancel()
        self._auto_stops.clear()
        for task in list(self._tasks):
            task.cancel()

        if self._api is not None:
            await self._api.aclose()
            self._api = None
