"""
房间注册表
进程内的 房间名 -> 会话ID 映射，以及当前直播 ID

注意：仅保存在内存中，进程重启后全部丢失，也不会在多个实例之间共享。
"""

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class RoomRegistry:
    """房间名到 Provider 会话 ID 的映射，条目只增不删"""

    def __init__(self):
        self._sessions: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def resolve(self, room_name: str) -> Optional[str]:
        """返回房间已绑定的会话 ID，没有则返回 None"""
        return self._sessions.get(room_name)

    def bind(self, room_name: str, session_id: str) -> None:
        """绑定（或覆盖）房间对应的会话 ID"""
        self._sessions[room_name] = session_id
        logger.info(f"房间已绑定: room={room_name}, session={session_id}")

    def reverse(self, session_id: str) -> Optional[str]:
        """根据会话 ID 反查房间名，按插入顺序返回第一个匹配项"""
        for room_name, value in self._sessions.items():
            if value == session_id:
                return room_name
        return None

    def creation_lock(self, room_name: str) -> asyncio.Lock:
        """
        获取房间的创建锁

        同一房间的首次创建在锁内完成（检查 -> 创建 -> 绑定），
        避免并发请求各自创建一个会话。
        """
        lock = self._locks.get(room_name)
        if lock is None:
            lock = self._locks[room_name] = asyncio.Lock()
        return lock

    def __contains__(self, room_name: str) -> bool:
        return room_name in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


class BrokerState:
    """服务共享状态：房间注册表 + 最近一次启动的直播 ID"""

    def __init__(self, registry: Optional[RoomRegistry] = None):
        self.registry = registry if registry is not None else RoomRegistry()
        self.current_broadcast_id: Optional[str] = None
