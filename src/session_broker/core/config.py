"""
配置模块
从环境变量（可由 .env 加载）读取服务配置
"""

import os
from dataclasses import dataclass

# 必须提供的环境变量
REQUIRED_VARS = ("LIVEKIT_API_KEY", "LIVEKIT_API_SECRET")

DEFAULT_LIVEKIT_URL = "http://localhost:7880"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080


@dataclass
class BrokerConfig:
    """Session Broker 运行配置"""
    api_key: str
    api_secret: str
    livekit_url: str = DEFAULT_LIVEKIT_URL
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    room_prefix: str = "session-"
    token_ttl: int = 24 * 60 * 60  # 秒
    archive_prefix: str = "archives"
    broadcast_prefix: str = "broadcasts"
    broadcast_max_duration: int = 2 * 60 * 60  # 秒

    @classmethod
    def from_env(cls) -> "BrokerConfig":
        """
        从环境变量构建配置

        缺少必需变量时抛出 KeyError，调用方应先用 missing_variables() 检查
        """
        env = os.environ
        return cls(
            api_key=env["LIVEKIT_API_KEY"],
            api_secret=env["LIVEKIT_API_SECRET"],
            livekit_url=env.get("LIVEKIT_URL", DEFAULT_LIVEKIT_URL),
            host=env.get("BROKER_HOST", DEFAULT_HOST),
            port=int(env.get("BROKER_PORT", DEFAULT_PORT)),
            room_prefix=env.get("SESSION_ROOM_PREFIX", "session-"),
            token_ttl=int(env.get("TOKEN_TTL_SECONDS", 24 * 60 * 60)),
            archive_prefix=env.get("ARCHIVE_PATH_PREFIX", "archives"),
            broadcast_prefix=env.get("BROADCAST_PATH_PREFIX", "broadcasts"),
            broadcast_max_duration=int(
                env.get("BROADCAST_MAX_DURATION", 2 * 60 * 60)
            ),
        )


def missing_variables() -> list[str]:
    """返回缺失的必需环境变量名"""
    return [var for var in REQUIRED_VARS if not os.environ.get(var)]
