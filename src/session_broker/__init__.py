"""
session-broker 模块
房间会话 / Token 分配服务，并代理 LiveKit 录制与直播控制
"""

from session_broker.core.config import BrokerConfig
from session_broker.core.registry import BrokerState, RoomRegistry
from session_broker.services.provider import LiveKitProvider, ProviderError
from session_broker.services.token_server import TokenServer, create_app, start_token_server

__all__ = [
    "BrokerConfig",
    "BrokerState",
    "RoomRegistry",
    "LiveKitProvider",
    "ProviderError",
    "TokenServer",
    "create_app",
    "start_token_server",
]

__version__ = "0.1.0"
