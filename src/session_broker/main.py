"""
CLI 入口模块
加载配置、检查凭证并启动 Session Broker HTTP 服务器
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

from session_broker.core.config import BrokerConfig, missing_variables
from session_broker.services.token_server import start_token_server

logger = logging.getLogger("session_broker")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: int = logging.INFO) -> None:
    """统一配置日志：业务 logger 独立 handler，不向 root 传播"""
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)

    logging.basicConfig(level=level, format=LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logger.setLevel(level)
    logger.propagate = False  # 防止与 root handler 重复输出
    if not logger.handlers:
        logger.addHandler(console_handler)

    # 屏蔽第三方库的冗余日志
    logging.getLogger("livekit").setLevel(logging.INFO)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def check_environment() -> bool:
    """检查必要的环境变量，缺失时输出提示并返回 False"""
    missing = missing_variables()
    if not missing:
        return True

    logger.error("=" * 100)
    logger.error(f"❌ 缺少环境变量: {', '.join(missing)}")
    logger.error("请在 LiveKit 控制台 (https://cloud.livekit.io) 的 Settings -> Keys 中获取")
    logger.error(f"然后写入 {Path('.env').resolve()} 或设置为环境变量:")
    logger.error("  export LIVEKIT_URL=http://localhost:7880")
    logger.error("  export LIVEKIT_API_KEY=devkey")
    logger.error("  export LIVEKIT_API_SECRET=your_secret")
    logger.error("=" * 100)
    return False


async def serve(config: BrokerConfig) -> None:
    """运行服务器直到收到 SIGINT / SIGTERM"""
    server = await start_token_server(config)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows 不支持 add_signal_handler，依赖 KeyboardInterrupt
            pass

    try:
        await stop_event.wait()
    finally:
        await server.stop()


def main():
    load_dotenv()
    setup_logging()

    if not check_environment():
        sys.exit(1)

    config = BrokerConfig.from_env()
    logger.info(f"🔧 LiveKit: {config.livekit_url} | 监听 {config.host}:{config.port}")

    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        logger.info("收到中断信号，退出")


if __name__ == "__main__":
    main()
