"""FastAPI 应用初始化"""

import argparse
import asyncio
import logging

import uvicorn
from fastapi import FastAPI

from tabtree import config
from tabtree.runtime import RuntimeComponents, bootstrap
from tabtree.service import TabTreeService
from tabtree.telemetry import setup_logging
from tabtree.web.receiver import EventReceiver

logger = logging.getLogger(__name__)


def create_app(service: TabTreeService) -> FastAPI:
    """创建 Web 应用"""
    app = FastAPI(title="TabTree")
    EventReceiver(service).setup_routes(app)
    return app


async def start_server(components: RuntimeComponents, host: str, port: int) -> None:
    """启动服务器"""
    app = create_app(components.service)

    uvicorn_config = uvicorn.Config(app, host=host, port=port, log_level=config.LOG_LEVEL.lower())
    uvicorn_server = uvicorn.Server(uvicorn_config)

    # 事件接收先启动，初始化期间的 tab 事件用于判断恢复是否结束
    server_task = asyncio.create_task(uvicorn_server.serve())
    logger.info(f"TabTree server starting at http://{host}:{port}")

    try:
        await components.start()
        await server_task
    finally:
        await components.stop()
        if not server_task.done():
            uvicorn_server.should_exit = True
            await server_task


def main():
    """入口函数"""
    parser = argparse.ArgumentParser(prog="tabtree", description="Persistent tab tree service")
    parser.add_argument("--bridge", default=config.BRIDGE_URL, help='bridge URL, or "memory"')
    parser.add_argument("--host", default=config.LISTEN_HOST)
    parser.add_argument("--port", type=int, default=config.LISTEN_PORT)
    parser.add_argument("--log-level", default=config.LOG_LEVEL)
    args = parser.parse_args()

    setup_logging(args.log_level)
    components = bootstrap(bridge_url=args.bridge)
    try:
        asyncio.run(start_server(components, args.host, args.port))
    except KeyboardInterrupt:
        print("\nServer stopped")


if __name__ == "__main__":
    main()
