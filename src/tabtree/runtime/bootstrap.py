"""Bootstrap - 集中构造系统组件

职责：
- 创建 Timer, Host, ExternalListeners, TabTreeService
- 返回 RuntimeComponents 供调用方使用

不负责：
- 启动/停止生命周期（由调用方管理）
- Web 服务创建

组件通过返回值显式传递，不保存在模块级全局变量中。
"""

from dataclasses import dataclass
from pathlib import Path

from .. import config
from ..external import ExternalListeners
from ..host import HttpHost, MemoryHost
from ..host.base import SessionStore, TabHost
from ..service import TabTreeService
from ..telemetry import get_logger
from ..timer import Timer

logger = get_logger(__name__)


@dataclass
class RuntimeComponents:
    """Bootstrap 返回的运行时组件集合"""

    timer: Timer
    host: TabHost
    store: SessionStore
    listeners: ExternalListeners
    service: TabTreeService

    async def start(self) -> None:
        """初始化服务（等待恢复、重建树、通知 ready）"""
        await self.service.init()
        logger.info("[Bootstrap] Service started")

    async def stop(self) -> None:
        await self.service.destroy()
        logger.info("[Bootstrap] Service stopped")


def bootstrap(
    host: "TabHost | None" = None,
    store: "SessionStore | None" = None,
    bridge_url: str | None = None,
    state_path: Path | None = None,
    known_listeners: list[str] | None = None,
) -> RuntimeComponents:
    """构造运行时组件

    Args:
        host: Host 实现，None 时使用 HttpHost(bridge_url)
        store: SessionStore 实现，None 时与 host 相同（host 必须同时实现两者）
        bridge_url: bridge 地址，"memory" 表示使用 MemoryHost
        state_path: 服务状态文件
        known_listeners: 外部监听者 URL

    Returns:
        RuntimeComponents 包含所有构造好的组件
    """
    if host is None:
        url = bridge_url or config.BRIDGE_URL
        host = MemoryHost() if url == "memory" else HttpHost(url)
    if store is None:
        if not isinstance(host, SessionStore):
            raise TypeError(f"{type(host).__name__} does not provide session values; pass store=")
        store = host

    timer = Timer()
    listeners = ExternalListeners(
        known=known_listeners,
        state_path=state_path or config.STATE_FILE,
    )
    service = TabTreeService(host, store, timer=timer, listeners=listeners)

    logger.info(f"[Bootstrap] Components created (host={host.name})")

    return RuntimeComponents(
        timer=timer,
        host=host,
        store=store,
        listeners=listeners,
        service=service,
    )
