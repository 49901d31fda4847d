"""Pytest 配置"""

import pytest

from tabtree import config
from tabtree.core.errors import HostError
from tabtree.host import MemoryHost
from tabtree.restore import Reconciler, WindowRestoreCoordinator
from tabtree.telemetry import metrics
from tabtree.timer import Timer
from tabtree.tree import IdentityResolver, TreeModel


@pytest.fixture
def anyio_backend():
    """指定 anyio 只使用 asyncio backend"""
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_metrics():
    """每次测试前重置指标"""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def fast_restore(monkeypatch):
    """缩短启动恢复等待时间"""
    monkeypatch.setattr(config, "RESTORE_GRACE_SECONDS", 0.05)
    monkeypatch.setattr(config, "RESTORE_EXTEND_SECONDS", 0.02)


@pytest.fixture
def host():
    """创建测试用 MemoryHost"""
    return MemoryHost()


@pytest.fixture
def model():
    return TreeModel()


@pytest.fixture
def identity(model, host):
    return IdentityResolver(model, host)


@pytest.fixture
async def timer():
    """创建测试用 Timer"""
    t = Timer()
    yield t
    t.stop()


@pytest.fixture
def coordinator(model, identity, timer):
    return WindowRestoreCoordinator(model, identity, timer)


@pytest.fixture
def reconciler(model, identity, host, coordinator):
    r = Reconciler(model, identity, host, coordinator)
    coordinator.set_reconciler(r)
    return r


async def load_model(model: TreeModel, host: MemoryHost, identity: IdentityResolver | None = None) -> None:
    """按 host 当前状态重建模型，并解析所有 stable id"""
    model.rebuild(await host.get_windows())
    if identity is not None:
        for window in model.windows:
            for node in model.tabs_in(window.window_id):
                await identity.identity_of(node)


def parents(model: TreeModel, window_id: int) -> list[int | None]:
    """窗口内每个 tab 的父节点 flat index（根为 None）"""
    tabs = model.tabs_in(window_id)
    positions = {node.runtime_id: i for i, node in enumerate(tabs)}
    return [positions.get(node.parent_id) if node.parent_id is not None else None for node in tabs]


class UnreliableHost(MemoryHost):
    """指定的 session value 读取会失败的 MemoryHost（模拟 bridge 超时）"""

    def __init__(self):
        super().__init__()
        self.failing_reads: set[tuple[str, int, str]] = set()

    def fail_read(self, kind: str, entity_id: int, key: str) -> None:
        self.failing_reads.add((kind, entity_id, key))

    async def get_tab_value(self, tab_id, key):
        if ("tab", tab_id, key) in self.failing_reads:
            raise HostError("bridge timeout")
        return await super().get_tab_value(tab_id, key)

    async def get_window_value(self, window_id, key):
        if ("window", window_id, key) in self.failing_reads:
            raise HostError("bridge timeout")
        return await super().get_window_value(window_id, key)
