"""TabTreeService 集成测试（MemoryHost）"""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from tabtree import config
from tabtree.core.errors import TreeError
from tabtree.external import ExternalListeners
from tabtree.service import TabTreeService
from tabtree.telemetry import metrics

from conftest import UnreliableHost, parents

# 比最长的防抖时间（150ms）多留余量
SETTLE = 0.3


@pytest.fixture
async def make_service(host, fast_restore):
    created = []

    async def factory(**kwargs):
        service = TabTreeService(host, host, **kwargs)
        created.append(service)
        await service.init()
        return service

    yield factory
    for service in created:
        service.timer.stop()


class TestInit:
    """启动测试"""

    async def test_assigns_ids_and_finishes_initializing(self, host, make_service):
        window_id = host.open_window(["https://a", "https://b"])

        service = await make_service()

        assert service.initializing is False
        tabs = service.model.tabs_in(window_id)
        assert all(node.unique_id for node in tabs)
        assert parents(service.model, window_id) == [None, None]
        assert service.get_tree_dict()["initializing"] is False

    async def test_tabs_created_during_init_are_deferred(self, host, fast_restore):
        window_id = host.open_window(["https://a"])
        service = TabTreeService(host, host)
        init = asyncio.create_task(service.init())
        await asyncio.sleep(0.01)

        info = host.open_tab(window_id, "https://late")
        assert await service.on_tab_created(info) is None

        await init
        # 初始化时从 host 枚举得到
        assert service.model.get(info.tab_id) is not None
        service.timer.stop()

    async def test_notifies_external_listeners(self, host, fast_restore, tmp_path):
        host.open_window(["https://a"])
        listeners = ExternalListeners(
            known=["http://listener/"],
            state_path=tmp_path / "state.json",
            transport=httpx.MockTransport(lambda request: httpx.Response(200)),
        )
        service = TabTreeService(host, host, listeners=listeners)

        await service.init()

        assert listeners.cached == ["http://listener/"]
        await service.destroy()

    async def test_lifecycle_notifications(self, host, fast_restore):
        host.open_window(["https://a"])
        listeners = AsyncMock(spec=ExternalListeners)
        service = TabTreeService(host, host, listeners=listeners)

        await service.init()
        listeners.notify_ready.assert_awaited_once()
        listeners.notify_shutdown.assert_not_awaited()

        await service.destroy()
        listeners.notify_shutdown.assert_awaited_once()
        assert service.timer.is_stopped is True


async def build_tree(host, make_service):
    """a <- b <- c，a 折叠，持久化后停止服务"""
    window_id = host.open_window(["https://a", "https://b", "https://c"])
    service = await make_service()
    a, b, c = (node.runtime_id for node in service.model.tabs_in(window_id))
    await service.attach(b, a)
    await service.attach(c, b)
    await service.set_collapsed(a, True)
    await asyncio.sleep(SETTLE)
    await service.destroy()
    return window_id, service


class TestRestart:
    """跨重启测试"""

    async def test_structure_survives_restart(self, host, make_service):
        window_id, before = await build_tree(host, make_service)
        metrics.reset()
        ids_before = [n.unique_id for n in before.model.tabs_in(window_id)]

        host.restart()
        service = await make_service()

        tabs = service.model.tabs_in(window_id)
        assert [n.unique_id for n in tabs] == ids_before
        assert parents(service.model, window_id) == [None, 0, 1]
        assert tabs[0].collapsed is True
        assert metrics.get_counter("restore.structure") >= 1

    async def test_fallback_when_tab_count_changed(self, host, make_service):
        window_id, _ = await build_tree(host, make_service)
        metrics.reset()

        host.restart()
        host.open_tab(window_id, "https://new")
        service = await make_service()

        assert parents(service.model, window_id) == [None, 0, 1, None]
        assert service.model.tabs_in(window_id)[0].collapsed is True
        assert metrics.get_counter("restore.fallback") == 1

    async def test_no_timer_errors(self, host, make_service):
        await build_tree(host, make_service)
        assert metrics.get_counter("timer.errors", {"task": "ancestors"}) == 0
        assert metrics.get_counter("timer.errors", {"task": "tree_structure"}) == 0


class TestEvents:
    """host 事件测试"""

    async def test_created_removed_moved_updated(self, host, make_service):
        window_id = host.open_window(["https://a", "https://b"])
        service = await make_service()
        a, b = service.model.tabs_in(window_id)

        info = host.open_tab(window_id, "https://c")
        node = await service.on_tab_created(info)
        assert node.unique_id is not None

        assert await service.on_tab_moved(node.runtime_id, 0) is True
        assert service.model.tabs_in(window_id)[0] is node

        assert await service.on_tab_updated(node.runtime_id, "https://d") is True
        assert node.url == "https://d"

        assert await service.on_tab_removed(node.runtime_id) is True
        assert await service.on_tab_removed(node.runtime_id) is False
        assert service.model.tabs_in(window_id) == [a, b]

    async def test_undo_close_restores_position_in_tree(self, host, make_service):
        window_id = host.open_window(["https://a", "https://b"])
        service = await make_service()
        a, b = service.model.tabs_in(window_id)
        await service.attach(b.runtime_id, a.runtime_id)
        await asyncio.sleep(SETTLE)

        saved = host.tab_values(b.runtime_id)
        await host.remove_tab(b.runtime_id)
        await service.on_tab_removed(b.runtime_id)

        # host 重新打开 tab，并带回它的 session value
        info = host.open_tab(window_id, "https://b", index=1)
        for key, value in saved.items():
            await host.set_tab_value(info.tab_id, key, value)
        node = await service.on_tab_created(info, restored=True)

        assert node.unique_id == b.unique_id
        assert parents(service.model, window_id) == [None, 0]

    async def test_window_removed(self, host, make_service):
        window_id = host.open_window(["https://a"])
        service = await make_service()

        assert await service.on_window_removed(window_id) is True
        assert await service.on_window_removed(window_id) is False
        assert service.model.get_window(window_id) is None

    async def test_tree_edits_on_unknown_tab(self, host, make_service):
        window_id = host.open_window(["https://a"])
        service = await make_service()
        a = service.model.tabs_in(window_id)[0]

        with pytest.raises(TreeError):
            await service.attach(a.runtime_id, 999)
        with pytest.raises(TreeError):
            await service.detach(999)
        with pytest.raises(TreeError):
            await service.set_collapsed(999, True)

    async def test_session_restore_window(self, host, make_service):
        window_id = host.open_window([config.SESSION_RESTORE_URL_PREFIX])
        service = await make_service()
        placeholder = service.model.tabs_in(window_id)[0]
        assert service.coordinator.is_restoring(window_id)

        await host.set_tab_value(placeholder.runtime_id, config.KEY_UNIQUE_ID,
                                 {"id": "tab-1-r0", "tab_id": placeholder.runtime_id})
        info = host.open_tab(window_id, "https://r1")
        await host.set_tab_value(info.tab_id, config.KEY_UNIQUE_ID, {"id": "tab-1-r1", "tab_id": info.tab_id})
        await host.set_tab_value(info.tab_id, config.KEY_ANCESTORS, ["tab-1-r0"])
        await service.on_tab_created(info)
        assert service.model.get_window(window_id).restoring_tabs == [info.tab_id]

        assert await service.on_window_restored(window_id) is True
        await service.coordinator.wait_replays()

        assert parents(service.model, window_id) == [None, 0]
        assert placeholder.unique_id == "tab-1-r0"

    async def test_session_restore_signal_after_settle(self, host, make_service):
        window_id = host.open_window([config.SESSION_RESTORE_URL_PREFIX])
        service = await make_service()
        placeholder = service.model.tabs_in(window_id)[0]

        await host.set_tab_value(placeholder.runtime_id, config.KEY_UNIQUE_ID,
                                 {"id": "tab-1-r0", "tab_id": placeholder.runtime_id})
        restored = []
        for i in (1, 2):
            info = host.open_tab(window_id, f"https://r{i}")
            await host.set_tab_value(info.tab_id, config.KEY_UNIQUE_ID, {"id": f"tab-1-r{i}", "tab_id": info.tab_id})
            await host.set_tab_value(info.tab_id, config.KEY_ANCESTORS, [f"tab-1-r{j}" for j in range(i - 1, -1, -1)])
            restored.append(await service.on_tab_created(info))

        # host 的 restored 通知晚于所有防抖时间
        await asyncio.sleep(SETTLE)
        assert [n.unique_id for n in restored] == [None, None]
        assert host.tab_values(restored[1].runtime_id)[config.KEY_ANCESTORS] == ["tab-1-r1", "tab-1-r0"]

        assert await service.on_window_restored(window_id) is True
        await service.coordinator.wait_replays()

        assert parents(service.model, window_id) == [None, 0, 1]
        assert [n.unique_id for n in restored] == ["tab-1-r1", "tab-1-r2"]


class TestHostErrors:
    """host 读取失败不会中断启动和事件处理"""

    @pytest.fixture
    def host(self):
        return UnreliableHost()

    async def test_init_survives_failed_reference_read(self, host, make_service):
        window_id, _ = await build_tree(host, make_service)
        host.restart()
        host.open_tab(window_id, "https://new")
        tab_ids = [tab.tab_id for tab in (await host.get_windows())[0].tabs]
        host.fail_read("tab", tab_ids[2], config.KEY_ANCESTORS)
        metrics.reset()

        service = await make_service()

        assert service.initializing is False
        assert all(node.unique_id for node in service.model.tabs_in(window_id))
        # c 的关系读不到，只有 b 挂回 a 下
        assert parents(service.model, window_id) == [None, 0, None, None]
        assert metrics.get_counter("restore.error", {"step": "references"}) == 1

        info = host.open_tab(window_id, "https://later")
        assert await service.on_tab_created(info) is not None

    async def test_failed_identity_on_created_tab(self, host, make_service):
        window_id = host.open_window(["https://a"])
        service = await make_service()

        info = host.open_tab(window_id, "https://b")
        host.fail_read("tab", info.tab_id, config.KEY_UNIQUE_ID)
        node = await service.on_tab_created(info)

        assert node is service.model.get(info.tab_id)
        assert node.unique_id is None
        assert metrics.get_counter("identity.error") == 1
