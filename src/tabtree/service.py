"""TabTreeService: 维护浏览器 tab 树并跨重启持久化

启动顺序：
1. 等待 host 的启动恢复安静下来
2. 根据 host 枚举重建模型，为所有 tab 解析 stable id
3. 逐窗口重建树（structure / 回退 / 等待占位窗口）
4. 开始处理 host 事件，允许保存 tree structure
5. 通知外部监听者 ready
"""

from .core.errors import HostError, TreeError
from .external import ExternalListeners
from .host.base import SessionStore, TabHost, TabInfo
from .restore import Reconciler, WindowRestoreCoordinator
from .telemetry import format_tab_log, get_logger, metrics
from .timer import Timer
from .tree import IdentityResolver, TabNode, TreeModel, TreePersister

logger = get_logger(__name__)


class TabTreeService:
    """Tab 树服务

    所有 host 操作通过 TabHost / SessionStore 进行，组件在构造时显式注入。
    """

    def __init__(
        self,
        host: TabHost,
        store: SessionStore,
        timer: Timer | None = None,
        listeners: ExternalListeners | None = None,
    ):
        self.host = host
        self.store = store
        self.timer = timer or Timer()
        self.listeners = listeners

        self.model = TreeModel()
        self.identity = IdentityResolver(self.model, store)
        self.coordinator = WindowRestoreCoordinator(self.model, self.identity, self.timer)
        self.reconciler = Reconciler(self.model, self.identity, store, self.coordinator)
        self.coordinator.set_reconciler(self.reconciler)
        self.persister = TreePersister(
            self.model,
            self.identity,
            store,
            host,
            self.timer,
            is_initializing=lambda: self._initializing,
        )
        self.persister.attach_to_model()

        self._initializing = True
        self._observing = False

    @property
    def initializing(self) -> bool:
        return self._initializing

    # === 生命周期 ===

    async def init(self) -> None:
        """启动并重建树"""
        await self.coordinator.wait_until_completely_restored()
        await self.rebuild_all()
        await self.reconciler.load_tree_structure()
        self._observing = True
        self._initializing = False
        logger.info("[Service] Initialized")

        if self.listeners is not None:
            await self.listeners.notify_ready()

    async def rebuild_all(self) -> None:
        windows = await self.host.get_windows()
        self.model.rebuild(windows)
        nodes = [node for window in self.model.windows for node in self.model.tabs_in(window.window_id)]
        await self.reconciler.resolve_identities(nodes)

    async def destroy(self) -> None:
        """停止服务"""
        self._observing = False
        if self.listeners is not None:
            await self.listeners.notify_shutdown()
        self.timer.stop()
        self.persister.detach_from_model()
        await self.host.close()
        logger.info("[Service] Destroyed")

    # === host 事件 ===

    async def on_tab_created(self, info: TabInfo, restored: bool = False) -> TabNode | None:
        """host 新建 tab

        Args:
            info: host tab 信息
            restored: tab 是否由 host 从 session 恢复（如撤销关闭）
        """
        self.coordinator.observe_tab_created()
        if not self._observing:
            # 初始化完成前的 tab 由 rebuild_all 统一处理
            return None

        node = self.model.add_tab(info)
        if self.coordinator.buffer_tab(node):
            logger.debug(format_tab_log("Service", node.window_id, node.runtime_id, "Buffered while restoring"))
            return node

        try:
            await self.identity.identity_of(node)
        except HostError as e:
            # 之后的防抖写入会再次解析
            metrics.inc("identity.error")
            logger.warning(format_tab_log("Service", node.window_id, node.runtime_id, f"Failed to resolve stable id: {e}"))
            return node
        if restored and node.attached:
            await self.reconciler.attach_tab_from_restored_info(node, children=True)
        return node

    async def on_tab_removed(self, tab_id: int) -> bool:
        node = self.model.get(tab_id)
        if node is None:
            return False
        self.identity.forget(node)
        self.model.remove_tab(tab_id)
        return True

    async def on_tab_moved(self, tab_id: int, index: int) -> bool:
        return self.model.move_tab(tab_id, index) is not None

    async def on_tab_updated(self, tab_id: int, url: str) -> bool:
        node = self.model.get(tab_id)
        if node is None:
            return False
        node.url = url
        return True

    async def on_window_restored(self, window_id: int) -> bool:
        return self.coordinator.notify_window_restored(window_id)

    async def on_window_removed(self, window_id: int) -> bool:
        for node in self.model.tabs_in(window_id):
            self.identity.forget(node)
        return self.model.remove_window(window_id) is not None

    # === 树操作（bridge 转发的用户操作）===

    def _require(self, tab_id: int | None) -> TabNode:
        node = self.model.get(tab_id)
        if node is None:
            raise TreeError(f"Unknown tab: {tab_id}")
        return node

    async def attach(
        self,
        child_id: int,
        parent_id: int,
        insert_before_id: int | None = None,
        insert_after_id: int | None = None,
    ) -> bool:
        child = self._require(child_id)
        parent = self._require(parent_id)
        changed = self.model.attach(
            child,
            parent,
            insert_before=self.model.get(insert_before_id),
            insert_after=self.model.get(insert_after_id),
        )
        if changed:
            metrics.inc("tree.attach")
        return changed

    async def detach(self, tab_id: int) -> bool:
        return self.model.detach(self._require(tab_id))

    async def set_collapsed(self, tab_id: int, collapsed: bool) -> bool:
        return self.model.set_collapsed(self._require(tab_id), collapsed)

    # === 查询 ===

    def get_tree_dict(self) -> dict:
        data = self.model.to_dict()
        data["initializing"] = self._initializing
        return data
