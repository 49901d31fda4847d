"""TreePersister - 防抖持久化

订阅 TreeModel 的结构变化，把同一实体（tab 或 window）短时间内的多次变化
合并为一次写入：
- window: tree structure（150ms）
- tab: insert-before/after、ancestors、children、subtree-collapsed（100ms）
- group tab: 没有子节点时删除（100ms）

写入在触发时读取实体的当前状态，而不是调度时的状态。
触发前 tab 已离开窗口（attached=False）或窗口已关闭时跳过写入。

窗口等待 session restore 期间不写入任何东西：host 恢复出来的 session value
要等重放读取之后才能覆盖，也不能提前给邻居 tab 分配 stable id。
"""

from typing import Callable, Iterable

from .. import config
from ..core.errors import HostError, TabNotFoundError
from ..host.base import SessionStore, TabHost
from ..telemetry import get_logger, metrics
from ..timer import Timer
from .identity import IdentityResolver
from .model import TabNode, TreeChange, TreeModel
from .structure import serialize

logger = get_logger(__name__)

# 会改变祖先 / children / 位置的变化类型
_STRUCTURAL = {"created", "removed", "attached", "detached"}


class TreePersister:
    """树结构的防抖持久化"""

    def __init__(
        self,
        model: TreeModel,
        identity: IdentityResolver,
        store: SessionStore,
        host: TabHost,
        timer: Timer,
        is_initializing: Callable[[], bool] | None = None,
    ):
        self._model = model
        self._identity = identity
        self._store = store
        self._host = host
        self._timer = timer
        self._is_initializing = is_initializing or (lambda: False)

    def attach_to_model(self) -> None:
        """开始订阅模型变化"""
        self._model.add_listener(self.on_tree_change)

    def detach_from_model(self) -> None:
        self._model.remove_listener(self.on_tree_change)

    # === 变化分发 ===

    def on_tree_change(self, change: TreeChange) -> None:
        if self._is_restoring(change.window_id):
            metrics.inc("persist.deferred", {"change": change.kind})
            logger.debug(f"[Persister] Window {change.window_id} is restoring, skip {change.kind} writes")
            return

        nodes = self._nodes(change.tab_ids)
        parents = self._nodes(change.parent_ids)
        neighbors = self._nodes(change.neighbor_ids)

        self.reserve_save_tree_structure(change.window_id)

        if change.kind in _STRUCTURAL:
            self.reserve_update_ancestors(nodes)
            self.reserve_update_children(parents)
            self.reserve_update_insertion_position(nodes + neighbors)
        elif change.kind == "moved":
            self.reserve_update_children(parents)
            self.reserve_update_insertion_position(nodes + neighbors)
        elif change.kind == "collapsed":
            for node in nodes:
                self.reserve_update_subtree_collapsed(node)

        if change.kind in ("removed", "detached"):
            self.reserve_remove_needless_group_tab([p for p in parents if p.is_group])

    def _nodes(self, tab_ids: Iterable[int]) -> list[TabNode]:
        seen: set[int] = set()
        nodes = []
        for tab_id in tab_ids:
            node = self._model.get(tab_id)
            if node is not None and tab_id not in seen:
                seen.add(tab_id)
                nodes.append(node)
        return nodes

    def _is_restoring(self, window_id: int) -> bool:
        window = self._model.get_window(window_id)
        return window is not None and window.restore_pending

    # === window: tree structure ===

    def reserve_save_tree_structure(self, window_id: int) -> None:
        if self._is_initializing():
            return
        if self._model.get_window(window_id) is None:
            return
        self._timer.register_delay(
            f"tree_structure:{window_id}",
            config.TREE_STRUCTURE_SETTLE_SECONDS,
            lambda: self.save_tree_structure(window_id),
        )

    async def save_tree_structure(self, window_id: int) -> None:
        if self._model.get_window(window_id) is None or self._is_restoring(window_id):
            metrics.inc("persist.skipped", {"key": config.KEY_TREE_STRUCTURE})
            return
        structure = serialize(self._model.tabs_in(window_id))
        await self._store.set_window_value(window_id, config.KEY_TREE_STRUCTURE, structure)
        metrics.inc("persist.write", {"key": config.KEY_TREE_STRUCTURE})
        logger.debug(f"[Persister] Saved tree structure of window {window_id} ({len(structure)} tabs)")

    # === tab: relations ===

    def _reserve(self, purpose: str, nodes: Iterable[TabNode | None], action) -> None:
        for node in nodes:
            if node is None or not node.attached:
                continue
            self._timer.register_delay(
                f"{purpose}:{node.runtime_id}",
                config.TAB_RELATION_SETTLE_SECONDS,
                lambda node=node: self._run_if_attached(purpose, node, action),
            )

    async def _run_if_attached(self, purpose: str, node: TabNode, action) -> None:
        if not node.attached:
            metrics.inc("persist.skipped", {"key": purpose})
            logger.debug(f"[Persister] Tab {node.runtime_id} detached, skip {purpose}")
            return
        if self._is_restoring(node.window_id):
            metrics.inc("persist.skipped", {"key": purpose})
            logger.debug(f"[Persister] Window {node.window_id} is restoring, skip {purpose} of tab {node.runtime_id}")
            return
        try:
            await action(node)
        except TabNotFoundError:
            metrics.inc("persist.skipped", {"key": purpose})
            logger.debug(f"[Persister] Tab {node.runtime_id} vanished during {purpose}")
        except HostError as e:
            metrics.inc("persist.error", {"key": purpose})
            logger.warning(f"[Persister] Failed to write {purpose} of tab {node.runtime_id}: {e}")

    def reserve_update_insertion_position(self, nodes: Iterable[TabNode | None]) -> None:
        self._reserve("insertion_position", nodes, self.update_insertion_position)

    async def update_insertion_position(self, node: TabNode) -> None:
        prev = self._model.previous_tab(node)
        if prev is not None:
            await self._store.set_tab_value(
                node.runtime_id, config.KEY_INSERT_AFTER, await self._identity.identity_of(prev)
            )
        else:
            await self._store.remove_tab_value(node.runtime_id, config.KEY_INSERT_AFTER)

        nxt = self._model.next_tab(node)
        if nxt is not None:
            await self._store.set_tab_value(
                node.runtime_id, config.KEY_INSERT_BEFORE, await self._identity.identity_of(nxt)
            )
        else:
            await self._store.remove_tab_value(node.runtime_id, config.KEY_INSERT_BEFORE)
        metrics.inc("persist.write", {"key": "insertion_position"})

    def reserve_update_ancestors(self, nodes: Iterable[TabNode | None]) -> None:
        self._reserve("ancestors", nodes, self.update_ancestors)

    async def update_ancestors(self, node: TabNode) -> None:
        ancestor_ids = [await self._identity.identity_of(a) for a in self._model.ancestors_of(node)]
        await self._store.set_tab_value(node.runtime_id, config.KEY_ANCESTORS, ancestor_ids)
        metrics.inc("persist.write", {"key": config.KEY_ANCESTORS})

    def reserve_update_children(self, nodes: Iterable[TabNode | None]) -> None:
        self._reserve("children", nodes, self.update_children)

    async def update_children(self, node: TabNode) -> None:
        child_ids = [await self._identity.identity_of(c) for c in self._model.children_of(node)]
        await self._store.set_tab_value(node.runtime_id, config.KEY_CHILDREN, child_ids)
        metrics.inc("persist.write", {"key": config.KEY_CHILDREN})

    def reserve_update_subtree_collapsed(self, node: TabNode | None) -> None:
        self._reserve("subtree_collapsed", [node], self.update_subtree_collapsed)

    async def update_subtree_collapsed(self, node: TabNode) -> None:
        await self._store.set_tab_value(node.runtime_id, config.KEY_SUBTREE_COLLAPSED, node.collapsed)
        metrics.inc("persist.write", {"key": config.KEY_SUBTREE_COLLAPSED})

    # === needless group cleanup ===

    def reserve_remove_needless_group_tab(self, nodes: Iterable[TabNode | None]) -> None:
        for node in nodes:
            if node is None or not node.attached:
                continue
            self._timer.register_delay(
                f"remove_group:{node.runtime_id}",
                config.GROUP_CLEANUP_SETTLE_SECONDS,
                lambda node=node: self.remove_needless_group_tab(node),
            )

    async def remove_needless_group_tab(self, node: TabNode) -> bool:
        """删除没有子节点的 group tab

        Returns:
            是否请求了删除
        """
        if not node.attached or self._model.has_children(node):
            return False
        try:
            await self._host.remove_tab(node.runtime_id)
        except TabNotFoundError:
            logger.debug(f"[Persister] Group tab {node.runtime_id} already closed")
        metrics.inc("group.removed")
        logger.info(f"[Persister] Removed needless group tab {node.runtime_id}")
        return True
