"""Reconciler - 启动时重建 tab 树

每个窗口：
1. 读取窗口的 tree structure，枚举存活 tab
2. 只有一个 session restore 占位 tab 时交给 WindowRestoreCoordinator
3. structure 长度与 tab 数一致：按位置直接应用（快速路径）
4. 否则对每个 tab 执行 attach_tab_from_restored_info（回退路径）

持久化的引用解析不到存活 tab 时视为不存在，不报错。
host 读取失败（HostError）只影响出错的窗口或 tab，记录后继续。
"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Iterable, TypeVar

from .. import config
from ..core.errors import HostError
from ..core.ids import short_id
from ..host.base import SessionStore
from ..telemetry import format_tab_log, get_logger, metrics
from ..tree.identity import IdentityResolver
from ..tree.model import TabNode, TreeModel
from ..tree.structure import apply_edges, deserialize
from .coordinator import WindowRestoreCoordinator

logger = get_logger(__name__)

T = TypeVar("T")

# load_window 的结果
RESULT_EMPTY = "empty"
RESULT_PENDING = "pending"
RESULT_STRUCTURE = "structure"
RESULT_FALLBACK = "fallback"


def first_resolved(
    candidates: Iterable[T | None],
    accept: Callable[[T], bool] = lambda _: True,
) -> T | None:
    """按顺序返回第一个已解析且被接受的候选，没有则返回 None"""
    for candidate in candidates:
        if candidate is not None and accept(candidate):
            return candidate
    return None


@dataclass
class RestoredReferences:
    """解析后的持久化引用（解析不到的为 None）"""

    insert_before: TabNode | None = None
    insert_after: TabNode | None = None
    ancestors: list[TabNode | None] = field(default_factory=list)
    children: list[TabNode | None] = field(default_factory=list)
    collapsed: bool = False


def _id_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _id_or_none(value: object) -> str | None:
    return value if isinstance(value, str) else None


class Reconciler:
    """启动时的树重建"""

    def __init__(
        self,
        model: TreeModel,
        identity: IdentityResolver,
        store: SessionStore,
        coordinator: WindowRestoreCoordinator,
    ):
        self._model = model
        self._identity = identity
        self._store = store
        self._coordinator = coordinator

    async def load_tree_structure(self, window_ids: Iterable[int] | None = None) -> dict[int, str]:
        """重建所有（或指定）窗口的树

        Returns:
            {window_id: 使用的路径}
        """
        logger.info("[Reconciler] loadTreeStructure")
        if window_ids is None:
            window_ids = [window.window_id for window in self._model.windows]
        window_ids = list(window_ids)
        results = await asyncio.gather(*(self.load_window(window_id) for window_id in window_ids))
        return dict(zip(window_ids, results))

    async def load_window(self, window_id: int) -> str:
        try:
            structure = await self._store.get_window_value(window_id, config.KEY_TREE_STRUCTURE)
        except HostError as e:
            # 读不到 structure 时按 tab 关系回退
            metrics.inc("restore.error", {"step": config.KEY_TREE_STRUCTURE})
            logger.warning(f"[Reconciler] Window {window_id}: failed to read tree structure: {e}")
            structure = None
        tabs = self._model.tabs_in(window_id)
        if not tabs:
            return RESULT_EMPTY

        if len(tabs) == 1 and tabs[0].is_session_restore:
            self._coordinator.wait_window_restored(tabs[0])
            return RESULT_PENDING

        edges = deserialize(structure, tabs)
        if edges is not None:
            changed = apply_edges(self._model, edges)
            metrics.inc("restore.structure")
            logger.info(f"[Reconciler] Window {window_id}: applied tree structure ({changed} changes)")
            return RESULT_STRUCTURE

        logger.info(
            f"[Reconciler] Tree information for the window {window_id} is not same to actual state. "
            "Fallback to restoration from tab relations."
        )
        metrics.inc("restore.fallback")
        await self.resolve_identities(tabs)
        for node in tabs:
            if not node.attached:
                continue
            await self.attach_tab_from_restored_info(node, keep_current_tree=True, can_collapse=True)
        return RESULT_FALLBACK

    async def resolve_identities(self, nodes: list[TabNode]) -> int:
        """并发解析一组 tab 的 stable id

        单个 tab 的 HostError 只记录，不影响其他 tab。

        Returns:
            解析失败的 tab 数
        """
        results = await asyncio.gather(
            *(self._identity.identity_of(node) for node in nodes),
            return_exceptions=True,
        )
        failed = 0
        for node, result in zip(nodes, results):
            if isinstance(result, HostError):
                failed += 1
                metrics.inc("restore.error", {"step": config.KEY_UNIQUE_ID})
                logger.warning(format_tab_log("Reconciler", node.window_id, node.runtime_id,
                                              f"Failed to resolve stable id: {result}"))
            elif isinstance(result, BaseException):
                raise result
        return failed

    async def read_references(self, node: TabNode) -> RestoredReferences:
        """读取并解析 tab 的持久化引用"""
        insert_before, insert_after, ancestors, children, collapsed = await asyncio.gather(
            self._store.get_tab_value(node.runtime_id, config.KEY_INSERT_BEFORE),
            self._store.get_tab_value(node.runtime_id, config.KEY_INSERT_AFTER),
            self._store.get_tab_value(node.runtime_id, config.KEY_ANCESTORS),
            self._store.get_tab_value(node.runtime_id, config.KEY_CHILDREN),
            self._store.get_tab_value(node.runtime_id, config.KEY_SUBTREE_COLLAPSED),
        )
        ancestor_ids = _id_list(ancestors)
        child_ids = _id_list(children)
        logger.debug(format_tab_log(
            "Reconciler", node.window_id, node.runtime_id,
            f"persistent references: before={short_id(_id_or_none(insert_before))} "
            f"after={short_id(_id_or_none(insert_after))} "
            f"ancestors=[{', '.join(map(short_id, ancestor_ids))}] "
            f"children=[{', '.join(map(short_id, child_ids))}] collapsed={collapsed}",
        ))
        return RestoredReferences(
            insert_before=self._identity.tab_for(_id_or_none(insert_before)),
            insert_after=self._identity.tab_for(_id_or_none(insert_after)),
            ancestors=[self._identity.tab_for(i) for i in ancestor_ids],
            children=[self._identity.tab_for(i) for i in child_ids],
            collapsed=collapsed is True,
        )

    async def attach_tab_from_restored_info(
        self,
        node: TabNode,
        *,
        keep_current_tree: bool = False,
        children: bool = False,
        can_collapse: bool = False,
    ) -> None:
        """根据持久化引用把 tab 挂回树上

        Args:
            node: 目标 tab
            keep_current_tree: 为 False 时，没有可用祖先但按位置继承了父节点、
                且处于可安全摘下的位置（没有下一个兄弟）的 tab 会被摘下
            children: 同时把解析到的子节点挂到该 tab 下
            can_collapse: 同时恢复折叠状态
        """
        try:
            await self._identity.identity_of(node)
            refs = await self.read_references(node)
        except HostError as e:
            metrics.inc("restore.error", {"step": "references"})
            logger.warning(format_tab_log("Reconciler", node.window_id, node.runtime_id,
                                          f"Failed to read persistent references: {e}"))
            return
        if not node.attached:
            logger.debug(format_tab_log("Reconciler", node.window_id, node.runtime_id, "Tab closed meanwhile"))
            return

        parent = first_resolved(refs.ancestors, lambda a: self._model.can_attach(node, a))
        if parent is not None:
            self._model.attach(
                node,
                parent,
                insert_before=refs.insert_before,
                insert_after=refs.insert_after,
            )

        if (not keep_current_tree
                # 没有可用的祖先（root tab）
                and parent is None
                # 却因为位置被挂到了某个父节点下
                and self._model.parent_of(node) is not None
                # 且不在已有子树的中间（可以安全摘下）
                and self._model.next_sibling(node) is None):
            self._model.detach(node)

        if children:
            for child in refs.children:
                if child is not None and self._model.can_attach(child, node):
                    self._model.attach(child, node)

        if can_collapse:
            self._model.set_collapsed(node, refs.collapsed)
