"""TreeModel - 每个窗口一棵 tab 树

节点存放在以 runtime id 为 key 的 arena 中，另有 stable id -> runtime id 的索引表。
parent / children 只保存 key，查询时回到 arena 查找，不持有对象引用，
关闭 tab 后不会留下悬空的所有权关系。

flat order（窗口内 tab 的可见顺序）由 host 决定，模型只跟随 host 事件更新；
attach/detach 只改变树边，不移动 tab。

每次结构变化都会通知监听者（TreePersister 订阅后负责防抖持久化）。
"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator

from .. import config
from ..core.errors import TreeError
from ..host.base import TabInfo, WindowInfo
from ..telemetry import get_logger

logger = get_logger(__name__)


@dataclass
class TabNode:
    """Tab 节点

    Attributes:
        runtime_id: host 分配的 id，重启后变化
        window_id: 所属窗口
        url: 当前 URL（用于识别恢复占位 tab / group tab）
        unique_id: stable id，由 IdentityResolver 分配
        parent_id: 父节点 runtime id（仅用于查找）
        children_ids: 子节点 runtime id，顺序即兄弟顺序
        collapsed: 子树是否折叠
        attached: 是否仍属于某个窗口（延迟任务触发前需检查）
    """

    runtime_id: int
    window_id: int
    url: str = ""
    unique_id: str | None = None
    parent_id: int | None = None
    children_ids: list[int] = field(default_factory=list)
    collapsed: bool = False
    attached: bool = True

    @property
    def is_session_restore(self) -> bool:
        return self.url.startswith(config.SESSION_RESTORE_URL_PREFIX)

    @property
    def is_group(self) -> bool:
        return self.url.startswith(config.GROUP_TAB_URL_PREFIX)


@dataclass
class Window:
    """窗口

    Attributes:
        window_id: 窗口 id
        tab_order: flat order 的 runtime id 列表
        restoring_tabs: session restore 期间缓冲的 tab
        restored: session restore 完成信号（一次性）
    """

    window_id: int
    tab_order: list[int] = field(default_factory=list)
    restoring_tabs: list[int] = field(default_factory=list)
    restored: asyncio.Future | None = None

    @property
    def restore_pending(self) -> bool:
        return self.restored is not None and not self.restored.done()


@dataclass
class TreeChange:
    """一次结构变化

    Attributes:
        kind: created / removed / moved / attached / detached / collapsed
        window_id: 所在窗口
        tab_ids: 自身祖先或位置发生变化的 tab
        parent_ids: children 列表发生变化的 tab
        neighbor_ids: 前后相邻 tab 发生变化的 tab
    """

    kind: str
    window_id: int
    tab_ids: list[int] = field(default_factory=list)
    parent_ids: list[int] = field(default_factory=list)
    neighbor_ids: list[int] = field(default_factory=list)


ChangeListener = Callable[[TreeChange], None]


class TreeModel:
    """所有窗口的 tab 树"""

    def __init__(self):
        self._nodes: dict[int, TabNode] = {}
        self._windows: dict[int, Window] = {}
        self._by_unique_id: dict[str, int] = {}
        self._listeners: list[ChangeListener] = []

    # === 监听 ===

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, change: TreeChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:
                logger.error(f"[TreeModel] Listener failed on {change.kind}: {e}")

    # === 构建 ===

    def rebuild(self, windows: Iterable[WindowInfo]) -> None:
        """根据 host 枚举结果重建（清空已有树，不发通知）"""
        for node in self._nodes.values():
            node.attached = False
        self._nodes.clear()
        self._windows.clear()
        self._by_unique_id.clear()

        for info in windows:
            window = self.ensure_window(info.window_id)
            for tab in sorted(info.tabs, key=lambda t: t.index):
                node = TabNode(runtime_id=tab.tab_id, window_id=info.window_id, url=tab.url)
                self._nodes[node.runtime_id] = node
                window.tab_order.append(node.runtime_id)
        logger.info(f"[TreeModel] Rebuilt {len(self._windows)} windows, {len(self._nodes)} tabs")

    def ensure_window(self, window_id: int) -> Window:
        window = self._windows.get(window_id)
        if window is None:
            window = Window(window_id=window_id)
            self._windows[window_id] = window
        return window

    # === 查询 ===

    def get(self, runtime_id: int | None) -> TabNode | None:
        if runtime_id is None:
            return None
        return self._nodes.get(runtime_id)

    def get_window(self, window_id: int) -> Window | None:
        return self._windows.get(window_id)

    @property
    def windows(self) -> list[Window]:
        return list(self._windows.values())

    def tabs_in(self, window_id: int) -> list[TabNode]:
        """窗口内所有 tab（flat order）"""
        window = self._windows.get(window_id)
        if window is None:
            return []
        return [self._nodes[tab_id] for tab_id in window.tab_order]

    def flat_index(self, node: TabNode) -> int:
        window = self._windows.get(node.window_id)
        if window is None or node.runtime_id not in window.tab_order:
            return -1
        return window.tab_order.index(node.runtime_id)

    def previous_tab(self, node: TabNode) -> TabNode | None:
        index = self.flat_index(node)
        if index <= 0:
            return None
        return self._nodes[self._windows[node.window_id].tab_order[index - 1]]

    def next_tab(self, node: TabNode) -> TabNode | None:
        index = self.flat_index(node)
        if index < 0:
            return None
        order = self._windows[node.window_id].tab_order
        if index + 1 >= len(order):
            return None
        return self._nodes[order[index + 1]]

    def parent_of(self, node: TabNode) -> TabNode | None:
        return self.get(node.parent_id)

    def children_of(self, node: TabNode) -> list[TabNode]:
        return [self._nodes[child_id] for child_id in node.children_ids if child_id in self._nodes]

    def has_children(self, node: TabNode) -> bool:
        return bool(self.children_of(node))

    def ancestors_of(self, node: TabNode) -> list[TabNode]:
        """祖先列表，由近到远"""
        ancestors = []
        current = self.parent_of(node)
        while current is not None:
            ancestors.append(current)
            current = self.parent_of(current)
        return ancestors

    def descendants_of(self, node: TabNode) -> list[TabNode]:
        """后代列表（前序遍历）"""
        result = []
        stack = list(reversed(self.children_of(node)))
        while stack:
            current = stack.pop()
            result.append(current)
            stack.extend(reversed(self.children_of(current)))
        return result

    def next_sibling(self, node: TabNode) -> TabNode | None:
        parent = self.parent_of(node)
        if parent is not None:
            siblings = parent.children_ids
        else:
            siblings = [n.runtime_id for n in self.tabs_in(node.window_id) if n.parent_id is None]
        if node.runtime_id not in siblings:
            return None
        index = siblings.index(node.runtime_id)
        return self.get(siblings[index + 1]) if index + 1 < len(siblings) else None

    def iter_roots(self, window_id: int) -> Iterator[TabNode]:
        for node in self.tabs_in(window_id):
            if node.parent_id is None:
                yield node

    # === stable id 索引 ===

    def by_unique_id(self, unique_id: str | None) -> TabNode | None:
        """stable id -> 存活的 tab"""
        if not unique_id:
            return None
        node = self.get(self._by_unique_id.get(unique_id))
        if node is None or not node.attached or node.unique_id != unique_id:
            return None
        return node

    def set_unique_id(self, node: TabNode, unique_id: str) -> None:
        """更新节点的 stable id 及索引表"""
        if node.unique_id and self._by_unique_id.get(node.unique_id) == node.runtime_id:
            del self._by_unique_id[node.unique_id]
        node.unique_id = unique_id
        self._by_unique_id[unique_id] = node.runtime_id

    def clear_unique_id(self, node: TabNode) -> None:
        """丢弃节点的 stable id（之后需要重新分配）"""
        if node.unique_id and self._by_unique_id.get(node.unique_id) == node.runtime_id:
            del self._by_unique_id[node.unique_id]
        node.unique_id = None

    # === host 事件 ===

    def add_tab(self, info: TabInfo, inherit_parent: bool = True) -> TabNode:
        """host 新建 tab

        Args:
            info: host tab 信息
            inherit_parent: 是否按位置继承父节点（host 默认行为）
        """
        window = self.ensure_window(info.window_id)
        existing = self._nodes.get(info.tab_id)
        if existing is not None:
            return existing

        index = max(0, min(info.index, len(window.tab_order)))
        prev = self.get(window.tab_order[index - 1]) if index > 0 else None
        nxt = self.get(window.tab_order[index]) if index < len(window.tab_order) else None

        node = TabNode(runtime_id=info.tab_id, window_id=info.window_id, url=info.url)
        self._nodes[node.runtime_id] = node
        window.tab_order.insert(index, node.runtime_id)

        parent_ids: list[int] = []
        if inherit_parent:
            parent = self._positional_parent(prev, nxt)
            if parent is not None:
                if nxt is not None and nxt.parent_id == parent.runtime_id:
                    parent.children_ids.insert(parent.children_ids.index(nxt.runtime_id), node.runtime_id)
                else:
                    parent.children_ids.append(node.runtime_id)
                node.parent_id = parent.runtime_id
                parent_ids.append(parent.runtime_id)
                logger.debug(f"[TreeModel] Tab {node.runtime_id} inherited parent {parent.runtime_id} by position")

        self._emit(TreeChange(
            kind="created",
            window_id=node.window_id,
            tab_ids=[node.runtime_id],
            parent_ids=parent_ids,
            neighbor_ids=[n.runtime_id for n in (prev, nxt) if n is not None],
        ))
        return node

    def _positional_parent(self, prev: TabNode | None, nxt: TabNode | None) -> TabNode | None:
        """按位置推断的默认父节点

        - 插在一个有父节点的 tab 之前：加入该父节点
        - 否则插在一个有父节点的 tab 之后：成为该父节点的最后一个子节点
        """
        if nxt is not None and nxt.parent_id is not None:
            return self.parent_of(nxt)
        if prev is not None and prev.parent_id is not None:
            return self.parent_of(prev)
        return None

    def remove_tab(self, runtime_id: int) -> TabNode | None:
        """host 关闭 tab：子节点提升到其父节点下"""
        node = self._nodes.get(runtime_id)
        if node is None:
            return None
        window = self._windows[node.window_id]
        prev, nxt = self.previous_tab(node), self.next_tab(node)
        parent = self.parent_of(node)
        children = self.children_of(node)

        if parent is not None:
            position = parent.children_ids.index(node.runtime_id)
            parent.children_ids[position:position + 1] = [c.runtime_id for c in children]
        for child in children:
            child.parent_id = node.parent_id
        node.children_ids = []
        node.parent_id = None

        window.tab_order.remove(runtime_id)
        if runtime_id in window.restoring_tabs:
            window.restoring_tabs.remove(runtime_id)
        del self._nodes[runtime_id]
        if node.unique_id and self._by_unique_id.get(node.unique_id) == runtime_id:
            del self._by_unique_id[node.unique_id]
        node.attached = False

        affected = []
        for child in children:
            affected.append(child.runtime_id)
            affected.extend(d.runtime_id for d in self.descendants_of(child))
        self._emit(TreeChange(
            kind="removed",
            window_id=node.window_id,
            tab_ids=affected,
            parent_ids=[parent.runtime_id] if parent is not None else [],
            neighbor_ids=[n.runtime_id for n in (prev, nxt) if n is not None],
        ))
        return node

    def move_tab(self, runtime_id: int, index: int) -> TabNode | None:
        """host 移动 tab（窗口内）"""
        node = self._nodes.get(runtime_id)
        if node is None:
            return None
        window = self._windows[node.window_id]
        old_neighbors = [n for n in (self.previous_tab(node), self.next_tab(node)) if n is not None]
        window.tab_order.remove(runtime_id)
        window.tab_order.insert(max(0, min(index, len(window.tab_order))), runtime_id)
        new_neighbors = [n for n in (self.previous_tab(node), self.next_tab(node)) if n is not None]

        parent = self.parent_of(node)
        if parent is not None:
            self._sort_children(parent)
        self._emit(TreeChange(
            kind="moved",
            window_id=node.window_id,
            tab_ids=[node.runtime_id],
            parent_ids=[parent.runtime_id] if parent is not None else [],
            neighbor_ids=[n.runtime_id for n in old_neighbors + new_neighbors],
        ))
        return node

    def remove_window(self, window_id: int) -> Window | None:
        window = self._windows.pop(window_id, None)
        if window is None:
            return None
        for runtime_id in window.tab_order:
            node = self._nodes.pop(runtime_id, None)
            if node is None:
                continue
            node.attached = False
            if node.unique_id and self._by_unique_id.get(node.unique_id) == runtime_id:
                del self._by_unique_id[node.unique_id]
        if window.restored is not None and not window.restored.done():
            window.restored.cancel()
        logger.info(f"[TreeModel] Window {window_id} removed")
        return window

    # === 树操作 ===

    def can_attach(self, child: TabNode, parent: TabNode | None) -> bool:
        """attach(child, parent) 是否合法（同窗口、不形成环）"""
        if parent is None or not child.attached or not parent.attached:
            return False
        if child.window_id != parent.window_id or child.runtime_id == parent.runtime_id:
            return False
        return child not in self.ancestors_of(parent)

    def attach(
        self,
        child: TabNode,
        parent: TabNode,
        insert_before: TabNode | None = None,
        insert_after: TabNode | None = None,
    ) -> bool:
        """把 child 挂到 parent 下

        Returns:
            是否发生变化（已经是该父节点时返回 False）

        Raises:
            TreeError: 未知节点、跨窗口或会形成环
        """
        self._require(child)
        self._require(parent)
        if child.window_id != parent.window_id:
            raise TreeError(f"Cannot attach {child.runtime_id} across windows")
        if child.runtime_id == parent.runtime_id or child in self.ancestors_of(parent):
            raise TreeError(f"Attaching {child.runtime_id} to {parent.runtime_id} would create a cycle")
        if child.parent_id == parent.runtime_id:
            return False

        old_parent = self.parent_of(child)
        if old_parent is not None:
            old_parent.children_ids.remove(child.runtime_id)

        siblings = parent.children_ids
        if insert_before is not None and insert_before.runtime_id in siblings:
            siblings.insert(siblings.index(insert_before.runtime_id), child.runtime_id)
        elif insert_after is not None and insert_after.runtime_id in siblings:
            siblings.insert(siblings.index(insert_after.runtime_id) + 1, child.runtime_id)
        else:
            siblings.append(child.runtime_id)
            self._sort_children(parent)
        child.parent_id = parent.runtime_id

        subtree = [child] + self.descendants_of(child)
        self._emit(TreeChange(
            kind="attached",
            window_id=child.window_id,
            tab_ids=[n.runtime_id for n in subtree],
            parent_ids=[p.runtime_id for p in (old_parent, parent) if p is not None],
            neighbor_ids=[n.runtime_id for n in (self.previous_tab(child), self.next_tab(child)) if n is not None],
        ))
        return True

    def detach(self, child: TabNode) -> bool:
        """把 child 从父节点摘下，成为根节点

        Returns:
            是否发生变化
        """
        self._require(child)
        parent = self.parent_of(child)
        if parent is None:
            return False
        parent.children_ids.remove(child.runtime_id)
        child.parent_id = None

        subtree = [child] + self.descendants_of(child)
        self._emit(TreeChange(
            kind="detached",
            window_id=child.window_id,
            tab_ids=[n.runtime_id for n in subtree],
            parent_ids=[parent.runtime_id],
        ))
        return True

    def set_collapsed(self, node: TabNode, collapsed: bool) -> bool:
        self._require(node)
        collapsed = bool(collapsed)
        if node.collapsed == collapsed:
            return False
        node.collapsed = collapsed
        self._emit(TreeChange(kind="collapsed", window_id=node.window_id, tab_ids=[node.runtime_id]))
        return True

    def _sort_children(self, parent: TabNode) -> None:
        """按 flat order 排列子节点"""
        window = self._windows.get(parent.window_id)
        if window is None:
            return
        order = {tab_id: i for i, tab_id in enumerate(window.tab_order)}
        parent.children_ids.sort(key=lambda tab_id: order.get(tab_id, len(order)))

    def _require(self, node: TabNode) -> None:
        if self._nodes.get(node.runtime_id) is not node or not node.attached:
            raise TreeError(f"Tab {node.runtime_id} is not in the tree")

    # === 导出 ===

    def to_dict(self) -> dict:
        """导出所有窗口的树（API 使用）"""
        return {
            "windows": [
                {
                    "window_id": window.window_id,
                    "restore_pending": window.restore_pending,
                    "restoring_tabs": list(window.restoring_tabs),
                    "tabs": [
                        {
                            "tab_id": node.runtime_id,
                            "unique_id": node.unique_id,
                            "url": node.url,
                            "parent_id": node.parent_id,
                            "children": list(node.children_ids),
                            "collapsed": node.collapsed,
                        }
                        for node in self.tabs_in(window.window_id)
                    ],
                }
                for window in self._windows.values()
            ]
        }
