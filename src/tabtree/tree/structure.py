"""Structure 序列化

窗口的树按 flat order 每个 tab 存一项：

    [{"parent": -1, "collapsed": False},   # tab 0: 根
     {"parent": 0,  "collapsed": True},    # tab 1: tab 0 的子节点
     {"parent": 1,  "collapsed": False}]   # tab 2: tab 1 的子节点

``parent`` 是父节点在同一列表中的 flat index（总是小于自身 index），
根为 -1。只有存活 tab 数等于列表长度时记录才可用。
"""

from dataclasses import dataclass
from typing import Any

from ..telemetry import get_logger
from .model import TabNode, TreeModel

logger = get_logger(__name__)

ROOT = -1


@dataclass
class Edge:
    """一个存活 tab 重建出来的关系"""

    child: TabNode
    parent: TabNode | None
    collapsed: bool


def serialize(tabs: list[TabNode]) -> list[dict[str, Any]]:
    """把窗口的 tab（flat order）展平为 structure 记录"""
    positions = {node.runtime_id: index for index, node in enumerate(tabs)}
    structure = []
    for node in tabs:
        parent = positions.get(node.parent_id, ROOT) if node.parent_id is not None else ROOT
        structure.append({"parent": parent, "collapsed": node.collapsed})
    return structure


def deserialize(structure: Any, live_tabs: list[TabNode]) -> list[Edge] | None:
    """按位置重建树边

    Returns:
        每个存活 tab 一条 Edge；记录不能完整应用时（缺失、长度不一致、格式错误）
        返回 None，不做部分应用，由调用方回退
    """
    if not isinstance(structure, list) or len(structure) != len(live_tabs):
        return None

    edges = []
    for index, (entry, node) in enumerate(zip(structure, live_tabs)):
        if not isinstance(entry, dict):
            return None
        parent = entry.get("parent", ROOT)
        if not isinstance(parent, int) or isinstance(parent, bool):
            return None
        if parent != ROOT and not 0 <= parent < index:
            logger.debug(f"[Structure] Entry {index} points to invalid parent {parent}")
            return None
        edges.append(Edge(
            child=node,
            parent=live_tabs[parent] if parent != ROOT else None,
            collapsed=bool(entry.get("collapsed", False)),
        ))
    return edges


def apply_edges(model: TreeModel, edges: list[Edge]) -> int:
    """把重建的树边应用到模型

    先摘下所有不一致的边，再 attach 目标边，不会与当前树的残留部分成环。

    Returns:
        变化的关系数（树已一致时为 0）
    """
    changed = 0
    for edge in edges:
        current = edge.child.parent_id
        target = edge.parent.runtime_id if edge.parent is not None else None
        if current is not None and current != target:
            changed += model.detach(edge.child)
    for edge in edges:
        if edge.parent is not None:
            changed += model.attach(edge.child, edge.parent)
    for edge in edges:
        changed += model.set_collapsed(edge.child, edge.collapsed)
    return changed
