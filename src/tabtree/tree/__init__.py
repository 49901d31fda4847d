"""Tree 模块

- TreeModel / TabNode / Window: 内存中的 tab 树
- IdentityResolver: runtime id <-> stable id
- serialize / deserialize: 窗口级 structure record
- TreePersister: 防抖持久化
"""

from .identity import IdentityResolver
from .model import TabNode, TreeChange, TreeModel, Window
from .persister import TreePersister
from .structure import Edge, apply_edges, deserialize, serialize

__all__ = [
    "TreeModel",
    "TabNode",
    "Window",
    "TreeChange",
    "IdentityResolver",
    "TreePersister",
    "Edge",
    "serialize",
    "deserialize",
    "apply_edges",
]
