"""tabtree 共用的异常类型"""


class TabTreeError(Exception):
    """tabtree 异常基类"""


class TreeError(TabTreeError):
    """非法的树操作（未知节点、成环、跨窗口 attach）"""


class TabNotFoundError(TabTreeError):
    """host 操作的 tab 已不存在"""

    def __init__(self, tab_id: int):
        super().__init__(f"Tab not found: {tab_id}")
        self.tab_id = tab_id


class HostError(TabTreeError):
    """host / bridge 请求失败"""
