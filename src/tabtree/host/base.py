"""Host 抽象接口

定义 tabtree 与浏览器 host 之间的两个边界：
- TabHost: 枚举 window/tab，删除 tab
- SessionStore: host 负责跨重启保存的 per-tab / per-window key/value

设计原则：
1. 最小接口：只定义 core 需要的操作
2. 异步优先：所有 IO 操作都是 async
3. 对已消失 tab 的操作抛出 TabNotFoundError，由调用方决定是否忽略
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from typing import Any


@dataclass
class TabInfo:
    """Tab 信息（host 模型）

    Attributes:
        tab_id: host 分配的 runtime id（重启后不稳定）
        window_id: 所属窗口
        index: 在窗口内的 flat order 位置
        url: 当前 URL
    """

    tab_id: int
    window_id: int
    index: int
    url: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class WindowInfo:
    """Window 信息（host 模型）

    Attributes:
        window_id: 唯一标识符
        tabs: 按 index 排序的 tab 列表
    """

    window_id: int
    tabs: list[TabInfo] = field(default_factory=list)


class TabHost(ABC):
    """Host 控制面接口

    使用示例:
        host = HttpHost("http://127.0.0.1:8766")
        for window in await host.get_windows():
            for tab in window.tabs:
                print(tab.tab_id, tab.url)
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Host 名称（如 "memory", "http"）"""
        pass

    @abstractmethod
    async def get_windows(self) -> list[WindowInfo]:
        """枚举所有 normal 窗口及其 tab（按 index 排序）"""
        pass

    @abstractmethod
    async def remove_tab(self, tab_id: int) -> None:
        """关闭 tab

        Raises:
            TabNotFoundError: tab 已经不存在
        """
        pass

    async def close(self) -> None:
        """释放资源"""
        return None


class SessionStore(ABC):
    """持久化边界：host 保存的 key/value

    值只能是 stable id、stable id 列表、bool 或 JSON 兼容的结构。
    读取不存在的 key 返回 None。
    """

    @abstractmethod
    async def get_tab_value(self, tab_id: int, key: str) -> Any:
        pass

    @abstractmethod
    async def set_tab_value(self, tab_id: int, key: str, value: Any) -> None:
        pass

    @abstractmethod
    async def remove_tab_value(self, tab_id: int, key: str) -> None:
        pass

    @abstractmethod
    async def get_window_value(self, window_id: int, key: str) -> Any:
        pass

    @abstractmethod
    async def set_window_value(self, window_id: int, key: str, value: Any) -> None:
        pass

    @abstractmethod
    async def remove_window_value(self, window_id: int, key: str) -> None:
        pass
