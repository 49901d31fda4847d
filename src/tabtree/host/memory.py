"""MemoryHost - 内存中的 host

用 dict 同时实现 TabHost 和 SessionStore。用于测试，以及在没有浏览器 bridge 时运行服务。
``restart()`` 模拟浏览器重启：runtime id 重新分配，session value 跟随各自的 tab。
"""

import copy
from typing import Any

from ..core.errors import TabNotFoundError
from .base import SessionStore, TabHost, TabInfo, WindowInfo


class MemoryHost(TabHost, SessionStore):
    """基于 dict 的 host（含 session value）"""

    def __init__(self):
        self._windows: dict[int, list[TabInfo]] = {}
        self._tab_values: dict[int, dict[str, Any]] = {}
        self._window_values: dict[int, dict[str, Any]] = {}
        self._next_tab_id = 1
        self._next_window_id = 1
        self.removed_tabs: list[int] = []
        self.writes: list[tuple[str, int, str, Any]] = []

    @property
    def name(self) -> str:
        return "memory"

    # === host 侧变化（由浏览器触发的操作）===

    def open_window(self, urls: list[str] | None = None) -> int:
        """按给定 URL 打开窗口，返回 window id"""
        window_id = self._next_window_id
        self._next_window_id += 1
        self._windows[window_id] = []
        self._window_values[window_id] = {}
        for url in urls or []:
            self.open_tab(window_id, url)
        return window_id

    def open_tab(self, window_id: int, url: str = "about:blank", index: int | None = None) -> TabInfo:
        """在 index 处（默认末尾）打开 tab"""
        tabs = self._windows[window_id]
        if index is None or index > len(tabs):
            index = len(tabs)
        tab = TabInfo(tab_id=self._next_tab_id, window_id=window_id, index=index, url=url)
        self._next_tab_id += 1
        tabs.insert(index, tab)
        self._tab_values[tab.tab_id] = {}
        self._reindex(window_id)
        return tab

    def move_tab(self, tab_id: int, index: int) -> TabInfo:
        tab = self._find(tab_id)
        tabs = self._windows[tab.window_id]
        tabs.remove(tab)
        tabs.insert(min(index, len(tabs)), tab)
        self._reindex(tab.window_id)
        return tab

    def get_tab(self, tab_id: int) -> TabInfo:
        return self._find(tab_id)

    def restart(self) -> dict[int, int]:
        """模拟浏览器重启

        每个 tab 获得新的 runtime id；tab value 跟随 tab，window value 留在窗口上。

        Returns:
            旧 runtime id -> 新 runtime id
        """
        mapping: dict[int, int] = {}
        new_values: dict[int, dict[str, Any]] = {}
        for tabs in self._windows.values():
            for tab in tabs:
                new_id = self._next_tab_id
                self._next_tab_id += 1
                mapping[tab.tab_id] = new_id
                new_values[new_id] = self._tab_values.get(tab.tab_id, {})
                tab.tab_id = new_id
        self._tab_values = new_values
        self.writes.clear()
        return mapping

    def _find(self, tab_id: int) -> TabInfo:
        for tabs in self._windows.values():
            for tab in tabs:
                if tab.tab_id == tab_id:
                    return tab
        raise TabNotFoundError(tab_id)

    def _reindex(self, window_id: int) -> None:
        for index, tab in enumerate(self._windows[window_id]):
            tab.index = index

    # === TabHost ===

    async def get_windows(self) -> list[WindowInfo]:
        return [
            WindowInfo(window_id=window_id, tabs=[copy.copy(tab) for tab in tabs])
            for window_id, tabs in self._windows.items()
        ]

    async def remove_tab(self, tab_id: int) -> None:
        tab = self._find(tab_id)
        self._windows[tab.window_id].remove(tab)
        self._tab_values.pop(tab_id, None)
        self._reindex(tab.window_id)
        self.removed_tabs.append(tab_id)

    # === SessionStore ===

    async def get_tab_value(self, tab_id: int, key: str) -> Any:
        return copy.deepcopy(self._tab_values.get(tab_id, {}).get(key))

    async def set_tab_value(self, tab_id: int, key: str, value: Any) -> None:
        if tab_id not in self._tab_values:
            raise TabNotFoundError(tab_id)
        self._tab_values[tab_id][key] = copy.deepcopy(value)
        self.writes.append(("tab", tab_id, key, value))

    async def remove_tab_value(self, tab_id: int, key: str) -> None:
        self._tab_values.get(tab_id, {}).pop(key, None)
        self.writes.append(("tab", tab_id, key, None))

    async def get_window_value(self, window_id: int, key: str) -> Any:
        return copy.deepcopy(self._window_values.get(window_id, {}).get(key))

    async def set_window_value(self, window_id: int, key: str, value: Any) -> None:
        self._window_values.setdefault(window_id, {})[key] = copy.deepcopy(value)
        self.writes.append(("window", window_id, key, value))

    async def remove_window_value(self, window_id: int, key: str) -> None:
        self._window_values.get(window_id, {}).pop(key, None)
        self.writes.append(("window", window_id, key, None))

    # === 测试辅助 ===

    def tab_values(self, tab_id: int) -> dict[str, Any]:
        return dict(self._tab_values.get(tab_id, {}))

    def writes_for(self, kind: str, entity_id: int, key: str) -> list[Any]:
        return [value for w_kind, w_id, w_key, value in self.writes
                if w_kind == kind and w_id == entity_id and w_key == key]
