"""Host 模块

提供 host 边界接口和实现：
- TabHost: 控制面（枚举 window/tab，删除 tab）
- SessionStore: 持久化 key/value
- MemoryHost: 内存实现（测试、本地运行）
- HttpHost: 通过 bridge REST API 访问浏览器
"""

from .base import SessionStore, TabHost, TabInfo, WindowInfo
from .http import HttpHost
from .memory import MemoryHost

__all__ = [
    "TabHost",
    "SessionStore",
    "TabInfo",
    "WindowInfo",
    "MemoryHost",
    "HttpHost",
]
