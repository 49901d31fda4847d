"""Web 模块 - bridge 事件接收与树查询 API"""

from .receiver import EventReceiver

__all__ = ["EventReceiver"]
