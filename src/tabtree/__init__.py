"""TabTree: 浏览器 tab 树的持久化与重启后重建"""

__version__ = "0.1.0"
