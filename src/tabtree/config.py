"""TabTree 配置

配置分为以下几类：
- 防抖配置：持久化写入的 settle delay
- 恢复配置：session restore 检测与等待
- 持久化 key：per-tab / per-window 的 session value 名称
- 外部监听者配置
- 服务配置：bridge 地址、监听端口、日志
"""

import os
from pathlib import Path

# === 防抖配置 ===
TAB_RELATION_SETTLE_SECONDS = 0.1  # insert-before/after, ancestors, children, collapsed
TREE_STRUCTURE_SETTLE_SECONDS = 0.15  # 整个窗口的 tree structure
GROUP_CLEANUP_SETTLE_SECONDS = 0.1  # 空 group tab 清理

# === 恢复配置 ===
RESTORE_GRACE_SECONDS = 0.5  # 启动时等待 session restore 结束的初始时间
RESTORE_EXTEND_SECONDS = 0.1  # 每发现一个新 tab 延长的时间
SESSION_RESTORE_URL_PREFIX = "about:sessionrestore"  # host 的恢复占位 tab
GROUP_TAB_URL_PREFIX = "about:treestyletab-group"  # 结构性 group 占位 tab

# === 持久化 key ===
KEY_UNIQUE_ID = "data-persistent-id"
KEY_INSERT_BEFORE = "insert-before"
KEY_INSERT_AFTER = "insert-after"
KEY_ANCESTORS = "ancestors"
KEY_CHILDREN = "children"
KEY_SUBTREE_COLLAPSED = "subtree-collapsed"
KEY_TREE_STRUCTURE = "tree-structure"  # per-window

# === 外部监听者配置 ===
# 逗号分隔的 URL 列表，启动完成后通知 ready
EXTERNAL_LISTENERS = [
    url.strip()
    for url in os.environ.get("TABTREE_EXTERNAL_LISTENERS", "").split(",")
    if url.strip()
]
EXTERNAL_NOTIFY_TIMEOUT = 2.0  # 单个监听者超时（秒）

# === 服务配置 ===
BRIDGE_URL = os.environ.get("TABTREE_BRIDGE_URL", "http://127.0.0.1:8766")  # 浏览器侧 bridge
BRIDGE_TIMEOUT = 5.0
LISTEN_HOST = os.environ.get("TABTREE_HOST", "127.0.0.1")
LISTEN_PORT = int(os.environ.get("TABTREE_PORT", "8765"))

# === 状态文件 ===
STATE_DIR = Path(os.environ.get("TABTREE_STATE_DIR", Path.home() / ".tabtree"))
STATE_FILE = STATE_DIR / "state.json"
STATE_VERSION = 1

# === 日志配置 ===
LOG_LEVEL = os.environ.get("TABTREE_LOG_LEVEL", "INFO")  # 日志级别

# === 指标配置 ===
METRICS_ENABLED = True  # 是否启用指标收集
