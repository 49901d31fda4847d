"""Stable tab ID 工具

host 分配的 runtime tab id 在重启后会变化。
stable id 跨重启不变，和 tab 一起持久化：

- stable id 格式: "tab-<epoch ms>-<随机 hex>"
- 持久化的 identity record: {"id": <stable id>, "tab_id": <写入时的 runtime id>}
"""

import secrets
import time
from dataclasses import dataclass

STABLE_ID_PREFIX = "tab-"


@dataclass
class IdentityRecord:
    """tab 的持久化 identity record"""

    id: str
    # 写入时的 runtime id。与读取方 tab 不一致说明来自上一次 session（或是复制的 tab）
    tab_id: int | None = None

    def to_dict(self) -> dict:
        return {"id": self.id, "tab_id": self.tab_id}

    @classmethod
    def from_value(cls, value: object) -> "IdentityRecord | None":
        """解析持久化的值，格式不对时返回 None"""
        if isinstance(value, str) and is_stable_id(value):
            return cls(id=value)
        if not isinstance(value, dict):
            return None
        stable_id = value.get("id")
        if not isinstance(stable_id, str) or not is_stable_id(stable_id):
            return None
        tab_id = value.get("tab_id")
        return cls(id=stable_id, tab_id=tab_id if isinstance(tab_id, int) else None)


def make_stable_id() -> str:
    """分配新的 stable id

    Returns:
        形如 "tab-1700000000000-9f2c4ab1"
    """
    return f"{STABLE_ID_PREFIX}{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def is_stable_id(value: object) -> bool:
    """检查是否为 stable id 格式"""
    return isinstance(value, str) and value.startswith(STABLE_ID_PREFIX) and len(value) > len(STABLE_ID_PREFIX)


def short_id(stable_id: str | None, length: int = 8) -> str:
    """获取 stable id 的短版本（用于日志显示）

    保留随机后缀部分。
    """
    if not stable_id:
        return "-"
    return stable_id.rsplit("-", 1)[-1][:length]
