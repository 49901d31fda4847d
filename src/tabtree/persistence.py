"""持久化模块（服务自身的状态文件）

tab 树本身保存在 host 的 session value 中；这里只保存服务自己的状态，
例如上次响应了 ready 通知的外部监听者列表。

- 原子写入（temp + rename）
- checksum 校验（sha256）
- version 版本控制
- 损坏文件跳过告警
"""

import hashlib
import json
import os
import tempfile
import time
from pathlib import Path
from typing import Any

from .telemetry import get_logger, metrics
from .config import STATE_FILE, STATE_VERSION

logger = get_logger(__name__)


def _calculate_checksum(data: bytes) -> str:
    """计算 SHA256 checksum"""
    return hashlib.sha256(data).hexdigest()


def _encode(data: dict[str, Any]) -> bytes:
    return json.dumps(data, ensure_ascii=False, indent=2, sort_keys=True).encode("utf-8")


def save(
    state: dict[str, Any],
    path: Path | None = None,
    version: int = STATE_VERSION,
) -> bool:
    """保存状态到文件

    使用 temp + rename 原子写入，包含 checksum 校验。

    Args:
        state: 可 JSON 序列化的状态
        path: 保存路径，默认使用配置
        version: 版本号

    Returns:
        是否成功
    """
    path = path or STATE_FILE

    try:
        data = {
            "version": version,
            "saved_at": time.time(),
            "state": state,
        }
        data["checksum"] = _calculate_checksum(_encode(data))
        json_bytes = _encode(data)

        path.parent.mkdir(parents=True, exist_ok=True)

        # 原子写入：先写临时文件，再 rename
        fd, temp_path = tempfile.mkstemp(
            prefix="tabtree_state_",
            suffix=".tmp",
            dir=path.parent,
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(json_bytes)
            os.replace(temp_path, path)
        except Exception:
            # 清理临时文件
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

        logger.debug(f"[Persist] Saved state: {sorted(state)}")
        return True

    except Exception as e:
        logger.error(f"[Persist] Save failed: {e}")
        metrics.inc("persist.error", {"op": "save"})
        return False


def load(
    path: Path | None = None,
    version: int = STATE_VERSION,
) -> dict[str, Any] | None:
    """加载状态文件

    校验 version 和 checksum，失败时返回 None。
    """
    path = path or STATE_FILE

    if not path.exists():
        logger.debug(f"[Persist] File not found: {path}")
        return None

    try:
        with open(path, "rb") as f:
            content = f.read()

        data = json.loads(content.decode("utf-8"))

        # 检查版本
        file_version = data.get("version", 1)
        if file_version != version:
            logger.warning(
                f"[Persist] Version mismatch: file={file_version}, expected={version}"
            )
            metrics.inc("persist.error", {"op": "load", "reason": "version"})
            return None

        # 检查 checksum
        stored_checksum = data.pop("checksum", None)
        if stored_checksum and _calculate_checksum(_encode(data)) != stored_checksum:
            logger.warning("[Persist] Checksum mismatch")
            metrics.inc("persist.error", {"op": "load", "reason": "checksum"})
            return None

        state = data.get("state", {})
        logger.debug(f"[Persist] Loaded state: {sorted(state)}")
        return state

    except json.JSONDecodeError as e:
        logger.warning(f"[Persist] Invalid JSON: {e}")
        metrics.inc("persist.error", {"op": "load", "reason": "json"})
        return None

    except Exception as e:
        logger.error(f"[Persist] Load failed: {e}")
        metrics.inc("persist.error", {"op": "load", "reason": "unknown"})
        return None
