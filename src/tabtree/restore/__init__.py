"""Restore 模块

- Reconciler: 启动时重建树（structure 快速路径 / 关系回退路径）
- WindowRestoreCoordinator: session restore 占位窗口的缓冲与重放
"""

from .coordinator import WindowRestoreCoordinator
from .reconciler import (
    RESULT_EMPTY,
    RESULT_FALLBACK,
    RESULT_PENDING,
    RESULT_STRUCTURE,
    Reconciler,
    RestoredReferences,
    first_resolved,
)

__all__ = [
    "Reconciler",
    "RestoredReferences",
    "WindowRestoreCoordinator",
    "first_resolved",
    "RESULT_EMPTY",
    "RESULT_PENDING",
    "RESULT_STRUCTURE",
    "RESULT_FALLBACK",
]
