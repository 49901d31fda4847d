"""WindowRestoreCoordinator - session restore 占位窗口的协调

当窗口里只有 host 的 session restore 占位 tab 时，不立即重建树：
1. 给窗口登记一个一次性的 restored 信号
2. 之后在该窗口新建的 tab 进入 restoring_tabs 缓冲，而不是逐个重建
3. host 通知恢复完成后：重新获取占位 tab 的 stable id（它被复用了），
   按 flat index 倒序对缓冲的 tab 执行 attach_tab_from_restored_info

另外负责启动时的 "等待 host 恢复结束" 检测：
500ms 内没有新 tab 即认为恢复已结束，每发现一个新 tab 重新等待 100ms。
"""

import asyncio
from typing import TYPE_CHECKING

from .. import config
from ..core.errors import HostError
from ..telemetry import format_tab_log, get_logger, metrics
from ..timer import Timer
from ..tree.identity import IdentityResolver
from ..tree.model import TabNode, TreeModel, Window

if TYPE_CHECKING:
    from .reconciler import Reconciler

logger = get_logger(__name__)

_SETTLE_TASK = "restore_settle"


class WindowRestoreCoordinator:
    """Session restore 协调器"""

    def __init__(self, model: TreeModel, identity: IdentityResolver, timer: Timer):
        self._model = model
        self._identity = identity
        self._timer = timer
        self._reconciler: "Reconciler | None" = None
        self._replays: dict[int, asyncio.Task] = {}
        self._settled: asyncio.Event | None = None

    def set_reconciler(self, reconciler: "Reconciler") -> None:
        self._reconciler = reconciler

    def _get_reconciler(self) -> "Reconciler":
        if self._reconciler is None:
            raise RuntimeError("Reconciler not set. Call set_reconciler() first.")
        return self._reconciler

    # === 启动时等待恢复结束 ===

    async def wait_until_completely_restored(self) -> None:
        """等待 host 的启动恢复安静下来"""
        logger.debug("[Restore] Waiting until completely restored")
        self._settled = asyncio.Event()
        self._timer.register_delay(_SETTLE_TASK, config.RESTORE_GRACE_SECONDS, self._settled.set)
        try:
            await self._settled.wait()
        finally:
            self._timer.cancel_delay(_SETTLE_TASK)
            self._settled = None
        logger.info("[Restore] Timeout: all tabs are restored")

    def observe_tab_created(self) -> None:
        """启动等待期间发现新 tab：重新计时"""
        if self._settled is None or self._settled.is_set():
            return
        logger.debug("[Restore] New restored tab is detected")
        self._timer.register_delay(_SETTLE_TASK, config.RESTORE_EXTEND_SECONDS, self._settled.set)

    # === 占位窗口 ===

    def wait_window_restored(self, placeholder: TabNode) -> asyncio.Task:
        """登记窗口的恢复完成信号，并在信号到达后重放缓冲的 tab"""
        window = self._model.ensure_window(placeholder.window_id)
        if window.restore_pending:
            return self._replays[window.window_id]

        window.restored = asyncio.get_running_loop().create_future()
        task = asyncio.create_task(self._replay_when_restored(window, placeholder))
        self._replays[window.window_id] = task
        task.add_done_callback(lambda _: self._replays.pop(window.window_id, None))
        logger.info(format_tab_log("Restore", window.window_id, placeholder.runtime_id,
                                   "Waiting for session restore"))
        return task

    def is_restoring(self, window_id: int) -> bool:
        window = self._model.get_window(window_id)
        return window is not None and window.restore_pending

    def buffer_tab(self, node: TabNode) -> bool:
        """恢复进行中时缓冲新 tab

        Returns:
            是否已缓冲（False 表示窗口不在恢复中，调用方自行处理）
        """
        window = self._model.get_window(node.window_id)
        if window is None or not window.restore_pending:
            return False
        if node.runtime_id not in window.restoring_tabs:
            window.restoring_tabs.append(node.runtime_id)
        metrics.gauge("restore.buffered_tabs", len(window.restoring_tabs), {"window": str(window.window_id)})
        return True

    def notify_window_restored(self, window_id: int) -> bool:
        """host 通知窗口恢复完成

        Returns:
            是否有等待中的信号被触发
        """
        window = self._model.get_window(window_id)
        if window is None or not window.restore_pending:
            logger.debug(f"[Restore] Window {window_id} is not waiting for restoration")
            return False
        window.restored.set_result(True)
        return True

    async def wait_replays(self) -> None:
        """等待所有进行中的重放结束（测试和关闭时使用）"""
        tasks = list(self._replays.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _replay_when_restored(self, window: Window, placeholder: TabNode) -> None:
        try:
            await window.restored
        except asyncio.CancelledError:
            logger.info(f"[Restore] Window {window.window_id} closed before restoration finished")
            return

        restoring_tabs = window.restoring_tabs
        window.restoring_tabs = []
        window.restored = None
        metrics.gauge("restore.buffered_tabs", 0, {"window": str(window.window_id)})
        logger.info(f"[Restore] Start to restore tree for tabs: {restoring_tabs}")

        # 占位 tab 被 host 复用，需要从恢复后的 session 数据重新获取 stable id
        if placeholder.attached:
            try:
                await self._identity.rederive(placeholder)
            except HostError as e:
                metrics.inc("restore.error", {"step": "rederive"})
                logger.warning(format_tab_log("Restore", window.window_id, placeholder.runtime_id,
                                              f"Failed to re-derive stable id: {e}"))
            if placeholder.runtime_id not in restoring_tabs:
                restoring_tabs.append(placeholder.runtime_id)

        reconciler = self._get_reconciler()
        await reconciler.resolve_identities(self._model.tabs_in(window.window_id))

        nodes = [self._model.get(tab_id) for tab_id in restoring_tabs]
        nodes = [node for node in nodes if node is not None and node.attached]
        nodes.sort(key=self._model.flat_index, reverse=True)

        for node in nodes:
            if not node.attached:
                continue
            await reconciler.attach_tab_from_restored_info(
                node,
                keep_current_tree=True,
                children=True,
                can_collapse=True,
            )
        metrics.inc("restore.window_replayed")
        logger.info(f"[Restore] Window {window.window_id} restored ({len(nodes)} tabs)")
