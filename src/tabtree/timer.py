"""Timer - 按实体防抖的延迟任务服务

每个延迟任务以名字（通常是 "<用途>:<实体 id>"）为 key，
同名任务重新注册时取消旧任务并重新计时，因此一段时间内的多次变更
只会在最后一次变更 settle 之后执行一次回调。

使用示例:
    timer = Timer()

    # 150ms 后保存 window 1 的 tree structure
    timer.register_delay("tree_structure:1", 0.15, lambda: save(1))

    # 取消延迟任务
    timer.cancel_delay("tree_structure:1")

    # 停止（取消所有未触发的任务）
    timer.stop()
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Callable, Any, Coroutine

from .telemetry import get_logger, metrics
from .config import METRICS_ENABLED

logger = get_logger(__name__)


@dataclass
class DelayTask:
    """延迟任务"""
    name: str
    delay: float  # 秒
    callback: Callable[[], Any | Coroutine[Any, Any, Any]]
    scheduled_at: float = 0.0  # 调度时间（event loop time）
    trigger_at: float = 0.0  # 触发时间
    handle: asyncio.Task | None = None


class Timer:
    """按名字防抖的定时器服务

    设计原则:
    1. 每个名字最多一个未触发任务，新注册覆盖旧任务
    2. 支持同步/异步回调
    3. 异常隔离：单个回调失败不影响其他任务
    4. 生命周期由 TabTreeService 管理
    """

    def __init__(self):
        self._delay_tasks: dict[str, DelayTask] = {}
        self._stopped = False

    def register_delay(
        self,
        name: str,
        delay: float,
        callback: Callable[[], Any | Coroutine[Any, Any, Any]]
    ) -> None:
        """注册延迟任务

        如果已存在同名任务，会被覆盖（取消旧任务，重新计时）。

        Args:
            name: 任务名（用于日志和取消）
            delay: 延迟时间（秒）
            callback: 回调函数（同步或异步）
        """
        if self._stopped:
            logger.debug(f"[Timer] Stopped, ignoring delay task: {name}")
            return

        loop = asyncio.get_running_loop()
        now = loop.time()

        # 覆盖旧任务
        if self.cancel_delay(name):
            logger.debug(f"[Timer] Overwriting delay task: {name}")

        task = DelayTask(
            name=name,
            delay=delay,
            callback=callback,
            scheduled_at=now,
            trigger_at=now + delay,
        )
        task.handle = loop.create_task(self._run_delay(task))
        self._delay_tasks[name] = task

    def cancel_delay(self, name: str) -> bool:
        """取消延迟任务

        Returns:
            是否成功取消
        """
        task = self._delay_tasks.pop(name, None)
        if task is None:
            return False
        if task.handle and not task.handle.done():
            task.handle.cancel()
        return True

    def has_delay(self, name: str) -> bool:
        """检查是否存在未触发的延迟任务"""
        return name in self._delay_tasks

    def stop(self) -> None:
        """停止 Timer

        取消所有未触发的延迟任务，之后的注册被忽略。
        """
        if self._stopped:
            return

        self._stopped = True
        logger.info("[Timer] Stopping...")

        for name in list(self._delay_tasks.keys()):
            self.cancel_delay(name)

    async def _run_delay(self, task: DelayTask) -> None:
        """等待到期后执行回调"""
        try:
            await asyncio.sleep(task.delay)
        except asyncio.CancelledError:
            return

        # 先移除自身，回调内可以重新注册同名任务
        if self._delay_tasks.get(task.name) is task:
            del self._delay_tasks[task.name]
        await self._execute_callback(task.name, task.callback)

    async def _execute_callback(
        self,
        name: str,
        callback: Callable[[], Any | Coroutine[Any, Any, Any]]
    ) -> None:
        """执行回调（带异常隔离）"""
        try:
            result = callback()
            # 如果是协程，await 它
            if inspect.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"[Timer] Task '{name}' failed: {e}")
            if METRICS_ENABLED:
                metrics.inc("timer.errors", {"task": name.split(":", 1)[0]})

    # === 状态查询（用于测试）===

    @property
    def is_stopped(self) -> bool:
        """是否已停止"""
        return self._stopped

    @property
    def delay_task_count(self) -> int:
        """未触发的延迟任务数量"""
        return len(self._delay_tasks)

    def get_delay_tasks(self) -> list[str]:
        """获取所有未触发的延迟任务名"""
        return list(self._delay_tasks.keys())
