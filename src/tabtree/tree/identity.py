"""IdentityResolver - runtime id <-> stable id

- identity_of(tab): 幂等，已有 stable id 直接返回；否则从 session value 读取，
  读不到（或与另一个存活 tab 冲突，即 tab 被复制）时分配新 id 并持久化
- tab_for(stable_id): 只在存活 tab 中反查
- rederive(tab): 丢弃旧 id，重新从恢复后的 session 数据读取
  （host 复用 session restore 占位 tab 时使用）
"""

import asyncio

from .. import config
from ..core.errors import TabNotFoundError
from ..core.ids import IdentityRecord, make_stable_id, short_id
from ..host.base import SessionStore
from ..telemetry import get_logger, metrics
from .model import TabNode, TreeModel

logger = get_logger(__name__)


class IdentityResolver:
    """Stable id 分配与反查"""

    def __init__(self, model: TreeModel, store: SessionStore):
        self._model = model
        self._store = store
        # 进行中的请求 {runtime_id: task}，同一 tab 的并发调用共享结果
        self._pending: dict[int, asyncio.Task] = {}

    async def identity_of(self, node: TabNode) -> str:
        """获取 tab 的 stable id（必要时分配）"""
        if node.unique_id:
            return node.unique_id

        task = self._pending.get(node.runtime_id)
        if task is None:
            task = asyncio.ensure_future(self._request(node))
            self._track(node.runtime_id, task)
        return await asyncio.shield(task)

    def tab_for(self, unique_id: str | None) -> TabNode | None:
        """stable id -> 存活 tab，解析不到返回 None"""
        return self._model.by_unique_id(unique_id)

    async def rederive(self, node: TabNode) -> str:
        """丢弃旧 stable id，从恢复后的 session 数据重新获取"""
        previous = node.unique_id
        pending = self._pending.pop(node.runtime_id, None)
        if pending is not None and not pending.done():
            pending.cancel()

        self._model.clear_unique_id(node)
        task = asyncio.ensure_future(self._request(node))
        self._track(node.runtime_id, task)
        unique_id = await asyncio.shield(task)
        logger.info(
            f"[Identity] Re-derived tab {node.runtime_id}: {short_id(previous)} -> {short_id(unique_id)}"
        )
        return unique_id

    def forget(self, node: TabNode) -> None:
        """tab 关闭时清理进行中的请求"""
        pending = self._pending.pop(node.runtime_id, None)
        if pending is not None and not pending.done():
            pending.cancel()

    def _track(self, runtime_id: int, task: asyncio.Task) -> None:
        self._pending[runtime_id] = task

        def _done(finished: asyncio.Task) -> None:
            if self._pending.get(runtime_id) is finished:
                del self._pending[runtime_id]

        task.add_done_callback(_done)

    async def _request(self, node: TabNode) -> str:
        value = await self._store.get_tab_value(node.runtime_id, config.KEY_UNIQUE_ID)
        record = IdentityRecord.from_value(value)

        unique_id = None
        if record is not None:
            owner = self._model.by_unique_id(record.id)
            if owner is None or owner is node:
                unique_id = record.id
                if record.tab_id != node.runtime_id:
                    await self._persist(node, unique_id)
            else:
                # 同一个 id 已属于另一个存活 tab：这是复制出来的 tab
                logger.debug(
                    f"[Identity] Tab {node.runtime_id} duplicates {owner.runtime_id} ({short_id(record.id)})"
                )
                metrics.inc("identity.duplicate")

        if unique_id is None:
            unique_id = make_stable_id()
            metrics.inc("identity.allocated")
            await self._persist(node, unique_id)

        self._model.set_unique_id(node, unique_id)
        return unique_id

    async def _persist(self, node: TabNode, unique_id: str) -> None:
        record = IdentityRecord(id=unique_id, tab_id=node.runtime_id)
        try:
            await self._store.set_tab_value(node.runtime_id, config.KEY_UNIQUE_ID, record.to_dict())
        except TabNotFoundError:
            logger.debug(f"[Identity] Tab {node.runtime_id} vanished before its id was stored")
