"""外部监听者通知

启动完成后向已知的监听者（配置 + 上次响应过的缓存）发送 ready 通知，
记录哪些监听者响应了，供下次启动使用。单个监听者超时或出错只影响它自己。
"""

import asyncio
import logging
from pathlib import Path
from typing import Any

import httpx

from . import config, persistence
from .telemetry import metrics

logger = logging.getLogger(__name__)

MESSAGE_READY = "ready"
MESSAGE_SHUTDOWN = "shutdown"

_STATE_KEY = "cached_listeners"


class ExternalListeners:
    """外部监听者注册表"""

    def __init__(
        self,
        known: list[str] | None = None,
        state_path: Path | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._known = list(config.EXTERNAL_LISTENERS if known is None else known)
        self._state_path = state_path
        self._timeout = timeout or config.EXTERNAL_NOTIFY_TIMEOUT
        self._transport = transport
        self.cached: list[str] = self._load_cached()

    def _load_cached(self) -> list[str]:
        state = persistence.load(self._state_path) or {}
        cached = state.get(_STATE_KEY, [])
        return [url for url in cached if isinstance(url, str)]

    def _save_cached(self) -> None:
        state = persistence.load(self._state_path) or {}
        state[_STATE_KEY] = self.cached
        persistence.save(state, self._state_path)

    @property
    def targets(self) -> list[str]:
        """去重后的通知目标（保持顺序）"""
        return list(dict.fromkeys(self._known + self.cached))

    async def notify_ready(self) -> list[str]:
        """通知 ready 并记录响应者

        Returns:
            响应了的监听者
        """
        targets = self.targets
        if not targets:
            return []

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            results = await asyncio.gather(
                *(self._send(client, url, {"type": MESSAGE_READY}) for url in targets)
            )

        responded = [url for url, ok in zip(targets, results) if ok]
        self.cached = responded
        self._save_cached()
        logger.info(f"[External] {len(responded)}/{len(targets)} listeners responded to ready")
        return responded

    async def notify_shutdown(self) -> None:
        """通知关闭（尽力而为）"""
        if not self.cached:
            return
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            await asyncio.gather(
                *(self._send(client, url, {"type": MESSAGE_SHUTDOWN}) for url in self.cached)
            )

    async def _send(self, client: httpx.AsyncClient, url: str, message: dict[str, Any]) -> bool:
        try:
            response = await client.post(url, json=message)
            response.raise_for_status()
        except httpx.TimeoutException:
            logger.warning(f"[External] Listener timeout: {url}")
            metrics.inc("external.error", {"reason": "timeout"})
            return False
        except httpx.HTTPError as e:
            logger.warning(f"[External] Listener error {url}: {e}")
            metrics.inc("external.error", {"reason": "http"})
            return False

        if not response.content:
            return True
        try:
            return bool(response.json())
        except ValueError:
            return True
