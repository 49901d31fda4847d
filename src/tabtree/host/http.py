"""HttpHost - 通过 REST 与浏览器侧 bridge 通信

bridge 是一个很薄的扩展，转发 browser.tabs / browser.sessions 调用。端点：

- GET    /windows                       -> [{"window_id", "tabs": [tab, ...]}]
- DELETE /tabs/{tab_id}                 -> tab 不存在时 404
- GET    /tabs/{tab_id}/values/{key}    -> {"value": ...}
- PUT    /tabs/{tab_id}/values/{key}    <- {"value": ...}
- DELETE /tabs/{tab_id}/values/{key}
- GET|PUT|DELETE /windows/{window_id}/values/{key}
"""

import logging
from typing import Any

import httpx

from .. import config
from ..core.errors import HostError, TabNotFoundError
from .base import SessionStore, TabHost, TabInfo, WindowInfo

logger = logging.getLogger(__name__)


class HttpHost(TabHost, SessionStore):
    """基于 bridge REST API 的 host"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """初始化 HttpHost

        Args:
            base_url: bridge URL，None 使用 config.BRIDGE_URL
            timeout: 请求超时（秒）
            transport: 可选的 httpx transport（测试使用 httpx.MockTransport）
        """
        self._base_url = (base_url or config.BRIDGE_URL).rstrip("/")
        self._timeout = timeout or config.BRIDGE_TIMEOUT
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return "http"

    async def _get_client(self) -> httpx.AsyncClient:
        """获取或创建 HTTP 客户端"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = await self._get_client()
        try:
            return await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise HostError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _check(response: httpx.Response) -> None:
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise HostError(
                f"{e.request.method} {e.request.url.path} -> {e.response.status_code}"
            ) from e

    # === TabHost ===

    async def get_windows(self) -> list[WindowInfo]:
        response = await self._request("GET", "/windows")
        self._check(response)
        windows = []
        for item in response.json():
            tabs = [
                TabInfo(
                    tab_id=tab["tab_id"],
                    window_id=item["window_id"],
                    index=tab.get("index", index),
                    url=tab.get("url", ""),
                )
                for index, tab in enumerate(item.get("tabs", []))
            ]
            tabs.sort(key=lambda tab: tab.index)
            windows.append(WindowInfo(window_id=item["window_id"], tabs=tabs))
        return windows

    async def remove_tab(self, tab_id: int) -> None:
        response = await self._request("DELETE", f"/tabs/{tab_id}")
        if response.status_code == 404:
            raise TabNotFoundError(tab_id)
        self._check(response)

    # === SessionStore ===

    async def _get_value(self, path: str) -> Any:
        response = await self._request("GET", path)
        if response.status_code == 404:
            return None
        self._check(response)
        return response.json().get("value")

    async def _set_value(self, path: str, value: Any, tab_id: int | None = None) -> None:
        response = await self._request("PUT", path, json={"value": value})
        if response.status_code == 404 and tab_id is not None:
            raise TabNotFoundError(tab_id)
        self._check(response)

    async def _remove_value(self, path: str) -> None:
        response = await self._request("DELETE", path)
        if response.status_code == 404:
            logger.debug(f"[HttpHost] Nothing to remove at {path}")
            return
        self._check(response)

    async def get_tab_value(self, tab_id: int, key: str) -> Any:
        return await self._get_value(f"/tabs/{tab_id}/values/{key}")

    async def set_tab_value(self, tab_id: int, key: str, value: Any) -> None:
        await self._set_value(f"/tabs/{tab_id}/values/{key}", value, tab_id=tab_id)

    async def remove_tab_value(self, tab_id: int, key: str) -> None:
        await self._remove_value(f"/tabs/{tab_id}/values/{key}")

    async def get_window_value(self, window_id: int, key: str) -> Any:
        return await self._get_value(f"/windows/{window_id}/values/{key}")

    async def set_window_value(self, window_id: int, key: str, value: Any) -> None:
        await self._set_value(f"/windows/{window_id}/values/{key}", value)

    async def remove_window_value(self, window_id: int, key: str) -> None:
        await self._remove_value(f"/windows/{window_id}/values/{key}")
