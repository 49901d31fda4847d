"""HTTP 事件接收器 - 接收 bridge 转发的 host 事件"""

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel

from ..core.errors import TabTreeError
from ..host.base import TabInfo

if TYPE_CHECKING:
    from fastapi import FastAPI

    from ..service import TabTreeService

logger = logging.getLogger(__name__)


class TabCreatedRequest(BaseModel):
    """tabs.onCreated"""

    tab_id: int
    window_id: int
    index: int
    url: str = ""
    restored: bool = False  # host 从 session 恢复的 tab（如撤销关闭）


class TabRemovedRequest(BaseModel):
    tab_id: int


class TabMovedRequest(BaseModel):
    tab_id: int
    index: int


class TabUpdatedRequest(BaseModel):
    tab_id: int
    url: str


class AttachRequest(BaseModel):
    tab_id: int
    parent_id: int
    insert_before_id: int | None = None
    insert_after_id: int | None = None


class DetachRequest(BaseModel):
    tab_id: int


class CollapseRequest(BaseModel):
    tab_id: int
    collapsed: bool


class EventResponse(BaseModel):
    """事件响应"""

    success: bool
    message: str


class EventReceiver:
    """HTTP 事件接收器

    提供 `/api/tabs/*` 和 `/api/windows/*` 端点。
    """

    def __init__(self, service: "TabTreeService"):
        self.service = service

    def setup_routes(self, app: "FastAPI") -> None:
        """设置 API 路由"""

        @app.post("/api/tabs/created", response_model=EventResponse)
        async def tab_created(request: TabCreatedRequest):
            info = TabInfo(
                tab_id=request.tab_id,
                window_id=request.window_id,
                index=request.index,
                url=request.url,
            )
            node = await self.service.on_tab_created(info, restored=request.restored)
            if node is None:
                return EventResponse(success=True, message="Deferred until initialized")
            return EventResponse(success=True, message="Tab added")

        @app.post("/api/tabs/removed", response_model=EventResponse)
        async def tab_removed(request: TabRemovedRequest):
            removed = await self.service.on_tab_removed(request.tab_id)
            return EventResponse(success=removed, message="Tab removed" if removed else "Unknown tab")

        @app.post("/api/tabs/moved", response_model=EventResponse)
        async def tab_moved(request: TabMovedRequest):
            moved = await self.service.on_tab_moved(request.tab_id, request.index)
            return EventResponse(success=moved, message="Tab moved" if moved else "Unknown tab")

        @app.post("/api/tabs/updated", response_model=EventResponse)
        async def tab_updated(request: TabUpdatedRequest):
            updated = await self.service.on_tab_updated(request.tab_id, request.url)
            return EventResponse(success=updated, message="Tab updated" if updated else "Unknown tab")

        @app.post("/api/tabs/attached", response_model=EventResponse)
        async def tab_attached(request: AttachRequest):
            try:
                changed = await self.service.attach(
                    request.tab_id,
                    request.parent_id,
                    insert_before_id=request.insert_before_id,
                    insert_after_id=request.insert_after_id,
                )
            except TabTreeError as e:
                logger.warning(f"[EventReceiver] attach failed: {e}")
                return EventResponse(success=False, message=str(e))
            return EventResponse(success=True, message="Attached" if changed else "Unchanged")

        @app.post("/api/tabs/detached", response_model=EventResponse)
        async def tab_detached(request: DetachRequest):
            try:
                changed = await self.service.detach(request.tab_id)
            except TabTreeError as e:
                return EventResponse(success=False, message=str(e))
            return EventResponse(success=True, message="Detached" if changed else "Unchanged")

        @app.post("/api/tabs/collapsed", response_model=EventResponse)
        async def tab_collapsed(request: CollapseRequest):
            try:
                changed = await self.service.set_collapsed(request.tab_id, request.collapsed)
            except TabTreeError as e:
                return EventResponse(success=False, message=str(e))
            return EventResponse(success=True, message="Collapsed" if changed else "Unchanged")

        @app.post("/api/windows/{window_id}/restored", response_model=EventResponse)
        async def window_restored(window_id: int):
            """host 通知窗口的 session restore 已完成"""
            notified = await self.service.on_window_restored(window_id)
            return EventResponse(
                success=notified,
                message="Restoration replay started" if notified else "Window is not restoring",
            )

        @app.post("/api/windows/{window_id}/removed", response_model=EventResponse)
        async def window_removed(window_id: int):
            removed = await self.service.on_window_removed(window_id)
            return EventResponse(success=removed, message="Window removed" if removed else "Unknown window")

        @app.get("/api/tree")
        async def tree():
            """获取当前树"""
            return self.service.get_tree_dict()
