"""HTTP 事件接收器测试"""

import httpx
import pytest

from tabtree.service import TabTreeService
from tabtree.web.app import create_app

from conftest import parents


@pytest.fixture
async def service(host, fast_restore):
    host.open_window(["https://a", "https://b"])
    s = TabTreeService(host, host)
    await s.init()
    yield s
    s.timer.stop()


@pytest.fixture
async def client(service):
    transport = httpx.ASGITransport(app=create_app(service))
    async with httpx.AsyncClient(transport=transport, base_url="http://tabtree.test") as c:
        yield c


def tab_ids(service, window_id=1):
    return [node.runtime_id for node in service.model.tabs_in(window_id)]


async def test_tab_created(client, service, host):
    info = host.open_tab(1, "https://c")

    response = await client.post("/api/tabs/created", json={
        "tab_id": info.tab_id, "window_id": 1, "index": info.index, "url": info.url,
    })

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Tab added"}
    assert service.model.get(info.tab_id).unique_id is not None


async def test_tab_created_validation(client):
    response = await client.post("/api/tabs/created", json={"tab_id": "x"})
    assert response.status_code == 422


async def test_attach_detach_collapse(client, service):
    a, b = tab_ids(service)

    response = await client.post("/api/tabs/attached", json={"tab_id": b, "parent_id": a})
    assert response.json() == {"success": True, "message": "Attached"}
    assert parents(service.model, 1) == [None, 0]

    response = await client.post("/api/tabs/attached", json={"tab_id": b, "parent_id": a})
    assert response.json()["message"] == "Unchanged"

    response = await client.post("/api/tabs/collapsed", json={"tab_id": a, "collapsed": True})
    assert response.json()["success"] is True
    assert service.model.get(a).collapsed is True

    response = await client.post("/api/tabs/detached", json={"tab_id": b})
    assert response.json() == {"success": True, "message": "Detached"}
    assert parents(service.model, 1) == [None, None]


async def test_attach_errors_are_reported(client, service):
    a, b = tab_ids(service)
    await client.post("/api/tabs/attached", json={"tab_id": b, "parent_id": a})

    cycle = await client.post("/api/tabs/attached", json={"tab_id": a, "parent_id": b})
    unknown = await client.post("/api/tabs/detached", json={"tab_id": 999})

    assert cycle.status_code == 200
    assert cycle.json()["success"] is False
    assert unknown.json()["success"] is False


async def test_moved_updated_removed(client, service):
    a, b = tab_ids(service)

    response = await client.post("/api/tabs/moved", json={"tab_id": b, "index": 0})
    assert response.json()["success"] is True
    assert tab_ids(service) == [b, a]

    response = await client.post("/api/tabs/updated", json={"tab_id": b, "url": "https://z"})
    assert response.json()["success"] is True
    assert service.model.get(b).url == "https://z"

    response = await client.post("/api/tabs/removed", json={"tab_id": b})
    assert response.json()["success"] is True
    response = await client.post("/api/tabs/removed", json={"tab_id": b})
    assert response.json() == {"success": False, "message": "Unknown tab"}


async def test_window_endpoints(client, service):
    response = await client.post("/api/windows/1/restored")
    assert response.json() == {"success": False, "message": "Window is not restoring"}

    response = await client.post("/api/windows/1/removed")
    assert response.json()["success"] is True
    assert service.model.get_window(1) is None


async def test_get_tree(client, service):
    a, b = tab_ids(service)
    await client.post("/api/tabs/attached", json={"tab_id": b, "parent_id": a})

    response = await client.get("/api/tree")

    data = response.json()
    assert data["initializing"] is False
    tabs = data["windows"][0]["tabs"]
    assert [t["tab_id"] for t in tabs] == [a, b]
    assert tabs[1]["parent_id"] == a
