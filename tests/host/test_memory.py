"""MemoryHost 测试"""

import pytest

from tabtree.core.errors import TabNotFoundError
from tabtree.host import MemoryHost


@pytest.fixture
def mem():
    return MemoryHost()


class TestTabs:
    """tab 操作测试"""

    async def test_open_window_and_enumerate(self, mem):
        window_id = mem.open_window(["https://a", "https://b"])

        windows = await mem.get_windows()
        assert [w.window_id for w in windows] == [window_id]
        assert [(t.index, t.url) for t in windows[0].tabs] == [(0, "https://a"), (1, "https://b")]

    async def test_open_tab_at_index(self, mem):
        window_id = mem.open_window(["https://a", "https://b"])
        tab = mem.open_tab(window_id, "https://c", index=1)

        windows = await mem.get_windows()
        assert [t.tab_id for t in windows[0].tabs][1] == tab.tab_id
        assert [t.index for t in windows[0].tabs] == [0, 1, 2]

    async def test_move_tab(self, mem):
        window_id = mem.open_window(["https://a", "https://b"])
        first = (await mem.get_windows())[0].tabs[0]

        mem.move_tab(first.tab_id, 1)

        tabs = (await mem.get_windows())[0].tabs
        assert [t.url for t in tabs] == ["https://b", "https://a"]
        assert mem.get_tab(first.tab_id).index == 1
        assert mem.get_tab(first.tab_id).window_id == window_id

    async def test_remove_tab(self, mem):
        mem.open_window(["https://a"])
        tab = (await mem.get_windows())[0].tabs[0]

        await mem.remove_tab(tab.tab_id)

        assert (await mem.get_windows())[0].tabs == []
        assert mem.removed_tabs == [tab.tab_id]
        with pytest.raises(TabNotFoundError):
            await mem.remove_tab(tab.tab_id)

    async def test_enumeration_is_a_snapshot(self, mem):
        mem.open_window(["https://a"])
        tab = (await mem.get_windows())[0].tabs[0]
        tab.url = "changed"

        assert mem.get_tab(tab.tab_id).url == "https://a"


class TestValues:
    """session value 测试"""

    async def test_tab_values(self, mem):
        mem.open_window(["https://a"])
        tab_id = (await mem.get_windows())[0].tabs[0].tab_id

        await mem.set_tab_value(tab_id, "ancestors", ["tab-1-a"])
        assert await mem.get_tab_value(tab_id, "ancestors") == ["tab-1-a"]
        assert await mem.get_tab_value(tab_id, "children") is None

        await mem.remove_tab_value(tab_id, "ancestors")
        assert await mem.get_tab_value(tab_id, "ancestors") is None

    async def test_values_are_copied(self, mem):
        mem.open_window(["https://a"])
        tab_id = (await mem.get_windows())[0].tabs[0].tab_id
        value = ["tab-1-a"]

        await mem.set_tab_value(tab_id, "ancestors", value)
        value.append("tab-1-b")

        assert await mem.get_tab_value(tab_id, "ancestors") == ["tab-1-a"]

    async def test_set_value_on_missing_tab(self, mem):
        with pytest.raises(TabNotFoundError):
            await mem.set_tab_value(42, "ancestors", [])

    async def test_window_values(self, mem):
        window_id = mem.open_window([])

        await mem.set_window_value(window_id, "tree-structure", [{"parent": -1}])
        assert await mem.get_window_value(window_id, "tree-structure") == [{"parent": -1}]
        await mem.remove_window_value(window_id, "tree-structure")
        assert await mem.get_window_value(window_id, "tree-structure") is None

    async def test_writes_recorded(self, mem):
        window_id = mem.open_window([])
        await mem.set_window_value(window_id, "tree-structure", [])
        await mem.remove_window_value(window_id, "tree-structure")

        assert mem.writes_for("window", window_id, "tree-structure") == [[], None]


async def test_restart_reassigns_ids_and_keeps_values(mem):
    window_id = mem.open_window(["https://a", "https://b"])
    old_ids = [t.tab_id for t in (await mem.get_windows())[0].tabs]
    await mem.set_tab_value(old_ids[1], "data-persistent-id", {"id": "tab-1-b", "tab_id": old_ids[1]})

    mapping = mem.restart()

    new_ids = [t.tab_id for t in (await mem.get_windows())[0].tabs]
    assert set(new_ids).isdisjoint(old_ids)
    assert [mapping[i] for i in old_ids] == new_ids
    assert (await mem.get_tab_value(new_ids[1], "data-persistent-id"))["id"] == "tab-1-b"
    assert await mem.get_tab_value(old_ids[1], "data-persistent-id") is None
    assert mem.writes == []
    assert (await mem.get_windows())[0].window_id == window_id
