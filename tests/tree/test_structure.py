"""Structure record 测试"""

from tabtree.host.base import TabInfo, WindowInfo
from tabtree.tree.model import TreeModel
from tabtree.tree.structure import ROOT, apply_edges, deserialize, serialize

from conftest import parents


def build(model: TreeModel, count: int) -> list:
    model.rebuild([WindowInfo(window_id=1, tabs=[
        TabInfo(tab_id=10 + i, window_id=1, index=i) for i in range(count)
    ])])
    return model.tabs_in(1)


class TestSerialize:
    """serialize 测试"""

    def test_flat_window(self, model):
        tabs = build(model, 2)
        assert serialize(tabs) == [
            {"parent": ROOT, "collapsed": False},
            {"parent": ROOT, "collapsed": False},
        ]

    def test_nested(self, model):
        a, b, c, d = build(model, 4)
        model.attach(b, a)
        model.attach(c, b)
        model.set_collapsed(a, True)

        assert serialize(model.tabs_in(1)) == [
            {"parent": ROOT, "collapsed": True},
            {"parent": 0, "collapsed": False},
            {"parent": 1, "collapsed": False},
            {"parent": ROOT, "collapsed": False},
        ]


class TestDeserialize:
    """deserialize 测试"""

    def test_restores_same_shape_on_new_runtime_ids(self):
        source = TreeModel()
        a, b, c = build(source, 3)
        source.attach(b, a)
        source.attach(c, a)
        source.set_collapsed(a, True)
        structure = serialize(source.tabs_in(1))

        target = TreeModel()
        target.rebuild([WindowInfo(window_id=1, tabs=[
            TabInfo(tab_id=500 + i, window_id=1, index=i) for i in range(3)
        ])])
        edges = deserialize(structure, target.tabs_in(1))
        apply_edges(target, edges)

        assert parents(target, 1) == [None, 0, 0]
        assert target.tabs_in(1)[0].collapsed is True

    def test_length_mismatch(self, model):
        tabs = build(model, 3)
        structure = [{"parent": ROOT, "collapsed": False}] * 2
        assert deserialize(structure, tabs) is None

    def test_absent(self, model):
        tabs = build(model, 1)
        assert deserialize(None, tabs) is None
        assert deserialize({"parent": ROOT}, tabs) is None

    def test_parent_must_precede_entry(self, model):
        tabs = build(model, 2)
        assert deserialize([{"parent": 1}, {"parent": ROOT}], tabs) is None
        assert deserialize([{"parent": ROOT}, {"parent": 1}], tabs) is None

    def test_malformed_entries(self, model):
        tabs = build(model, 2)
        assert deserialize([{"parent": ROOT}, "x"], tabs) is None
        assert deserialize([{"parent": ROOT}, {"parent": "0"}], tabs) is None
        assert deserialize([{"parent": ROOT}, {"parent": True}], tabs) is None

    def test_missing_fields_default_to_root(self, model):
        tabs = build(model, 2)
        edges = deserialize([{}, {"parent": 0}], tabs)
        assert edges[0].parent is None
        assert edges[0].collapsed is False
        assert edges[1].parent is tabs[0]


class TestApplyEdges:
    """apply_edges 测试"""

    def test_idempotent(self, model):
        tabs = build(model, 3)
        structure = [
            {"parent": ROOT, "collapsed": False},
            {"parent": 0, "collapsed": False},
            {"parent": 1, "collapsed": True},
        ]
        edges = deserialize(structure, tabs)

        assert apply_edges(model, edges) > 0
        assert apply_edges(model, edges) == 0
        assert parents(model, 1) == [None, 0, 1]

    def test_replaces_existing_tree_without_cycles(self, model):
        a, b, c = build(model, 3)
        # 当前树: c <- b <- a（与目标方向相反）
        model.attach(b, c)
        model.attach(a, b)

        edges = deserialize([
            {"parent": ROOT, "collapsed": False},
            {"parent": 0, "collapsed": False},
            {"parent": 1, "collapsed": False},
        ], model.tabs_in(1))
        apply_edges(model, edges)

        assert parents(model, 1) == [None, 0, 1]

    def test_roots_are_detached(self, model):
        a, b = build(model, 2)
        model.attach(b, a)
        edges = deserialize([{"parent": ROOT}, {"parent": ROOT}], model.tabs_in(1))
        apply_edges(model, edges)
        assert parents(model, 1) == [None, None]
