from confab.app.config import DEFAULT_LAYOUT, LayoutSettings
from confab.app.services.graph_service import KnowledgeGraphService
from confab.app.services.layout import TreeLayoutEngine

from conftest import build


def _positions(store):
    return {n.label: (n.position.x, n.position.y) for n in store.nodes()}


def test_child_sits_one_row_below_parent(store, layout, make_graph):
    ids = make_graph(["Vision: Activation", "Onboarding Flow"], [("Vision: Activation", "Onboarding Flow")])
    layout.recalculate_layout()

    vision, onboarding = store.node(ids["Vision: Activation"]), store.node(ids["Onboarding Flow"])
    assert vision.position.y == DEFAULT_LAYOUT.root_y
    assert onboarding.position.y == vision.position.y + DEFAULT_LAYOUT.vertical_spacing


def test_siblings_are_centered(store, layout, make_graph):
    make_graph(["Root", "One", "Two", "Three"], [("Root", "One"), ("Root", "Two"), ("Root", "Three")])
    layout.recalculate_layout()
    positions = _positions(store)

    # three siblings: width 960 centered on 600
    assert positions["One"] == (120, 320)
    assert positions["Two"] == (440, 320)
    assert positions["Three"] == (760, 320)
    # a lone node uses the minimum level width
    assert positions["Root"] == (440, 80)


def test_layout_is_idempotent(store, layout, make_graph):
    make_graph(["A", "B", "C", "D"], [("A", "B"), ("A", "C"), ("C", "D")])
    first = layout.recalculate_layout()
    snapshot = _positions(store)
    second = layout.recalculate_layout()

    assert first == second
    assert _positions(store) == snapshot


def test_rows_do_not_depend_on_insertion_order():
    forward, backward = KnowledgeGraphService(), KnowledgeGraphService()
    build(forward, ["A", "B", "C"], [("A", "B"), ("B", "C")])
    build(backward, ["C", "B", "A"], [("B", "C"), ("A", "B")])
    TreeLayoutEngine(forward).recalculate_layout()
    TreeLayoutEngine(backward).recalculate_layout()

    assert _positions(forward) == _positions(backward)


def test_levels_group_nodes_by_depth(store, layout, make_graph):
    ids = make_graph(["A", "B", "C", "Loose"], [("A", "B"), ("B", "C")])
    assert layout.levels() == {0: [ids["A"], ids["Loose"]], 1: [ids["B"]], 2: [ids["C"]]}


def test_custom_spacing(store, make_graph):
    settings = LayoutSettings(vertical_spacing=100, root_y=0)
    ids = make_graph(["A", "B"], [("A", "B")])
    TreeLayoutEngine(store, settings).recalculate_layout()
    assert store.node(ids["B"]).position.y == 100
