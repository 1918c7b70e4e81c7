import pytest

from confab.app.errors import SessionNotFoundError
from confab.app.services.session import GraphSession, SessionRegistry


def test_add_edge_requires_both_endpoints(session):
    a = session.add_node({"label": "A"})
    assert session.add_edge(a.id, "ghost") is None
    assert session.store.edge_count() == 0


def test_direct_edits_relayout(session):
    a = session.add_node({"label": "A"})
    b = session.add_node({"label": "B"})
    session.add_edge(a.id, b.id, "to")

    graph = session.get_graph()
    assert graph.nodes[1].position.y == graph.nodes[0].position.y + 240

    session.remove_edge(graph.edges[0].id)
    assert session.store.node(b.id).position.y == session.store.node(a.id).position.y


def test_returned_nodes_are_copies(session):
    node = session.add_node({"label": "A"})
    node.label = "changed"
    assert session.store.node(node.id).label == "A"


def test_clear_empties_graph_and_transcripts(session):
    session.add_node({"label": "A"})
    session.add_transcript("hello", "alice")
    session.clear()

    assert session.store.node_count() == 0
    assert len(session.transcripts) == 0


def test_finalize_and_merge_through_session(session):
    session.submit_delta({
        "nodes": [{"label": "Hub"}, {"label": "Leaf"}, {"label": "Loner"}],
        "edges": [{"source": "Hub", "target": "Leaf"}],
    })
    report = session.finalize()
    assert len(report.edges_added) == 1

    ids = [n.id for n in session.store.nodes()]
    merged = session.merge(ids[1:], "Leaves")
    assert merged.metadata.merged_from == ids[1:]
    assert session.store.node_count() == 2


def test_registry_keeps_sessions_apart():
    registry = SessionRegistry()
    first = registry.create("first")
    second = registry.create()

    assert registry.create("first") is first
    assert registry.get(second.id) is second

    first.add_node({"label": "Only here"})
    assert second.store.node_count() == 0
    assert {s.id for s in registry.list()} == {"first", second.id}


def test_registry_unknown_and_delete():
    registry = SessionRegistry()
    registry.create("gone")
    assert registry.delete("gone")
    assert not registry.delete("gone")

    with pytest.raises(SessionNotFoundError) as exc:
        registry.get("gone")
    assert exc.value.session_id == "gone"


def test_grid_strategy_session():
    session = GraphSession(strategy="grid")
    node = session.add_node({"label": "First"})
    assert (node.position.x, node.position.y) == (0, 0)
