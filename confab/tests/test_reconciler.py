import json

from confab.app.schemas.graph import Category, SkipReason
from confab.app.services.dedup import labels_match


def _reasons(report):
    return [s.reason for s in report.skipped]


def test_delta_adds_nodes_and_edges(store, reconciler):
    report = reconciler.submit_delta({
        "nodes": [
            {"id": "n1", "label": "Meeting Started", "type": "Input"},
            {"id": "n2", "label": "Discuss Budget", "type": "Action"},
        ],
        "edges": [{"source": "n1", "target": "n2", "label": "leads to"}],
    })

    assert report.status == "applied"
    assert [n.label for n in report.added_nodes] == ["Meeting Started", "Discuss Budget"]
    assert report.added_nodes[0].category == Category.INPUT
    assert report.added_nodes[0].metadata.origin == "delta"
    # local handles are replaced by store ids
    assert "n1" not in {n.id for n in store.nodes()}
    edge = report.added_edges[0]
    assert edge.source == report.added_nodes[0].id
    assert edge.target == report.added_nodes[1].id
    assert edge.label == "leads to"
    assert report.skipped == []


def test_delta_lays_out_new_nodes(store, reconciler):
    report = reconciler.submit_delta({
        "nodes": [{"label": "Vision: Activation"}, {"label": "Onboarding Flow"}],
        "edges": [{"source": "Vision: Activation", "target": "Onboarding Flow"}],
    })
    vision, onboarding = report.added_nodes
    assert onboarding.position.y == vision.position.y + 240


def test_near_duplicate_node_is_skipped(store, reconciler):
    store.add_node({"label": "User struggles to understand addition process"})

    report = reconciler.submit_delta({"nodes": [{"label": "User struggles with addition"}]})

    assert report.added_nodes == []
    assert _reasons(report) == [SkipReason.DUPLICATE]
    assert report.skipped[0].ref == "User struggles with addition"
    assert store.node_count() == 1


def test_edges_to_a_skipped_duplicate_land_on_the_existing_node(store, reconciler):
    existing = store.add_node({"label": "User struggles to understand addition process"})

    report = reconciler.submit_delta({
        "nodes": [
            {"id": "a", "label": "User struggles with addition"},
            {"id": "b", "label": "Practice worksheets"},
        ],
        "edges": [{"source": "b", "target": "a", "relationship": "helps with"}],
    })

    assert [n.label for n in report.added_nodes] == ["Practice worksheets"]
    assert report.added_edges[0].target == existing.id
    assert report.added_edges[0].label == "helps with"


def test_similar_nodes_in_one_delta_are_both_added(store, reconciler):
    first, second = "Budget review meeting", "Budget review meeting notes"
    assert labels_match(first, second)

    report = reconciler.submit_delta({"nodes": [{"label": first}, {"label": second}]})

    assert len(report.added_nodes) == 2
    assert store.node_count() == 2


def test_edges_may_reference_existing_nodes(store, reconciler, make_graph):
    ids = make_graph(["Hiring Plan"])

    report = reconciler.submit_delta({
        "nodes": [{"label": "Interview Loop"}],
        "edges": [
            {"source": "hiring plan", "target": "Interview Loop"},
            {"source": ids["Hiring Plan"], "target": "Interview Loop", "label": "by id"},
        ],
    })

    assert len(report.added_edges) == 1
    assert report.added_edges[0].source == ids["Hiring Plan"]
    assert _reasons(report) == [SkipReason.DUPLICATE_EDGE]


def test_unresolved_edge_is_skipped(store, reconciler):
    report = reconciler.submit_delta({
        "nodes": [{"label": "Meeting Started"}],
        "edges": [{"source": "Meeting Started", "target": "Nowhere"}],
    })

    assert len(report.added_nodes) == 1
    assert report.added_edges == []
    assert _reasons(report) == [SkipReason.UNRESOLVED]
    assert store.edge_count() == 0


def test_self_loops_and_repeated_edges_are_skipped(store, reconciler, make_graph):
    ids = make_graph(["A", "B"], [("A", "B")])

    report = reconciler.submit_delta({
        "nodes": [],
        "edges": [
            {"source": ids["A"], "target": ids["A"]},
            {"source": ids["A"], "target": ids["B"]},
            {"source": ids["B"], "target": ids["A"], "label": "answers"},
        ],
    })

    assert _reasons(report) == [SkipReason.SELF_LOOP, SkipReason.DUPLICATE_EDGE]
    assert len(report.added_edges) == 1
    assert store.edge_count() == 2


def test_malformed_payload_is_rejected_whole(store, reconciler):
    store.add_node({"label": "Untouched"})

    for payload in ({"edges": []}, [], "not json", 42, {"nodes": "Budget"}):
        report = reconciler.submit_delta(payload)
        assert report.status == "rejected"
        assert report.error

    assert store.labels() == ["Untouched"]


def test_payload_may_be_a_json_string(store, reconciler):
    report = reconciler.submit_delta(json.dumps({"nodes": [{"label": "From string"}]}))
    assert report.status == "applied"
    assert store.labels() == ["From string"]


def test_bad_entries_are_skipped_individually(store, reconciler):
    report = reconciler.submit_delta({
        "nodes": [{"label": ""}, {"category": "Action"}, "just text", {"label": "Good"}],
        "edges": [{"source": "Good"}, None],
    })

    assert [n.label for n in report.added_nodes] == ["Good"]
    assert _reasons(report) == [SkipReason.MALFORMED] * 5
    assert report.skipped[2].ref == "#2"


def test_unknown_categories_are_normalized(reconciler):
    report = reconciler.submit_delta({"nodes": [
        {"label": "Pick vendor", "type": "choice"},
        {"label": "Misc", "type": "whatever"},
        {"label": "Ship it", "category": "OUTPUT", "importance": "huge"},
    ]})

    categories = [n.category for n in report.added_nodes]
    assert categories == [Category.DECISION, Category.SYSTEM, Category.OUTPUT]
    assert report.added_nodes[2].importance.value == "small"


def test_extra_metadata_is_kept(reconciler):
    report = reconciler.submit_delta({"nodes": [
        {"label": "Pricing", "data": {"excerpt": "too expensive", "confidence": 0.4}},
    ]})
    metadata = report.added_nodes[0].metadata
    assert metadata.source_excerpts == ["too expensive"]
    assert metadata.extra == {"confidence": 0.4}


# --- Refinement ---

def test_refinement_removes_updates_and_links(store, reconciler, make_graph):
    ids = make_graph(["A", "B", "C"], [("A", "B")])

    report = reconciler.submit_refinement({
        "nodesToRemove": [ids["C"], "missing"],
        "nodesToUpdate": [
            {"id": ids["A"], "newLabel": "Alpha", "newCategory": "Decision"},
            {"id": "ghost", "newLabel": "Nobody"},
        ],
        "edgesToAdd": [{"source": ids["B"], "target": "Alpha", "relationship": "reports to"}],
    })

    assert report.status == "applied"
    assert report.removed_nodes == [ids["C"]]
    assert [n.label for n in report.updated_nodes] == ["Alpha"]
    assert report.updated_nodes[0].category == Category.DECISION
    assert report.added_edges[0].target == ids["A"]
    assert [(s.ref, s.reason) for s in report.skipped] == [
        ("missing", SkipReason.NOT_FOUND),
        ("ghost", SkipReason.NOT_FOUND),
    ]
    assert not store.has_node(ids["C"])


def test_refinement_removes_by_label(store, reconciler, make_graph):
    ids = make_graph(["Keep", "Drop"], [("Keep", "Drop")])

    report = reconciler.submit_refinement({"nodes_to_remove": [{"id": "drop"}]})

    assert report.removed_nodes == [ids["Drop"]]
    assert store.edge_count() == 0


def test_malformed_refinement_is_rejected(store, reconciler, make_graph):
    make_graph(["A"])
    report = reconciler.submit_refinement("oops")
    assert report.status == "rejected"
    assert store.node_count() == 1


# --- Restructure ---

def test_restructure_replaces_the_graph(store, reconciler, make_graph):
    ids = make_graph(["A", "B"], [("A", "B")])

    report = reconciler.apply_restructure({
        "nodes": [{"id": ids["A"], "label": "A renamed"}, {"id": "new1", "label": "New"}],
        "edges": [
            {"source": ids["A"], "target": "new1"},
            {"source": "New", "target": "new"},
        ],
    })

    assert report.status == "applied"
    assert sorted(store.labels()) == ["A renamed", "New"]
    assert store.has_node(ids["A"])
    assert not store.has_node(ids["B"])
    assert store.edge_count() == 1
    assert store.edges()[0].source == ids["A"]
    assert _reasons(report) == [SkipReason.SELF_LOOP]


def test_restructure_without_nodes_keeps_the_graph(store, reconciler, make_graph):
    make_graph(["A", "B"], [("A", "B")])

    report = reconciler.apply_restructure({"nodes": [{"label": ""}]})

    assert report.status == "rejected"
    assert store.node_count() == 2
    assert store.edge_count() == 1


def test_refinement_update_without_changes_is_reported(store, reconciler, make_graph):
    ids = make_graph(["A"])

    report = reconciler.submit_refinement({"nodesToUpdate": [{"id": ids["A"], "newLabel": "  "}]})

    assert report.updated_nodes == []
    assert [(s.ref, s.reason) for s in report.skipped] == [(ids["A"], SkipReason.MALFORMED)]
    assert store.node(ids["A"]).label == "A"
