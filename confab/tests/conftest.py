import pytest

from confab.app.services.graph_service import KnowledgeGraphService
from confab.app.services.layout import TreeLayoutEngine
from confab.app.services.reconciler import DeltaReconciler
from confab.app.services.session import GraphSession


@pytest.fixture
def store():
    return KnowledgeGraphService()


@pytest.fixture
def layout(store):
    return TreeLayoutEngine(store)


@pytest.fixture
def reconciler(store, layout):
    return DeltaReconciler(store, layout)


@pytest.fixture
def session():
    return GraphSession()


def build(store, labels, edges=()):
    """Adds nodes by label and edges as (source_label, target_label) pairs. Returns label -> id."""
    ids = {label: store.add_node({"label": label}).id for label in labels}
    for source, target in edges:
        store.add_edge(ids[source], ids[target], "leads to")
    return ids


@pytest.fixture
def make_graph(store):
    return lambda labels, edges=(): build(store, labels, edges)
