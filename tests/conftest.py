import pytest

from diagmo_core.config import get_settings
from diagmo_core.models import Edge, Graph, Node, NodeData, Position


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    """Drop cached settings so each test sees its own DIAGMO_* environment."""
    for name in ("DIAGMO_OVERLAP_NODE_LIMIT", "DIAGMO_LOG_LEVEL", "DIAGMO_LOG_FILE"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def make_node(node_id, label="", shape="rectangle", x=0, y=0, width=None, height=None, **kwargs):
    return Node(
        id=node_id,
        position=Position(x=x, y=y),
        width=width,
        height=height,
        data=NodeData(label=label, type=shape),
        **kwargs,
    )


def make_edge(source, target, edge_id=None, label=""):
    return Edge(id=edge_id or f"{source}-{target}", source=source, target=target, label=label)


@pytest.fixture
def node():
    return make_node


@pytest.fixture
def edge():
    return make_edge


@pytest.fixture
def flow_graph():
    """Start -> Check? -> (Yes) Done / (No) Retry -> Check?"""
    return Graph(
        nodes=[
            make_node("start", "Start", x=0, y=0),
            make_node("check", "Check?", "diamond", x=0, y=200),
            make_node("done", "Done", "terminator", x=-200, y=400),
            make_node("retry", "Retry", x=200, y=400),
        ],
        edges=[
            make_edge("start", "check"),
            make_edge("check", "done", label="Yes"),
            make_edge("check", "retry", label="No"),
            make_edge("retry", "check"),
        ],
    )
