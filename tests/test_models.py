import math

import pytest
from pydantic import ValidationError

from diagmo_core.config import Settings, get_settings
from diagmo_core.exceptions import ConfigurationError
from diagmo_core.models import (
    DEFAULT_NODE_STYLE,
    Edge,
    Graph,
    Node,
    NodeStyle,
    ParseResult,
    Position,
    Provider,
    generate_edge_id,
    generate_node_id,
    node_style,
    provider_for_shape,
)


def test_effective_size_prefers_measured_then_declared_then_default(node):
    measured = node("a", width=120, height=60, measured_width=130, measured_height=70)
    declared = node("b", width=120, height=60)
    bare = node("c")

    assert measured.effective_size() == (130, 70)
    assert declared.effective_size() == (120, 60)
    assert bare.effective_size() == (100, 50)
    assert bare.effective_size(80, 40) == (80, 40)


def test_center_and_bounds(node):
    n = node("a", x=10, y=20, width=100, height=40)
    assert n.center() == (60, 40)
    assert n.bounds() == (10, 20, 110, 60)


def test_position_rejects_non_finite():
    with pytest.raises(ValidationError):
        Position(x=math.inf, y=0)
    with pytest.raises(ValidationError):
        Position(x=0, y=math.nan)


def test_json_dump_uses_camel_case_and_drops_unset(node):
    n = node("a", "API")
    n.data.style = NodeStyle(background_color="#fff", border_width=2)
    dumped = n.to_json_dict()

    assert dumped["data"]["style"] == {"backgroundColor": "#fff", "borderWidth": 2}
    assert "measuredWidth" not in dumped

    e = Edge(source="a", target="b", source_handle="right")
    assert e.to_json_dict()["sourceHandle"] == "right"


def test_graph_round_trips_editor_json():
    data = {
        "nodes": [{"id": "a", "position": {"x": 1, "y": 2}, "data": {"label": "A", "type": "ellipse",
                                                                    "groupId": "g"}}],
        "edges": [{"id": "e1", "source": "a", "target": "a", "targetHandle": "left"}],
    }
    graph = Graph.from_json_dict(data)

    assert graph.nodes[0].shape == "ellipse"
    assert graph.nodes[0].data.group_id == "g"
    assert graph.edges[0].target_handle == "left"


def test_drop_dangling_edges_returns_new_graph(node, edge):
    graph = Graph(nodes=[node("a"), node("b")], edges=[edge("a", "b"), edge("a", "ghost")])
    cleaned = graph.drop_dangling_edges()

    assert [e.target for e in cleaned.edges] == ["b"]
    assert len(graph.edges) == 2


def test_parse_result_ok_tracks_nodes(node):
    assert not ParseResult(errors=["nothing"]).ok
    result = ParseResult(nodes=[node("a")])
    assert result.ok
    assert result.graph().nodes[0].id == "a"


def test_generated_ids_are_prefixed_and_unique():
    node_ids = {generate_node_id() for _ in range(200)}
    assert len(node_ids) == 200
    assert all(i.startswith("n") and len(i) == 11 for i in node_ids)
    assert generate_edge_id().startswith("e")


def test_node_style_overrides_default_without_mutating_it():
    style = node_style(background_color="#000000")
    assert style.background_color == "#000000"
    assert style.border_color == DEFAULT_NODE_STYLE.border_color
    assert DEFAULT_NODE_STYLE.background_color == "#ffffff"


@pytest.mark.parametrize("shape, provider", [
    ("aws-ec2", Provider.AWS),
    ("azure-vm", Provider.AZURE),
    ("gcp-gke", Provider.GCP),
    ("generic-server", Provider.GENERIC),
    ("rectangle", Provider.OTHER),
    ("kubernetes", Provider.OTHER),
])
def test_provider_for_shape(shape, provider):
    assert provider_for_shape(shape) is provider


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("DIAGMO_LOG_LEVEL", "debug")
    monkeypatch.setenv("DIAGMO_OVERLAP_NODE_LIMIT", "50")
    get_settings.cache_clear()

    settings = get_settings()
    assert settings.log_level == "DEBUG"
    assert settings.overlap_node_limit == 50


def test_settings_reject_bad_values():
    with pytest.raises(ValidationError):
        Settings(log_level="LOUD")
    with pytest.raises(ValidationError):
        Settings(default_node_width=0)


def test_invalid_environment_is_a_configuration_error(monkeypatch):
    monkeypatch.setenv("DIAGMO_LOG_LEVEL", "LOUD")
    get_settings.cache_clear()

    with pytest.raises(ConfigurationError, match="log_level"):
        get_settings()


def test_node_defaults():
    n = Node()
    assert n.type == "custom"
    assert n.id.startswith("n")
    assert not n.hidden
