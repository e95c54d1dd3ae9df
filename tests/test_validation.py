import logging

import pytest

from diagmo_core.config import get_settings
from diagmo_core.exceptions import RuleError
from diagmo_core.models import Graph
from diagmo_core.validation import (
    BUILTIN_RULES,
    ORPHAN_NODES,
    OVERLAPPING_NODES,
    SELF_LOOPS,
    Severity,
    ValidationRule,
    select_rules,
    validate_graph,
    validation_summary,
)


def _by_rule(results, rule_id):
    return [r for r in results if r.rule_id == rule_id]


def test_self_loop_flagged_once(node, edge):
    graph = Graph(
        nodes=[node("a", "A", x=0), node("b", "B", x=300)],
        edges=[edge("a", "b"), edge("b", "b", edge_id="loop")],
    )
    loops = _by_rule(validate_graph(graph), "self-loops")

    assert len(loops) == 1
    assert loops[0].edge_id == "loop"
    assert loops[0].node_id == "b"
    assert loops[0].severity is Severity.WARNING


def test_orphans_skip_annotations(node, edge):
    graph = Graph(
        nodes=[node("a", "A"), node("b", "B", x=300), node("c", "", x=600), node("t", "Note", "text", x=900)],
        edges=[edge("a", "b")],
    )
    orphans = _by_rule(validate_graph(graph), "orphan-nodes")

    assert [r.node_id for r in orphans] == ["c"]
    assert orphans[0].message == '"Unlabeled node" has no connections'


def test_flow_graph_decision_checks(flow_graph, node, edge):
    assert _by_rule(validate_graph(flow_graph), "decision-outputs") == []
    assert _by_rule(validate_graph(flow_graph), "unlabeled-edges") == []

    one_way = Graph(
        nodes=[node("q", "Ok?", "diamond"), node("r", "R", x=300)],
        edges=[edge("q", "r")],
    )
    results = validate_graph(one_way)
    assert len(_by_rule(results, "decision-outputs")) == 1
    assert _by_rule(results, "unlabeled-edges")[0].edge_id == "q-r"


def test_dead_ends_respect_terminal_shapes(node, edge):
    graph = Graph(
        nodes=[
            node("a", "Start"),
            node("b", "Stuck", x=200),
            node("c", "Stop", "terminator", x=400),
            node("d", "Data", "database", x=600),
        ],
        edges=[edge("a", "b"), edge("a", "c"), edge("a", "d")],
    )
    dead_ends = _by_rule(validate_graph(graph), "dead-ends")

    assert [r.node_id for r in dead_ends] == ["b"]


def test_labels_and_hidden_nodes(node):
    graph = Graph(nodes=[
        node("a", "Cache", x=0),
        node("b", "cache ", x=200),
        node("c", "", x=400),
        node("j", "", "junction", x=600),
        node("h", "Ghost", x=800, hidden=True),
    ])
    results = validate_graph(graph)

    assert {r.node_id for r in _by_rule(results, "duplicate-labels")} == {"a", "b"}
    assert _by_rule(results, "duplicate-labels")[0].message == 'Duplicate label "cache" (2 nodes)'
    assert [r.node_id for r in _by_rule(results, "missing-labels")] == ["c"]
    assert [r.node_id for r in _by_rule(results, "hidden-nodes")] == ["h"]


def test_overlapping_pairs_reported_once(node):
    graph = Graph(nodes=[
        node("a", "A", x=0, y=0, width=100, height=50),
        node("b", "B", x=50, y=25, width=100, height=50),
        node("c", "C", x=100, y=0, width=100, height=50),
    ])
    overlaps = _by_rule(validate_graph(graph), "overlapping-nodes")

    # a/c only touch at x=100
    assert [(r.node_id, r.message) for r in overlaps] == [
        ("a", '"A" overlaps with "B"'),
        ("b", '"B" overlaps with "C"'),
    ]


def test_overlap_check_skipped_above_limit(monkeypatch, caplog, node):
    monkeypatch.setenv("DIAGMO_OVERLAP_NODE_LIMIT", "2")
    get_settings.cache_clear()
    graph = Graph(nodes=[node(nid, nid) for nid in "abc"])

    with caplog.at_level(logging.INFO, logger="diagmo_core"):
        results = validate_graph(graph, select_rules(["overlapping-nodes"]))

    assert results == []
    assert "Skipping overlap check" in caplog.text


def test_results_ordered_by_severity(node, edge):
    graph = Graph(
        nodes=[node("a", ""), node("b", "B", x=300), node("c", "C", x=600)],
        edges=[edge("a", "b")],
    )
    results = validate_graph(graph)
    severities = [r.severity for r in results]

    assert severities == sorted(severities, key=lambda s: ["error", "warning", "info"].index(s.value))
    assert severities[0] is Severity.WARNING
    assert severities[-1] is Severity.INFO


def test_failing_rule_is_isolated(caplog, node):
    def explode(nodes, edges):
        raise ValueError("boom")

    broken = ValidationRule("broken", "Broken", "Always fails", Severity.ERROR, explode)
    graph = Graph(nodes=[node("a", "A")])

    with caplog.at_level(logging.ERROR, logger="diagmo_core"):
        results = validate_graph(graph, [broken, ORPHAN_NODES])

    assert [r.rule_id for r in results] == ["orphan-nodes"]
    assert "Validation rule broken failed" in caplog.text


def test_custom_error_rule_sorts_first(node):
    def always(nodes, edges):
        return [required.result("Missing start node")]

    required = ValidationRule("start-node", "Start Node", "Needs a start", Severity.ERROR, always)
    results = validate_graph(Graph(nodes=[node("a", "A")]), [ORPHAN_NODES, required])

    assert [r.rule_id for r in results] == ["start-node", "orphan-nodes"]
    assert results[0].to_dict() == {
        "rule_id": "start-node",
        "rule_name": "Start Node",
        "severity": "error",
        "message": "Missing start node",
    }


def test_select_rules_enables_only_named():
    rules = select_rules(["self-loops", "overlapping-nodes"])

    assert len(rules) == len(BUILTIN_RULES)
    assert {r.id for r in rules if r.enabled} == {SELF_LOOPS.id, OVERLAPPING_NODES.id}
    assert all(r.enabled for r in BUILTIN_RULES)


def test_select_rules_rejects_unknown_ids():
    with pytest.raises(RuleError, match="no-such-rule"):
        select_rules(["self-loops", "no-such-rule"])


def test_disabled_rules_do_not_run(node):
    graph = Graph(nodes=[node("a", "A")])
    assert validate_graph(graph, select_rules(["self-loops"])) == []


def test_summary_counts(node, edge):
    graph = Graph(
        nodes=[node("a", ""), node("b", "B", x=300)],
        edges=[edge("a", "b"), edge("b", "b")],
    )
    summary = validation_summary(validate_graph(graph))

    # missing label (info), self loop (warning)
    assert summary == {"errors": 0, "warnings": 1, "info": 1, "total": 2}
