import json
import logging

import pytest

from diagmo_core.cli import main


DRAWIO = """<mxGraphModel><root>
  <mxCell id="0"/><mxCell id="1" parent="0"/>
  <mxCell id="a" value="Web" style="ellipse" vertex="1" parent="1"><mxGeometry x="0" y="0" width="80" height="40" as="geometry"/></mxCell>
  <mxCell id="b" value="DB" vertex="1" parent="1"><mxGeometry x="200" y="0" width="80" height="40" as="geometry"/></mxCell>
  <mxCell id="e" edge="1" parent="1" source="a" target="b"><mxGeometry relative="1" as="geometry"/></mxCell>
</root></mxGraphModel>"""

GRAPH = {
    "nodes": [
        {"id": "a", "position": {"x": 0, "y": 0}, "data": {"label": "A"}},
        {"id": "b", "position": {"x": 300, "y": 0}, "data": {"label": "B"}},
        {"id": "c", "position": {"x": 600, "y": 0}, "data": {"label": ""}},
    ],
    "edges": [
        {"id": "e1", "source": "a", "target": "b"},
        {"id": "e2", "source": "b", "target": "b"},
        {"id": "e3", "source": "b", "target": "ghost"},
    ],
}


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    package_logger = logging.getLogger("diagmo_core")
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)


def _run(capsys, *argv):
    with pytest.raises(SystemExit) as exc:
        main(list(argv))
    return exc.value.code, capsys.readouterr().out


def _write(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(content if isinstance(content, str) else json.dumps(content))
    return str(path)


def test_import_drawio(tmp_path, capsys):
    code, out = _run(capsys, "import", "drawio", _write(tmp_path, "d.drawio", DRAWIO))
    data = json.loads(out)

    assert code == 0
    assert data["success"] is True
    assert sorted(n["data"]["label"] for n in data["nodes"]) == ["DB", "Web"]
    assert len(data["edges"]) == 1
    assert "backgroundColor" in data["nodes"][0]["data"]["style"]


def test_import_terraform_joins_files(tmp_path, capsys):
    first = _write(tmp_path, "net.tf", 'resource "aws_vpc" "main" {\n  cidr_block = "10.0.0.0/16"\n}\n')
    second = _write(tmp_path, "app.tf", 'resource "aws_subnet" "a" {\n  vpc_id = aws_vpc.main.id\n}\n')

    code, out = _run(capsys, "import", "terraform", first, second)
    data = json.loads(out)

    assert code == 0
    assert len(data["nodes"]) == 2
    assert len(data["edges"]) == 1


def test_import_mermaid(tmp_path, capsys):
    path = _write(tmp_path, "flow.mmd", "graph TD\nA[Start]-->B{Decision}\nB-->|Yes|C[End]")
    code, out = _run(capsys, "import", "mermaid", path)
    data = json.loads(out)

    assert code == 0
    assert [n["data"]["type"] for n in data["nodes"]] == ["rectangle", "diamond", "rectangle"]
    assert data["edges"][1]["label"] == "Yes"


def test_import_reports_parse_errors_in_json(tmp_path, capsys):
    code, out = _run(capsys, "import", "mermaid", _write(tmp_path, "empty.mmd", ""))
    data = json.loads(out)

    assert code == 0
    assert data["success"] is False
    assert data["errors"] == ["No diagram elements found"]


def test_missing_file_fails(tmp_path, capsys):
    code, out = _run(capsys, "import", "drawio", str(tmp_path / "nope.drawio"))
    data = json.loads(out)

    assert code == 1
    assert data["success"] is False
    assert "Cannot read" in data["error"]


def test_analyze_drops_dangling_edges(tmp_path, capsys):
    code, out = _run(capsys, "analyze", _write(tmp_path, "g.json", GRAPH))
    data = json.loads(out)

    assert code == 0
    assert data["analytics"]["edge_count"] == 2
    assert data["analytics"]["self_loops"] == 1
    assert data["analytics"]["orphan_nodes"] == 1
    assert data["complexity"]["level"] == "simple"


def test_validate_with_rule_filter(tmp_path, capsys):
    path = _write(tmp_path, "g.json", GRAPH)
    code, out = _run(capsys, "validate", path, "--rule", "self-loops", "--rule", "orphan-nodes")
    data = json.loads(out)

    assert code == 0
    assert sorted(r["rule_id"] for r in data["results"]) == ["orphan-nodes", "self-loops"]
    assert data["summary"]["warnings"] == 2


def test_validate_unknown_rule(tmp_path, capsys):
    code, out = _run(capsys, "validate", _write(tmp_path, "g.json", GRAPH), "--rule", "bogus")

    assert code == 1
    assert "bogus" in json.loads(out)["error"]


def test_invalid_graph_json(tmp_path, capsys):
    code, out = _run(capsys, "analyze", _write(tmp_path, "bad.json", "{not json"))
    assert code == 1
    assert "not valid JSON" in json.loads(out)["error"]

    code, out = _run(capsys, "analyze", _write(tmp_path, "list.json", [1, 2]))
    assert code == 1
    assert "does not contain a graph" in json.loads(out)["error"]


def test_diff_json_and_text(tmp_path, capsys):
    changed = json.loads(json.dumps(GRAPH))
    changed["nodes"][0]["data"]["label"] = "Alpha"
    old = _write(tmp_path, "old.json", GRAPH)
    new = _write(tmp_path, "new.json", changed)

    code, out = _run(capsys, "diff", old, new)
    data = json.loads(out)
    assert code == 0
    assert data["summary"]["nodes_modified"] == 1
    assert data["summary"]["total_changes"] == 1

    code, out = _run(capsys, "diff", old, new, "--text")
    assert code == 0
    assert "label: A → Alpha" in out


def test_diff_versions(tmp_path, capsys):
    older = {"id": "v1", "version": 1, "nodes": GRAPH["nodes"][:1], "edges": []}
    newer = {"id": "v2", "version": 2, "nodes": GRAPH["nodes"][:2], "edges": []}

    code, out = _run(
        capsys, "diff", "--versions",
        _write(tmp_path, "v1.json", older), _write(tmp_path, "v2.json", newer),
    )
    data = json.loads(out)

    assert code == 0
    assert data["summary"]["nodes_added"] == 1
    assert data["node_diffs"][0] == {"id": "b", "label": "B", "status": "added"}


def test_bad_environment_is_reported_as_json(tmp_path, capsys, monkeypatch):
    monkeypatch.setenv("DIAGMO_LOG_LEVEL", "LOUD")
    code, out = _run(capsys, "analyze", _write(tmp_path, "g.json", GRAPH))
    data = json.loads(out)

    assert code == 1
    assert data["success"] is False
    assert "Invalid diagmo settings" in data["error"]
