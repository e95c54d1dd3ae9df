#!/usr/bin/env python3
"""diagmo CLI - import, analyze, validate and diff diagrams. Prints JSON."""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from .analysis import analyze_graph, complexity_score
from .diff import compare_graphs, compare_versions, generate_diff_summary
from .exceptions import ConfigurationError, DiagmoError
from .log import get_logger, setup_logging
from .models import DiagramVersion, Graph
from .parsers import MermaidCliRenderer, import_mermaid, parse_drawio, parse_terraform
from .validation import BUILTIN_RULES, select_rules, validate_graph, validation_summary

logger = get_logger(__name__)


def _json_out(data, code=0):
    print(json.dumps(data))
    sys.exit(code)


def _fail(message):
    _json_out({"success": False, "error": message}, code=1)


def _read_text(path):
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        _fail(f"Cannot read {path}: {e.strerror or e}")


def _read_json(path):
    try:
        return json.loads(_read_text(path))
    except json.JSONDecodeError as e:
        _fail(f"{path} is not valid JSON: {e}")


def _load_graph(path):
    data = _read_json(path)
    if not isinstance(data, dict):
        _fail(f"{path} does not contain a graph object")
    try:
        return Graph.from_json_dict(data).drop_dangling_edges()
    except ValidationError as e:
        _fail(f"{path} is not a valid graph: {e.error_count()} validation error(s)")


def _load_version(path):
    data = _read_json(path)
    try:
        return DiagramVersion.model_validate(data)
    except ValidationError as e:
        _fail(f"{path} is not a valid version snapshot: {e.error_count()} validation error(s)")


def _result_out(result):
    _json_out({
        "success": result.ok,
        "nodes": [n.to_json_dict() for n in result.nodes],
        "edges": [e.to_json_dict() for e in result.edges],
        "errors": result.errors,
    })


# ── Import ───────────────────────────────────────────────────────────────────

def cmd_import_drawio(args):
    _result_out(parse_drawio(_read_text(args.file), page=args.page))


def cmd_import_terraform(args):
    source = "\n".join(_read_text(path) for path in args.files)
    _result_out(parse_terraform(source))


def cmd_import_mermaid(args):
    renderer = MermaidCliRenderer() if args.render else None
    _result_out(asyncio.run(import_mermaid(_read_text(args.file), renderer=renderer)))


# ── Analysis ─────────────────────────────────────────────────────────────────

def cmd_analyze(args):
    graph = _load_graph(args.file)
    analytics = analyze_graph(graph)
    _json_out({
        "success": True,
        "analytics": analytics.to_dict(),
        "complexity": complexity_score(analytics).to_dict(),
    })


def cmd_validate(args):
    graph = _load_graph(args.file)
    try:
        rules = select_rules(args.rule) if args.rule else BUILTIN_RULES
    except DiagmoError as e:
        _fail(str(e))

    results = validate_graph(graph, rules)
    _json_out({
        "success": True,
        "results": [r.to_dict() for r in results],
        "summary": validation_summary(results),
    })


def cmd_diff(args):
    if args.versions:
        result = compare_versions(_load_version(args.old), _load_version(args.new))
        _json_out({"success": True, **result.to_dict()})

    diff = compare_graphs(_load_graph(args.old), _load_graph(args.new))
    if args.text:
        print(generate_diff_summary(diff))
        sys.exit(0)
    _json_out({"success": True, **diff.to_dict()})


# ── Main ─────────────────────────────────────────────────────────────────────

def build_parser():
    parser = argparse.ArgumentParser(prog="diagmo", description="Diagram import and analysis CLI")
    parser.add_argument("--log-level", default=None, help="Logging level (default: DIAGMO_LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    # Import
    p = sub.add_parser("import", help="Convert a Draw.io, Terraform or Mermaid file to a graph")
    formats = p.add_subparsers(dest="format", required=True)

    fp = formats.add_parser("drawio")
    fp.add_argument("file")
    fp.add_argument("--page", type=int, default=0, help="Zero-based page of a multi-page file")

    fp = formats.add_parser("terraform")
    fp.add_argument("files", nargs="+", metavar="FILE")

    fp = formats.add_parser("mermaid")
    fp.add_argument("file")
    fp.add_argument("--render", action="store_true", help="Lay out with mermaid-cli, falling back to text parsing")

    # Analysis
    p = sub.add_parser("analyze", help="Structural metrics of a graph JSON file")
    p.add_argument("file")

    p = sub.add_parser("validate", help="Run validation rules over a graph JSON file")
    p.add_argument("file")
    p.add_argument("--rule", action="append", metavar="ID",
                   help="Only run this rule (repeatable): " + ", ".join(r.id for r in BUILTIN_RULES))

    p = sub.add_parser("diff", help="Compare two graph JSON files")
    p.add_argument("old")
    p.add_argument("new")
    p.add_argument("--text", action="store_true", help="Print a readable summary instead of JSON")
    p.add_argument("--versions", action="store_true", help="Inputs are stored version snapshots")

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        setup_logging(level=args.log_level)
    except ConfigurationError as e:
        _fail(str(e))

    cmd_map = {
        "import-drawio": cmd_import_drawio,
        "import-terraform": cmd_import_terraform,
        "import-mermaid": cmd_import_mermaid,
        "analyze": cmd_analyze,
        "validate": cmd_validate,
        "diff": cmd_diff,
    }
    command = f"import-{args.format}" if args.command == "import" else args.command
    logger.debug("Running %s", command)
    cmd_map[command](args)


if __name__ == "__main__":
    main()
