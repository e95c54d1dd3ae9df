import pytest

from diagmo_core.layout import (
    find_back_edges,
    flow_handles,
    group_by,
    grouped_grid_layout,
    layered_layout,
    optimal_handles,
)
from diagmo_core.models import Position


def test_grid_is_square_ish_and_groups_stack():
    positions = grouped_grid_layout([["a", "b", "c", "d", "e"], ["x"]], node_width=100, node_height=50,
                                    horizontal_gap=20, vertical_gap=30, group_gap=40, start_x=0, start_y=0)

    # Five members -> three columns, two rows
    assert (positions["a"].x, positions["a"].y) == (0, 0)
    assert (positions["c"].x, positions["c"].y) == (240, 0)
    assert (positions["d"].x, positions["d"].y) == (0, 80)
    # Second group starts after two rows plus the group gap
    assert (positions["x"].x, positions["x"].y) == (0, 200)


def test_empty_groups_take_no_space():
    positions = grouped_grid_layout([[], ["a"]], start_y=10)
    assert positions["a"].y == 10


def test_group_by_keeps_first_seen_order():
    grouped = group_by(["apple", "bean", "avocado", "corn", "beet"], key=lambda s: s[0])

    assert list(grouped) == ["a", "b", "c"]
    assert grouped["b"] == ["bean", "beet"]


def test_back_edges_close_cycles_only():
    adjacency = {"a": ["b"], "b": ["c", "d"], "c": ["a"], "d": []}
    assert find_back_edges(["a", "b", "c", "d"], adjacency) == {("c", "a")}
    assert find_back_edges(["a"], {"a": ["a"]}) == {("a", "a")}
    assert find_back_edges(["a", "b"], {"a": ["b"], "b": []}) == set()


def test_layers_use_longest_path():
    positions, back_edges = layered_layout(
        ["a", "b", "c"], [("a", "b"), ("b", "c"), ("a", "c")],
        node_height=50, vertical_gap=100, start_y=0,
    )

    assert back_edges == set()
    assert [positions[n].y for n in "abc"] == [0, 150, 300]


def test_layers_are_centred_on_the_widest():
    positions, _ = layered_layout(
        ["r", "x", "y"], [("r", "x"), ("r", "y")],
        node_width=100, horizontal_gap=20, start_x=0,
    )

    assert (positions["x"].x, positions["y"].x) == (0, 120)
    assert positions["r"].x == 60


def test_layered_layout_ignores_cycles_and_unknown_edges():
    positions, back_edges = layered_layout(["a", "b"], [("a", "b"), ("b", "a"), ("a", "ghost")])

    assert back_edges == {("b", "a")}
    assert positions["b"].y > positions["a"].y


def test_layered_layout_directions():
    edges = [("a", "b")]
    rl, _ = layered_layout(["a", "b"], edges, direction="RL")
    assert rl["b"].x < rl["a"].x

    td, _ = layered_layout(["a", "b"], edges, direction="TD")
    tb, _ = layered_layout(["a", "b"], edges, direction="TB")
    assert td == tb

    assert layered_layout([], []) == ({}, set())


@pytest.mark.parametrize("target, handles", [
    ((0, 100), ("bottom", "top")),
    ((0, -100), ("top", "bottom")),
    ((100, 0), ("right", "left")),
    ((-100, 0), ("left", "right")),
    ((50, 50), ("right", "left")),
])
def test_optimal_handles(target, handles):
    assert optimal_handles((0, 0), target) == handles


def test_flow_handles_horizontal_flow():
    assert flow_handles(Position(x=0, y=0), Position(x=200, y=0), "LR") == ("right", "left")
    assert flow_handles(Position(x=0, y=0), Position(x=200, y=100), "LR") == ("bottom", "left")
    assert flow_handles(Position(x=200, y=0), Position(x=0, y=0), "RL") == ("left", "right")
    assert flow_handles(Position(x=200, y=0), Position(x=0, y=0), "LR", is_back_edge=True) == ("bottom", "bottom")


def test_flow_handles_vertical_flow():
    assert flow_handles(Position(x=0, y=0), Position(x=10, y=150), "TB") == ("bottom", "top")
    assert flow_handles(Position(x=0, y=150), Position(x=0, y=0), "BT") == ("top", "bottom")
    assert flow_handles(Position(x=0, y=300), Position(x=100, y=0), "TB", is_back_edge=True) == ("left", "left")


def test_back_edges_on_long_chains():
    ids = [f"n{i}" for i in range(2000)]
    adjacency = {a: [b] for a, b in zip(ids, ids[1:])}
    adjacency["n1999"] = ["n0"]

    assert find_back_edges(ids, adjacency) == {("n1999", "n0")}
