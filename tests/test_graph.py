from __future__ import annotations

from beadgraph.graph import (
    build_graphs,
    dependencies_to_edges,
    dependency_to_edge,
    graphs_to_json,
    issue_summary,
    issues_to_nodes,
)
from beadgraph.models import Dependency, Issue


def _issue(issue_id: str, *deps: str) -> Issue:
    return Issue(id=issue_id, title=issue_id.upper(), dependencies=tuple(deps))


def test_empty_input_yields_no_graphs() -> None:
    assert build_graphs([]) == []


def test_independent_issues_each_root_their_own_graph() -> None:
    issues = [_issue("a"), _issue("b"), _issue("c")]
    graphs = build_graphs(issues)

    assert [g.root.id for g in graphs] == ["a", "b", "c"]
    for g in graphs:
        assert [i.id for i in g.issues] == ["a", "b", "c"]
        assert set(g.issue_map) == {"a", "b", "c"}
        assert g.dependencies == []


def test_chain_has_single_root_at_the_unblocked_end() -> None:
    # a is blocked by b, b is blocked by c
    graphs = build_graphs([_issue("a", "b"), _issue("b", "c"), _issue("c")])

    assert len(graphs) == 1
    assert graphs[0].root.id == "c"
    assert [d.key for d in graphs[0].dependencies] == [("a", "b"), ("b", "c")]


def test_two_cycle_falls_back_to_every_issue_as_root() -> None:
    graphs = build_graphs([_issue("a", "b"), _issue("b", "a")])
    assert len(graphs) == 2
    assert {g.root.id for g in graphs} == {"a", "b"}


def test_graphs_share_issue_collections() -> None:
    graphs = build_graphs([_issue("a"), _issue("b")])
    assert graphs[0].issues is graphs[1].issues
    assert graphs[0].dependencies is graphs[1].dependencies


def test_duplicate_dependencies_collapse() -> None:
    graphs = build_graphs([_issue("a", "b", "b"), _issue("b")])
    assert [d.key for d in graphs[0].dependencies] == [("a", "b")]


def test_raw_records_with_relationship_entries_normalize() -> None:
    raw = [
        {
            "id": "a",
            "title": "A",
            "issue_type": "bug",
            "dependencies": [{"issue_id": "a", "depends_on_id": "b", "type": "blocks"}],
        },
        {"id": "b", "title": "B", "dependencies": ["c"]},
        {"id": "c", "title": "C"},
    ]
    graphs = build_graphs(raw)

    assert len(graphs) == 1
    assert graphs[0].root.id == "c"
    assert graphs[0].issue_map["a"].type == "bug"
    assert [d.key for d in graphs[0].dependencies] == [("a", "b"), ("b", "c")]

def test_malformed_raw_fields_degrade_instead_of_failing() -> None:
    raw = [
        {"id": "a", "dependencies": "b", "dependency_count": "many", "dependent_count": None},
        {"id": "b", "dependencies": ["a"], "dependency_count": True, "dependents": 7},
    ]
    graphs = build_graphs(raw)

    a = graphs[0].issue_map["a"]
    b = graphs[0].issue_map["b"]
    assert a.dependencies == ()
    assert (a.dependency_count, a.dependent_count) == (0, 0)
    assert b.dependency_count == 1
    assert b.dependent_count == 0
    assert [g.root.id for g in graphs] == ["a"]



def test_duplicate_ids_keep_first_position_and_last_record() -> None:
    graphs = build_graphs([Issue(id="a", title="old"), _issue("b"), Issue(id="a", title="new")])
    shared = graphs[0]
    assert [i.id for i in shared.issues] == ["a", "b"]
    assert shared.issue_map["a"].title == "new"


def test_missing_blocker_ids_leave_no_root_and_fall_back() -> None:
    graphs = build_graphs([_issue("a", "ghost")])
    assert [g.root.id for g in graphs] == ["a"]


def test_graphs_to_json_uses_capitalized_keys() -> None:
    payload = graphs_to_json(build_graphs([_issue("a", "b"), _issue("b")]))
    assert len(payload) == 1
    assert payload[0]["Root"]["id"] == "b"
    assert set(payload[0]) == {"Root", "Issues", "Dependencies", "IssueMap"}
    assert payload[0]["Dependencies"][0]["depends_on_id"] == "b"


class TestEdges:
    def test_edge_runs_from_blocker_to_blocked(self) -> None:
        edge = dependency_to_edge(Dependency(issue_id="child", depends_on_id="parent"))
        assert edge.id == "parent-child"
        assert edge.source == "parent"
        assert edge.target == "child"

    def test_dependencies_missing_an_endpoint_are_skipped(self) -> None:
        edges = dependencies_to_edges(
            [
                Dependency(issue_id="b", depends_on_id="a"),
                Dependency(issue_id="", depends_on_id="a"),
                Dependency(issue_id="c", depends_on_id=""),
            ]
        )
        assert [e.id for e in edges] == ["a-b"]


def test_issue_summary_defaults_type_and_priority() -> None:
    summary = issue_summary(Issue(id="x", title="X"))
    assert summary == {
        "issueId": "x",
        "title": "X",
        "status": "open",
        "type": "task",
        "priority": 2,
    }


def test_issues_to_nodes_pairs_ids_with_summaries() -> None:
    nodes = issues_to_nodes([_issue("a"), _issue("b")])
    assert [node_id for node_id, _ in nodes] == ["a", "b"]
    assert nodes[1][1]["title"] == "B"
