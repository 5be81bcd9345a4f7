"""
Tests for dependency graph construction.
"""

import json

import pytest

from pydep_graph.dependency import PackageRef, RawDependencyEntry
from pydep_graph.error_handling import DependencyTreeParseError
from pydep_graph.graph import (
    build_dependency_graph,
    parse_dependency_tree,
    validate_entries,
)


def entry(key, *children):
    return RawDependencyEntry(
        PackageRef.from_key(key), [PackageRef.from_key(child) for child in children]
    )


class TestBuildDependencyGraph:
    """Test the builder's graph and root detection."""

    def test_parent_and_leaf(self):
        """A package and its only child give one root."""
        graph, roots = build_dependency_graph(
            [entry("pkgA:1.0", "pkgB:2.0"), entry("pkgB:2.0")]
        )

        assert graph == {"pkgA:1.0": ["pkgB:2.0"], "pkgB:2.0": []}
        assert roots == ["pkgA:1.0"]

    def test_roots_are_never_children(self):
        """Every root is a graph key and no root appears as a child."""
        graph, roots = build_dependency_graph(
            [
                entry("a:1", "b:1", "c:1"),
                entry("b:1", "c:1"),
                entry("c:1"),
                entry("d:1", "c:1"),
                entry("e:1"),
            ]
        )

        assert sorted(roots) == ["a:1", "d:1", "e:1"]
        all_children = {child for children in graph.values() for child in children}
        for root in roots:
            assert root in graph
            assert root not in all_children

    def test_child_order_is_preserved(self):
        graph, _ = build_dependency_graph([entry("a:1", "c:1", "b:1", "d:1")])

        assert graph["a:1"] == ["c:1", "b:1", "d:1"]

    def test_duplicate_entry_last_write_wins(self):
        """A package listed twice keeps the children of its last listing."""
        graph, roots = build_dependency_graph(
            [entry("a:1", "b:1"), entry("a:1", "c:1")]
        )

        assert graph["a:1"] == ["c:1"]
        assert roots == ["a:1"]

    def test_mutual_dependencies_have_no_root(self):
        _, roots = build_dependency_graph([entry("a:1", "b:1"), entry("b:1", "a:1")])

        assert roots == []

    def test_malformed_entries_pass_through(self):
        """Entries missing a version produce keys that simply do not match."""
        graph, roots = build_dependency_graph(
            [entry("a:1", "b:"), RawDependencyEntry(PackageRef("", ""), [])]
        )

        assert graph["a:1"] == ["b:"]
        assert ":" in graph
        assert sorted(roots) == [":", "a:1"]

    def test_empty_listing(self):
        assert build_dependency_graph([]) == ({}, [])


class TestParseDependencyTree:
    """Test decoding pipdeptree / pipenv graph JSON."""

    def test_parse_tree_json(self, sample_tree_entries):
        entries = parse_dependency_tree(json.dumps(sample_tree_entries))

        assert len(entries) == 4
        assert entries[0].package.key == "foo:1.0"
        assert entries[0].package_name == "Foo"
        assert [child.key for child in entries[0].dependencies] == ["bar:2.0"]

    def test_parsed_tree_builds_graph(self, sample_tree_entries):
        graph, roots = build_dependency_graph(
            parse_dependency_tree(json.dumps(sample_tree_entries))
        )

        assert graph["bar:2.0"] == ["baz:3.0"]
        assert sorted(roots) == ["foo:1.0", "qux:0.1"]

    def test_missing_fields_become_empty(self):
        entries = parse_dependency_tree(
            json.dumps([{"package": {"key": "foo"}, "dependencies": [{}]}])
        )

        assert entries[0].package.key == "foo:"
        assert entries[0].dependencies[0].key == ":"

    def test_invalid_json(self):
        with pytest.raises(DependencyTreeParseError, match="Invalid dependency tree JSON"):
            parse_dependency_tree("{not json")

    def test_not_a_list(self):
        with pytest.raises(DependencyTreeParseError, match="list of objects"):
            parse_dependency_tree(json.dumps({"package": {}}))


class TestValidateEntries:
    """Test malformed entry detection."""

    def test_valid_entries(self):
        assert validate_entries([entry("a:1", "b:2")]) == []

    def test_reports_package_and_child_problems(self):
        problems = validate_entries(
            [RawDependencyEntry(PackageRef("a", ""), [PackageRef("", "1.0")])]
        )

        assert len(problems) == 2
        assert "package 'a:'" in problems[0]
        assert "dependency ':1.0' of 'a:'" in problems[1]
