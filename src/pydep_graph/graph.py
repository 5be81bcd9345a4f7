"""
Dependency graph construction.

Turns the flat package -> direct children listing printed by a package
manager's tree command into an adjacency mapping keyed by ``name:version``.
"""

import json
from typing import Dict, List, Tuple

from .dependency import RawDependencyEntry
from .error_handling import DependencyTreeParseError

DependencyGraph = Dict[str, List[str]]


def parse_dependency_tree(json_text: str) -> List[RawDependencyEntry]:
    """
    Parse the output of ``pipdeptree --json`` or ``pipenv graph --json``.

    Args:
        json_text: JSON list of ``{"package": ..., "dependencies": [...]}`` records

    Returns:
        List[RawDependencyEntry]: Entries in the order they were printed

    Raises:
        DependencyTreeParseError: If the text is not a JSON list of objects
    """
    try:
        data = json.loads(json_text)
    except json.JSONDecodeError as e:
        raise DependencyTreeParseError(f"Invalid dependency tree JSON: {e}") from e

    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise DependencyTreeParseError("Dependency tree JSON must be a list of objects")

    return [RawDependencyEntry.from_dict(item) for item in data]


def validate_entries(entries: List[RawDependencyEntry]) -> List[str]:
    """Describe every entry or child that would produce a malformed graph key."""
    problems = []
    for entry in entries:
        if not entry.package.name or not entry.package.version:
            problems.append(f"package '{entry.package.key}' is missing a name or version")
        for child in entry.dependencies:
            if not child.name or not child.version:
                problems.append(
                    f"dependency '{child.key}' of '{entry.package.key}' "
                    "is missing a name or version"
                )
    return problems


def build_dependency_graph(
    entries: List[RawDependencyEntry],
) -> Tuple[DependencyGraph, List[str]]:
    """
    Build the dependency graph and find the project's top-level dependencies.

    A key is top-level when it is a package in the listing but is never
    listed as another package's child. The order of the returned roots is
    not meaningful.

    Args:
        entries: Raw package listing

    Returns:
        Tuple of (graph, roots)
    """
    graph: DependencyGraph = {}
    all_children = set()
    for entry in entries:
        children = []
        for child in entry.dependencies:
            children.append(child.key)
            all_children.add(child.key)
        graph[entry.package.key] = children

    roots = [key for key in graph if key not in all_children]
    return graph, roots
