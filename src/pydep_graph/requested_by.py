"""
Requested-by propagation.

Before propagation, the dependency ids collected from an install log are the
file names of the resolved packages. Walking the dependency graph from the
project module rewrites every reachable id to its ``name:version`` graph key
and records each distinct path by which the dependency was requested.
"""

from typing import Dict, FrozenSet, List, Optional

from .dependency import REQUESTED_BY_MAX_LENGTH, Dependency
from .graph import DependencyGraph
from .structured_logging import get_propagator_logger

DependenciesMap = Dict[str, Dependency]


def infer_file_type(file_name: str) -> str:
    """
    Derive the artifact type from a package file name.

    ``foo-1.0.tar.gz`` gives ``tar.gz`` and ``foo-1.0-py3-none-any.whl`` gives
    ``whl``. Graph keys and empty ids have no type.
    """
    # A colon only appears in name:version graph keys, never in a file name
    if not file_name or ":" in file_name:
        return ""
    index = file_name.find(".tar.")
    if index != -1:
        return file_name[index + 1 :]
    index = file_name.rfind(".")
    if index != -1:
        return file_name[index + 1 :]
    return ""


def update_deps_ids_and_requested_by(
    dependencies_map: DependenciesMap,
    dependencies_graph: DependencyGraph,
    top_level_packages: List[str],
    package_name: str,
    module_name: str,
    max_chains: Optional[int] = None,
) -> DependencyGraph:
    """
    Update dependency ids and requested-by chains in place.

    Args:
        dependencies_map: Lowercase dependency name to Dependency
        dependencies_graph: Graph as built from the package manager's tree command
        top_level_packages: The project's direct dependencies
        package_name: Resolved package key of the project, empty if unknown
        module_name: Module name given by the user, or the package name
        max_chains: Maximum requested-by chains kept per dependency

    Returns:
        DependencyGraph: A copy of the graph with the module node seeded
    """
    graph = dict(dependencies_graph)
    if not package_name:
        # Project without package metadata
        graph[module_name] = list(top_level_packages)
    elif package_name != module_name and package_name in graph:
        graph[module_name] = graph[package_name]

    if module_name not in graph:
        # The project itself is not installed
        get_propagator_logger().debug("package_not_in_graph", package_key=package_name)
        graph[module_name] = list(top_level_packages)

    root_module = Dependency(id=module_name, requested_by=[[]])
    propagate_requested_by(
        root_module,
        dependencies_map,
        graph,
        max_chains if max_chains is not None else REQUESTED_BY_MAX_LENGTH,
    )
    return graph


def propagate_requested_by(
    parent: Dependency,
    dependencies_map: DependenciesMap,
    graph: DependencyGraph,
    max_chains: int = REQUESTED_BY_MAX_LENGTH,
    ancestors: FrozenSet[str] = frozenset(),
) -> None:
    """
    Walk the graph depth first from ``parent``, enriching reachable dependencies.

    Each record is copied out of the map, updated and written back, so a
    visit always sees what earlier visits recorded.

    Args:
        parent: Record of the dependency whose children are visited
        dependencies_map: Lowercase dependency name to Dependency, updated in place
        graph: Dependency key to child keys
        max_chains: Maximum requested-by chains kept per dependency
        ancestors: Keys on the current path from the root, excluding ``parent``
    """
    logger = get_propagator_logger()
    path = ancestors | {parent.id}
    parent_chains = parent.requested_by or [[]]

    for child_id in graph.get(parent.id, []):
        child_name = child_id.split(":", 1)[0].lower()
        stored = dependencies_map.get(child_name)
        if stored is None:
            logger.debug("dependency_not_in_install_log", dependency_id=child_id)
            continue

        if child_id in path or stored.node_has_loop():
            logger.debug(
                "dependency_cycle_skipped", dependency_id=child_id, parent_id=parent.id
            )
            continue
        if len(stored.requested_by) >= max_chains:
            continue

        child = stored.copy()
        added = child.update_requested_by(
            parent.id,
            [chain for chain in parent_chains if child_id not in chain],
            limit=max_chains,
        )

        if not child.type:
            child.type = infer_file_type(child.id)
        child.id = child_id
        dependencies_map[child_name] = child

        # Nothing new to pass down
        if added:
            propagate_requested_by(child, dependencies_map, graph, max_chains, path)


def collect_dependencies(dependencies_map: DependenciesMap) -> Dict[str, Dependency]:
    """
    Index the final records by their resolved id.

    Records that were never reached keep their name as the key when they
    have no id at all.
    """
    return {
        (dependency.id or name): dependency
        for name, dependency in dependencies_map.items()
    }
