"""
Reporting and output formatting for resolved dependencies.

Provides console output using the Rich library and JSON export.
"""

import json
from typing import Dict, Optional, Set

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from .dependency import Dependency
from .graph import DependencyGraph
from .python_tools import ResolutionResult


class DependencyReporter:
    """Formats and displays resolved dependencies."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_resolution(self, result: ResolutionResult, show_tree: bool = True) -> None:
        """
        Print resolution results in a user-friendly format.

        Args:
            result: The resolution to display
            show_tree: Whether to print the dependency tree under the table
        """
        self.console.print()
        self._print_header(result)

        if result.dependencies:
            self._print_dependencies(result.dependencies)
        else:
            self.console.print("✅ No dependencies found.", style="green")

        if show_tree and result.graph:
            self.console.print(
                build_dependency_tree(result.module_name, result.graph, result.dependencies)
            )

    def _print_header(self, result: ResolutionResult) -> None:
        lines = [f"📦 Module: [bold]{result.module_name}[/bold]"]
        if result.package_name and result.package_name != result.module_name:
            lines.append(f"Package: {result.package_name}")
        lines.append(
            f"Dependencies: {len(result.dependencies)}, "
            f"top-level: {len(result.top_level)}"
        )
        self.console.print(
            Panel(
                "\n".join(lines),
                title="[bold blue]Python Dependency Graph[/bold blue]",
                border_style="blue",
            )
        )

    def _print_dependencies(self, dependencies: Dict[str, Dependency]) -> None:
        table = Table(box=box.SIMPLE_HEAVY, show_lines=False)
        table.add_column("Id", style="cyan", no_wrap=True)
        table.add_column("Type", style="magenta")
        table.add_column("Chains", justify="right")
        table.add_column("Requested by")

        for dependency_id in sorted(dependencies):
            dependency = dependencies[dependency_id]
            first_chain = (
                " ← ".join(dependency.requested_by[0]) if dependency.requested_by else "-"
            )
            table.add_row(
                dependency_id,
                dependency.type or "-",
                str(len(dependency.requested_by)),
                first_chain,
            )

        self.console.print(table)


def build_dependency_tree(
    module_name: str,
    graph: DependencyGraph,
    dependencies: Optional[Dict[str, Dependency]] = None,
) -> Tree:
    """
    Render the graph below ``module_name`` as a Rich tree.

    A dependency already shown on the current branch is marked as a cycle.
    Shared dependencies are expanded only the first time they appear.
    """
    dependencies = dependencies or {}
    tree = Tree(f"[bold]{module_name}[/bold]")
    expanded: Set[str] = set()

    def add_children(node: Tree, parent_id: str, path: Set[str]) -> None:
        for child_id in graph.get(parent_id, []):
            dependency = dependencies.get(child_id)
            label = child_id
            if dependency is not None and dependency.type:
                label += f" [dim]({dependency.type})[/dim]"
            if child_id in path:
                node.add(f"{label} [yellow]↻ cycle[/yellow]")
            elif child_id in expanded:
                node.add(f"{label} [dim]…[/dim]" if graph.get(child_id) else label)
            else:
                expanded.add(child_id)
                add_children(node.add(label), child_id, path | {child_id})

    add_children(tree, module_name, {module_name})
    return tree


def results_to_json(result: ResolutionResult) -> str:
    return json.dumps(result.to_dict(), indent=2, ensure_ascii=False)


def output_json_results(
    result: ResolutionResult,
    output_file: Optional[str] = None,
    console: Optional[Console] = None,
) -> None:
    """Export results as JSON to a file, or to stdout."""
    json_output = results_to_json(result)

    if output_file:
        with open(output_file, "w", encoding="utf-8") as f:
            f.write(json_output)
        (console or Console()).print(f"✅ Results saved to {output_file}", style="green")
    else:
        print(json_output)
