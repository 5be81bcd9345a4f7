import asyncio
import copy
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel

from .config import (
    ComprehensiveConfig,
    apply_config_data,
    create_sample_config,
    get_config,
    load_config_file,
    validate_config_values,
)
from .dependency import Dependency
from .error_handling import PyDepGraphError, setup_error_handling
from .graph import build_dependency_graph, parse_dependency_tree, validate_entries
from .install_log import InstallLogCorrelator
from .python_tools import PythonTool, ResolutionResult, resolve_project
from .reporting import DependencyReporter, output_json_results
from .requested_by import collect_dependencies, update_deps_ids_and_requested_by
from .structured_logging import configure_logging

__version__ = "1.0.0"

console = Console()


def _effective_config(
    strict: bool, max_requested_by: Optional[int]
) -> ComprehensiveConfig:
    """Copy of the global configuration with command line overrides applied."""
    config = copy.deepcopy(get_config())
    if strict:
        config.resolver.reject_malformed_entries = True
    if max_requested_by is not None:
        if max_requested_by <= 0:
            raise click.ClickException("--max-requested-by must be positive")
        config.resolver.max_requested_by_chains = max_requested_by
    return config


def _print_result(
    result: ResolutionResult, output_format: str, output_file: Optional[str], show_tree: bool
) -> None:
    if output_format == "json":
        output_json_results(result, output_file, console)
    else:
        DependencyReporter(console).print_resolution(result, show_tree=show_tree)


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Override the configured log level",
)
@click.pass_context
def cli(ctx, version, log_level):
    """
    📦 pydep-graph: attributed dependency graphs for Python projects

    Runs pip, pipenv or poetry in a project, correlates the install log with
    the installed dependency tree, and reports which files were installed
    and which dependencies requested them.
    """
    if version:
        console.print(f"pydep-graph version {__version__}", style="bold blue")
        ctx.exit()

    logging_config = get_config().logging
    level = (log_level or logging_config.log_level).upper()
    configure_logging(level)
    setup_error_handling(
        log_level=getattr(logging, level, logging.WARNING),
        log_format=logging_config.log_format,
        mask_sensitive_data=logging_config.enable_sensitive_data_masking,
    )

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("tool")
@click.argument("install_args", nargs=-1, type=click.UNPROCESSED)
@click.option(
    "--src",
    type=click.Path(exists=True, file_okay=False),
    default=".",
    show_default=True,
    help="Project directory to run the package manager in",
)
@click.option("--module", "module_name", default="", help="Root module name of the chains")
@click.option(
    "--output-format",
    type=click.Choice(["console", "json"]),
    default="console",
    show_default=True,
)
@click.option("--output-file", type=click.Path(), help="Write JSON results to this file")
@click.option("--strict", is_flag=True, help="Reject tree entries without name or version")
@click.option("--max-requested-by", type=int, help="Maximum requested-by chains per dependency")
@click.option("--no-tree", is_flag=True, help="Do not print the dependency tree")
def resolve(
    tool: str,
    install_args: Tuple[str, ...],
    src: str,
    module_name: str,
    output_format: str,
    output_file: Optional[str],
    strict: bool,
    max_requested_by: Optional[int],
    no_tree: bool,
):
    """
    Install a project with TOOL (pip, pipenv or poetry) and resolve its dependencies.

    Any INSTALL_ARGS are passed to the install command, e.g.
    pydep-graph resolve pip -- -r requirements.txt
    """
    if output_file and output_format != "json":
        raise click.ClickException("Output file can only be used with JSON format")

    config = _effective_config(strict, max_requested_by)
    try:
        result = asyncio.run(
            resolve_project(tool, src, module_name, list(install_args), config)
        )
    except KeyboardInterrupt:
        Console(stderr=True).print("\n⚠️  Interrupted by user", style="yellow")
        sys.exit(130)
    except PyDepGraphError as e:
        Console(stderr=True).print(f"❌ Error: {e}", style="red")
        sys.exit(1)

    _print_result(result, output_format, output_file, show_tree=not no_tree)


@cli.command()
@click.argument("tree_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--install-log",
    type=click.Path(exists=True, dir_okay=False),
    help="Saved install command output to correlate with the tree",
)
@click.option("--module", "module_name", default="project", show_default=True)
@click.option(
    "--output-format",
    type=click.Choice(["console", "json"]),
    default="console",
    show_default=True,
)
@click.option("--output-file", type=click.Path(), help="Write JSON results to this file")
@click.option("--strict", is_flag=True, help="Reject tree entries without name or version")
@click.option("--max-requested-by", type=int, help="Maximum requested-by chains per dependency")
def graph(
    tree_file: str,
    install_log: Optional[str],
    module_name: str,
    output_format: str,
    output_file: Optional[str],
    strict: bool,
    max_requested_by: Optional[int],
):
    """
    Build the requested-by graph from a saved ``pipdeptree --json`` listing.

    Nothing is installed. Without --install-log every package in the tree
    is reported under its name:version id.
    """
    if output_file and output_format != "json":
        raise click.ClickException("Output file can only be used with JSON format")

    config = _effective_config(strict, max_requested_by)
    try:
        entries = parse_dependency_tree(Path(tree_file).read_text(encoding="utf-8"))
    except PyDepGraphError as e:
        raise click.ClickException(str(e))

    problems = validate_entries(entries)
    if problems and config.resolver.reject_malformed_entries:
        raise click.ClickException("Malformed dependency tree:\n" + "\n".join(problems))

    dependency_graph, top_level = build_dependency_graph(entries)

    if install_log:
        correlator = InstallLogCorrelator()
        correlator.feed_text(Path(install_log).read_text(encoding="utf-8"))
        dependencies_map = correlator.dependencies_map
    else:
        dependencies_map = {
            entry.package.name.lower(): Dependency(id=entry.package.key)
            for entry in entries
        }

    seeded_graph = update_deps_ids_and_requested_by(
        dependencies_map,
        dependency_graph,
        top_level,
        "",
        module_name,
        config.resolver.max_requested_by_chains,
    )
    result = ResolutionResult(
        module_name=module_name,
        package_name="",
        dependencies=collect_dependencies(dependencies_map),
        graph=seeded_graph,
        top_level=top_level,
    )
    _print_result(result, output_format, output_file, show_tree=True)


@cli.command()
def info():
    """Show supported package managers and usage examples."""
    tools = ", ".join(tool.value for tool in PythonTool)
    info_text = f"""
[bold blue]📋 Supported package managers:[/bold blue] {tools}

[bold blue]🔗 How it works:[/bold blue]

• [yellow]Install log[/yellow] - pairs each 'Collecting' line with its downloaded or cached file
• [yellow]Dependency tree[/yellow] - pipdeptree, 'pipenv graph' or poetry.lock
• [yellow]Requested by[/yellow] - every path from the project to each dependency (capped)

[bold blue]🌍 Environment Variables:[/bold blue]

• [cyan]PYDEP_GRAPH_MAX_REQUESTED_BY[/cyan] - Requested-by chains kept per dependency
• [cyan]PYDEP_GRAPH_PYTHON[/cyan] - Python interpreter used for pipdeptree and setup.py
• [cyan]PYDEP_GRAPH_TIMEOUT[/cyan] - Seconds before a package manager command is killed
• [cyan]PYDEP_GRAPH_STRICT[/cyan] - Reject dependency tree entries without name or version
• [cyan]PYDEP_GRAPH_LOG_LEVEL[/cyan] - Log level

[bold blue]💡 Usage Examples:[/bold blue]

  # Install requirements with pip and report the graph
  pydep-graph resolve pip -- -r requirements.txt

  # pipenv project, JSON output
  pydep-graph resolve pipenv --src ./service --output-format json

  # Offline, from a saved pipdeptree listing and install log
  pydep-graph graph tree.json --install-log install.log
"""
    console.print(Panel(info_text, title="[bold]pydep-graph[/bold]", border_style="blue"))


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(),
    default=".pydep-graph.json",
    help="Path where to create the config file",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: str, force: bool):
    """Create a sample configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        console.print(f"⚠️  Config file already exists at {config_path}", style="yellow")
        console.print("Use --force to overwrite", style="dim")
        return

    try:
        config_path.write_text(create_sample_config(), encoding="utf-8")
    except OSError as e:
        raise click.ClickException(f"Failed to create config file: {e}")

    console.print(f"✅ Created configuration file at {config_path}", style="green")


@config.command("show")
def config_show():
    """Show current configuration settings."""
    console.print_json(data=get_config().to_dict())


@config.command("validate")
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False))
def config_validate(config_file: str):
    """Validate a configuration file."""
    file_config = load_config_file(Path(config_file))
    if not isinstance(file_config, dict):
        raise click.ClickException(f"Could not read configuration from {config_file}")

    candidate = ComprehensiveConfig()
    apply_config_data(candidate, file_config)
    errors = validate_config_values(candidate)
    if errors:
        console.print("❌ Configuration is invalid:", style="red")
        for error in errors:
            console.print(f"  • {error}", style="red")
        sys.exit(1)

    console.print("✅ Configuration is valid", style="green")
    console.print_json(json.dumps(candidate.to_dict()))


if __name__ == "__main__":
    cli()
