"""
Dependency resolution for Python projects built with pip, pipenv or poetry.

Each resolver runs the package manager's install command, parses its log
into resolved files, queries the installed dependency tree, and combines
the two into attributed dependency records.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import toml
from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import canonicalize_name
from packaging.version import InvalidVersion, Version

from .command import (
    Command,
    CommandResult,
    OutputPattern,
    run_command_output,
    run_command_with_output_parser,
)
from .config import ComprehensiveConfig, get_config
from .dependency import Dependency, PackageRef, RawDependencyEntry
from .error_handling import (
    CommandFailedError,
    DependencyTreeParseError,
    ErrorCategory,
    PyDepGraphError,
    UnsupportedToolError,
    get_error_handler,
    log_command_failure,
    sanitize_message,
)
from .graph import (
    DependencyGraph,
    build_dependency_graph,
    parse_dependency_tree,
    validate_entries,
)
from .install_log import InstallLogCorrelator
from .requested_by import (
    DependenciesMap,
    collect_dependencies,
    update_deps_ids_and_requested_by,
)
from .structured_logging import clear_resolution_context, set_resolution_context


class PythonTool(Enum):
    """Supported Python package managers."""

    PIP = "pip"
    PIPENV = "pipenv"
    POETRY = "poetry"

    @classmethod
    def from_name(cls, name: str) -> "PythonTool":
        """
        Look up a tool by its command name.

        Raises:
            UnsupportedToolError: If the tool is not supported
        """
        try:
            return cls(name.lower())
        except ValueError:
            raise UnsupportedToolError(name) from None


@dataclass
class ResolutionResult:
    """Attributed dependencies of a project, with the graph they came from."""

    module_name: str
    package_name: str
    dependencies: Dict[str, Dependency] = field(default_factory=dict)
    graph: DependencyGraph = field(default_factory=dict)
    top_level: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "module": self.module_name,
            "package": self.package_name,
            "dependencies": [dep.to_dict() for dep in self.dependencies.values()],
        }


def _project_key(name: str, version: str) -> str:
    name = canonicalize_name(name) if name else ""
    return PackageRef(name, version).key if version else name


def check_command_result(tool_name: str, result: CommandResult, function: str) -> CommandResult:
    """
    Pass a successful result through; report and raise on a non-zero exit status.

    Raises:
        CommandFailedError: Naming the tool and carrying its error output
    """
    if result.succeeded:
        return result

    error = CommandFailedError(
        tool_name,
        f"exit status {result.return_code}",
        sanitize_message(result.stderr.strip()),
    )
    log_command_failure(
        tool_name, str(error), "python_tools", function, return_code=result.return_code
    )
    raise error


def read_toml_file(path: Path) -> Dict[str, Any]:
    """Read a TOML file, raising DependencyTreeParseError on invalid content."""
    try:
        return toml.load(path)
    except toml.TomlDecodeError as e:
        raise DependencyTreeParseError(f"Invalid TOML in {path.name}: {e}") from e


def get_package_name_from_pyproject(src_path: Path) -> Tuple[str, str]:
    """
    Read the project name and version from pyproject.toml.

    Both ``[project]`` and ``[tool.poetry]`` tables are understood.

    Returns:
        Tuple of (name, version); empty strings when not declared
    """
    pyproject_path = src_path / "pyproject.toml"
    if not pyproject_path.is_file():
        return "", ""

    data = read_toml_file(pyproject_path)
    for table in (data.get("project"), data.get("tool", {}).get("poetry")):
        if isinstance(table, dict) and table.get("name"):
            return str(table["name"]), str(table.get("version") or "")
    return "", ""


class BasePythonToolResolver(ABC):
    """Base class for package manager resolvers."""

    tool: PythonTool

    def __init__(self, src_path: str, config: Optional[ComprehensiveConfig] = None):
        """
        Initialize resolver.

        Args:
            src_path: Project directory the package manager runs in
            config: Configuration, the global configuration when omitted
        """
        self.src_path = Path(src_path)
        self.config = config or get_config()
        self.error_handler = get_error_handler()

    @abstractmethod
    async def get_dependencies_files(self, install_args: Sequence[str]) -> DependenciesMap:
        """Install the project and map each lowercase package name to its file."""

    @abstractmethod
    async def get_dependencies(self) -> Tuple[DependencyGraph, List[str]]:
        """Query the dependency graph and the project's top-level dependencies."""

    async def get_package_name(self) -> str:
        """Return the project's ``name:version`` key, empty when it cannot be read."""
        name, version = get_package_name_from_pyproject(self.src_path)
        if name:
            return _project_key(name, version)

        if not (self.src_path / "setup.py").is_file():
            return ""
        result = await self._run(
            Command(
                self.config.command.python_executable,
                ["setup.py", "--name", "--version"],
                cwd=self.src_path,
            ),
            tool_name="setup.py",
        )
        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if len(lines) < 2:
            return ""
        return _project_key(lines[-2], lines[-1])

    def _command(self, *args: str) -> Command:
        return Command(
            self.tool.value,
            list(args),
            cwd=self.src_path,
            env=dict(self.config.command.extra_env),
        )

    async def _run(
        self,
        command: Command,
        patterns: Sequence[OutputPattern] = (),
        tool_name: Optional[str] = None,
    ) -> CommandResult:
        """
        Run a command and fail on a non-zero exit status.

        Raises:
            CommandFailedError: If the command fails
        """
        result = await run_command_with_output_parser(
            command, patterns, timeout=self.config.command.timeout_seconds
        )
        return check_command_result(tool_name or self.tool.value, result, "_run")

    def _entries_to_graph(
        self, entries: List[RawDependencyEntry]
    ) -> Tuple[DependencyGraph, List[str]]:
        problems = validate_entries(entries)
        if problems:
            if self.config.resolver.reject_malformed_entries:
                raise DependencyTreeParseError("; ".join(problems))
            self.error_handler.warning(
                ErrorCategory.VALIDATION,
                f"{len(problems)} malformed entries in the dependency tree",
                "python_tools",
                "_entries_to_graph",
                details={"problems": problems[:10]},
            )
        return build_dependency_graph(entries)

    async def resolve(
        self, module_name: str = "", install_args: Sequence[str] = ()
    ) -> ResolutionResult:
        """
        Resolve the project's attributed dependencies.

        Args:
            module_name: Root id of every requested-by chain; defaults to the
                package key, or the project directory name without one
            install_args: Extra arguments for the install command

        Returns:
            ResolutionResult: Dependencies keyed by their resolved id
        """
        dependencies_map = await self.get_dependencies_files(install_args)
        graph, top_level = await self.get_dependencies()
        package_name = await self.get_package_name()
        module_name = module_name or package_name or self.src_path.resolve().name

        set_resolution_context(self.tool.value, module_name)
        try:
            graph = update_deps_ids_and_requested_by(
                dependencies_map,
                graph,
                top_level,
                package_name,
                module_name,
                self.config.resolver.max_requested_by_chains,
            )
        finally:
            clear_resolution_context()

        return ResolutionResult(
            module_name=module_name,
            package_name=package_name,
            dependencies=collect_dependencies(dependencies_map),
            graph=graph,
            top_level=top_level,
        )


class PipResolver(BasePythonToolResolver):
    """Resolver driving ``pip install`` and ``pipdeptree``."""

    tool = PythonTool.PIP

    async def get_dependencies_files(self, install_args: Sequence[str]) -> DependenciesMap:
        return await install_with_log_parsing(
            self.tool, install_args, self.src_path, self.config
        )

    async def get_dependencies(self) -> Tuple[DependencyGraph, List[str]]:
        result = await self._run(
            Command(
                self.config.command.python_executable,
                ["-m", "pipdeptree", "--json"],
                cwd=self.src_path,
                env=dict(self.config.command.extra_env),
            ),
            tool_name="pipdeptree",
        )
        return self._entries_to_graph(parse_dependency_tree(result.stdout))


class PipenvResolver(PipResolver):
    """Resolver driving ``pipenv install`` and ``pipenv graph``."""

    tool = PythonTool.PIPENV

    async def get_dependencies(self) -> Tuple[DependencyGraph, List[str]]:
        result = await self._run(self._command("graph", "--json"))
        return self._entries_to_graph(parse_dependency_tree(result.stdout))


class PoetryResolver(BasePythonToolResolver):
    """Resolver reading ``poetry.lock`` after ``poetry install``."""

    tool = PythonTool.POETRY

    def _load_lock_packages(self) -> List[Dict[str, Any]]:
        lock_path = self.src_path / "poetry.lock"
        if not lock_path.is_file():
            raise DependencyTreeParseError(f"poetry.lock not found in {self.src_path}")
        data = read_toml_file(lock_path)
        packages = data.get("package", [])

        # Lock files before poetry 1.2 keep file hashes under [metadata.files]
        legacy_files = data.get("metadata", {}).get("files", {})
        for package in packages:
            if "files" not in package and package.get("name") in legacy_files:
                package["files"] = legacy_files[package["name"]]
        return packages

    async def get_dependencies_files(self, install_args: Sequence[str]) -> DependenciesMap:
        await self._run(self._command("install", *install_args))

        dependencies_map: DependenciesMap = {}
        for package in self._load_lock_packages():
            name = canonicalize_name(str(package.get("name", "")))
            version = str(package.get("version", ""))
            files = package.get("files") or []
            checksum = {}
            dependency_id = PackageRef(name, version).key
            if files:
                dependency_id = files[0].get("file", dependency_id)
                algorithm, _, digest = str(files[0].get("hash", "")).partition(":")
                if digest:
                    checksum[algorithm] = digest
            dependencies_map[name] = Dependency(id=dependency_id, checksum=checksum)
        return dependencies_map

    async def get_dependencies(self) -> Tuple[DependencyGraph, List[str]]:
        packages = self._load_lock_packages()
        versions = {
            canonicalize_name(str(package.get("name", ""))): str(package.get("version", ""))
            for package in packages
        }

        entries = []
        for package in packages:
            name = canonicalize_name(str(package.get("name", "")))
            children = [
                PackageRef(canonicalize_name(child), versions[canonicalize_name(child)])
                for child in (package.get("dependencies") or {})
                if canonicalize_name(child) in versions
            ]
            entries.append(
                RawDependencyEntry(PackageRef(name, versions[name]), children, name)
            )
        graph, roots = self._entries_to_graph(entries)

        declared = self._declared_dependencies()
        if declared:
            roots = [
                PackageRef(name, versions[name]).key for name in declared if name in versions
            ]

        package_name = await self.get_package_name()
        if package_name:
            graph[package_name] = list(roots)
        return graph, roots

    def _declared_dependencies(self) -> List[str]:
        pyproject_path = self.src_path / "pyproject.toml"
        if not pyproject_path.is_file():
            return []
        data = read_toml_file(pyproject_path)

        poetry_deps = data.get("tool", {}).get("poetry", {}).get("dependencies", {})
        names = [canonicalize_name(name) for name in poetry_deps if name.lower() != "python"]
        for requirement in data.get("project", {}).get("dependencies", []):
            name = _requirement_name(requirement)
            if name and name not in names:
                names.append(name)
        return names

    async def get_package_name(self) -> str:
        name, version = get_package_name_from_pyproject(self.src_path)
        return _project_key(name, version) if name else ""


def _requirement_name(requirement: str) -> str:
    try:
        return canonicalize_name(Requirement(requirement).name)
    except InvalidRequirement:
        get_error_handler().debug(
            ErrorCategory.PARSING,
            f"Skipping unparsable requirement: {requirement}",
            "python_tools",
            "_requirement_name",
        )
        return ""


async def get_pipenv_version(config: Optional[ComprehensiveConfig] = None) -> Version:
    """
    Query the installed pipenv version.

    Raises:
        PyDepGraphError: If the version cannot be determined
    """
    config = config or get_config()
    result = await run_command_output(
        Command(PythonTool.PIPENV.value, ["--version"]),
        timeout=config.command.timeout_seconds,
    )
    check_command_result(PythonTool.PIPENV.value, result, "get_pipenv_version")

    _, found, version_text = result.stdout.partition("version ")
    if not found:
        raise PyDepGraphError("couldn't find pipenv version")
    try:
        return Version(version_text.strip())
    except InvalidVersion as e:
        raise PyDepGraphError(f"couldn't parse pipenv version: {version_text.strip()}") from e


async def install_with_log_parsing(
    tool: PythonTool,
    command_args: Sequence[str],
    src_path: Path,
    config: Optional[ComprehensiveConfig] = None,
) -> DependenciesMap:
    """
    Run ``<tool> install`` and map every package it reports to its file name.

    Args:
        tool: pip or pipenv
        command_args: Extra install arguments
        src_path: Project directory
        config: Configuration, the global configuration when omitted

    Returns:
        Lowercase package name to Dependency whose id is the file name,
        empty for packages that were already installed

    Raises:
        CommandFailedError: If the install command fails
    """
    config = config or get_config()
    args = ["install", *command_args]
    if tool is PythonTool.PIPENV:
        args.append(config.resolver.pipenv_verbose_flag)
    command = Command(tool.value, args, cwd=Path(src_path), env=dict(config.command.extra_env))
    correlator = InstallLogCorrelator()

    buffered = False
    if tool is PythonTool.PIPENV:
        threshold = Version(config.resolver.pipenv_buffered_stderr_min_version)
        buffered = await get_pipenv_version(config) >= threshold

    if buffered:
        result = await run_command_output(command, timeout=config.command.timeout_seconds)
    else:
        result = await run_command_with_output_parser(
            command, correlator.output_patterns(), timeout=config.command.timeout_seconds
        )

    check_command_result(tool.value, result, "install_with_log_parsing")

    if buffered:
        # Each stream gets its own correlator so an announcement left pending
        # on one stream is never paired with a file line from the other
        correlator.feed_text(result.stdout)
        stderr_correlator = InstallLogCorrelator()
        stderr_correlator.feed_text(result.stderr)
        stderr_correlator.merge_cache_hits(result.stderr)
        return {**correlator.dependencies_map, **stderr_correlator.dependencies_map}

    return correlator.dependencies_map


_RESOLVERS = {
    PythonTool.PIP: PipResolver,
    PythonTool.PIPENV: PipenvResolver,
    PythonTool.POETRY: PoetryResolver,
}


def get_python_tool_resolver(
    tool: str, src_path: str, config: Optional[ComprehensiveConfig] = None
) -> BasePythonToolResolver:
    """
    Factory function to get the resolver for a package manager.

    Raises:
        UnsupportedToolError: If the tool is not supported
    """
    return _RESOLVERS[PythonTool.from_name(tool)](src_path, config)


async def get_python_dependencies_files(
    tool: str, args: Sequence[str], src_path: str
) -> DependenciesMap:
    """Install the project and return lowercase package name to resolved file."""
    return await get_python_tool_resolver(tool, src_path).get_dependencies_files(args)


async def get_python_dependencies(
    tool: str, src_path: str
) -> Tuple[DependencyGraph, List[str]]:
    """Return the dependency graph and top-level dependencies of an installed project."""
    return await get_python_tool_resolver(tool, src_path).get_dependencies()


async def get_package_name(tool: str, src_path: str) -> str:
    """Return the project's ``name:version`` key, empty if it has no metadata."""
    return await get_python_tool_resolver(tool, src_path).get_package_name()


async def resolve_project(
    tool: str,
    src_path: str,
    module_name: str = "",
    install_args: Sequence[str] = (),
    config: Optional[ComprehensiveConfig] = None,
) -> ResolutionResult:
    """
    Convenience function to resolve all attributed dependencies of a project.

    Args:
        tool: pip, pipenv or poetry
        src_path: Project directory
        module_name: Root id of the requested-by chains
        install_args: Extra arguments for the install command
        config: Configuration, the global configuration when omitted

    Returns:
        ResolutionResult: Dependencies keyed by their resolved id
    """
    resolver = get_python_tool_resolver(tool, src_path, config)
    return await resolver.resolve(module_name, install_args)
