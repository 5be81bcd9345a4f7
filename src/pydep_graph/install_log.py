"""
Install log correlation.

pip prints ``Collecting <name>`` when it starts on a package and, later, a
``Downloading <file> (`` or ``Using cached <file> (`` line once it knows
which file it will install. Those two events are paired into a map of
lowercase package name to the resolved file name. Packages that are
already installed, or whose file line never shows up, are recorded with an
empty id.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .command import OutputPattern, apply_output_patterns
from .dependency import Dependency
from .error_handling import sanitize_message
from .structured_logging import get_correlator_logger

COLLECTING_RE = re.compile(r"^Collecting\s*(\w[\w.-]*)")
DOWNLOADING_RE = re.compile(r"^\s*Downloading\s*([^\s]*)\s\(")
USING_CACHED_RE = re.compile(r"\s*Using\scached\s([\S]+)\s\(")
ALREADY_SATISFIED_RE = re.compile(r"^Requirement\salready\ssatisfied:\s*(\w[\w.-]*)")


class CorrelatorState(Enum):
    """Whether a package announcement is waiting for its file."""

    IDLE = "idle"
    AWAITING_FILE = "awaiting_file"


class LineKind(Enum):
    """Kinds of install log lines the correlator reacts to."""

    ANNOUNCE = "announce"
    RESOLVE = "resolve"
    ALREADY_SATISFIED = "already_satisfied"


@dataclass(frozen=True)
class Transition:
    """Outcome of one matched line: the next state and the map writes to apply."""

    state: CorrelatorState
    pending_name: str
    updates: Tuple[Tuple[str, str], ...] = ()
    event: Optional[str] = None


def extract_file_name(path: str) -> str:
    """Return the part of a path or URL after the last ``/``."""
    return path.rsplit("/", 1)[-1]


def transition(
    state: CorrelatorState, pending_name: str, kind: LineKind, capture: str
) -> Transition:
    """
    Compute the correlator's reaction to one matched line.

    Args:
        state: Current state
        pending_name: Package announced last, empty when idle
        kind: Which pattern matched
        capture: The package name or file path captured by the pattern

    Returns:
        Transition: New state, pending name, and (name, id) writes in order
    """
    if kind is LineKind.ANNOUNCE:
        updates: Tuple[Tuple[str, str], ...] = ()
        event = "package_announced"
        if state is CorrelatorState.AWAITING_FILE:
            # The previous package's file was never printed, usually
            # because it came from the cache
            updates = ((pending_name.lower(), ""),)
            event = "download_path_unresolved"
        if not capture:
            return Transition(CorrelatorState.IDLE, "", updates, "package_name_unresolved")
        return Transition(CorrelatorState.AWAITING_FILE, capture, updates, event)

    if kind is LineKind.RESOLVE:
        if state is not CorrelatorState.AWAITING_FILE or not capture:
            return Transition(state, pending_name, (), "package_name_unresolved")
        return Transition(
            CorrelatorState.IDLE,
            "",
            ((pending_name.lower(), extract_file_name(capture)),),
            "package_resolved",
        )

    if kind is LineKind.ALREADY_SATISFIED:
        if not capture:
            return Transition(state, pending_name, (), "package_name_unresolved")
        return Transition(
            state, pending_name, ((capture.lower(), ""),), "package_already_installed"
        )

    raise ValueError(f"Unknown line kind: {kind}")


def package_name_from_file(file_name: str) -> str:
    """
    Guess the distribution name of a wheel or source archive file name.

    ``Foo_Bar-1.0-py3-none-any.whl`` gives ``foo_bar``, ``foo-bar-1.0.tar.gz``
    gives ``foo-bar``.
    """
    if file_name.endswith(".whl"):
        return file_name.split("-", 1)[0].lower()
    name, separator, _ = file_name.rpartition("-")
    return (name if separator else file_name).lower()


class InstallLogCorrelator:
    """Builds the name -> file map from the output of an install command."""

    def __init__(self):
        self.dependencies_map: Dict[str, Dependency] = {}
        self.state = CorrelatorState.IDLE
        self.package_name = ""
        self.logger = get_correlator_logger()
        self._patterns = [
            OutputPattern(COLLECTING_RE, self._on_collecting),
            OutputPattern(DOWNLOADING_RE, self._on_file),
            OutputPattern(USING_CACHED_RE, self._on_file),
            OutputPattern(ALREADY_SATISFIED_RE, self._on_already_satisfied),
        ]

    def output_patterns(self) -> List[OutputPattern]:
        """The line matchers to register with the command runner."""
        return list(self._patterns)

    def feed_line(self, line: str) -> None:
        apply_output_patterns(line, self._patterns)

    def feed_text(self, text: str) -> None:
        for line in text.splitlines():
            self.feed_line(line)

    def handle(self, kind: LineKind, capture: str, line: str = "") -> None:
        """Apply the transition for one matched line."""
        result = transition(self.state, self.package_name, kind, capture)
        for name, file_name in result.updates:
            self.dependencies_map[name] = Dependency(id=file_name)

        if result.event:
            self.logger.debug(
                result.event,
                package=(
                    result.updates[-1][0]
                    if result.updates
                    else result.pending_name or self.package_name
                ),
                line=sanitize_message(line),
            )

        self.state = result.state
        self.package_name = result.pending_name

    def _on_collecting(self, match: "re.Match[str]", line: str) -> None:
        self.handle(LineKind.ANNOUNCE, match.group(1), line)

    def _on_file(self, match: "re.Match[str]", line: str) -> None:
        self.handle(LineKind.RESOLVE, match.group(1), line)

    def _on_already_satisfied(self, match: "re.Match[str]", line: str) -> None:
        self.handle(LineKind.ALREADY_SATISFIED, match.group(1), line)

    def merge_cache_hits(self, error_output: str) -> int:
        """
        Scan a buffered error stream for cache hits and merge them in.

        Cache hits are paired with the ``Collecting`` line before them; a hit
        with no announcement is attributed by its file name.

        Returns:
            int: Number of cache hits merged
        """
        scanner = InstallLogCorrelator()
        merged = 0
        for line in error_output.splitlines():
            if COLLECTING_RE.search(line):
                scanner.feed_line(line)
                continue

            match = USING_CACHED_RE.search(line)
            if match is None:
                continue
            file_name = extract_file_name(match.group(1))
            if scanner.state is CorrelatorState.AWAITING_FILE:
                name = scanner.package_name.lower()
                scanner.handle(LineKind.RESOLVE, match.group(1), line)
            else:
                name = package_name_from_file(file_name)
            self.dependencies_map[name] = Dependency(id=file_name)
            merged += 1

        self.logger.debug("cache_hits_merged", count=merged)
        return merged
