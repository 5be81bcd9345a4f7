"""
Shared fixtures for pydep-graph tests.
"""

import json
import os

import pytest

from pydep_graph.config import reset_config


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep every test away from real config files and PYDEP_GRAPH_* variables."""
    for key in list(os.environ):
        if key.startswith("PYDEP_GRAPH_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def temp_dir(tmp_path):
    """Working directory for files created by a test."""
    return tmp_path


@pytest.fixture
def sample_tree_entries():
    """pipdeptree --json output for foo -> bar -> baz, with qux standalone."""
    return [
        {
            "package": {"key": "foo", "package_name": "Foo", "installed_version": "1.0"},
            "dependencies": [
                {"key": "bar", "package_name": "bar", "installed_version": "2.0"}
            ],
        },
        {
            "package": {"key": "bar", "package_name": "bar", "installed_version": "2.0"},
            "dependencies": [
                {"key": "baz", "package_name": "baz", "installed_version": "3.0"}
            ],
        },
        {
            "package": {"key": "baz", "package_name": "baz", "installed_version": "3.0"},
            "dependencies": [],
        },
        {
            "package": {"key": "qux", "package_name": "qux", "installed_version": "0.1"},
            "dependencies": [],
        },
    ]


@pytest.fixture
def sample_tree_file(temp_dir, sample_tree_entries):
    tree_file = temp_dir / "tree.json"
    tree_file.write_text(json.dumps(sample_tree_entries))
    return tree_file


@pytest.fixture
def sample_install_log():
    """pip install output matching the sample tree."""
    return "\n".join(
        [
            "Collecting Foo==1.0 (from -r requirements.txt (line 1))",
            "  Downloading https://files.example.org/packages/foo-1.0-py3-none-any.whl (12 kB)",
            "Collecting bar>=2.0 (from Foo==1.0)",
            "  Using cached bar-2.0.tar.gz (8.1 kB)",
            "Requirement already satisfied: baz in ./venv/lib/python3.11/site-packages (from bar>=2.0) (3.0)",
            "Collecting qux",
            "  Downloading qux-0.1-py2.py3-none-any.whl (3 kB)",
            "Installing collected packages: qux, bar, Foo",
            "Successfully installed Foo-1.0 bar-2.0 qux-0.1",
        ]
    )
