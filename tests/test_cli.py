"""
CLI interface tests for pydep-graph.
Tests the command-line interface and main entry points.
"""

import json
from unittest.mock import AsyncMock, patch

from click.testing import CliRunner

from pydep_graph.dependency import Dependency
from pydep_graph.error_handling import get_error_handler
from pydep_graph.main import cli
from pydep_graph.python_tools import ResolutionResult


def json_output(output):
    """Decode the JSON document printed by a command."""
    return json.loads(output[output.index("{"):])


class TestCLIBasics:
    """Test basic CLI functionality."""

    def test_cli_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "pydep-graph" in result.output.lower()
        assert "resolve" in result.output

    def test_cli_version(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "1.0.0" in result.output

    def test_info_command(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["info"])

        assert result.exit_code == 0
        assert "pip, pipenv, poetry" in result.output
        assert "PYDEP_GRAPH_MAX_REQUESTED_BY" in result.output

    def test_logging_config_reaches_error_handler(self, temp_dir):
        (temp_dir / ".pydep-graph.json").write_text(
            json.dumps(
                {
                    "logging": {
                        "log_format": "%(levelname)s %(message)s",
                        "enable_sensitive_data_masking": False,
                    }
                }
            )
        )

        runner = CliRunner()
        result = runner.invoke(cli, ["info"])

        assert result.exit_code == 0
        secure_logger = get_error_handler().logger
        assert secure_logger.mask_sensitive_data is False
        assert secure_logger.logger.handlers[0].formatter._fmt == "%(levelname)s %(message)s"


class TestResolveCommand:
    """Test the resolve command functionality."""

    def setup_method(self):
        self.result = ResolutionResult(
            module_name="my-app",
            package_name="my-app:1.0",
            dependencies={
                "requests:2.31.0": Dependency(
                    id="requests:2.31.0", type="whl", requested_by=[["my-app"]]
                )
            },
            graph={"my-app": ["requests:2.31.0"]},
            top_level=["requests:2.31.0"],
        )

    @patch("pydep_graph.main.resolve_project", new_callable=AsyncMock)
    def test_resolve_console_output(self, mock_resolve, temp_dir):
        mock_resolve.return_value = self.result

        runner = CliRunner()
        result = runner.invoke(cli, ["resolve", "pip", "--src", str(temp_dir)])

        assert result.exit_code == 0
        assert "requests:2.31.0" in result.output
        assert "my-app" in result.output

    @patch("pydep_graph.main.resolve_project", new_callable=AsyncMock)
    def test_resolve_json_output(self, mock_resolve, temp_dir):
        mock_resolve.return_value = self.result

        runner = CliRunner()
        result = runner.invoke(
            cli, ["resolve", "pip", "--src", str(temp_dir), "--output-format", "json"]
        )

        assert result.exit_code == 0
        data = json_output(result.output)
        assert data["module"] == "my-app"
        assert data["dependencies"] == [
            {"id": "requests:2.31.0", "type": "whl", "requestedBy": [["my-app"]]}
        ]

    @patch("pydep_graph.main.resolve_project", new_callable=AsyncMock)
    def test_install_args_and_options_are_passed(self, mock_resolve, temp_dir):
        mock_resolve.return_value = self.result

        runner = CliRunner()
        result = runner.invoke(
            cli,
            [
                "resolve",
                "pip",
                "--src",
                str(temp_dir),
                "--module",
                "svc",
                "--strict",
                "--max-requested-by",
                "3",
                "--",
                "-r",
                "requirements.txt",
            ],
        )

        assert result.exit_code == 0
        tool, src, module_name, install_args, config = mock_resolve.call_args[0]
        assert (tool, src, module_name) == ("pip", str(temp_dir), "svc")
        assert install_args == ["-r", "requirements.txt"]
        assert config.resolver.reject_malformed_entries is True
        assert config.resolver.max_requested_by_chains == 3

    def test_unsupported_tool(self, temp_dir):
        runner = CliRunner()
        result = runner.invoke(cli, ["resolve", "npm", "--src", str(temp_dir)])

        assert result.exit_code == 1

    def test_output_file_requires_json(self, temp_dir):
        runner = CliRunner()
        result = runner.invoke(
            cli, ["resolve", "pip", "--src", str(temp_dir), "--output-file", "out.json"]
        )

        assert result.exit_code != 0
        assert "JSON format" in result.output

    def test_invalid_max_requested_by(self, temp_dir):
        runner = CliRunner()
        result = runner.invoke(
            cli, ["resolve", "pip", "--src", str(temp_dir), "--max-requested-by", "0"]
        )

        assert result.exit_code != 0
        assert "must be positive" in result.output


class TestGraphCommand:
    """Test offline graph building from saved command output."""

    def test_graph_from_tree_only(self, sample_tree_file):
        runner = CliRunner()
        result = runner.invoke(
            cli, ["graph", str(sample_tree_file), "--output-format", "json"]
        )

        assert result.exit_code == 0
        data = json_output(result.output)
        dependencies = {dep["id"]: dep for dep in data["dependencies"]}
        assert dependencies["foo:1.0"]["requestedBy"] == [["project"]]
        assert dependencies["baz:3.0"]["requestedBy"] == [["bar:2.0", "foo:1.0", "project"]]

    def test_graph_with_install_log(self, temp_dir, sample_tree_file, sample_install_log):
        log_file = temp_dir / "install.log"
        log_file.write_text(sample_install_log)

        runner = CliRunner()
        result = runner.invoke(
            cli,
            [
                "graph",
                str(sample_tree_file),
                "--install-log",
                str(log_file),
                "--module",
                "svc",
                "--output-format",
                "json",
            ],
        )

        assert result.exit_code == 0
        dependencies = {dep["id"]: dep for dep in json_output(result.output)["dependencies"]}
        assert dependencies["foo:1.0"]["type"] == "whl"
        assert dependencies["bar:2.0"]["type"] == "tar.gz"
        assert "type" not in dependencies["baz:3.0"]
        assert dependencies["qux:0.1"]["requestedBy"] == [["svc"]]

    def test_graph_output_file(self, temp_dir, sample_tree_file):
        output_file = temp_dir / "graph.json"

        runner = CliRunner()
        result = runner.invoke(
            cli,
            [
                "graph",
                str(sample_tree_file),
                "--output-format",
                "json",
                "--output-file",
                str(output_file),
            ],
        )

        assert result.exit_code == 0
        assert json.loads(output_file.read_text())["module"] == "project"

    def test_graph_console_output(self, sample_tree_file):
        runner = CliRunner()
        result = runner.invoke(cli, ["graph", str(sample_tree_file)])

        assert result.exit_code == 0
        assert "baz:3.0" in result.output

    def test_invalid_tree_file(self, temp_dir):
        tree_file = temp_dir / "tree.json"
        tree_file.write_text("not json")

        runner = CliRunner()
        result = runner.invoke(cli, ["graph", str(tree_file)])

        assert result.exit_code != 0
        assert "Invalid dependency tree JSON" in result.output

    def test_strict_rejects_malformed_tree(self, temp_dir):
        tree_file = temp_dir / "tree.json"
        tree_file.write_text(json.dumps([{"package": {"key": "foo"}, "dependencies": []}]))

        runner = CliRunner()
        result = runner.invoke(cli, ["graph", str(tree_file), "--strict"])

        assert result.exit_code != 0
        assert "Malformed dependency tree" in result.output


class TestConfigCommands:
    """Test configuration management commands."""

    def test_config_init(self, temp_dir):
        config_path = temp_dir / "config.json"

        runner = CliRunner()
        result = runner.invoke(cli, ["config", "init", "--path", str(config_path)])

        assert result.exit_code == 0
        data = json.loads(config_path.read_text())
        assert data["resolver"]["max_requested_by_chains"] == 10

    def test_config_init_does_not_overwrite(self, temp_dir):
        config_path = temp_dir / "config.json"
        config_path.write_text("{}")

        runner = CliRunner()
        result = runner.invoke(cli, ["config", "init", "--path", str(config_path)])

        assert result.exit_code == 0
        assert "already exists" in result.output
        assert config_path.read_text() == "{}"

    def test_config_show(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["config", "show"])

        assert result.exit_code == 0
        assert "max_requested_by_chains" in result.output

    def test_config_validate_valid(self, temp_dir):
        config_path = temp_dir / "config.yaml"
        config_path.write_text("resolver:\n  max_requested_by_chains: 5\n")

        runner = CliRunner()
        result = runner.invoke(cli, ["config", "validate", str(config_path)])

        assert result.exit_code == 0
        assert "Configuration is valid" in result.output

    def test_config_validate_invalid(self, temp_dir):
        config_path = temp_dir / "config.json"
        config_path.write_text(json.dumps({"command": {"timeout_seconds": -1}}))

        runner = CliRunner()
        result = runner.invoke(cli, ["config", "validate", str(config_path)])

        assert result.exit_code == 1
        assert "timeout_seconds must be positive" in result.output
