"""
CLI tests driven through typer's CliRunner.
"""
import json
from unittest.mock import MagicMock, patch

import pytest
from azure.core.exceptions import ResourceNotFoundError
from typer.testing import CliRunner

from amlrun.cli import app
from amlrun.run import RunStatus
from amlrun.workflow import WorkflowResult

pytestmark = pytest.mark.cli

runner = CliRunner()


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch("amlrun.cli.configure_logging") as configure:
        yield configure


@pytest.fixture
def cli_workspace(workspace):
    with patch("amlrun.cli.load_workspace_from_config", return_value=workspace) as loader:
        workspace.loader = loader
        yield workspace


def test_workspace_write_and_show(tmp_path):
    target = tmp_path / ".azureml"
    result = runner.invoke(
        app,
        ["workspace", "write", "--subscription-id", "sub", "--resource-group", "rg", "--workspace-name", "ml-ws", "--path", str(target)],
    )
    assert result.exit_code == 0
    assert json.loads((target / "config.json").read_text())["workspace_name"] == "ml-ws"

    result = runner.invoke(app, ["-w", str(target / "config.json"), "workspace", "show"])
    assert result.exit_code == 0
    assert "ml-ws" in result.stdout


def test_workspace_show_missing(tmp_path):
    result = runner.invoke(app, ["-w", str(tmp_path / "absent.json"), "workspace", "show"])
    assert result.exit_code == 1
    assert "Error" in result.stdout


def test_log_options_are_applied(cli_workspace, quiet_logging):
    runner.invoke(app, ["--log-level", "DEBUG", "--json-logs", "compute", "delete", "cpu-cluster"])
    quiet_logging.assert_called_once_with(level="DEBUG", json_logs=True)


def test_compute_create_without_wait(cli_workspace):
    cli_workspace.compute.get.side_effect = ResourceNotFoundError("missing")
    cli_workspace.compute.begin_create_or_update.return_value = MagicMock(spec=["result", "done", "status", "wait"])

    result = runner.invoke(app, ["compute", "create", "cpu-cluster", "--max-nodes", "2", "--low-priority", "--no-wait"])

    assert result.exit_code == 0
    assert "Creating" in result.stdout
    entity = cli_workspace.compute.begin_create_or_update.call_args.args[0]
    assert entity.max_instances == 2


def test_compute_create_invalid_range(cli_workspace):
    result = runner.invoke(app, ["compute", "create", "cpu-cluster", "--min-nodes", "3", "--max-nodes", "1"])
    assert result.exit_code == 1
    cli_workspace.compute.begin_create_or_update.assert_not_called()


def test_compute_delete(cli_workspace, tmp_path):
    result = runner.invoke(app, ["-w", str(tmp_path), "compute", "delete", "cpu-cluster"])

    assert result.exit_code == 0
    assert "Deleted" in result.stdout
    cli_workspace.loader.assert_called_once_with(tmp_path)


def test_compute_nodes_empty(cli_workspace):
    cli_workspace.compute.list_nodes.return_value = []
    result = runner.invoke(app, ["compute", "nodes", "cpu-cluster"])
    assert result.exit_code == 0
    assert "No nodes" in result.stdout


def test_submit_without_wait(job_config_file, workspace, submitted_job):
    workspace.jobs.create_or_update.return_value = submitted_job

    with patch("amlrun.cli.open_workspace", return_value=workspace), patch("amlrun.estimator.command"), patch(
        "amlrun.environment.Environment"
    ):
        result = runner.invoke(app, ["submit", str(job_config_file), "--no-wait", "--override", "compute.name=gpu-cluster"])

    assert result.exit_code == 0, result.stdout
    assert "brave_kettle_1234" in result.stdout
    workspace.jobs.get.assert_not_called()


def test_submit_bad_override(job_config_file):
    result = runner.invoke(app, ["submit", str(job_config_file), "--override", "compute.max_nodes"])
    assert result.exit_code == 1
    assert "Error" in result.stdout


def test_metrics(cli_workspace):
    with patch("amlrun.cli.Run") as run_cls:
        run_cls.return_value.get_metrics.return_value = {"accuracy": 0.93}
        result = runner.invoke(app, ["metrics", "brave_kettle_1234", "--history"])

    assert result.exit_code == 0
    assert "accuracy" in result.stdout
    run_cls.return_value.get_metrics.assert_called_once_with(history=True)


def test_status(cli_workspace, submitted_job):
    cli_workspace.jobs.get.return_value = submitted_job
    result = runner.invoke(app, ["status", "brave_kettle_1234"])
    assert result.exit_code == 0
    assert "Completed" in result.stdout


def test_cancel(cli_workspace):
    result = runner.invoke(app, ["cancel", "brave_kettle_1234"])
    assert result.exit_code == 0
    cli_workspace.jobs.begin_cancel.assert_called_once_with("brave_kettle_1234")


def test_tutorial(job_config_file):
    outcome = WorkflowResult(
        run_name="brave_kettle_1234",
        status=RunStatus.COMPLETED,
        metrics={"accuracy": 0.95},
        compute_deleted=True,
    )
    with patch("amlrun.cli.run_training_workflow", return_value=outcome) as workflow:
        result = runner.invoke(app, ["tutorial", str(job_config_file), "--teardown"])

    assert result.exit_code == 0
    assert "accuracy" in result.stdout
    kwargs = workflow.call_args.kwargs
    assert kwargs["teardown"] is True
    assert kwargs["workspace"] is None
    assert kwargs["config_dir"] == job_config_file.parent


def test_config_logging_section_is_applied(job_config_file, tmp_path, quiet_logging):
    outcome = WorkflowResult(run_name="brave_kettle_1234", status=RunStatus.COMPLETED)
    with patch("amlrun.cli.run_training_workflow", return_value=outcome):
        result = runner.invoke(
            app,
            ["tutorial", str(job_config_file), "--override", f"logging.log_dir={tmp_path}", "--override", "logging.level=DEBUG"],
        )

    assert result.exit_code == 0
    quiet_logging.assert_called_with(level="DEBUG", log_dir=tmp_path, json_logs=False)


@pytest.mark.parametrize(
    "command",
    [["status", "brave_kettle_1234"], ["metrics", "brave_kettle_1234"], ["cancel", "brave_kettle_1234"], ["compute", "show", "cpu-cluster"], ["compute", "nodes", "cpu-cluster"], ["compute", "delete", "cpu-cluster"]],
)
def test_missing_workspace_config_reports_error(tmp_path, command):
    result = runner.invoke(app, ["-w", str(tmp_path / "absent.json"), *command])

    assert result.exit_code == 1
    assert "Error" in result.stdout
