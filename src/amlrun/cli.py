"""Typer CLI entrypoint for amlrun."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from .compute import ComputeSpec, delete_compute, get_compute, get_or_create_compute, list_nodes_in_compute
from .config import load_config
from .core.exceptions import AmlrunError
from .core.logging import configure_logging
from .estimator import Estimator
from .experiment import Experiment
from .run import Run
from .workflow import open_workspace, run_training_workflow
from .workspace import WorkspaceConfig, find_workspace_config, load_workspace_from_config, write_workspace_config

LOGGER = logging.getLogger(__name__)

app = typer.Typer(help="Submit and manage Azure ML training and batch-inference jobs", no_args_is_help=True)
workspace_app = typer.Typer(help="Workspace configuration")
compute_app = typer.Typer(help="AmlCompute clusters")

app.add_typer(workspace_app, name="workspace")
app.add_typer(compute_app, name="compute")

console = Console()


def _fail(exc: Exception) -> None:
    console.print(f"[red]Error: {exc}[/red]")
    raise typer.Exit(code=1)


def _workspace(ctx: typer.Context) -> Any:
    return load_workspace_from_config(ctx.obj.get("workspace_config"))


def _configure_from(cfg: Any, ctx: typer.Context) -> None:
    if cfg.logging.log_dir:
        configure_logging(
            level=cfg.logging.level,
            log_dir=Path(cfg.logging.log_dir),
            json_logs=cfg.logging.json_logs or ctx.obj.get("json_logs", False),
        )


def _print_mapping(title: str, values: Dict[str, Any]) -> None:
    table = Table(title=title)
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="white")
    for key, value in values.items():
        rendered = json.dumps(value) if isinstance(value, (list, dict)) else str(value)
        table.add_row(str(key), rendered)
    console.print(table)


@app.callback()
def main(
    ctx: typer.Context,
    workspace_config: Optional[Path] = typer.Option(
        None, "--workspace-config", "-w", help="Path to config.json (default: search from cwd)"
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit structured JSON logs"),
) -> None:
    configure_logging(level=log_level, json_logs=json_logs)
    ctx.obj = {"workspace_config": workspace_config, "json_logs": json_logs}


@workspace_app.command("show")
def workspace_show(ctx: typer.Context) -> None:
    """Show the workspace config that would be used."""
    try:
        config = find_workspace_config(ctx.obj.get("workspace_config"))
    except AmlrunError as exc:
        _fail(exc)
    _print_mapping("Workspace", config.model_dump(exclude_none=True))


@workspace_app.command("write")
def workspace_write(
    subscription_id: str = typer.Option(..., help="Azure subscription id"),
    resource_group: str = typer.Option(..., help="Resource group of the workspace"),
    workspace_name: str = typer.Option(..., help="Workspace name"),
    tenant_id: Optional[str] = typer.Option(None, help="Azure AD tenant id"),
    path: Path = typer.Option(Path(".azureml"), help="Directory or .json file to write"),
) -> None:
    """Write a workspace config.json."""
    config = WorkspaceConfig(
        subscription_id=subscription_id,
        resource_group=resource_group,
        workspace_name=workspace_name,
        tenant_id=tenant_id,
    )
    target = write_workspace_config(config, path)
    console.print(f"[green]Wrote {target}[/green]")


@compute_app.command("create")
def compute_create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Cluster name"),
    vm_size: str = typer.Option("STANDARD_D2_V2", help="VM size"),
    min_nodes: int = typer.Option(0, help="Minimum node count"),
    max_nodes: int = typer.Option(4, help="Maximum node count"),
    idle_seconds: int = typer.Option(1800, help="Idle seconds before scale-down"),
    low_priority: bool = typer.Option(False, help="Use low-priority VMs"),
    wait: bool = typer.Option(True, help="Wait for provisioning to finish"),
) -> None:
    """Create (or reuse) an AmlCompute cluster."""
    try:
        spec = ComputeSpec(
            name=name,
            vm_size=vm_size,
            min_nodes=min_nodes,
            max_nodes=max_nodes,
            idle_seconds_before_scaledown=idle_seconds,
            tier="low_priority" if low_priority else "dedicated",
        )
        compute = get_or_create_compute(_workspace(ctx), spec, wait=wait)
    except (AmlrunError, ValueError) as exc:
        _fail(exc)
    state = getattr(compute, "provisioning_state", None) or "Creating"
    console.print(f"[green]Compute '{name}': {state}[/green]")


@compute_app.command("show")
def compute_show(ctx: typer.Context, name: str = typer.Argument(..., help="Cluster name")) -> None:
    """Show a cluster's size and scale settings."""
    try:
        compute = get_compute(_workspace(ctx), name)
    except AmlrunError as exc:
        _fail(exc)
    if compute is None:
        _fail(AmlrunError(f"Compute '{name}' not found"))
    _print_mapping(
        f"Compute {name}",
        {
            "type": getattr(compute, "type", None),
            "size": getattr(compute, "size", None),
            "min_instances": getattr(compute, "min_instances", None),
            "max_instances": getattr(compute, "max_instances", None),
            "idle_time_before_scale_down": getattr(compute, "idle_time_before_scale_down", None),
            "provisioning_state": getattr(compute, "provisioning_state", None),
        },
    )


@compute_app.command("nodes")
def compute_nodes(ctx: typer.Context, name: str = typer.Argument(..., help="Cluster name")) -> None:
    """List the nodes currently allocated to a cluster."""
    try:
        nodes = list_nodes_in_compute(_workspace(ctx), name)
    except AmlrunError as exc:
        _fail(exc)
    if not nodes:
        console.print(f"[yellow]No nodes allocated to '{name}'.[/yellow]")
        return
    table = Table(title=f"Nodes in {name}")
    table.add_column("Node", style="cyan")
    table.add_column("State", style="green")
    table.add_column("Private IP", style="white")
    for node in nodes:
        table.add_row(
            str(getattr(node, "node_id", "")),
            str(getattr(node, "node_state", "")),
            str(getattr(node, "private_ip_address", "")),
        )
    console.print(table)


@compute_app.command("delete")
def compute_delete(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Cluster name"),
    wait: bool = typer.Option(True, help="Wait for deletion to finish"),
) -> None:
    """Delete a cluster."""
    try:
        deleted = delete_compute(_workspace(ctx), name, wait=wait)
    except AmlrunError as exc:
        _fail(exc)
    if deleted:
        console.print(f"[green]Deleted compute '{name}'[/green]")
    else:
        console.print(f"[yellow]Compute '{name}' did not exist[/yellow]")


@app.command()
def submit(
    ctx: typer.Context,
    config: Path = typer.Argument(..., exists=True, help="Path to job YAML"),
    override: Optional[List[str]] = typer.Option(None, "--override", help="Override key=value pairs"),
    wait: Optional[bool] = typer.Option(None, "--wait/--no-wait", help="Wait for the run to finish"),
    stream: bool = typer.Option(False, "--stream", help="Stream run logs while waiting"),
) -> None:
    """Submit the estimator described in a job YAML."""
    try:
        cfg = load_config(config, overrides=override or [])
        _configure_from(cfg, ctx)
        ws = open_workspace(cfg) if ctx.obj.get("workspace_config") is None else _workspace(ctx)
        estimator = Estimator.from_config(cfg, relative_to=config.parent)
        run = Experiment(ws, cfg.experiment.name).submit(estimator)
        console.print(f"Submitted run [cyan]{run.name}[/cyan]: {run.studio_url}")
        should_wait = cfg.run.wait if wait is None else wait
        if should_wait:
            status = run.wait_for_completion(
                show_output=stream or cfg.run.show_output,
                poll_interval=cfg.run.poll_interval,
                timeout=cfg.run.timeout,
            )
            console.print(f"[green]Run {run.name} {status.value}[/green]")
    except AmlrunError as exc:
        _fail(exc)


@app.command()
def status(ctx: typer.Context, run_name: str = typer.Argument(..., help="Run (job) name")) -> None:
    """Show a run's status and details."""
    try:
        details = Run(_workspace(ctx), run_name).get_details()
    except AmlrunError as exc:
        _fail(exc)
    _print_mapping(f"Run {run_name}", details)


@app.command()
def metrics(
    ctx: typer.Context,
    run_name: str = typer.Argument(..., help="Run (job) name"),
    history: bool = typer.Option(False, help="Show every logged value instead of the latest"),
) -> None:
    """Show the metrics a run logged."""
    try:
        values = Run(_workspace(ctx), run_name).get_metrics(history=history)
    except AmlrunError as exc:
        _fail(exc)
    if not values:
        console.print(f"[yellow]Run {run_name} logged no metrics.[/yellow]")
        return
    _print_mapping(f"Metrics for {run_name}", values)


@app.command()
def cancel(ctx: typer.Context, run_name: str = typer.Argument(..., help="Run (job) name")) -> None:
    """Cancel a running job."""
    try:
        Run(_workspace(ctx), run_name).cancel()
    except AmlrunError as exc:
        _fail(exc)
    console.print(f"[green]Cancelled {run_name}[/green]")


@app.command()
def tutorial(
    ctx: typer.Context,
    config: Path = typer.Argument(..., exists=True, help="Path to job YAML"),
    override: Optional[List[str]] = typer.Option(None, "--override", help="Override key=value pairs"),
    teardown: Optional[bool] = typer.Option(None, "--teardown/--keep-compute", help="Delete the cluster afterwards"),
) -> None:
    """Provision compute, train, wait, report metrics and optionally tear down."""
    try:
        cfg = load_config(config, overrides=override or [])
        _configure_from(cfg, ctx)
        ws = _workspace(ctx) if ctx.obj.get("workspace_config") is not None else None
        result = run_training_workflow(cfg, workspace=ws, teardown=teardown, config_dir=config.parent)
    except AmlrunError as exc:
        _fail(exc)
    summary = result.to_dict()
    metric_values = summary.pop("metrics")
    _print_mapping(f"Run {result.run_name}", summary)
    if metric_values:
        _print_mapping("Metrics", metric_values)


if __name__ == "__main__":  # pragma: no cover
    app()
