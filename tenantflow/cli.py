"""Command line interface for tenantflow."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Optional, TypeVar

import typer
import yaml

from tenantflow import FlowService, FlowWorker, TenantFlowError, load_config
from tenantflow.config import TenantFlowConfig

T = TypeVar("T")

app = typer.Typer(help="CLI for tenantflow automated flows")

# Command groups
flow_app = typer.Typer(help="Commands for managing flows")
execution_app = typer.Typer(help="Commands for inspecting executions")
worker_app = typer.Typer(help="Commands for running workers")

app.add_typer(flow_app, name="flow")
app.add_typer(execution_app, name="execution")
app.add_typer(worker_app, name="worker")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", help="Path to a YAML config file"
    ),
) -> None:
    """tenantflow CLI entry point."""
    settings = load_config(str(config) if config else None)
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = settings


def _config(ctx: typer.Context) -> TenantFlowConfig:
    return ctx.obj if isinstance(ctx.obj, TenantFlowConfig) else load_config()


def _run(awaitable: Awaitable[T]) -> T:
    try:
        return asyncio.run(awaitable)
    except TenantFlowError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _parse_context(raw: Optional[str]) -> Optional[dict[str, Any]]:
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"Context is not valid JSON: {e}")
    if not isinstance(value, dict):
        raise typer.BadParameter("Context must be a JSON object")
    return value


def _load_steps(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    with open(path) as f:
        data = yaml.safe_load(f)
    if isinstance(data, dict):
        data = data.get("steps")
    if not isinstance(data, list):
        typer.secho("Steps file must contain a list of steps", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return data


@flow_app.command("create")
def flow_create(
    ctx: typer.Context,
    steps_file: Path,
    tenant: str = typer.Option(..., "--tenant", help="Owning tenant id"),
    name: str = typer.Option(..., "--name", help="Flow name"),
    description: str = typer.Option("", "--description"),
) -> None:
    """
    Create a flow from a YAML or JSON list of steps.

    Example:
        tenantflow flow create --tenant acme --name onboarding steps.yaml
    """
    steps = _load_steps(steps_file)
    service = FlowService.from_config(_config(ctx))
    flow_id = _run(service.create_flow(tenant, name, description, steps))
    typer.echo(flow_id)


@flow_app.command("list")
def flow_list(
    ctx: typer.Context,
    tenant: str = typer.Option(..., "--tenant"),
) -> None:
    """List a tenant's flows with their status and execution counters."""
    service = FlowService.from_config(_config(ctx))
    flows = _run(service.list_flows(tenant))
    if not flows:
        typer.echo("No flows found")
        return
    for flow in flows:
        typer.echo(
            f"{flow.id}\t{flow.name}\t{flow.status}\t"
            f"{flow.successful_executions}/{flow.total_executions}"
        )


@flow_app.command("status")
def flow_status(
    ctx: typer.Context,
    flow_id: str,
    status: str,
    tenant: str = typer.Option(..., "--tenant"),
) -> None:
    """Change a flow's status (active, paused, disabled)."""
    service = FlowService.from_config(_config(ctx))
    flow = _run(service.set_flow_status(flow_id, tenant, status))
    typer.echo(f"Flow {flow.id}: {flow.status}")


@flow_app.command("run")
def flow_run(
    ctx: typer.Context,
    flow_id: str,
    tenant: str = typer.Option(..., "--tenant"),
    context: Optional[str] = typer.Option(
        None, "--context", help="Initial context as a JSON object"
    ),
) -> None:
    """
    Run a flow to completion in this process.

    Example:
        tenantflow flow run 7f1c... --tenant acme --context '{"user": "u1"}'
    """
    seed = _parse_context(context)
    service = FlowService.from_config(_config(ctx))
    execution = _run(service.execute_flow(flow_id, tenant, seed, triggered_by="cli"))
    typer.echo(f"Execution {execution.id}: {execution.status}")
    typer.echo(json.dumps(execution.context, indent=2, default=str))


@flow_app.command("submit")
def flow_submit(
    ctx: typer.Context,
    flow_id: str,
    tenant: str = typer.Option(..., "--tenant"),
    context: Optional[str] = typer.Option(None, "--context"),
) -> None:
    """Queue a flow execution for a worker and print its execution id."""
    seed = _parse_context(context)
    service = FlowService.from_config(_config(ctx))
    execution_id = _run(service.submit_flow(flow_id, tenant, seed, triggered_by="cli"))
    typer.echo(execution_id)


@execution_app.command("list")
def execution_list(
    ctx: typer.Context,
    tenant: str = typer.Option(..., "--tenant"),
    flow: Optional[str] = typer.Option(None, "--flow", help="Only this flow"),
) -> None:
    """List executions for a tenant."""
    service = FlowService.from_config(_config(ctx))
    executions = _run(service.list_executions(tenant, flow))
    if not executions:
        typer.echo("No executions found")
        return
    for execution in executions:
        typer.echo(f"{execution.id}\t{execution.flow_id}\t{execution.status}")


@execution_app.command("show")
def execution_show(
    ctx: typer.Context,
    execution_id: str,
    tenant: str = typer.Option(..., "--tenant"),
) -> None:
    """
    Show one execution with its steps and log entries.

    Example:
        tenantflow execution show 42ab... --tenant acme
        # Output: Execution 42ab...: failed
        #         Failed step: step-2
        #         Error: Step step-2 not found
    """
    service = FlowService.from_config(_config(ctx))
    execution = _run(service.get_execution(execution_id, tenant))
    typer.echo(f"Execution {execution.id}: {execution.status}")
    typer.echo(f"Flow: {execution.flow_id}")
    if execution.current_step_id:
        typer.echo(f"Current step: {execution.current_step_id}")
    if execution.completed_steps:
        typer.echo(f"Completed steps: {', '.join(execution.completed_steps)}")
    if execution.failed_step:
        typer.echo(f"Failed step: {execution.failed_step}")
    if execution.error:
        typer.echo(f"Error: {execution.error}")
    if execution.execution_time is not None:
        typer.echo(f"Duration: {execution.execution_time} ms")
    for entry in execution.logs:
        typer.echo(f"- [{entry.level}] {entry.timestamp.isoformat()} {entry.message}")


@worker_app.command("start")
def worker_start(
    ctx: typer.Context,
    lifespan: Optional[float] = typer.Option(
        None, "--lifespan", help="Stop after this many seconds"
    ),
) -> None:
    """Run a worker that executes queued flows from the configured transport."""
    service = FlowService.from_config(_config(ctx))
    worker = FlowWorker(service.transport, service)
    typer.echo(f"Starting worker on {service.config.engine.execution_topic}")
    _run(worker.start(lifespan=lifespan))


if __name__ == "__main__":
    app()
