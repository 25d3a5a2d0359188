from dataclasses import asdict
from typing import Any, Dict

import click
from rich.console import Console
from rich.table import Table

from netledger.cli.main import echo_json, fail, get_runtime, report_result, wants_json
from netledger.models.domain import DirectiveType, NetworkTask

console = Console()


def task_to_dict(task: NetworkTask) -> Dict[str, Any]:
    return {
        "task_id": task.task_id,
        "network_id": task.network_id,
        "step_number": task.step_number,
        "status": task.status,
        "task_type": task.task_type,
        "description": task.description,
        "priority": task.priority,
        "progress": task.progress,
        "assigned_to": task.assigned_to,
        "result": task.result,
        "partial": task.is_partial,
        "stage": task.stage.stage if task.stage else None,
        "policy": task.policy.model_dump(mode="json") if task.policy else None,
        "created_at": task.created_at,
        "completed_at": task.completed_at,
    }


@click.group()
def network():
    """Task network commands."""
    pass


@network.command("create")
@click.argument("description")
@click.option("--id", "network_id", default=None, help="Network id (generated when omitted)")
@click.option("--type", "task_type", default="network", help="Task type of the main task")
@click.option("--created-by", default=None, help="Creating agent id")
@click.option("--parent-job", "parent_job_id", default=None, help="Parent job id")
@click.pass_context
def create_network(ctx, description, network_id, task_type, created_by, parent_job_id):
    """Create a network (idempotent for an existing id)."""
    try:
        runtime = get_runtime(ctx)
        result = runtime.network.create_network(
            network_id,
            description=description,
            task_type=task_type,
            created_by=created_by,
            parent_job_id=parent_job_id,
        )
    except Exception as exc:
        fail(ctx, exc)
        return
    report_result(ctx, result, {"network_id": result.data["network_id"], "created": result.data["created"]})
    if not wants_json(ctx):
        console.print(f"  ID: {result.data['network_id']}")


@network.command("show")
@click.argument("network_id")
@click.pass_context
def show_network(ctx, network_id):
    """Show a network's stage, policy and counts."""
    runtime = get_runtime(ctx)
    try:
        main = runtime.tasks.get_main_task(network_id)
        summary = runtime.network.network_summary(network_id)
    except KeyError:
        if wants_json(ctx):
            echo_json({"success": False, "error": "network_not_found"})
        else:
            console.print(f"[red]Network {network_id} not found[/red]")
        return

    if wants_json(ctx):
        echo_json({**task_to_dict(main), "summary": asdict(summary)})
        return

    console.print(f"[bold]Network: {main.description}[/bold] (ID: {network_id})")
    console.print(f"Stage: {summary.stage}")
    if main.stage and main.stage.replan_from_step is not None:
        console.print(f"Replanning from step: {main.stage.replan_from_step}")
    if main.policy:
        console.print(f"Policy v{main.policy.version}: {main.policy.strategy}")
    else:
        console.print("Policy: [dim]not set[/dim]")
    console.print(
        f"Sub-tasks: {summary.total} total, {summary.queued} queued, {summary.running} running, "
        f"{summary.completed} completed, {summary.failed} failed, {summary.paused} paused"
    )


@network.command("tasks")
@click.argument("network_id")
@click.option("--type", "task_type", default=None, help="Only sub-tasks of this type")
@click.pass_context
def list_tasks(ctx, network_id, task_type):
    """List a network's sub-tasks in step order."""
    runtime = get_runtime(ctx)
    if task_type:
        tasks = runtime.tasks.list_by_type(network_id, task_type, limit=1000)
    else:
        tasks = runtime.tasks.list_subtasks(network_id)
    _print_tasks(ctx, f"Tasks for {network_id}", tasks)


@network.command("related")
@click.argument("task_id")
@click.option("--limit", default=20, show_default=True, type=int)
@click.pass_context
def related_tasks(ctx, task_id, limit):
    """List tasks related to TASK_ID through dependencies or a shared network."""
    runtime = get_runtime(ctx)
    try:
        tasks = runtime.tasks.find_related(task_id, limit=limit)
    except KeyError as exc:
        fail(ctx, exc)
        return
    _print_tasks(ctx, f"Related to {task_id}", tasks)


def _print_tasks(ctx, title, tasks):
    if wants_json(ctx):
        echo_json([task_to_dict(t) for t in tasks])
        return

    table = Table(title=title)
    table.add_column("Step", justify="right", style="cyan")
    table.add_column("Task ID", style="dim")
    table.add_column("Type", style="magenta")
    table.add_column("Status", style="green")
    table.add_column("Progress", justify="right")
    table.add_column("Description")

    for t in tasks:
        status = f"{t.status} (partial)" if t.is_partial else t.status
        table.add_row(str(t.step_number), t.task_id, t.task_type, status, f"{t.progress}%", t.description)

    console.print(table)


@network.command("summary")
@click.argument("network_id")
@click.pass_context
def network_summary(ctx, network_id):
    """Show per-status counts."""
    runtime = get_runtime(ctx)
    try:
        summary = runtime.network.network_summary(network_id)
    except KeyError as exc:
        fail(ctx, exc)
        return
    if wants_json(ctx):
        echo_json(asdict(summary))
        return
    table = Table(title=f"Summary for {network_id} ({summary.stage})")
    for column in ("Total", "Queued", "Running", "Completed", "Failed", "Paused", "Avg progress"):
        table.add_column(column, justify="right")
    table.add_row(
        str(summary.total),
        str(summary.queued),
        str(summary.running),
        str(summary.completed),
        str(summary.failed),
        str(summary.paused),
        f"{summary.average_progress:.0f}%",
    )
    console.print(table)


# =============================================================================
# Directives
# =============================================================================

@click.group()
def directive():
    """Network directive commands."""
    pass


@directive.command("add")
@click.argument("network_id")
@click.argument("content")
@click.option("--type", "directive_type", type=click.Choice(DirectiveType.ALL), default=DirectiveType.OTHER)
@click.option("--source", default=None, help="Who raised the directive")
@click.pass_context
def add_directive(ctx, network_id, content, directive_type, source):
    """Raise a directive against a network."""
    try:
        runtime = get_runtime(ctx)
        created = runtime.directives.create(network_id, content, directive_type, source=source)
    except Exception as exc:
        fail(ctx, exc)
        return
    if wants_json(ctx):
        echo_json(asdict(created))
    else:
        console.print(f"[green]✓[/green] Directive {created.directive_id} ({created.directive_type}) added")


@directive.command("list")
@click.argument("network_id")
@click.option("--pending", is_flag=True, help="Only pending and acknowledged directives")
@click.pass_context
def list_directives(ctx, network_id, pending):
    """List directives of a network."""
    runtime = get_runtime(ctx)
    items = runtime.directives.list_pending(network_id) if pending else runtime.directives.list_for_network(network_id)
    if wants_json(ctx):
        echo_json([asdict(d) for d in items])
        return
    table = Table(title=f"Directives for {network_id}")
    table.add_column("ID", style="dim")
    table.add_column("Type", style="magenta")
    table.add_column("Status", style="green")
    table.add_column("Content")
    for d in items:
        table.add_row(d.directive_id, d.directive_type, d.status, d.content)
    console.print(table)


@directive.command("set-status")
@click.argument("directive_id")
@click.argument("status", type=click.Choice(["acknowledged", "applied", "rejected"]))
@click.pass_context
def set_directive_status(ctx, directive_id, status):
    """Acknowledge, apply or reject a directive."""
    try:
        runtime = get_runtime(ctx)
        action = {
            "acknowledged": runtime.directives.acknowledge,
            "applied": runtime.directives.apply,
            "rejected": runtime.directives.reject,
        }[status]
        updated = action(directive_id)
    except Exception as exc:
        fail(ctx, exc)
        return
    if wants_json(ctx):
        echo_json(asdict(updated))
    else:
        console.print(f"[green]✓[/green] Directive {directive_id} is now {updated.status}")
