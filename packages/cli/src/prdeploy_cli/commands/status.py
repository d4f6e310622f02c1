"""status command: show who occupies each environment."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console
from rich.table import Table

console = Console()

_STATE_STYLE = {
    "success": "green",
    "pending": "yellow",
    "in_progress": "yellow",
    "error": "red",
    "failure": "red",
}


async def _environment_rows(repo, environments: list[str]) -> list[tuple]:
    from prdeploy_core.gh.deployments import (
        deployment_pull_request_number,
        find_current_deployment,
        find_deployment_status,
    )
    from prdeploy_core.gh.pull_request import get_pull

    rows = []
    for environment in environments:
        deployment = await find_current_deployment(repo, environment)
        if deployment is None:
            rows.append((environment, None, None, None, None))
            continue
        status = await find_deployment_status(deployment)
        pr_number = deployment_pull_request_number(deployment)
        pr = await get_pull(repo, pr_number) if pr_number is not None else None
        rows.append(
            (
                environment,
                deployment.sha[:7],
                pr_number,
                pr.state if pr is not None else None,
                status.state if status is not None else "pending",
            )
        )
    return rows


@click.command("status")
@click.pass_context
def status_cmd(ctx):
    """Show the current deployment and occupying pull request of each environment."""
    config, repo = ctx.obj["load_context"](ctx)
    environments = [config.pre_production_environment, config.production_environment]
    rows = asyncio.run(_environment_rows(repo, environments))

    table = Table(title=f"Environments ({config.repository})", show_header=True, header_style="bold cyan")
    table.add_column("Environment", style="bold")
    table.add_column("SHA", width=8)
    table.add_column("PR", width=8)
    table.add_column("PR state", width=8)
    table.add_column("Status", width=12)

    for environment, sha, pr_number, pr_state, state in rows:
        if sha is None:
            table.add_row(environment, "—", "—", "—", "[dim]never deployed[/dim]")
            continue
        style = _STATE_STYLE.get(state, "white")
        table.add_row(
            environment,
            sha,
            f"#{pr_number}" if pr_number is not None else "—",
            pr_state or "—",
            f"[{style}]{state}[/{style}]",
        )

    console.print(table)
