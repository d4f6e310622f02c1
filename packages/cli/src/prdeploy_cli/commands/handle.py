"""handle command: process one GitHub Actions event."""

from __future__ import annotations

import asyncio
import json
import logging

import click
from github import GithubException

logger = logging.getLogger(__name__)


@click.command("handle")
@click.option(
    "--event",
    "event_name",
    envvar="GITHUB_EVENT_NAME",
    required=True,
    help="Event name, e.g. issue_comment or pull_request.",
)
@click.option(
    "--payload",
    "payload_file",
    envvar="GITHUB_EVENT_PATH",
    required=True,
    type=click.File("r"),
    help="Path to the event payload JSON.",
)
@click.pass_context
def handle_cmd(ctx, event_name: str, payload_file):
    """Handle a pull-request event or slash command.

    \b
    Meant to run as a workflow step triggered by:
      issue_comment       slash commands (/qa, /deploy, /rollback, ...)
      pull_request        opened, reopened, synchronize, closed
      push                updates to the main branch
    """
    from prdeploy_core.engine import Pipeline
    from prdeploy_core.errors import PrdeployError

    try:
        payload = json.load(payload_file)
    except ValueError as e:
        raise click.BadParameter(f"Event payload is not valid JSON: {e}", param_hint="--payload")

    config, repo = ctx.obj["load_context"](ctx)
    pipeline = Pipeline(config, repo)

    try:
        asyncio.run(pipeline.handle_event(event_name, payload))
    except (PrdeployError, GithubException) as e:
        raise click.ClickException(str(e))
