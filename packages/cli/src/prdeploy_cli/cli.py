"""CLI entry point for prdeploy.

Commands:
  handle      handle one GitHub Actions event (the workflow entry point)
  status      show which pull request occupies each environment
  render-log  render a group-annotated log as collapsible Markdown
"""

from __future__ import annotations

import importlib.metadata

import click

from prdeploy_cli.commands.handle import handle_cmd
from prdeploy_cli.commands.render import render_log_cmd
from prdeploy_cli.commands.status import status_cmd
from prdeploy_cli.logs import configure_logging


def load_context(ctx: click.Context):
    """Load the deploy config and the GitHub repository for commands that need them.

    Kept out of ``main`` so that commands working offline (render-log) run
    without a token or a configured pipeline.
    """
    from prdeploy_core.config import load_config
    from prdeploy_core.errors import ConfigError
    from prdeploy_core.gh.pull_request import get_repo
    from prdeploy_cli.auth import resolve_github_token

    try:
        config = load_config(ctx.obj["config_path"], cli_overrides={"repository": ctx.obj.get("repo")})
    except ConfigError as e:
        raise click.UsageError(str(e))

    token = resolve_github_token()
    if not token:
        raise click.UsageError("No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.")
    if not config.repository:
        raise click.UsageError("No repository given. Pass --repo owner/name or set GITHUB_REPOSITORY.")

    return config, get_repo(config.repository, token=token)


@click.group()
@click.version_option(
    version=importlib.metadata.version("prdeploy"),
    prog_name="prdeploy",
)
@click.option(
    "--config",
    "config_path",
    default=".prdeploy.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRDEPLOY_CONFIG",
)
@click.option("--repo", default=None, help="GitHub repository in owner/name format.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, repo: str | None, verbose: bool):
    """ChatOps deployments driven by pull-request comments."""
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["repo"] = repo
    ctx.obj["load_context"] = load_context


main.add_command(handle_cmd)
main.add_command(status_cmd)
main.add_command(render_log_cmd)
