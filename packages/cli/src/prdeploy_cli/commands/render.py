"""render-log command: preview how a script log will look in a comment."""

from __future__ import annotations

import click


@click.command("render-log")
@click.argument("log_file", type=click.File("r"), default="-")
def render_log_cmd(log_file):
    """Render LOG_FILE (or stdin) the way the tracking comment shows it.

    Output between ``::group::NAME`` and ``::endgroup::`` lines becomes one
    collapsible section per group; any other log is shown as one code block.
    """
    from prdeploy_core.render import log_to_details

    click.echo(log_to_details(log_file.read().rstrip("\n")))
