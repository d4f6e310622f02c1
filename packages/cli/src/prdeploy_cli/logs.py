"""Logging setup for the CLI.

Inside GitHub Actions, warnings and errors are written as workflow commands
(``::error::message``) so they show up as annotations on the run summary.
"""

from __future__ import annotations

import logging
import os
import sys

_ANNOTATIONS = {
    logging.DEBUG: "debug",
    logging.WARNING: "warning",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


def running_in_actions() -> bool:
    return os.environ.get("GITHUB_ACTIONS") == "true"


class ActionsFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        command = _ANNOTATIONS.get(record.levelno)
        if command is None:
            return message
        # Workflow commands are one line; the runner decodes these escapes.
        message = message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")
        return f"::{command}::{message}"


def configure_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    if running_in_actions():
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(ActionsFormatter("%(name)s: %(message)s"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    root = logging.getLogger("prdeploy_core")
    root.handlers[:] = [handler]
    root.setLevel(level)
    cli = logging.getLogger("prdeploy_cli")
    cli.handlers[:] = [handler]
    cli.setLevel(level)
