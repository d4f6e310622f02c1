"""Exception types raised by the deployment engine."""

from __future__ import annotations


class PrdeployError(Exception):
    """Base class for every error raised by prdeploy_core."""


class ConfigError(PrdeployError):
    """Raised when a required configuration value is missing."""


class ShellExecutionError(PrdeployError):
    """The shell could not be started at all (missing executable, bad cwd)."""


class ShellCommandError(PrdeployError):
    """A script exited with a non-zero status.

    Carries everything the script printed so the failure can be rendered into
    the tracking comment.
    """

    def __init__(self, exit_code: int, output: str):
        self.exit_code = exit_code
        self.output = output
        super().__init__(f"exited with status code {exit_code}")


class SyncConflictError(PrdeployError):
    """Both rebase and merge failed; conflicts must be resolved by hand."""

    def __init__(self, branch: str, base: str, output: str = ""):
        self.branch = branch
        self.base = base
        self.output = output
        super().__init__(f"Could not update {branch} with {base}: rebase and merge both failed")


class OrderingInvariantViolation(PrdeployError):
    """GitHub returned records in an order other than newest-first."""


class EnvironmentOccupied(PrdeployError):
    def __init__(self, environment: str, pr_number: int):
        self.environment = environment
        self.pr_number = pr_number
        super().__init__(f"{environment} is occupied by #{pr_number}")


class InvalidStatusTransition(PrdeployError):
    """Attempt to record a status on a deployment that already finished."""

    def __init__(self, deployment_id: int, current: str, requested: str):
        self.deployment_id = deployment_id
        self.current = current
        self.requested = requested
        super().__init__(f"Deployment {deployment_id} is already {current}; refusing to set {requested}")
