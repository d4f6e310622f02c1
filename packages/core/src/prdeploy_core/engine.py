"""Deployment orchestration driven by pull-request events and slash commands.

Each inbound event is handled by Pipeline.handle_event, which classifies it and
runs at most one of the flows below:

    /qa          occupancy → sync branch → record → setup, release, deploy, verify
    /deploy      occupancy → checkout → record → [setup, release,] deploy, verify
    /verify      verify the environment's current deployment
    /rollback    redeploy the previous production deployment
    merge        promote the verified pre-production release, or invalidate
                 whichever other PR occupies pre-production on the same base
    close        reset pre-production to what production runs
    push         invalidate the pre-production occupant when main moves

Progress goes to a TrackingComment on the pull request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from github import GithubException

from prdeploy_core import shell
from prdeploy_core.commands import (
    QA,
    Deploy,
    FailedQA,
    PassedQA,
    Rollback,
    SkipQA,
    Unrecognized,
    Verify,
    parse_command,
)
from prdeploy_core.comment import (
    TrackingComment,
    code,
    error,
    footer,
    header,
    in_progress,
    link_to_pull,
    mention,
    success,
    warning,
)
from prdeploy_core.config import DeployConfig
from prdeploy_core.errors import (
    EnvironmentOccupied,
    InvalidStatusTransition,
    OrderingInvariantViolation,
    ShellCommandError,
    ShellExecutionError,
    SyncConflictError,
)
from prdeploy_core.gh import git
from prdeploy_core.gh.deployments import (
    create_deployment,
    deployment_pull_request_number,
    environment_is_available,
    find_current_deployment,
    find_deployment_status,
    find_first_deployment_for_release,
    find_last_deployment_for_pull_request,
    find_previous_deployment,
    set_deployment_status,
)
from prdeploy_core.gh.pull_request import add_reaction, create_comment, get_pull, is_open, set_commit_status
from prdeploy_core.render import log_to_details
from prdeploy_core.shell import OutputBuffer

logger = logging.getLogger(__name__)

Runner = Callable[..., Awaitable[str]]
Output = Callable[[str], Awaitable[str]]


@dataclass(frozen=True)
class Stage:
    name: str
    command: str


class Pipeline:
    """Runs deployment flows for one repository.

    ``run`` and ``output`` default to the real shell; tests pass fakes.
    """

    def __init__(self, config: DeployConfig, repo, run: Runner = shell.run, output: Output = shell.output):
        self.config = config
        self.repo = repo
        self._run = run
        self._output = output
        self.setup = Stage("Setup", config.setup_command)
        self.release = Stage("Release", config.release_command)
        self.deploy = Stage("Deploy", config.deploy_command)
        self.verify = Stage("Verify", config.verify_command)

    # ------------------------------------------------------------------ #
    # Event classification                                                 #
    # ------------------------------------------------------------------ #

    async def handle_event(self, event_name: str, payload: dict) -> None:
        try:
            await self._dispatch(event_name, payload)
        except (OrderingInvariantViolation, ShellExecutionError, GithubException):
            logger.exception("Failed to handle %s event", event_name)
            raise

    async def _dispatch(self, event_name: str, payload: dict) -> None:
        action = payload.get("action")

        if event_name == "issue_comment" and action == "created":
            issue = payload.get("issue") or {}
            if "pull_request" not in issue:
                logger.debug("Comment on issue #%s is not on a pull request", issue.get("number"))
                return
            pr = await get_pull(self.repo, issue["number"])
            await self.handle_comment(pr, payload["comment"])
            return

        if event_name == "pull_request":
            pr = await get_pull(self.repo, payload["pull_request"]["number"])
            if action in ("opened", "reopened", "synchronize"):
                await self._set_status(pr.head.sha, "pending", "Waiting for QA")
            elif action == "closed" and pr.merged:
                await self._with_comment(pr, self.on_merge)
            elif action == "closed":
                await self._with_comment(pr, self.on_close)
            return

        if event_name == "push":
            if payload.get("ref") == f"refs/heads/{self.config.main_branch}":
                await self.on_push()
            return

        logger.debug("Ignoring %s event (action=%s)", event_name, action)

    async def handle_comment(self, pr, comment: dict) -> None:
        command = parse_command(comment.get("body"))
        if command is None:
            return

        if isinstance(command, Unrecognized):
            logger.info("Unknown command /%s", command.name)
            await add_reaction(pr, comment["id"], "confused")
            return

        await add_reaction(pr, comment["id"], "eyes")

        match command:
            case QA():
                await self._with_comment(pr, self.qa)
            case SkipQA():
                await self.skip_qa(pr)
            case PassedQA():
                await self._with_comment(pr, self.passed_qa)
            case FailedQA():
                await self._with_comment(pr, self.failed_qa)
            case Deploy(environment=environment, version=version):
                await self._with_comment(pr, self.deploy_ad_hoc, environment, version)
            case Verify(environment=environment):
                await self._with_comment(pr, self.verify_environment, environment)
            case Rollback():
                await self._with_comment(pr, self.rollback)
            case _:
                raise TypeError(f"Unhandled command {command!r}")

    async def _with_comment(self, pr, flow, *args) -> None:
        """Run ``flow`` with a fresh tracking comment and report what escapes it."""
        comment = TrackingComment(pr, header=header(self.config.component_name), footer=footer(self.config.run_url))
        try:
            await flow(comment, pr, *args)
        except EnvironmentOccupied as e:
            await comment.append(
                warning(
                    self._mention(
                        f"{code(e.environment)} is in use by {link_to_pull(e.pr_number)}. "
                        "Try again once it has been merged or closed."
                    )
                )
            )
        except ShellCommandError as e:
            logger.error("Command failed: %s", e)
            await comment.append(error(self._mention(f"Command failed: {code(str(e))}")), log_to_details(e.output))
        except (OrderingInvariantViolation, ShellExecutionError) as e:
            await comment.append(error(self._mention(f"Internal error: {code(str(e))}")))
            raise
        finally:
            await comment.close()

    # ------------------------------------------------------------------ #
    # Commands                                                             #
    # ------------------------------------------------------------------ #

    async def qa(self, comment: TrackingComment, pr) -> None:
        environment = self.config.pre_production_environment
        await self._ensure_available(pr, environment)

        await comment.ephemeral(in_progress(f"Updating {code(pr.head.ref)} with {code(pr.base.ref)}"))
        try:
            await git.update_pull_request(pr, run=self._run)
        except SyncConflictError as e:
            await comment.append(
                error(
                    self._mention(
                        f"Could not update {code(e.branch)} with {code(e.base)}. "
                        "Please resolve the conflicts and comment `/qa` again."
                    )
                ),
                log_to_details(e.output),
            )
            await self._set_status(pr.head.sha, "failure", "Branch could not be updated")
            return

        sha = await git.get_head_sha(output=self._output)
        version = await git.get_short_sha(sha, output=self._output)
        await comment.append(f"Deploying {code(version)} to {code(environment)}")
        deployment = await create_deployment(self.repo, sha, environment, pr.number)

        env = {"VERSION": version, "ENVIRONMENT": environment, "RELEASE_BRANCH": pr.head.ref}
        stages = [self.setup, self.release, self.deploy, self.verify]
        if await self._deploy(comment, pr, deployment, stages, env):
            await comment.append(
                success(
                    self._mention(
                        f"{code(version)} is ready for QA in {code(environment)}. "
                        "Comment `/passed-qa` or `/failed-qa` when done."
                    )
                )
            )
        else:
            await self._set_status(sha, "failure", f"Deployment to {environment} failed")

    async def skip_qa(self, pr) -> None:
        await self._set_status(pr.head.sha, "success", "QA skipped")
        await create_comment(pr, "Skipping QA 🤠")

    async def passed_qa(self, comment: TrackingComment, pr) -> None:
        await self._set_status(pr.head.sha, "success", "QA passed")
        await comment.append(success("QA passed"))

    async def failed_qa(self, comment: TrackingComment, pr) -> None:
        await self._set_status(pr.head.sha, "failure", "QA failed")
        await comment.append(error("QA failed"))

    async def deploy_ad_hoc(self, comment: TrackingComment, pr, environment: str | None, version: str | None) -> None:
        environment = environment or self.config.pre_production_environment
        await self._ensure_available(pr, environment)

        if version:
            await comment.ephemeral(in_progress(f"Checking out {code(version)}"))
            await git.checkout_ref(version, run=self._run)
            stages = [self.setup, self.deploy, self.verify]
        else:
            await comment.ephemeral(in_progress(f"Checking out {code(pr.head.ref)}"))
            await git.checkout_pull_request(pr, run=self._run)
            stages = [self.setup, self.release, self.deploy, self.verify]

        sha = await git.get_head_sha(output=self._output)
        short_sha = await git.get_short_sha(sha, output=self._output)
        await comment.append(f"Deploying {code(short_sha)} to {code(environment)}")
        deployment = await create_deployment(self.repo, sha, environment, pr.number)

        env = {"VERSION": short_sha, "ENVIRONMENT": environment}
        if await self._deploy(comment, pr, deployment, stages, env):
            await comment.append(success(self._mention(f"Deployed {code(short_sha)} to {code(environment)}")))
            if version:
                await self._notify_release_origin(pr, environment, sha, short_sha)
        else:
            await self._set_status(pr.head.sha, "failure", f"Deployment to {environment} failed")

    async def verify_environment(self, comment: TrackingComment, pr, environment: str | None) -> None:
        environment = environment or self.config.pre_production_environment
        current = await find_current_deployment(self.repo, environment)
        if current is None:
            await comment.append(warning(f"Nothing has been deployed to {code(environment)} yet"))
            return

        await git.checkout_ref(current.sha, run=self._run)
        version = await git.get_short_sha(current.sha, output=self._output)
        env = {"VERSION": version, "ENVIRONMENT": environment}
        await comment.append(f"Verifying {code(version)} in {code(environment)}")
        if await self._run_stages(comment, [self.verify], env) is None:
            await comment.append(success(self._mention(f"{code(version)} verified in {code(environment)}")))
        else:
            await comment.append(error(self._mention(f"{code(version)} failed verification in {code(environment)}")))

    async def rollback(self, comment: TrackingComment, pr) -> None:
        environment = self.config.production_environment
        if not await self._rollback(comment, pr, environment):
            await self._set_status(pr.head.sha, "failure", f"Rollback of {environment} failed")

    # ------------------------------------------------------------------ #
    # Pull-request lifecycle                                               #
    # ------------------------------------------------------------------ #

    async def on_merge(self, comment: TrackingComment, pr) -> None:
        environment = self.config.pre_production_environment
        current = await find_current_deployment(self.repo, environment)
        occupant = deployment_pull_request_number(current)
        if occupant is None:
            return

        if occupant == pr.number:
            last = await find_last_deployment_for_pull_request(self.repo, environment, pr.number)
            if last is not None and last.sha == pr.head.sha:
                await self.promote(comment, pr, last)
            else:
                await comment.append(
                    warning(f"The latest commit was not deployed to {code(environment)}, so it was not promoted")
                )
            return

        other = await get_pull(self.repo, occupant)
        if is_open(other) and other.base.ref == pr.base.ref:
            await self._invalidate(other, f"{link_to_pull(pr.number)} was merged into {code(pr.base.ref)}")

    async def promote(self, comment: TrackingComment, pr, deployment) -> None:
        """Deploy an already released and verified pre-production build to production."""
        environment = self.config.production_environment
        status = await find_deployment_status(deployment)
        if status is None or status.state != "success":
            state = status.state if status is not None else "pending"
            await comment.append(
                error(
                    self._mention(
                        f"The {code(self.config.pre_production_environment)} deployment of "
                        f"{code(deployment.sha[:7])} is {state}; not promoting to {code(environment)}"
                    )
                )
            )
            return

        await self._ensure_available(pr, environment)
        await git.checkout_ref(deployment.sha, run=self._run)
        version = await git.get_short_sha(deployment.sha, output=self._output)
        await comment.append(f"Promoting {code(version)} to {code(environment)}")
        production = await create_deployment(self.repo, deployment.sha, environment, pr.number)

        env = {"VERSION": version, "ENVIRONMENT": environment}
        if await self._deploy(comment, pr, production, [self.setup, self.deploy, self.verify], env):
            await comment.append(success(self._mention(f"Deployed {code(version)} to {code(environment)}")))
            await self._notify_release_origin(pr, self.config.pre_production_environment, deployment.sha, version)
        else:
            await self._set_status(pr.head.sha, "failure", f"Deployment to {environment} failed")

    async def on_close(self, comment: TrackingComment, pr) -> None:
        """Reset pre-production to production when its occupant is closed without merging."""
        environment = self.config.pre_production_environment
        current = await find_current_deployment(self.repo, environment)
        if deployment_pull_request_number(current) != pr.number:
            return

        production = await find_current_deployment(self.repo, self.config.production_environment)
        if production is None:
            await comment.append(
                warning(f"Nothing is deployed to {code(self.config.production_environment)}; leaving {code(environment)} as is")
            )
            return

        await git.checkout_ref(production.sha, run=self._run)
        version = await git.get_short_sha(production.sha, output=self._output)
        await comment.append(f"Resetting {code(environment)} to {code(version)}")
        reset = await create_deployment(
            self.repo, production.sha, environment, deployment_pull_request_number(production)
        )

        env = {"VERSION": version, "ENVIRONMENT": environment}
        if await self._deploy(comment, pr, reset, [self.setup, self.deploy, self.verify], env):
            await comment.append(success(f"{code(environment)} reset to {code(version)}"))

    async def on_push(self) -> None:
        """The main branch moved, so a pre-production build based on it is stale."""
        current = await find_current_deployment(self.repo, self.config.pre_production_environment)
        occupant = deployment_pull_request_number(current)
        if occupant is None:
            return
        pr = await get_pull(self.repo, occupant)
        if is_open(pr) and not pr.merged and pr.base.ref == self.config.main_branch:
            await self._invalidate(pr, f"{code(self.config.main_branch)} was updated")

    # ------------------------------------------------------------------ #
    # Helpers                                                              #
    # ------------------------------------------------------------------ #

    def _mention(self, text: str) -> str:
        return mention(self.config.actor, text)

    async def _set_status(self, sha: str, state: str, description: str | None = None):
        return await set_commit_status(self.repo, sha, state, self.config.status_context, description)

    async def _ensure_available(self, pr, environment: str) -> None:
        """Raise EnvironmentOccupied if another open pull request holds ``environment``.

        Not atomic with the deployment recorded afterwards: two commands for the
        same environment arriving together can both pass this check.
        """
        current = await find_current_deployment(self.repo, environment)
        if current is None or await environment_is_available(self.repo, current, pr.number):
            return
        raise EnvironmentOccupied(environment, deployment_pull_request_number(current))

    async def _run_stage(self, comment: TrackingComment, stage: Stage, env: dict[str, str]) -> bool:
        buffer = OutputBuffer()
        await comment.ephemeral(in_progress(f"{stage.name}…"))
        comment.subscribe_to(buffer, self.config.poll_interval, title=stage.name)
        try:
            output = await self._run(
                [f"echo ::group::{stage.name}", stage.command, "echo ::endgroup::"],
                env,
                buffer,
            )
        except ShellCommandError as e:
            logger.warning("%s failed with exit code %d", stage.name, e.exit_code)
            await comment.append(error(f"{stage.name} failed"), log_to_details(e.output))
            return False
        await comment.append(success(f"{stage.name} succeeded"), log_to_details(output))
        return True

    async def _run_stages(self, comment: TrackingComment, stages: list[Stage], env: dict[str, str]) -> Stage | None:
        """Run ``stages`` in order and return the first that failed, or None."""
        for stage in stages:
            if not await self._run_stage(comment, stage, env):
                return stage
        return None

    async def _run_recorded(
        self, comment: TrackingComment, deployment, stages: list[Stage], env: dict[str, str]
    ) -> Stage | None:
        """Run ``stages`` for a recorded deployment and give it a final status.

        Whatever interrupts the run, the deployment ends with an error status.
        """
        try:
            failed = await self._run_stages(comment, stages, env)
            if failed is None:
                await set_deployment_status(deployment, "success", target_url=comment.url)
            else:
                await set_deployment_status(
                    deployment, "error", target_url=comment.url, description=f"{failed.name} failed"
                )
        except BaseException:
            await self._abandon(deployment, comment)
            raise
        return failed

    async def _abandon(self, deployment, comment: TrackingComment) -> None:
        try:
            await set_deployment_status(deployment, "error", target_url=comment.url, description="Interrupted")
        except (GithubException, InvalidStatusTransition) as e:
            logger.warning("Could not mark deployment %s as failed: %s", deployment.id, e)

    async def _deploy(self, comment: TrackingComment, pr, deployment, stages: list[Stage], env: dict[str, str]) -> bool:
        environment = env["ENVIRONMENT"]
        failed = await self._run_recorded(comment, deployment, stages, env)
        if failed is None:
            return True

        await comment.append(error(self._mention(f"Deployment to {code(environment)} failed during {failed.name}")))
        if failed is self.verify and environment == self.config.production_environment:
            await comment.separator()
            await self._rollback(comment, pr, environment)
        return False

    async def _rollback(self, comment: TrackingComment, pr, environment: str) -> bool:
        """Redeploy the deployment before the current one in ``environment``."""
        previous = await find_previous_deployment(self.repo, environment)
        if previous is None:
            await comment.append(warning(f"There is no previous deployment of {code(environment)}; rollback not possible"))
            return False

        owner = deployment_pull_request_number(previous)
        await git.checkout_ref(previous.sha, run=self._run)
        version = await git.get_short_sha(previous.sha, output=self._output)
        await comment.append(f"Rolling back {code(environment)} to {code(version)}")
        deployment = await create_deployment(self.repo, previous.sha, environment, owner)

        env = {"VERSION": version, "ENVIRONMENT": environment}
        if await self._run_recorded(comment, deployment, [self.deploy, self.verify], env) is not None:
            await comment.append(error(self._mention(f"Rollback of {code(environment)} to {code(version)} failed")))
            return False

        await comment.append(success(self._mention(f"Rolled back {code(environment)} to {code(version)}")))
        if owner is not None and owner != pr.number:
            owner_pr = await get_pull(self.repo, owner)
            await create_comment(
                owner_pr,
                f"{code(environment)} was rolled back to {code(version)} from this pull request "
                f"after a failed deployment in {link_to_pull(pr.number)}.",
            )
        return True

    async def _notify_release_origin(self, pr, environment: str, sha: str, version: str) -> None:
        """Tell the pull request that first deployed ``sha`` that it went out from elsewhere."""
        first = await find_first_deployment_for_release(self.repo, environment, sha)
        origin = deployment_pull_request_number(first)
        if origin is None or origin == pr.number:
            return
        origin_pr = await get_pull(self.repo, origin)
        await create_comment(origin_pr, f"{code(version)} from this pull request was deployed by {link_to_pull(pr.number)}.")

    async def _invalidate(self, pr, reason: str) -> None:
        logger.info("Invalidating QA of #%d: %s", pr.number, reason)
        await self._set_status(pr.head.sha, "pending", "Base branch changed; QA is out of date")
        await create_comment(
            pr,
            [
                warning(f"{reason}, so the QA deployment of this pull request is out of date."),
                "",
                "Comment `/qa` to redeploy it, or `/skip-qa` to continue without redeploying.",
            ],
        )
