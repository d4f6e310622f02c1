"""Git operations run inside the checked-out repository."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from prdeploy_core import shell
from prdeploy_core.errors import ShellCommandError, SyncConflictError

logger = logging.getLogger(__name__)

Runner = Callable[[list[str]], Awaitable[str]]
Output = Callable[[str], Awaitable[str]]


async def checkout_pull_request(pr, run: Runner = shell.run) -> str:
    sha, ref = pr.head.sha, pr.head.ref
    return await run(
        [
            f"git fetch origin {sha}:refs/remotes/origin/{ref}",
            f"git checkout -B {ref} {sha}",
        ]
    )


async def checkout_ref(ref: str, run: Runner = shell.run) -> str:
    return await run([f"git fetch origin {ref}", f"git checkout --detach {ref}"])


async def update_pull_request(pr, run: Runner = shell.run) -> str:
    """Bring the PR branch up to date with its base and push the result.

    Rebases first and force-pushes with a lease, so the push is rejected if
    the remote branch moved underneath us. If that fails the rebase is
    abandoned and the base is merged in instead. If the merge fails too, the
    conflicts need a human and SyncConflictError is raised.
    """
    current_commit = pr.head.sha
    current_branch = pr.head.ref
    base_branch = pr.base.ref

    try:
        return await run(
            [
                f"git fetch origin {base_branch}",
                f"git fetch origin {current_branch}",
                f"git checkout -B {current_branch} origin/{current_branch}",
                f"git rebase origin/{base_branch}",
                f"git push --force-with-lease={current_branch}:{current_commit} origin {current_branch}",
            ]
        )
    except ShellCommandError as e:
        logger.info("Rebase of %s onto %s failed, trying merge instead", current_branch, base_branch)
        rebase_output = e.output

    try:
        return await run(
            [
                "git rebase --abort || true",
                f"git reset --hard {current_commit}",
                f"git pull --no-rebase --no-edit origin {base_branch}",
                f"git push origin {current_branch}",
            ]
        )
    except ShellCommandError as e:
        logger.warning("Merge of %s into %s failed", base_branch, current_branch)
        raise SyncConflictError(current_branch, base_branch, "\n".join([rebase_output, e.output])) from e


async def get_short_sha(revision: str, output: Output = shell.output) -> str:
    return (await output(f"git rev-parse --short {revision}")).strip()


async def get_head_sha(output: Output = shell.output) -> str:
    return (await output("git rev-parse HEAD")).strip()
