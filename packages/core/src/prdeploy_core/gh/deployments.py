"""Queries over GitHub's deployment history.

GitHub has no notion of the "active" deployment of an environment, so the
current occupant is derived from the most recent deployment record. The list
endpoints return records newest-first. That ordering is not documented and
cannot be requested explicitly, so every query that compares records checks
it and raises OrderingInvariantViolation instead of trusting or re-sorting.
"""

from __future__ import annotations

import asyncio
import json
import logging
from itertools import islice

from github.GithubObject import NotSet

from prdeploy_core.errors import InvalidStatusTransition, OrderingInvariantViolation
from prdeploy_core.gh.pull_request import get_pull, get_pull_commits, is_open

logger = logging.getLogger(__name__)

TERMINAL_STATES = frozenset({"success", "error", "failure"})


def check_newest_first(records: list, kind: str = "deployments") -> list:
    """Raise unless ``records`` ids are strictly decreasing."""
    for newer, older in zip(records, records[1:]):
        if newer.id <= older.id:
            raise OrderingInvariantViolation(
                f"GitHub {kind} were not returned in reverse order ({newer.id} listed before {older.id})"
            )
    return records


def _list_deployments(repo, limit: int | None = None, **filters) -> list:
    kwargs = {key: value for key, value in filters.items() if value is not None}
    deployments = repo.get_deployments(**kwargs) if kwargs else repo.get_deployments()
    return list(islice(deployments, limit)) if limit is not None else list(deployments)


async def list_deployments(repo, limit: int | None = None, **filters) -> list:
    records = await asyncio.to_thread(_list_deployments, repo, limit, **filters)
    return check_newest_first(records)


async def find_current_deployment(repo, environment: str):
    deployments = await list_deployments(repo, limit=2, environment=environment)
    return deployments[0] if deployments else None


async def find_previous_deployment(repo, environment: str):
    deployments = await list_deployments(repo, limit=2, environment=environment)
    return deployments[1] if len(deployments) > 1 else None


async def find_deployment_status(deployment):
    statuses = await asyncio.to_thread(lambda: list(islice(deployment.get_statuses(), 2)))
    check_newest_first(statuses, kind="deployment statuses")
    return statuses[0] if statuses else None


async def find_first_deployment_for_release(repo, environment: str, ref: str):
    """Earliest deployment of ``ref`` in ``environment``.

    Used to find the pull request a release originally came from.
    """
    deployments = await list_deployments(repo, environment=environment, sha=ref)
    return deployments[-1] if deployments else None


async def find_last_deployment_for_pull_request(repo, environment: str, pr_number: int):
    """Walk the PR's commits newest to oldest and return the first one that was deployed."""
    pr = await get_pull(repo, pr_number)
    commits = await get_pull_commits(pr)
    for commit in reversed(commits):
        deployments = await list_deployments(repo, limit=2, environment=environment, sha=commit.sha)
        if deployments:
            return deployments[0]
    return None


def deployment_pull_request_number(deployment) -> int | None:
    if deployment is None:
        return None
    payload = deployment.payload or {}
    if isinstance(payload, str):
        # Older deployments stored the payload as a JSON string.
        try:
            payload = json.loads(payload)
        except ValueError:
            return None
    number = payload.get("pr") if isinstance(payload, dict) else None
    return number if isinstance(number, int) else None


async def environment_is_available(repo, deployment, pr_number: int) -> bool:
    """True unless ``deployment`` belongs to a different pull request that is still open."""
    owner = deployment_pull_request_number(deployment)
    if owner is None or owner == pr_number:
        return True
    other = await get_pull(repo, owner)
    return not is_open(other)


async def create_deployment(repo, ref: str, environment: str, pr_number: int | None):
    logger.info("Recording deployment of %s to %s", ref[:7], environment)
    return await asyncio.to_thread(
        repo.create_deployment,
        ref=ref,
        task="deploy",
        auto_merge=False,
        required_contexts=[],
        payload={"pr": pr_number},
        environment=environment,
    )


async def set_deployment_status(deployment, state: str, target_url: str | None = None, description: str | None = None):
    """Append a status to ``deployment``.

    A deployment that has reached success, error or failure is finished; a new
    attempt must create a new deployment instead.
    """
    latest = await find_deployment_status(deployment)
    if latest is not None and latest.state in TERMINAL_STATES:
        raise InvalidStatusTransition(deployment.id, latest.state, state)
    return await asyncio.to_thread(
        deployment.create_status,
        state,
        target_url=target_url if target_url is not None else NotSet,
        description=description if description is not None else NotSet,
    )
