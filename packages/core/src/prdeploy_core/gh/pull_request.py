from __future__ import annotations

import asyncio
import logging

from github import Github

logger = logging.getLogger(__name__)


def get_repo(repo_name: str, token: str):
    return Github(token).get_repo(repo_name)


async def get_pull(repo, pr_number: int):
    return await asyncio.to_thread(repo.get_pull, pr_number)


async def get_pull_commits(pr) -> list:
    """Commits of a pull request, oldest first (GitHub's order)."""
    return await asyncio.to_thread(lambda: list(pr.get_commits()))


def is_open(pr) -> bool:
    return pr.state == "open"


async def set_commit_status(repo, sha: str, state: str, context: str, description: str | None = None):
    """Set the QA status on a commit, normally the pull request's head."""
    logger.debug("Setting %s status on %s to %s", context, sha[:7], state)
    kwargs = {"state": state, "context": context}
    if description:
        kwargs["description"] = description
    commit = await asyncio.to_thread(repo.get_commit, sha)
    return await asyncio.to_thread(commit.create_status, **kwargs)


async def create_comment(pr, body: str | list[str]):
    text = body if isinstance(body, str) else "\n".join(body)
    return await asyncio.to_thread(pr.create_issue_comment, text)


async def add_reaction(pr, comment_id: int, content: str) -> None:
    comment = await asyncio.to_thread(pr.get_issue_comment, comment_id)
    await asyncio.to_thread(comment.create_reaction, content)
