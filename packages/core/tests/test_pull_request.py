"""Tests for GitHub pull request helper functions."""

import asyncio
from unittest.mock import MagicMock

from prdeploy_core.gh.pull_request import (
    add_reaction,
    create_comment,
    get_pull_commits,
    is_open,
    set_commit_status,
)

SHA = "a" * 40


class TestSetCommitStatus:
    def test_sets_status_on_commit(self):
        repo = MagicMock()
        asyncio.run(set_commit_status(repo, SHA, "pending", "QA", "Waiting for QA"))

        repo.get_commit.assert_called_once_with(SHA)
        repo.get_commit.return_value.create_status.assert_called_once_with(
            state="pending", context="QA", description="Waiting for QA"
        )

    def test_omits_empty_description(self):
        repo = MagicMock()
        asyncio.run(set_commit_status(repo, SHA, "success", "QA"))

        repo.get_commit.return_value.create_status.assert_called_once_with(state="success", context="QA")


class TestComments:
    def test_joins_lines(self):
        pr = MagicMock()
        asyncio.run(create_comment(pr, ["first", "second"]))
        pr.create_issue_comment.assert_called_once_with("first\nsecond")

    def test_plain_string(self):
        pr = MagicMock()
        asyncio.run(create_comment(pr, "hello"))
        pr.create_issue_comment.assert_called_once_with("hello")

    def test_reaction_on_triggering_comment(self):
        pr = MagicMock()
        asyncio.run(add_reaction(pr, 55, "eyes"))
        pr.get_issue_comment.assert_called_once_with(55)
        pr.get_issue_comment.return_value.create_reaction.assert_called_once_with("eyes")


def test_commits_materialized():
    pr = MagicMock()
    pr.get_commits.return_value = iter([MagicMock(sha="c1"), MagicMock(sha="c2")])
    commits = asyncio.run(get_pull_commits(pr))
    assert [c.sha for c in commits] == ["c1", "c2"]


def test_is_open():
    assert is_open(MagicMock(state="open"))
    assert not is_open(MagicMock(state="closed"))
