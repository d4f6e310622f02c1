"""Tests for deployment registry queries."""

import asyncio
import types
from unittest.mock import MagicMock

import pytest

from prdeploy_core.errors import InvalidStatusTransition, OrderingInvariantViolation
from prdeploy_core.gh.deployments import (
    check_newest_first,
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


def make_deployment(id, pr=None, sha="a" * 40, statuses=()):
    d = MagicMock()
    d.id = id
    d.sha = sha
    d.payload = {"pr": pr} if pr is not None else {}
    d.get_statuses.return_value = list(statuses)
    return d


def make_status(id, state):
    return types.SimpleNamespace(id=id, state=state)


def make_repo(deployments=()):
    repo = MagicMock()
    repo.get_deployments.return_value = list(deployments)
    return repo


class TestOrdering:
    def test_oldest_first_raises(self):
        repo = make_repo([make_deployment(5), make_deployment(9)])
        with pytest.raises(OrderingInvariantViolation):
            asyncio.run(find_previous_deployment(repo, "production"))

    def test_newest_first_returns_previous(self):
        repo = make_repo([make_deployment(9), make_deployment(5)])
        assert asyncio.run(find_previous_deployment(repo, "production")).id == 5

    def test_current_deployment_also_checks_order(self):
        repo = make_repo([make_deployment(5), make_deployment(9)])
        with pytest.raises(OrderingInvariantViolation):
            asyncio.run(find_current_deployment(repo, "production"))

    def test_single_record_needs_no_check(self):
        records = [make_deployment(1)]
        assert check_newest_first(records) is records

    def test_statuses_checked(self):
        deployment = make_deployment(1, statuses=[make_status(2, "success"), make_status(7, "pending")])
        with pytest.raises(OrderingInvariantViolation):
            asyncio.run(find_deployment_status(deployment))


class TestQueries:
    def test_current_deployment(self):
        repo = make_repo([make_deployment(9), make_deployment(5)])
        assert asyncio.run(find_current_deployment(repo, "integration")).id == 9
        repo.get_deployments.assert_called_once_with(environment="integration")

    def test_current_deployment_none(self):
        assert asyncio.run(find_current_deployment(make_repo(), "integration")) is None

    def test_previous_deployment_none_with_single_record(self):
        repo = make_repo([make_deployment(9)])
        assert asyncio.run(find_previous_deployment(repo, "production")) is None

    def test_latest_status(self):
        deployment = make_deployment(1, statuses=[make_status(7, "success"), make_status(2, "pending")])
        assert asyncio.run(find_deployment_status(deployment)).state == "success"

    def test_no_status(self):
        assert asyncio.run(find_deployment_status(make_deployment(1))) is None

    def test_first_deployment_for_release_is_oldest(self):
        repo = make_repo([make_deployment(12, pr=3), make_deployment(8, pr=2), make_deployment(4, pr=1)])
        first = asyncio.run(find_first_deployment_for_release(repo, "integration", "b" * 40))
        assert first.id == 4
        repo.get_deployments.assert_called_once_with(environment="integration", sha="b" * 40)

    def test_first_deployment_for_release_checks_whole_list(self):
        repo = make_repo([make_deployment(12), make_deployment(4), make_deployment(8)])
        with pytest.raises(OrderingInvariantViolation):
            asyncio.run(find_first_deployment_for_release(repo, "integration", "b" * 40))

    def test_last_deployment_for_pull_request_walks_newest_first(self):
        commits = [types.SimpleNamespace(sha=s) for s in ("c1", "c2", "c3")]
        pr = MagicMock()
        pr.get_commits.return_value = commits
        repo = MagicMock()
        repo.get_pull.return_value = pr
        deployed = make_deployment(20, pr=7, sha="c2")
        repo.get_deployments.side_effect = lambda **kw: [deployed] if kw.get("sha") == "c2" else []

        result = asyncio.run(find_last_deployment_for_pull_request(repo, "integration", 7))

        assert result is deployed
        shas = [c.kwargs["sha"] for c in repo.get_deployments.call_args_list]
        assert shas == ["c3", "c2"]

    def test_last_deployment_for_pull_request_none(self):
        pr = MagicMock()
        pr.get_commits.return_value = [types.SimpleNamespace(sha="c1")]
        repo = make_repo()
        repo.get_pull.return_value = pr
        assert asyncio.run(find_last_deployment_for_pull_request(repo, "integration", 7)) is None


class TestPayload:
    def test_dict_payload(self):
        assert deployment_pull_request_number(make_deployment(1, pr=42)) == 42

    def test_json_string_payload(self):
        d = make_deployment(1)
        d.payload = '{"pr": 17}'
        assert deployment_pull_request_number(d) == 17

    def test_missing_or_invalid_payload(self):
        d = make_deployment(1)
        d.payload = "not json"
        assert deployment_pull_request_number(d) is None
        assert deployment_pull_request_number(make_deployment(1)) is None
        assert deployment_pull_request_number(None) is None


class TestAvailability:
    def _repo_with_pull(self, state):
        repo = MagicMock()
        repo.get_pull.return_value = types.SimpleNamespace(state=state)
        return repo

    def test_other_open_pr_occupies(self):
        repo = self._repo_with_pull("open")
        assert asyncio.run(environment_is_available(repo, make_deployment(1, pr=1), 2)) is False
        repo.get_pull.assert_called_once_with(1)

    def test_same_pr_may_redeploy(self):
        repo = self._repo_with_pull("open")
        assert asyncio.run(environment_is_available(repo, make_deployment(1, pr=1), 1)) is True
        repo.get_pull.assert_not_called()

    def test_closed_occupant_frees_environment(self):
        repo = self._repo_with_pull("closed")
        assert asyncio.run(environment_is_available(repo, make_deployment(1, pr=1), 2)) is True

    def test_deployment_without_pr_is_available(self):
        repo = self._repo_with_pull("open")
        assert asyncio.run(environment_is_available(repo, make_deployment(1), 2)) is True


def test_create_deployment_arguments():
    repo = MagicMock()
    asyncio.run(create_deployment(repo, "a" * 40, "integration", 5))
    repo.create_deployment.assert_called_once_with(
        ref="a" * 40,
        task="deploy",
        auto_merge=False,
        required_contexts=[],
        payload={"pr": 5},
        environment="integration",
    )


class TestSetDeploymentStatus:
    def test_appends_status(self):
        deployment = make_deployment(1, statuses=[make_status(1, "pending")])
        asyncio.run(set_deployment_status(deployment, "success", target_url="https://x"))
        args, kwargs = deployment.create_status.call_args
        assert args == ("success",)
        assert kwargs["target_url"] == "https://x"

    @pytest.mark.parametrize("terminal", ["success", "error", "failure"])
    def test_terminal_status_cannot_go_back_to_pending(self, terminal):
        deployment = make_deployment(1, statuses=[make_status(3, terminal), make_status(1, "pending")])
        with pytest.raises(InvalidStatusTransition):
            asyncio.run(set_deployment_status(deployment, "pending"))
        deployment.create_status.assert_not_called()
