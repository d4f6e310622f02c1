"""Tests for configuration loading."""

import pytest

from prdeploy_core.config import DeployConfig, load_config
from prdeploy_core.errors import ConfigError

COMMANDS = "setup: make setup\nrelease: make release\ndeploy: make deploy\nverify: make verify\n"
COMMANDS_YAML = COMMANDS.replace("setup:", "setup_command:").replace("release:", "release_command:")
COMMANDS_YAML = COMMANDS_YAML.replace("deploy:", "deploy_command:").replace("verify:", "verify_command:")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "INPUT_SETUP",
        "INPUT_RELEASE",
        "INPUT_DEPLOY",
        "INPUT_VERIFY",
        "INPUT_PRODUCTION-ENVIRONMENT",
        "INPUT_PRODUCTION_ENVIRONMENT",
        "INPUT_PRE-PRODUCTION-ENVIRONMENT",
        "INPUT_PRE_PRODUCTION_ENVIRONMENT",
        "INPUT_MAIN-BRANCH",
        "INPUT_MAIN_BRANCH",
        "ACTIONS_DEPLOY_NAME",
        "GITHUB_REPOSITORY",
        "GITHUB_RUN_ID",
        "GITHUB_SERVER_URL",
        "GITHUB_ACTOR",
        "GITHUB_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)


def write_config(tmp_path, text):
    cfg = tmp_path / ".prdeploy.yml"
    cfg.write_text(text)
    return str(cfg)


def test_defaults_applied(tmp_path):
    config = load_config(config_path=write_config(tmp_path, COMMANDS_YAML))
    assert isinstance(config, DeployConfig)
    assert config.production_environment == "production"
    assert config.pre_production_environment == "integration"
    assert config.main_branch == "main"
    assert config.status_context == "QA"
    assert config.poll_interval == 5.0
    assert config.component_name is None


def test_file_values_loaded(tmp_path):
    path = write_config(tmp_path, COMMANDS_YAML + "production_environment: live\npoll-interval: 2\n")
    config = load_config(config_path=path)
    assert config.production_environment == "live"
    assert config.deploy_command == "make deploy"
    assert config.poll_interval == 2.0


def test_missing_commands_raise(tmp_path):
    with pytest.raises(ConfigError) as excinfo:
        load_config(config_path=str(tmp_path / "nonexistent.yml"))
    assert "setup_command" in str(excinfo.value)


def test_action_inputs_override_file(tmp_path, monkeypatch):
    monkeypatch.setenv("INPUT_DEPLOY", "./deploy.sh")
    monkeypatch.setenv("INPUT_PRE-PRODUCTION-ENVIRONMENT", "staging")
    config = load_config(config_path=write_config(tmp_path, COMMANDS_YAML))
    assert config.deploy_command == "./deploy.sh"
    assert config.pre_production_environment == "staging"


def test_action_inputs_alone_are_enough(tmp_path, monkeypatch):
    for name, value in (("SETUP", "a"), ("RELEASE", "b"), ("DEPLOY", "c"), ("VERIFY", "d")):
        monkeypatch.setenv(f"INPUT_{name}", value)
    monkeypatch.setenv("INPUT_PRODUCTION_ENVIRONMENT", "prod")
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    assert (config.setup_command, config.verify_command) == ("a", "d")
    assert config.production_environment == "prod"


def test_cli_overrides_win(tmp_path, monkeypatch):
    monkeypatch.setenv("INPUT_DEPLOY", "./deploy.sh")
    config = load_config(
        config_path=write_config(tmp_path, COMMANDS_YAML),
        cli_overrides={"deploy_command": "make ship", "verify_command": None},
    )
    assert config.deploy_command == "make ship"
    assert config.verify_command == "make verify"


def test_run_context_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("ACTIONS_DEPLOY_NAME", "api")
    monkeypatch.setenv("GITHUB_REPOSITORY", "owner/repo")
    monkeypatch.setenv("GITHUB_RUN_ID", "42")
    monkeypatch.setenv("GITHUB_ACTOR", "octocat")
    monkeypatch.setenv("GITHUB_TOKEN", "tok")
    config = load_config(config_path=write_config(tmp_path, COMMANDS_YAML))
    assert config.component_name == "api"
    assert config.repository == "owner/repo"
    assert config.run_url == "https://github.com/owner/repo/actions/runs/42"
    assert config.actor == "octocat"
    assert config.github_token == "tok"


def test_config_is_immutable(tmp_path):
    config = load_config(config_path=write_config(tmp_path, COMMANDS_YAML))
    with pytest.raises(AttributeError):
        config.deploy_command = "rm -rf /"
