import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

from prdeploy_core.errors import ConfigError

DEFAULT_CONFIG: dict = {
    "production_environment": "production",
    "pre_production_environment": "integration",
    "setup_command": None,
    "release_command": None,
    "deploy_command": None,
    "verify_command": None,
    "main_branch": "main",
    "status_context": "QA",
    "poll_interval": 5.0,
}

# Keys that may also be supplied as GitHub Actions inputs (INPUT_<NAME>).
_ACTION_INPUTS = {
    "production_environment": "production-environment",
    "pre_production_environment": "pre-production-environment",
    "setup_command": "setup",
    "release_command": "release",
    "deploy_command": "deploy",
    "verify_command": "verify",
    "main_branch": "main-branch",
}

_REQUIRED = (
    "production_environment",
    "pre_production_environment",
    "setup_command",
    "release_command",
    "deploy_command",
    "verify_command",
)


@dataclass(frozen=True)
class DeployConfig:
    """Everything the pipeline needs, resolved once at process start."""

    production_environment: str
    pre_production_environment: str
    setup_command: str
    release_command: str
    deploy_command: str
    verify_command: str
    main_branch: str = "main"
    status_context: str = "QA"
    poll_interval: float = 5.0
    component_name: Optional[str] = None
    run_url: Optional[str] = None
    actor: Optional[str] = None
    repository: Optional[str] = None
    github_token: Optional[str] = None


def _action_input(name: str) -> Optional[str]:
    """Read an Actions input; the runner exports it as INPUT_<NAME> with spaces as underscores."""
    env_name = f"INPUT_{name}".upper().replace(" ", "_")
    value = os.environ.get(env_name)
    if value is None:
        value = os.environ.get(env_name.replace("-", "_"))
    return value or None


def _run_url() -> Optional[str]:
    server = os.environ.get("GITHUB_SERVER_URL", "https://github.com")
    repository = os.environ.get("GITHUB_REPOSITORY")
    run_id = os.environ.get("GITHUB_RUN_ID")
    if repository and run_id:
        return f"{server}/{repository}/actions/runs/{run_id}"
    return None


def load_config(config_path: str = ".prdeploy.yml", cli_overrides: Optional[dict] = None) -> DeployConfig:
    """
    Build the deploy configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prdeploy.yml in the current directory
      3. GitHub Actions inputs (INPUT_*)
      4. CLI argument overrides
    """
    config = dict(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update({key.replace("-", "_"): value for key, value in file_config.items()})

    for key, input_name in _ACTION_INPUTS.items():
        value = _action_input(input_name)
        if value is not None:
            config[key] = value

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    missing = [key for key in _REQUIRED if not config.get(key)]
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    # Run context comes from the Actions runner environment.
    config["component_name"] = os.environ.get("ACTIONS_DEPLOY_NAME") or config.get("component_name")
    config["run_url"] = _run_url()
    config["actor"] = os.environ.get("GITHUB_ACTOR")
    config["repository"] = config.get("repository") or os.environ.get("GITHUB_REPOSITORY")
    config["github_token"] = os.environ.get("GITHUB_TOKEN")

    known = DeployConfig.__dataclass_fields__
    return DeployConfig(
        **{
            key: (float(value) if key == "poll_interval" else value)
            for key, value in config.items()
            if key in known
        }
    )
