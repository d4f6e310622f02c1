"""Slash commands recognised in pull-request comments."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional, Union

# Same syntax as probot/commands: the first line that starts with "/name".
_COMMAND_RE = re.compile(r"^/([\w-]+)\s*?(.*)?$", re.MULTILINE)


@dataclass(frozen=True)
class QA:
    pass


@dataclass(frozen=True)
class SkipQA:
    pass


@dataclass(frozen=True)
class PassedQA:
    pass


@dataclass(frozen=True)
class FailedQA:
    pass


@dataclass(frozen=True)
class Deploy:
    environment: Optional[str] = None
    version: Optional[str] = None


@dataclass(frozen=True)
class Verify:
    environment: Optional[str] = None


@dataclass(frozen=True)
class Rollback:
    pass


@dataclass(frozen=True)
class Unrecognized:
    name: str
    parameters: list[str] = field(default_factory=list)


Command = Union[QA, SkipQA, PassedQA, FailedQA, Deploy, Verify, Rollback, Unrecognized]


def _parameter(parameters: list[str], index: int) -> Optional[str]:
    return parameters[index] if len(parameters) > index else None


def parse_command(body: str | None) -> Command | None:
    """Parse the first command in ``body``.

    ``/deploy production abc123`` gives ``Deploy("production", "abc123")``.
    Returns None when the body holds no command at all.
    """
    match = _COMMAND_RE.search(body or "")
    if match is None:
        return None
    name = match.group(1)
    parameters = (match.group(2) or "").split()

    if name == "qa":
        return QA()
    if name == "skip-qa":
        return SkipQA()
    if name == "passed-qa":
        return PassedQA()
    if name == "failed-qa":
        return FailedQA()
    if name == "deploy":
        return Deploy(_parameter(parameters, 0), _parameter(parameters, 1))
    if name == "verify":
        return Verify(_parameter(parameters, 0))
    if name == "rollback":
        return Rollback()
    return Unrecognized(name, parameters)
