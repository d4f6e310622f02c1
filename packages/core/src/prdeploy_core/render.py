"""Render group-annotated script output as collapsible Markdown.

Pipeline scripts bracket each phase with ``::group::NAME`` / ``::endgroup::``
(the GitHub Actions log syntax). A log made only of such groups becomes one
``<details>`` block per group; anything else is shown verbatim in a single
code block, because mixing raw text with sections would be ambiguous.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

DEFAULT_SECTION_NAME = "Details"

_GROUP_RE = re.compile(r"^::group::(\w*)")
_END_GROUP = "::endgroup::"
_BACKTICKS_RE = re.compile(r"`{3,}")


@dataclass(frozen=True)
class LogSection:
    name: str
    body: str


def _trim_blank_lines(lines: list[str]) -> str:
    start, end = 0, len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return "\n".join(lines[start:end])


def parse_sections(log: str) -> list[LogSection] | None:
    """Split ``log`` into sections, or return None when it is not purely grouped.

    The last group may be missing its ``::endgroup::`` (the script died before
    printing it); its body then runs to the end of the log.
    """
    sections: list[LogSection] = []
    name: str | None = None
    body: list[str] = []

    for line in log.split("\n"):
        stripped = line.strip()
        if name is None:
            if not stripped:
                continue
            match = _GROUP_RE.match(stripped)
            if match is None:
                return None
            name = match.group(1) or DEFAULT_SECTION_NAME
            body = []
        elif stripped == _END_GROUP:
            sections.append(LogSection(name, _trim_blank_lines(body)))
            name = None
        elif _GROUP_RE.match(stripped):
            # A group opened before the previous one closed.
            return None
        else:
            body.append(line)

    if name is not None:
        sections.append(LogSection(name, _trim_blank_lines(body)))

    return sections or None


def _fence(text: str) -> str:
    longest = max((len(run) for run in _BACKTICKS_RE.findall(text)), default=2)
    return "`" * max(3, longest + 1)


def code_block(text: str) -> str:
    fence = _fence(text)
    return f"{fence}\n{text}\n{fence}"


def details(summary: str, body: str) -> str:
    return f"<details><summary>{summary}</summary>\n\n{body}\n\n</details>"


def render_section(section: LogSection) -> str:
    return details(section.name, code_block(section.body))


def log_to_details(log: str) -> str:
    sections = parse_sections(log)
    if sections is None:
        return code_block(log)
    return "\n".join(render_section(section) for section in sections)
