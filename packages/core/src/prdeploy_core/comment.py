"""The tracking comment: one comment per pipeline run, edited in place."""

from __future__ import annotations

import asyncio
import logging

from github import GithubException

from prdeploy_core.render import code_block
from prdeploy_core.shell import OutputBuffer

logger = logging.getLogger(__name__)

SEPARATOR = "---"
_TAIL_LINES = 20


def code(text: str) -> str:
    return f"`{text}`"


def mention(actor: str | None, text: str) -> str:
    return f"@{actor} {text}" if actor else text


def success(text: str) -> str:
    return f"✅ {text}"


def error(text: str) -> str:
    return f"❌ {text}"


def warning(text: str) -> str:
    return f"⚠️ {text}"


def in_progress(text: str) -> str:
    return f"⏳ {text}"


def link_to_pull(pr_number: int) -> str:
    return f"#{pr_number}"


def header(component_name: str | None) -> str | None:
    return f"**{component_name}**" if component_name else None


def footer(run_url: str | None) -> str:
    if run_url:
        return f"{SEPARATOR}\n<sub>[Run details]({run_url})</sub>"
    return SEPARATOR


class TrackingComment:
    """A comment that starts unbound and is created on the first flush.

    Persisted lines accumulate through append(); ephemeral() shows extra
    lines until the next append replaces them. subscribe_to() keeps the
    comment updated from a growing OutputBuffer while a script runs.
    Call close() (or use ``async with``) before dropping the object so no
    subscription outlives it.
    """

    def __init__(self, pr, header: str | None = None, footer: str | None = None):
        self._pr = pr
        self._header = header
        self._footer = footer
        self._lines: list[str] = []
        self._remote = None
        self._lock = asyncio.Lock()
        self._subscription: asyncio.Task | None = None
        self._cancelled: asyncio.Event | None = None
        self.id: int | None = None
        self.url: str | None = None

    @property
    def lines(self) -> list[str]:
        return list(self._lines)

    @property
    def is_bound(self) -> bool:
        return self.id is not None

    def render(self, extra: list[str] | None = None) -> str:
        parts = [self._header] if self._header else []
        parts.extend(self._lines)
        parts.extend(extra or [])
        if self._footer:
            parts.append(self._footer)
        return "\n\n".join(parts)

    async def _flush(self, extra: list[str] | None = None, cancelled: asyncio.Event | None = None) -> None:
        async with self._lock:
            # A subscription update queued behind an append must not overwrite it.
            if cancelled is not None and cancelled.is_set():
                return
            body = self.render(extra)
            if self._remote is None:
                self._remote = await asyncio.to_thread(self._pr.create_issue_comment, body)
                self.id = self._remote.id
                self.url = self._remote.html_url
                logger.debug("Created tracking comment %s", self.id)
            else:
                await asyncio.to_thread(self._remote.edit, body)

    async def append(self, *lines: str) -> None:
        self.cancel_subscription()
        self._lines.extend(lines)
        await self._flush()

    async def ephemeral(self, *lines: str) -> None:
        await self._flush(list(lines))

    async def separator(self) -> None:
        await self.append(SEPARATOR)

    def subscribe_to(self, buffer: OutputBuffer, interval: float, title: str = "Running") -> asyncio.Task:
        """Live-update the comment from ``buffer`` every ``interval`` seconds until the next append."""
        self.cancel_subscription()
        self._cancelled = asyncio.Event()
        self._subscription = asyncio.create_task(self._poll(buffer, len(buffer), interval, title, self._cancelled))
        return self._subscription

    async def _poll(
        self, buffer: OutputBuffer, seen: int, interval: float, title: str, cancelled: asyncio.Event
    ) -> None:
        while not cancelled.is_set():
            try:
                await asyncio.wait_for(cancelled.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            if cancelled.is_set() or not self.is_bound or len(buffer) == seen:
                continue
            seen = len(buffer)
            tail = "\n".join(buffer.tail(_TAIL_LINES))
            try:
                await self._flush([in_progress(title), code_block(tail)], cancelled)
            except GithubException as e:
                logger.warning("Could not update tracking comment with live output: %s", e)
            except Exception:
                logger.exception("Live output update failed")

    def cancel_subscription(self) -> None:
        """Stop the live subscription. Takes effect before the next flush, never during one."""
        if self._cancelled is not None:
            self._cancelled.set()
        self._cancelled = None
        self._subscription = None

    async def close(self) -> None:
        task = self._subscription
        self.cancel_subscription()
        if task is not None:
            await task

    async def __aenter__(self) -> "TrackingComment":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
