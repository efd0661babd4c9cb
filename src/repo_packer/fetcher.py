"""Validate, measure and shallow-clone a public source repository."""

from __future__ import annotations

import asyncio
import os
import re
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from repo_packer.exceptions import FetchError, FetchFailure
from repo_packer.logging import logger
from repo_packer.models import ProgressEvent

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Sequence
    from pathlib import Path

    from repo_packer.bridge import ProgressBridge
    from repo_packer.settings import Settings

    CloneCommand = Callable[[str, Path], Sequence[str]]

SOURCE_URL_PATTERN = re.compile(
    r"^https://(?P<host>[A-Za-z0-9.-]+)/(?P<owner>[A-Za-z0-9_][\w.-]*)/(?P<name>[A-Za-z0-9_][\w.-]*?)(?:\.git)?/?$",
)
RECEIVING_PATTERN = re.compile(r"receiving objects:\s+(\d{1,3})%", re.IGNORECASE)
_STDERR_TAIL = 20


@dataclass(frozen=True)
class SourceRepository:
    """Parsed `https://host/owner/name` source URL."""

    url: str
    host: str
    owner: str
    name: str


def parse_source_url(url: str, allowed_hosts: Sequence[str]) -> SourceRepository:
    """Parse and validate a source URL without touching the network.

    Args:
        url (str): candidate URL, `https://<host>/<owner>/<repo>[.git]`
        allowed_hosts (Sequence[str]): hosts jobs may clone from

    Raises:
        FetchError: `invalid_url` when the shape or host is not accepted.

    Returns:
        SourceRepository: the parsed URL parts
    """
    text = (url or "").strip()
    match = SOURCE_URL_PATTERN.match(text)
    if match is None or match["host"].lower() not in {h.lower() for h in allowed_hosts}:
        raise FetchError(message="Invalid source URL", reason=FetchFailure.INVALID_URL, detail=text)
    return SourceRepository(url=text, host=match["host"].lower(), owner=match["owner"], name=match["name"])


def git_clone_command(git_binary: str = "git") -> CloneCommand:
    """Build the default shallow `git clone` command factory."""

    def build(url: str, destination: Path) -> list[str]:
        return [git_binary, "clone", "--depth=1", "--progress", "--", url, str(destination)]

    return build


def measure_tree(root: Path) -> int:
    """Sum the sizes of every file under `root`, skipping `.git`."""
    total = 0
    for current, dirs, files in os.walk(root):
        dirs[:] = [d for d in dirs if d != ".git"]
        for f in files:
            try:
                total += os.lstat(os.path.join(current, f)).st_size  # noqa: PTH116, PTH118
            except OSError as e:
                logger.warning("Cannot stat %s: %s", f, e)
    return total


async def iter_progress_lines(stream: asyncio.StreamReader) -> AsyncIterator[str]:
    """Yield lines from `stream`, treating `\\r` as a line break as git does for progress."""
    buffer = bytearray()
    while True:
        chunk = await stream.read(64 * 1024)
        if not chunk:
            break
        buffer.extend(chunk.replace(b"\r", b"\n"))
        while True:
            newline_index = buffer.find(b"\n")
            if newline_index < 0:
                break
            raw_line = buffer[:newline_index]
            del buffer[: newline_index + 1]
            line = raw_line.decode("utf-8", errors="replace").strip()
            if line:
                yield line
    if buffer:
        line = buffer.decode("utf-8", errors="replace").strip()
        if line:
            yield line


class SourceFetcher:
    """Pre-flight size check plus a bounded shallow clone reporting progress.

    Args:
        settings (Settings): timeouts, allowed hosts and metadata API root.
        client (httpx.AsyncClient | None): client for the metadata query; a
            short-lived one is created per query when omitted.
        clone_command (CloneCommand | None): builds the clone argv from the
            URL and destination; defaults to a shallow `git clone`.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
        clone_command: CloneCommand | None = None,
    ) -> None:
        self._settings = settings
        self._client = client
        self._clone_command = clone_command or git_clone_command(settings.git_binary)

    async def fetch(
        self,
        url: str,
        destination: Path,
        max_size_bytes: int,
        bridge: ProgressBridge[ProgressEvent],
        *,
        start: float = 0.0,
        end: float = 100.0,
    ) -> None:
        """Clone `url` into `destination`, emitting progress scaled into [start, end].

        Raises:
            FetchError: on an invalid URL, an unavailable or oversized repository,
                or a failed or timed-out clone.
        """
        repo = parse_source_url(url, self._settings.allowed_hosts)
        bridge.emit(ProgressEvent(text="Checking repository size...", percent=start))
        declared = await self.query_size(repo)
        if declared > max_size_bytes:
            raise FetchError(
                message="Repository too large",
                reason=FetchFailure.SIZE_EXCEEDED,
                detail=f"reported {declared} bytes, limit {max_size_bytes} bytes",
            )

        await self._clone(repo, destination, bridge, start=start, end=end)

        measured = await asyncio.to_thread(measure_tree, destination)
        if measured > max_size_bytes:
            raise FetchError(
                message="Repository too large",
                reason=FetchFailure.SIZE_EXCEEDED,
                detail=f"checked out {measured} bytes, limit {max_size_bytes} bytes",
            )
        bridge.emit(ProgressEvent(text="Repository cloned", percent=end, terminal=True))

    async def query_size(self, repo: SourceRepository) -> int:
        """Return the repository size in bytes reported by the metadata API.

        Raises:
            FetchError: `metadata_unavailable` on transport errors, non-2xx
                responses or a body without a numeric `size`.
        """
        api_url = f"{self._settings.metadata_api_base.rstrip('/')}/repos/{repo.owner}/{repo.name}"
        headers = {"Accept": "application/vnd.github+json", "User-Agent": "repo-packer"}
        try:
            if self._client is not None:
                response = await self._client.get(api_url, headers=headers)
            else:
                async with httpx.AsyncClient(
                    follow_redirects=True,
                    timeout=self._settings.metadata_timeout_seconds,
                ) as client:
                    response = await client.get(api_url, headers=headers)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise FetchError(
                message="Failed to fetch repository info",
                reason=FetchFailure.METADATA_UNAVAILABLE,
                detail=str(e),
            ) from e

        size_kb = payload.get("size") if isinstance(payload, dict) else None
        if isinstance(size_kb, bool) or not isinstance(size_kb, int | float) or size_kb < 0:
            raise FetchError(
                message="Failed to fetch repository info",
                reason=FetchFailure.METADATA_UNAVAILABLE,
                detail="response has no numeric size",
            )
        # The API reports kilobytes.
        return int(size_kb * 1024)

    async def _clone(
        self,
        repo: SourceRepository,
        destination: Path,
        bridge: ProgressBridge[ProgressEvent],
        *,
        start: float,
        end: float,
    ) -> None:
        cmd = list(self._clone_command(repo.url, destination))
        timeout = self._settings.clone_timeout_seconds
        log = logger.bind(url=repo.url, destination=str(destination))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise FetchError(message="Clone failed", reason=FetchFailure.CLONE_FAILED, detail=str(e)) from e

        assert process.stderr is not None  # noqa: S101
        tail: deque[str] = deque(maxlen=_STDERR_TAIL)
        last = start
        try:
            async with asyncio.timeout(timeout):
                async for line in iter_progress_lines(process.stderr):
                    tail.append(line)
                    match = RECEIVING_PATTERN.search(line)
                    if match is None:
                        continue
                    percent = start + (end - start) * min(int(match.group(1)), 100) / 100
                    if percent > last:
                        last = percent
                        bridge.emit(ProgressEvent(text=f"Cloning repository: {match.group(1)}%", percent=percent))
                returncode = await process.wait()
        except TimeoutError as e:
            await _kill(process)
            log.warning("clone.timeout", timeout=timeout)
            raise FetchError(
                message="Clone failed",
                reason=FetchFailure.CLONE_FAILED,
                detail=f"timed out after {timeout:g}s",
            ) from e
        except asyncio.CancelledError:
            await _kill(process)
            raise

        log.info("clone.exited", returncode=returncode)
        if returncode != 0:
            raise FetchError(
                message="Clone failed",
                reason=FetchFailure.CLONE_FAILED,
                detail=f"exit code {returncode}: {' | '.join(tail)}" if tail else f"exit code {returncode}",
            )


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()
