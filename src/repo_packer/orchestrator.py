"""Job state machine: fetch, scan, interactive exclusion, pack, finalize.

A `Job` turns one `JobRequest` into a sequence of `JobMessage` values. Each
stage's progress is relayed through a `ProgressBridge` as it is produced, the
job suspends once to ask its caller which large files to drop, and the job's
working directory is removed before the terminal message is yielded, on every
exit path.
"""

from __future__ import annotations

import asyncio
import contextlib
import shutil
import uuid
from typing import TYPE_CHECKING, Any

from repo_packer.adapter import PROGRESS_SPAN, PackAdapter
from repo_packer.bridge import ProgressBridge
from repo_packer.exceptions import FetchError, RepoPackerError, ScanError
from repo_packer.fetcher import SourceFetcher, parse_source_url
from repo_packer.gate import ExclusionGate, GateResolution
from repo_packer.logging import logger
from repo_packer.models import JobMessage, JobRequest, JobState, ProgressEvent, SelectionReply
from repo_packer.scanner import scan
from repo_packer.settings import MB, Settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable
    from pathlib import Path

    from repo_packer.config import PackConfig
    from repo_packer.fetcher import SourceRepository
    from repo_packer.models import Artifact, CandidateFile, OutputStyle

SOURCE_DIRNAME = "source"
OUTPUT_BASENAME = "packed-output"

FETCH_START = 5.0
FETCH_END = 40.0
SCAN_START = 40.0
SCAN_END = 45.0
PACK_BASE = 45.0


class Job:
    """One request from source URL to artifact or error.

    Iterate `messages()` to drive the job. When a message carries
    `waitingForFileSelection`, answer with `submit_selection` before pulling
    the next message; without an answer the gate times out and the default
    policy applies.
    """

    def __init__(
        self,
        request: JobRequest,
        *,
        settings: Settings,
        fetcher: SourceFetcher,
        adapter: PackAdapter,
    ) -> None:
        self.id = uuid.uuid4().hex
        self.request = request
        self.state = JobState.INIT
        self.workdir: Path | None = None
        self.artifact: Artifact | None = None
        self.candidates: list[CandidateFile] = []
        self.resolution: GateResolution | None = None
        self.error: str | None = None
        self._settings = settings
        self._fetcher = fetcher
        self._adapter = adapter
        self._progress = 0.0
        self._log = logger.bind(job_id=self.id, url=request.source_url)

        self.threshold_bytes = _to_bytes(request.size_threshold_mb, settings.size_threshold_bytes)
        self.max_size_bytes = _to_bytes(request.max_source_size_mb, settings.max_source_size_bytes)
        self.style: OutputStyle = request.output_style or settings.output_style
        self.gate = ExclusionGate(self.threshold_bytes, settings.selection_timeout_seconds)

    def __aiter__(self) -> AsyncIterator[JobMessage]:
        return self.messages()

    def submit_selection(self, reply: SelectionReply | dict[str, Any]) -> bool:
        """Deliver the caller's answer to the file-selection prompt.

        Returns:
            bool: whether the reply was accepted (only while awaiting a selection).
        """
        if not isinstance(reply, SelectionReply):
            reply = SelectionReply.model_validate(reply)
        return self.gate.submit(reply)

    async def messages(self) -> AsyncIterator[JobMessage]:
        """Run the job, yielding every outbound message; the last one is terminal."""
        if self.state is not JobState.INIT:
            msg = f"Job {self.id} already started"
            raise RuntimeError(msg)

        try:
            source = parse_source_url(self.request.source_url, self._settings.allowed_hosts)
        except FetchError as e:
            self._fail(e)
            yield JobMessage.failure(str(e))
            return

        self._log.info("job.start", threshold_bytes=self.threshold_bytes, max_size_bytes=self.max_size_bytes)
        terminal: JobMessage
        try:
            self.workdir = self._settings.temp_root / self.id
            self.workdir.mkdir(parents=True)
            yield self._update("Initializing...", 0.0)
            async with contextlib.aclosing(self._run_stages(source, self.workdir)) as stages:
                async for message in stages:
                    yield message
        except (GeneratorExit, asyncio.CancelledError):
            self.state = JobState.ABORTED
            self._log.warning("job.aborted")
            raise
        except RepoPackerError as e:
            terminal = self._fail(e)
        except Exception as e:
            self._log.exception("job.crashed", state=str(self.state))
            terminal = self._fail(e, prefix="Unexpected error: ")
        else:
            assert self.artifact is not None  # noqa: S101
            self.state = JobState.COMPLETED
            self._log.info("job.completed", output_bytes=self.artifact.size_bytes)
            terminal = JobMessage.success(self.artifact.text)
        finally:
            self._teardown()
        yield terminal

    async def _run_stages(self, source: SourceRepository, workdir: Path) -> AsyncIterator[JobMessage]:
        source_dir = workdir / SOURCE_DIRNAME
        request = self.request

        self._enter(JobState.FETCHING)
        yield self._update("Cloning repository...", FETCH_START)
        async for event in self._relay(
            lambda bridge: self._fetcher.fetch(
                source.url,
                source_dir,
                self.max_size_bytes,
                bridge,
                start=FETCH_START,
                end=FETCH_END,
            ),
        ):
            yield event

        self._enter(JobState.SCANNING)
        yield self._update("Analyzing repository...", SCAN_START)
        try:
            self.candidates = await asyncio.to_thread(
                scan,
                source_dir,
                request.exclude_globs,
                threshold_bytes=self.threshold_bytes,
                top_n=self._settings.top_n_large_files,
            )
        except OSError as e:
            raise ScanError(message=f"Failed to analyze repository: {e}", root=source_dir) from e
        yield self._update(f"Found {len(self.candidates)} large file candidates", SCAN_END)

        self._enter(JobState.AWAITING_SELECTION)
        self.gate.open(self.candidates)
        yield JobMessage.selection_prompt("Waiting for file selection...", self._progress, self.candidates)
        self.resolution = await self.gate.resolve()
        self._log.info(
            "job.selection",
            excluded=list(self.resolution.excluded),
            timed_out=self.resolution.timed_out,
        )

        self._enter(JobState.PACKING)
        yield self._update("Preparing ignore patterns...", PACK_BASE)
        config = self._adapter.build_config(
            output_path=workdir / f"{OUTPUT_BASENAME}{self.style.suffix}",
            title=source.name,
            style=self.style,
            exclude_globs=request.exclude_globs,
            exclude_paths=self.resolution.excluded,
            regex_filter=request.regex_filter,
        )
        yield self._update("Running packer...", PACK_BASE)
        async for event in self._relay(lambda bridge: self._pack(source_dir, config, bridge)):
            yield event
        yield self._update("Finalizing...", PACK_BASE + PROGRESS_SPAN)

    async def _relay(
        self,
        stage: Callable[[ProgressBridge[ProgressEvent]], Awaitable[None]],
    ) -> AsyncIterator[JobMessage]:
        """Run `stage` as a task and yield its progress events as messages, in order.

        The stage's exception is re-raised once every event emitted before it
        has been relayed. A stage still running when the relay is closed is
        cancelled.
        """
        bridge: ProgressBridge[ProgressEvent] = ProgressBridge()

        async def run() -> None:
            try:
                await stage(bridge)
            finally:
                bridge.close()

        task = asyncio.create_task(run())
        try:
            async for event in bridge:
                yield self._update(event.text, event.percent)
            await task
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    async def _pack(self, source_dir: Path, config: PackConfig, bridge: ProgressBridge[ProgressEvent]) -> None:
        self.artifact = await self._adapter.pack(source_dir, config, bridge, base=PACK_BASE)

    def _enter(self, state: JobState) -> None:
        self._log.info("job.stage", stage=str(state))
        self.state = state

    def _update(self, text: str, percent: float) -> JobMessage:
        self._progress = max(self._progress, min(percent, 100.0))
        return JobMessage.progress_update(text, self._progress)

    def _fail(self, error: BaseException, prefix: str = "") -> JobMessage:
        self.state = JobState.FAILED
        self.error = f"{prefix}{error}"
        self._log.warning("job.failed", error=self.error)
        return JobMessage.failure(self.error)

    def _teardown(self) -> None:
        workdir, self.workdir = self.workdir, None
        if workdir is None or not workdir.exists():
            return

        def on_error(_func: Any, path: str, exc: BaseException) -> None:  # noqa: ANN401
            self._log.warning("teardown.failed", path=path, error=str(exc))

        shutil.rmtree(workdir, onexc=on_error)
        self._log.info("job.teardown", workdir=str(workdir))


class JobOrchestrator:
    """Builds jobs sharing one configuration and one set of collaborators.

    Args:
        settings (Settings): defaults for every job; read from the environment when omitted.
        fetcher (SourceFetcher | None): clones sources; built from `settings` when omitted.
        adapter (PackAdapter | None): runs the packing engine.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        fetcher: SourceFetcher | None = None,
        adapter: PackAdapter | None = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self.fetcher = fetcher or SourceFetcher(self.settings)
        self.adapter = adapter or PackAdapter()

    def create_job(self, request: JobRequest | dict[str, Any]) -> Job:
        """Validate `request` and return a job ready to be iterated."""
        if not isinstance(request, JobRequest):
            request = JobRequest.model_validate(request)
        return Job(request, settings=self.settings, fetcher=self.fetcher, adapter=self.adapter)


def _to_bytes(megabytes: float | None, default: int) -> int:
    return default if megabytes is None else int(megabytes * MB)
