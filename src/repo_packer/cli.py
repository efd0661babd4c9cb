"""repo-packer — clone a public repository and pack it for an LLM.

Overview
--------
`repo-packer pack URL` runs one job and streams every outbound message as a
JSON line on stdout, exactly as a streaming endpoint would send them:

    {"humanFriendlyProgress": "Cloning repository: 42%", "progress": 19.7, "complete": false}

Midway the job asks which large files to drop (`waitingForFileSelection`).
Answer up front with `--select PATH` (repeatable) or `--select-none`, answer
on stdin with `--interactive` (one JSON line such as
`{"selectedFiles": ["assets/big.bin"]}`), or let the selection timeout apply
the default policy (drop every candidate above the size threshold).

`repo-packer sweep` deletes stored artifacts older than the retention period.

Usage
-----
    repo-packer pack https://github.com/acme/tiny --output tiny.md
    repo-packer pack https://github.com/acme/tiny --output-style xml --select-none --store ./artifacts
    repo-packer sweep --store ./artifacts --older-than-days 30
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import stat
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, TextIO

from pydantic import BaseModel, ConfigDict, ValidationError

from repo_packer import __version__
from repo_packer.logging import logger, setup_logging
from repo_packer.models import JobMessage, JobRequest, JobState, OutputStyle, SelectionReply
from repo_packer.orchestrator import JobOrchestrator
from repo_packer.settings import Settings
from repo_packer.storage import ArtifactStore

if TYPE_CHECKING:
    from collections.abc import Sequence


class PackOptions(BaseModel):
    """Options of the `pack` command."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    url: str
    exclude_glob: list[str]
    size_threshold_mb: float | None = None
    max_source_size_mb: float | None = None
    output_style: OutputStyle | None = None
    regex_filter: str | None = None
    select: list[str] | None = None
    select_none: bool = False
    interactive: bool = False
    selection_timeout: float | None = None
    output: Path | None = None
    store: Path | None = None
    log_file: str = ""

    def to_request(self) -> JobRequest:
        return JobRequest(
            source_url=self.url,
            exclude_globs=self.exclude_glob,
            size_threshold_mb=self.size_threshold_mb,
            max_source_size_mb=self.max_source_size_mb,
            output_style=self.output_style,
            regex_filter=self.regex_filter,
        )


class SweepOptions(BaseModel):
    """Options of the `sweep` command."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    store: Path | None = None
    older_than_days: int | None = None
    log_file: str = ""


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="repo-packer",
        description="Clone a public repository and pack it into one LLM-ready document.",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = p.add_subparsers(dest="command", required=True)

    pack = sub.add_parser("pack", help="Run one packing job and stream its messages as JSON lines.")
    pack.add_argument("url", help="https://<host>/<owner>/<repo>[.git]")
    pack.add_argument(
        "--exclude-glob",
        action="append",
        default=[],
        help="Exclude glob (repeatable).",
    )
    pack.add_argument("--size-threshold-mb", type=float, default=None, help="Large-file threshold.")
    pack.add_argument("--max-source-size-mb", type=float, default=None, help="Repository size cap.")
    pack.add_argument(
        "--output-style",
        choices=[s.value for s in OutputStyle],
        default=None,
        help="Artifact style.",
    )
    pack.add_argument("--regex-filter", type=str, default=None, help="Exclude paths matching this regex.")

    selection = pack.add_mutually_exclusive_group()
    selection.add_argument(
        "--select",
        action="append",
        default=None,
        help="Large file to exclude (repeatable).",
    )
    selection.add_argument("--select-none", action="store_true", help="Exclude no large file.")
    selection.add_argument(
        "--interactive",
        action="store_true",
        help="Read the selection reply as one JSON line on stdin.",
    )
    pack.add_argument("--selection-timeout", type=float, default=None, help="Seconds to wait for a selection.")
    pack.add_argument("--output", type=Path, default=None, help="Write the artifact to this file.")
    pack.add_argument("--store", type=Path, default=None, help="Also save the artifact in this store.")
    pack.add_argument("--log-file", type=str, default="", help="Log file path.")

    sweep = sub.add_parser("sweep", help="Delete stored artifacts past retention.")
    sweep.add_argument("--store", type=Path, default=None, help="Artifact store directory.")
    sweep.add_argument("--older-than-days", type=int, default=None, help="Retention in days.")
    sweep.add_argument("--log-file", type=str, default="", help="Log file path.")
    return p


def parse_args(argv: Sequence[str] | None = None) -> PackOptions | SweepOptions:
    args = build_parser().parse_args(argv)
    values: dict[str, Any] = vars(args)
    if values.pop("command") == "sweep":
        return SweepOptions.model_validate(values)
    return PackOptions.model_validate(values)


def _is_stream(stdin: TextIO) -> bool:
    """Whether `stdin` is a pipe, socket or terminal, i.e. a read may block indefinitely."""
    try:
        mode = os.fstat(stdin.fileno()).st_mode
    except (OSError, ValueError):
        return False
    return stat.S_ISFIFO(mode) or stat.S_ISSOCK(mode) or stat.S_ISCHR(mode)


async def read_reply_line(stdin: TextIO, timeout: float) -> str | None:
    """Read one line from `stdin`, or return None if none arrives within `timeout`.

    Pipes and terminals are read by the event loop itself, so giving up on a
    silent caller leaves no thread blocked in `readline` (which would keep the
    process alive after the job ended). Regular files and in-memory streams
    never block and are read in a worker thread.
    """
    if not _is_stream(stdin):
        return await asyncio.to_thread(stdin.readline)

    loop = asyncio.get_running_loop()
    fd = stdin.fileno()
    reader = asyncio.StreamReader()
    pipe = os.fdopen(os.dup(fd), "rb", buffering=0)
    transport, _ = await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), pipe)
    try:
        raw = await asyncio.wait_for(reader.readline(), timeout)
    except TimeoutError:
        return None
    finally:
        transport.close()
        # The pipe transport switched the shared file description to non-blocking.
        os.set_blocking(fd, True)
        # Let the transport release its duplicate descriptor.
        await asyncio.sleep(0)
    return raw.decode("utf-8", errors="replace")


async def read_selection(options: PackOptions, stdin: TextIO, timeout: float) -> SelectionReply | None:
    """Work out the reply to the selection prompt, or None to let the gate time out."""
    if options.select is not None:
        return SelectionReply(selected_files=options.select)
    if options.select_none:
        return SelectionReply(selected_files=[])
    if not options.interactive:
        return None
    line = await read_reply_line(stdin, timeout)
    if line is None or not line.strip():
        return None
    try:
        return SelectionReply.model_validate_json(line)
    except ValidationError as e:
        logger.warning("Ignoring malformed selection reply: %s", e)
        return None


def emit(message: JobMessage, stdout: TextIO) -> None:
    stdout.write(json.dumps(message.to_wire(), ensure_ascii=False) + "\n")
    stdout.flush()


async def run_pack(
    options: PackOptions,
    orchestrator: JobOrchestrator,
    *,
    stdin: TextIO,
    stdout: TextIO,
) -> int:
    """Run one job, streaming its messages; return the process exit code."""
    try:
        request = options.to_request()
    except ValidationError as e:
        emit(JobMessage.failure(f"Invalid request: {e}"), stdout)
        return 1

    job = orchestrator.create_job(request)
    async for message in job.messages():
        emit(message, stdout)
        if message.waiting_for_file_selection:
            reply = await read_selection(options, stdin, orchestrator.settings.selection_timeout_seconds)
            if reply is not None:
                job.submit_selection(reply)

    if job.state is not JobState.COMPLETED or job.artifact is None:
        return 1
    if options.output is not None:
        options.output.parent.mkdir(parents=True, exist_ok=True)
        options.output.write_text(job.artifact.text, encoding="utf-8")
    if options.store is not None:
        ArtifactStore(options.store).save(job.artifact)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    options = parse_args(argv)
    overrides: dict[str, Any] = {}
    if options.log_file:
        overrides["log_file"] = options.log_file
    if isinstance(options, PackOptions) and options.selection_timeout is not None:
        overrides["selection_timeout_seconds"] = options.selection_timeout
    settings = Settings.from_env(**overrides)
    if settings.log_file:
        setup_logging(settings.log_file)

    if isinstance(options, SweepOptions):
        store = ArtifactStore(options.store or settings.store_root)
        days = settings.retention_days if options.older_than_days is None else options.older_than_days
        deleted = store.sweep(older_than_days=days)
        print(f"Deleted {deleted} artifacts from {store.root}")  # noqa: T201
        return 0

    orchestrator = JobOrchestrator(settings)
    return asyncio.run(run_pack(options, orchestrator, stdin=sys.stdin, stdout=sys.stdout))


if __name__ == "__main__":
    raise SystemExit(main())
