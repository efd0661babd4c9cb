"""Drive the packing engine off the event loop and relay its progress."""

from __future__ import annotations

import asyncio
import contextlib
import math
from typing import TYPE_CHECKING

from repo_packer.config import IgnoreConfig, PackConfig
from repo_packer.engine import pack_directory
from repo_packer.exceptions import PackError
from repo_packer.logging import logger
from repo_packer.models import Artifact, OutputStyle, ProgressEvent

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from repo_packer.bridge import ProgressBridge
    from repo_packer.output_construction import ProgressCallback

    PackEngine = Callable[[Path, PackConfig, ProgressCallback | None], Path]

# UX tuning, not a contract: how fast the indicator saturates per callback.
LOGISTIC_STEEPNESS = 0.05
PROGRESS_SPAN = 50.0
CEILING_MARGIN = 0.01


def logistic(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-x))


def callback_progress(count: int, base: float, steepness: float = LOGISTIC_STEEPNESS) -> float:
    """Map the number of engine callbacks seen so far to a percentage.

    The number of callbacks still to come is unknown, so the curve is a
    saturating `logistic(count * steepness) * 50 + base`: strictly increasing
    in `count` and always below `base + 50`.
    """
    value = base + PROGRESS_SPAN * logistic(count * steepness)
    return min(value, base + PROGRESS_SPAN - CEILING_MARGIN)


class PackAdapter:
    """Build the engine configuration for a job and run the engine in a worker thread.

    Args:
        engine (PackEngine): `directory, config, progress_callback -> output path`.
    """

    def __init__(self, engine: PackEngine = pack_directory) -> None:
        self._engine = engine

    @staticmethod
    def build_config(  # noqa: PLR0913
        *,
        output_path: Path,
        title: str,
        style: OutputStyle = OutputStyle.MARKDOWN,
        include_globs: Sequence[str] = (),
        exclude_globs: Sequence[str] = (),
        exclude_paths: Sequence[str] = (),
        regex_filter: str | None = None,
    ) -> PackConfig:
        return PackConfig(
            output_path=output_path,
            style=style,
            title=title,
            include=list(include_globs),
            ignore=IgnoreConfig(
                custom_patterns=list(exclude_globs),
                exclude_paths=list(exclude_paths),
                regex_filter=regex_filter,
            ),
        )

    async def pack(
        self,
        root: Path,
        config: PackConfig,
        bridge: ProgressBridge[ProgressEvent],
        *,
        base: float = 0.0,
    ) -> Artifact:
        """Run the engine on `root` and return the artifact it wrote.

        Progress events land in `bridge` in (`base`, `base + 50`); the last one,
        at `base + 50`, is emitted only after the engine finished. A cancelled
        `pack` still waits for the engine thread to return before re-raising.

        Raises:
            PackError: if the engine fails or its output cannot be read back.
        """
        count = 0
        last = base

        def on_progress(message: str) -> None:
            nonlocal count, last
            count += 1
            percent = callback_progress(count, base)
            if percent > last:
                last = percent
                bridge.emit(ProgressEvent(text=message, percent=percent))

        work = asyncio.ensure_future(asyncio.to_thread(self._engine, root, config, on_progress))
        try:
            output = await asyncio.shield(work)
        except asyncio.CancelledError:
            # The engine thread cannot be interrupted: let it return before the
            # caller tears down the directory it writes into.
            logger.warning("pack.cancelled", callbacks=count)
            with contextlib.suppress(Exception):
                await work
            raise
        except Exception as e:
            logger.warning("pack.failed", error=str(e), callbacks=count)
            raise PackError(message="Packing failed", cause=e) from e

        try:
            text = output.read_text(encoding="utf-8")
        except OSError as e:
            raise PackError(message="Packed output unreadable", cause=e) from e

        logger.info("pack.done", callbacks=count, output_bytes=len(text.encode("utf-8")))
        bridge.emit(ProgressEvent(text="Packing complete", percent=base + PROGRESS_SPAN, terminal=True))
        return Artifact(text=text, style=config.style)
