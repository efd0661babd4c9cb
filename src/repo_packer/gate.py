"""Human-in-the-loop exclusion of large files, bounded by a timeout."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import StrEnum, auto
from typing import TYPE_CHECKING

from repo_packer.logging import logger
from repo_packer.scanner import default_exclusions

if TYPE_CHECKING:
    from collections.abc import Sequence

    from repo_packer.models import CandidateFile, SelectionReply


class GateState(StrEnum):
    SCANNING = auto()
    AWAITING_SELECTION = auto()
    RESOLVED = auto()


@dataclass(frozen=True)
class GateResolution:
    """Outcome of the gate: the paths to exclude and how they were chosen."""

    excluded: tuple[str, ...]
    timed_out: bool = False
    defaulted: bool = False


def normalize_selection(paths: Sequence[str]) -> tuple[str, ...]:
    """Clean caller-supplied relative paths, dropping blanks and duplicates."""
    out: list[str] = []
    for p in paths:
        p2 = (p or "").strip().replace("\\", "/").lstrip("/")
        p2 = p2.removeprefix("./")
        if p2 and p2 not in out:
            out.append(p2)
    return tuple(out)


class ExclusionGate:
    """One-shot race between a caller's `SelectionReply` and a timer.

    `open` moves the gate to `AWAITING_SELECTION` and fixes the deadline;
    `submit` delivers the reply; `resolve` waits for whichever comes first.
    A reply without `selectedFiles`, or no reply before the deadline, applies
    the default policy: exclude every candidate above the size threshold.

    Args:
        threshold_bytes (int): size above which a candidate is excluded by default.
        timeout (float): seconds to wait for a reply once opened.
    """

    def __init__(self, threshold_bytes: int, timeout: float) -> None:
        self._threshold_bytes = threshold_bytes
        self._timeout = timeout
        self.state = GateState.SCANNING
        self._candidates: tuple[CandidateFile, ...] = ()
        self._reply: asyncio.Future[SelectionReply] | None = None
        self._deadline = 0.0

    @property
    def candidates(self) -> tuple[CandidateFile, ...]:
        return self._candidates

    def open(self, candidates: Sequence[CandidateFile]) -> None:
        """Offer `candidates` and start the timer.

        Raises:
            RuntimeError: if the gate was already opened.
        """
        if self.state is not GateState.SCANNING:
            msg = f"Exclusion gate cannot be opened twice (state={self.state})"
            raise RuntimeError(msg)
        loop = asyncio.get_running_loop()
        self._candidates = tuple(candidates)
        self._reply = loop.create_future()
        self._deadline = loop.time() + self._timeout
        self.state = GateState.AWAITING_SELECTION

    def submit(self, reply: SelectionReply) -> bool:
        """Deliver the caller's reply. Must be called on the gate's event loop.

        Returns:
            bool: False when the gate is not awaiting a selection or already has one.
        """
        if self.state is not GateState.AWAITING_SELECTION or self._reply is None or self._reply.done():
            logger.warning("selection.ignored", state=str(self.state))
            return False
        self._reply.set_result(reply)
        return True

    async def resolve(self) -> GateResolution:
        """Wait for a reply until the deadline, then settle the exclusion set."""
        if self.state is not GateState.AWAITING_SELECTION or self._reply is None:
            msg = f"Exclusion gate is not awaiting a selection (state={self.state})"
            raise RuntimeError(msg)

        reply: SelectionReply | None = None
        if self._reply.done():
            reply = self._reply.result()
        else:
            remaining = max(0.0, self._deadline - asyncio.get_running_loop().time())
            try:
                reply = await asyncio.wait_for(asyncio.shield(self._reply), remaining)
            except TimeoutError:
                self._reply.cancel()

        self.state = GateState.RESOLVED
        if reply is None:
            excluded = tuple(default_exclusions(self._candidates, self._threshold_bytes))
            logger.info("selection.timeout", timeout=self._timeout, excluded=len(excluded))
            return GateResolution(excluded=excluded, timed_out=True, defaulted=True)
        if reply.selected_files is None:
            excluded = tuple(default_exclusions(self._candidates, self._threshold_bytes))
            logger.info("selection.default", excluded=len(excluded))
            return GateResolution(excluded=excluded, defaulted=True)
        excluded = normalize_selection(reply.selected_files)
        logger.info("selection.received", excluded=len(excluded))
        return GateResolution(excluded=excluded)
