"""Measure every file of a fetched tree and pick the ones worth reviewing."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from repo_packer.config import VCS_DIR
from repo_packer.exceptions import ScanError
from repo_packer.file_manipulation import make_recs, match_any_glob, normalize_globs, relpath, walk_files
from repo_packer.models import CandidateFile

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from repo_packer.config import FileRecord

BYTES_PER_TOKEN = 4


def estimate_tokens(size_bytes: int) -> int:
    """Rough token count from a byte size alone; never reads the file."""
    return math.ceil(size_bytes / BYTES_PER_TOKEN)


def walk_tree(root: Path, exclude_globs: Sequence[str]) -> list[FileRecord]:
    """Record every regular file under `root`, skipping `.git` and `exclude_globs`.

    Sizes are measured here, once, and never revalidated.

    Raises:
        ScanError: if `root` is not a directory.
    """
    if not root.is_dir():
        raise ScanError(message=f"Cannot scan {root}: not a directory", root=root)
    globs = normalize_globs(exclude_globs)
    files = [f for f in walk_files(root, prune={VCS_DIR}) if not match_any_glob(relpath(f, root), globs)]
    return make_recs(files, root)


def select_candidates(recs: Sequence[FileRecord], threshold_bytes: int, top_n: int) -> list[CandidateFile]:
    """Rank files by size, descending, and keep the large ones.

    When fewer than `top_n` files exceed `threshold_bytes`, the `top_n` largest
    files are returned whatever their size, so small repositories still get
    something to review. Otherwise exactly the over-threshold files are returned.
    """
    ranked = sorted(recs, key=lambda r: (-r.size, r.rel))
    over = [r for r in ranked if r.size > threshold_bytes]
    chosen = ranked[:top_n] if len(over) < top_n else over
    return [
        CandidateFile(relative_path=r.rel, size_bytes=r.size, token_estimate=estimate_tokens(r.size))
        for r in chosen
    ]


def scan(
    root: Path,
    exclude_globs: Sequence[str],
    *,
    threshold_bytes: int,
    top_n: int = 10,
) -> list[CandidateFile]:
    """Walk `root` and return the ranked large-file candidates."""
    return select_candidates(walk_tree(root, exclude_globs), threshold_bytes, top_n)


def default_exclusions(candidates: Sequence[CandidateFile], threshold_bytes: int) -> list[str]:
    """Paths excluded when the caller does not answer: every candidate over the threshold."""
    return [c.relative_path for c in candidates if c.size_bytes > threshold_bytes]
