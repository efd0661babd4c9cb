"""Filesystem store for finished artifacts, with age-based retention."""

from __future__ import annotations

import re
import time
import uuid
from typing import TYPE_CHECKING

from repo_packer.logging import logger

if TYPE_CHECKING:
    from pathlib import Path

    from repo_packer.models import Artifact

DEFAULT_RETENTION_DAYS = 30
_NAME_PATTERN = re.compile(r"^(?P<millis>\d+)-[0-9a-f]{32}\.(?:md|xml)$")
_DAY_MILLIS = 24 * 60 * 60 * 1000


class ArtifactStore:
    """Artifacts saved as `<epoch-millis>-<uuid>.<md|xml>` under `root`.

    The creation time is encoded in the name so the sweeper never has to
    trust filesystem timestamps.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def save(self, artifact: Artifact, *, now: float | None = None) -> str:
        """Persist `artifact` and return its name."""
        millis = int((time.time() if now is None else now) * 1000)
        name = f"{millis}-{uuid.uuid4().hex}{artifact.style.suffix}"
        self.root.mkdir(parents=True, exist_ok=True)
        (self.root / name).write_text(artifact.text, encoding="utf-8")
        logger.info("store.saved", name=name, size_bytes=artifact.size_bytes)
        return name

    def load(self, name: str) -> str:
        """Return the text of the artifact called `name`.

        Raises:
            FileNotFoundError: if `name` is not a stored artifact.
        """
        if not _NAME_PATTERN.match(name):
            raise FileNotFoundError(name)
        return (self.root / name).read_text(encoding="utf-8")

    def names(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.name for p in self.root.iterdir() if _NAME_PATTERN.match(p.name))

    def sweep(self, older_than_days: int = DEFAULT_RETENTION_DAYS, *, now: float | None = None) -> int:
        """Delete artifacts created more than `older_than_days` ago.

        Failures to delete one artifact are logged and skipped.

        Returns:
            int: number of artifacts deleted
        """
        cutoff = int((time.time() if now is None else now) * 1000) - older_than_days * _DAY_MILLIS
        logger.info("store.sweep", older_than_days=older_than_days)
        deleted = 0
        for name in self.names():
            match = _NAME_PATTERN.match(name)
            if match is None or int(match["millis"]) >= cutoff:
                continue
            try:
                (self.root / name).unlink()
            except OSError as e:
                logger.warning("store.delete_failed", name=name, error=str(e))
                continue
            deleted += 1
        logger.info("store.swept", deleted=deleted)
        return deleted
