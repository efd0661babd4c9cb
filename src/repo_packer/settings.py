from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any

from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field

from repo_packer.models import OutputStyle

ENV_FILE = find_dotenv(usecwd=True)
ENV_PREFIX = "REPO_PACKER_"

MB = 1024 * 1024


class Settings(BaseModel):
    """Process-wide defaults for repo_packer jobs."""

    model_config = ConfigDict(frozen=True)

    temp_root: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "repo-packer",
        description="Parent of every job working directory.",
    )
    clone_timeout_seconds: float = Field(default=60.0, gt=0, description="Hard clone timeout.")
    selection_timeout_seconds: float = Field(
        default=100.0,
        ge=0,
        description="How long to wait for a file selection reply.",
    )
    metadata_timeout_seconds: float = Field(default=10.0, gt=0, description="Metadata query timeout.")
    top_n_large_files: int = Field(default=10, ge=1, description="Minimum candidates offered for review.")
    size_threshold_mb: float = Field(default=1.0, ge=0, description="Default large-file threshold.")
    max_source_size_mb: float = Field(default=100.0, gt=0, description="Default repository size cap.")
    output_style: OutputStyle = Field(default=OutputStyle.MARKDOWN, description="Default output style.")
    allowed_hosts: tuple[str, ...] = Field(default=("github.com",), description="Accepted source hosts.")
    metadata_api_base: str = Field(default="https://api.github.com", description="Metadata API root.")
    git_binary: str = Field(default="git", description="git executable.")
    store_root: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "repo-packer-artifacts",
        description="Artifact store directory.",
    )
    retention_days: int = Field(default=30, ge=0, description="Artifact retention.")
    log_file: str = Field(default="", description="Log file path.")

    @property
    def size_threshold_bytes(self) -> int:
        return int(self.size_threshold_mb * MB)

    @property
    def max_source_size_bytes(self) -> int:
        return int(self.max_source_size_mb * MB)

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX, **overrides: Any) -> Settings:  # noqa: ANN401
        """Build settings from `.env` and the environment.

        Variables are named after the fields with `prefix` prepended, e.g.
        `REPO_PACKER_CLONE_TIMEOUT_SECONDS=30`. The process environment wins
        over the `.env` file, and explicit keyword overrides win over both.

        Args:
            prefix (str): environment variable prefix.
            **overrides (Any): field values taking precedence over the environment.

        Returns:
            Settings: validated settings.
        """
        merged: dict[str, str | None] = {}
        if ENV_FILE:
            merged.update(dotenv_values(ENV_FILE))
        merged.update(os.environ)

        values: dict[str, Any] = {}
        for name in cls.model_fields:
            raw = merged.get(prefix + name.upper())
            if raw is None or raw == "":
                continue
            if name == "allowed_hosts":
                values[name] = tuple(h.strip() for h in raw.split(",") if h.strip())
            else:
                values[name] = raw
        values.update(overrides)
        return cls.model_validate(values)
