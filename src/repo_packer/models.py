"""Domain values and the wire messages exchanged with a job's caller."""

from __future__ import annotations

import re
from enum import StrEnum, auto
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class OutputStyle(StrEnum):
    """Artifact rendering style."""

    MARKDOWN = auto()
    XML = auto()

    @property
    def suffix(self) -> str:
        return ".md" if self is OutputStyle.MARKDOWN else ".xml"


class JobState(StrEnum):
    """Lifecycle of a job. `COMPLETED`, `FAILED` and `ABORTED` are terminal."""

    INIT = auto()
    FETCHING = auto()
    SCANNING = auto()
    AWAITING_SELECTION = auto()
    PACKING = auto()
    COMPLETED = auto()
    FAILED = auto()
    ABORTED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in {JobState.COMPLETED, JobState.FAILED, JobState.ABORTED}


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProgressEvent(BaseModel):
    """One progress report from a stage, in job-wide percent."""

    model_config = ConfigDict(frozen=True)

    text: str
    percent: float = Field(..., ge=0, le=100)
    terminal: bool = False


class CandidateFile(_WireModel):
    """A file flagged as large during scanning and offered for exclusion."""

    model_config = ConfigDict(frozen=True)

    relative_path: str
    size_bytes: int = Field(..., ge=0)
    token_estimate: int = Field(default=0, ge=0)


class Artifact(BaseModel):
    """The packed document produced by a successful job."""

    model_config = ConfigDict(frozen=True)

    text: str
    style: OutputStyle = OutputStyle.MARKDOWN

    @property
    def size_bytes(self) -> int:
        return len(self.text.encode("utf-8"))


class JobRequest(_WireModel):
    """Inbound handshake starting a job.

    Unset optional fields fall back to the orchestrator's `Settings`.
    """

    source_url: str
    exclude_globs: list[str] = Field(default_factory=list)
    size_threshold_mb: float | None = Field(default=None, ge=0)
    max_source_size_mb: float | None = Field(default=None, gt=0)
    output_style: OutputStyle | None = None
    regex_filter: str | None = None

    @field_validator("exclude_globs", mode="before")
    @classmethod
    def _split_globs(cls, value: Any) -> list[str]:  # noqa: ANN401
        if value is None:
            return []
        if isinstance(value, str):
            value = value.splitlines()
        return [str(v).strip() for v in value if str(v).strip()]

    @field_validator("regex_filter")
    @classmethod
    def _check_regex(cls, value: str | None) -> str | None:
        if not value:
            return None
        try:
            re.compile(value)
        except re.error as e:
            msg = f"invalid regexFilter: {e}"
            raise ValueError(msg) from e
        return value


class SelectionReply(_WireModel):
    """Inbound reply to a `waitingForFileSelection` message."""

    selected_files: list[str] | None = None


class JobMessage(_WireModel):
    """Outbound message; `to_wire` yields one of the four documented shapes."""

    human_friendly_progress: str
    progress: float | None = None
    complete: bool = False
    output: str | None = None
    error: str | None = None
    large_files: list[CandidateFile] | None = None
    waiting_for_file_selection: bool | None = None

    @classmethod
    def progress_update(cls, text: str, progress: float) -> JobMessage:
        return cls(human_friendly_progress=text, progress=round(progress, 2))

    @classmethod
    def selection_prompt(cls, text: str, progress: float, candidates: list[CandidateFile]) -> JobMessage:
        return cls(
            human_friendly_progress=text,
            progress=round(progress, 2),
            large_files=candidates,
            waiting_for_file_selection=True,
        )

    @classmethod
    def success(cls, output: str) -> JobMessage:
        return cls(human_friendly_progress="Processing complete", complete=True, output=output)

    @classmethod
    def failure(cls, error: str) -> JobMessage:
        return cls(human_friendly_progress="Error occurred", complete=True, error=error)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
