from dataclasses import dataclass, field
from enum import StrEnum, auto
from pathlib import Path


@dataclass(eq=False)
class RepoPackerError(Exception):
    """Base exception for errors in the repo_packer package."""

    message: str = "repo_packer error"

    def __str__(self) -> str:
        return self.message


class FetchFailure(StrEnum):
    """Why fetching a source repository failed."""

    INVALID_URL = auto()
    METADATA_UNAVAILABLE = auto()
    SIZE_EXCEEDED = auto()
    CLONE_FAILED = auto()


@dataclass(eq=False)
class FetchError(RepoPackerError):
    """Raised when a repository cannot be validated, measured or cloned."""

    reason: FetchFailure = FetchFailure.CLONE_FAILED
    detail: str = ""

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message} ({self.detail})"
        return self.message


@dataclass(eq=False)
class ScanError(RepoPackerError):
    """Raised when the fetched tree cannot be enumerated."""

    root: Path = field(default_factory=Path)


@dataclass(eq=False)
class PackError(RepoPackerError):
    """Raised when the packing engine fails; the cause is kept as `__cause__`."""

    cause: BaseException | None = None

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


@dataclass(eq=False)
class NotAGitRepositoryError(RepoPackerError):
    """Raised when the specified directory is not a Git repository."""

    folder: Path = field(default_factory=Path)
    message: str = "The specified directory is not a Git repository."
