from __future__ import annotations

from enum import StrEnum, auto
from functools import wraps
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

from repo_packer.models import OutputStyle

if TYPE_CHECKING:
    from collections.abc import Callable

    FileProcessorFn = Callable[[Path], str]

_ = Path()


class FileType(StrEnum):
    """Categorization of file types for rendering purposes.

    This is a heuristic classification based on file extensions, used to pick
    a code fence language and to decide whether contents are worth including.
    """

    TEXT = auto()
    BINARY = auto()
    IMAGE = auto()
    PYTHON = auto()
    TOML = auto()
    JSON = auto()
    MARKDOWN = auto()
    YAML = auto()
    HTML = auto()
    CSS = auto()
    JAVASCRIPT = auto()
    TYPESCRIPT = auto()
    BASH = auto()
    RUST = auto()
    GO = auto()
    PHP = auto()
    SQL = auto()
    JAVA = auto()
    C = auto()
    CPP = auto()
    XML = auto()
    INI = auto()
    PEM = auto()
    OTHER = auto()


EXT2LANG: dict[str, FileType] = {
    ".bash": FileType.BASH,
    ".bmp": FileType.IMAGE,
    ".c": FileType.C,
    ".cc": FileType.CPP,
    ".cfg": FileType.INI,
    ".conf": FileType.INI,
    ".cpp": FileType.CPP,
    ".crt": FileType.PEM,
    ".css": FileType.CSS,
    ".cxx": FileType.CPP,
    ".gif": FileType.IMAGE,
    ".go": FileType.GO,
    ".h": FileType.C,
    ".hpp": FileType.CPP,
    ".htm": FileType.HTML,
    ".html": FileType.HTML,
    ".ico": FileType.IMAGE,
    ".ini": FileType.INI,
    ".jar": FileType.BINARY,
    ".java": FileType.JAVA,
    ".jpeg": FileType.IMAGE,
    ".jpg": FileType.IMAGE,
    ".js": FileType.JAVASCRIPT,
    ".json": FileType.JSON,
    ".jsx": FileType.JAVASCRIPT,
    ".key": FileType.PEM,
    ".markdown": FileType.MARKDOWN,
    ".md": FileType.MARKDOWN,
    ".mjs": FileType.JAVASCRIPT,
    ".pdf": FileType.BINARY,
    ".pem": FileType.PEM,
    ".php": FileType.PHP,
    ".png": FileType.IMAGE,
    ".py": FileType.PYTHON,
    ".rs": FileType.RUST,
    ".sh": FileType.BASH,
    ".so": FileType.BINARY,
    ".sql": FileType.SQL,
    ".svg": FileType.IMAGE,
    ".toml": FileType.TOML,
    ".ts": FileType.TYPESCRIPT,
    ".tsx": FileType.TYPESCRIPT,
    ".txt": FileType.TEXT,
    ".webp": FileType.IMAGE,
    ".xml": FileType.XML,
    ".yaml": FileType.YAML,
    ".yml": FileType.YAML,
    ".zip": FileType.BINARY,
    ".zsh": FileType.BASH,
}

_FENCE_LANGUAGE: dict[FileType, str] = {
    FileType.PYTHON: "python",
    FileType.TOML: "toml",
    FileType.JSON: "json",
    FileType.MARKDOWN: "markdown",
    FileType.YAML: "yaml",
    FileType.HTML: "html",
    FileType.CSS: "css",
    FileType.JAVASCRIPT: "javascript",
    FileType.TYPESCRIPT: "typescript",
    FileType.BASH: "bash",
    FileType.RUST: "rust",
    FileType.GO: "go",
    FileType.PHP: "php",
    FileType.SQL: "sql",
    FileType.JAVA: "java",
    FileType.C: "c",
    FileType.CPP: "cpp",
    FileType.XML: "xml",
    FileType.INI: "ini",
    FileType.PEM: "",
    FileType.IMAGE: "",
    FileType.BINARY: "",
    FileType.TEXT: "",
    FileType.OTHER: "",
}

VCS_DIR = ".git"

DEFAULT_EXCLUDES = {
    VCS_DIR,
    ".venv",
    "venv",
    "__pycache__",
    ".mypy_cache",
    ".ruff_cache",
    ".pytest_cache",
    ".ipynb_checkpoints",
    "node_modules",
    "dist",
    "build",
    ".DS_Store",
    ".idea",
    ".vscode",
}

FILE_PROCESSOR: dict[str, Callable[[Path], str]] = {}


class FileRecord(BaseModel):
    """Lightweight metadata for a file found under a repository root.

    Attributes:
        path: Absolute path to the file on disk.
        rel: Path relative to the repository root, POSIX separators.
        size: File size in bytes, measured once when the record is made.
        mtime: POSIX mtime (float seconds since epoch).
        sha256: SHA-256 hex digest of file contents (may be empty).
        max_file_size: Size above which contents are reduced to head/tail.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    path: Path = Field(..., description="Absolute file path")
    rel: str = Field(..., description="File path relative to repository root")
    size: int = Field(..., ge=0, description="File size in bytes")
    mtime: float = Field(default=0.0, description="POSIX modification time (seconds)")
    sha256: str = Field("", description="SHA-256 hex digest (optional)")
    max_file_size: int | None = Field(
        default=None,
        description="Maximum file size in bytes for including contents; None means no limit",
    )

    @computed_field
    @property
    def file_type(self) -> FileType:
        """Categorize the file type based on extension."""
        return EXT2LANG.get(self.path.suffix.lower(), FileType.OTHER)

    @computed_field
    @property
    def language(self) -> str:
        """Get the suggested code fence language based on the file type."""
        return _FENCE_LANGUAGE.get(self.file_type, "")

    @computed_field
    @property
    def is_text(self) -> bool:
        """Heuristic check if the file is text-like based on its type."""
        return self.file_type not in {FileType.IMAGE, FileType.BINARY}

    @computed_field
    @property
    def is_too_big(self) -> bool:
        """Determine if the file is too big to include in full."""
        if self.max_file_size is None:
            return False
        return self.size > self.max_file_size


class IgnoreConfig(BaseModel):
    """Which files the packing engine leaves out."""

    model_config = ConfigDict(frozen=True)

    use_gitignore: bool = Field(default=True, description="List files with git ls-files when possible.")
    use_default_patterns: bool = Field(default=True, description="Prune DEFAULT_EXCLUDES directories.")
    custom_patterns: list[str] = Field(default_factory=list, description="Exclude globs.")
    exclude_paths: list[str] = Field(default_factory=list, description="Exact relative paths or prefixes.")
    regex_filter: str | None = Field(default=None, description="Exclude relative paths matching this regex.")


class PackConfig(BaseModel):
    """Configuration of one packing engine run."""

    model_config = ConfigDict(frozen=True)

    output_path: Path = Field(..., description="Where the rendered document is written.")
    style: OutputStyle = Field(default=OutputStyle.MARKDOWN, description="Rendering style.")
    title: str = Field(default="repository", description="Name shown as the tree root.")
    include: list[str] = Field(default_factory=list, description="Include globs; empty keeps everything.")
    ignore: IgnoreConfig = Field(default_factory=IgnoreConfig)
    security_check: bool = Field(default=True, description="Redact secrets-bearing files.")
    max_file_bytes: int = Field(default=500_000, description="Text files above are reduced to head/tail.")
    text_head_lines: int = Field(default=200, description="Head lines for big text files.")
    text_tail_lines: int = Field(default=80, description="Tail lines for big text files.")
    show_line_numbers: bool = Field(default=False, description="Prefix lines with their number.")
    remove_empty_lines: bool = Field(default=False, description="Drop blank lines from file bodies.")


def register_file_processor(
    key: str | list[str],
) -> Callable[[FileProcessorFn], FileProcessorFn]:
    """Decorator to register a file processing function based on file suffix or name.

    Registered processors replace the raw contents of matching files when the
    engine runs with `security_check` enabled.

    Args:
        key (str | list[str]): The file suffix (e.g. ".pem") or exact lower-case filename
            (e.g. "license") the decorated function handles. Can be a single string
            or a list of strings for multiple keys.

    Returns:
        Callable[[FileProcessorFn], FileProcessorFn]: A decorator that registers the given function
        in the FILE_PROCESSOR mapping under the specified key(s) and returns the original function.
    """

    def decorator(func: FileProcessorFn) -> FileProcessorFn:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:  # noqa: ANN401
            return func(*args, **kwargs)

        if isinstance(key, list):
            for k in key:
                FILE_PROCESSOR[k] = wrapper
        else:
            FILE_PROCESSOR[key] = wrapper
        return wrapper

    return decorator
