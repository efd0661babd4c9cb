from __future__ import annotations

import ast
import fnmatch
import hashlib
import os
import re
import stat
import subprocess  # noqa: S404
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from repo_packer.config import DEFAULT_EXCLUDES, FILE_PROCESSOR, VCS_DIR, FileRecord, register_file_processor
from repo_packer.exceptions import NotAGitRepositoryError
from repo_packer.logging import logger

if TYPE_CHECKING:
    from collections.abc import Collection, Sequence


def relpath(path: Path, root: Path) -> str:
    """Send the relative path of path from root.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path from root to path, with POSIX separators.
            If path is not under root, returns the original path as a string.
    """
    try:
        return str(path.relative_to(root)).replace("\\", "/")
    except ValueError:
        return str(path)


def is_regular_file(path: Path) -> bool:
    """Check if a path is a regular file, without following symlinks.

    Args:
        path (Path): path to test.

    Returns:
        bool: True if the file is regular, False otherwise.
    """
    try:
        st = path.lstat()
        return stat.S_ISREG(st.st_mode)
    except OSError:
        return False


def sniff_text_utf8(path: Path, nbytes: int = 4096) -> bool:
    """Check if path point to a utf-8 encoded text file.

    Args:
        path (Path): path to test.
        nbytes (int, optional): number of bytes to read for testing. Defaults to 4096.

    Returns:
        bool: True if the file is utf-8 encoded text, False otherwise.
    """
    try:
        if not is_regular_file(path):
            return False
        with path.open("rb") as f:
            chunk = f.read(nbytes)
        if b"\x00" in chunk:
            return False
        chunk.decode("utf-8")
    except (OSError, UnicodeDecodeError):
        return False
    else:
        return True


def sha256_file(path: Path) -> str:
    """Compute and return the SHA-256 hex digest of a file.

    Reads the file in 1 MiB chunks to handle large files without excessive memory use.

    Args:
        path (Path): the file path to hash

    Returns:
        str: the SHA-256 hex digest of the file contents
    """
    h = hashlib.sha256()
    with path.open("rb") as f:
        for blk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(blk)
    return h.hexdigest()


def git_ls_files(repo: Path) -> list[Path]:
    """Get the list of tracked files in a git repository using `git ls-files`.

    Args:
        repo (Path): the root of the git repository to query

    Raises:
        NotAGitRepositoryError: if `.git` is missing.

    Returns:
        list[Path]: the list of tracked files within the repository
    """
    git_dir = repo / VCS_DIR
    if not git_dir.exists():
        raise NotAGitRepositoryError(folder=repo)
    out = subprocess.run(
        ["git", "ls-files", "-z"],  # noqa: S607
        cwd=str(repo),
        capture_output=True,
        check=True,
    )
    files: list[Path] = []
    for raw in out.stdout.split(b"\x00"):
        line = raw.decode("utf-8", errors="surrogateescape").strip()
        if not line:
            continue
        files.append(repo / line)
    return files


def walk_files(repo: Path, prune: Collection[str] = DEFAULT_EXCLUDES) -> list[Path]:
    """Walk the directory tree rooted at `repo` and return a list of all regular files.

    Args:
        repo (Path): the root directory to walk
        prune (Collection[str]): directory names not descended into

    Returns:
        list[Path]: a list of all files found
    """
    results: list[Path] = []
    for root, dirs, files in os.walk(repo):
        dirs[:] = sorted(d for d in dirs if d not in prune)
        for f in sorted(files):
            p = Path(root) / f
            if is_regular_file(p):
                results.append(p)
    return results


def list_repository_files(repo: Path, *, use_git: bool, prune: Collection[str] = DEFAULT_EXCLUDES) -> list[Path]:
    """List files, preferring `git ls-files` and falling back to a filesystem walk.

    Args:
        repo (Path): the repository root
        use_git (bool): whether to try `git ls-files` first
        prune (Collection[str]): directory names skipped by the fallback walk

    Returns:
        list[Path]: the files found
    """
    if use_git:
        try:
            return git_ls_files(repo)
        except (NotAGitRepositoryError, subprocess.CalledProcessError, OSError) as e:
            logger.info("Falling back to filesystem walk: %s", e)
    return walk_files(repo, prune=prune)


def in_default_excludes(repo: Path, path: Path) -> bool:
    """Check if a path is in the default excludes.

    Args:
        repo (Path): the root directory of the repository
        path (Path): the path to check

    Returns:
        bool: True if the path is in the default excludes, False otherwise
    """
    try:
        parts = path.relative_to(repo).parts
    except ValueError:
        return True
    return any(p in DEFAULT_EXCLUDES for p in parts)


def match_any_glob(rel: str, globs: Sequence[str]) -> bool:
    """Check if a relative path matches any of the provided glob patterns.

    Args:
        rel (str): the relative path to check
        globs (Sequence[str]): the glob patterns to match against

    Returns:
        bool: True if `rel` matches any pattern in `globs`, False otherwise
    """
    return any(fnmatch.fnmatch(rel, g) for g in globs)


def normalize_globs(globs: Sequence[str]) -> list[str]:
    """Normalize a sequence of path glob patterns.

    Normalize a sequence of glob patterns by stripping whitespace and
    replacing backslashes with forward slashes.

    Args:
        globs (Sequence[str]): the glob patterns to normalize

    Returns:
        list[str]: the normalized glob patterns
    """
    out: list[str] = []
    for g in globs:
        g2 = (g or "").strip()
        if not g2:
            continue
        out.append(g2.replace("\\", "/"))
    return out


def apply_filters(  # noqa: PLR0913
    files: Sequence[Path],
    repo: Path,
    includes: Sequence[str],
    excludes: Sequence[str],
    exclude_paths: Sequence[str],
    *,
    exclude_regex: str | None = None,
    use_default_excludes: bool = True,
) -> list[Path]:
    """Apply include/exclude filters to a list of files.

    Args:
        files (Sequence[Path]): the list of file paths to
            filter (absolute paths)
        repo (Path): the root path to relativize file paths against for filtering
        includes (Sequence[str]): glob patterns to include (relative to repo)
        excludes (Sequence[str]): glob patterns to exclude (relative to repo)
        exclude_paths (Sequence[str]): specific relative paths to exclude (relative to repo)
        exclude_regex (str | None): regular expression; matching relative paths are dropped
        use_default_excludes (bool): drop anything under a `DEFAULT_EXCLUDES` directory

    Returns:
        list[Path]: the filtered list of file paths, sorted by relative path
    """
    inc = normalize_globs(includes)
    exc = normalize_globs(excludes)
    exc_paths = [p.strip().strip("/").replace("\\", "/") for p in exclude_paths if p.strip()]
    exc_re = re.compile(exclude_regex) if exclude_regex else None

    out: list[Path] = []
    for f in files:
        if not is_regular_file(f):
            continue
        if use_default_excludes and in_default_excludes(repo, f):
            continue
        r = relpath(f, repo)
        if any(r == ep or r.startswith(ep + "/") for ep in exc_paths):
            continue
        if inc and not match_any_glob(r, inc):
            continue
        if exc and match_any_glob(r, exc):
            continue
        if exc_re is not None and exc_re.search(r):
            continue
        out.append(f)
    return sorted(set(out), key=lambda p: relpath(p, repo))


def build_tree_lines(root_name: str, rel_paths: Sequence[str]) -> list[str]:
    """Build a visual tree representation of file paths.

    Args:
        root_name (str): the name to use for the root of the tree
        rel_paths (Sequence[str]): the list of file paths relative to the root, using POSIX separators (e.g. "src/main.py")

    Returns:
        list[str]: a list of strings representing the tree structure, suitable for printing
    """
    rels = sorted(
        {p.strip("/").replace("\\", "/") for p in rel_paths if p.strip()},
        key=str.lower,
    )
    tree: dict[str, Any] = {}
    for rp in rels:
        cur = tree
        parts = rp.split("/")
        for i, part in enumerate(parts):
            if i == len(parts) - 1:
                cur.setdefault("__files__", set()).add(part)
            else:
                cur = cur.setdefault(part, {})

    lines: list[str] = [root_name]

    def walk(node: dict[str, Any], prefix: str) -> None:
        dirs = sorted([k for k in node if k != "__files__"], key=str.lower)
        files = sorted(node.get("__files__", set()), key=str.lower)
        entries: list[tuple[str, str, Any]] = []
        entries.extend(("dir", d, node[d]) for d in dirs)
        entries.extend(("file", f, None) for f in files)
        for idx, (kind, name, child) in enumerate(entries):
            last = idx == len(entries) - 1
            branch = "└── " if last else "├── "
            lines.append(prefix + branch + name + ("/" if kind == "dir" else ""))
            if kind == "dir":
                ext = "    " if last else "│   "
                walk(child, prefix + ext)

    walk(tree, "")
    return lines


def make_meta_string(rec: FileRecord) -> str:
    """Create a metadata string for a file record.

    Args:
        rec (FileRecord): the file record to create a metadata string for

    Returns:
        str: a string containing metadata about the file, such as size and SHA-256 digest
    """
    meta = f"size={rec.size} bytes"
    if rec.sha256:
        meta += f" sha256={rec.sha256}"
    return meta


def make_recs(
    files: Sequence[Path],
    repo: Path,
    max_file_size: int | None = None,
    *,
    no_sha: bool = True,
) -> list[FileRecord]:
    """Create a list of FileRecord objects for the given files.

    Args:
        files (Sequence[Path]): the list of file paths to
            create records for (absolute paths)
        repo (Path): the root path to relativize file paths against for the `rel` field
        max_file_size (int | None): size above which a record is flagged `is_too_big`
        no_sha (bool, optional): if True, do not compute SHA-256 digests and set `sha256` to an empty string for all files. Defaults to True.

    Returns:
        list[FileRecord]: a list of FileRecord objects with metadata for each file
    """
    recs: list[FileRecord] = []
    for f in files:
        try:
            st = f.lstat()
            digest = "" if (no_sha or st.st_size > 50_000_000) else sha256_file(f)  # noqa: PLR2004
            recs.append(
                FileRecord(
                    path=f,
                    rel=relpath(f, repo),
                    size=st.st_size,
                    mtime=st.st_mtime,
                    sha256=digest,
                    max_file_size=max_file_size,
                ),
            )
        except OSError as e:
            logger.warning("Skipping %s: %s", f, e)
    return sorted(recs, key=lambda r: r.rel)


def read_text_lines(path: Path, max_lines: int | None = None) -> list[str]:
    """Read a text file and return its lines.

    Args:
        path (Path): the file path to read
        max_lines (int|None): the maximum number of lines to read; if None, read all lines

    Returns:
        list[str]: the lines of the file
    """
    lines = path.read_text(encoding="utf-8", errors="ignore").splitlines()
    if max_lines is not None and len(lines) > max_lines:
        return [*lines[: max_lines - 1], "…"]
    return lines


@register_file_processor(".env")
def redact_env(path: Path) -> str:
    """Redact environment variable values from a text file.

    Only the variable names (keys) are kept, in sorted order. Lines that are
    empty, start with `#`, or do not contain an `=` character are ignored.

    Args:
        path (Path): the file path to read and redact

    Returns:
        str: a string containing the redacted environment variable names
    """
    lines = read_text_lines(path)
    keys: list[str] = []
    for ln in lines:
        s = ln.strip()
        if not s or s.startswith("#") or "=" not in s:
            continue
        k = s.split("=", 1)[0].strip()
        if k.startswith("export "):
            k = k[len("export ") :].strip()
        if k:
            keys.append(k)
    keys = sorted(set(keys), key=str.lower)
    return "\n".join(keys)


@register_file_processor([".pre-commit-config.yaml", ".pre-commit-config.yml"])
def summarize_precommit(path: Path) -> str:
    """Summarize the hooks defined in a pre-commit configuration file.

    Args:
        path (Path): the file path to the pre-commit configuration file

    Returns:
        str: one `hook (repo@rev)` line per hook, or the raw text when the YAML cannot be parsed
    """
    text = path.read_text(encoding="utf-8", errors="ignore")
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        logger.warning("Failed to parse pre-commit %s: %s", path, e)
        return text
    hooks: list[str] = []
    repos = data.get("repos", []) if isinstance(data, dict) else []
    if not isinstance(repos, list):
        repos = []
    for repo in repos:
        if not isinstance(repo, dict):
            continue
        r = str(repo.get("repo", "unknown"))
        rev = str(repo.get("rev", "unknown"))
        hs = repo.get("hooks", [])
        if not isinstance(hs, list):
            continue
        for hk in hs:
            if not isinstance(hk, dict):
                continue
            hid = str(hk.get("id", "unknown"))
            hooks.append(f"{hid} ({r}@{rev})")
    hooks = sorted(set(hooks), key=str.lower)
    return "\n".join(hooks)


@register_file_processor(["license", "license.md", "license.txt"])
def license_head(path: Path, lines: int = 1) -> str:
    """Extract the head lines of a license file.

    Args:
        path (Path): the file path to the license file
        lines (int): the number of lines to include from the head of the file

    Returns:
        str: the first `lines` lines of the license file
    """
    license_lines = read_text_lines(path)
    head = license_lines[: max(0, lines)]
    return "\n".join(head)


@register_file_processor([".pem", ".key", ".crt"])
def pem_stub(path: Path) -> str:
    """Generate a stub string for a PEM file: its digest and armor lines.

    Args:
        path (Path): the file path to the PEM file

    Returns:
        str: the SHA-256 digest and the first and last lines of the file,
        or an error message if the file cannot be read
    """
    try:
        lines = read_text_lines(path)
        first = lines[0] if lines else ""
        last = lines[-1] if len(lines) > 1 else ""
        digest = sha256_file(path)
        parts = [f"sha256={digest}"]
        if first:
            parts.append(first)
        if last and last != first:
            parts.append(last)
        return "\n".join(parts).strip()
    except OSError as e:
        return f"pem_unreadable error={e}"


def get_init_content_if_not_empty(path: Path) -> str:
    """Get the content of an `__init__.py` file if it contains code.

    Args:
        path (Path): the `__init__.py` file

    Returns:
        str: the file content if it has code, "(empty __init__.py)" if it is empty
            or holds only a docstring, or the raw content if it cannot be parsed
    """
    src = path.read_text(encoding="utf-8", errors="ignore")
    try:
        body = ast.parse(src).body
    except SyntaxError:
        return src
    if not body:
        return "(empty __init__.py)"
    if len(body) == 1 and isinstance(body[0], ast.Expr):
        v = body[0].value
        if isinstance(v, ast.Constant) and isinstance(v.value, str):
            return "(empty __init__.py)"
    return src


def take_head_tail(lines: list[str], head: int, tail: int) -> str:
    """Select the first and last lines of a file.

    Args:
        lines (list[str]): the lines of the file to select from
        head (int): the number of lines to include from the head of the file
        tail (int): the number of lines to include from the tail of the file

    Returns:
        str: a string containing the selected head and tail lines,
            separated by an ellipsis if both are included
    """
    head_n = max(0, head)
    tail_n = max(0, tail)
    if head_n == 0 and tail_n == 0:
        return ""
    if head_n + tail_n >= len(lines):
        return "\n".join(lines)
    out: list[str] = []
    out.extend(lines[:head_n])
    out.append("…")
    out.extend(lines[-tail_n:] if tail_n else [])
    return "\n".join(out)


def file_to_text(
    rec: FileRecord,
    *,
    text_head_lines: int,
    text_tail_lines: int,
    security_check: bool = True,
) -> tuple[str, bool]:
    """Convert a file to the text shown in the packed document.

    Registered processors (redacted `.env`, PEM stubs, pre-commit summaries,
    license heads) apply when `security_check` is on. Binary files become a
    size stub and text files above `rec.max_file_size` keep only their head
    and tail.

    Args:
        rec (FileRecord): The file record containing metadata about the file.
        text_head_lines (int): Number of head lines to include for large text files.
        text_tail_lines (int): Number of tail lines to include for large text files.
        security_check (bool): Whether registered processors apply.

    Returns:
        tuple[str, bool]: The text to render and whether the content is text-like.
    """
    p = rec.path
    processor = FILE_PROCESSOR.get(p.name.lower()) or FILE_PROCESSOR.get(p.suffix.lower())

    if security_check and processor is not None:
        result = (processor(p), True)
    elif p.name == "__init__.py":
        result = (get_init_content_if_not_empty(p), True)
    elif not rec.is_text or not sniff_text_utf8(p):
        result = (make_meta_string(rec), False)
    elif rec.is_too_big:
        body = take_head_tail(read_text_lines(p), head=text_head_lines, tail=text_tail_lines)
        meta = make_meta_string(rec)
        result = (meta if not body else f"{meta}\n{body}", True)
    else:
        result = (p.read_text(encoding="utf-8", errors="ignore"), True)
    return result
