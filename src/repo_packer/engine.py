"""Packing engine: directory + configuration -> one document on disk."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from repo_packer.config import DEFAULT_EXCLUDES, VCS_DIR
from repo_packer.file_manipulation import apply_filters, list_repository_files, make_recs
from repo_packer.logging import logger
from repo_packer.output_construction import build_document

if TYPE_CHECKING:
    from pathlib import Path

    from repo_packer.config import FileRecord, PackConfig
    from repo_packer.output_construction import ProgressCallback


def collect_records(directory: Path, config: PackConfig) -> list[FileRecord]:
    """List and filter the files of `directory` as `config` asks.

    Args:
        directory (Path): the repository root
        config (PackConfig): include globs and ignore rules

    Returns:
        list[FileRecord]: records sorted by relative path
    """
    ignore = config.ignore
    prune = DEFAULT_EXCLUDES if ignore.use_default_patterns else {VCS_DIR}
    files = list_repository_files(directory, use_git=ignore.use_gitignore, prune=prune)
    selected = apply_filters(
        files=files,
        repo=directory,
        includes=config.include,
        excludes=ignore.custom_patterns,
        exclude_paths=ignore.exclude_paths,
        exclude_regex=ignore.regex_filter,
        use_default_excludes=ignore.use_default_patterns,
    )
    return make_recs(selected, directory, max_file_size=config.max_file_bytes)


def pack_directory(
    directory: Path,
    config: PackConfig,
    progress_callback: ProgressCallback | None = None,
) -> Path:
    """Pack `directory` into `config.output_path`.

    The document is written to a sibling temporary file and renamed into
    place, so the output path only ever holds a complete document. The
    parent directory must already exist; it is never created here.

    Args:
        directory (Path): the repository root
        config (PackConfig): what to include and how to render it
        progress_callback (ProgressCallback | None): called with a message per processed file

    Returns:
        Path: `config.output_path`

    Raises:
        FileNotFoundError: if the parent directory of `config.output_path` is missing.
    """
    recs = collect_records(directory, config)
    logger.info("pack.start", directory=str(directory), files=len(recs), style=str(config.style))
    document = build_document(recs, config=config, progress_callback=progress_callback)

    output = config.output_path
    partial = output.with_name(output.name + ".partial")
    try:
        partial.write_text(document, encoding="utf-8")
        os.replace(partial, output)  # noqa: PTH105
    finally:
        partial.unlink(missing_ok=True)
    return output
