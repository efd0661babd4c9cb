from __future__ import annotations

import io
from typing import TYPE_CHECKING
from xml.sax.saxutils import escape, quoteattr

from repo_packer.file_manipulation import build_tree_lines, file_to_text
from repo_packer.models import OutputStyle

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from repo_packer.config import FileRecord, PackConfig

    ProgressCallback = Callable[[str], None]

HEADER_NOTE = (
    "This file is a merged representation of the repository's files, "
    "packed into a single document for consumption by language models."
)


def format_body(text: str, *, show_line_numbers: bool, remove_empty_lines: bool) -> str:
    """Apply the per-line options of a pack run to a file body.

    Args:
        text (str): the file body
        show_line_numbers (bool): prefix each line with its 1-based number
        remove_empty_lines (bool): drop whitespace-only lines

    Returns:
        str: the formatted body
    """
    lines = text.splitlines()
    if remove_empty_lines:
        lines = [ln for ln in lines if ln.strip()]
    if show_line_numbers:
        width = len(str(len(lines))) if lines else 1
        lines = [f"{i:>{width}}: {ln}" for i, ln in enumerate(lines, start=1)]
    return "\n".join(lines)


def _render_files(
    recs: Sequence[FileRecord],
    config: PackConfig,
    progress_callback: ProgressCallback | None,
) -> list[tuple[FileRecord, str]]:
    bodies: list[tuple[FileRecord, str]] = []
    for rec in recs:
        if progress_callback is not None:
            progress_callback(f"Processing file: {rec.rel}")
        body, is_text = file_to_text(
            rec,
            text_head_lines=config.text_head_lines,
            text_tail_lines=config.text_tail_lines,
            security_check=config.security_check,
        )
        if is_text:
            body = format_body(
                body,
                show_line_numbers=config.show_line_numbers,
                remove_empty_lines=config.remove_empty_lines,
            )
        bodies.append((rec, body))
    return bodies


def build_markdown(
    recs: Sequence[FileRecord],
    *,
    config: PackConfig,
    progress_callback: ProgressCallback | None = None,
) -> str:
    """Build a markdown string representing the repository contents.

    The markdown includes a header, a visual tree of the file structure, and a
    fenced section for each file with content reduced according to heuristics
    (redacted .env files, summarized pre-commit configs, truncated large files).
    The output depends only on the records and the configuration.

    Args:
        recs (Sequence[FileRecord]): the file records to include, already ordered
        config (PackConfig): title and per-file rendering options
        progress_callback (ProgressCallback | None): called once per file

    Returns:
        str: the generated markdown document
    """
    out = io.StringIO()
    out.write(f"# {config.title}\n\n")
    out.write(f"{HEADER_NOTE}\n\n")
    out.write(f"files={len(recs)}\n\n")

    out.write("## Repository Structure\n")
    out.write("```text\n")
    out.write("\n".join(build_tree_lines(config.title, [r.rel for r in recs])))
    out.write("\n```\n\n")

    out.write("## Repository Files\n\n")
    for rec, body in _render_files(recs, config, progress_callback):
        lang = rec.language or "text"
        fence = "````" if "```" in body else "```"
        out.write(f"### {rec.rel}\n")
        out.write(f"{fence}{lang}\n{body}\n{fence}\n\n")

    return out.getvalue().rstrip() + "\n"


def build_xml(
    recs: Sequence[FileRecord],
    *,
    config: PackConfig,
    progress_callback: ProgressCallback | None = None,
) -> str:
    """Build an XML string representing the repository contents.

    Same content as `build_markdown`, laid out as `<summary>`,
    `<repository_structure>` and one `<file path="...">` element per file.

    Args:
        recs (Sequence[FileRecord]): the file records to include, already ordered
        config (PackConfig): title and per-file rendering options
        progress_callback (ProgressCallback | None): called once per file

    Returns:
        str: the generated XML document
    """
    out = io.StringIO()
    out.write(f"<repository name={quoteattr(config.title)} files=\"{len(recs)}\">\n")
    out.write(f"<summary>\n{escape(HEADER_NOTE)}\n</summary>\n\n")
    out.write("<repository_structure>\n")
    out.write(escape("\n".join(build_tree_lines(config.title, [r.rel for r in recs]))))
    out.write("\n</repository_structure>\n\n")

    out.write("<files>\n")
    for rec, body in _render_files(recs, config, progress_callback):
        out.write(f"<file path={quoteattr(rec.rel)}>\n{escape(body)}\n</file>\n\n")
    out.write("</files>\n</repository>\n")
    return out.getvalue()


def build_document(
    recs: Sequence[FileRecord],
    *,
    config: PackConfig,
    progress_callback: ProgressCallback | None = None,
) -> str:
    """Render `recs` in the style selected by `config`."""
    if config.style is OutputStyle.XML:
        return build_xml(recs, config=config, progress_callback=progress_callback)
    return build_markdown(recs, config=config, progress_callback=progress_callback)
