from __future__ import annotations

from pathlib import Path

import pytest

from conftest import write_tree
from repo_packer.config import FileRecord, PackConfig
from repo_packer.file_manipulation import make_recs, walk_files
from repo_packer.models import OutputStyle
from repo_packer.output_construction import build_document, build_markdown, build_xml, format_body


def _recs(root: Path) -> list[FileRecord]:
    return make_recs(walk_files(root), root, max_file_size=1_000)


@pytest.mark.unit
def test_format_body_numbers_lines_after_dropping_blank_ones() -> None:
    text = "a\n\n  \nb\n"

    assert format_body(text, show_line_numbers=False, remove_empty_lines=True) == "a\nb"
    assert format_body(text, show_line_numbers=True, remove_empty_lines=True) == "1: a\n2: b"


@pytest.mark.unit
def test_build_markdown_renders_headers_tree_and_fences(tmp_path: Path) -> None:
    write_tree(tmp_path, {"src/app.py": "print('ok')\n", "README.md": "# tiny\n"})
    config = PackConfig(output_path=Path("out.md"), title="tiny")

    output = build_markdown(_recs(tmp_path), config=config)

    assert output.startswith("# tiny\n")
    assert "files=2" in output
    assert "## Repository Structure" in output
    assert "├── src/" in output
    assert "### src/app.py\n```python\nprint('ok')\n```" in output
    assert "### README.md\n```markdown\n# tiny\n```" in output


@pytest.mark.unit
def test_build_markdown_widens_fence_around_embedded_fences(tmp_path: Path) -> None:
    write_tree(tmp_path, {"doc.md": "```python\nx = 1\n```\n"})
    config = PackConfig(output_path=Path("out.md"), title="tiny")

    output = build_markdown(_recs(tmp_path), config=config)

    assert "### doc.md\n````markdown\n```python" in output


@pytest.mark.unit
def test_build_markdown_reports_each_file_to_the_callback(tmp_path: Path) -> None:
    write_tree(tmp_path, {"a.txt": "a\n", "b/c.txt": "c\n"})
    seen: list[str] = []

    build_markdown(
        _recs(tmp_path),
        config=PackConfig(output_path=Path("out.md")),
        progress_callback=seen.append,
    )

    assert seen == ["Processing file: a.txt", "Processing file: b/c.txt"]


@pytest.mark.unit
def test_build_markdown_stubs_binary_and_redacts_env(tmp_path: Path) -> None:
    write_tree(
        tmp_path,
        {"blob.bin": b"\x00\x01\x02", ".env": "API_KEY=secret\n# comment\nDEBUG=1\n"},
    )

    output = build_markdown(_recs(tmp_path), config=PackConfig(output_path=Path("out.md")))

    assert "size=3 bytes" in output
    assert "secret" not in output
    assert "API_KEY\nDEBUG" in output


@pytest.mark.unit
def test_build_markdown_keeps_secrets_when_security_check_is_off(tmp_path: Path) -> None:
    write_tree(tmp_path, {".env": "API_KEY=secret\n"})
    config = PackConfig(output_path=Path("out.md"), security_check=False)

    output = build_markdown(_recs(tmp_path), config=config)

    assert "API_KEY=secret" in output


@pytest.mark.unit
def test_build_xml_escapes_content(tmp_path: Path) -> None:
    write_tree(tmp_path, {"a&b.html": "<p>1 < 2</p>\n"})
    config = PackConfig(output_path=Path("out.xml"), style=OutputStyle.XML, title="tiny")

    output = build_xml(_recs(tmp_path), config=config)

    assert output.startswith('<repository name="tiny" files="1">')
    assert '<file path="a&amp;b.html">' in output
    assert "&lt;p&gt;1 &lt; 2&lt;/p&gt;" in output
    assert output.rstrip().endswith("</files>\n</repository>")


@pytest.mark.unit
@pytest.mark.parametrize("style", list(OutputStyle))
def test_build_document_is_deterministic(tmp_path: Path, style: OutputStyle) -> None:
    write_tree(tmp_path, {"z.txt": "z\n", "a/b.py": "b = 1\n", "a/a.py": "a = 1\n"})
    config = PackConfig(output_path=Path("out"), style=style, title="tiny")

    first = build_document(_recs(tmp_path), config=config)
    second = build_document(_recs(tmp_path), config=config)

    assert first == second
    assert first.index("a/a.py") < first.index("a/b.py") < first.rindex("z.txt")
