from pathlib import Path

import pytest

from conftest import write_tree
from repo_packer.config import IgnoreConfig, PackConfig
from repo_packer.engine import collect_records, pack_directory
from repo_packer.file_manipulation import apply_filters


@pytest.mark.unit
def test_apply_filters_respects_includes_excludes(tmp_path: Path) -> None:
    repo = tmp_path
    keep = repo / "src" / "main.py"
    drop = repo / "src" / "data.bin"
    keep.parent.mkdir(parents=True, exist_ok=True)
    keep.write_text("print('ok')", encoding="utf-8")
    drop.write_text("\x00\x01", encoding="utf-8")

    files = [keep, drop]
    selected = apply_filters(
        files=files,
        repo=repo,
        includes=["src/*.py"],
        excludes=["**/*.bin"],
        exclude_paths=[],
    )

    assert selected == [keep]


@pytest.mark.unit
def test_apply_filters_drops_exact_paths_prefixes_and_regex_matches(tmp_path: Path) -> None:
    write_tree(
        tmp_path,
        {
            "assets/big.bin": "x",
            "assets/bigger.bin": "x",
            "vendor/lib/a.js": "x",
            "poetry.lock": "x",
            "src/main.py": "x",
        },
    )
    files = sorted(p for p in tmp_path.rglob("*") if p.is_file())

    selected = apply_filters(
        files=files,
        repo=tmp_path,
        includes=[],
        excludes=[],
        exclude_paths=["assets/big.bin", "vendor/"],
        exclude_regex=r"\.lock$",
    )

    assert selected == [tmp_path / "assets" / "bigger.bin", tmp_path / "src" / "main.py"]


@pytest.mark.unit
def test_collect_records_can_keep_default_excluded_directories(tmp_path: Path) -> None:
    write_tree(tmp_path, {"dist/app.js": "x", "src/main.py": "x"})

    default = collect_records(tmp_path, PackConfig(output_path=tmp_path / "out.md"))
    everything = collect_records(
        tmp_path,
        PackConfig(output_path=tmp_path / "out.md", ignore=IgnoreConfig(use_default_patterns=False)),
    )

    assert [r.rel for r in default] == ["src/main.py"]
    assert [r.rel for r in everything] == ["dist/app.js", "src/main.py"]


@pytest.mark.unit
def test_pack_directory_writes_output_atomically(tmp_path: Path) -> None:
    source = tmp_path / "source"
    write_tree(source, {"a.txt": "hello\n"})
    output = tmp_path / "work" / "packed-output.md"
    output.parent.mkdir()

    result = pack_directory(source, PackConfig(output_path=output, title="source"))

    assert result == output
    assert "### a.txt" in output.read_text(encoding="utf-8")
    assert not (tmp_path / "work" / "packed-output.md.partial").exists()


@pytest.mark.unit
def test_pack_directory_leaves_no_output_when_rendering_fails(tmp_path: Path) -> None:
    source = tmp_path / "source"
    write_tree(source, {"a.txt": "hello\n"})
    output = tmp_path / "packed-output.md"

    def explode(message: str) -> None:
        raise RuntimeError(message)

    with pytest.raises(RuntimeError, match="Processing file: a.txt"):
        pack_directory(source, PackConfig(output_path=output), progress_callback=explode)

    assert not output.exists()


@pytest.mark.unit
def test_pack_directory_does_not_recreate_a_removed_work_directory(tmp_path: Path) -> None:
    source = tmp_path / "source"
    write_tree(source, {"a.txt": "hello\n"})
    output = tmp_path / "removed" / "packed-output.md"

    with pytest.raises(FileNotFoundError):
        pack_directory(source, PackConfig(output_path=output))

    assert not output.parent.exists()
