from __future__ import annotations

from pathlib import Path

import pytest

from conftest import write_tree
from repo_packer.exceptions import ScanError
from repo_packer.scanner import default_exclusions, estimate_tokens, scan, select_candidates, walk_tree

KB = 1024


def _sized_tree(root: Path, sizes: dict[str, int]) -> None:
    write_tree(root, {rel: b"x" * size for rel, size in sizes.items()})


@pytest.mark.unit
@pytest.mark.parametrize(("size", "tokens"), [(0, 0), (1, 1), (4, 1), (5, 2), (2048, 512)])
def test_estimate_tokens_rounds_up(size: int, tokens: int) -> None:
    assert estimate_tokens(size) == tokens


@pytest.mark.unit
def test_scan_returns_top_n_when_few_files_exceed_threshold(tmp_path: Path) -> None:
    _sized_tree(tmp_path, {"big.bin": 3 * KB, "a.txt": 30, "b.txt": 20, "c.txt": 10})

    candidates = scan(tmp_path, [], threshold_bytes=KB, top_n=3)

    assert [c.relative_path for c in candidates] == ["big.bin", "a.txt", "b.txt"]
    assert [c.size_bytes for c in candidates] == [3 * KB, 30, 20]
    assert candidates[0].token_estimate == 768


@pytest.mark.unit
def test_scan_returns_every_file_over_threshold_when_there_are_many(tmp_path: Path) -> None:
    _sized_tree(
        tmp_path,
        {"one.bin": 2 * KB, "two.bin": 5 * KB, "three.bin": 4 * KB, "four.bin": 3 * KB, "small.txt": 10},
    )

    candidates = scan(tmp_path, [], threshold_bytes=KB, top_n=2)

    assert [c.relative_path for c in candidates] == ["two.bin", "three.bin", "four.bin", "one.bin"]


@pytest.mark.unit
def test_scan_returns_all_files_of_a_tiny_tree(tmp_path: Path) -> None:
    _sized_tree(tmp_path, {"README.md": 7, "src/app.py": 15, "docs/notes.txt": 11})

    candidates = scan(tmp_path, [], threshold_bytes=KB, top_n=10)

    assert [c.relative_path for c in candidates] == ["src/app.py", "docs/notes.txt", "README.md"]
    assert all(c.size_bytes <= KB for c in candidates)


@pytest.mark.unit
def test_scan_breaks_size_ties_by_path(tmp_path: Path) -> None:
    _sized_tree(tmp_path, {"b.txt": 10, "a.txt": 10, "c.txt": 10})

    candidates = scan(tmp_path, [], threshold_bytes=KB, top_n=10)

    assert [c.relative_path for c in candidates] == ["a.txt", "b.txt", "c.txt"]


@pytest.mark.unit
def test_scan_skips_vcs_directory_and_excluded_globs(tmp_path: Path) -> None:
    _sized_tree(
        tmp_path,
        {
            ".git/objects/pack.bin": 10 * KB,
            "assets/video.mp4": 8 * KB,
            "src/main.py": 100,
            "node_modules/lib/index.js": 200,
        },
    )

    candidates = scan(tmp_path, ["*.mp4"], threshold_bytes=KB, top_n=10)

    paths = [c.relative_path for c in candidates]
    assert paths == ["node_modules/lib/index.js", "src/main.py"]


@pytest.mark.unit
def test_walk_tree_rejects_missing_root(tmp_path: Path) -> None:
    with pytest.raises(ScanError):
        walk_tree(tmp_path / "missing", [])


@pytest.mark.unit
def test_select_candidates_of_empty_tree_is_empty() -> None:
    assert select_candidates([], threshold_bytes=KB, top_n=10) == []


@pytest.mark.unit
def test_default_exclusions_keep_only_files_over_threshold(tmp_path: Path) -> None:
    _sized_tree(tmp_path, {"big.bin": 3 * KB, "edge.bin": KB, "a.txt": 30})
    candidates = scan(tmp_path, [], threshold_bytes=KB, top_n=10)

    assert default_exclusions(candidates, KB) == ["big.bin"]
