from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
import pytest

from repo_packer.models import ProgressEvent
from repo_packer.settings import Settings

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from repo_packer.bridge import ProgressBridge

# Stands in for `git clone --progress URL DEST`: git-style progress on stderr
# (carriage-return separated), then a small checkout at DEST.
CLONE_SCRIPT = r"""
import pathlib, sys, time
url, dest = sys.argv[1], pathlib.Path(sys.argv[2])
mode = sys.argv[3] if len(sys.argv) > 3 else "ok"
sys.stderr.write("Cloning into '%s'...\n" % dest)
if mode == "fail":
    sys.stderr.write("fatal: repository '%s' not found\n" % url)
    sys.exit(128)
if mode == "hang":
    time.sleep(30)
for pct in (0, 10, 10, 45, 90, 100):
    sys.stderr.write("Receiving objects: %3d%% (%d/100)\r" % (pct, pct))
    sys.stderr.flush()
sys.stderr.write("Receiving objects: 100% (100/100), done.\n")
dest.mkdir(parents=True, exist_ok=True)
(dest / "README.md").write_text("# tiny\n", encoding="utf-8")
(dest / "src").mkdir()
(dest / "src" / "app.py").write_text("print('hello')\n", encoding="utf-8")
(dest / "data.txt").write_text("x" * 2048, encoding="utf-8")
"""

TINY_FILES: dict[str, str] = {
    "README.md": "# tiny\n",
    "src/app.py": "print('hello')\n",
    "docs/notes.txt": "some notes\n",
}


def clone_command(mode: str = "ok") -> Callable[[str, Path], list[str]]:
    def build(url: str, destination: Path) -> list[str]:
        return [sys.executable, "-c", CLONE_SCRIPT, url, str(destination), mode]

    return build


def metadata_client(size_kb: int | None = 12, status: int = 200) -> httpx.AsyncClient:
    """Async client answering every metadata query with `size_kb`."""

    def handler(request: httpx.Request) -> httpx.Response:
        if status != 200:  # noqa: PLR2004
            return httpx.Response(status, json={"message": "Not Found"})
        body = {"full_name": request.url.path.removeprefix("/repos/")}
        if size_kb is not None:
            body["size"] = size_kb
        return httpx.Response(status, json=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def write_tree(root: Path, files: Mapping[str, str | bytes]) -> None:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")


class FakeFetcher:
    """Writes a fixed tree instead of cloning, reporting git-like progress."""

    def __init__(self, files: Mapping[str, str | bytes] | None = None, error: Exception | None = None) -> None:
        self.files = dict(TINY_FILES if files is None else files)
        self.error = error
        self.destinations: list[Path] = []

    async def fetch(
        self,
        url: str,  # noqa: ARG002
        destination: Path,
        max_size_bytes: int,  # noqa: ARG002
        bridge: ProgressBridge[ProgressEvent],
        *,
        start: float = 0.0,
        end: float = 100.0,
    ) -> None:
        self.destinations.append(destination)
        bridge.emit(ProgressEvent(text="Cloning repository: 50%", percent=(start + end) / 2))
        if self.error is not None:
            raise self.error
        write_tree(destination, self.files)
        bridge.emit(ProgressEvent(text="Repository cloned", percent=end, terminal=True))


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        temp_root=tmp_path / "work",
        store_root=tmp_path / "store",
        selection_timeout_seconds=0.2,
        clone_timeout_seconds=10,
    )
