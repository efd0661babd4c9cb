from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path

import pytest

from conftest import TINY_FILES, write_tree
from repo_packer.adapter import CEILING_MARGIN, PROGRESS_SPAN, PackAdapter, callback_progress
from repo_packer.bridge import ProgressBridge
from repo_packer.config import PackConfig
from repo_packer.exceptions import PackError
from repo_packer.models import OutputStyle, ProgressEvent


async def _drain(bridge: ProgressBridge[ProgressEvent]) -> list[ProgressEvent]:
    bridge.close()
    return [event async for event in bridge]


@pytest.mark.unit
def test_callback_progress_is_increasing_and_stays_below_ceiling() -> None:
    values = [callback_progress(n, base=45.0) for n in range(1, 400)]

    assert values[0] > 45.0
    assert all(b >= a for a, b in zip(values, values[1:], strict=False))
    assert max(values) <= 45.0 + PROGRESS_SPAN - CEILING_MARGIN


@pytest.mark.unit
def test_build_config_maps_job_options() -> None:
    config = PackAdapter.build_config(
        output_path=Path("out.xml"),
        title="tiny",
        style=OutputStyle.XML,
        exclude_globs=["*.log"],
        exclude_paths=("assets/big.bin",),
        regex_filter=r"\.lock$",
    )

    assert config.style is OutputStyle.XML
    assert config.title == "tiny"
    assert config.ignore.custom_patterns == ["*.log"]
    assert config.ignore.exclude_paths == ["assets/big.bin"]
    assert config.ignore.regex_filter == r"\.lock$"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_pack_runs_engine_and_relays_progress(tmp_path: Path) -> None:
    source = tmp_path / "source"
    write_tree(source, TINY_FILES)
    config = PackAdapter.build_config(output_path=tmp_path / "out.md", title="tiny")
    bridge: ProgressBridge[ProgressEvent] = ProgressBridge()

    artifact = await PackAdapter().pack(source, config, bridge, base=45.0)
    events = await _drain(bridge)

    assert "### src/app.py" in artifact.text
    assert artifact.style is OutputStyle.MARKDOWN
    file_events = [e for e in events if e.text.startswith("Processing file:")]
    assert len(file_events) == len(TINY_FILES)
    percents = [e.percent for e in events]
    assert percents == sorted(set(percents))
    assert all(45.0 < p < 95.0 for p in percents[:-1])
    assert events[-1].terminal
    assert events[-1].percent == 95.0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_pack_wraps_engine_failure(tmp_path: Path) -> None:
    boom = RuntimeError("disk full")

    def engine(directory: Path, config: PackConfig, progress_callback: object) -> Path:  # noqa: ARG001
        raise boom

    config = PackAdapter.build_config(output_path=tmp_path / "out.md", title="tiny")
    bridge: ProgressBridge[ProgressEvent] = ProgressBridge()

    with pytest.raises(PackError) as excinfo:
        await PackAdapter(engine=engine).pack(tmp_path, config, bridge)

    assert excinfo.value.__cause__ is boom
    assert "disk full" in str(excinfo.value)
    assert not any(e.terminal for e in await _drain(bridge))


@pytest.mark.unit
@pytest.mark.asyncio
async def test_pack_reports_missing_output(tmp_path: Path) -> None:
    def engine(directory: Path, config: PackConfig, progress_callback: object) -> Path:  # noqa: ARG001
        return config.output_path

    config = PackAdapter.build_config(output_path=tmp_path / "never-written.md", title="tiny")

    with pytest.raises(PackError, match="unreadable"):
        await PackAdapter(engine=engine).pack(tmp_path, config, ProgressBridge())


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancelled_pack_waits_for_engine_thread(tmp_path: Path) -> None:
    started = threading.Event()
    finished = threading.Event()

    def engine(directory: Path, config: PackConfig, progress_callback: object) -> Path:  # noqa: ARG001
        started.set()
        time.sleep(0.3)
        finished.set()
        return config.output_path

    config = PackAdapter.build_config(output_path=tmp_path / "out.md", title="tiny")
    task = asyncio.create_task(PackAdapter(engine=engine).pack(tmp_path, config, ProgressBridge()))
    await asyncio.to_thread(started.wait, 5)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert finished.is_set()
