from pathlib import Path

import pytest

from repo_packer import settings as settings_module
from repo_packer.models import OutputStyle
from repo_packer.settings import MB, Settings


@pytest.mark.unit
def test_settings_defaults() -> None:
    settings = Settings()

    assert settings.clone_timeout_seconds == 60
    assert settings.selection_timeout_seconds == 100
    assert settings.top_n_large_files == 10
    assert settings.size_threshold_bytes == MB
    assert settings.max_source_size_bytes == 100 * MB
    assert settings.output_style is OutputStyle.MARKDOWN
    assert settings.allowed_hosts == ("github.com",)
    assert settings.retention_days == 30


@pytest.mark.unit
def test_from_env_reads_prefixed_variables(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(settings_module, "ENV_FILE", "")
    monkeypatch.setenv("REPO_PACKER_CLONE_TIMEOUT_SECONDS", "30")
    monkeypatch.setenv("REPO_PACKER_OUTPUT_STYLE", "xml")
    monkeypatch.setenv("REPO_PACKER_ALLOWED_HOSTS", "github.com, example.org")
    monkeypatch.setenv("REPO_PACKER_TEMP_ROOT", str(tmp_path))
    monkeypatch.setenv("REPO_PACKER_SIZE_THRESHOLD_MB", "")

    settings = Settings.from_env()

    assert settings.clone_timeout_seconds == 30
    assert settings.output_style is OutputStyle.XML
    assert settings.allowed_hosts == ("github.com", "example.org")
    assert settings.temp_root == tmp_path
    assert settings.size_threshold_mb == 1


@pytest.mark.unit
def test_from_env_overrides_win_over_environment_and_dotenv(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("REPO_PACKER_SELECTION_TIMEOUT_SECONDS=5\nREPO_PACKER_TOP_N_LARGE_FILES=3\n", encoding="utf-8")
    monkeypatch.setattr(settings_module, "ENV_FILE", str(env_file))
    monkeypatch.setenv("REPO_PACKER_TOP_N_LARGE_FILES", "4")

    settings = Settings.from_env(selection_timeout_seconds=1.5)

    assert settings.selection_timeout_seconds == 1.5
    assert settings.top_n_large_files == 4
