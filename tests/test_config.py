from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from site_checks.config import CheckerConfig, load_config


def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "LOG_LEVEL",
        "SITE_CHECKS_CONCURRENCY",
        "SITE_CHECKS_STORE",
        "SUPABASE_URL",
        "NEXT_PUBLIC_SUPABASE_URL",
        "SUPABASE_KEY",
        "NEXT_PUBLIC_SUPABASE_ANON_KEY",
        "CHROMIUM_PATH",
        "BROWSER_HEADLESS",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults_match_pipeline_contract() -> None:
    cfg = CheckerConfig()
    assert cfg.concurrency == 4
    assert cfg.tls_timeout_seconds == 10.0
    assert cfg.navigation_timeout_seconds == 15.0
    assert (cfg.viewport_width, cfg.viewport_height) == (1920, 1080)
    assert cfg.screenshot_quality == 60
    assert cfg.records_table == "Url_Project"
    assert cfg.url_column == "URLs"
    assert cfg.screenshot_bucket == "screenshot"


def test_load_config_from_yaml_and_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    path = tmp_path / "cfg.yaml"
    path.write_text("concurrency: 2\nstore_backend: local\nscreenshot_quality: 80\n", encoding="utf-8")

    cfg = load_config(str(path))
    assert cfg.concurrency == 2
    assert cfg.store_backend == "local"
    assert cfg.screenshot_quality == 80

    monkeypatch.setenv("SITE_CHECKS_CONCURRENCY", "6")
    monkeypatch.setenv("NEXT_PUBLIC_SUPABASE_URL", "https://proj.supabase.co")
    monkeypatch.setenv("NEXT_PUBLIC_SUPABASE_ANON_KEY", "anon")
    monkeypatch.setenv("BROWSER_HEADLESS", "false")
    cfg = load_config(str(path))
    assert cfg.concurrency == 6
    assert cfg.supabase_url == "https://proj.supabase.co"
    assert cfg.supabase_key == "anon"
    assert cfg.browser_headless is False


def test_missing_config_file_uses_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    cfg = load_config(str(tmp_path / "nope.yaml"))
    assert cfg == CheckerConfig()


@pytest.mark.parametrize(
    "overrides",
    [{"concurrency": 0}, {"screenshot_quality": 101}, {"store_backend": "s3"}, {"tls_timeout_seconds": 0}],
)
def test_invalid_values_are_rejected(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        CheckerConfig(**overrides)


def test_repo_config_file_loads(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    path = Path(__file__).resolve().parents[1] / "config" / "site_checks.yaml"
    cfg = load_config(str(path))
    assert cfg.store_backend == "local"
    assert cfg.concurrency == 4
