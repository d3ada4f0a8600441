from __future__ import annotations

import json
from pathlib import Path

import pytest

from site_checks import main as cli
from site_checks.persist import PerURLResult
from site_checks.pipeline import BatchFatalError, BatchReport
from site_checks.stores import SqliteRecordStore


def _write_config(tmp_path: Path) -> Path:
    path = tmp_path / "cfg.yaml"
    path.write_text(
        "store_backend: local\n"
        f"local_db_path: {tmp_path / 'records.db'}\n"
        f"local_artifacts_dir: {tmp_path / 'shots'}\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture(autouse=True)
def _no_store_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SITE_CHECKS_STORE", raising=False)
    monkeypatch.delenv("SITE_CHECKS_CONCURRENCY", raising=False)


def test_check_prints_batch_report(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    captured: dict = {}

    async def fake_run_batch(urls, *, config, stores):
        captured["urls"] = urls
        return BatchReport(
            message="Processing completed.",
            results=[PerURLResult(url=u, status="ok", ssl_status="valid") for u in urls],
        )

    monkeypatch.setattr(cli, "run_batch", fake_run_batch)
    urls_file = tmp_path / "urls.txt"
    urls_file.write_text("# comment\nb.example\n\n c.example \n", encoding="utf-8")

    code = cli.main(["--config", str(_write_config(tmp_path)), "check", "a.example", "--urls-file", str(urls_file)])

    assert code == 0
    assert captured["urls"] == ["a.example", "b.example", "c.example"]
    out = json.loads(capsys.readouterr().out)
    assert out["message"] == "Processing completed."
    assert [r["url"] for r in out["results"]] == ["a.example", "b.example", "c.example"]


def test_check_batch_fatal_exit_code(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    async def fake_run_batch(urls, *, config, stores):
        raise BatchFatalError("browser_launch_failed: boom")

    monkeypatch.setattr(cli, "run_batch", fake_run_batch)

    code = cli.main(["--config", str(_write_config(tmp_path)), "check", "a.example"])

    assert code == 2
    assert json.loads(capsys.readouterr().out) == {"error": "browser_launch_failed: boom"}


@pytest.mark.asyncio
async def test_add_admits_normalized_pending_records(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    cfg = cli.load_config(str(config_path))

    code = await cli.run_add([" a.example ", "https://b.example"], cfg)

    assert code == 0
    store = SqliteRecordStore(str(tmp_path / "records.db"))
    a = await store.get("https://a.example")
    assert a is not None
    assert a["ssl_status"] == "pending"
    assert a["isValid"] is False
    assert a["image"] is None
    assert await store.get("https://b.example") is not None
