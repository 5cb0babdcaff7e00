from __future__ import annotations

from pathlib import Path

import pytest

from candletrader.cli import main


@pytest.fixture(autouse=True)
def _isolated(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ("ALPACA_API_KEY_ID", "ALPACA_API_SECRET_KEY", "POLYGON_API_KEY", "CANDLETRADER_CONFIG_DIR"):
        monkeypatch.delenv(name, raising=False)


def _config_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "config"
    directory.mkdir()
    (directory / "strategy_config.csv").write_text(
        "key,value\ntrading_mode.mode,stocks\ntrading_mode.primary_symbol,SPY\n", encoding="utf-8"
    )
    (directory / "api_endpoints_config.csv").write_text(
        "alpaca_trading.api_key,\nalpaca_trading.api_secret,\nalpaca_trading.base_url,https://paper-api.example.test\n",
        encoding="utf-8",
    )
    return directory


def test_check_reports_ready(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    monkeypatch.setenv("ALPACA_API_KEY_ID", "key")
    monkeypatch.setenv("ALPACA_API_SECRET_KEY", "secret")
    assert main(["--config-dir", str(_config_dir(tmp_path)), "--check"]) == 0
    assert "READY symbol=SPY mode=stocks providers=alpaca_trading" in capsys.readouterr().out


def test_missing_credentials_fail(tmp_path: Path, capsys) -> None:
    assert main(["--config-dir", str(_config_dir(tmp_path)), "--check"]) == 1
    assert "api_key" in capsys.readouterr().err


def test_missing_directory_fails(tmp_path: Path, capsys) -> None:
    assert main(["--config-dir", str(tmp_path / "nope"), "--check"]) == 1
    assert "config directory not found" in capsys.readouterr().err
