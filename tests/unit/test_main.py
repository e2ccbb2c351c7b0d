"""
Tests for the CONSENSUS entry point
"""

import json
import os
from pathlib import Path

import pytest

from consensus_bot.core.config_manager import ConfigManager
from consensus_bot.main import build_paper_collaborators, main, parse_args
from consensus_core.models import TrendDirection

PAPER_CONFIG = Path(__file__).resolve().parents[2] / "config" / "paper.yaml"


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for key in list(os.environ):
        if key.startswith("CONSENSUS_"):
            monkeypatch.delenv(key)


class TestArguments:
    def test_defaults(self):
        args = parse_args([])

        assert args.config == "config/paper.yaml"
        assert args.symbols is None
        assert args.once is False
        assert args.dry_run is False

    def test_symbols_and_flags(self):
        args = parse_args(["--symbols", "BTCUSDT", "SOLUSDT", "--once", "-l", "DEBUG"])

        assert args.symbols == ["BTCUSDT", "SOLUSDT"]
        assert args.once is True
        assert args.log_level == "DEBUG"


class TestPaperCollaborators:
    @pytest.mark.asyncio
    async def test_seeded_from_config(self):
        collaborators = build_paper_collaborators(ConfigManager(PAPER_CONFIG))

        btc = await collaborators.market_data.get_current_market_data("BTCUSDT")
        assert btc.price == 65000.0
        assert btc.trend == TrendDirection.BULLISH
        assert await collaborators.positions.get_total_value() == 100_000.0
        assert len(await collaborators.positions.get_portfolio_history()) == 1


class TestMain:
    @pytest.mark.asyncio
    async def test_dry_run(self):
        assert await main(["--config", str(PAPER_CONFIG), "--dry-run"]) == 0

    @pytest.mark.asyncio
    async def test_missing_config(self, tmp_path):
        assert await main(["--config", str(tmp_path / "missing.yaml"), "--dry-run"]) == 1

    @pytest.mark.asyncio
    async def test_invalid_config(self, tmp_path):
        path = tmp_path / "bot.json"
        path.write_text(json.dumps({"providers": []}))

        assert await main(["--config", str(path), "--dry-run"]) == 1

    @pytest.mark.asyncio
    async def test_live_mode_rejected(self, tmp_path):
        path = tmp_path / "bot.json"
        path.write_text(json.dumps({
            "mode": "live",
            "providers": [
                {"kind": "openai", "provider_id": "openai"},
                {"kind": "claude", "provider_id": "claude"},
            ],
        }))

        assert await main(["--config", str(path), "--once"]) == 1
