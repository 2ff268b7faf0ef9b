"""Tests for configuration, logging setup and the local asset store."""

import asyncio
import logging
from pathlib import Path

from taleweave.config import Config
from taleweave.logging_config import setup_logging
from taleweave.media.assets import LocalAssetStore, VisualAsset


class TestConfig:
    def test_missing_api_key_reported(self, monkeypatch):
        monkeypatch.setattr(Config, "ANTHROPIC_API_KEY", "")
        issues = Config.validate()
        assert any("ANTHROPIC_API_KEY" in issue for issue in issues)

    def test_bad_regen_interval_reported(self, monkeypatch):
        monkeypatch.setattr(Config, "ANTHROPIC_API_KEY", "key")
        monkeypatch.setattr(Config, "TOKEN_REGEN_SECONDS", 0)
        assert Config.validate() == ["Regeneration intervals must be positive."]

    def test_database_url_read_live(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///elsewhere.db")
        assert Config.get_database_url() == "sqlite:///elsewhere.db"


def test_setup_logging_quiets_third_party():
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
    setup_logging("WARNING")


def test_local_asset_store_writes_file(tmp_path):
    store = LocalAssetStore(root=tmp_path)
    url = asyncio.run(store.upload(VisualAsset(data=b"png-bytes"), "scenes/s1"))
    assert url.startswith("file://")
    written = list((tmp_path / "scenes" / "s1").iterdir())
    assert len(written) == 1
    assert written[0].suffix == ".png"
    assert Path(written[0]).read_bytes() == b"png-bytes"
