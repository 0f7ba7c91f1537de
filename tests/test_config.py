"""
Tests for TickdexConfig (tickdex.core.config).
"""

from pathlib import Path

import pytest

from tickdex.core.config import DEFAULT_SEARCH_WEIGHTS, TickdexConfig
from tickdex.exceptions import ConfigError


class TestTickdexConfig:

    def test_defaults(self):
        config = TickdexConfig()
        assert config.store_dir == ".tickdex"
        assert config.max_candidates == 100
        assert config.text_weight == 0.7
        assert config.popularity_weight == 0.3
        assert config.exchange_priority == ()
        assert config.search_weights == DEFAULT_SEARCH_WEIGHTS
        assert config.validate() is True

    def test_search_weights_not_shared(self):
        a, b = TickdexConfig(), TickdexConfig()
        a.search_weights["exact_symbol"] = 99.0
        assert b.search_weights["exact_symbol"] == 10.0
        assert DEFAULT_SEARCH_WEIGHTS["exact_symbol"] == 10.0

    def test_get_store_path(self):
        config = TickdexConfig(store_dir="/var/lib/tickdex", store_db_name="nse.db")
        assert config.get_store_path() == Path("/var/lib/tickdex/nse.db")
        assert config.get_store_path(Path("/tmp/x")) == Path("/tmp/x/nse.db")

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("TICKDEX_STORE_DIR", "/data/catalog")
        monkeypatch.setenv("TICKDEX_IN_MEMORY", "yes")
        monkeypatch.setenv("TICKDEX_CURATED_CSV", "data/stocks.csv")
        monkeypatch.setenv("TICKDEX_NSE_CSV", "  ")
        monkeypatch.setenv("TICKDEX_MAX_CANDIDATES", "50")
        monkeypatch.setenv("TICKDEX_EXCHANGE_PRIORITY", "nse, bse,")
        monkeypatch.setenv("TICKDEX_LOG_LEVEL", "debug")
        config = TickdexConfig.from_env()
        assert config.store_dir == "/data/catalog"
        assert config.in_memory is True
        assert config.curated_csv == "data/stocks.csv"
        assert config.nse_csv is None
        assert config.max_candidates == 50
        assert config.exchange_priority == ("NSE", "BSE")
        assert config.log_level == "DEBUG"

    def test_from_env_defaults(self, monkeypatch):
        for name in ("TICKDEX_STORE_DIR", "TICKDEX_IN_MEMORY", "TICKDEX_EXCHANGE_PRIORITY"):
            monkeypatch.delenv(name, raising=False)
        config = TickdexConfig.from_env()
        assert config.store_dir == ".tickdex"
        assert config.in_memory is False
        assert config.exchange_priority == ()


class TestConfigValidation:

    @pytest.mark.parametrize("overrides", [
        {"text_weight": 1.2, "popularity_weight": -0.2},
        {"text_weight": 0.6, "popularity_weight": 0.3},
        {"max_candidates": 0},
        {"default_popularity": 1.5},
        {"log_level": "CHATTY"},
        {"search_weights": {"exact_symbol": 10.0}},
        {"search_weights": dict(DEFAULT_SEARCH_WEIGHTS, brand_contains=-1.0)},
    ])
    def test_invalid(self, overrides):
        with pytest.raises(ConfigError):
            TickdexConfig(**overrides).validate()

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            TickdexConfig(max_candidates=-1).validate()

    def test_alternative_blend_is_valid(self):
        assert TickdexConfig(text_weight=0.5, popularity_weight=0.5).validate()
