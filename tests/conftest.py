"""
Shared fixtures for the Tickdex test suite.
"""

import sys
from pathlib import Path
from typing import List

import pytest

# Ensure the src/ directory is on the import path so that
# tickdex.core.* can be imported without an editable install.
SRC_ROOT = Path(__file__).resolve().parent.parent / "src"
sys.path.insert(0, str(SRC_ROOT))

from tickdex.core.config import TickdexConfig  # noqa: E402
from tickdex.core.engine import Instrument  # noqa: E402
from tickdex.core.search import InstrumentSearchEngine  # noqa: E402
from tickdex.core.sectors import SectorTable  # noqa: E402
from tickdex.core.store import CatalogStore  # noqa: E402


# =============================================================================
# Fixtures — catalog data
# =============================================================================

def make_catalog() -> List[Instrument]:
    """A small catalog with a cross-listed symbol and a few near-misses."""
    return [
        Instrument("RELIANCE", "NSE", "Reliance Industries", brand="Jio, JioMart",
                   sector="energy", industry="Oil, Gas & Power", popularity_score=1.0),
        Instrument("RELIANCE", "BSE", "Reliance Industries Ltd", popularity_score=1.0),
        Instrument("TCS", "NSE", "Tata Consultancy Services", popularity_score=0.98),
        Instrument("TATACONSULT", "NSE", "Tata Consulting Holdings", brand="ATCS Digital",
                   popularity_score=0.20),
        Instrument("HDFCBANK", "NSE", "HDFC Bank", popularity_score=0.96),
        Instrument("ICICIBANK", "NSE", "ICICI Bank", popularity_score=0.94),
        Instrument("BANKBEES", "NSE", "Nippon India ETF Bank BeES", type="ETF",
                   popularity_score=0.2),
        Instrument("INFY", "NSE", "Infosys", popularity_score=0.95),
        Instrument("HINDUNILVR", "NSE", "Hindustan Unilever", brand="Dove, Surf Excel, Lux",
                   tags="fmcg,consumer", popularity_score=0.93),
    ]


@pytest.fixture
def instruments() -> List[Instrument]:
    return make_catalog()


@pytest.fixture
def sector_table() -> SectorTable:
    return SectorTable.from_dict({
        "banking": {"keywords": ["bank", "lender"], "symbols": ["HDFCBANK", "ICICIBANK"]},
        "technology": {"keywords": ["software", "tech"], "symbols": ["TCS", "INFY"],
                       "industry": "IT Services"},
        "vapor": {"keywords": ["vaporware"], "symbols": []},
    })


# =============================================================================
# Fixtures — stores and engines
# =============================================================================

@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path, instruments):
    """The sample catalog in each backend; ranking tests run against both."""
    if request.param == "memory":
        catalog = CatalogStore.in_memory(instruments)
    else:
        catalog = CatalogStore.open(tmp_path / "catalog.db", instruments)
    yield catalog
    catalog.close()


@pytest.fixture
def engine(store, sector_table) -> InstrumentSearchEngine:
    return InstrumentSearchEngine(store, sector_table, config=TickdexConfig())


@pytest.fixture
def tmp_config(tmp_path) -> TickdexConfig:
    """Config whose store lives under the test's temporary directory."""
    return TickdexConfig(store_dir=str(tmp_path / ".tickdex"))
