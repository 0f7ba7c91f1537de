"""
Tickdex Thematic Resolver

Maps natural-language category queries ("top banking stocks") onto sectors
and sectors onto their member symbols.

The :class:`SectorTable` is plain configuration: it is loaded once (from the
bundled default or a JSON file) and handed to the search engine.  Thematic
detection is a predicate, so the cue list can be tuned or the whole
heuristic replaced without touching the ranking code.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from tickdex.core.config import DEFAULT_THEMATIC_CUES
from tickdex.core.engine import unique_in_order
from tickdex.exceptions import ConfigError

logger = logging.getLogger(__name__)

ThematicPredicate = Callable[[str], bool]

# Bundled sector table: trigger keywords, member symbols, industry label.
DEFAULT_SECTORS: Dict[str, dict] = {
    "banking": {
        "keywords": ["bank", "banks", "lender", "lenders"],
        "symbols": ["HDFCBANK", "ICICIBANK", "SBIN", "KOTAKBANK", "AXISBANK", "INDUSINDBK"],
        "industry": "Banks",
    },
    "information technology": {
        "keywords": ["software", "tech", "technology", "it services", "infotech"],
        "symbols": ["TCS", "INFY", "WIPRO", "HCLTECH", "TECHM"],
        "industry": "IT Services & Consulting",
    },
    "pharma": {
        "keywords": ["pharmaceutical", "pharmaceuticals", "drug", "drugs", "medicine", "healthcare"],
        "symbols": ["SUNPHARMA", "DRREDDY", "CIPLA", "DIVISLAB", "APOLLOHOSP"],
        "industry": "Pharmaceuticals",
    },
    "automobile": {
        "keywords": ["auto", "autos", "automotive", "car", "cars", "vehicle", "vehicles", "two wheeler"],
        "symbols": ["MARUTI", "TATAMOTORS", "M&M", "EICHERMOT", "HEROMOTOCO"],
        "industry": "Automobiles",
    },
    "fmcg": {
        "keywords": ["consumer goods", "consumer staples", "fast moving"],
        "symbols": ["HINDUNILVR", "ITC", "NESTLEIND", "BRITANNIA", "DABUR", "GODREJCP"],
        "industry": "FMCG",
    },
    "energy": {
        "keywords": ["oil", "gas", "power", "petroleum", "refinery", "electricity"],
        "symbols": ["RELIANCE", "ONGC", "BPCL", "IOC", "NTPC", "POWERGRID", "TATAPOWER", "COALINDIA"],
        "industry": "Oil, Gas & Power",
    },
    "metals": {
        "keywords": ["metal", "steel", "aluminium", "aluminum", "mining"],
        "symbols": ["TATASTEEL", "JSWSTEEL", "HINDALCO", "VEDL"],
        "industry": "Metals & Mining",
    },
    "financial services": {
        "keywords": ["finance", "nbfc", "insurance", "broking", "brokerage"],
        "symbols": ["BAJFINANCE", "BAJAJFINSV"],
        "industry": "Financial Services",
    },
    "cement": {
        "keywords": ["cements", "construction material"],
        "symbols": ["ULTRACEMCO", "SHREECEM", "GRASIM"],
        "industry": "Cement",
    },
    "telecom": {
        "keywords": ["telecommunication", "mobile network", "telco"],
        "symbols": ["BHARTIARTL"],
        "industry": "Telecom Services",
    },
}


@dataclass(frozen=True)
class Sector:
    """One row of the sector table."""
    name: str
    keywords: Tuple[str, ...]
    symbols: Tuple[str, ...]
    industry: str = ""


class SectorTable:
    """
    Read-only sector keyword table.

    Holds ``sector -> trigger keywords`` and ``sector -> member symbols``
    (plus an optional industry label per sector).  Sector names and keywords
    are matched case-insensitively as substrings of the query text.
    """

    def __init__(self, sectors: Iterable[Sector] = ()):
        self._sectors: Dict[str, Sector] = {}
        for sector in sectors:
            self._sectors[sector.name] = sector
        self._by_symbol: Dict[str, Sector] = {}
        for sector in self._sectors.values():
            for symbol in sector.symbols:
                # First sector listing a symbol owns it
                self._by_symbol.setdefault(symbol, sector)

    # ── Construction ──────────────────────────────────────────────

    @classmethod
    def from_dict(cls, data: Mapping[str, Mapping]) -> "SectorTable":
        """Build from ``{sector: {"keywords": [...], "symbols": [...], "industry": "..."}}``."""
        sectors = []
        for name, entry in data.items():
            if not isinstance(entry, Mapping):
                raise ConfigError(f"Sector '{name}' must map to an object, got {type(entry).__name__}.")
            keywords = entry.get("keywords", [])
            symbols = entry.get("symbols", [])
            if isinstance(keywords, str) or isinstance(symbols, str):
                raise ConfigError(f"Sector '{name}': keywords and symbols must be lists.")
            sectors.append(Sector(
                name=str(name).strip().lower(),
                keywords=tuple(unique_in_order([str(k).strip().lower() for k in keywords if str(k).strip()])),
                symbols=tuple(unique_in_order([str(s).strip().upper() for s in symbols if str(s).strip()])),
                industry=str(entry.get("industry", "") or ""),
            ))
        return cls(sectors)

    @classmethod
    def from_json(cls, path: Path) -> "SectorTable":
        """Load a table from a JSON file with a top-level ``"sectors"`` object."""
        try:
            with open(path, encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Cannot read sector table {path}: {exc}") from exc
        sectors = raw.get("sectors") if isinstance(raw, dict) else None
        if not isinstance(sectors, dict):
            raise ConfigError(f"Sector table {path} needs a top-level 'sectors' object.")
        table = cls.from_dict(sectors)
        logger.info(f"Loaded {len(table)} sectors from {path}")
        return table

    @classmethod
    def default(cls) -> "SectorTable":
        return cls.from_dict(DEFAULT_SECTORS)

    @classmethod
    def load(cls, path: Optional[str]) -> "SectorTable":
        """Load *path* when given, else the bundled default table."""
        return cls.from_json(Path(path)) if path else cls.default()

    # ── Lookups ───────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._sectors)

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._sectors

    @property
    def sectors(self) -> Mapping[str, Sector]:
        return MappingProxyType(self._sectors)

    def extract_sectors(self, text: str) -> List[str]:
        """Sectors whose name or any keyword occurs in *text*, in table order."""
        lowered = text.lower()
        matched = []
        for sector in self._sectors.values():
            triggers = (sector.name,) + sector.keywords
            if any(trigger in lowered for trigger in triggers):
                matched.append(sector.name)
        return matched

    def symbols_for(self, sectors: Iterable[str]) -> List[str]:
        """Ordered union of member symbols for *sectors*; unknown names are ignored."""
        symbols: List[str] = []
        for name in sectors:
            sector = self._sectors.get(name.lower())
            if sector is not None:
                symbols.extend(sector.symbols)
        return unique_in_order(symbols)

    def sector_for_symbol(self, symbol: str) -> str:
        sector = self._by_symbol.get(symbol.upper())
        return sector.name if sector else ""

    def industry_for_symbol(self, symbol: str) -> str:
        sector = self._by_symbol.get(symbol.upper())
        return sector.industry if sector else ""


@dataclass(frozen=True)
class ThematicDetector:
    """Default thematic-query predicate: any cue word present as a whole word."""
    cues: frozenset = field(default=DEFAULT_THEMATIC_CUES)

    def __call__(self, query: str) -> bool:
        words = set(re.findall(r"[a-z]+", query.lower()))
        return not words.isdisjoint(self.cues)
