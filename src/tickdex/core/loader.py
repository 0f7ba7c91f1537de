"""
Tickdex Catalog Loader

Builds the enriched instrument list the catalog store is built from:

- Exchange listing files (NSE / BSE equity CSVs)
- A curated CSV with brand aliases
- Brand alias mappings (JSON, symbol -> brands)
- Tier-based popularity scores
- Sector / industry labels from the sector table

Listing files are read first and the curated file last, so that a curated
record replaces the listing record with the same ``SYMBOL-EXCHANGE`` key
when the store is written.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

import pandas as pd

from tickdex.core.config import TickdexConfig
from tickdex.core.engine import DEFAULT_INSTRUMENT_TYPE, Instrument
from tickdex.core.sectors import SectorTable
from tickdex.exceptions import CatalogLoadError

logger = logging.getLogger(__name__)

# Tier 1: most popular (0.90-1.0); tier 2: large caps (0.70-0.89);
# tier 3: mid caps and sector leaders (0.40-0.69).
DEFAULT_POPULARITY_TIERS: Dict[str, float] = {
    # Tier 1
    "RELIANCE": 1.0, "TCS": 0.98, "HDFCBANK": 0.96, "INFY": 0.95,
    "ICICIBANK": 0.94, "HINDUNILVR": 0.93, "ITC": 0.92, "SBIN": 0.91,
    "BHARTIARTL": 0.90, "KOTAKBANK": 0.90,
    # Tier 2
    "BAJFINANCE": 0.85, "LT": 0.84, "ASIANPAINT": 0.83, "AXISBANK": 0.82,
    "MARUTI": 0.81, "SUNPHARMA": 0.80, "TITAN": 0.79, "NESTLEIND": 0.78,
    "ULTRACEMCO": 0.77, "WIPRO": 0.76, "TATAMOTORS": 0.75, "TATAPOWER": 0.74,
    "TATASTEEL": 0.73, "ADANIPORTS": 0.72, "ADANIENT": 0.71, "ONGC": 0.70,
    # Tier 3
    "DIVISLAB": 0.65, "DRREDDY": 0.64, "CIPLA": 0.63, "TECHM": 0.62,
    "HCLTECH": 0.61, "POWERGRID": 0.60, "NTPC": 0.59, "COALINDIA": 0.58,
    "BPCL": 0.57, "IOC": 0.56, "GRASIM": 0.55, "JSWSTEEL": 0.54,
    "HINDALCO": 0.53, "VEDL": 0.52, "INDUSINDBK": 0.51, "BAJAJFINSV": 0.50,
    "M&M": 0.49, "EICHERMOT": 0.48, "HEROMOTOCO": 0.47, "BRITANNIA": 0.46,
    "SHREECEM": 0.45, "UPL": 0.44, "APOLLOHOSP": 0.43, "PIDILITIND": 0.42,
    "GODREJCP": 0.41, "DABUR": 0.40,
}


class PopularityTable:
    """Static symbol -> popularity lookup with a default for unknown symbols."""

    def __init__(self, scores: Optional[Mapping[str, float]] = None, default: float = 0.2):
        source = DEFAULT_POPULARITY_TIERS if scores is None else scores
        self._scores = {symbol.upper(): float(score) for symbol, score in source.items()}
        self.default = default

    def score(self, symbol: str) -> float:
        return self._scores.get(symbol.strip().upper(), self.default)

    def __len__(self) -> int:
        return len(self._scores)


# =============================================================================
# File readers
# =============================================================================

CURATED_COLUMNS = ["symbol", "name", "exchange", "type", "brand"]

# Errors pandas raises for unreadable or malformed CSV input
CSV_ERRORS = (OSError, pd.errors.ParserError, pd.errors.EmptyDataError)


def load_curated_csv(path: Path, popularity: PopularityTable) -> List[Instrument]:
    """
    Read ``Symbol,Name,Exchange,Type[,Brand]`` rows.

    A first row starting with ``Symbol`` is treated as a header.  Rows with
    fewer than four columns are skipped.
    """
    df = pd.read_csv(
        path, header=None, names=CURATED_COLUMNS, index_col=False,
        dtype=str, keep_default_na=False, encoding="utf-8-sig",
        engine="python", on_bad_lines="skip",
    )
    if len(df) and str(df.iloc[0]["symbol"]).strip().lower() == "symbol":
        df = df.iloc[1:]

    # Fields missing from a short row come back as NaN, unlike empty ones
    short = df[["symbol", "name", "exchange", "type"]].isna().any(axis=1)
    if short.any():
        logger.warning(f"Skipped {int(short.sum())} short rows in {path}")
    df = df[~short].fillna("")

    instruments = []
    for row in df.itertuples(index=False):
        symbol = row.symbol.strip()
        instruments.append(Instrument(
            symbol=symbol,
            name=row.name.strip(),
            exchange=row.exchange.strip(),
            type=row.type.strip() or DEFAULT_INSTRUMENT_TYPE,
            brand=row.brand.strip(),
            popularity_score=popularity.score(symbol),
        ))
    return instruments


def load_exchange_csv(path: Path, exchange: str, popularity: PopularityTable) -> List[Instrument]:
    """
    Read an exchange listing file whose first two columns are symbol and
    company name.  The first row is always a header.
    """
    df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
    if df.shape[1] < 2:
        logger.warning(f"{path} has fewer than two columns; no {exchange} instruments read")
        return []

    listing = df.iloc[:, :2].fillna("")
    listing.columns = ["symbol", "name"]
    listing = listing.assign(
        symbol=listing["symbol"].str.strip(),
        name=listing["name"].str.strip(),
    )
    listing = listing[listing["symbol"] != ""]
    return [
        Instrument(
            symbol=row.symbol,
            name=row.name,
            exchange=exchange,
            type=DEFAULT_INSTRUMENT_TYPE,
            popularity_score=popularity.score(row.symbol),
        )
        for row in listing.itertuples(index=False)
    ]


def load_brand_mappings(path: Path) -> Dict[str, str]:
    """Read a JSON object mapping symbol -> comma-joined brand names."""
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise CatalogLoadError(f"Brand mappings in {path} must be a JSON object.")
    return {str(k).strip().upper(): str(v) for k, v in data.items()}


def apply_brand_mappings(instruments: Iterable[Instrument], mappings: Mapping[str, str]) -> int:
    """Append mapped brands to each instrument's brand list.  Returns the number touched."""
    touched = 0
    for instrument in instruments:
        brands = mappings.get(instrument.symbol)
        if not brands:
            continue
        instrument.brand = f"{instrument.brand}, {brands}" if instrument.brand else brands
        touched += 1
    return touched


def enrich_sectors(instruments: Iterable[Instrument], sectors: SectorTable) -> int:
    """Fill empty sector / industry labels from the sector table.  Returns the number touched."""
    touched = 0
    for instrument in instruments:
        changed = False
        if not instrument.sector:
            instrument.sector = sectors.sector_for_symbol(instrument.symbol)
            changed = changed or bool(instrument.sector)
        if not instrument.industry:
            instrument.industry = sectors.industry_for_symbol(instrument.symbol)
            changed = changed or bool(instrument.industry)
        touched += changed
    return touched


# =============================================================================
# Loader
# =============================================================================

class CatalogLoader:
    """
    Assembles the instrument list from the sources named in the config.

    Missing listing or brand files only log a warning; a configured curated
    file that cannot be read is fatal.
    """

    def __init__(self, config: TickdexConfig | None = None,
                 popularity: PopularityTable | None = None,
                 sectors: SectorTable | None = None):
        self._config = config or TickdexConfig.from_env()
        self.popularity = popularity or PopularityTable(default=self._config.default_popularity)
        self.sectors = sectors if sectors is not None else SectorTable.load(self._config.sector_table_path)

    def load(self) -> List[Instrument]:
        cfg = self._config
        if not (cfg.nse_csv or cfg.bse_csv or cfg.curated_csv):
            raise CatalogLoadError(
                "No catalog sources configured.\n"
                "  Set one of: TICKDEX_CURATED_CSV, TICKDEX_NSE_CSV, TICKDEX_BSE_CSV"
            )

        instruments: List[Instrument] = []
        for path, exchange in ((cfg.nse_csv, "NSE"), (cfg.bse_csv, "BSE")):
            if not path:
                continue
            try:
                listed = load_exchange_csv(Path(path), exchange, self.popularity)
            except CSV_ERRORS as exc:
                logger.warning(f"Failed to load {exchange} listing {path}: {exc}")
                continue
            logger.info(f"Loaded {len(listed):,} {exchange} instruments")
            instruments.extend(listed)

        if cfg.curated_csv:
            try:
                curated = load_curated_csv(Path(cfg.curated_csv), self.popularity)
            except CSV_ERRORS as exc:
                raise CatalogLoadError(f"Failed to load curated catalog {cfg.curated_csv}: {exc}") from exc
            logger.info(f"Loaded {len(curated):,} curated instruments")
            instruments.extend(curated)

        if cfg.brand_mappings_path:
            try:
                mappings = load_brand_mappings(Path(cfg.brand_mappings_path))
            except (OSError, json.JSONDecodeError, CatalogLoadError) as exc:
                logger.warning(f"Failed to load brand mappings: {exc}")
            else:
                touched = apply_brand_mappings(instruments, mappings)
                logger.info(f"Applied {len(mappings)} brand mappings to {touched} instruments")

        enriched = enrich_sectors(instruments, self.sectors)
        logger.info(f"Total instruments to index: {len(instruments):,} ({enriched} sector-tagged)")
        return instruments
