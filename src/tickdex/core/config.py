"""
Tickdex Configuration Module

Centralized configuration for the Tickdex catalog store and ranked
instrument search.  Static tables (sector keywords, popularity tiers) are
not globals: they are built from this config and handed to the engine as
values, so ranking stays pure and independently testable.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

# Clause weights for the regular (non-thematic) search path.
DEFAULT_SEARCH_WEIGHTS = {
    "exact_symbol": 10.0,
    "prefix_symbol": 5.0,
    "name_tokens": 3.0,
    "symbol_contains": 2.0,
    "name_contains": 1.5,
    "brand_contains": 1.0,
}

# Whole-word cues that mark a query as thematic ("top banking stocks").
DEFAULT_THEMATIC_CUES = frozenset({
    "top", "best", "leading", "popular", "largest", "biggest",
    "stocks", "stock", "shares", "companies", "sector", "sectors",
    "industry", "related", "list",
})


def _env_list(name: str) -> tuple:
    """Read a comma-separated environment variable into a tuple of stripped values."""
    raw = os.getenv(name, "")
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _env_path(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


@dataclass
class TickdexConfig:
    """
    Instance-based configuration for Tickdex.

    Each ``TickdexConfig`` instance is self-contained and can be passed
    through the call stack, so several catalogs (or test fixtures) can
    live in one process.

    Create from environment variables::

        config = TickdexConfig.from_env()

    Or with explicit values::

        config = TickdexConfig(store_dir="/var/lib/tickdex", exchange_priority=("NSE",))
    """

    # ── Catalog Store ─────────────────────────────────────────────
    store_dir: str = ".tickdex"
    store_db_name: str = "catalog.db"
    in_memory: bool = False
    """If True, build an ephemeral in-process store instead of SQLite."""

    # ── Catalog Sources ───────────────────────────────────────────
    curated_csv: Optional[str] = None
    nse_csv: Optional[str] = None
    bse_csv: Optional[str] = None
    brand_mappings_path: Optional[str] = None
    sector_table_path: Optional[str] = None
    """JSON sector table; the bundled default table is used when unset."""
    default_popularity: float = 0.2

    # ── Search ────────────────────────────────────────────────────
    max_candidates: int = 100
    search_weights: dict = field(default_factory=lambda: dict(DEFAULT_SEARCH_WEIGHTS))
    text_weight: float = 0.7
    popularity_weight: float = 0.3
    thematic_cues: frozenset = DEFAULT_THEMATIC_CUES
    exchange_priority: tuple = ()
    """Exchange preference for bare-symbol lookups of cross-listed instruments.
    Exchanges not listed rank after listed ones, in store write order."""
    max_display_results: int = 20

    # ── Logging ───────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # ── Factory ───────────────────────────────────────────────────

    @classmethod
    def from_env(cls) -> "TickdexConfig":
        """Build a config snapshot from current environment variables.

        Reads :envvar:`TICKDEX_IN_MEMORY` (1/true/yes) to skip the SQLite
        store entirely.
        """
        in_memory_raw = os.getenv("TICKDEX_IN_MEMORY", "").lower()
        return cls(
            store_dir=os.getenv("TICKDEX_STORE_DIR", ".tickdex"),
            store_db_name=os.getenv("TICKDEX_STORE_DB", "catalog.db"),
            in_memory=in_memory_raw in ("1", "true", "yes", "on"),
            curated_csv=_env_path("TICKDEX_CURATED_CSV"),
            nse_csv=_env_path("TICKDEX_NSE_CSV"),
            bse_csv=_env_path("TICKDEX_BSE_CSV"),
            brand_mappings_path=_env_path("TICKDEX_BRAND_MAPPINGS"),
            sector_table_path=_env_path("TICKDEX_SECTOR_TABLE"),
            max_candidates=int(os.getenv("TICKDEX_MAX_CANDIDATES", "100")),
            exchange_priority=tuple(e.upper() for e in _env_list("TICKDEX_EXCHANGE_PRIORITY")),
            log_level=os.getenv("TICKDEX_LOG_LEVEL", "INFO").upper(),
        )

    # ── Validation & Accessors ────────────────────────────────────

    def validate(self) -> bool:
        """
        Check ranking weights, limits and logging settings.

        Raises :class:`~tickdex.exceptions.ConfigError` on failure.
        """
        from tickdex.exceptions import ConfigError

        for name in ("text_weight", "popularity_weight"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"{name} must be within [0, 1], got {value}.")
        if abs(self.text_weight + self.popularity_weight - 1.0) > 1e-9:
            raise ConfigError(
                "text_weight and popularity_weight must sum to 1 "
                f"(got {self.text_weight} + {self.popularity_weight})."
            )

        missing = set(DEFAULT_SEARCH_WEIGHTS) - set(self.search_weights)
        if missing:
            raise ConfigError(f"search_weights is missing: {', '.join(sorted(missing))}.")
        negative = [k for k, v in self.search_weights.items() if v < 0]
        if negative:
            raise ConfigError(f"search_weights must be non-negative: {', '.join(sorted(negative))}.")

        if self.max_candidates <= 0:
            raise ConfigError(f"max_candidates must be positive, got {self.max_candidates}.")
        if not 0.0 <= self.default_popularity <= 1.0:
            raise ConfigError(
                f"default_popularity must be within [0, 1], got {self.default_popularity}."
            )
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigError(
                f"Unknown log level '{self.log_level}'.\n"
                "  Set via: export TICKDEX_LOG_LEVEL=INFO"
            )
        return True

    def get_store_path(self, base_dir: Path | None = None) -> Path:
        """Get the path to the catalog database."""
        return Path(base_dir if base_dir is not None else self.store_dir) / self.store_db_name
