"""
Tickdex — ranked lookup over a fixed catalog of tradable instruments.

The ``tickdex`` package turns short, possibly ambiguous queries into an
ordered list of instruments, blending textual relevance, exact-match
priority and a static popularity signal.  Thematic queries such as
"top banking stocks" are resolved to sectors and ranked by popularity.

Quick start (programmatic API)::

    from tickdex import Tickdex

    client = Tickdex()                              # reads TICKDEX_* env vars
    results = client.search("reliance")             # ranked search
    stock = client.get_stock("RELIANCE", "BSE")     # exact lookup
    client.close()

Quick start (CLI)::

    tickdex index --curated data/stocks.csv
    tickdex search "top banking stocks"
"""

__version__ = "1.0.0"

# Primary public API — the Tickdex facade
from tickdex.client import Tickdex

# Configuration
from tickdex.core.config import TickdexConfig

# Core data types that callers interact with
from tickdex.core.engine import Instrument, RankedInstrument
from tickdex.core.sectors import SectorTable

# Exception hierarchy
from tickdex.exceptions import (
    CatalogLoadError,
    ConfigError,
    IndexNotFoundError,
    SearchError,
    StoreError,
    TickdexError,
)

__all__ = [
    "__version__",
    # Facade
    "Tickdex",
    # Config
    "TickdexConfig",
    "SectorTable",
    # Data types
    "Instrument",
    "RankedInstrument",
    # Exceptions
    "TickdexError",
    "ConfigError",
    "StoreError",
    "IndexNotFoundError",
    "SearchError",
    "CatalogLoadError",
]
