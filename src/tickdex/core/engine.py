"""
Tickdex Core Engine

Instrument records, the weighted clause model used to express searches
against the catalog store, and the scoring helpers shared by every store
backend and by the ranker.
"""

import enum
import logging
import re
from dataclasses import dataclass, asdict, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fields written for every instrument, in hit-record order.
STORED_FIELDS = (
    "symbol", "name", "exchange", "type", "brand",
    "sector", "industry", "tags", "popularity_score",
)

# Text fields a clause may target.
SEARCHABLE_FIELDS = frozenset({"symbol", "exchange", "name", "brand"})

DEFAULT_INSTRUMENT_TYPE = "Stock"

_TOKEN_RE = re.compile(r"[a-z0-9]+")


# =============================================================================
# Data Models
# =============================================================================

@dataclass
class Instrument:
    """A tradable security: symbol + exchange + descriptive metadata.

    ``(symbol, exchange)`` is unique inside a catalog store; the same symbol
    may appear under several exchanges (cross-listing).
    """
    symbol: str
    exchange: str
    name: str = ""
    type: str = DEFAULT_INSTRUMENT_TYPE
    brand: str = ""
    """Consumer-facing brand aliases, comma-joined."""
    sector: str = ""
    industry: str = ""
    tags: str = ""
    popularity_score: float = 0.0
    """Static popularity in [0, 1], assigned once at load time."""

    def __post_init__(self):
        self.symbol = self.symbol.strip().upper()
        self.exchange = self.exchange.strip().upper()
        if not self.type:
            self.type = DEFAULT_INSTRUMENT_TYPE

    @property
    def doc_id(self) -> str:
        """Store key: ``SYMBOL-EXCHANGE``."""
        return f"{self.symbol}-{self.exchange}"

    def to_dict(self) -> dict:
        """Return a JSON-serializable dict for API/agent pipelines."""
        return asdict(self)

    @classmethod
    def from_fields(cls, fields: Mapping[str, Any]) -> "Instrument":
        """Rebuild an instrument from a store hit record.

        Absent or mistyped fields become ``""`` / ``0.0``; this never raises.
        """
        return cls(
            symbol=_get_str(fields, "symbol"),
            exchange=_get_str(fields, "exchange"),
            name=_get_str(fields, "name"),
            type=_get_str(fields, "type"),
            brand=_get_str(fields, "brand"),
            sector=_get_str(fields, "sector"),
            industry=_get_str(fields, "industry"),
            tags=_get_str(fields, "tags"),
            popularity_score=_get_float(fields, "popularity_score"),
        )


def _get_str(fields: Mapping[str, Any], key: str) -> str:
    value = fields.get(key)
    return value if isinstance(value, str) else ""


def _get_float(fields: Mapping[str, Any], key: str) -> float:
    value = fields.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return 0.0


class MatchKind(enum.Enum):
    """How a clause value is compared with a (lowercased) field."""
    EXACT = "exact"
    PREFIX = "prefix"
    TOKEN = "token"
    CONTAINS = "contains"


@dataclass(frozen=True)
class Clause:
    """One weighted match strategy against one field.

    The value is normalized to lowercase so that every comparison is
    case-insensitive.
    """
    kind: MatchKind
    field: str
    value: str
    weight: float = 1.0

    def __post_init__(self):
        if self.field not in SEARCHABLE_FIELDS:
            raise ValueError(f"Field '{self.field}' is not searchable.")
        object.__setattr__(self, "value", self.value.lower())


@dataclass(frozen=True)
class WeightedQuery:
    """A set of clauses combined by OR (``mode='any'``) or AND (``mode='all'``)."""
    clauses: Tuple[Clause, ...]
    mode: str = "any"
    limit: int = 100

    def __post_init__(self):
        if self.mode not in ("any", "all"):
            raise ValueError(f"Unknown query mode '{self.mode}'.")
        object.__setattr__(self, "clauses", tuple(self.clauses))


@dataclass
class Hit:
    """A candidate returned by a store backend, with its raw relevance."""
    doc_id: str
    fields: Dict[str, Any]
    score: float


@dataclass
class RankedInstrument:
    """An instrument together with the scores that placed it."""
    instrument: Instrument
    text_score: float
    final_score: float

    def to_dict(self) -> dict:
        data = self.instrument.to_dict()
        data["text_score"] = round(self.text_score, 4)
        data["final_score"] = round(self.final_score, 4)
        return data


@dataclass
class CatalogStats:
    """Counts reported by :meth:`CatalogStore.stats`."""
    instruments: int
    exchanges: Dict[str, int] = field(default_factory=dict)
    location: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


# =============================================================================
# Scoring helpers
# =============================================================================

def tokenize(text: str) -> List[str]:
    """Split text into lowercase alphanumeric tokens."""
    return _TOKEN_RE.findall(text.lower())


def clause_score(clause: Clause, document: Mapping[str, str]) -> float:
    """
    Score one clause against one document of lowercased text fields.

    EXACT, PREFIX and CONTAINS score the full weight or nothing.  TOKEN
    adds ``weight / total`` for each query token present in the field.
    """
    text = document.get(clause.field, "")
    if clause.kind is MatchKind.EXACT:
        return clause.weight if text == clause.value else 0.0
    if clause.kind is MatchKind.PREFIX:
        return clause.weight if text.startswith(clause.value) else 0.0
    if clause.kind is MatchKind.CONTAINS:
        return clause.weight if clause.value in text else 0.0

    wanted = tokenize(clause.value)
    if not wanted:
        return 0.0
    present = set(tokenize(text))
    per_token = clause.weight / len(wanted)
    return sum(per_token for tok in wanted if tok in present)


def query_score(query: WeightedQuery, document: Mapping[str, str]) -> float:
    """Sum of clause scores, or 0.0 when the query's mode is not satisfied."""
    scores = [clause_score(c, document) for c in query.clauses]
    if query.mode == "all":
        return sum(scores) if scores and all(s > 0 for s in scores) else 0.0
    return sum(scores)


def blend_score(text_score: float, popularity: float,
                text_weight: float = 0.7, popularity_weight: float = 0.3) -> float:
    """Final score for the regular path: relevance first, popularity as a boost."""
    return text_score * text_weight + popularity * popularity_weight


def rank(items: Iterable[T], key: Callable[[T], float]) -> List[T]:
    """Sort descending by *key*; equal keys keep their input order."""
    # sorted() is stable, including with reverse=True
    return sorted(items, key=key, reverse=True)


def unique_in_order(values: Sequence[str]) -> List[str]:
    """Drop duplicates, keeping first occurrences."""
    seen = set()
    out: List[str] = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out
