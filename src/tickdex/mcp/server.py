"""
Tickdex MCP Server

Exposes ranked instrument search and exact lookup as tools that AI agents
can invoke natively via the Model Context Protocol.

Start with::

    tickdex mcp                              # stdio transport
    tickdex mcp --transport streamable-http  # HTTP (Streamable) for remote use

Or programmatically::

    from tickdex.mcp.server import create_server
    server = create_server()
    server.run()
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Annotated

# FastMCP uses pydantic for validation, so Field is available with the mcp extra
from pydantic import Field  # type: ignore[import-untyped]

from tickdex.core.config import TickdexConfig
from tickdex.core.search import ResultFormatter

logger = logging.getLogger(__name__)


class SharedClient:
    """One lazily opened client shared by every tool call."""

    def __init__(self, config: TickdexConfig, client=None):
        self._config = config
        self._client = client
        self._lock = threading.Lock()

    def get(self):
        if self._client is None:
            with self._lock:
                if self._client is None:
                    from tickdex.client import Tickdex
                    self._client = Tickdex(config=self._config)
        return self._client


def create_server(config: TickdexConfig | None = None, client=None):
    """
    Build and return a configured FastMCP server instance.

    The server opens **one** :class:`~tickdex.client.Tickdex` client on
    first use and shares it across every tool call; the catalog store is
    read-only so concurrent tool calls are safe.

    Args:
        config: Instance-based configuration.  Defaults to
            ``TickdexConfig.from_env()``.
        client: Pre-built client (used by tests and embedders).

    Raises ``ImportError`` if ``fastmcp`` is not installed (install
    via ``pip install 'tickdex[mcp]'``).
    """
    from fastmcp import FastMCP  # type: ignore[import-untyped]

    cfg = config or TickdexConfig.from_env()
    _client = SharedClient(cfg, client).get

    mcp = FastMCP("Tickdex")

    # ==================================================================
    # Tool: search_instruments
    # ==================================================================

    @mcp.tool()
    def search_instruments(
        query: Annotated[
            str,
            Field(default="", description="Ticker, company name, brand, or a thematic phrase such as 'top banking stocks'. Required.")
        ] = "",
        max_results: Annotated[
            int | None,
            Field(default=None, description="Maximum number of instruments to return. Defaults to the configured display limit (typically 20).")
        ] = None,
        explain: Annotated[
            bool,
            Field(default=False, description="Include text and final ranking scores for each result.")
        ] = False,
    ) -> str:
        """Search the instrument catalog, best match first.

        Regular queries blend text relevance (exact symbol, prefix, name
        tokens, substrings of symbol/name/brand) with popularity.  Thematic
        queries ('best pharma stocks') return the sector's members ordered
        by popularity.

        Returns:
            JSON array of instruments (symbol, exchange, name, type, brand,
            sector, industry, tags, popularity_score).
        """
        query = str(query).strip() if query is not None else ""
        if not query:
            return json.dumps({"error": "Missing required argument: query", "results": []})
        try:
            limit = max_results if max_results is not None else cfg.max_display_results
            results = _client().ranked(query, limit=limit)
            return ResultFormatter.format_json(results, explain=explain)
        except Exception as e:
            logger.exception("search_instruments failed")
            return json.dumps({"error": str(e), "results": []})

    # ==================================================================
    # Tool: get_instrument
    # ==================================================================

    @mcp.tool()
    def get_instrument(
        symbol: Annotated[
            str,
            Field(description="Exact ticker symbol, case-insensitive (e.g. 'RELIANCE').")
        ],
        exchange: Annotated[
            str,
            Field(default="", description="Preferred exchange code (e.g. 'NSE', 'BSE'). When no listing exists on that exchange, another listing of the symbol is returned.")
        ] = "",
    ) -> str:
        """Look up a single instrument by symbol (and optionally exchange).

        Returns:
            JSON object for the instrument, or ``{"error": "not found"}``.
        """
        try:
            instrument = _client().get_stock(symbol, exchange)
        except Exception as e:
            logger.exception("get_instrument failed")
            return json.dumps({"error": str(e)})
        if instrument is None:
            return json.dumps({"error": "not found", "symbol": symbol})
        return json.dumps(instrument.to_dict())

    # ==================================================================
    # Tool: get_catalog_stats
    # ==================================================================

    @mcp.tool()
    def get_catalog_stats() -> str:
        """Return instrument counts per exchange and the store location."""
        try:
            return json.dumps(_client().stats())
        except Exception as e:
            logger.exception("get_catalog_stats failed")
            return json.dumps({"error": str(e)})

    return mcp
