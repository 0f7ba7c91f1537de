"""
Tests for the MCP server tools (tickdex.mcp.server).

Skipped when the ``mcp`` extra (fastmcp) is not installed.
"""

import json
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

fastmcp = pytest.importorskip("fastmcp")

from tickdex import Tickdex  # noqa: E402
from tickdex.mcp.server import SharedClient, create_server  # noqa: E402


@pytest.fixture
def server(tmp_config, instruments, sector_table):
    client = Tickdex(config=tmp_config, instruments=instruments, sectors=sector_table)
    yield create_server(tmp_config, client=client)
    client.close()


async def call(server, name, arguments):
    async with fastmcp.Client(server) as mcp_client:
        result = await mcp_client.call_tool(name, arguments)
    content = getattr(result, "content", result)
    return json.loads(content[0].text)


class TestMcpTools:

    @pytest.mark.asyncio
    async def test_search_instruments(self, server):
        data = await call(server, "search_instruments", {"query": "top banking stocks"})
        assert [d["symbol"] for d in data] == ["HDFCBANK", "ICICIBANK"]

    @pytest.mark.asyncio
    async def test_search_instruments_explain(self, server):
        data = await call(server, "search_instruments", {"query": "tcs", "max_results": 1, "explain": True})
        assert len(data) == 1
        assert data[0]["final_score"] > data[0]["popularity_score"]

    @pytest.mark.asyncio
    async def test_search_requires_query(self, server):
        data = await call(server, "search_instruments", {"query": "  "})
        assert data["results"] == []
        assert "query" in data["error"]

    @pytest.mark.asyncio
    async def test_get_instrument(self, server):
        data = await call(server, "get_instrument", {"symbol": "reliance", "exchange": "BSE"})
        assert data["exchange"] == "BSE"

    @pytest.mark.asyncio
    async def test_get_instrument_missing(self, server):
        data = await call(server, "get_instrument", {"symbol": "NOPE"})
        assert data["error"] == "not found"

    @pytest.mark.asyncio
    async def test_get_catalog_stats(self, server):
        data = await call(server, "get_catalog_stats", {})
        assert data["instruments"] == 9


class TestSharedClient:

    def test_prebuilt_client_is_reused(self, tmp_config):
        sentinel = object()
        shared = SharedClient(tmp_config, client=sentinel)
        assert shared.get() is sentinel

    def test_concurrent_first_use_opens_one_client(self, tmp_config, monkeypatch):
        created = []

        def slow_client(config):
            time.sleep(0.05)
            created.append(config)
            return object()

        monkeypatch.setattr("tickdex.client.Tickdex", slow_client)
        shared = SharedClient(tmp_config)
        with ThreadPoolExecutor(max_workers=8) as pool:
            clients = list(pool.map(lambda _: shared.get(), range(8)))

        assert len(created) == 1
        assert all(c is clients[0] for c in clients)
