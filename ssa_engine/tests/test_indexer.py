"""Tests for ssa_engine.ingestion.indexer (SupraScan GraphQL reader)."""

from __future__ import annotations

import json

import httpx
import pytest

from ssa_engine.core.errors import RpcTransportError
from ssa_engine.ingestion.indexer import IndexerSchemaError, SupraScanIndexer

GRAPHQL_URL = "https://indexer.test/graphql"


def _indexer(handler) -> SupraScanIndexer:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SupraScanIndexer(GRAPHQL_URL, retry_delay=0.0, client=http)


def _detail(resources) -> dict:
    return {"data": {"addressDetail": {"addressDetailSupra": {"resources": resources}}}}


class TestIndexerResources:
    @pytest.mark.asyncio
    async def test_json_string_resources(self):
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json=_detail(json.dumps([{"type": "0x1::object::ObjectCore"}])))

        resources = await _indexer(handler).get_resources("0xabc")
        assert resources == [{"type": "0x1::object::ObjectCore"}]
        assert seen[0]["variables"] == {
            "address": "0xabc", "blockchainEnvironment": "mainnet", "isAddressName": False,
        }

    @pytest.mark.asyncio
    async def test_list_resources(self):
        handler = lambda request: httpx.Response(200, json=_detail([{"type": "a"}, 3]))  # noqa: E731
        assert await _indexer(handler).get_resources("0xabc") == [{"type": "a"}]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("resources", [None, "{not json", {"type": "a"}])
    async def test_schema_errors(self, resources):
        handler = lambda request: httpx.Response(200, json=_detail(resources))  # noqa: E731
        with pytest.raises(IndexerSchemaError):
            await _indexer(handler).get_resources("0xabc")

    @pytest.mark.asyncio
    async def test_graphql_errors(self):
        body = {"errors": [{"message": "Cannot query field"}]}
        with pytest.raises(IndexerSchemaError, match="Cannot query field"):
            await _indexer(lambda request: httpx.Response(200, json=body)).get_resources("0xabc")

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(502, text="bad gateway")

        with pytest.raises(RpcTransportError, match="Indexer request failed"):
            await _indexer(handler).get_resources("0xabc")
        assert calls["n"] == 3


class TestFaDetails:
    @pytest.mark.asyncio
    async def test_details(self):
        body = {"data": {"getFaDetails": {"faSymbol": "TOK", "totalSupply": "1000", "decimals": 6}}}
        details = await _indexer(lambda request: httpx.Response(200, json=body)).get_fa_details("0xabc")
        assert details["faSymbol"] == "TOK"

    @pytest.mark.asyncio
    async def test_missing_details(self):
        body = {"data": {"getFaDetails": None}}
        assert await _indexer(lambda request: httpx.Response(200, json=body)).get_fa_details("0xabc") is None
