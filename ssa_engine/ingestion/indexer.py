"""SupraScan GraphQL indexer reader.

The indexer is an independently operated source.  It returns the same
``{type, data}`` resource shape as the RPC (wrapped as a JSON string inside
``addressDetail.addressDetailSupra.resources``) plus FA summary details.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from ssa_engine.core.config import get_settings
from ssa_engine.core.errors import RpcTransportError
from ssa_engine.core.networks import get_network_config

logger = logging.getLogger(__name__)

ADDRESS_DETAIL_QUERY = """
query AddressDetail($address: String, $blockchainEnvironment: BlockchainEnvironment, $isAddressName: Boolean) {
  addressDetail(address: $address, blockchainEnvironment: $blockchainEnvironment, isAddressName: $isAddressName) {
    addressDetailSupra {
      resources
    }
  }
}
"""

FA_DETAILS_QUERY = """
query GetFaDetails($faAddress: String, $blockchainEnvironment: BlockchainEnvironment) {
  getFaDetails(faAddress: $faAddress, blockchainEnvironment: $blockchainEnvironment) {
    faName
    faSymbol
    verified
    faAddress
    decimals
    totalSupply
    creatorAddress
    holders
  }
}
"""


class IndexerSchemaError(Exception):
    """The indexer answered, but not in a shape we understand."""


class SupraScanIndexer:
    """Minimal GraphQL client for the SupraScan indexer."""

    def __init__(
        self,
        graphql_url: str | None = None,
        environment: str | None = None,
        timeout: float = 8.0,
        retries: int = 2,
        retry_delay: float = 0.5,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        network = get_network_config(settings.network)
        self.graphql_url = graphql_url or settings.indexer_graphql_url
        self.environment = environment or (network.indexer_environment if network else "mainnet")
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _query(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        last_error = ""
        for attempt in range(self.retries + 1):
            try:
                response = await self._client.post(
                    self.graphql_url,
                    json={"query": query, "variables": variables},
                    timeout=self.timeout,
                )
            except httpx.HTTPError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
            else:
                if response.is_success:
                    payload = response.json()
                    errors = payload.get("errors") if isinstance(payload, dict) else None
                    if errors:
                        messages = "; ".join(str(e.get("message", e)) for e in errors if isinstance(e, dict))
                        raise IndexerSchemaError(f"GraphQL errors: {messages or errors}")
                    data = payload.get("data") if isinstance(payload, dict) else None
                    if not isinstance(data, dict):
                        raise IndexerSchemaError("GraphQL response has no data object")
                    return data
                last_error = f"HTTP {response.status_code}: {response.text[:200]}"
            if attempt < self.retries:
                await asyncio.sleep(self.retry_delay)
        raise RpcTransportError(f"Indexer request failed: {last_error}", endpoint=self.graphql_url)

    async def get_resources(self, address: str) -> list[dict[str, Any]]:
        """Resources the indexer holds for ``address``.

        Raises IndexerSchemaError when the response does not carry a
        resource list, RpcTransportError on transport failure.
        """
        data = await self._query(
            ADDRESS_DETAIL_QUERY,
            {"address": address, "blockchainEnvironment": self.environment, "isAddressName": False},
        )
        detail = (data.get("addressDetail") or {}).get("addressDetailSupra") or {}
        raw = detail.get("resources")
        if raw is None:
            raise IndexerSchemaError("addressDetailSupra.resources missing")
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise IndexerSchemaError(f"resources is not valid JSON: {exc}") from exc
        if not isinstance(raw, list):
            raise IndexerSchemaError("resources is not a list")
        return [r for r in raw if isinstance(r, dict)]

    async def get_fa_details(self, fa_address: str) -> dict[str, Any] | None:
        data = await self._query(
            FA_DETAILS_QUERY,
            {"faAddress": fa_address, "blockchainEnvironment": self.environment},
        )
        details = data.get("getFaDetails")
        return details if isinstance(details, dict) else None
