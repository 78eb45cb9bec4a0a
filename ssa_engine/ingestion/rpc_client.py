"""Async Supra RPC reader: resources, modules and recent transactions.

Endpoints (v3 first, v2 fallback for account paths; v1 as an independent view):

    GET {rpc}/rpc/v3/accounts/{address}/resources
    GET {rpc}/rpc/v3/accounts/{address}/modules/{module}
    GET {rpc}/rpc/v3/accounts/{address}/transactions?limit=N
    GET {rpc}/rpc/v1/accounts/{address}/resources
    GET {rpc}/rpc/v1/accounts/{address}/modules/{module}
    POST {rpc}/rpc/v1/view

"Not found" (HTTP 404) is returned as an empty result; anything else that
fails after the retry budget raises :class:`RpcTransportError`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ssa_engine.core.config import get_settings
from ssa_engine.core.errors import RpcTransportError
from ssa_engine.core.identifiers import validate_rpc_url

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}


@dataclass
class ModuleArtifact:
    """Bytecode and/or ABI for one published module."""

    module_id: str
    bytecode_hex: str | None = None
    abi: dict[str, Any] | None = None
    fetched_from: str = "unknown"  # rpc_v3, rpc_v2, rpc_v1, unknown

    @property
    def available(self) -> bool:
        return bool(self.bytecode_hex or self.abi)


@dataclass
class RpcOptions:
    """Per-client transport policy."""

    timeout: float = 10.0
    retries: int = 2
    retry_delay: float = 0.5

    @classmethod
    def from_settings(cls) -> "RpcOptions":
        s = get_settings()
        return cls(timeout=s.rpc_timeout_seconds, retries=s.rpc_retries, retry_delay=s.rpc_retry_delay_seconds)

    @classmethod
    def for_ping(cls) -> "RpcOptions":
        s = get_settings()
        return cls(timeout=s.ping_timeout_seconds, retries=s.ping_retries, retry_delay=0.5)


def _extract_list(data: Any, *keys: str) -> list[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in keys:
            value = data.get(key)
            if isinstance(value, list):
                return value
            if isinstance(value, dict):
                nested = _extract_list(value, *keys)
                if nested:
                    return nested
    return []


def _extract_bytecode(module: dict[str, Any]) -> str | None:
    value = module.get("bytecode") or module.get("code")
    return value if isinstance(value, str) and value else None


def _extract_abi(module: dict[str, Any]) -> dict[str, Any] | None:
    abi = module.get("abi") or module.get("move_abi")
    if isinstance(abi, dict):
        return abi
    if module.get("exposed_functions") or module.get("entry_functions"):
        return {
            "exposed_functions": module.get("exposed_functions") or [],
            "entry_functions": module.get("entry_functions") or [],
        }
    return None


class SupraRpcClient:
    """Fetch on-chain state from a single Supra RPC endpoint."""

    def __init__(
        self,
        rpc_url: str,
        options: RpcOptions | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.rpc_url = validate_rpc_url(rpc_url)
        self.options = options or RpcOptions.from_settings()
        self._client = client or httpx.AsyncClient(
            timeout=self.options.timeout,
            headers={"Accept": "application/json"},
        )
        self._owns_client = client is None

    async def __aenter__(self) -> "SupraRpcClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── Transport ────────────────────────────────────────────────────────

    async def _get_json(self, url: str) -> Any | None:
        """GET ``url`` with retry. Returns parsed JSON, or ``None`` on 404."""
        return await self._request_json("GET", url)

    async def _request_json(self, method: str, url: str, payload: Any = None) -> Any | None:
        last_error: str = ""
        for attempt in range(self.options.retries + 1):
            try:
                response = await self._client.request(method, url, json=payload, timeout=self.options.timeout)
            except httpx.HTTPError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
            else:
                if response.status_code == 404:
                    return None
                if response.is_success:
                    try:
                        return response.json()
                    except ValueError as exc:
                        raise RpcTransportError(
                            f"Non-JSON response from {url}", endpoint=url,
                            status_code=response.status_code,
                        ) from exc
                last_error = f"HTTP {response.status_code}: {response.text[:200]}"
                if response.status_code not in _RETRYABLE_STATUS:
                    raise RpcTransportError(last_error, endpoint=url, status_code=response.status_code)

            if attempt < self.options.retries:
                logger.debug("RPC retry %d/%d for %s: %s", attempt + 1, self.options.retries, url, last_error)
                await asyncio.sleep(self.options.retry_delay)

        raise RpcTransportError(
            f"RPC request failed after {self.options.retries + 1} attempts: {last_error}",
            endpoint=url,
        )

    async def _get_account_path(self, address: str, path: str) -> tuple[Any | None, str]:
        """Try the v3 account path, then v2.  Returns ``(data, version)``."""
        v3_url = f"{self.rpc_url}/rpc/v3/accounts/{address}{path}"
        try:
            data = await self._get_json(v3_url)
            if data is not None:
                return data, "v3"
        except RpcTransportError as exc:
            logger.debug("v3 failed for %s, falling back to v2: %s", v3_url, exc)

        v2_url = f"{self.rpc_url}/rpc/v2/accounts/{address}{path}"
        data = await self._get_json(v2_url)
        return data, "v2"

    # ── Resources ────────────────────────────────────────────────────────

    async def get_resources(self, address: str) -> list[dict[str, Any]]:
        """Account resources via v3 (v2 fallback). Empty list when not found."""
        data, _version = await self._get_account_path(address, "/resources")
        if data is None:
            return []
        return [r for r in _extract_list(data, "resources", "data", "result") if isinstance(r, dict)]

    async def get_resources_v1(self, address: str) -> list[dict[str, Any]]:
        """Account resources via the v1 API. Empty list when not found."""
        data = await self._get_json(f"{self.rpc_url}/rpc/v1/accounts/{address}/resources")
        if data is None:
            return []
        return [r for r in _extract_list(data, "resources", "data", "result") if isinstance(r, dict)]

    # ── Modules ──────────────────────────────────────────────────────────

    async def list_modules(self, address: str) -> list[dict[str, Any]]:
        data, _version = await self._get_account_path(address, "/modules")
        if data is None:
            return []
        return [m for m in _extract_list(data, "modules", "data") if isinstance(m, dict)]

    async def get_module(self, address: str, module_name: str, api: str = "v3") -> ModuleArtifact:
        """Bytecode/ABI for one module.  Never raises; unavailable is ``fetched_from="unknown"``.

        ``api="v3"`` tries v3, v2 then v1; ``api="v1"`` asks the v1 API only.
        """
        module_id = f"{address}::{module_name}"
        try:
            if api == "v1":
                raise RpcTransportError("v1 requested", endpoint=self.rpc_url)
            data, version = await self._get_account_path(address, f"/modules/{module_name}")
            module = self._unwrap_module(data)
            if module:
                return ModuleArtifact(
                    module_id=module_id,
                    bytecode_hex=_extract_bytecode(module),
                    abi=_extract_abi(module),
                    fetched_from=f"rpc_{version}",
                )
        except RpcTransportError as exc:
            logger.debug("Module fetch v3/v2 failed for %s: %s", module_id, exc)

        try:
            data = await self._get_json(f"{self.rpc_url}/rpc/v1/accounts/{address}/modules/{module_name}")
            module = self._unwrap_module(data)
            if module:
                return ModuleArtifact(
                    module_id=module_id,
                    bytecode_hex=_extract_bytecode(module),
                    abi=_extract_abi(module),
                    fetched_from="rpc_v1",
                )
        except RpcTransportError as exc:
            logger.debug("Module fetch v1 failed for %s: %s", module_id, exc)

        return ModuleArtifact(module_id=module_id)

    @staticmethod
    def _unwrap_module(data: Any) -> dict[str, Any] | None:
        if not isinstance(data, dict):
            return None
        for key in ("module", "data", "result"):
            inner = data.get(key)
            if isinstance(inner, dict):
                return inner
        return data

    # ── Transactions ─────────────────────────────────────────────────────

    async def get_transactions(self, address: str, limit: int = 20) -> list[dict[str, Any]]:
        """Recent transactions sent by ``address`` (v3 list or ``{value}``; v2 ``{record}``)."""
        data, _version = await self._get_account_path(address, f"/transactions?limit={limit}")
        if data is None:
            return []
        txs = _extract_list(data, "value", "record", "records", "transactions", "data")
        return [t for t in txs if isinstance(t, dict)][:limit]

    # ── View functions ───────────────────────────────────────────────────

    async def call_view(
        self, function_id: str, args: list[str] | None = None, type_args: list[str] | None = None,
    ) -> Any:
        """Call ``addr::module::function`` through the v1 view endpoint.

        Returns the ``result`` field when the node wraps it.  A missing
        function (HTTP 404) raises :class:`RpcTransportError` with
        ``status_code=404``.
        """
        url = f"{self.rpc_url}/rpc/v1/view"
        payload = {"function": function_id, "type_arguments": type_args or [], "arguments": args or []}
        data = await self._request_json("POST", url, payload)
        if data is None:
            raise RpcTransportError(f"View function not found: {function_id}", endpoint=url, status_code=404)
        if isinstance(data, dict) and "result" in data:
            return data["result"]
        return data
