"""View-function calls for pinned modules that published no ABI or bytecode."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from ssa_engine.analyzer.move.base_rule import OPTIONAL_VIEWS, REQUIRED_VIEWS, ViewError
from ssa_engine.core.errors import RpcTransportError
from ssa_engine.ingestion.rpc_client import SupraRpcClient

logger = logging.getLogger(__name__)

_NOT_FOUND_MARKERS = ("could not find entry function", "function not found")


@dataclass
class ModuleViewData:
    results: dict[str, Any] = field(default_factory=dict)
    errors: list[ViewError] = field(default_factory=list)


def is_function_not_found(exc: RpcTransportError) -> bool:
    if exc.status_code == 404:
        return True
    lower = exc.message.lower()
    return any(marker in lower for marker in _NOT_FOUND_MARKERS) or (
        "entry function" in lower and "not found" in lower
    )


async def fetch_module_views(
    client: SupraRpcClient,
    module_id: str,
    view_names: Iterable[str] = REQUIRED_VIEWS + OPTIONAL_VIEWS,
) -> ModuleViewData:
    """Call each view with no arguments; failures become :class:`ViewError` entries.

    A view the module does not define is recorded as ``unsupported`` rather
    than ``error``.
    """
    data = ModuleViewData()
    for view_name in view_names:
        function_id = f"{module_id}::{view_name}"
        try:
            data.results[view_name] = await client.call_view(function_id)
        except RpcTransportError as exc:
            kind = "unsupported" if is_function_not_found(exc) else "error"
            logger.debug("View %s failed (%s): %s", function_id, kind, exc.message, extra={"target": module_id})
            data.errors.append(ViewError(view_name=view_name, function_id=function_id, error=exc.message, type=kind))
    return data
