"""Known-safe function-name patterns for staking request/fulfill flows.

A matching entry function is acknowledged with an ``info`` finding instead of
the penalizing one.  Matching is a lowercase substring test.
"""

from __future__ import annotations

from dataclasses import dataclass

from ssa_engine.core.config import get_settings

SAFE_ENTRYPOINT_EXCEPTIONS = (
    "stake",
    "stake_fa",
    "unstake",
    "withdraw_request",
    "claim_request",
    "withdraw",
    "claim",
    "fulfill_withdraw",
    "fulfill_claim",
    "view_",
    "get_",
    "query_",
    "read_",
)

SAFE_OUTFLOW_EXCEPTIONS = (
    "withdraw_request",
    "claim_request",
    "fulfill_withdraw",
    "fulfill_claim",
    "unstake",
    "view_",
    "get_",
)


def parse_overrides(raw: str) -> tuple[str, ...]:
    return tuple(p.strip().lower() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class SafeExceptions:
    entrypoints: tuple[str, ...] = SAFE_ENTRYPOINT_EXCEPTIONS
    outflows: tuple[str, ...] = SAFE_OUTFLOW_EXCEPTIONS

    @classmethod
    def with_overrides(cls, overrides: tuple[str, ...]) -> "SafeExceptions":
        return cls(
            entrypoints=SAFE_ENTRYPOINT_EXCEPTIONS + overrides,
            outflows=SAFE_OUTFLOW_EXCEPTIONS + overrides,
        )

    @classmethod
    def from_settings(cls) -> "SafeExceptions":
        return cls.with_overrides(parse_overrides(get_settings().safe_exception_overrides))

    def is_safe_entrypoint(self, function_name: str) -> bool:
        lowered = function_name.lower()
        return any(p in lowered for p in self.entrypoints)

    def is_safe_outflow(self, function_name: str) -> bool:
        lowered = function_name.lower()
        return any(p in lowered for p in self.outflows)
