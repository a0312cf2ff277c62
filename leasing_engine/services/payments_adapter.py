# leasing_engine/services/payments_adapter.py
"""
Payment provider boundary.

The engine only needs two calls: create an intent and confirm it. The stub
adapter is deterministic and picks its outcome from confirmation["outcome"]
(decline/declined/fail/failed -> FAILED, anything else -> SUCCEEDED).
"""
from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Optional, Protocol

from ..config import settings


@dataclass(frozen=True)
class CreatedIntent:
    provider: str
    provider_reference: str
    client_secret: Optional[str]
    status: str
    response: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ConfirmedIntent:
    status: str
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None
    response: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class PaymentsAdapter(Protocol):
    provider: str

    def create_intent(
        self, *, amount_cents: int, currency: str, metadata: Optional[dict[str, Any]]
    ) -> CreatedIntent: ...

    def confirm_intent(
        self, *, provider_reference: Optional[str], confirmation: Optional[dict[str, Any]]
    ) -> ConfirmedIntent: ...


DECLINE_OUTCOMES = frozenset({"decline", "declined", "fail", "failed"})


class StubPaymentsAdapter:
    provider = "stub"

    def create_intent(
        self, *, amount_cents: int, currency: str, metadata: Optional[dict[str, Any]]
    ) -> CreatedIntent:
        ref = f"stub_pi_{uuid.uuid4()}"
        return CreatedIntent(
            provider=self.provider,
            provider_reference=ref,
            client_secret=f"stub_secret_{ref}",
            status="REQUIRES_ACTION",
            response={
                "id": ref,
                "amount_cents": amount_cents,
                "currency": currency,
                "metadata": metadata,
                "status": "requires_action",
            },
        )

    def confirm_intent(
        self, *, provider_reference: Optional[str], confirmation: Optional[dict[str, Any]]
    ) -> ConfirmedIntent:
        outcome = str((confirmation or {}).get("outcome") or "succeed").strip().lower()
        if outcome in DECLINE_OUTCOMES:
            return ConfirmedIntent(
                status="FAILED",
                failure_code="card_declined",
                failure_message="Stub decline",
                response={"id": provider_reference, "status": "failed", "outcome": outcome},
            )
        return ConfirmedIntent(
            status="SUCCEEDED",
            response={"id": provider_reference, "status": "succeeded", "outcome": outcome},
        )


def get_payments_adapter(provider: Optional[str] = None) -> PaymentsAdapter:
    name = (provider or settings.payments_provider or "stub").strip().lower()
    if name == "stub":
        return StubPaymentsAdapter()
    raise ValueError(f"Unknown payments_provider: {name}")
