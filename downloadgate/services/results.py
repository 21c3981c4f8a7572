"""Typed outcomes shared by the gate evaluator, issuer, ledger and authorizer.

Denials are values, not exceptions. Only infrastructure failures raise, as
subclasses of ``DeliveryError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

# Request-time denial codes
PRODUCT_NOT_FOUND = "product-not-found"
PRODUCT_INACTIVE = "product-inactive"
MISCONFIGURED_GATE = "misconfigured-gate"
GATE_DENIED = "gate-denied"

# Redemption denial codes
NOT_FOUND = "not-found"
REVOKED = "revoked"
EXPIRED = "expired"
EXHAUSTED = "exhausted"

# Code returned outside the trust boundary when reasons are hidden
DENIED = "denied"


@dataclass(frozen=True, slots=True)
class Decision:
    allowed: bool
    reason: str | None = None
    # Internal sub-reason (e.g. "payment-unverified"); logged, never returned
    detail: str | None = None
    # Gate that unlocked the product; None for free products
    gate_id: str | None = None

    @staticmethod
    def allow(gate_id: str | None = None) -> Decision:
        return Decision(allowed=True, gate_id=gate_id)

    @staticmethod
    def deny(reason: str, detail: str | None = None) -> Decision:
        return Decision(allowed=False, reason=reason, detail=detail)


@dataclass(frozen=True, slots=True)
class Denial:
    reason: str

    def public(self, expose_reason: bool) -> Denial:
        return self if expose_reason else Denial(reason=DENIED)


@dataclass(frozen=True, slots=True)
class AccessGranted:
    token: str
    token_id: str
    product_id: str
    expires_at: datetime | None
    max_redemptions: int


@dataclass(frozen=True, slots=True)
class FetchAuthorization:
    token_id: str
    product_id: str
    asset_location: str
    redemption_number: int
    remaining_redemptions: int


class DeliveryError(Exception):
    """Infrastructure failure below the engine's atomicity guarantees. Retryable."""

    code = "delivery-failed"


class IssuanceFailedError(DeliveryError):
    code = "issuance-failed"


class RedemptionFailedError(DeliveryError):
    code = "redemption-failed"


class RevocationFailedError(DeliveryError):
    code = "revocation-failed"


class TokenIssuanceError(ValueError):
    """Issuance refused because the product is missing or inactive."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code
