"""
Gate policy evaluation.

Decides whether a requester's attested proof satisfies the gate guarding a
product. Pure: reads the catalog, writes nothing. Payment and email capture
happen elsewhere; this module trusts the outcome it is handed.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog
from sqlalchemy.orm import Session

from downloadgate.models.product import AccessGate, AccessType, Product
from downloadgate.services.product_registry import get_enabled_gate, get_product
from downloadgate.services.results import (
    GATE_DENIED,
    MISCONFIGURED_GATE,
    PRODUCT_INACTIVE,
    PRODUCT_NOT_FOUND,
    Decision,
)

logger = structlog.get_logger()

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MAX_EMAIL_LENGTH = 254


@dataclass(frozen=True, slots=True)
class NoProof:
    pass


@dataclass(frozen=True, slots=True)
class EmailProof:
    address: str


@dataclass(frozen=True, slots=True)
class PaymentProof:
    verified: bool
    transaction_ref: str | None = None


@dataclass(frozen=True, slots=True)
class CustomProof:
    payload: dict[str, Any] = field(default_factory=dict)


GateProof = NoProof | EmailProof | PaymentProof | CustomProof


class CustomGatePolicy(Protocol):
    """Pluggable verification logic for ``custom`` gates."""

    def evaluate(self, product: Product, gate: AccessGate, proof: GateProof) -> Decision: ...


_custom_policies: dict[str, CustomGatePolicy] = {}
_registry_lock = threading.Lock()


def register_custom_policy(ref: str, policy: CustomGatePolicy) -> None:
    """Register (or replace) the policy a custom gate names in ``custom_policy_ref``."""
    with _registry_lock:
        _custom_policies[ref] = policy


def unregister_custom_policy(ref: str) -> None:
    with _registry_lock:
        _custom_policies.pop(ref, None)


def get_custom_policy(ref: str | None) -> CustomGatePolicy | None:
    if ref is None:
        return None
    with _registry_lock:
        return _custom_policies.get(ref)


def is_valid_email(address: str) -> bool:
    """Syntactic check only; deliverability is the capture form's concern."""
    address = address.strip()
    if not address or len(address) > MAX_EMAIL_LENGTH:
        return False
    return _EMAIL_PATTERN.match(address) is not None


def _evaluate_email(proof: GateProof) -> Decision:
    if not isinstance(proof, EmailProof) or not proof.address:
        return Decision.deny(GATE_DENIED, "email-missing")
    if not is_valid_email(proof.address):
        return Decision.deny(GATE_DENIED, "email-invalid")
    return Decision.allow()


def _evaluate_payment(proof: GateProof) -> Decision:
    if not isinstance(proof, PaymentProof):
        return Decision.deny(GATE_DENIED, "payment-missing")
    if proof.verified is not True:
        return Decision.deny(GATE_DENIED, "payment-unverified")
    return Decision.allow()


def _evaluate_custom(product: Product, gate: AccessGate, proof: GateProof) -> Decision:
    policy = get_custom_policy(gate.custom_policy_ref)
    if policy is None:
        return Decision.deny(MISCONFIGURED_GATE, "custom-policy-unregistered")

    try:
        decision = policy.evaluate(product, gate, proof)
    except Exception as e:
        logger.error(
            "custom_policy_error",
            product_id=product.id,
            policy_ref=gate.custom_policy_ref,
            error=str(e),
            exc_info=e,
        )
        return Decision.deny(GATE_DENIED, "custom-policy-error")

    if decision.allowed:
        return Decision.allow()
    # Whatever the policy calls it, callers see a gate denial
    return Decision.deny(GATE_DENIED, decision.detail or decision.reason)


def evaluate_product(db: Session, product: Product, proof: GateProof) -> Decision:
    """Evaluate a proof against an already loaded product."""
    if not product.is_active:
        return Decision.deny(PRODUCT_INACTIVE)

    if product.access_type == AccessType.FREE:
        return Decision.allow()

    gate = get_enabled_gate(db, product)
    if gate is None:
        return Decision.deny(MISCONFIGURED_GATE, "no-matching-enabled-gate")

    if gate.gate_type == AccessType.EMAIL:
        decision = _evaluate_email(proof)
    elif gate.gate_type == AccessType.PAYMENT:
        decision = _evaluate_payment(proof)
    elif gate.gate_type == AccessType.CUSTOM:
        decision = _evaluate_custom(product, gate, proof)
    else:
        return Decision.deny(MISCONFIGURED_GATE, f"unknown-gate-type:{gate.gate_type}")

    return Decision.allow(gate.id) if decision.allowed else decision


def evaluate(db: Session, product_id: str, proof: GateProof) -> Decision:
    """
    Decide ALLOW/DENY for a product and a requester's proof.

    Denial reasons: ``product-not-found``, ``product-inactive``,
    ``misconfigured-gate``, ``gate-denied``. The specific sub-reason is kept in
    ``Decision.detail`` and logged here.
    """
    product = get_product(db, product_id)
    if product is None:
        decision = Decision.deny(PRODUCT_NOT_FOUND)
    else:
        decision = evaluate_product(db, product, proof)

    if not decision.allowed:
        logger.info(
            "gate_denied",
            product_id=product_id,
            reason=decision.reason,
            detail=decision.detail,
            proof_type=type(proof).__name__,
        )
    return decision
