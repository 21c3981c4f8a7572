"""
Entry point for collaborators: request access, redeem access, revoke.

Sequencing only. Business rules live in the gate evaluator, the issuer and
the ledger.
"""

import structlog
from sqlalchemy.orm import Session

from downloadgate.config import settings
from downloadgate.services.gate_policy import GateProof, evaluate
from downloadgate.services.results import (
    AccessGranted,
    Denial,
    FetchAuthorization,
    TokenIssuanceError,
)
from downloadgate.services.token_issuer import TokenPolicy, issue_download_token
from downloadgate.services.usage_ledger import redeem_download_token, revoke_download_token

logger = structlog.get_logger()


def _public(denial: Denial, trusted: bool) -> Denial:
    return denial.public(expose_reason=trusted or settings.expose_denial_reasons)


def request_access(
    db: Session,
    product_id: str,
    proof: GateProof,
    holder_identity: str,
    policy: TokenPolicy | None = None,
    *,
    trusted: bool = False,
) -> AccessGranted | Denial:
    """
    Evaluate the gate and, on ALLOW, issue a token in the same call.

    Denials: ``product-not-found``, ``product-inactive``, ``misconfigured-gate``,
    ``gate-denied``. IssuanceFailedError propagates (retryable).

    A blank holder identity or a policy allowing fewer than one redemption is
    a caller bug, not a denial: ValueError is raised before the gate is
    evaluated.
    """
    if not holder_identity or not holder_identity.strip():
        raise ValueError("holder_identity is required")
    if policy is not None and policy.max_redemptions < 1:
        raise ValueError("max_redemptions must be at least 1")

    decision = evaluate(db, product_id, proof)
    if not decision.allowed:
        return _public(Denial(decision.reason), trusted)

    try:
        token, raw_token = issue_download_token(
            db, product_id, holder_identity, policy, gate_id=decision.gate_id
        )
    except TokenIssuanceError as e:
        # Product deactivated between evaluation and issuance
        logger.info("access_request_denied", product_id=product_id, reason=e.code)
        return _public(Denial(e.code), trusted)

    logger.info("access_granted", product_id=product_id, token_id=token.id)
    return AccessGranted(
        token=raw_token,
        token_id=token.id,
        product_id=token.product_id,
        expires_at=token.expires_at,
        max_redemptions=token.max_redemptions,
    )


def redeem_access(
    db: Session, raw_token: str, *, trusted: bool = False
) -> FetchAuthorization | Denial:
    """
    Redeem a presented token.

    Denials: ``not-found``, ``revoked``, ``expired``, ``exhausted``.
    RedemptionFailedError propagates (retryable).
    """
    result = redeem_download_token(db, raw_token)
    if isinstance(result, Denial):
        return _public(result, trusted)
    return result


def revoke_access(db: Session, raw_token: str) -> bool:
    """
    Admin-only. Idempotent; False when the token does not exist.

    RevocationFailedError propagates (retryable).
    """
    return revoke_download_token(db, raw_token)
