"""
Usage ledger: redemption, revocation and the audit trail.

Token state machine::

    active --(count reaches max)--> exhausted
    active --(now > expires_at)---> expired
    any    --(revoke)-------------> revoked

Each redemption is one conditional UPDATE against the token row, so the
transition is linearizable per token without locks spanning tokens. Every
attempt on a known token appends a RedemptionRecord.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from downloadgate.models.download_token import DownloadToken
from downloadgate.models.redemption_record import RedemptionOutcome, RedemptionRecord
from downloadgate.services.crypto_utils import (
    TOKEN_PREFIX_FRAGMENT,
    TOKEN_PREFIX_LENGTH,
    get_token_prefix,
    verify_token,
)
from downloadgate.services.product_registry import get_product
from downloadgate.services.results import (
    EXHAUSTED,
    EXPIRED,
    NOT_FOUND,
    REVOKED,
    Denial,
    FetchAuthorization,
    RedemptionFailedError,
    RevocationFailedError,
)

logger = structlog.get_logger()

_DENIAL_OUTCOMES = {
    REVOKED: RedemptionOutcome.DENIED_REVOKED,
    EXPIRED: RedemptionOutcome.DENIED_EXPIRED,
    EXHAUSTED: RedemptionOutcome.DENIED_EXHAUSTED,
}


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def find_download_token(db: Session, raw_token: str) -> DownloadToken | None:
    """
    Find a token by its raw value.

    Indexed prefix lookup, then Argon2 verification of the full value.
    """
    if not raw_token or len(raw_token) <= TOKEN_PREFIX_LENGTH:
        return None

    token = (
        db.query(DownloadToken)
        .filter(DownloadToken.token_prefix == get_token_prefix(raw_token))
        .one_or_none()
    )
    if token is None or not verify_token(raw_token, token.token_hash):
        return None
    return token


def is_expired(token: DownloadToken, now: datetime) -> bool:
    return token.expires_at is not None and now > token.expires_at


def token_status(token: DownloadToken, now: datetime | None = None) -> str:
    """Current state, in the precedence redemption checks it."""
    now = now or _utcnow()
    if token.is_revoked:
        return "revoked"
    if is_expired(token, now):
        return "expired"
    if token.redemption_count >= token.max_redemptions:
        return "exhausted"
    return "active"


def _classify_denial(token: DownloadToken, now: datetime) -> str:
    if token.is_revoked:
        return REVOKED
    if is_expired(token, now):
        return EXPIRED
    return EXHAUSTED


def redeem_download_token(
    db: Session, raw_token: str, now: datetime | None = None
) -> FetchAuthorization | Denial:
    """
    Redeem a token for a one-time fetch authorization.

    Denials (``not-found``, ``revoked``, ``expired``, ``exhausted``) are
    returned, not raised. Storage failures raise RedemptionFailedError.
    """
    now = now or _utcnow()

    try:
        token = find_download_token(db, raw_token)
        if token is None:
            logger.info("redemption_denied", reason=NOT_FOUND)
            return Denial(NOT_FOUND)

        product = get_product(db, token.product_id)
        if product is None:
            raise RedemptionFailedError(f"Product {token.product_id} missing for token {token.id}")

        # Compare-and-swap: only an active token gains a redemption
        result = db.execute(
            update(DownloadToken)
            .where(
                DownloadToken.id == token.id,
                DownloadToken.is_revoked == False,  # noqa: E712
                DownloadToken.redemption_count < DownloadToken.max_redemptions,
                or_(
                    DownloadToken.expires_at == None,  # noqa: E711
                    DownloadToken.expires_at >= now,
                ),
            )
            .values(redemption_count=DownloadToken.redemption_count + 1)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 1:
            # Read our own increment while the row is still write-locked
            db.refresh(token)
            authorization = FetchAuthorization(
                token_id=token.id,
                product_id=product.id,
                asset_location=product.asset_location,
                redemption_number=token.redemption_count,
                remaining_redemptions=token.remaining_redemptions,
            )
            db.add(
                RedemptionRecord(
                    token_id=token.id, redeemed_at=now, outcome=RedemptionOutcome.GRANTED
                )
            )
            db.commit()

            logger.info(
                "token_redeemed",
                token_id=authorization.token_id,
                product_id=authorization.product_id,
                redemption_number=authorization.redemption_number,
                remaining_redemptions=authorization.remaining_redemptions,
            )
            return authorization

        # The guard failed; read the committed state to say why
        db.refresh(token)
        reason = _classify_denial(token, now)
        log_fields = {
            "token_id": token.id,
            "product_id": token.product_id,
            "redemption_count": token.redemption_count,
        }
        db.add(
            RedemptionRecord(token_id=token.id, redeemed_at=now, outcome=_DENIAL_OUTCOMES[reason])
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("redemption_storage_error", error=str(e))
        raise RedemptionFailedError("Redemption could not be recorded") from e

    logger.info("redemption_denied", reason=reason, **log_fields)
    return Denial(reason)


def revoke_download_token(db: Session, raw_token: str) -> bool:
    """
    Revoke a token. Idempotent.

    Revoking an already revoked, expired or exhausted token succeeds. Returns
    False only when no such token exists. Storage failures raise
    RevocationFailedError.
    """
    try:
        token = find_download_token(db, raw_token)
        if token is None:
            return False

        result = db.execute(
            update(DownloadToken)
            .where(DownloadToken.id == token.id, DownloadToken.is_revoked == False)  # noqa: E712
            .values(is_revoked=True, revoked_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(token)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("revocation_storage_error", error=str(e))
        raise RevocationFailedError("Revocation could not be recorded") from e

    if result.rowcount:
        logger.info("token_revoked", token_id=token.id, product_id=token.product_id)
    return True


@dataclass(frozen=True, slots=True)
class RedemptionEntry:
    redeemed_at: datetime
    outcome: str


@dataclass(frozen=True, slots=True)
class TokenUsage:
    token_id: str
    product_id: str
    status: str
    issued_at: datetime
    expires_at: datetime | None
    revoked_at: datetime | None
    max_redemptions: int
    redemption_count: int
    redemptions: list[RedemptionEntry]


def get_redemption_records(db: Session, token_id: str) -> list[RedemptionRecord]:
    return (
        db.query(RedemptionRecord)
        .filter(RedemptionRecord.token_id == token_id)
        .order_by(RedemptionRecord.redeemed_at, RedemptionRecord.id)
        .all()
    )


def get_token_usage(db: Session, raw_token: str) -> TokenUsage | None:
    """Usage and audit history of a token, without redeeming it."""
    token = find_download_token(db, raw_token)
    if token is None:
        return None

    return TokenUsage(
        token_id=token.id,
        product_id=token.product_id,
        status=token_status(token),
        issued_at=token.issued_at,
        expires_at=token.expires_at,
        revoked_at=token.revoked_at,
        max_redemptions=token.max_redemptions,
        redemption_count=token.redemption_count,
        redemptions=[
            RedemptionEntry(redeemed_at=r.redeemed_at, outcome=r.outcome)
            for r in get_redemption_records(db, token.id)
        ],
    )


def get_product_stats(db: Session, product_id: str) -> dict:
    """Download counters for a product, derived from the ledger."""
    tokens_issued = db.scalar(
        select(func.count(DownloadToken.id)).where(DownloadToken.product_id == product_id)
    )
    downloads = db.scalar(
        select(func.count(RedemptionRecord.id))
        .join(DownloadToken, DownloadToken.id == RedemptionRecord.token_id)
        .where(
            DownloadToken.product_id == product_id,
            RedemptionRecord.outcome == RedemptionOutcome.GRANTED,
        )
    )
    denied = db.scalar(
        select(func.count(RedemptionRecord.id))
        .join(DownloadToken, DownloadToken.id == RedemptionRecord.token_id)
        .where(
            DownloadToken.product_id == product_id,
            RedemptionRecord.outcome != RedemptionOutcome.GRANTED,
        )
    )
    last_download_at = db.scalar(
        select(func.max(RedemptionRecord.redeemed_at))
        .join(DownloadToken, DownloadToken.id == RedemptionRecord.token_id)
        .where(
            DownloadToken.product_id == product_id,
            RedemptionRecord.outcome == RedemptionOutcome.GRANTED,
        )
    )
    return {
        "product_id": product_id,
        "tokens_issued": tokens_issued or 0,
        "downloads": downloads or 0,
        "denied_attempts": denied or 0,
        "last_download_at": last_download_at,
    }


@dataclass(frozen=True, slots=True)
class TokenSummary:
    token_id: str
    token_prefix: str
    product_id: str
    gate_id: str | None
    holder_identity: str
    status: str
    issued_at: datetime
    expires_at: datetime | None
    revoked_at: datetime | None
    max_redemptions: int
    redemption_count: int
    last_granted_at: datetime | None


def list_download_tokens(
    db: Session,
    product_id: str | None = None,
    holder_identity: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[TokenSummary]:
    """
    Metadata of issued tokens, newest first, for the admin links view.

    Raw tokens are never stored, so only a short prefix fragment is shown.
    """
    last_granted = (
        select(
            RedemptionRecord.token_id,
            func.max(RedemptionRecord.redeemed_at).label("last_granted_at"),
        )
        .where(RedemptionRecord.outcome == RedemptionOutcome.GRANTED)
        .group_by(RedemptionRecord.token_id)
        .subquery()
    )
    query = select(DownloadToken, last_granted.c.last_granted_at).outerjoin(
        last_granted, last_granted.c.token_id == DownloadToken.id
    )
    if product_id is not None:
        query = query.where(DownloadToken.product_id == product_id)
    if holder_identity is not None:
        query = query.where(DownloadToken.holder_identity == holder_identity.strip())
    query = (
        query.order_by(DownloadToken.issued_at.desc(), DownloadToken.id).limit(limit).offset(offset)
    )

    now = _utcnow()
    return [
        TokenSummary(
            token_id=token.id,
            token_prefix=token.token_prefix[:TOKEN_PREFIX_FRAGMENT],
            product_id=token.product_id,
            gate_id=token.gate_id,
            holder_identity=token.holder_identity,
            status=token_status(token, now),
            issued_at=token.issued_at,
            expires_at=token.expires_at,
            revoked_at=token.revoked_at,
            max_redemptions=token.max_redemptions,
            redemption_count=token.redemption_count,
            last_granted_at=last_granted_at,
        )
        for token, last_granted_at in db.execute(query).all()
    ]


def get_gate_unlock_counts(db: Session, product_id: str) -> dict[str, int]:
    """Tokens issued through each gate of a product, keyed by gate id."""
    rows = db.execute(
        select(DownloadToken.gate_id, func.count(DownloadToken.id))
        .where(DownloadToken.product_id == product_id, DownloadToken.gate_id != None)  # noqa: E711
        .group_by(DownloadToken.gate_id)
    ).all()
    return {gate_id: count for gate_id, count in rows}


def purge_expired_tokens(db: Session, expired_before: datetime) -> int:
    """
    Delete tokens that expired before the cutoff, with their audit records.

    Returns the count of deleted tokens. Non-expiring tokens are never purged.
    """
    expired_ids = select(DownloadToken.id).where(
        DownloadToken.expires_at != None,  # noqa: E711
        DownloadToken.expires_at < expired_before,
    )
    db.query(RedemptionRecord).filter(RedemptionRecord.token_id.in_(expired_ids)).delete(
        synchronize_session=False
    )
    result = (
        db.query(DownloadToken)
        .filter(
            DownloadToken.expires_at != None,  # noqa: E711
            DownloadToken.expires_at < expired_before,
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    return result
