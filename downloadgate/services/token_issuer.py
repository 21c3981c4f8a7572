from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from downloadgate.config import settings
from downloadgate.models.download_token import DownloadToken
from downloadgate.services.crypto_utils import (
    TOKEN_PREFIX_FRAGMENT,
    generate_token_value,
    get_token_prefix,
    hash_token,
)
from downloadgate.services.product_registry import get_product
from downloadgate.services.results import (
    PRODUCT_INACTIVE,
    PRODUCT_NOT_FOUND,
    IssuanceFailedError,
    TokenIssuanceError,
)

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class TokenPolicy:
    """Expiry window and redemption limit for a newly issued token."""

    ttl: timedelta | None
    max_redemptions: int


def get_policy_for_access_type(access_type: str) -> TokenPolicy:
    """
    Resolve the issuance policy for a product's access type.

    Starts from the global defaults and applies the ``access_type_policies``
    override for the type, if any. An override may set ``ttl_days`` to None
    to issue non-expiring tokens.
    """
    override = settings.access_type_policies.get(access_type, {})
    ttl_days = override.get("ttl_days", settings.token_ttl_days)
    max_redemptions = override.get("max_redemptions", settings.token_max_redemptions)
    return TokenPolicy(
        ttl=timedelta(days=ttl_days) if ttl_days is not None else None,
        max_redemptions=int(max_redemptions),
    )


def issue_download_token(
    db: Session,
    product_id: str,
    holder_identity: str,
    policy: TokenPolicy | None = None,
    now: datetime | None = None,
    gate_id: str | None = None,
) -> tuple[DownloadToken, str]:
    """
    Mint and persist a new download token.

    Callers must have obtained an ALLOW from the gate evaluator for this
    request. The product is re-checked here so that no token is ever issued
    for a missing or inactive product.

    Returns tuple of (token_model, raw_token). The raw token is only available
    at issuance; it is committed before being returned.

    Raises TokenIssuanceError for a missing/inactive product and
    IssuanceFailedError when storage fails or every attempt collides.
    """
    if not holder_identity or not holder_identity.strip():
        raise ValueError("holder_identity is required")

    product = get_product(db, product_id)
    if product is None:
        raise TokenIssuanceError(PRODUCT_NOT_FOUND)
    if not product.is_active:
        raise TokenIssuanceError(PRODUCT_INACTIVE)

    if policy is None:
        policy = get_policy_for_access_type(product.access_type)
    if policy.max_redemptions < 1:
        raise ValueError("max_redemptions must be at least 1")

    issued_at = now or datetime.now(UTC).replace(tzinfo=None)
    expires_at = issued_at + policy.ttl if policy.ttl is not None else None

    for attempt in range(1, settings.token_issue_max_attempts + 1):
        raw_token = generate_token_value()
        token = DownloadToken(
            token_prefix=get_token_prefix(raw_token),
            token_hash=hash_token(raw_token),
            product_id=product.id,
            holder_identity=holder_identity.strip(),
            gate_id=gate_id,
            issued_at=issued_at,
            expires_at=expires_at,
            max_redemptions=policy.max_redemptions,
            redemption_count=0,
            is_revoked=False,
        )
        db.add(token)
        try:
            db.commit()
        except IntegrityError:
            # The unique prefix index rejected a value already in the namespace
            db.rollback()
            logger.warning("token_prefix_collision", product_id=product.id, attempt=attempt)
            continue
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("token_issuance_storage_error", product_id=product.id, error=str(e))
            raise IssuanceFailedError("Token could not be stored") from e

        db.refresh(token)
        logger.info(
            "download_token_issued",
            token_id=token.id,
            token_prefix=token.token_prefix[:TOKEN_PREFIX_FRAGMENT],
            product_id=product.id,
            expires_at=token.expires_at.isoformat() if token.expires_at else None,
            max_redemptions=token.max_redemptions,
        )
        return token, raw_token

    raise IssuanceFailedError(
        f"Token generation collided {settings.token_issue_max_attempts} times"
    )
