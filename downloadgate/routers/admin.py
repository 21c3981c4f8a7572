from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy.orm import Session

from downloadgate.config import settings
from downloadgate.database import get_db
from downloadgate.middleware.rate_limit import limiter
from downloadgate.routers.downloads import extract_bearer_token
from downloadgate.schemas.download import (
    GateResponse,
    ProductResponse,
    ProductStatsResponse,
    RedemptionEntryResponse,
    RevokeResponse,
    TokenSummaryResponse,
    TokenUsageResponse,
)
from downloadgate.services.delivery_authorizer import revoke_access
from downloadgate.services.product_registry import get_product, list_gates, list_products
from downloadgate.services.results import RevocationFailedError
from downloadgate.services.usage_ledger import (
    get_gate_unlock_counts,
    get_product_stats,
    get_token_usage,
    list_download_tokens,
)

router = APIRouter()


def verify_internal_api_key(x_api_key: str = Header(..., alias="X-API-Key")) -> None:
    """Verify internal API key for admin operations."""
    if not settings.internal_api_key:
        raise HTTPException(status_code=503, detail="Admin API not configured")
    if x_api_key != settings.internal_api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


@router.post("/admin/tokens/revoke", response_model=RevokeResponse)
@limiter.limit(settings.rate_limit_admin)
def revoke_token(
    request: Request,
    _: None = Depends(verify_internal_api_key),
    raw_token: str = Depends(extract_bearer_token),
    db: Session = Depends(get_db),
):
    """
    Revoke a download token.

    Idempotent: revoking a revoked or expired token succeeds.
    """
    try:
        revoked = revoke_access(db, raw_token)
    except RevocationFailedError as e:
        raise HTTPException(status_code=503, detail={"error": e.code})

    if not revoked:
        raise HTTPException(status_code=404, detail={"error": "not-found"})
    return RevokeResponse(ok=True)


@router.get("/admin/tokens", response_model=list[TokenSummaryResponse])
@limiter.limit(settings.rate_limit_admin)
def tokens(
    request: Request,
    product_id: str | None = None,
    holder_identity: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    _: None = Depends(verify_internal_api_key),
    db: Session = Depends(get_db),
):
    """Issued tokens, newest first, filtered by product and/or holder."""
    return [
        TokenSummaryResponse(
            token_id=t.token_id,
            token_prefix=t.token_prefix,
            product_id=t.product_id,
            gate_id=t.gate_id,
            holder_identity=t.holder_identity,
            status=t.status,
            issued_at=t.issued_at,
            expires_at=t.expires_at,
            revoked_at=t.revoked_at,
            max_redemptions=t.max_redemptions,
            redemption_count=t.redemption_count,
            last_granted_at=t.last_granted_at,
        )
        for t in list_download_tokens(
            db,
            product_id=product_id,
            holder_identity=holder_identity,
            limit=limit,
            offset=offset,
        )
    ]


@router.get("/admin/tokens/usage", response_model=TokenUsageResponse)
@limiter.limit(settings.rate_limit_admin)
def token_usage(
    request: Request,
    _: None = Depends(verify_internal_api_key),
    raw_token: str = Depends(extract_bearer_token),
    db: Session = Depends(get_db),
):
    """Usage counters and redemption history of a token. Does not redeem it."""
    usage = get_token_usage(db, raw_token)
    if usage is None:
        raise HTTPException(status_code=404, detail={"error": "not-found"})

    return TokenUsageResponse(
        token_id=usage.token_id,
        product_id=usage.product_id,
        status=usage.status,
        issued_at=usage.issued_at,
        expires_at=usage.expires_at,
        revoked_at=usage.revoked_at,
        max_redemptions=usage.max_redemptions,
        redemption_count=usage.redemption_count,
        redemptions=[
            RedemptionEntryResponse(redeemed_at=r.redeemed_at, outcome=r.outcome)
            for r in usage.redemptions
        ],
    )


@router.get("/admin/products", response_model=list[ProductResponse])
@limiter.limit(settings.rate_limit_admin)
def products(
    request: Request,
    active_only: bool = False,
    _: None = Depends(verify_internal_api_key),
    db: Session = Depends(get_db),
):
    return [
        ProductResponse(
            id=p.id,
            name=p.name,
            access_type=p.access_type,
            is_active=p.is_active,
        )
        for p in list_products(db, active_only=active_only)
    ]


@router.get("/admin/products/{product_id}/gates", response_model=list[GateResponse])
@limiter.limit(settings.rate_limit_admin)
def product_gates(
    request: Request,
    product_id: str,
    _: None = Depends(verify_internal_api_key),
    db: Session = Depends(get_db),
):
    """Gates of a product, enabled or not, with the tokens each has unlocked."""
    if get_product(db, product_id) is None:
        raise HTTPException(status_code=404, detail={"error": "product-not-found"})

    unlocks = get_gate_unlock_counts(db, product_id)
    return [
        GateResponse(
            id=g.id,
            name=g.name,
            gate_type=g.gate_type,
            custom_message=g.custom_message,
            is_enabled=g.is_enabled,
            unlock_count=unlocks.get(g.id, 0),
        )
        for g in list_gates(db, product_id)
    ]


@router.get("/admin/products/{product_id}/stats", response_model=ProductStatsResponse)
@limiter.limit(settings.rate_limit_admin)
def product_stats(
    request: Request,
    product_id: str,
    _: None = Depends(verify_internal_api_key),
    db: Session = Depends(get_db),
):
    """Tokens issued and downloads granted for a product, derived from the ledger."""
    if get_product(db, product_id) is None:
        raise HTTPException(status_code=404, detail={"error": "product-not-found"})
    return ProductStatsResponse(**get_product_stats(db, product_id))
