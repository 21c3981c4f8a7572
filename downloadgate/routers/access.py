import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from downloadgate.config import settings
from downloadgate.database import get_db
from downloadgate.middleware.rate_limit import limiter
from downloadgate.schemas.access import AccessGrantResponse, AccessRequest
from downloadgate.services.delivery_authorizer import request_access
from downloadgate.services.results import (
    DENIED,
    GATE_DENIED,
    MISCONFIGURED_GATE,
    PRODUCT_INACTIVE,
    PRODUCT_NOT_FOUND,
    Denial,
    IssuanceFailedError,
)

router = APIRouter()
logger = structlog.get_logger()

REQUEST_DENIAL_STATUS = {
    PRODUCT_NOT_FOUND: 404,
    PRODUCT_INACTIVE: 409,
    MISCONFIGURED_GATE: 409,
    GATE_DENIED: 403,
    DENIED: 403,
}


@router.post("/access-requests", response_model=AccessGrantResponse, status_code=201)
@limiter.limit(settings.rate_limit_access_requests)
def create_access_request(
    request: Request,
    access_data: AccessRequest,
    db: Session = Depends(get_db),
):
    """
    Request a download token for a product.

    The proof must match the product's gate: an email address for email gates,
    a payment verification outcome for payment gates, an opaque payload for
    custom gates. Free products ignore the proof.
    """
    try:
        result = request_access(
            db=db,
            product_id=access_data.product_id,
            proof=access_data.proof.to_proof(),
            holder_identity=access_data.holder_identity,
        )
    except IssuanceFailedError as e:
        raise HTTPException(status_code=503, detail={"error": e.code})

    if isinstance(result, Denial):
        raise HTTPException(
            status_code=REQUEST_DENIAL_STATUS.get(result.reason, 403),
            detail={"error": result.reason},
        )

    return AccessGrantResponse(
        token=result.token,
        product_id=result.product_id,
        expires_at=result.expires_at,
        max_redemptions=result.max_redemptions,
    )
