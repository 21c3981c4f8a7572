import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from downloadgate.config import settings
from downloadgate.database import get_db
from downloadgate.middleware.rate_limit import limiter
from downloadgate.schemas.download import FetchAuthorizationResponse
from downloadgate.services.delivery_authorizer import redeem_access
from downloadgate.services.discord_service import send_error_alert
from downloadgate.services.results import (
    DENIED,
    EXHAUSTED,
    EXPIRED,
    NOT_FOUND,
    REVOKED,
    Denial,
    RedemptionFailedError,
)
from downloadgate.services.storage_service import ObjectStorageService

router = APIRouter()
logger = structlog.get_logger()

REDEMPTION_DENIAL_STATUS = {
    NOT_FOUND: 404,
    REVOKED: 410,
    EXPIRED: 410,
    EXHAUSTED: 410,
    DENIED: 403,
}


def extract_bearer_token(authorization: str = Header(...)) -> str:
    """Extract token from Authorization header."""
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")
    return authorization[7:]


def get_storage_service() -> ObjectStorageService:
    return ObjectStorageService(settings)


@router.post("/downloads/redeem", response_model=FetchAuthorizationResponse)
@limiter.limit(settings.rate_limit_redeems)
async def redeem_download(
    request: Request,
    raw_token: str = Depends(extract_bearer_token),
    db: Session = Depends(get_db),
    storage: ObjectStorageService = Depends(get_storage_service),
):
    """
    Redeem a download token for a fetch authorization.

    Each successful call consumes one redemption. When object storage is
    enabled the response carries a short-lived presigned download URL. The
    redemption is already committed when signing runs, so a signing failure
    still returns the authorization, with ``download_url`` null.
    """
    try:
        # Argon2 verification and the database work block; keep them off the loop
        result = await run_in_threadpool(redeem_access, db, raw_token)
    except RedemptionFailedError as e:
        raise HTTPException(status_code=503, detail={"error": e.code})

    if isinstance(result, Denial):
        raise HTTPException(
            status_code=REDEMPTION_DENIAL_STATUS.get(result.reason, 403),
            detail={"error": result.reason},
        )

    download_url = None
    if storage.enabled:
        try:
            download_url = await storage.presign_download(object_key=result.asset_location)
        except Exception as e:
            logger.error(
                "presign_failed",
                token_id=result.token_id,
                product_id=result.product_id,
                error=str(e),
                exc_info=e,
            )
            await send_error_alert(
                "PresignFailed",
                str(e),
                path=request.url.path,
                product_id=result.product_id,
                token_id=result.token_id,
            )

    return FetchAuthorizationResponse(
        product_id=result.product_id,
        asset_location=result.asset_location,
        download_url=download_url,
        redemption_number=result.redemption_number,
        remaining_redemptions=result.remaining_redemptions,
    )
