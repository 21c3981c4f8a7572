from pydantic import BaseModel

from downloadgate.schemas.common import UTCDateTime


class FetchAuthorizationResponse(BaseModel):
    product_id: str
    asset_location: str
    # Presigned URL when object storage is enabled
    download_url: str | None = None
    redemption_number: int
    remaining_redemptions: int


class RevokeResponse(BaseModel):
    ok: bool = True


class RedemptionEntryResponse(BaseModel):
    redeemed_at: UTCDateTime
    outcome: str


class TokenUsageResponse(BaseModel):
    token_id: str
    product_id: str
    status: str  # "active" | "exhausted" | "expired" | "revoked"
    issued_at: UTCDateTime
    expires_at: UTCDateTime | None = None
    revoked_at: UTCDateTime | None = None
    max_redemptions: int
    redemption_count: int
    redemptions: list[RedemptionEntryResponse]


class ProductStatsResponse(BaseModel):
    product_id: str
    tokens_issued: int
    downloads: int
    denied_attempts: int
    last_download_at: UTCDateTime | None = None


class ProductResponse(BaseModel):
    id: str
    name: str
    access_type: str
    is_active: bool


class TokenSummaryResponse(BaseModel):
    token_id: str
    token_prefix: str
    product_id: str
    gate_id: str | None = None
    holder_identity: str
    status: str
    issued_at: UTCDateTime
    expires_at: UTCDateTime | None = None
    revoked_at: UTCDateTime | None = None
    max_redemptions: int
    redemption_count: int
    last_granted_at: UTCDateTime | None = None


class GateResponse(BaseModel):
    id: str
    name: str
    gate_type: str
    custom_message: str | None = None
    is_enabled: bool
    unlock_count: int
