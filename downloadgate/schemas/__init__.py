from downloadgate.schemas.access import (
    AccessGrantResponse,
    AccessRequest,
    CustomProofIn,
    EmailProofIn,
    NoProofIn,
    PaymentProofIn,
)
from downloadgate.schemas.download import (
    FetchAuthorizationResponse,
    GateResponse,
    ProductResponse,
    ProductStatsResponse,
    RedemptionEntryResponse,
    RevokeResponse,
    TokenSummaryResponse,
    TokenUsageResponse,
)

__all__ = [
    "AccessGrantResponse",
    "AccessRequest",
    "CustomProofIn",
    "EmailProofIn",
    "FetchAuthorizationResponse",
    "GateResponse",
    "NoProofIn",
    "PaymentProofIn",
    "ProductResponse",
    "ProductStatsResponse",
    "RedemptionEntryResponse",
    "RevokeResponse",
    "TokenSummaryResponse",
    "TokenUsageResponse",
]
