from downloadgate.models.download_token import DownloadToken
from downloadgate.models.product import AccessGate, AccessType, GateType, Product
from downloadgate.models.redemption_record import RedemptionOutcome, RedemptionRecord

__all__ = [
    "AccessGate",
    "AccessType",
    "DownloadToken",
    "GateType",
    "Product",
    "RedemptionOutcome",
    "RedemptionRecord",
]
