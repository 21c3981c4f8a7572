import uuid
from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from downloadgate.database import Base


class RedemptionOutcome(StrEnum):
    GRANTED = "granted"
    DENIED_EXPIRED = "denied-expired"
    DENIED_REVOKED = "denied-revoked"
    DENIED_EXHAUSTED = "denied-exhausted"


class RedemptionRecord(Base):
    """Append-only audit entry, one per redemption attempt on a known token."""

    __tablename__ = "redemption_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    token_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("download_tokens.id", ondelete="CASCADE"), index=True, nullable=False
    )
    redeemed_at: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(UTC).replace(tzinfo=None), nullable=False
    )
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
