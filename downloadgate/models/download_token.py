import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from downloadgate.database import Base


class DownloadToken(Base):
    """
    Bearer credential granting bounded, revocable access to a product's asset.

    The raw token is returned once at issuance and never stored. Lookup uses
    the unique prefix, then Argon2 verification of the full value.

    After issuance only two columns ever change: ``redemption_count`` (incremented
    by the usage ledger) and ``is_revoked``/``revoked_at``. Rows are never deleted
    except by the optional retention purge.
    """

    __tablename__ = "download_tokens"
    __table_args__ = (
        CheckConstraint("max_redemptions >= 1", name="ck_download_tokens_max_redemptions"),
        CheckConstraint(
            "redemption_count >= 0 AND redemption_count <= max_redemptions",
            name="ck_download_tokens_redemption_count",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Unique prefix doubles as the namespace-wide collision check at insert time
    token_prefix: Mapped[str] = mapped_column(String(16), unique=True, index=True, nullable=False)
    token_hash: Mapped[str] = mapped_column(String(128), nullable=False)

    product_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("products.id"), index=True, nullable=False
    )
    holder_identity: Mapped[str] = mapped_column(String(320), nullable=False)
    # Gate that unlocked this token; None for free products
    gate_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("access_gates.id", ondelete="SET NULL"), index=True, nullable=True
    )

    issued_at: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(UTC).replace(tzinfo=None), nullable=False
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    max_redemptions: Mapped[int] = mapped_column(Integer, nullable=False)
    redemption_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, default=None)

    @property
    def remaining_redemptions(self) -> int:
        return max(self.max_redemptions - self.redemption_count, 0)
