from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from downloadgate.database import Base


class AccessType(StrEnum):
    FREE = "free"
    EMAIL = "email"
    PAYMENT = "payment"
    CUSTOM = "custom"


class GateType(StrEnum):
    EMAIL = "email"
    PAYMENT = "payment"
    CUSTOM = "custom"


class Product(Base):
    """
    A downloadable digital product.

    Owned by the catalog; this service only reads it. ``asset_location`` is the
    object key (or URL) of the underlying file handed out in fetch
    authorizations.
    """

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    access_type: Mapped[str] = mapped_column(String(20), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    asset_location: Mapped[str] = mapped_column(String(1024), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(UTC).replace(tzinfo=None), nullable=False
    )

    gates: Mapped[list["AccessGate"]] = relationship(back_populates="product")


class AccessGate(Base):
    """
    Policy a requester must satisfy before a token is issued for a product.

    Free products carry no gate. Every other product needs exactly one enabled
    gate whose ``gate_type`` matches the product's ``access_type``.
    """

    __tablename__ = "access_gates"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    product_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("products.id", ondelete="CASCADE"), index=True, nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    gate_type: Mapped[str] = mapped_column(String(20), nullable=False)
    # Name of a registered custom policy (custom gates only)
    custom_policy_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    custom_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    product: Mapped[Product] = relationship(back_populates="gates")
