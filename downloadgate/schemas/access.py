from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator

from downloadgate.schemas.common import UTCDateTime
from downloadgate.services.gate_policy import (
    CustomProof,
    EmailProof,
    GateProof,
    NoProof,
    PaymentProof,
)


class NoProofIn(BaseModel):
    type: Literal["none"] = "none"

    def to_proof(self) -> GateProof:
        return NoProof()


class EmailProofIn(BaseModel):
    """Attested by the email capture form; only syntax is checked here."""

    type: Literal["email"]
    address: str = Field("", max_length=320)

    def to_proof(self) -> GateProof:
        return EmailProof(address=self.address)


class PaymentProofIn(BaseModel):
    """Outcome of payment verification performed by the payment collaborator."""

    type: Literal["payment"]
    verified: bool
    transaction_ref: str | None = Field(None, max_length=255)

    def to_proof(self) -> GateProof:
        return PaymentProof(verified=self.verified, transaction_ref=self.transaction_ref)


class CustomProofIn(BaseModel):
    type: Literal["custom"]
    payload: dict[str, Any] = Field(default_factory=dict)

    def to_proof(self) -> GateProof:
        return CustomProof(payload=self.payload)


ProofIn = Annotated[
    NoProofIn | EmailProofIn | PaymentProofIn | CustomProofIn,
    Field(discriminator="type"),
]


class AccessRequest(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=64)
    holder_identity: str = Field(..., min_length=1, max_length=320)
    proof: ProofIn = Field(default_factory=NoProofIn)

    @field_validator("holder_identity")
    @classmethod
    def validate_holder_identity(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("holder_identity cannot be blank")
        return v


class AccessGrantResponse(BaseModel):
    """Contains the raw token; it is only returned once, at issuance."""

    token: str
    product_id: str
    expires_at: UTCDateTime | None = None
    max_redemptions: int
