"""
Signature model.

A signature starts out pending and becomes validated when its owner follows
the confirmation link. Invalidated and fraudulent are set by moderators and
anti-abuse jobs; the signing pipeline only respects them.
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Enum, ForeignKey, Index, UniqueConstraint, func
)
from sqlalchemy.orm import relationship
from petitions.core.database import Base


class SignatureState(str, enum.Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    INVALIDATED = "invalidated"
    FRAUDULENT = "fraudulent"


class Signature(Base):
    __tablename__ = "signatures"

    id = Column(Integer, primary_key=True, index=True)
    petition_id = Column(Integer, ForeignKey("petitions.id", ondelete="CASCADE"), nullable=False, index=True)

    # Signer details
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)  # As submitted
    normalized_email = Column(String(255), nullable=False)  # Lower-cased, trimmed
    canonical_email = Column(String(255), nullable=False)  # Normalized without +tag
    postcode = Column(String(255), nullable=True)
    location_code = Column(String(30), nullable=False, default="GB")
    uk_citizenship = Column(String(1), nullable=True)
    constituency_id = Column(String(255), nullable=True)
    notify_by_email = Column(Boolean, nullable=False, default=False)

    state = Column(Enum(SignatureState), default=SignatureState.PENDING, nullable=False, index=True)

    # Request fingerprints
    ip_address = Column(String(45), nullable=True)
    validated_ip = Column(String(45), nullable=True)

    # Tokens
    perishable_token = Column(String(255), nullable=False, unique=True)
    perishable_token_issued_at = Column(DateTime(timezone=True), nullable=False)
    unsubscribe_token = Column(String(255), nullable=False, unique=True)
    signed_token = Column(String(255), nullable=True)

    # Anti-automation details captured from the signing form request
    form_token = Column(String(255), nullable=True)
    form_requested_at = Column(DateTime(timezone=True), nullable=True)
    image_loaded_at = Column(DateTime(timezone=True), nullable=True)

    seen_signed_confirmation_page = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    validated_at = Column(DateTime(timezone=True), nullable=True)

    petition = relationship("Petition", back_populates="signatures")

    __table_args__ = (
        # Serializes concurrent first submissions for the same address
        UniqueConstraint('petition_id', 'normalized_email', name='uq_signatures_petition_email'),
        Index('ix_signatures_petition_canonical_email', 'petition_id', 'canonical_email'),
    )

    @property
    def is_pending(self) -> bool:
        return self.state == SignatureState.PENDING

    @property
    def is_validated(self) -> bool:
        return self.state == SignatureState.VALIDATED

    @property
    def is_handled_by_moderation(self) -> bool:
        return self.state in (SignatureState.INVALIDATED, SignatureState.FRAUDULENT)

    def __repr__(self):
        return f"<Signature(id={self.id}, petition_id={self.petition_id}, state={self.state.value})>"
