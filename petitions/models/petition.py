import enum
from sqlalchemy import Column, Integer, String, DateTime, Enum, func
from sqlalchemy.orm import relationship
from petitions.core.database import Base


class PetitionState(str, enum.Enum):
    """
    Petition moderation and publication states.

    - PENDING/VALIDATED/SPONSORED/FLAGGED: still going through moderation
    - HIDDEN/STOPPED: taken down, not public
    - OPEN: collecting signatures
    - CLOSED: signing period over
    - REJECTED: published as rejected
    """
    PENDING = "pending"
    VALIDATED = "validated"
    SPONSORED = "sponsored"
    FLAGGED = "flagged"
    HIDDEN = "hidden"
    STOPPED = "stopped"
    OPEN = "open"
    CLOSED = "closed"
    REJECTED = "rejected"


class Petition(Base):
    """
    Petition read by the signing pipeline.

    Petitions are created and moderated elsewhere; this service reads their
    state and maintains the signature counters.
    """
    __tablename__ = "petitions"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String(255), nullable=False)
    state = Column(Enum(PetitionState), default=PetitionState.PENDING, nullable=False, index=True)

    open_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)

    # Counters maintained when signatures are validated
    signature_count = Column(Integer, default=0, nullable=False)
    last_signed_at = Column(DateTime(timezone=True), nullable=True)
    response_threshold_reached_at = Column(DateTime(timezone=True), nullable=True)
    debate_threshold_reached_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    signatures = relationship("Signature", back_populates="petition")

    def __repr__(self):
        return f"<Petition(id={self.id}, state={self.state.value})>"
