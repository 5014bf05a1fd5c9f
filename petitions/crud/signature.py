"""
CRUD operations for the Signature model.

Lookups used by the duplicate resolver and the state machine live here so the
core never builds queries inline.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session

from petitions.core.tokens import generate_token
from petitions.models.signature import Signature, SignatureState


def get_by_id(db: Session, signature_id: int) -> Optional[Signature]:
    return db.query(Signature).filter(Signature.id == signature_id).first()


def find_by_normalized_email(db: Session, petition_id: int, normalized_email: str) -> Optional[Signature]:
    """Exact match on the lower-cased address."""
    return db.query(Signature).filter(
        Signature.petition_id == petition_id,
        Signature.normalized_email == normalized_email
    ).first()


def find_by_canonical_email(db: Session, petition_id: int, canonical_email: str) -> Optional[Signature]:
    """Alias match: any address that reduces to the same mailbox, oldest first."""
    return db.query(Signature).filter(
        Signature.petition_id == petition_id,
        Signature.canonical_email == canonical_email
    ).order_by(Signature.id.asc()).first()


def build_pending(
    petition_id: int,
    name: str,
    email: str,
    normalized_email: str,
    canonical_email: str,
    postcode: Optional[str],
    location_code: str,
    uk_citizenship: Optional[str],
    notify_by_email: bool,
    ip_address: str,
    now: datetime
) -> Signature:
    """
    Build (but do not persist) a new pending signature with fresh tokens.

    Args:
        petition_id: Owning petition
        email: Address exactly as submitted
        normalized_email: Lower-cased address used for uniqueness
        canonical_email: Address with any +tag removed, used for alias lookups
        ip_address: Address the submission came from
        now: Creation time, also the perishable token issue time

    Returns:
        Signature: transient instance in the pending state
    """
    return Signature(
        petition_id=petition_id,
        name=name,
        email=email,
        normalized_email=normalized_email,
        canonical_email=canonical_email,
        postcode=postcode,
        location_code=location_code,
        uk_citizenship=uk_citizenship,
        notify_by_email=notify_by_email,
        ip_address=ip_address,
        state=SignatureState.PENDING,
        perishable_token=generate_token(),
        perishable_token_issued_at=now,
        unsubscribe_token=generate_token(),
        created_at=now,
    )
