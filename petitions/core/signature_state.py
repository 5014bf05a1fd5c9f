"""
Signature lifecycle: pending -> validated.

Handles perishable token checks and the validation transition. Invalidated
and fraudulent signatures are set by moderation and are never produced here.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Protocol, Tuple
from sqlalchemy import update
from sqlalchemy.orm import Session

from petitions.core.config import settings
from petitions.core.exceptions import SignatureAlreadyHandled, SignatureNotFound
from petitions.core.timeutils import ensure_utc
from petitions.core.tokens import generate_token, tokens_match
from petitions.crud import petition as petition_crud
from petitions.models.signature import Signature, SignatureState

logger = logging.getLogger(__name__)


class ConstituencyResolver(Protocol):
    def lookup(self, postcode: Optional[str]) -> Optional[str]:
        ...


def perishable_token_expired(signature: Signature, now: datetime, lifetime: Optional[timedelta] = None) -> bool:
    if lifetime is None:
        lifetime = timedelta(days=settings.PERISHABLE_TOKEN_LIFETIME_DAYS)
    issued_at = ensure_utc(signature.perishable_token_issued_at)
    return issued_at is None or now - issued_at >= lifetime


def authenticate(
    signature: Optional[Signature],
    token: Optional[str],
    now: datetime,
    lifetime: Optional[timedelta] = None
) -> Signature:
    """
    Check a confirmation link's token against a signature.

    Security checks:
    - Signature must exist
    - Token must match the perishable token exactly (constant-time)
    - A pending signature's token must not have expired

    Validated signatures authenticate whatever the token's age so following
    the same link again is harmless.

    Raises:
        SignatureNotFound: For every failure, so a wrong token looks exactly
            like a missing signature
    """
    if signature is None or not tokens_match(signature.perishable_token, token):
        raise SignatureNotFound()

    if signature.is_pending and perishable_token_expired(signature, now, lifetime):
        logger.info(f"Expired confirmation token used for signature {signature.id}")
        raise SignatureNotFound()

    return signature


def rotate_perishable_token(db: Session, signature: Signature, now: datetime) -> Signature:
    """Issue a fresh confirmation token for a pending signature."""
    signature.perishable_token = generate_token()
    signature.perishable_token_issued_at = now
    db.commit()
    db.refresh(signature)

    logger.info(f"Rotated expired confirmation token for signature {signature.id}")
    return signature


def validate(
    db: Session,
    signature: Optional[Signature],
    token: Optional[str],
    now: datetime,
    ip_address: str,
    resolver: ConstituencyResolver
) -> Tuple[Signature, bool]:
    """
    Move a pending signature to validated.

    - Stamps validated_at, validated_ip and the constituency for its postcode
    - Issues a new signed token proving the validation to the browser session
    - Counts the signature against its petition and stamps thresholds

    The state change is a conditional UPDATE on state = 'pending'; when two
    requests race with the same token exactly one of them performs it.

    Args:
        db: Database session
        signature: Signature being confirmed
        token: Perishable token from the confirmation link
        now: Request time
        ip_address: IP address following the link
        resolver: Postcode to constituency lookup

    Returns:
        Tuple[Signature, bool]: (signature, whether this call validated it)

    Raises:
        SignatureNotFound: Missing signature, wrong or expired token
        SignatureAlreadyHandled: Signature was invalidated or marked fraudulent
    """
    signature = authenticate(signature, token, now)

    if signature.is_validated:
        return signature, False

    if signature.is_handled_by_moderation:
        raise SignatureAlreadyHandled(signature.id, signature.state.value)

    constituency_id = resolver.lookup(signature.postcode)

    result = db.execute(
        update(Signature)
        .where(Signature.id == signature.id, Signature.state == SignatureState.PENDING)
        .values(
            state=SignatureState.VALIDATED,
            validated_at=now,
            validated_ip=ip_address,
            constituency_id=constituency_id,
            signed_token=generate_token(),
        )
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        # Another request validated (or moderation changed) it first
        db.rollback()
        db.refresh(signature)
        if signature.is_handled_by_moderation:
            raise SignatureAlreadyHandled(signature.id, signature.state.value)
        return signature, False

    petition_crud.record_validated_signature(
        db,
        signature.petition_id,
        now,
        threshold_for_response=settings.THRESHOLD_FOR_RESPONSE,
        threshold_for_debate=settings.THRESHOLD_FOR_DEBATE
    )
    db.commit()
    db.refresh(signature)

    logger.info(f"Signature {signature.id} validated for petition {signature.petition_id}")
    return signature, True
