"""
Signing workflow.

Orchestrates the rate limiter, the duplicate resolver and the signature state
machine for the public signing endpoints:

1. request_form - issue a form token for the signing form
2. submit       - take a signature (new, re-sent pending, or duplicate)
3. verify       - confirm a signature from the emailed link
4. signed       - show the "signed" confirmation once per validation
5. thank_you    - the "check your email" page after submitting
6. unsubscribe  - stop petition emails for a signature
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Tuple
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from petitions.core import duplicates, signature_state
from petitions.core.celery_utils import queue_signature_email
from petitions.core.config import settings
from petitions.core.disposition import PetitionDisposition
from petitions.core.exceptions import (
    ConstraintConflict,
    NotOpenForSigning,
    RateLimited,
    SignatureAlreadyHandled,
    SignatureNotFound,
)
from petitions.core.rate_limiter import RateLimiter, RateLimitPolicy
from petitions.core.session_store import FormRequest, SignatureSessionStore
from petitions.core.tokens import generate_token, tokens_match
from petitions.crud import petition as petition_crud
from petitions.crud import signature as signature_crud
from petitions.models.petition import Petition
from petitions.models.signature import Signature
from petitions.schemas.signature import SignatureCreateRequest, parse_signature_form
from petitions.services.email_service import DUPLICATE_SIGNATURE, EMAIL_CONFIRMATION

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    ip_address: str
    now: datetime


class SubmitOutcome(str, enum.Enum):
    CREATED = "created"
    REDIRECTED = "redirected"


class VerifyStatus(str, enum.Enum):
    VALIDATED = "validated"
    ALREADY_HANDLED = "already_handled"


@dataclass
class FormRequestResult:
    petition: Petition
    form_request: FormRequest


@dataclass
class SubmitResult:
    outcome: SubmitOutcome
    signature: Signature
    petition: Petition


@dataclass
class VerifyResult:
    status: VerifyStatus
    signature: Signature
    petition: Petition
    newly_validated: bool = False


@dataclass
class SignedResult:
    show: bool
    signature: Signature
    petition: Petition


@dataclass
class ThankYouResult:
    petition: Petition
    signature_id: Optional[int] = None


def _grace() -> timedelta:
    return timedelta(hours=settings.CLOSED_VALIDATION_GRACE_HOURS)


def _load_petition(db: Session, petition_id: int) -> Tuple[Petition, PetitionDisposition]:
    petition = petition_crud.get_by_id(db, petition_id)
    if petition is None:
        raise SignatureNotFound()

    disposition = PetitionDisposition.of(petition)
    if not disposition.is_visible:
        raise SignatureNotFound()

    return petition, disposition


def _load_signature(db: Session, signature_id: int) -> Tuple[Signature, Petition, PetitionDisposition]:
    """Signature and petition for the post-signing pages; petitions still in moderation are not found."""
    signature = signature_crud.get_by_id(db, signature_id)
    if signature is None:
        raise SignatureNotFound()

    petition, disposition = _load_petition(db, signature.petition_id)
    if not disposition.is_published:
        raise SignatureNotFound()

    return signature, petition, disposition


def request_form(
    db: Session,
    petition_id: int,
    context: RequestContext,
    store: SignatureSessionStore
) -> FormRequestResult:
    """
    Issue a form token for a petition's signing form.

    Expired form requests for every petition in the session are swept first.

    Raises:
        SignatureNotFound: Unknown or hidden petition
        NotOpenForSigning: Petition not accepting signatures
    """
    petition, disposition = _load_petition(db, petition_id)

    reason = disposition.signing_refusal(context.now, _grace())
    if reason is not None:
        raise NotOpenForSigning(petition.id, reason)

    store.expire_form_requests(context.now)

    form_request = FormRequest(
        form_token=generate_token(),
        form_requested_at=context.now.replace(microsecond=0)
    )
    store.record_form_request(petition.id, form_request)

    return FormRequestResult(petition=petition, form_request=form_request)


def _insert_pending(
    db: Session,
    petition: Petition,
    form: SignatureCreateRequest,
    context: RequestContext,
    store: SignatureSessionStore
) -> Signature:
    """
    Persist a new pending signature.

    Raises:
        ConstraintConflict: A concurrent request created the same signature first
    """
    normalized = duplicates.normalize_email(form.email)

    signature = signature_crud.build_pending(
        petition_id=petition.id,
        name=form.name,
        email=form.email,
        normalized_email=normalized,
        canonical_email=duplicates.canonical_email(form.email),
        postcode=form.postcode,
        location_code=form.location_code,
        uk_citizenship=form.uk_citizenship,
        notify_by_email=form.notify_by_email,
        ip_address=context.ip_address,
        now=context.now
    )

    form_request = store.form_request(petition.id)
    if form_request is not None and not form_request.expired(context.now, store.form_request_lifetime):
        signature.form_token = form_request.form_token
        signature.form_requested_at = form_request.form_requested_at
        signature.image_loaded_at = store.acknowledged_at(form_request.form_token)

    db.add(signature)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConstraintConflict(petition.id, normalized, e)

    db.refresh(signature)
    store.pop_form_request(petition.id)
    return signature


def _handle_existing(
    db: Session,
    signature: Signature,
    petition: Petition,
    context: RequestContext
) -> SubmitResult:
    if signature.is_pending:
        if signature_state.perishable_token_expired(signature, context.now):
            signature_state.rotate_perishable_token(db, signature, context.now)
        queue_signature_email(EMAIL_CONFIRMATION, signature, petition)
    elif signature.is_validated:
        queue_signature_email(DUPLICATE_SIGNATURE, signature, petition)
    else:
        logger.info(f"Ignoring resubmission for {signature.state.value} signature {signature.id}")

    return SubmitResult(outcome=SubmitOutcome.REDIRECTED, signature=signature, petition=petition)


def submit(
    db: Session,
    petition_id: int,
    payload: Any,
    context: RequestContext,
    store: SignatureSessionStore,
    limiter: RateLimiter,
    policy: RateLimitPolicy,
    resolve_aliases: Optional[bool] = None
) -> SubmitResult:
    """
    Take a signature for a petition.

    - New address: a pending signature is created and a confirmation email sent
    - Pending duplicate: the confirmation email is sent again, same token
    - Validated duplicate: a duplicate signature email is sent instead
    - Invalidated/fraudulent duplicate: nothing is sent

    In every non-error case the session is marked for the thank-you page.

    Args:
        db: Database session
        petition_id: Petition being signed
        payload: Raw signing form, validated once the petition is known to be open
        context: Client IP and request time
        store: Browser session
        limiter: Submission rate limiter
        policy: Rate limit thresholds and allow-lists
        resolve_aliases: Treat plus-addressed variants as the same address

    Returns:
        SubmitResult: CREATED for a new signature, REDIRECTED for an existing one

    Raises:
        SignatureNotFound: Unknown or hidden petition
        NotOpenForSigning: Petition not accepting signatures
        ValidationFailed: Invalid form fields
        RateLimited: Too many submissions; nothing is stored or sent
    """
    petition, disposition = _load_petition(db, petition_id)

    reason = disposition.signing_refusal(context.now, _grace())
    if reason is not None:
        raise NotOpenForSigning(petition.id, reason)

    form = parse_signature_form(payload)

    decision = limiter.allow(context.ip_address, form.email, context.now, policy)
    if not decision.allowed:
        raise RateLimited(petition.id, decision.reason)

    existing = duplicates.resolve(db, petition.id, form.email, resolve_aliases)

    if existing is None:
        try:
            signature = _insert_pending(db, petition, form, context, store)
        except ConstraintConflict as conflict:
            logger.warning(f"Concurrent signature creation on petition {conflict.petition_id}, re-resolving")
            existing = duplicates.resolve(db, petition.id, form.email, resolve_aliases)
            if existing is None:
                raise conflict.original
        else:
            logger.info(f"Created pending signature {signature.id} on petition {petition.id}")
            queue_signature_email(EMAIL_CONFIRMATION, signature, petition)
            store.mark_thank_you(petition.id, signature.id)
            return SubmitResult(outcome=SubmitOutcome.CREATED, signature=signature, petition=petition)

    result = _handle_existing(db, existing, petition, context)
    store.mark_thank_you(petition.id, existing.id)
    return result


def verify(
    db: Session,
    signature_id: int,
    token: Optional[str],
    context: RequestContext,
    store: SignatureSessionStore,
    resolver: signature_state.ConstituencyResolver
) -> VerifyResult:
    """
    Confirm a signature from its emailed link.

    Following the same link twice is a silent success. On success the
    session keeps a signed-session token for this signature only.

    Raises:
        SignatureNotFound: Unknown signature, wrong or expired token, hidden petition
        NotOpenForSigning: Petition rejected, closed beyond the grace period,
            or not yet open
    """
    signature = signature_crud.get_by_id(db, signature_id)
    signature_state.authenticate(signature, token, context.now)

    petition, disposition = _load_petition(db, signature.petition_id)

    reason = disposition.validation_refusal(context.now, _grace())
    if reason is not None:
        raise NotOpenForSigning(petition.id, reason)

    if signature.is_handled_by_moderation:
        return VerifyResult(status=VerifyStatus.ALREADY_HANDLED, signature=signature, petition=petition)

    try:
        signature, newly_validated = signature_state.validate(
            db, signature, token, context.now, context.ip_address, resolver
        )
    except SignatureAlreadyHandled:
        return VerifyResult(status=VerifyStatus.ALREADY_HANDLED, signature=signature, petition=petition)

    store.replace_signed_tokens(signature.id, signature.signed_token, context.now)

    return VerifyResult(
        status=VerifyStatus.VALIDATED,
        signature=signature,
        petition=petition,
        newly_validated=newly_validated
    )


def signed(
    db: Session,
    signature_id: int,
    context: RequestContext,
    store: SignatureSessionStore
) -> SignedResult:
    """
    Decide whether to show the "signed" confirmation page.

    Shown once, to the browser that validated the signature, while the
    petition still accepts validations. Showing it consumes the session token.

    Raises:
        SignatureNotFound: Unknown signature, or hidden or unmoderated petition
    """
    signature, petition, disposition = _load_signature(db, signature_id)
    hidden = SignedResult(show=False, signature=signature, petition=petition)

    if disposition.validation_refusal(context.now, _grace()) is not None:
        return hidden

    if not signature.is_validated:
        return hidden

    if not tokens_match(signature.signed_token, store.signed_token(signature.id, context.now)):
        return hidden

    signature.seen_signed_confirmation_page = True
    db.commit()
    db.refresh(signature)
    store.discard_signed_token(signature.id)

    return SignedResult(show=True, signature=signature, petition=petition)


def thank_you(db: Session, petition_id: int, store: SignatureSessionStore) -> ThankYouResult:
    """
    Raises:
        SignatureNotFound: Unknown or hidden petition
        NotOpenForSigning: Petition rejected, closed or not yet open
    """
    petition, disposition = _load_petition(db, petition_id)

    reason = disposition.thank_you_refusal()
    if reason is not None:
        raise NotOpenForSigning(petition.id, reason)

    return ThankYouResult(petition=petition, signature_id=store.pop_thank_you(petition.id))


def unsubscribe(db: Session, signature_id: int, token: Optional[str]) -> Signature:
    """
    Stop petition emails for a signature.

    Raises:
        SignatureNotFound: Unknown signature, hidden or unmoderated petition, or wrong token
    """
    signature, _, _ = _load_signature(db, signature_id)

    if not tokens_match(signature.unsubscribe_token, token):
        raise SignatureNotFound()

    signature.notify_by_email = False
    db.commit()
    db.refresh(signature)

    logger.info(f"Signature {signature.id} unsubscribed from petition emails")
    return signature
