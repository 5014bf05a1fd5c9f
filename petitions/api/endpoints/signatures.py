"""
Public signing endpoints.

Thin wrappers over petitions.core.workflow: they resolve dependencies, call
one workflow operation and shape the JSON response. Workflow refusals are
translated into HTTP errors here.
"""

import logging
from typing import Any, Dict, Optional
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from petitions.core import workflow
from petitions.core.database import get_db
from petitions.core.deps import (
    get_constituency_resolver,
    get_rate_limit_policy,
    get_rate_limiter,
    get_request_context,
    get_session_store,
)
from petitions.core.exceptions import NotOpenForSigning, RateLimited, SignatureNotFound, ValidationFailed
from petitions.core.rate_limiter import RateLimiter, RateLimitPolicy
from petitions.core.session_store import SignatureSessionStore
from petitions.core.workflow import RequestContext, SubmitOutcome
from petitions.schemas.signature import (
    FormRequestResponse,
    SignedResponse,
    SubmitResponse,
    ThankYouResponse,
    UnsubscribeResponse,
    VerifyResponse,
)
from petitions.services.constituency_service import ConstituencyService

router = APIRouter(tags=["Signatures"])
logger = logging.getLogger(__name__)

REFUSALS = (SignatureNotFound, NotOpenForSigning, RateLimited, ValidationFailed)


def _http_error(exc: Exception) -> HTTPException:
    """Translate a workflow refusal into the HTTP error the front end expects."""
    if isinstance(exc, NotOpenForSigning):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": "Petition is not open for signing",
                "notice": exc.notice,
                "reason": exc.reason.value,
                "redirect_to": f"/petitions/{exc.petition_id}"
            }
        )

    if isinstance(exc, RateLimited):
        logger.warning(f"Signature submission blocked on petition {exc.petition_id} ({exc.reason})")
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "message": "Too many signatures have been submitted. Please try again later",
                "reason": exc.reason,
                "redirect_to": f"/petitions/{exc.petition_id}"
            }
        )

    if isinstance(exc, ValidationFailed):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": "Please correct the errors in the signature form", "errors": exc.errors}
        )

    # Same body for unknown records and wrong tokens
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")


@router.get("/petitions/{petition_id}/signatures/new", response_model=FormRequestResponse)
def new_signature(
    petition_id: int,
    response: Response,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
    store: SignatureSessionStore = Depends(get_session_store)
):
    """
    Start signing a petition.

    Issues a form token, stores it in the session and sets the matching
    acknowledgement cookie. Expired form requests in the session are purged.
    """
    try:
        result = workflow.request_form(db, petition_id, context, store)
    except REFUSALS as e:
        raise _http_error(e)
    store.apply_cookies(response)

    return FormRequestResponse(
        petition_id=result.petition.id,
        form_token=result.form_request.form_token,
        form_requested_at=result.form_request.form_requested_at
    )


@router.post(
    "/petitions/{petition_id}/signatures",
    response_model=SubmitResponse,
    status_code=status.HTTP_201_CREATED
)
def create_signature(
    petition_id: int,
    response: Response,
    payload: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
    store: SignatureSessionStore = Depends(get_session_store),
    limiter: RateLimiter = Depends(get_rate_limiter),
    policy: RateLimitPolicy = Depends(get_rate_limit_policy)
):
    """
    Sign a petition.

    Returns 201 with outcome "created" for a new signature, or 200 with
    outcome "redirected" when the address has already signed (a confirmation
    or duplicate-signature email is sent again). Either way the signer is
    sent to the thank-you page.

    Raises:
        HTTPException 404: Petition not found
        HTTPException 409: Petition not open for signing
        HTTPException 422: Invalid form fields
        HTTPException 429: Rate limit exceeded
    """
    try:
        result = workflow.submit(db, petition_id, payload, context, store, limiter, policy)
    except REFUSALS as e:
        raise _http_error(e)
    store.apply_cookies(response)

    if result.outcome == SubmitOutcome.REDIRECTED:
        response.status_code = status.HTTP_200_OK

    return SubmitResponse(
        outcome=result.outcome.value,
        signature_id=result.signature.id,
        petition_id=result.petition.id,
        redirect_to=f"/petitions/{result.petition.id}/signatures/thank-you"
    )


@router.get("/petitions/{petition_id}/signatures/thank-you", response_model=ThankYouResponse)
def thank_you(
    petition_id: int,
    db: Session = Depends(get_db),
    store: SignatureSessionStore = Depends(get_session_store)
):
    """The "check your email" page shown after submitting."""
    try:
        result = workflow.thank_you(db, petition_id, store)
    except REFUSALS as e:
        raise _http_error(e)
    return ThankYouResponse(petition_id=result.petition.id, signature_id=result.signature_id)


@router.get("/signatures/{signature_id}/verify", response_model=VerifyResponse)
def verify_signature(
    signature_id: int,
    token: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
    store: SignatureSessionStore = Depends(get_session_store),
    resolver: ConstituencyService = Depends(get_constituency_resolver)
):
    """
    Confirm a signature from the link in the confirmation email.

    A wrong or expired token is indistinguishable from a missing signature.
    """
    try:
        result = workflow.verify(db, signature_id, token, context, store, resolver)
    except REFUSALS as e:
        raise _http_error(e)

    if result.status == workflow.VerifyStatus.VALIDATED:
        redirect_to = f"/signatures/{result.signature.id}/signed"
    else:
        redirect_to = f"/petitions/{result.petition.id}"

    return VerifyResponse(
        status=result.status.value,
        signature_id=result.signature.id,
        petition_id=result.petition.id,
        newly_validated=result.newly_validated,
        redirect_to=redirect_to
    )


@router.get("/signatures/{signature_id}/signed", response_model=SignedResponse)
def signed_signature(
    signature_id: int,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
    store: SignatureSessionStore = Depends(get_session_store)
):
    """The confirmation page shown once after a successful verification."""
    try:
        result = workflow.signed(db, signature_id, context, store)
    except REFUSALS as e:
        raise _http_error(e)

    return SignedResponse(
        show=result.show,
        signature_id=result.signature.id,
        petition_id=result.petition.id,
        redirect_to=None if result.show else f"/petitions/{result.petition.id}"
    )


@router.get("/signatures/{signature_id}/unsubscribe", response_model=UnsubscribeResponse)
def unsubscribe_signature(
    signature_id: int,
    token: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    """Stop emails about a petition for this signature."""
    try:
        signature = workflow.unsubscribe(db, signature_id, token)
    except REFUSALS as e:
        raise _http_error(e)

    return UnsubscribeResponse(
        signature_id=signature.id,
        petition_id=signature.petition_id,
        notify_by_email=signature.notify_by_email
    )
