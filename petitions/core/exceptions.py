"""
Error taxonomy for the signing pipeline.

These exceptions are raised by the core and translated to HTTPException by
the signing router.
"""

import enum
from typing import Dict, List, Optional


class NotOpenReason(str, enum.Enum):
    """Why a petition refused a signature or a validation."""
    REJECTED = "rejected"
    CLOSED = "closed"
    RECENTLY_CLOSED = "recently_closed"
    NOT_YET_OPEN = "not_yet_open"


NOTICES = {
    NotOpenReason.REJECTED: "Sorry, you can't sign petitions that have been rejected",
    NotOpenReason.CLOSED: "Sorry, you can't sign petitions that have been closed",
    NotOpenReason.RECENTLY_CLOSED: "Sorry, this petition has just closed and is no longer accepting new signatures",
    NotOpenReason.NOT_YET_OPEN: "Sorry, this petition is not open for signatures yet",
}


class SignatureFlowError(Exception):
    """Base class for errors raised by the signing pipeline."""


class SignatureNotFound(SignatureFlowError):
    """
    Unknown petition or signature, or a token that does not match.

    A wrong token and a missing record raise the same error with no detail.
    """

    def __init__(self) -> None:
        super().__init__("Not found")


class NotOpenForSigning(SignatureFlowError):
    """The petition's disposition does not allow the requested action."""

    def __init__(self, petition_id: int, reason: NotOpenReason):
        self.petition_id = petition_id
        self.reason = reason
        self.notice = NOTICES[reason]
        super().__init__(self.notice)


class RateLimited(SignatureFlowError):
    """The submission exceeded the burst or sustained threshold."""

    def __init__(self, petition_id: int, reason: str):
        self.petition_id = petition_id
        self.reason = reason
        super().__init__(f"Rate limit exceeded ({reason})")


class ValidationFailed(SignatureFlowError):
    """Field-level problems with a submitted signature form."""

    def __init__(self, errors: Dict[str, List[str]]):
        self.errors = errors
        super().__init__("Signature form is invalid")


class ConstraintConflict(SignatureFlowError):
    """
    A concurrent request created the same (petition, email) signature first.

    Always recovered inside the workflow.
    """

    def __init__(self, petition_id: int, normalized_email: str, original: Optional[Exception] = None):
        self.petition_id = petition_id
        self.normalized_email = normalized_email
        self.original = original
        super().__init__(f"Duplicate signature for petition {petition_id}")


class SignatureAlreadyHandled(SignatureFlowError):
    """The signature was invalidated or marked fraudulent by moderators."""

    def __init__(self, signature_id: int, state: str):
        self.signature_id = signature_id
        self.state = state
        super().__init__(f"Signature {signature_id} is {state}")
