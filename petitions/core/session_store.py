"""
Typed access to the browser session used by the signing pipeline.

The raw session is Starlette's signed-cookie session dict. It holds:

- form_requests: {petition_id: {"form_token", "form_requested_at"}}
- signed_tokens: {signature_id: {"token", "issued_at"}}
- thank_you: {petition_id: signature_id}

Sections are never edited in place. The session only tracks top-level
writes, so every change replaces the whole section.

Each form request also has an acknowledgement cookie named after its form
token whose value is a JWT carrying the issue time. Cookie changes are queued
here and written to the outgoing response by apply_cookies().
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, MutableMapping, Optional, Set

from jose import JWTError, jwt
from starlette.responses import Response

from petitions.core.config import settings
from petitions.core.timeutils import isoformat, parse_isoformat

logger = logging.getLogger(__name__)

FORM_REQUESTS_KEY = "form_requests"
SIGNED_TOKENS_KEY = "signed_tokens"
THANK_YOU_KEY = "thank_you"


@dataclass(frozen=True)
class FormRequest:
    form_token: str
    form_requested_at: datetime

    def expired(self, now: datetime, lifetime: timedelta) -> bool:
        return now - self.form_requested_at >= lifetime

    def to_session(self) -> Dict[str, str]:
        return {
            "form_token": self.form_token,
            "form_requested_at": isoformat(self.form_requested_at),
        }

    @classmethod
    def from_session(cls, data: Mapping[str, str]) -> Optional["FormRequest"]:
        try:
            return cls(
                form_token=data["form_token"],
                form_requested_at=parse_isoformat(data["form_requested_at"]),
            )
        except (KeyError, TypeError, ValueError):
            return None


class SignatureSessionStore:
    """
    Session-scoped state for one browser.

    Args:
        session: Mutable session mapping (request.session)
        cookies: Incoming request cookies
    """

    def __init__(
        self,
        session: MutableMapping,
        cookies: Mapping[str, str],
        form_request_lifetime: Optional[timedelta] = None,
        signed_token_lifetime: Optional[timedelta] = None
    ):
        self.session = session
        self.cookies = cookies
        self.form_request_lifetime = form_request_lifetime or timedelta(hours=settings.FORM_REQUEST_LIFETIME_HOURS)
        self.signed_token_lifetime = signed_token_lifetime or timedelta(minutes=settings.SIGNED_TOKEN_LIFETIME_MINUTES)
        self.cookies_to_set: Dict[str, str] = {}
        self.cookies_to_delete: Set[str] = set()

    def _section(self, key: str) -> dict:
        """A copy of one session section; write changes back with _save()."""
        section = self.session.get(key)
        return dict(section) if isinstance(section, dict) else {}

    def _save(self, key: str, section: dict) -> None:
        # Only top-level assignment marks the session cookie for rewriting
        self.session[key] = section

    # Form requests

    def form_request(self, petition_id: int) -> Optional[FormRequest]:
        data = self._section(FORM_REQUESTS_KEY).get(str(petition_id))
        return FormRequest.from_session(data) if isinstance(data, dict) else None

    def expire_form_requests(self, now: datetime) -> List[str]:
        """
        Drop every expired (or unreadable) form request in the session.

        Sweeps all petitions, not only the one being signed, and deletes the
        acknowledgement cookies of the dropped requests.

        Returns:
            List[str]: form tokens that were dropped
        """
        form_requests = self._section(FORM_REQUESTS_KEY)
        kept = {}
        expired = []

        for petition_id, data in form_requests.items():
            form_request = FormRequest.from_session(data) if isinstance(data, dict) else None
            if form_request is None or form_request.expired(now, self.form_request_lifetime):
                if form_request is not None:
                    self._delete_cookie(form_request.form_token)
                    expired.append(form_request.form_token)
            else:
                kept[petition_id] = data

        if len(kept) != len(form_requests):
            self._save(FORM_REQUESTS_KEY, kept)

        if expired:
            logger.info(f"Expired {len(expired)} form request(s) from session")
        return expired

    def record_form_request(self, petition_id: int, form_request: FormRequest) -> None:
        """Store a form request and queue its acknowledgement cookie."""
        form_requests = self._section(FORM_REQUESTS_KEY)
        form_requests[str(petition_id)] = form_request.to_session()
        self._save(FORM_REQUESTS_KEY, form_requests)

        self.cookies_to_delete.discard(form_request.form_token)
        self.cookies_to_set[form_request.form_token] = jwt.encode(
            {"form_requested_at": isoformat(form_request.form_requested_at)},
            settings.SECRET_KEY,
            algorithm=settings.ALGORITHM
        )

    def pop_form_request(self, petition_id: int) -> Optional[FormRequest]:
        """Remove a petition's form request and its cookie, returning it."""
        form_requests = self._section(FORM_REQUESTS_KEY)
        if str(petition_id) not in form_requests:
            return None

        data = form_requests.pop(str(petition_id))
        self._save(FORM_REQUESTS_KEY, form_requests)

        form_request = FormRequest.from_session(data) if isinstance(data, dict) else None
        if form_request is not None:
            self._delete_cookie(form_request.form_token)
        return form_request

    def acknowledged_at(self, form_token: str) -> Optional[datetime]:
        """Issue time carried by a form token's acknowledgement cookie, if valid."""
        value = self.cookies.get(form_token)
        if not value:
            return None
        try:
            payload = jwt.decode(value, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
            return parse_isoformat(payload["form_requested_at"])
        except (JWTError, KeyError, TypeError, ValueError):
            logger.warning("Ignoring tampered or malformed form acknowledgement cookie")
            return None

    # Signed-session tokens

    def signed_token(self, signature_id: int, now: datetime) -> Optional[str]:
        """The signed token for a signature, if present and still fresh."""
        data = self._section(SIGNED_TOKENS_KEY).get(str(signature_id))
        if not isinstance(data, dict):
            return None
        try:
            issued_at = parse_isoformat(data["issued_at"])
        except (KeyError, TypeError, ValueError):
            return None
        if now - issued_at >= self.signed_token_lifetime:
            return None
        return data.get("token")

    def replace_signed_tokens(self, signature_id: int, token: str, now: datetime) -> None:
        """Keep exactly one signed-session proof: the one for this signature."""
        self._save(SIGNED_TOKENS_KEY, {
            str(signature_id): {"token": token, "issued_at": isoformat(now)}
        })

    def discard_signed_token(self, signature_id: int) -> None:
        signed_tokens = self._section(SIGNED_TOKENS_KEY)
        if signed_tokens.pop(str(signature_id), None) is not None:
            self._save(SIGNED_TOKENS_KEY, signed_tokens)

    # Thank-you marker

    def mark_thank_you(self, petition_id: int, signature_id: int) -> None:
        thank_you = self._section(THANK_YOU_KEY)
        thank_you[str(petition_id)] = signature_id
        self._save(THANK_YOU_KEY, thank_you)

    def pop_thank_you(self, petition_id: int) -> Optional[int]:
        thank_you = self._section(THANK_YOU_KEY)
        signature_id = thank_you.pop(str(petition_id), None)
        if signature_id is not None:
            self._save(THANK_YOU_KEY, thank_you)
        return signature_id

    # Cookies

    def _delete_cookie(self, name: str) -> None:
        self.cookies_to_set.pop(name, None)
        self.cookies_to_delete.add(name)

    def apply_cookies(self, response: Response) -> Response:
        """Write queued acknowledgement cookie changes to a response."""
        for name, value in self.cookies_to_set.items():
            response.set_cookie(
                name,
                value,
                max_age=int(self.form_request_lifetime.total_seconds()),
                httponly=True,
                secure=settings.SESSION_COOKIE_SECURE,
                samesite="lax"
            )
        for name in self.cookies_to_delete:
            response.delete_cookie(name)
        return response
