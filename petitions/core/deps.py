"""
FastAPI dependencies for the signing endpoints.

Everything the workflow needs from the request (client IP, clock, session,
configuration snapshots) is resolved here once per request.
"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from petitions.core.database import get_db
from petitions.core.rate_limiter import RateLimiter, RateLimitPolicy, rate_limiter
from petitions.core.session_store import SignatureSessionStore
from petitions.core.timeutils import utcnow
from petitions.core.workflow import RequestContext
from petitions.crud import rate_limit as rate_limit_crud
from petitions.services.constituency_service import ConstituencyService, constituency_service


def get_client_ip(request: Request) -> str:
    """
    Extract the client's IP address from the request.

    Handles X-Forwarded-For header for proxied requests.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For can contain multiple IPs, take the first (client IP)
        return forwarded_for.split(",")[0].strip()

    return request.client.host if request.client else "unknown"


def get_request_context(request: Request) -> RequestContext:
    return RequestContext(ip_address=get_client_ip(request), now=utcnow())


def get_session_store(request: Request) -> SignatureSessionStore:
    return SignatureSessionStore(request.session, request.cookies)


def get_rate_limiter() -> RateLimiter:
    return rate_limiter


def get_rate_limit_policy(db: Session = Depends(get_db)) -> RateLimitPolicy:
    return RateLimitPolicy.from_model(rate_limit_crud.get_or_create(db))


def get_constituency_resolver() -> ConstituencyService:
    return constituency_service
