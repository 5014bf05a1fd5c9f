"""
CRUD operations for the RateLimit policy row.
"""

from sqlalchemy.orm import Session

from petitions.models.rate_limit import RateLimit


def get_or_create(db: Session) -> RateLimit:
    """Return the policy row, creating one with default thresholds if missing."""
    rate_limit = db.query(RateLimit).order_by(RateLimit.id.asc()).first()

    if rate_limit is None:
        rate_limit = RateLimit(
            burst_rate=1,
            burst_period=60,
            sustained_rate=5,
            sustained_period=300,
            allowed_domains="",
            allowed_ips=""
        )
        db.add(rate_limit)
        db.commit()
        db.refresh(rate_limit)

    return rate_limit
