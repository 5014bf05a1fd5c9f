from sqlalchemy import Column, Integer, Text, DateTime, func
from petitions.core.database import Base


class RateLimit(Base):
    """
    Site-wide rate limit policy for signature submissions.

    Only one row is expected; it is created with defaults on first use.
    allowed_domains and allowed_ips are comma or newline separated lists.
    """
    __tablename__ = "rate_limits"

    id = Column(Integer, primary_key=True, index=True)

    burst_rate = Column(Integer, nullable=False, default=1)
    burst_period = Column(Integer, nullable=False, default=60)  # seconds
    sustained_rate = Column(Integer, nullable=False, default=5)
    sustained_period = Column(Integer, nullable=False, default=300)  # seconds

    allowed_domains = Column(Text, nullable=False, default="")
    allowed_ips = Column(Text, nullable=False, default="")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return (
            f"<RateLimit(burst={self.burst_rate}/{self.burst_period}s, "
            f"sustained={self.sustained_rate}/{self.sustained_period}s)>"
        )
