"""
Redis-based rate limiting for signature submissions.

Each fingerprint (client IP or email domain) owns a sorted set of submission
timestamps. Pruning, recording and counting happen in one MULTI/EXEC
transaction, so two concurrent submissions can never both squeeze under a
threshold.
"""

import fnmatch
import ipaddress
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

import redis

from petitions.core.config import settings
from petitions.models.rate_limit import RateLimit

logger = logging.getLogger(__name__)

KEY_PREFIX = "signature_rate"


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    items = value.replace("\n", ",").split(",")
    return [item.strip().lower() for item in items if item.strip()]


@dataclass(frozen=True)
class RateLimitPolicy:
    """Immutable snapshot of the rate limit row, read once per request."""
    burst_rate: int = 1
    burst_period: int = 60
    sustained_rate: int = 5
    sustained_period: int = 300
    allowed_domains: Tuple[str, ...] = field(default_factory=tuple)
    allowed_ips: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_model(cls, rate_limit: RateLimit) -> "RateLimitPolicy":
        return cls(
            burst_rate=rate_limit.burst_rate,
            burst_period=rate_limit.burst_period,
            sustained_rate=rate_limit.sustained_rate,
            sustained_period=rate_limit.sustained_period,
            allowed_domains=tuple(_split_list(rate_limit.allowed_domains)),
            allowed_ips=tuple(_split_list(rate_limit.allowed_ips)),
        )

    @property
    def retention_period(self) -> int:
        return max(self.burst_period, self.sustained_period)

    def domain_allowed(self, domain: str) -> bool:
        """Exact domains or shell-style patterns such as *.gov.je"""
        domain = domain.lower()
        return any(fnmatch.fnmatchcase(domain, pattern) for pattern in self.allowed_domains)

    def ip_allowed(self, ip_address: str) -> bool:
        """Single addresses or CIDR blocks"""
        try:
            address = ipaddress.ip_address(ip_address)
        except ValueError:
            return False

        for entry in self.allowed_ips:
            try:
                if address in ipaddress.ip_network(entry, strict=False):
                    return True
            except ValueError:
                logger.warning(f"Ignoring malformed allowed_ips entry: {entry!r}")
        return False


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    reason: Optional[str] = None


def email_domain(email: str) -> str:
    return email.rsplit("@", 1)[-1].strip().lower() if "@" in email else ""


class RateLimiter:
    """
    Sliding-window limiter with a short burst window and a long sustained window.

    Allow-listed IPs and domains bypass counting entirely.
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        fingerprint: Optional[str] = None,
        fail_open: Optional[bool] = None
    ):
        self._redis_client = redis_client
        self.fingerprint = fingerprint or settings.RATE_LIMIT_FINGERPRINT
        self.fail_open = settings.RATE_LIMIT_FAIL_OPEN if fail_open is None else fail_open

    @property
    def redis_client(self) -> redis.Redis:
        """Connect lazily so importing the app never needs a running Redis"""
        if self._redis_client is None:
            self._redis_client = redis.Redis(
                host=settings.REDIS_HOST,
                port=settings.REDIS_PORT,
                db=settings.REDIS_DB,
                decode_responses=True
            )
        return self._redis_client

    def key_for(self, ip_address: str, email: str) -> str:
        if self.fingerprint == "domain":
            return f"{KEY_PREFIX}:domain:{email_domain(email)}"
        return f"{KEY_PREFIX}:ip:{ip_address}"

    def allow(
        self,
        ip_address: str,
        email: str,
        now: datetime,
        policy: RateLimitPolicy
    ) -> RateLimitDecision:
        """
        Decide whether a submission may proceed, recording it if so.

        Args:
            ip_address: Originating client IP
            email: Submitted email address (only its domain is used)
            now: Submission time
            policy: Thresholds and allow-lists

        Returns:
            RateLimitDecision: allowed flag plus the reason for blocks and bypasses
        """
        if policy.ip_allowed(ip_address) or policy.domain_allowed(email_domain(email)):
            return RateLimitDecision(allowed=True, reason="allow_listed")

        key = self.key_for(ip_address, email)
        timestamp = now.timestamp()
        member = f"{timestamp:.6f}:{secrets.token_hex(4)}"

        try:
            pipe = self.redis_client.pipeline(transaction=True)
            pipe.zremrangebyscore(key, "-inf", timestamp - policy.retention_period)
            pipe.zadd(key, {member: timestamp})
            pipe.zcount(key, timestamp - policy.burst_period, "+inf")
            pipe.zcount(key, timestamp - policy.sustained_period, "+inf")
            pipe.expire(key, policy.retention_period)
            _, _, burst_count, sustained_count, _ = pipe.execute()

            if burst_count > policy.burst_rate:
                self.redis_client.zrem(key, member)
                logger.warning(f"Burst rate limit exceeded for {key} ({burst_count}/{policy.burst_rate})")
                return RateLimitDecision(allowed=False, reason="burst")

            if sustained_count > policy.sustained_rate:
                self.redis_client.zrem(key, member)
                logger.warning(f"Sustained rate limit exceeded for {key} ({sustained_count}/{policy.sustained_rate})")
                return RateLimitDecision(allowed=False, reason="sustained")

        except redis.RedisError as e:
            logger.error(f"Redis rate limiter error: {e}")
            if self.fail_open:
                return RateLimitDecision(allowed=True, reason="limiter_unavailable")
            return RateLimitDecision(allowed=False, reason="limiter_unavailable")

        return RateLimitDecision(allowed=True)

    def reset(self, key: str) -> None:
        """
        Reset the event log for a key.

        Useful for testing or manual intervention.
        """
        try:
            self.redis_client.delete(key)
        except redis.RedisError as e:
            logger.error(f"Redis reset error: {e}")


# Singleton instance
rate_limiter = RateLimiter()
