"""
Postcode to constituency lookup.

The constituency is optional metadata on a validated signature, so lookup
failures are logged and reported as "unknown" rather than failing validation.
"""

import logging
import re
from typing import Optional

import httpx

from petitions.core.config import settings

logger = logging.getLogger(__name__)


class ConstituencyLookupError(Exception):
    """Raised when the constituency API answers with something unusable"""
    pass


def normalize_postcode(postcode: Optional[str]) -> str:
    return re.sub(r"\s+", "", postcode or "").upper()


class ConstituencyService:
    """
    Client for the constituency lookup API.

    GET {base_url}/{postcode} returns a JSON list of constituencies; the
    first entry's "id" is recorded on the signature.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.base_url = (base_url or settings.CONSTITUENCY_API_URL).rstrip("/")
        self.timeout = timeout or settings.CONSTITUENCY_API_TIMEOUT
        self.transport = transport

    def _parse(self, payload) -> Optional[str]:
        if isinstance(payload, dict):
            payload = payload.get("constituencies", [])
        if not isinstance(payload, list):
            raise ConstituencyLookupError(f"Unexpected constituency payload: {type(payload).__name__}")
        if not payload:
            return None
        constituency_id = payload[0].get("id")
        return str(constituency_id) if constituency_id is not None else None

    def lookup(self, postcode: Optional[str]) -> Optional[str]:
        """
        Resolve a postcode to a constituency id.

        Args:
            postcode: Postcode in any format

        Returns:
            Optional[str]: Constituency id, or None if unknown or the API failed
        """
        postcode = normalize_postcode(postcode)
        if not postcode:
            return None

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.get(f"{self.base_url}/{postcode}")

            if response.status_code == 404:
                return None

            response.raise_for_status()
            return self._parse(response.json())

        except (httpx.HTTPError, ValueError, ConstituencyLookupError) as e:
            logger.error(f"Constituency lookup failed for {postcode}: {e}")
            return None


constituency_service = ConstituencyService()
