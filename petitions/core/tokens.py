"""
Token generation for the signing pipeline.

One generator serves every token kind (perishable confirmation tokens,
unsubscribe tokens, signed-session proofs and form tokens). Expiry rules are
applied by the callers that know which kind they are holding.
"""

import hmac
import secrets
from typing import Optional

TOKEN_BYTES = 15


def generate_token() -> str:
    """
    Generate an unguessable URL-safe token.

    Uses the secrets module so values carry no timestamp, sequence or
    petition information and cannot be predicted from earlier tokens.

    Returns:
        str: 20 character URL-safe token
    """
    return secrets.token_urlsafe(TOKEN_BYTES)


def tokens_match(expected: Optional[str], given: Optional[str]) -> bool:
    """Constant-time token comparison; missing values never match."""
    if not expected or not given:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), given.encode("utf-8"))
