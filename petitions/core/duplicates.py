"""
Duplicate signature resolution.

A person may only sign a petition once per mailbox. Lookups are made on the
lower-cased address; with alias resolution enabled, plus-addressed variants
(ted+petitions@example.com) are treated as the same mailbox as the plain
address, in either direction.
"""

import logging
from typing import Optional
from sqlalchemy.orm import Session

from petitions.core.config import settings
from petitions.crud import signature as signature_crud
from petitions.models.signature import Signature

logger = logging.getLogger(__name__)


def normalize_email(raw_email: str) -> str:
    return raw_email.strip().lower()


def canonical_email(raw_email: str) -> str:
    """Normalized address with any +tag removed from the local part."""
    normalized = normalize_email(raw_email)
    local, sep, domain = normalized.rpartition("@")
    if not sep:
        return normalized
    local = local.split("+", 1)[0]
    return f"{local}@{domain}"


def resolve(
    db: Session,
    petition_id: int,
    raw_email: str,
    resolve_aliases: Optional[bool] = None
) -> Optional[Signature]:
    """
    Find an existing signature on a petition for the submitted address.

    An exact match always wins over an alias match so a signer switching
    between their real address and a tagged one never creates ambiguity.

    Args:
        db: Database session
        petition_id: Petition being signed
        raw_email: Address as submitted
        resolve_aliases: Match plus-addressed variants; defaults to settings

    Returns:
        Optional[Signature]: The existing signature, if any
    """
    if resolve_aliases is None:
        resolve_aliases = settings.SIGNATURE_ALIAS_RESOLUTION

    exact = signature_crud.find_by_normalized_email(db, petition_id, normalize_email(raw_email))
    if exact is not None:
        return exact

    if not resolve_aliases:
        return None

    alias = signature_crud.find_by_canonical_email(db, petition_id, canonical_email(raw_email))
    if alias is not None:
        logger.info(f"Resolved aliased address to signature {alias.id} on petition {petition_id}")
    return alias
