"""
CRUD operations for the Petition model.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import update
from sqlalchemy.orm import Session

from petitions.models.petition import Petition


def get_by_id(db: Session, petition_id: int) -> Optional[Petition]:
    return db.query(Petition).filter(Petition.id == petition_id).first()


def record_validated_signature(
    db: Session,
    petition_id: int,
    now: datetime,
    threshold_for_response: int,
    threshold_for_debate: int
) -> None:
    """
    Count one more validated signature against a petition.

    The increment is a single UPDATE so concurrent validations never lose a
    count. Threshold timestamps are only ever set once. Does not commit; the
    caller commits together with the signature transition.
    """
    db.execute(
        update(Petition)
        .where(Petition.id == petition_id)
        .values(signature_count=Petition.signature_count + 1, last_signed_at=now)
    )

    db.execute(
        update(Petition)
        .where(
            Petition.id == petition_id,
            Petition.response_threshold_reached_at.is_(None),
            Petition.signature_count >= threshold_for_response
        )
        .values(response_threshold_reached_at=now)
    )

    db.execute(
        update(Petition)
        .where(
            Petition.id == petition_id,
            Petition.debate_threshold_reached_at.is_(None),
            Petition.signature_count >= threshold_for_debate
        )
        .values(debate_threshold_reached_at=now)
    )
