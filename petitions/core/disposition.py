"""
Petition disposition as seen by the signing pipeline.

The petition's state is folded into one of a handful of dispositions once per
request; the workflow asks the disposition what is allowed instead of
re-inspecting petition attributes.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from petitions.core.exceptions import NotOpenReason
from petitions.core.timeutils import ensure_utc
from petitions.models.petition import Petition, PetitionState


class DispositionKind(str, enum.Enum):
    HIDDEN = "hidden"
    MODERATION = "moderation"
    OPEN = "open"
    CLOSED = "closed"
    REJECTED = "rejected"


_KINDS = {
    PetitionState.PENDING: DispositionKind.MODERATION,
    PetitionState.VALIDATED: DispositionKind.MODERATION,
    PetitionState.SPONSORED: DispositionKind.MODERATION,
    PetitionState.FLAGGED: DispositionKind.MODERATION,
    PetitionState.HIDDEN: DispositionKind.HIDDEN,
    PetitionState.STOPPED: DispositionKind.HIDDEN,
    PetitionState.OPEN: DispositionKind.OPEN,
    PetitionState.CLOSED: DispositionKind.CLOSED,
    PetitionState.REJECTED: DispositionKind.REJECTED,
}


@dataclass(frozen=True)
class PetitionDisposition:
    petition_id: int
    kind: DispositionKind
    closed_at: Optional[datetime] = None

    @classmethod
    def of(cls, petition: Petition) -> "PetitionDisposition":
        return cls(
            petition_id=petition.id,
            kind=_KINDS[petition.state],
            closed_at=ensure_utc(petition.closed_at),
        )

    @property
    def is_visible(self) -> bool:
        """Hidden and stopped petitions are reported as not found."""
        return self.kind != DispositionKind.HIDDEN

    @property
    def is_published(self) -> bool:
        """Signature pages only exist for petitions that have left moderation."""
        return self.kind not in (DispositionKind.HIDDEN, DispositionKind.MODERATION)

    def _within_grace(self, now: datetime, grace: timedelta) -> bool:
        return self.closed_at is not None and now - self.closed_at < grace

    def signing_refusal(self, now: datetime, grace: timedelta) -> Optional[NotOpenReason]:
        """Reason a new signature cannot be taken, or None when it can."""
        if self.kind == DispositionKind.OPEN:
            return None
        if self.kind == DispositionKind.REJECTED:
            return NotOpenReason.REJECTED
        if self.kind == DispositionKind.CLOSED:
            if self._within_grace(now, grace):
                return NotOpenReason.RECENTLY_CLOSED
            return NotOpenReason.CLOSED
        return NotOpenReason.NOT_YET_OPEN

    def validation_refusal(self, now: datetime, grace: timedelta) -> Optional[NotOpenReason]:
        """
        Reason a pending signature cannot be confirmed, or None when it can.

        Signatures made before closing may still be confirmed during the grace
        period after the petition closes.
        """
        if self.kind == DispositionKind.OPEN:
            return None
        if self.kind == DispositionKind.CLOSED and self._within_grace(now, grace):
            return None
        if self.kind == DispositionKind.REJECTED:
            return NotOpenReason.REJECTED
        if self.kind == DispositionKind.CLOSED:
            return NotOpenReason.CLOSED
        return NotOpenReason.NOT_YET_OPEN

    def thank_you_refusal(self) -> Optional[NotOpenReason]:
        if self.kind == DispositionKind.REJECTED:
            return NotOpenReason.REJECTED
        if self.kind == DispositionKind.CLOSED:
            return NotOpenReason.CLOSED
        if self.kind == DispositionKind.MODERATION:
            return NotOpenReason.NOT_YET_OPEN
        return None
