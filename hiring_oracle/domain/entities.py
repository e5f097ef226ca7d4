from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Mapping


class CanonicalStage(str, Enum):
    """Normalised pipeline stage used as the key for rates and durations."""

    LEAD = "LEAD"
    APPLIED = "APPLIED"
    SCREEN = "SCREEN"
    HM_SCREEN = "HM_SCREEN"
    ONSITE = "ONSITE"
    OFFER = "OFFER"
    HIRED = "HIRED"
    REJECTED = "REJECTED"
    WITHDREW = "WITHDREW"


TERMINAL_STAGES: frozenset[CanonicalStage] = frozenset(
    {CanonicalStage.HIRED, CanonicalStage.REJECTED, CanonicalStage.WITHDREW}
)


class EventType(str, Enum):
    STAGE_CHANGE = "STAGE_CHANGE"
    INTERVIEW_SCHEDULED = "INTERVIEW_SCHEDULED"
    FEEDBACK_SUBMITTED = "FEEDBACK_SUBMITTED"
    OFFER_EXTENDED = "OFFER_EXTENDED"
    NOTE_ADDED = "NOTE_ADDED"


class CandidateDisposition(str, Enum):
    ACTIVE = "Active"
    REJECTED = "Rejected"
    WITHDRAWN = "Withdrawn"
    HIRED = "Hired"


class RequisitionStatus(str, Enum):
    OPEN = "Open"
    ON_HOLD = "OnHold"
    CLOSED = "Closed"
    CANCELED = "Canceled"


@dataclass(frozen=True)
class User:
    user_id: str
    name: str
    role: str = "recruiter"  # "recruiter", "hm", "coordinator"


@dataclass(frozen=True)
class Requisition:
    req_id: str
    title: str
    recruiter_id: str | None
    hiring_manager_id: str | None
    status: RequisitionStatus = RequisitionStatus.OPEN
    opened_at: datetime | None = None
    closed_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        if self.status == RequisitionStatus.OPEN:
            return True
        return self.closed_at is None and self.status != RequisitionStatus.CLOSED


@dataclass(frozen=True)
class Candidate:
    """A candidate attached to one requisition."""

    candidate_id: str
    req_id: str
    current_stage: str
    disposition: CandidateDisposition | None = None
    applied_at: datetime | None = None
    metadata: Mapping[str, str] | None = None

    @property
    def is_active(self) -> bool:
        # Missing disposition is treated as active.
        return self.disposition is None or self.disposition == CandidateDisposition.ACTIVE

    @property
    def canonical_stage(self) -> CanonicalStage | None:
        return normalize_stage(self.current_stage)


@dataclass(frozen=True)
class Event:
    """A historical ATS event such as a stage change or submitted feedback."""

    event_id: str
    candidate_id: str
    req_id: str
    event_type: EventType
    event_at: datetime
    from_stage: str | None = None
    to_stage: str | None = None
    actor_user_id: str | None = None


_STAGE_ALIASES: dict[str, CanonicalStage] = {
    "lead": CanonicalStage.LEAD,
    "sourced": CanonicalStage.LEAD,
    "prospect": CanonicalStage.LEAD,
    "applied": CanonicalStage.APPLIED,
    "application": CanonicalStage.APPLIED,
    "new": CanonicalStage.APPLIED,
    "screen": CanonicalStage.SCREEN,
    "phone screen": CanonicalStage.SCREEN,
    "recruiter screen": CanonicalStage.SCREEN,
    "screening": CanonicalStage.SCREEN,
    "hm screen": CanonicalStage.HM_SCREEN,
    "hm interview": CanonicalStage.HM_SCREEN,
    "hiring manager screen": CanonicalStage.HM_SCREEN,
    "hiring manager interview": CanonicalStage.HM_SCREEN,
    "onsite": CanonicalStage.ONSITE,
    "on site": CanonicalStage.ONSITE,
    "final interview": CanonicalStage.ONSITE,
    "panel interview": CanonicalStage.ONSITE,
    "interview loop": CanonicalStage.ONSITE,
    "offer": CanonicalStage.OFFER,
    "offer extended": CanonicalStage.OFFER,
    "hired": CanonicalStage.HIRED,
    "offer accepted": CanonicalStage.HIRED,
    "rejected": CanonicalStage.REJECTED,
    "declined": CanonicalStage.REJECTED,
    "withdrew": CanonicalStage.WITHDREW,
    "withdrawn": CanonicalStage.WITHDREW,
}


def normalize_stage(raw: str | CanonicalStage | None) -> CanonicalStage | None:
    """Map an ATS stage name onto a canonical stage, or None if unknown."""
    if raw is None:
        return None
    if isinstance(raw, CanonicalStage):
        return raw
    text = str(raw).strip()
    if not text:
        return None
    try:
        return CanonicalStage(text.upper())
    except ValueError:
        pass
    key = re.sub(r"[\s_\-/]+", " ", text.lower()).strip()
    return _STAGE_ALIASES.get(key)
