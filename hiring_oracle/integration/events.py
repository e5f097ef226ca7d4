from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Mapping


@dataclass(frozen=True)
class DomainEvent:
    """Base type for all domain events."""

    occurred_at: datetime


# --- Requisition pipeline events ---------------------------------------------


@dataclass(frozen=True)
class RequisitionOpened(DomainEvent):
    req_id: str
    recruiter_id: str | None
    hiring_manager_id: str | None
    start_date: date
    title: str = ""


@dataclass(frozen=True)
class CandidateStageChanged(DomainEvent):
    req_id: str
    candidate_id: str
    new_stage: str
    old_stage: str | None = None


@dataclass(frozen=True)
class CandidateRemoved(DomainEvent):
    req_id: str
    candidate_id: str
    reason: str = "withdrawn"


@dataclass(frozen=True)
class SimulationParametersFitted(DomainEvent):
    """Fitted rates and durations, in the payload format of `io.payloads`."""

    req_id: str
    parameters: Mapping[str, Any]


@dataclass(frozen=True)
class HistoryLoaded(DomainEvent):
    """A new snapshot of ATS history used for capacity inference."""

    events: tuple[Any, ...]
    candidates: tuple[Any, ...]
    requisitions: tuple[Any, ...]
    users: tuple[Any, ...] = ()


# --- Forecast outputs ----------------------------------------------------------


@dataclass(frozen=True)
class ForecastComputed(DomainEvent):
    req_id: str
    result: Mapping[str, Any]
    scenario_id: str | None = None


@dataclass(frozen=True)
class CapacityForecastComputed(DomainEvent):
    req_id: str
    result: Mapping[str, Any]
