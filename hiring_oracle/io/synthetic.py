from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from hiring_oracle.domain.entities import (
    Candidate,
    CandidateDisposition,
    CanonicalStage,
    Event,
    EventType,
    Requisition,
    RequisitionStatus,
    User,
)
from hiring_oracle.forecasting.domain.distributions import ConstantDuration, LogNormalDuration
from hiring_oracle.forecasting.domain.models import SimulationParameters, duration_key, rate_key


_FUNNEL: tuple[tuple[CanonicalStage, float], ...] = (
    (CanonicalStage.SCREEN, 0.6),
    (CanonicalStage.HM_SCREEN, 0.6),
    (CanonicalStage.ONSITE, 0.5),
    (CanonicalStage.OFFER, 0.8),
    (CanonicalStage.HIRED, 1.0),
)


@dataclass(frozen=True)
class SyntheticConfig:
    n_recruiters: int = 3
    n_hms: int = 4
    n_reqs: int = 8
    min_candidates: int = 3
    max_candidates: int = 10
    weeks: int = 12
    closed_share: float = 0.2
    seed: int = 7
    end: datetime | None = None


@dataclass
class SyntheticHistory:
    users: list[User] = field(default_factory=list)
    requisitions: list[Requisition] = field(default_factory=list)
    candidates: list[Candidate] = field(default_factory=list)
    events: list[Event] = field(default_factory=list)


def generate_synthetic_history(cfg: SyntheticConfig) -> SyntheticHistory:
    """Reproducible recruiting history: owners, requisitions, candidates and stage changes."""
    rng = random.Random(cfg.seed)
    end = cfg.end or datetime.now(tz=timezone.utc)
    start = end - timedelta(weeks=cfg.weeks)
    out = SyntheticHistory()

    recruiters = [User(user_id=f"rec{i}", name=f"Recruiter {i}", role="recruiter") for i in range(cfg.n_recruiters)]
    hms = [User(user_id=f"hm{i}", name=f"Hiring Manager {i}", role="hm") for i in range(cfg.n_hms)]
    out.users = recruiters + hms

    event_no = 0
    for r in range(cfg.n_reqs):
        closed = rng.random() < cfg.closed_share
        req = Requisition(
            req_id=f"REQ-{r:03d}",
            title=f"Engineer {r}",
            recruiter_id=rng.choice(recruiters).user_id,
            hiring_manager_id=rng.choice(hms).user_id,
            status=RequisitionStatus.CLOSED if closed else RequisitionStatus.OPEN,
            opened_at=start,
            closed_at=end if closed else None,
        )
        out.requisitions.append(req)

        for c in range(rng.randint(cfg.min_candidates, cfg.max_candidates)):
            cid = f"{req.req_id}-C{c:02d}"
            t = start + timedelta(days=rng.uniform(0, cfg.weeks * 7))
            stage = CanonicalStage.APPLIED
            disposition = CandidateDisposition.ACTIVE

            for target, rate in _FUNNEL:
                t_next = t + timedelta(days=rng.randint(2, 10))
                if t_next > end:
                    break
                passed = rng.random() < rate
                new_stage = target if passed else CanonicalStage.REJECTED
                actor = req.hiring_manager_id if target == CanonicalStage.HM_SCREEN else req.recruiter_id
                out.events.append(
                    Event(
                        event_id=f"E{event_no:05d}",
                        candidate_id=cid,
                        req_id=req.req_id,
                        event_type=EventType.STAGE_CHANGE,
                        event_at=t_next,
                        from_stage=stage.value,
                        to_stage=new_stage.value,
                        actor_user_id=actor,
                    )
                )
                event_no += 1
                if passed and target == CanonicalStage.HM_SCREEN:
                    out.events.append(
                        Event(
                            event_id=f"E{event_no:05d}",
                            candidate_id=cid,
                            req_id=req.req_id,
                            event_type=EventType.FEEDBACK_SUBMITTED,
                            event_at=min(end, t_next + timedelta(hours=rng.uniform(4, 96))),
                            actor_user_id=req.hiring_manager_id,
                        )
                    )
                    event_no += 1
                t, stage = t_next, new_stage
                if not passed:
                    disposition = CandidateDisposition.REJECTED
                    break
                if stage == CanonicalStage.HIRED:
                    disposition = CandidateDisposition.HIRED
                    break

            out.candidates.append(
                Candidate(
                    candidate_id=cid,
                    req_id=req.req_id,
                    current_stage=stage.value,
                    disposition=disposition,
                    applied_at=start,
                )
            )

    out.events.sort(key=lambda e: e.event_at)
    return out


def demo_parameters() -> SimulationParameters:
    """Plausible fitted parameters for demos and smoke tests."""
    return SimulationParameters(
        conversion_rates={
            CanonicalStage.SCREEN: 0.6,
            CanonicalStage.HM_SCREEN: 0.55,
            CanonicalStage.ONSITE: 0.5,
            CanonicalStage.OFFER: 0.8,
        },
        stage_durations={
            CanonicalStage.SCREEN: LogNormalDuration(mu=1.6, sigma=0.4),
            CanonicalStage.HM_SCREEN: LogNormalDuration(mu=1.9, sigma=0.5),
            CanonicalStage.ONSITE: LogNormalDuration(mu=2.3, sigma=0.4),
            CanonicalStage.OFFER: ConstantDuration(days=4),
        },
        sample_sizes={
            rate_key(CanonicalStage.SCREEN): 40,
            rate_key(CanonicalStage.HM_SCREEN): 22,
            rate_key(CanonicalStage.ONSITE): 12,
            rate_key(CanonicalStage.OFFER): 6,
            duration_key(CanonicalStage.SCREEN): 40,
            duration_key(CanonicalStage.HM_SCREEN): 22,
            duration_key(CanonicalStage.ONSITE): 12,
        },
        observed_rates={
            CanonicalStage.SCREEN: 0.62,
            CanonicalStage.HM_SCREEN: 0.56,
            CanonicalStage.ONSITE: 0.48,
            CanonicalStage.OFFER: 0.9,
        },
        prior_rates={
            CanonicalStage.SCREEN: 0.5,
            CanonicalStage.HM_SCREEN: 0.5,
            CanonicalStage.ONSITE: 0.5,
            CanonicalStage.OFFER: 0.7,
        },
    )
