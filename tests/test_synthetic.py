from __future__ import annotations

from datetime import datetime, timezone

from hiring_oracle.domain.entities import CandidateDisposition, CanonicalStage, EventType, normalize_stage
from hiring_oracle.io.synthetic import SyntheticConfig, generate_synthetic_history


END = datetime(2025, 6, 30, tzinfo=timezone.utc)


def test_synthetic_history_is_reproducible() -> None:
    a = generate_synthetic_history(SyntheticConfig(seed=5, end=END))
    b = generate_synthetic_history(SyntheticConfig(seed=5, end=END))
    assert a == b
    assert a != generate_synthetic_history(SyntheticConfig(seed=6, end=END))


def test_synthetic_history_is_consistent() -> None:
    cfg = SyntheticConfig(seed=5, end=END)
    history = generate_synthetic_history(cfg)

    assert len(history.requisitions) == cfg.n_reqs
    assert len(history.users) == cfg.n_recruiters + cfg.n_hms
    times = [e.event_at for e in history.events]
    assert times == sorted(times)
    assert all(e.event_at <= END for e in history.events)

    req_ids = {r.req_id for r in history.requisitions}
    assert all(c.req_id in req_ids for c in history.candidates)
    for c in history.candidates:
        if c.disposition == CandidateDisposition.HIRED:
            assert c.canonical_stage == CanonicalStage.HIRED
    assert all(
        normalize_stage(e.to_stage) is not None
        for e in history.events
        if e.event_type == EventType.STAGE_CHANGE
    )
