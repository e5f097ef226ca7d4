from __future__ import annotations

import hashlib
import json
import secrets
from dataclasses import dataclass
from typing import Any, Mapping

import numpy as np


_CONVERSION_STREAM = 0
_DURATION_STREAM = 1


@dataclass(frozen=True)
class SeedContext:
    """A string seed and the integer entropy numpy generators are built from."""

    seed: str
    entropy: int

    @classmethod
    def from_seed(cls, seed: str | int | None) -> "SeedContext":
        if seed is None:
            seed = secrets.token_hex(4)
        text = str(seed)
        return cls(seed=text, entropy=seed_to_int(text))

    def block_generators(self, block_index: int) -> tuple[np.random.Generator, np.random.Generator]:
        """Return (conversion, duration) generators for one iteration block.

        Each block owns its streams, so blocks can run in any order or on any
        worker and still reproduce the same draws.
        """
        conv = np.random.SeedSequence(self.entropy, spawn_key=(block_index, _CONVERSION_STREAM))
        dur = np.random.SeedSequence(self.entropy, spawn_key=(block_index, _DURATION_STREAM))
        return np.random.default_rng(conv), np.random.default_rng(dur)

    def bootstrap_generator(self) -> np.random.Generator:
        """Generator for resampling results, independent of every block stream."""
        return np.random.default_rng(seed_to_int(f"{self.seed}-bootstrap"))


def seed_to_int(seed: str) -> int:
    digest = hashlib.sha256(seed.encode("utf-8")).digest()
    return int.from_bytes(digest[:16], "big")


def stable_fingerprint(payload: Any) -> str:
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def derive_seed(
    req_id: str,
    pipeline_hash: str,
    knobs: Mapping[str, Any] | None = None,
    levers: Mapping[str, Any] | None = None,
) -> str:
    """Deterministic seed for a requisition forecast.

    Identical inputs always produce the same seed string.
    """
    payload = {"knobs": dict(knobs or {}), "levers": dict(levers or {})}
    return f"oracle-{req_id}-{pipeline_hash}-{stable_fingerprint(payload)[:12]}"
