from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MatchDecision:
    existing_id: str | None
    is_new: bool
    match_confidence: float

    @classmethod
    def new(cls) -> MatchDecision:
        return cls(existing_id=None, is_new=True, match_confidence=0.0)

    @classmethod
    def existing(cls, existing_id: str, confidence: float) -> MatchDecision:
        return cls(existing_id=existing_id, is_new=False, match_confidence=confidence)
