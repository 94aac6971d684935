"""Per-participant standpoint/strategy assignment for study topics.

Each (study id, topic) pair maps to a fixed condition, so a participant who
reloads or reopens a topic always meets the same assistant.
"""

from __future__ import annotations

import hashlib

from core.models import PersuasionConfig, Standpoint, Strategy

STANDPOINTS = (Standpoint.SUPPORTING, Standpoint.OPPOSING)
STRATEGIES = (Strategy.SUGGESTION, Strategy.CLARIFICATION)


def assign_topic_config(study_id: str, topic: str) -> PersuasionConfig:
    """Deterministically pick the standpoint and strategy for a participant's topic."""
    digest = hashlib.sha256(f"{study_id.strip()}:{topic.strip().lower()}".encode("utf-8")).digest()
    return PersuasionConfig(
        topic=topic.strip(),
        standpoint=STANDPOINTS[digest[0] % len(STANDPOINTS)],
        strategy=STRATEGIES[digest[1] % len(STRATEGIES)],
    )
