from .models import (
    HoleCollection,
    HoleRecord,
    RoundCompletionStats,
    RoundRecord,
    Shot,
    ShotOutcome,
    ShotType,
    compute_completion_stats,
)
from .tracker import CurrentRound, RoundTracker

__all__ = [
    "CurrentRound",
    "HoleCollection",
    "HoleRecord",
    "RoundCompletionStats",
    "RoundRecord",
    "RoundTracker",
    "Shot",
    "ShotOutcome",
    "ShotType",
    "compute_completion_stats",
]
