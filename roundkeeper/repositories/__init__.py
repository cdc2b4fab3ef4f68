from .rounds_repo import (
    DEFAULT_COURSE_PAR,
    InMemoryRoundsRepository,
    RoundsRepository,
    SupabaseRoundsRepository,
    build_rounds_repository,
)

__all__ = [
    "DEFAULT_COURSE_PAR",
    "InMemoryRoundsRepository",
    "RoundsRepository",
    "SupabaseRoundsRepository",
    "build_rounds_repository",
]
