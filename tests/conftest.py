from datetime import UTC, datetime, timedelta

import pytest

from techboard.assignment import AssignmentEngine
from techboard.database import InMemoryKeyValueStore
from techboard.models import TechnicianRecord
from techboard.registry import TechnicianRegistry

MONDAY_8AM = datetime(2026, 3, 2, 8, 0, 0, tzinfo=UTC)


class FakeClock:
    """
    Callable clock for ``now_fn``; only moves when a test advances it.
    """

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current += timedelta(**delta)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(MONDAY_8AM)


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def registry(store, clock) -> TechnicianRegistry:
    return TechnicianRegistry(store, now_fn=clock)


@pytest.fixture
def engine(registry) -> AssignmentEngine:
    return AssignmentEngine(registry)


@pytest.fixture
def make_tech(registry):
    def _make(
        name: str, rating: str, specialties: list[str] | None = None
    ) -> TechnicianRecord:
        return registry.create_technician(
            {
                "name": name,
                "phone": "+15550100",
                "skillRating": rating,
                "specialties": specialties or [],
            }
        )

    return _make


@pytest.fixture
def log_hours(registry, clock):
    """
    Record a finished job of ``hours`` for a technician, moving the clock
    forward by the same amount.
    """

    counter = iter(range(1, 1_000))

    def _log(tech_id: str, hours: float) -> None:
        job_id = f"warmup-{next(counter)}"
        registry.start_job(tech_id, job_id)
        clock.advance(hours=hours)
        registry.end_job(tech_id, job_id, "warm-up work")

    return _log
