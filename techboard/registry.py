"""
Technician profiles and per-day job-hour ledgers.

The registry owns both collections and keeps them in a ``KeyValueStore``:

* ``technicians``: list of technician records
* ``tech_hours``: ``{"YYYY-MM-DD": {tech_id: ledger}}``

Ledger operations take an ``as_of`` timestamp; the calendar day of that
timestamp (in its own timezone) picks the ledger. A job is attributed to the
day it started. Lookups of a technician's open job also look at the previous
day's ledger so jobs running past midnight can still be found and closed.
"""
import logging
import uuid
from collections.abc import Callable, Mapping
from datetime import date, datetime, timedelta
from typing import Any

from pydantic import ValidationError

from techboard.database import KeyValueStore
from techboard.errors import ConflictError, InvalidArgumentError, NotFoundError
from techboard.models import (
    DailyLedger,
    HoursRange,
    JobHourEntry,
    SkillRating,
    TechHoursSummary,
    TechnicianProfile,
    TechnicianRecord,
    TechnicianUpdate,
    TechnicianView,
    coerce_skill_rating,
)

logger = logging.getLogger(__name__)

NowFn = Callable[[], datetime]

HoursTable = dict[str, dict[str, Any]]


def local_now() -> datetime:
    return datetime.now().astimezone()


def _day_of(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


class TechnicianRegistry:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        now_fn: NowFn = local_now,
        technicians_key: str = "technicians",
        hours_key: str = "tech_hours",
    ) -> None:
        self._store = store
        self._now_fn = now_fn
        self._technicians_key = technicians_key
        self._hours_key = hours_key

    def now(self) -> datetime:
        return self._now_fn()

    def _resolve_as_of(self, as_of: datetime | None) -> datetime:
        as_of = as_of or self.now()
        # naive timestamps are local wall time, like the default clock
        if as_of.tzinfo is None:
            as_of = as_of.astimezone()
        return as_of

    # technicians

    def _load_technicians(self) -> list[TechnicianRecord]:
        raw = self._store.load(self._technicians_key) or []
        return [TechnicianRecord.model_validate(t) for t in raw]

    def _save_technicians(self, records: list[TechnicianRecord]) -> None:
        self._store.save(
            self._technicians_key, [r.model_dump(mode="json") for r in records]
        )

    def create_technician(
        self, profile: TechnicianProfile | Mapping[str, Any]
    ) -> TechnicianRecord:
        if not isinstance(profile, TechnicianProfile):
            try:
                profile = TechnicianProfile.model_validate(profile)
            except ValidationError as exc:
                raise InvalidArgumentError(
                    f"Invalid technician profile: {exc}"
                ) from exc

        now = self.now()
        record = TechnicianRecord(
            id=uuid.uuid4().hex,
            created_at=now,
            hired_date=profile.hired_date or now,
            is_active=True,
            **profile.model_dump(exclude={"hired_date"}),
        )

        with self._store.transaction():
            records = self._load_technicians()
            records.append(record)
            self._save_technicians(records)

        logger.info("created technician %s (%s)", record.id, record.name)
        return record

    def get_all_technicians(
        self, include_skill_rating: bool = False
    ) -> list[TechnicianRecord] | list[TechnicianView]:
        records = self._load_technicians()
        if include_skill_rating:
            return records
        return [r.to_view() for r in records]

    def get_active_technicians(
        self, include_skill_rating: bool = False
    ) -> list[TechnicianRecord] | list[TechnicianView]:
        records = self.get_active_technician_records()
        if include_skill_rating:
            return records
        return [r.to_view() for r in records]

    def get_active_technician_records(self) -> list[TechnicianRecord]:
        return [r for r in self._load_technicians() if r.is_active]

    def get_technician_record(self, tech_id: str) -> TechnicianRecord | None:
        return next(
            (r for r in self._load_technicians() if r.id == tech_id), None
        )

    def get_technician_by_id(
        self, tech_id: str, include_skill_rating: bool = False
    ) -> TechnicianRecord | TechnicianView | None:
        record = self.get_technician_record(tech_id)
        if record is None:
            return None
        return record if include_skill_rating else record.to_view()

    def update_technician(
        self, tech_id: str, updates: TechnicianUpdate | Mapping[str, Any]
    ) -> TechnicianRecord:
        if not isinstance(updates, TechnicianUpdate):
            try:
                updates = TechnicianUpdate.model_validate(updates)
            except ValidationError as exc:
                raise InvalidArgumentError(
                    f"Invalid technician update: {exc}"
                ) from exc

        with self._store.transaction():
            records = self._load_technicians()
            index = next(
                (i for i, r in enumerate(records) if r.id == tech_id), None
            )
            if index is None:
                raise NotFoundError("Technician not found")

            changes = updates.model_dump(
                exclude_unset=True, exclude_none=True
            )
            changes["updated_at"] = self.now()
            records[index] = records[index].model_copy(update=changes)
            self._save_technicians(records)

        logger.info(
            "updated technician %s: %s",
            tech_id,
            sorted(k for k in changes if k != "updated_at"),
        )
        return records[index]

    def set_technician_active(
        self, tech_id: str, is_active: bool
    ) -> TechnicianRecord:
        return self.update_technician(tech_id, {"is_active": is_active})

    def delete_technician(self, tech_id: str) -> None:
        # ledgers keep the id; historical reports tolerate dangling ids
        with self._store.transaction():
            records = self._load_technicians()
            remaining = [r for r in records if r.id != tech_id]
            if len(remaining) == len(records):
                raise NotFoundError("Technician not found")
            self._save_technicians(remaining)

        logger.info("deleted technician %s", tech_id)

    # skill ratings

    def get_tech_skill_rating(self, tech_id: str) -> SkillRating | None:
        record = self.get_technician_record(tech_id)
        return record.skill_rating if record else None

    def set_tech_skill_rating(
        self, tech_id: str, rating: SkillRating | str
    ) -> TechnicianRecord:
        rating = coerce_skill_rating(rating)
        return self.update_technician(tech_id, {"skill_rating": rating})

    def get_technicians_by_skill_rating(
        self, rating: SkillRating | str
    ) -> list[TechnicianRecord]:
        rating = coerce_skill_rating(rating)
        return [
            r for r in self.get_active_technician_records()
            if r.skill_rating == rating
        ]

    # hours

    def _load_hours(self) -> HoursTable:
        return self._store.load(self._hours_key) or {}

    def _ledger(
        self, hours: HoursTable, tech_id: str, day: date
    ) -> DailyLedger | None:
        raw = hours.get(day.isoformat(), {}).get(tech_id)
        return DailyLedger.model_validate(raw) if raw is not None else None

    def _put_ledger(self, hours: HoursTable, ledger: DailyLedger) -> None:
        hours.setdefault(ledger.day.isoformat(), {})[ledger.tech_id] = (
            ledger.model_dump(mode="json")
        )

    def _find_open_ledger(
        self,
        hours: HoursTable,
        tech_id: str,
        day: date,
        job_id: str | None = None,
    ) -> DailyLedger | None:
        for candidate in (day, day - timedelta(days=1)):
            ledger = self._ledger(hours, tech_id, candidate)
            if ledger is not None and ledger.open_entry(job_id) is not None:
                return ledger
        return None

    def start_job(
        self,
        tech_id: str,
        job_id: str,
        job_id_type: str = "vehicle",
        *,
        as_of: datetime | None = None,
    ) -> JobHourEntry:
        as_of = self._resolve_as_of(as_of)
        day = as_of.date()

        with self._store.transaction():
            if self.get_technician_record(tech_id) is None:
                raise NotFoundError("Technician not found")

            hours = self._load_hours()
            if self._find_open_ledger(hours, tech_id, day) is not None:
                raise ConflictError(
                    "Technician already has an active job. "
                    "Please end the current job first."
                )

            ledger = self._ledger(hours, tech_id, day) or DailyLedger(
                tech_id=tech_id, day=day
            )
            entry = JobHourEntry(
                job_id=job_id, job_id_type=job_id_type, start_time=as_of
            )
            ledger.jobs.append(entry)
            self._put_ledger(hours, ledger)
            self._store.save(self._hours_key, hours)

        logger.info("technician %s started job %s", tech_id, job_id)
        return entry

    def end_job(
        self,
        tech_id: str,
        job_id: str,
        description: str = "",
        *,
        as_of: datetime | None = None,
    ) -> JobHourEntry:
        as_of = self._resolve_as_of(as_of)

        with self._store.transaction():
            hours = self._load_hours()
            ledger = self._find_open_ledger(
                hours, tech_id, as_of.date(), job_id
            )
            if ledger is None:
                raise NotFoundError("Active job not found")

            entry = ledger.open_entry(job_id)
            entry.end_time = as_of
            entry.hours = calculate_hours(entry.start_time, entry.end_time)
            entry.description = description
            ledger.recompute_total()
            self._put_ledger(hours, ledger)
            self._store.save(self._hours_key, hours)

        logger.info(
            "technician %s ended job %s after %.2fh",
            tech_id,
            job_id,
            entry.hours,
        )
        return entry

    def get_tech_hours_today(
        self, tech_id: str, *, as_of: datetime | None = None
    ) -> DailyLedger:
        day = self._resolve_as_of(as_of).date()
        ledger = self._ledger(self._load_hours(), tech_id, day)
        return ledger or DailyLedger(tech_id=tech_id, day=day)

    def get_tech_hours_range(
        self,
        tech_id: str,
        start_date: date | datetime,
        end_date: date | datetime,
    ) -> HoursRange:
        start, end = _day_of(start_date), _day_of(end_date)
        hours = self._load_hours()

        breakdown = []
        day = start
        while day <= end:
            ledger = self._ledger(hours, tech_id, day)
            if ledger is not None:
                breakdown.append(ledger)
            day += timedelta(days=1)

        return HoursRange(
            tech_id=tech_id,
            start_date=start,
            end_date=end,
            total_hours=round(sum(d.total_hours for d in breakdown), 2),
            daily_breakdown=breakdown,
        )

    def get_all_techs_weekly_hours(
        self, start_date: date | datetime, end_date: date | datetime
    ) -> list[TechHoursSummary]:
        return [
            TechHoursSummary(
                name=tech.name,
                skill_rating=tech.skill_rating,
                **self.get_tech_hours_range(
                    tech.id, start_date, end_date
                ).model_dump(),
            )
            for tech in self.get_active_technician_records()
        ]

    def get_tech_active_job(
        self, tech_id: str, *, as_of: datetime | None = None
    ) -> JobHourEntry | None:
        day = self._resolve_as_of(as_of).date()
        ledger = self._find_open_ledger(self._load_hours(), tech_id, day)
        return ledger.open_entry() if ledger else None


def calculate_hours(start: datetime, end: datetime) -> float:
    return round((end - start).total_seconds() / 3600, 2)
