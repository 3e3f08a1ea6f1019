"""
Technician, hour ledger and assignment models.

Skill ratings live only on ``TechnicianRecord``. Everything handed to a
non-privileged caller is a ``TechnicianView``, which forbids extra fields and
so cannot carry a rating.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from techboard.errors import InvalidArgumentError


class SkillRating(str, Enum):
    A = "A"  # expert
    B = "B"  # advanced
    C = "C"  # basic

    @property
    def rank(self) -> int:
        return "ABC".index(self.value) + 1

    def satisfies(self, required: "SkillRating") -> bool:
        return self.rank <= required.rank


def coerce_skill_rating(value: "SkillRating | str") -> SkillRating:
    try:
        return SkillRating(value)
    except ValueError:
        raise InvalidArgumentError(
            f"Invalid skill rating {value!r}. Must be A, B, or C"
        ) from None


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TechnicianProfile(CamelModel):
    name: str = Field(min_length=1)
    email: str | None = None
    phone: str | None = None
    skill_rating: SkillRating
    specialties: list[str] = Field(default_factory=list)
    certifications: list[str] = Field(default_factory=list)
    hourly_rate: float = 0.0
    hired_date: datetime | None = None

    @model_validator(mode="after")
    def _require_contact(self) -> "TechnicianProfile":
        if not self.email and not self.phone:
            raise ValueError("email or phone is required")
        return self


class TechnicianUpdate(CamelModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1)
    email: str | None = None
    phone: str | None = None
    skill_rating: SkillRating | None = None
    specialties: list[str] | None = None
    certifications: list[str] | None = None
    hourly_rate: float | None = None
    hired_date: datetime | None = None
    is_active: bool | None = None


class _TechnicianFields(CamelModel):
    id: str
    name: str
    email: str | None = None
    phone: str | None = None
    specialties: list[str] = Field(default_factory=list)
    certifications: list[str] = Field(default_factory=list)
    hourly_rate: float = 0.0
    is_active: bool = True
    created_at: datetime
    updated_at: datetime | None = None
    hired_date: datetime | None = None


class TechnicianView(_TechnicianFields):
    model_config = ConfigDict(extra="forbid")


class TechnicianRecord(_TechnicianFields):
    skill_rating: SkillRating

    def to_view(self) -> TechnicianView:
        return TechnicianView.model_validate(
            self.model_dump(exclude={"skill_rating"})
        )


class JobHourEntry(CamelModel):
    job_id: str
    job_id_type: str = "vehicle"
    start_time: datetime
    end_time: datetime | None = None
    hours: float = 0.0
    description: str = ""

    @property
    def is_open(self) -> bool:
        return self.end_time is None


class DailyLedger(CamelModel):
    tech_id: str
    day: date
    jobs: list[JobHourEntry] = Field(default_factory=list)
    total_hours: float = 0.0

    def open_entry(self, job_id: str | None = None) -> JobHourEntry | None:
        return next(
            (
                j
                for j in self.jobs
                if j.is_open and (job_id is None or j.job_id == job_id)
            ),
            None,
        )

    def recompute_total(self) -> None:
        self.total_hours = round(sum(j.hours for j in self.jobs), 2)


class HoursRange(CamelModel):
    tech_id: str
    start_date: date
    end_date: date
    total_hours: float
    daily_breakdown: list[DailyLedger]


class TechHoursSummary(HoursRange):
    name: str
    skill_rating: SkillRating


class JobRequirements(CamelModel):
    skill_level_required: SkillRating | None = None
    labor_operation: str | None = None
    specialty: str | None = None


class JobRequest(JobRequirements):
    job_id: str
    job_id_type: str = "vehicle"
    force_tech_id: str | None = None
    description: str | None = None


class AssignmentSuccess(CamelModel):
    success: Literal[True] = True
    technician_id: str
    job_id: str
    start_time: datetime
    message: str = "Job assigned successfully"


class AssignmentFailure(CamelModel):
    success: Literal[False] = False
    message: str = "No available technicians with required skill level"
    recommended_techs: list[TechnicianView] = Field(default_factory=list)


class BatchJobError(CamelModel):
    success: Literal[False] = False
    error: str


class BatchAssignment(CamelModel):
    job: dict[str, Any]
    result: AssignmentSuccess | AssignmentFailure | BatchJobError


class AssignmentCheck(CamelModel):
    valid: bool
    reason: str | None = None
    technician: TechnicianView | None = None
    current_job: JobHourEntry | None = None


class TechRecommendation(TechnicianView):
    today_hours: float
    is_available: bool
    current_job: JobHourEntry | None = None
    recommendation_score: float


class TechAvailability(CamelModel):
    id: str
    name: str
    skill_rating: SkillRating
    specialties: list[str]
    is_active: bool
    is_available: bool
    today_hours: float
    current_job: JobHourEntry | None = None
    can_handle_diag: bool
    can_handle_advanced: bool
    can_handle_basic: bool
