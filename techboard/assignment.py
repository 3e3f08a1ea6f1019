"""
Job assignment on top of the technician registry.

Skill levels form a strict hierarchy A > B > C: a job that requires level L
can go to any technician rated L or better.

Two specialty rules apply on purpose:

* recommendations treat the specialty as a soft filter, narrowing only when
  at least one qualifying technician has it;
* ``can_tech_handle_job`` (and so forced assignment) requires it.
"""
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any, TypeVar

from pydantic import ValidationError

from techboard.errors import (
    InsufficientSkillError,
    InvalidArgumentError,
    NotFoundError,
    TechboardError,
)
from techboard.labor_guide import LaborGuide
from techboard.models import (
    AssignmentCheck,
    AssignmentFailure,
    AssignmentSuccess,
    BatchAssignment,
    BatchJobError,
    JobRequest,
    JobRequirements,
    SkillRating,
    TechAvailability,
    TechnicianRecord,
    TechnicianView,
    TechRecommendation,
    coerce_skill_rating,
)
from techboard.registry import TechnicianRegistry

logger = logging.getLogger(__name__)

JobT = TypeVar("JobT", bound=JobRequirements)

AssignmentResult = AssignmentSuccess | AssignmentFailure

EXACT_MATCH_BONUS = 15
OVERQUALIFIED_BONUS = 10
MAX_HOURS_BONUS = 10
AVAILABILITY_BONUS = 5


def _disqualification(
    tech: TechnicianRecord, level: SkillRating, specialty: str | None
) -> str | None:
    if not tech.is_active:
        return "Technician is inactive"
    if not tech.skill_rating.satisfies(level):
        return (
            f"Technician skill level ({tech.skill_rating.value}) is "
            f"insufficient for this job (requires {level.value})"
        )
    if specialty and specialty not in tech.specialties:
        return f"Technician does not have the required specialty ({specialty})"
    return None


def _job_label(job_data: Mapping[str, Any]) -> Any:
    return job_data.get("jobId", job_data.get("job_id"))


class AssignmentEngine:
    def __init__(
        self,
        registry: TechnicianRegistry,
        *,
        labor_guide: LaborGuide | None = None,
        default_job_id_type: str = "vehicle",
    ) -> None:
        self.registry = registry
        self.labor_guide = labor_guide or LaborGuide()
        self.default_job_id_type = default_job_id_type

    def _coerce_job(
        self,
        job: JobRequirements | Mapping[str, Any],
        model: type[JobT] = JobRequest,
    ) -> JobT:
        if isinstance(job, model):
            return job
        try:
            return model.model_validate(job)
        except ValidationError as exc:
            raise InvalidArgumentError(f"Invalid job request: {exc}") from exc

    def required_level(self, job: JobRequirements) -> SkillRating:
        if job.skill_level_required is not None:
            return job.skill_level_required
        return self.labor_guide.skill_level_for(job.labor_operation)

    def _ranked(
        self,
        required_level: SkillRating | str,
        specialty: str | None,
        as_of: datetime,
    ) -> list[TechnicianRecord]:
        level = coerce_skill_rating(required_level)
        candidates = [
            t
            for t in self.registry.get_active_technician_records()
            if t.skill_rating.satisfies(level)
        ]

        if specialty:
            with_specialty = [
                t for t in candidates if specialty in t.specialties
            ]
            if with_specialty:
                candidates = with_specialty

        hours = {
            t.id: self.registry.get_tech_hours_today(
                t.id, as_of=as_of
            ).total_hours
            for t in candidates
        }
        return sorted(
            candidates, key=lambda t: (t.skill_rating.rank, hours[t.id])
        )

    def _is_idle(self, tech_id: str, as_of: datetime) -> bool:
        return self.registry.get_tech_active_job(tech_id, as_of=as_of) is None

    def get_recommended_techs_for_job(
        self,
        required_level: SkillRating | str,
        specialty: str | None = None,
        *,
        as_of: datetime | None = None,
    ) -> list[TechnicianView]:
        """
        Qualifying active technicians, best rated first, then fewest hours
        today. Ratings are stripped.
        """
        as_of = as_of or self.registry.now()
        ranked = self._ranked(required_level, specialty, as_of)
        return [t.to_view() for t in ranked]

    def can_tech_handle_job(
        self,
        tech_id: str,
        required_level: SkillRating | str,
        specialty: str | None = None,
    ) -> bool:
        level = coerce_skill_rating(required_level)
        tech = self.registry.get_technician_record(tech_id)
        if tech is None:
            return False
        return _disqualification(tech, level, specialty) is None

    def get_best_available_tech(
        self,
        required_level: SkillRating | str,
        specialty: str | None = None,
        *,
        as_of: datetime | None = None,
    ) -> TechnicianView | None:
        as_of = as_of or self.registry.now()
        for tech in self._ranked(required_level, specialty, as_of):
            if self._is_idle(tech.id, as_of):
                return tech.to_view()
        return None

    def assign_job(
        self,
        job: JobRequest | Mapping[str, Any],
        *,
        as_of: datetime | None = None,
    ) -> AssignmentResult:
        job = self._coerce_job(job)
        as_of = as_of or self.registry.now()
        level = self.required_level(job)

        if job.force_tech_id:
            tech = self.registry.get_technician_record(job.force_tech_id)
            if tech is None:
                raise NotFoundError("Technician not found")
            reason = _disqualification(tech, level, job.specialty)
            if reason is not None:
                raise InsufficientSkillError(
                    tech.id,
                    level.value,
                    tech.skill_rating.value,
                    reason=reason,
                )
            return self._assign_to_tech(tech.id, job, as_of)

        best = self.get_best_available_tech(level, job.specialty, as_of=as_of)
        if best is None:
            logger.info(
                "no available technician for job %s (level %s, specialty %s)",
                job.job_id,
                level.value,
                job.specialty,
            )
            return AssignmentFailure(
                recommended_techs=self.get_recommended_techs_for_job(
                    level, job.specialty, as_of=as_of
                )
            )

        return self._assign_to_tech(best.id, job, as_of)

    def _assign_to_tech(
        self, tech_id: str, job: JobRequest, as_of: datetime
    ) -> AssignmentSuccess:
        job_id_type = (
            job.job_id_type
            if "job_id_type" in job.model_fields_set
            else self.default_job_id_type
        )
        entry = self.registry.start_job(
            tech_id, job.job_id, job_id_type, as_of=as_of
        )
        logger.info("assigned job %s to technician %s", job.job_id, tech_id)
        return AssignmentSuccess(
            technician_id=tech_id,
            job_id=entry.job_id,
            start_time=entry.start_time,
        )

    def calculate_recommendation_score(
        self,
        tech: TechnicianRecord,
        required_level: SkillRating | str,
        hours_today: float,
        *,
        is_available: bool,
    ) -> float:
        """
        Higher is better: skill match + hours balance + availability.

        An exact rating match scores 15, an overqualified technician 10 and
        an unqualified one 0. Hours balance gives up to 10 points, one less
        per hour already logged today. Being free right now adds 5.
        """
        level = coerce_skill_rating(required_level)
        if tech.skill_rating == level:
            skill_match = EXACT_MATCH_BONUS
        elif tech.skill_rating.satisfies(level):
            skill_match = OVERQUALIFIED_BONUS
        else:
            skill_match = 0

        hours_balance = max(0, MAX_HOURS_BONUS - hours_today)
        availability = AVAILABILITY_BONUS if is_available else 0
        return skill_match + hours_balance + availability

    def get_assignment_recommendations(
        self,
        required_level: SkillRating | str,
        specialty: str | None = None,
        *,
        as_of: datetime | None = None,
    ) -> list[TechRecommendation]:
        as_of = as_of or self.registry.now()
        recommendations = []
        for tech in self._ranked(required_level, specialty, as_of):
            today = self.registry.get_tech_hours_today(tech.id, as_of=as_of)
            current = self.registry.get_tech_active_job(tech.id, as_of=as_of)
            recommendations.append(
                TechRecommendation(
                    **tech.to_view().model_dump(),
                    today_hours=today.total_hours,
                    is_available=current is None,
                    current_job=current,
                    recommendation_score=self.calculate_recommendation_score(
                        tech,
                        required_level,
                        today.total_hours,
                        is_available=current is None,
                    ),
                )
            )
        # stable: equal scores keep ranking order
        return sorted(recommendations, key=lambda r: -r.recommendation_score)

    def validate_assignment(
        self,
        tech_id: str,
        job: JobRequirements | Mapping[str, Any],
        *,
        as_of: datetime | None = None,
    ) -> AssignmentCheck:
        job = self._coerce_job(job, JobRequirements)
        tech = self.registry.get_technician_record(tech_id)
        if tech is None:
            return AssignmentCheck(valid=False, reason="Technician not found")

        level = self.required_level(job)
        reason = _disqualification(tech, level, job.specialty)
        if reason is not None:
            return AssignmentCheck(valid=False, reason=reason)

        current = self.registry.get_tech_active_job(tech_id, as_of=as_of)
        if current is not None:
            return AssignmentCheck(
                valid=False,
                reason="Technician is currently working on another job",
                current_job=current,
            )

        return AssignmentCheck(valid=True, technician=tech.to_view())

    def batch_assign_jobs(
        self,
        jobs: Iterable[JobRequest | Mapping[str, Any]],
        *,
        as_of: datetime | None = None,
    ) -> list[BatchAssignment]:
        """
        Assign jobs one after another, spreading them over technicians.

        Each job first goes to a qualifying, idle technician not yet picked
        in this batch. When there is none it falls back to ``assign_job``'s
        automatic path. A failing job is reported and the batch carries on;
        earlier assignments stay in place.
        """
        as_of = as_of or self.registry.now()
        assigned: set[str] = set()
        results = []

        for raw in jobs:
            job_data = {"job": repr(raw)}
            try:
                if isinstance(raw, JobRequest):
                    job_data = raw.model_dump(mode="json", by_alias=True)
                elif isinstance(raw, Mapping):
                    job_data = dict(raw)
                else:
                    raise InvalidArgumentError(
                        f"Invalid job request: expected a mapping, got "
                        f"{type(raw).__name__}"
                    )

                job = self._coerce_job(raw)
                if not job.force_tech_id:
                    pick = self._pick_unassigned(job, assigned, as_of)
                    if pick is not None:
                        job = job.model_copy(update={"force_tech_id": pick})

                result = self.assign_job(job, as_of=as_of)
                if isinstance(result, AssignmentSuccess):
                    assigned.add(result.technician_id)
            except TechboardError as exc:
                logger.warning(
                    "batch job %s failed: %s",
                    _job_label(job_data),
                    exc.message,
                )
                result = BatchJobError(error=exc.message)
            except Exception as exc:
                logger.exception("batch job %s failed", _job_label(job_data))
                result = BatchJobError(error=str(exc))

            results.append(BatchAssignment(job=job_data, result=result))

        return results

    def _pick_unassigned(
        self, job: JobRequest, assigned: set[str], as_of: datetime
    ) -> str | None:
        level = self.required_level(job)
        for tech in self._ranked(level, job.specialty, as_of):
            if (
                tech.id not in assigned
                and _disqualification(tech, level, job.specialty) is None
                and self._is_idle(tech.id, as_of)
            ):
                return tech.id
        return None

    def get_tech_availability(
        self, *, as_of: datetime | None = None
    ) -> list[TechAvailability]:
        """Availability board for managers. Includes skill ratings."""
        as_of = as_of or self.registry.now()
        board = []
        for tech in self.registry.get_active_technician_records():
            rating = tech.skill_rating
            today = self.registry.get_tech_hours_today(tech.id, as_of=as_of)
            current = self.registry.get_tech_active_job(tech.id, as_of=as_of)
            board.append(
                TechAvailability(
                    id=tech.id,
                    name=tech.name,
                    skill_rating=tech.skill_rating,
                    specialties=tech.specialties,
                    is_active=tech.is_active,
                    is_available=current is None,
                    today_hours=today.total_hours,
                    current_job=current,
                    can_handle_diag=rating.satisfies(SkillRating.A),
                    can_handle_advanced=rating.satisfies(SkillRating.B),
                    can_handle_basic=rating.satisfies(SkillRating.C),
                )
            )
        return sorted(
            board, key=lambda t: (not t.is_available, t.skill_rating.rank)
        )

    def get_assignment_rules(self) -> dict:
        return self.labor_guide.assignment_rules()

    def get_skill_level_for_operation(self, operation: str) -> SkillRating:
        return self.labor_guide.skill_level_for(operation)
