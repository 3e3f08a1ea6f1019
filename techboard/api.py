import logging
from datetime import date
from typing import Any

from fastapi import APIRouter, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from techboard.assignment import AssignmentEngine
from techboard.config import Settings, get_settings
from techboard.database import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
)
from techboard.errors import TechboardError
from techboard.labor_guide import LaborGuide
from techboard.models import (
    CamelModel,
    JobRequest,
    JobRequirements,
    SkillRating,
    TechnicianProfile,
    TechnicianUpdate,
)
from techboard.registry import NowFn, TechnicianRegistry, local_now

logger = logging.getLogger(__name__)

router = APIRouter()

# store calls may block on file IO; handlers touching them are plain def
# so they run in the threadpool


class SkillRatingRequest(CamelModel):
    skill_rating: str


class ActiveRequest(CamelModel):
    is_active: bool


class StartJobRequest(CamelModel):
    job_id: str
    job_id_type: str = "vehicle"


class EndJobRequest(CamelModel):
    job_id: str
    description: str = ""


class ValidateAssignmentRequest(CamelModel):
    tech_id: str
    job: JobRequirements


class BatchAssignRequest(CamelModel):
    # raw so one malformed job is reported without rejecting the batch
    jobs: list[dict[str, Any]]


def _dump(model: BaseModel) -> dict:
    return model.model_dump(mode="json", by_alias=True)


def _registry(request: Request) -> TechnicianRegistry:
    return request.app.state.registry


def _engine(request: Request) -> AssignmentEngine:
    return request.app.state.engine


def _is_privileged(request: Request) -> bool:
    settings: Settings = request.app.state.settings
    role = request.headers.get(settings.role_header, "").lower()
    return role in {r.lower() for r in settings.privileged_roles}


def _require_privileged(request: Request) -> None:
    if not _is_privileged(request):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Manager access required",
        )


def _level_from_query(
    request: Request, skill_level: str | None, labor_operation: str | None
) -> SkillRating | str:
    if skill_level is not None:
        return skill_level
    return _engine(request).get_skill_level_for_operation(labor_operation)


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/technicians", status_code=status.HTTP_201_CREATED)
def create_technician(
    profile: TechnicianProfile, request: Request
) -> dict:
    _require_privileged(request)
    return _dump(_registry(request).create_technician(profile))


@router.get("/technicians")
def list_technicians(
    request: Request,
    active_only: bool = False,
    include_skill_rating: bool = False,
) -> list[dict]:
    if include_skill_rating:
        _require_privileged(request)

    registry = _registry(request)
    if active_only:
        techs = registry.get_active_technicians(include_skill_rating)
    else:
        techs = registry.get_all_technicians(include_skill_rating)
    return [_dump(t) for t in techs]


@router.get("/technicians/{tech_id}")
def get_technician(
    tech_id: str, request: Request, include_skill_rating: bool = False
) -> dict:
    if include_skill_rating:
        _require_privileged(request)

    tech = _registry(request).get_technician_by_id(
        tech_id, include_skill_rating
    )
    if tech is None:
        raise HTTPException(status_code=404, detail="Technician not found")
    return _dump(tech)


@router.patch("/technicians/{tech_id}")
def update_technician(
    tech_id: str, updates: TechnicianUpdate, request: Request
) -> dict:
    _require_privileged(request)
    return _dump(_registry(request).update_technician(tech_id, updates))


@router.delete(
    "/technicians/{tech_id}", status_code=status.HTTP_204_NO_CONTENT
)
def delete_technician(tech_id: str, request: Request) -> None:
    _require_privileged(request)
    _registry(request).delete_technician(tech_id)


@router.put("/technicians/{tech_id}/skill-rating")
def set_skill_rating(
    tech_id: str, body: SkillRatingRequest, request: Request
) -> dict:
    _require_privileged(request)
    return _dump(
        _registry(request).set_tech_skill_rating(tech_id, body.skill_rating)
    )


@router.put("/technicians/{tech_id}/active")
def set_active(
    tech_id: str, body: ActiveRequest, request: Request
) -> dict:
    _require_privileged(request)
    tech = _registry(request).set_technician_active(tech_id, body.is_active)
    return _dump(tech.to_view())


@router.post("/technicians/{tech_id}/jobs/start")
def start_job(
    tech_id: str, body: StartJobRequest, request: Request
) -> dict:
    entry = _registry(request).start_job(
        tech_id, body.job_id, body.job_id_type
    )
    return _dump(entry)


@router.post("/technicians/{tech_id}/jobs/end")
def end_job(tech_id: str, body: EndJobRequest, request: Request) -> dict:
    entry = _registry(request).end_job(tech_id, body.job_id, body.description)
    return _dump(entry)


@router.get("/technicians/{tech_id}/active-job")
def get_active_job(tech_id: str, request: Request) -> dict:
    entry = _registry(request).get_tech_active_job(tech_id)
    return {"activeJob": _dump(entry) if entry else None}


@router.get("/technicians/{tech_id}/hours/today")
def get_hours_today(tech_id: str, request: Request) -> dict:
    return _dump(_registry(request).get_tech_hours_today(tech_id))


@router.get("/technicians/{tech_id}/hours")
def get_hours_range(
    tech_id: str, start: date, end: date, request: Request
) -> dict:
    return _dump(_registry(request).get_tech_hours_range(tech_id, start, end))


@router.get("/reports/weekly-hours")
def weekly_hours(start: date, end: date, request: Request) -> list[dict]:
    _require_privileged(request)
    summaries = _registry(request).get_all_techs_weekly_hours(start, end)
    return [_dump(s) for s in summaries]


@router.get("/recommendations")
def recommendations(
    request: Request,
    skill_level: str | None = None,
    labor_operation: str | None = None,
    specialty: str | None = None,
) -> list[dict]:
    level = _level_from_query(request, skill_level, labor_operation)
    techs = _engine(request).get_recommended_techs_for_job(level, specialty)
    return [_dump(t) for t in techs]


@router.get("/recommendations/ranked")
def ranked_recommendations(
    request: Request,
    skill_level: str | None = None,
    labor_operation: str | None = None,
    specialty: str | None = None,
) -> list[dict]:
    level = _level_from_query(request, skill_level, labor_operation)
    ranked = _engine(request).get_assignment_recommendations(level, specialty)
    return [_dump(r) for r in ranked]


@router.post("/assignments")
def assign_job(job: JobRequest, request: Request) -> dict:
    return _dump(_engine(request).assign_job(job))


@router.post("/assignments/validate")
def validate_assignment(
    body: ValidateAssignmentRequest, request: Request
) -> dict:
    return _dump(_engine(request).validate_assignment(body.tech_id, body.job))


@router.post("/assignments/batch")
def batch_assign(body: BatchAssignRequest, request: Request) -> dict:
    results = _engine(request).batch_assign_jobs(body.jobs)
    return {"results": [_dump(r) for r in results]}


@router.get("/availability")
def availability(request: Request) -> list[dict]:
    _require_privileged(request)
    return [_dump(t) for t in _engine(request).get_tech_availability()]


@router.get("/assignment-rules")
def assignment_rules(request: Request) -> dict:
    return _engine(request).get_assignment_rules()


async def _techboard_error(
    request: Request, exc: TechboardError
) -> JSONResponse:
    logger.info(
        "%s %s -> %s: %s",
        request.method,
        request.url.path,
        exc.status_code,
        exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code, content={"detail": exc.message}
    )


def create_app(
    settings: Settings | None = None,
    *,
    store: KeyValueStore | None = None,
    now_fn: NowFn | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    if store is None:
        if settings.store_path is not None:
            store = JsonFileKeyValueStore(settings.store_path)
        else:
            store = InMemoryKeyValueStore()

    app = FastAPI(title=settings.app_name)
    app.state.settings = settings
    app.state.store = store
    app.state.now_fn = now_fn or local_now

    # late-bound so tests can swap app.state.now_fn
    registry = TechnicianRegistry(
        store,
        now_fn=lambda: app.state.now_fn(),
        technicians_key=settings.technicians_key,
        hours_key=settings.tech_hours_key,
    )
    app.state.registry = registry
    app.state.engine = AssignmentEngine(
        registry,
        labor_guide=LaborGuide(
            settings.labor_skill_levels, settings.default_skill_level
        ),
        default_job_id_type=settings.default_job_id_type,
    )

    app.add_exception_handler(TechboardError, _techboard_error)
    app.include_router(router)
    return app
