from __future__ import annotations

import datetime as dt
import logging
from dataclasses import asdict
from zoneinfo import ZoneInfo

from fastapi import Depends, FastAPI, Query, Request, status
from sqlalchemy.orm import Session

from . import models
from .config import settings
from .database import db_session, engine, get_db
from .incentives import (
    calculate,
    calculate_all,
    check_daily_task_fines,
    mark_daily_task_na,
    save_override,
)
from .periods import local_day
from .reports import add_custom_adjustment, build_bonus_summary, list_incentive_events
from .resets import reset_recurring_tasks
from .schemas import (
    BonusFineOverrideRequest,
    BonusFineRecordResponse,
    CalculateAllRequest,
    CalculateAllResponse,
    CalculateRequest,
    CustomAdjustmentRequest,
    CustomAdjustmentResponse,
    DailyTaskFineSummaryResponse,
    DailyTaskNARequest,
    DailyTaskNAResponse,
    FineControlResponse,
    FineControlUpdateRequest,
    IncentiveCalculationResponse,
    IncentiveEventResponse,
    ResetRequest,
    ResetSummaryResponse,
    SummaryRowResponse,
)
from .state import RuntimeState, update_fine_control

logger = logging.getLogger(__name__)

models.Base.metadata.create_all(bind=engine)

runtime_state = RuntimeState(settings)
with db_session() as session:
    try:
        runtime_state.load_from_db(session)
    except Exception:
        logger.exception("Could not load fine-control settings, using defaults")

app = FastAPI(title=settings.app_name)
app.state.runtime_state = runtime_state


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/tasks/reset-recurring", response_model=ResetSummaryResponse)
def reset_recurring(payload: ResetRequest, db: Session = Depends(get_db)) -> ResetSummaryResponse:
    summary = reset_recurring_tasks(db, payload.scope, project_id=payload.project_id, user_id=payload.user_id)
    return summary


@app.post("/cron/reset-recurring-tasks", response_model=ResetSummaryResponse)
def cron_reset_recurring(db: Session = Depends(get_db)) -> ResetSummaryResponse:
    return reset_recurring_tasks(db, "all")


@app.post("/cron/check-daily-tasks-fine", response_model=DailyTaskFineSummaryResponse)
def cron_check_daily_task_fines(request: Request, db: Session = Depends(get_db)) -> DailyTaskFineSummaryResponse:
    state: RuntimeState = request.app.state.runtime_state
    return check_daily_task_fines(db, state)


@app.get("/admin/fine-control", response_model=FineControlResponse)
def read_fine_control(request: Request) -> FineControlResponse:
    state: RuntimeState = request.app.state.runtime_state
    return FineControlResponse(**state.snapshot())


@app.put("/admin/fine-control", response_model=FineControlResponse)
def write_fine_control(
    payload: FineControlUpdateRequest, request: Request, db: Session = Depends(get_db)
) -> FineControlResponse:
    state: RuntimeState = request.app.state.runtime_state
    snapshot = update_fine_control(db, state, payload.model_dump(exclude_unset=True))
    return FineControlResponse(**snapshot)


@app.post("/admin/calculate-bonus-fine", response_model=IncentiveCalculationResponse)
def calculate_bonus_fine(
    payload: CalculateRequest, request: Request, db: Session = Depends(get_db)
) -> IncentiveCalculationResponse:
    state: RuntimeState = request.app.state.runtime_state
    return calculate(db, payload.employee_id, payload.period, state=state)


@app.post("/admin/calculate-bonus-fine/all", response_model=CalculateAllResponse)
def calculate_bonus_fine_all(
    payload: CalculateAllRequest, request: Request, db: Session = Depends(get_db)
) -> CalculateAllResponse:
    state: RuntimeState = request.app.state.runtime_state
    results, errors = calculate_all(db, payload.period, state=state)
    return CalculateAllResponse(
        results=[IncentiveCalculationResponse.model_validate(asdict(result)) for result in results],
        errors=errors,
    )


@app.put("/admin/bonus-fine", response_model=BonusFineRecordResponse)
def write_bonus_fine_override(
    payload: BonusFineOverrideRequest, db: Session = Depends(get_db)
) -> BonusFineRecordResponse:
    record = save_override(
        db,
        payload.employee_id,
        payload.period,
        payload.month,
        payload.year,
        manual_bonus=payload.manual_bonus,
        manual_fine=payload.manual_fine,
        admin_notes=payload.admin_notes,
        approved_by_core_team=payload.approved_by_core_team,
    )
    return record


@app.get("/admin/bonus-summary", response_model=list[SummaryRowResponse])
def read_bonus_summary(
    start_date: dt.date = Query(...),
    end_date: dt.date = Query(...),
    db: Session = Depends(get_db),
) -> list[SummaryRowResponse]:
    return build_bonus_summary(db, start_date, end_date)


@app.get("/admin/bonus-summary/details", response_model=list[IncentiveEventResponse])
def read_bonus_summary_details(
    employee_id: int = Query(...),
    start_date: dt.date = Query(...),
    end_date: dt.date = Query(...),
    db: Session = Depends(get_db),
) -> list[IncentiveEventResponse]:
    return list_incentive_events(db, employee_id, start_date, end_date)


@app.post(
    "/admin/bonus-summary/custom",
    response_model=list[CustomAdjustmentResponse],
    status_code=status.HTTP_201_CREATED,
)
def create_custom_adjustment(
    payload: CustomAdjustmentRequest, db: Session = Depends(get_db)
) -> list[CustomAdjustmentResponse]:
    return add_custom_adjustment(
        db,
        payload.employee_id,
        payload.date,
        kind=payload.kind,
        unit=payload.unit,
        value=payload.value,
        description=payload.description,
        fine_points=payload.fine_points,
        fine_currency=payload.fine_currency,
    )


@app.post("/employee/daily-task-na", response_model=DailyTaskNAResponse)
def write_daily_task_na(payload: DailyTaskNARequest, db: Session = Depends(get_db)) -> DailyTaskNAResponse:
    day = payload.date or local_day(models.utcnow(), ZoneInfo(settings.timezone))
    mark_daily_task_na(db, payload.employee_id, payload.project_id, day, payload.is_na)
    return DailyTaskNAResponse(
        employee_id=payload.employee_id,
        project_id=payload.project_id,
        date=day,
        is_na=payload.is_na,
    )
