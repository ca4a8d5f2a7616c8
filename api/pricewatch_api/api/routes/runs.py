from collections.abc import Callable

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from pricewatch.config import WorkerSettings
from pricewatch.oracles.registry import OracleSet
from pricewatch_api.api.deps import get_oracle_factory, get_pipeline_settings, require_admin_token
from pricewatch_api.db.session import get_db, get_session_factory
from pricewatch_api.schemas.runs import (
    IngestionRunOut,
    RunListResponse,
    RunStatusOut,
    StartRunRequest,
    StartRunResponse,
)
from pricewatch_api.services.runs import (
    cancel_run,
    execute_run,
    list_runs,
    recent_runs,
    run_status,
    runs_by_status,
    start_run,
)

router = APIRouter(prefix="/v1/admin/ingestion-runs", tags=["ingestion-runs"], dependencies=[Depends(require_admin_token)])


@router.post("", response_model=StartRunResponse, status_code=202)
def create_run(
    background_tasks: BackgroundTasks,
    payload: StartRunRequest | None = None,
    db: Session = Depends(get_db),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    settings: WorkerSettings = Depends(get_pipeline_settings),
    oracle_factory: Callable[[WorkerSettings], OracleSet] = Depends(get_oracle_factory),
) -> StartRunResponse:
    response = start_run(db, payload or StartRunRequest())
    background_tasks.add_task(execute_run, response.run_id, session_factory, settings, oracle_factory)
    return response


@router.get("", response_model=RunListResponse)
def ingestion_runs(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
) -> RunListResponse:
    return list_runs(db, page=page, limit=limit)


@router.get("/recent", response_model=list[IngestionRunOut])
def recent(limit: int = Query(default=10, ge=1, le=100), db: Session = Depends(get_db)) -> list[IngestionRunOut]:
    return recent_runs(db, limit=limit)


@router.get("/status/{status}", response_model=list[IngestionRunOut])
def by_status(status: str, db: Session = Depends(get_db)) -> list[IngestionRunOut]:
    return runs_by_status(db, status)


@router.get("/{run_id}", response_model=RunStatusOut)
def get_run(run_id: str, include_results: bool = False, db: Session = Depends(get_db)) -> RunStatusOut:
    return run_status(db, run_id, include_results=include_results)


@router.post("/{run_id}/cancel", response_model=IngestionRunOut)
def cancel(run_id: str, db: Session = Depends(get_db)) -> IngestionRunOut:
    return cancel_run(db, run_id)
