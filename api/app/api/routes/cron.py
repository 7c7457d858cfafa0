import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.deps import JobRunner, get_job_runner, require_cron_secret
from catalog_sync.report import SyncResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])


async def _run(job: str, runner: JobRunner) -> JSONResponse:
    logger.info("Cron job %s started", job)
    result = await runner(job)
    logger.info(
        "Cron job %s completed: success=%s candidates=%s written=%s errors=%s duration=%s",
        job, result.success, result.total_candidates, result.records_written, result.error_count, result.duration,
    )
    return JSONResponse(status_code=result.http_status, content=result.model_dump(mode="json"))


@router.get("/sync-products", response_model=SyncResult)
async def sync_products(runner: JobRunner = Depends(get_job_runner)) -> JSONResponse:
    return await _run("catalog", runner)


@router.get("/sync-buyprices", response_model=SyncResult)
async def sync_buyprices(runner: JobRunner = Depends(get_job_runner)) -> JSONResponse:
    return await _run("buyprices", runner)


@router.get("/sync-picqerdata", response_model=SyncResult)
async def sync_picqerdata(runner: JobRunner = Depends(get_job_runner)) -> JSONResponse:
    return await _run("picqer-data", runner)
