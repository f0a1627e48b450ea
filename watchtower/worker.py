"""
WATCHTOWER - ARQ Worker
=======================
Background job queue worker for breach monitoring sweeps.

Usage:
    arq watchtower.worker.WorkerSettings
"""

from datetime import datetime, timezone
from typing import Optional

import structlog
from arq import create_pool
from arq.connections import RedisSettings, ArqRedis

from watchtower.config import settings
from watchtower.errors import ConfigurationError
from watchtower.logging_config import configure_logging

logger = structlog.get_logger(__name__)


async def run_breach_sweep(ctx: dict) -> dict:
    """
    Execute one breach monitoring sweep as a background job.

    Returns:
        dict with the sweep counts, or the failure reason
    """
    from watchtower.services.breach_monitor import run_sweep

    logger.info("sweep_job_started", job_id=ctx.get("job_id"))

    try:
        result = await run_sweep()
    except ConfigurationError as e:
        logger.error("sweep_job_not_configured", setting=e.setting)
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.error("sweep_job_failed", error=str(e), exc_info=True)
        return {"success": False, "error": str(e)}

    logger.info("sweep_job_completed", **result.to_dict())
    return {"success": True, **result.to_dict()}


async def startup(ctx: dict) -> None:
    """Worker startup hook."""
    configure_logging()
    logger.info("arq_worker_started")


async def shutdown(ctx: dict) -> None:
    """Worker shutdown hook."""
    logger.info("arq_worker_shutdown")


class WorkerSettings:
    """ARQ worker settings."""

    redis_settings = RedisSettings.from_dsn(settings.redis_url)

    functions = [run_breach_sweep]

    # One sweep at a time per worker
    max_jobs = 1

    job_timeout = 3600

    # A failed sweep is retried by the next trigger, not by arq
    max_tries = 1

    on_startup = startup
    on_shutdown = shutdown

    keep_result = 86400


def sweep_job_id(now: Optional[datetime] = None) -> str:
    """Job id for the current hour, so overlapping triggers collapse into one job."""
    now = now or datetime.now(timezone.utc)
    return f"breach_sweep_{now.strftime('%Y%m%d%H')}"


async def get_arq_pool() -> ArqRedis:
    """Get ARQ Redis pool for enqueueing jobs."""
    return await create_pool(
        RedisSettings.from_dsn(settings.redis_url)
    )


async def enqueue_sweep() -> str:
    """
    Enqueue a sweep job.

    Returns:
        Job ID for this hour's sweep
    """
    pool = await get_arq_pool()
    job_id = sweep_job_id()

    try:
        job = await pool.enqueue_job("run_breach_sweep", _job_id=job_id)
        if job is None:
            logger.info("sweep_job_already_queued", job_id=job_id)
        else:
            logger.info("sweep_job_enqueued", job_id=job.job_id)
        return job_id
    finally:
        await pool.close()
