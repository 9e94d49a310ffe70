"""
FastAPI application entry point
"""
import asyncio

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.api.v1.api import api_router
from app.core.logger import logger
from app.db.database import SessionLocal, init_db
from app.middleware.correlation import CorrelationMiddleware
from app.utils.exceptions import WorkflowError
from jobs.stale_case_job import run_stale_case_job

app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
)

# ── Routers ───────────────────────────────────────────────────────────────────
app.include_router(api_router, prefix="/api/v1")

# ── Correlation ID middleware (must be added before CORS) ─────────────────────
app.add_middleware(CorrelationMiddleware)

# ── CORS ──────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID", "*"],
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    if exc.status_code >= 500:
        logger.error("workflow_error code=%s path=%s: %s", exc.code, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, **exc.to_dict()},
    )


@app.get("/")
def read_root():
    logger.info("Root endpoint accessed")
    return {"message": f"{settings.APP_NAME} API is running", "version": "1.0.0", "docs": "/docs"}


@app.get("/health")
def health_check():
    return {"status": "healthy"}


# ── Scheduled loops ───────────────────────────────────────────────────────────

async def _stale_case_sweep_loop() -> None:
    """Expire applications stuck past REVIEW_SLA_DAYS. Disabled when unset."""
    if not settings.REVIEW_SLA_DAYS:
        logger.info("Stale-case sweep disabled")
        return

    while True:
        try:
            await asyncio.sleep(max(1, settings.STALE_CASE_SWEEP_MINUTES) * 60)
            await asyncio.to_thread(run_stale_case_job)
        except asyncio.CancelledError:
            break
        except Exception:
            logger.exception("_stale_case_sweep_loop crashed")
            await asyncio.sleep(60)


async def _idempotency_cleanup_loop() -> None:
    """Delete expired idempotency_records rows every hour."""
    from app.services.idempotency_service import delete_expired_idempotency_records

    while True:
        try:
            await asyncio.sleep(3600)
            db = SessionLocal()
            try:
                deleted = delete_expired_idempotency_records(db)
                if deleted:
                    logger.info("idempotency_cleanup: deleted %d expired rows", deleted)
            finally:
                db.close()
        except asyncio.CancelledError:
            break
        except Exception:
            logger.exception("_idempotency_cleanup_loop crashed")
            await asyncio.sleep(60)


# ── Startup / Shutdown ────────────────────────────────────────────────────────

@app.on_event("startup")
async def startup_event():
    if settings.CREATE_TABLES_ON_STARTUP:
        init_db()
    logger.info("%s API started", settings.APP_NAME)
    app.state.stale_case_task = asyncio.create_task(_stale_case_sweep_loop())
    app.state.idempotency_cleanup_task = asyncio.create_task(_idempotency_cleanup_loop())


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("%s API shutdown", settings.APP_NAME)
    for task_name in ["stale_case_task", "idempotency_cleanup_task"]:
        task = getattr(app.state, task_name, None)
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
