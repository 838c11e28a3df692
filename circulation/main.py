# circulation/main.py
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI, Request, status as fastapi_status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi.errors import RateLimitExceeded

from circulation.api.v1.api import api_router_v1
from circulation.core.config import (
    EXPIRY_SWEEP_MINUTES,
    LOG_TO_FILE,
    SCHEDULER_ENABLED,
    SCHEDULER_TIMEZONE,
    load_policy,
    setup_logging,
)
from circulation.core.errors import (
    CirculationError,
    Contention,
    DuplicateKey,
    ErrorCategory,
    NotFound,
)
from circulation.core.rate_limiter import get_rate_limiter, rate_limit_exception_handler
from circulation.db.database import close_db, init_db, ping_db
from circulation.middleware.logging import RequestLoggingMiddleware
from circulation.scheduler.jobs import expire_stale_reservations
from circulation.services.library import Library

CONTENTION_RETRY_AFTER_SECONDS = 1

# --- Scheduler Instance ---
scheduler = AsyncIOScheduler(timezone=SCHEDULER_TIMEZONE)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(log_file=LOG_TO_FILE)
    logger.info("Application startup...")
    repo = await init_db()
    app.state.library = Library(repo, load_policy())
    logger.info("Library services initialized.")

    if SCHEDULER_ENABLED:
        logger.info("Adding scheduler jobs...")
        scheduler.add_job(
            expire_stale_reservations,
            trigger=IntervalTrigger(minutes=EXPIRY_SWEEP_MINUTES),
            args=[app.state.library],
            id="expire_reservations_job",
            name="Expire Stale Reservations",
            replace_existing=True,
            misfire_grace_time=60 * EXPIRY_SWEEP_MINUTES,
            max_instances=1,
        )
        scheduler.start()
        logger.info(f"Scheduler started with timezone: {scheduler.timezone}")
    yield
    logger.info("Application shutdown...")
    if scheduler.running:
        scheduler.shutdown()
    close_db()


app = FastAPI(
    title="Library Circulation API",
    description="Loans, reservations, fines and inventory status for a lending library.",
    version="1.0.0",
    lifespan=lifespan,
)

# --- Error handling ---
app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)


def _status_for(exc: CirculationError) -> int:
    if isinstance(exc, NotFound):
        return fastapi_status.HTTP_404_NOT_FOUND
    if isinstance(exc, DuplicateKey):
        return fastapi_status.HTTP_409_CONFLICT
    return {
        ErrorCategory.VALIDATION: fastapi_status.HTTP_400_BAD_REQUEST,
        ErrorCategory.STATE_CONFLICT: fastapi_status.HTTP_409_CONFLICT,
        ErrorCategory.CONTENTION: fastapi_status.HTTP_503_SERVICE_UNAVAILABLE,
        ErrorCategory.INTEGRITY: fastapi_status.HTTP_500_INTERNAL_SERVER_ERROR,
    }[exc.category]


@app.exception_handler(CirculationError)
async def circulation_exception_handler(request: Request, exc: CirculationError):
    status_code = _status_for(exc)
    content = {"detail": exc.message, "code": exc.code, "category": exc.category.value}
    if exc.entity_id is not None:
        content["entity_id"] = exc.entity_id
    headers = None
    if isinstance(exc, Contention):
        headers = {"Retry-After": str(CONTENTION_RETRY_AFTER_SECONDS)}

    if status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=status_code, content=content, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation Error: {exc.errors()}")
    return JSONResponse(
        status_code=fastapi_status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Validation Error", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled Exception: {exc}")
    return JSONResponse(
        status_code=fastapi_status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An internal server error occurred."},
    )


# --- Middleware ---
app.add_middleware(RequestLoggingMiddleware)
app.state.limiter = get_rate_limiter()
app.add_middleware(GZipMiddleware, minimum_size=500)

app.include_router(api_router_v1)


@app.get("/")
async def read_root():
    return {"message": "Library circulation service"}


@app.get("/health")
async def health():
    await ping_db()
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("circulation.main:app", host="0.0.0.0", port=8000)
