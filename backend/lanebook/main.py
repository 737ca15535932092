import asyncio
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.lanebook.core.config import settings
from backend.lanebook.core.errors import CancellationDenied, LaneBookingError
from backend.lanebook.core.locks import init_lane_locks
from backend.lanebook.core.log_config import configure_logging
from backend.lanebook.core.redis_client import close_redis, init_redis
from backend.lanebook.db.session import SessionLocal
from backend.lanebook.services.expiry import run_hold_sweeper
import backend.lanebook.routers.availability as availability
import backend.lanebook.routers.health as health
import backend.lanebook.routers.holds as holds
import backend.lanebook.routers.reservations as reservations


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    if settings.LANE_LOCK_BACKEND == "redis":
        await init_redis()
    init_lane_locks()
    sweeper = asyncio.create_task(run_hold_sweeper(SessionLocal, settings.HOLD_SWEEP_INTERVAL_SECONDS))
    try:
        yield
    finally:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
        await close_redis()


async def lane_booking_error_handler(request: Request, exc: LaneBookingError) -> JSONResponse:
    content = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, CancellationDenied):
        content["reason"] = exc.reason
    if exc.retryable:
        content["retryable"] = True
    return JSONResponse(status_code=exc.status_code, content=content)


app = FastAPI(
    title="Lane Booking API",
    lifespan=lifespan,
)

app.add_exception_handler(LaneBookingError, lane_booking_error_handler)

app.include_router(health.router, prefix=settings.API_PREFIX)
app.include_router(availability.router, prefix=settings.API_PREFIX)
app.include_router(holds.router, prefix=settings.API_PREFIX)
app.include_router(reservations.router, prefix=settings.API_PREFIX)
