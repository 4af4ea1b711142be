"""FastAPI app for the arena competitive-play API."""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
from arena.errors import ArenaError
from arena.models.base import init_db
from arena.services.housekeeping import run_housekeeping

from web.api.matchmaking_routes import router as matchmaking_router
from web.api.routes import router as api_router

logger = logging.getLogger("arena.api")

ERROR_STATUS = {
    "NotFound": 404,
    "Conflict": 409,
    "InvalidState": 409,
    "Forbidden": 403,
    "BadRequest": 400,
    "InsufficientFunds": 402,
    "TransientConflict": 503,
    "InternalError": 500,
}


async def _housekeeping_loop(interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await run_housekeeping()
        except Exception:
            logger.exception("Housekeeping run failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    task = None
    if config.HOUSEKEEPING_INTERVAL_SECONDS > 0:
        task = asyncio.create_task(_housekeeping_loop(config.HOUSEKEEPING_INTERVAL_SECONDS))
    yield
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Arena Competitive Play API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router)
app.include_router(matchmaking_router)


@app.exception_handler(ArenaError)
async def arena_error_handler(request: Request, exc: ArenaError):
    status_code = ERROR_STATUS.get(exc.kind, 500)
    if status_code >= 500:
        logger.warning("%s %s failed: %s (%s)", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=status_code, content={"error": exc.kind, "detail": exc.message})


@app.get("/api/health")
async def health():
    return {"status": "ok"}
