# backend/dineflow/main.py
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dineflow import __version__, config
from dineflow.api import (
    admin_router, auth_router, menu_router, notifications_router, orders_router,
    payments_router, sessions_router, splits_router, tables_router,
)
from dineflow.errors import DineflowError
from dineflow.services.reaper import StaleEntityReaper
from dineflow.storage import SQLAlchemyStorage

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("dineflow")


async def reaper_loop(storage: SQLAlchemyStorage, interval: float) -> None:
    """Run the reaper every ``interval`` seconds off the event loop."""
    reaper = StaleEntityReaper(storage)
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(reaper.run)
        except Exception as e:
            logger.error("Scheduled reaper run failed: %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "storage", None) is None:
        app.state.storage = SQLAlchemyStorage(config.DATABASE_URL)

    task = None
    if config.REAPER_INTERVAL_SECONDS > 0:
        task = asyncio.create_task(reaper_loop(app.state.storage, config.REAPER_INTERVAL_SECONDS))
        logger.info("Reaper scheduled every %ss", config.REAPER_INTERVAL_SECONDS)
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        app.state.storage.close()


app = FastAPI(title="DineFlow Restaurant Backend", version=__version__, lifespan=lifespan)

# Allow CORS for local dev (adjust in production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DineflowError)
async def dineflow_error_handler(request: Request, exc: DineflowError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(auth_router.router)
app.include_router(tables_router.router)
app.include_router(sessions_router.router)
app.include_router(menu_router.router)
app.include_router(orders_router.router)
app.include_router(splits_router.router)
app.include_router(payments_router.router)
app.include_router(notifications_router.router)
app.include_router(admin_router.router)


# ---------- Config endpoint (convenience for frontends) ----------
@app.get("/config", summary="Return backend settings useful to frontends")
async def get_config(request: Request):
    scheme = request.url.scheme or "http"
    host = request.url.hostname or "localhost"
    port = request.url.port or 8000
    return {
        "backend_base": f"{scheme}://{host}:{port}",
        "vat_rate": config.VAT_RATE,
        "payment_methods": list(config.PAYMENT_METHODS),
        "version": __version__,
    }


@app.get("/health", summary="Health check")
async def health():
    return {"status": "ok"}
