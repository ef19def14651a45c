import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from yardbook.config import settings
from yardbook.database import engine
from yardbook.middleware.exceptions import register_exception_handlers
from yardbook.routers import bookings, health
from yardbook.services.workflow import close_workflow

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("yardbook")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Flush pending audit events and release connections on shutdown."""
    logger.info(f"Yardbook starting ({settings.environment})")
    try:
        yield
    finally:
        await close_workflow()
        await engine.dispose()
        logger.info("Yardbook stopped")


app = FastAPI(
    title="Yardbook",
    description="Vehicle booking and yard check-in workflow",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(bookings.router, prefix="/api/bookings", tags=["bookings"])
