import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from beacon.database import close_db, init_db
from beacon.routers import reports, stream, templates

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Beacon...")
    await init_db()
    logger.info("Database initialized")
    yield
    await close_db()
    logger.info("Beacon shut down")


app = FastAPI(
    title="Beacon",
    description="Live incident reporting for EMS and Fire crews",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(stream.router)
app.include_router(reports.router)
app.include_router(templates.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
