"""FastAPI backend for genflow: submit generation jobs and follow their progress."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from genflow import __version__
from genflow.config import get_settings
from genflow.jobs.maintenance import MaintenanceLoop
from genflow.orchestrator import create_orchestrator

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the orchestrator (unless one was installed on app.state) and run maintenance."""
    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is None:
        orchestrator = create_orchestrator(settings)
        app.state.orchestrator = orchestrator
    maintenance = MaintenanceLoop(
        orchestrator.store,
        interval_s=settings.genflow_maintenance_interval_s,
        stuck_age_s=settings.stuck_job_age,
        retention_s=settings.genflow_retention_s,
        on_stuck=orchestrator.mark_cancelled,
    )
    maintenance.start()
    logger.info("genflow API ready (provider=%s, job store=%s)", settings.genflow_provider, settings.genflow_job_store)
    try:
        yield
    finally:
        await maintenance.stop()
        await orchestrator.shutdown()
        logger.info("genflow API stopped")


app = FastAPI(
    title="genflow API",
    description="Generation job orchestration for app concepts, icons, screens and cover media.",
    version=__version__,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------
cors_origins = settings.cors_origin_list
logger.info("CORS configured for origins: %s", cors_origins)
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Health & root
# ---------------------------------------------------------------------------
class HealthResponse(BaseModel):
    status: str
    data_dir: str


@app.get("/health", response_model=HealthResponse)
@app.get("/api/health", response_model=HealthResponse)
async def health():
    """Health check endpoint."""
    return HealthResponse(status="ok", data_dir=str(settings.data_dir))


@app.get("/api/")
async def root():
    """API root."""
    return {"message": "genflow API", "version": __version__}


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
from backend.routes import jobs, owners  # noqa: E402

app.include_router(owners.router, prefix="/api", tags=["owners"])
app.include_router(jobs.router, prefix="/api", tags=["jobs"])
