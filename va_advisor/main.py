"""VA Advisor - FastAPI Application Entry Point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from va_advisor.config import get_settings
from va_advisor.routers import jd, knowledge_base, sop
from va_advisor.services.enrichment_worker import get_enrichment_worker

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown."""
    logger.info("Starting VA Advisor...")

    worker = get_enrichment_worker()
    worker.start()

    logger.info("VA Advisor started successfully")

    yield

    logger.info("Shutting down VA Advisor...")
    await worker.stop()
    logger.info("VA Advisor shutdown complete")


settings = get_settings()

app = FastAPI(
    title="VA Advisor",
    description="Job description analysis and organization knowledge base for a VA agency",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(jd.router)
app.include_router(knowledge_base.router)
app.include_router(sop.router)


@app.get("/health")
async def health_check() -> dict:
    """
    Health check endpoint for monitoring.

    Reports the enrichment worker state and its queue depth.
    """
    worker = get_enrichment_worker()
    health = {
        "status": "healthy",
        "services": {
            "enrichment_worker": {
                "status": "healthy" if worker.running else "stopped",
                "queued": worker.queue.qsize(),
            }
        },
    }
    if not worker.running:
        health["status"] = "degraded"
    return health
