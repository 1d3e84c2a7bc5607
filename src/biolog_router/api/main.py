"""
Copyright (c) 2025 DIER

This software is proprietary and confidential. Unauthorized copying, distribution,
or use of this software is strictly prohibited. This software is provided for
internal use only within organizations for cybersecurity purposes.

For licensing inquiries, contact: licensing@dier.org
"""

"""
Main FastAPI application: HTTP push ingestion for the log router.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from ..core.config import settings
from ..core.exceptions import ConfigurationError, IngestionError
from ..core.models import IngestBatchRequest, IngestRequest, RoutingResult
from ..core.router import log_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting biolog-router API")
    try:
        log_router.initialize()
        logger.info("API startup completed successfully")
    except Exception as e:
        logger.error(f"Failed to initialize API: {e}")
        raise

    yield

    # Shutdown
    logger.info("Shutting down biolog-router API")
    await log_router.close()


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Classifies, masks and routes bio-pharma system logs to tiered destinations",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Bio-Pharma Log Router",
        "version": settings.app_version,
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    try:
        stats = log_router.get_stats()
        return {
            "status": "healthy" if not stats.get("rejected_sources") else "degraded",
            "initialized": stats["initialized"],
            "sources": stats.get("sources", []),
            "rejected_sources": stats.get("rejected_sources", {}),
            "version": settings.app_version
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "error": str(e),
                "version": settings.app_version
            }
        )


@app.get("/stats")
async def get_stats() -> Dict[str, Any]:
    """Aggregate pipeline counters and recent diagnostics."""
    return log_router.get_stats()


@app.get("/sources")
async def get_sources() -> List[Dict[str, Any]]:
    """Routing table per source system."""
    return log_router.describe_sources()


@app.post("/ingest", response_model=RoutingResult)
async def ingest(request: IngestRequest):
    """Route one record pushed by a collector."""
    try:
        return await log_router.process(
            request.source_system,
            request.raw_payload,
            request.timestamp,
        )
    except (ConfigurationError, IngestionError) as e:
        logger.warning(f"Rejected ingestion from {request.source_system}: {e}")
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/ingest/batch")
async def ingest_batch(request: IngestBatchRequest):
    """Route a batch of records; rejected records are reported individually."""
    if not request.records:
        raise HTTPException(status_code=400, detail="No records provided")

    results = await log_router.process_batch(
        [r.model_dump() for r in request.records],
        max_concurrent=request.max_concurrent,
    )

    items = []
    for record, result in zip(request.records, results):
        if isinstance(result, (ConfigurationError, IngestionError)):
            items.append({"success": False, "source_system": record.source_system, "error": str(result)})
        elif isinstance(result, Exception):
            logger.error(f"Unexpected error routing batch record: {result}")
            items.append({"success": False, "source_system": record.source_system, "error": "internal error"})
        else:
            items.append({"success": True, "result": result.model_dump(mode="json")})

    return {
        "total": len(items),
        "routed": sum(1 for i in items if i["success"]),
        "rejected": sum(1 for i in items if not i["success"]),
        "results": items,
    }
