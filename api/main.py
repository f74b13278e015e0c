"""
FastAPI trigger interface for the page monitor.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.auth import verify_operation_token
from api.config import config as api_config
from api.models import (
    AnnotateRequest, AnnotateResponse,
    CrawlRequest, CrawlRunResponse, CrawlStatusResponse, SingleCrawlResponse,
    ErrorResponse, HealthResponse
)
from crawler.exceptions import CrawlInProgressError, FetchError, PersistenceError, TargetNotFoundError
from crawler.models import utcnow
from scheduler.scheduler_service import SchedulerService
from utilities.config import config

# Setup logging
logger = structlog.get_logger(__name__)

# Global pipeline service
monitor_service: SchedulerService = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting page monitor API")

    global monitor_service
    service = SchedulerService.from_settings(config)
    await service.connect()
    monitor_service = service

    yield

    logger.info("Shutting down page monitor API")
    await service.disconnect()
    monitor_service = None


# Create FastAPI application
app = FastAPI(
    title=api_config.api_title,
    description="""
    Trigger interface for the page change monitor.

    ## Authentication

    Every endpoint except `/health` requires the shared crawl secret:

    ```
    Authorization: Bearer <CRAWL_SECRET>
    ```
    """,
    version=api_config.api_version,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=api_config.cors_origins,
    allow_credentials=api_config.cors_allow_credentials,
    allow_methods=api_config.cors_allow_methods,
    allow_headers=api_config.cors_allow_headers,
)


# Exception handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.detail,
            status_code=exc.status_code
        ).model_dump(),
        headers=exc.headers
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc: Exception):
    """Handle general exceptions."""
    logger.error("Unhandled exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="Internal server error",
            detail=str(exc) if api_config.debug else None,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        ).model_dump()
    )


def _require_service() -> SchedulerService:
    if monitor_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Monitor service is not initialized"
        )
    return monitor_service


# Health check endpoint (no authentication required)
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy" if monitor_service is not None else "degraded",
        timestamp=utcnow(),
        version=api_config.api_version
    )


@app.post("/crawl", tags=["Crawl"])
async def trigger_crawl(
    request: Optional[CrawlRequest] = None,
    token: str = Depends(verify_operation_token)
):
    """
    Run a crawl pass.

    - Empty body: check every due target, returns `{success, processed, changed}`
    - `{"target_id": ...}`: check that target now, returns `{success, target_id, changed}`
    """
    service = _require_service()

    if request is not None and request.target_id:
        return await _crawl_single(service, request.target_id)

    try:
        result = await service.run_crawl()
    except CrawlInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except PersistenceError as e:
        logger.error("Crawl run failed", error=str(e))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Store unavailable")

    return CrawlRunResponse(
        success=True,
        processed=result.processed,
        changed=result.changed,
        failed=result.failed,
        skipped=result.skipped,
        run_id=result.run_id
    )


async def _crawl_single(service: SchedulerService, target_id: str):
    try:
        check = await service.run_single(target_id)
    except TargetNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except FetchError as e:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content=SingleCrawlResponse(
                success=False, target_id=target_id, changed=False, error=str(e)
            ).model_dump()
        )
    except PersistenceError as e:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=SingleCrawlResponse(
                success=False, target_id=target_id, changed=False, error=str(e)
            ).model_dump()
        )

    return SingleCrawlResponse(
        success=True,
        target_id=target_id,
        changed=check.changed,
        outcome=check.outcome.value,
        change_id=check.change_id
    )


@app.get("/crawl", response_model=CrawlStatusResponse, tags=["Crawl"])
async def crawl_status(token: str = Depends(verify_operation_token)):
    """Whether a run is executing, and the last completed run."""
    service = _require_service()
    return CrawlStatusResponse(**service.status())


@app.post("/annotate", response_model=AnnotateResponse, tags=["Annotation"])
async def trigger_annotation(
    request: Optional[AnnotateRequest] = None,
    token: str = Depends(verify_operation_token)
):
    """Run the AI enrichment pass over changes lacking a summary."""
    service = _require_service()
    limit = request.limit if request is not None else None

    try:
        result = await service.run_annotation(limit=limit)
    except PersistenceError as e:
        logger.error("Annotation pass failed", error=str(e))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Store unavailable")

    return AnnotateResponse(
        success=True,
        pending=result.pending,
        annotated=result.annotated,
        fallbacks=result.fallbacks,
        skipped=result.skipped,
        failed=result.failed
    )
