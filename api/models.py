"""
API models and schemas for the FastAPI application.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CrawlRequest(BaseModel):
    """Body of POST /crawl. An empty body runs a full pass over due targets."""
    target_id: Optional[str] = Field(None, description="Check only this target, bypassing eligibility")


class CrawlRunResponse(BaseModel):
    """Summary of a full crawl pass."""
    success: bool = Field(..., description="Whether the run completed")
    processed: int = Field(..., description="Targets attempted, including failed attempts")
    changed: int = Field(..., description="Targets with a detected change")
    failed: int = Field(0, description="Targets whose check failed")
    skipped: int = Field(0, description="Due targets left for the next run")
    run_id: Optional[str] = Field(None, description="Run identifier")


class SingleCrawlResponse(BaseModel):
    """Result of an on-demand single-target check."""
    success: bool = Field(..., description="Whether the check completed")
    target_id: str = Field(..., description="Checked target")
    changed: bool = Field(..., description="Whether a change was recorded")
    outcome: Optional[str] = Field(None, description="new, unchanged or changed")
    change_id: Optional[str] = Field(None, description="Change record written by this check")
    error: Optional[str] = Field(None, description="Failure reason when success is false")


class CrawlStatusResponse(BaseModel):
    """Crawl status."""
    running: bool = Field(..., description="Whether a full run is executing")
    last_run: Optional[Dict[str, Any]] = Field(None, description="Last completed run")
    jobs: List[Dict[str, Any]] = Field(default_factory=list, description="Scheduled cron jobs, if any")


class AnnotateRequest(BaseModel):
    """Body of POST /annotate."""
    limit: Optional[int] = Field(None, ge=1, description="Maximum changes to annotate")


class AnnotateResponse(BaseModel):
    """Result of an enrichment pass."""
    success: bool
    pending: int
    annotated: int
    fallbacks: int
    skipped: int
    failed: int


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Additional error details")
    status_code: int = Field(..., description="HTTP status code")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
