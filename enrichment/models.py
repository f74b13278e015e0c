"""
Models for AI enrichment of change records.
"""

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from crawler.models import ChangeType, PageCategory, Significance


class AnnotatorConfig(BaseModel):
    """Configuration for the AI annotator and its text-generation client."""
    api_key: Optional[str] = Field(default=None, description="Gemini API key; fallback results when unset")
    model: str = Field(default="gemini-1.5-flash")
    api_base: str = Field(default="https://generativelanguage.googleapis.com/v1beta")
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=500, gt=0)
    timeout: float = Field(default=30.0, gt=0)
    delay_seconds: float = Field(default=1.0, ge=0, description="Delay between consecutive AI calls")
    excerpt_chars: int = Field(default=2000, gt=0, description="Bound on before/after excerpts in prompts")


class AnalysisResult(BaseModel):
    """The four enrichment fields written to a change record."""
    model_config = ConfigDict(populate_by_name=True)

    summary: str = Field(..., min_length=1)
    analysis: str = Field(..., min_length=1)
    change_type: ChangeType = Field(..., alias="changeType")
    significance: Significance = Field(...)

    @field_validator('summary', 'analysis', mode='before')
    @classmethod
    def strip_text(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator('change_type', mode='before')
    @classmethod
    def coerce_change_type(cls, v):
        """Unknown classifications collapse to 'other'."""
        value = str(getattr(v, "value", v)).strip().lower() if v is not None else ""
        if value in ChangeType._value2member_map_:
            return value
        return ChangeType.OTHER

    @field_validator('significance', mode='before')
    @classmethod
    def coerce_significance(cls, v):
        """Unknown significance levels collapse to 'minor'."""
        value = str(getattr(v, "value", v)).strip().lower() if v is not None else ""
        if value in Significance._value2member_map_:
            return value
        return Significance.MINOR


class ParsedAnalysis(BaseModel):
    """The service answered with a usable JSON object."""
    result: AnalysisResult
    raw_text: str

    @property
    def is_fallback(self) -> bool:
        return False


class FallbackAnalysis(BaseModel):
    """Deterministic result used whenever the service could not be used."""
    result: AnalysisResult
    reason: str
    raw_text: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return True


AnalysisOutcome = Union[ParsedAnalysis, FallbackAnalysis]


class AnnotationContext(BaseModel):
    """Everything the prompt is built from."""
    target_name: str
    category: PageCategory
    url: str
    diff: str
    before_excerpt: Optional[str] = None
    after_excerpt: str = ""


class AnnotationRunResult(BaseModel):
    """Result of an enrichment pass."""
    pending: int = Field(default=0, description="Changes lacking a summary at pass start")
    annotated: int = Field(default=0, description="Changes written, including fallback results")
    fallbacks: int = Field(default=0)
    skipped: int = Field(default=0, description="Changes whose target or snapshot could not be loaded, or left by a stop")
    failed: int = Field(default=0, description="Changes whose enrichment could not be persisted")
    duration_seconds: float = Field(default=0.0)
    errors: List[str] = Field(default_factory=list)
