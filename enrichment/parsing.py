"""
Tolerant parsing of free-text model responses.

Models wrap JSON in prose or code fences, and sometimes emit several objects.
Only the first balanced object that decodes cleanly is used.
"""

import json
from typing import Any, Dict, Iterator, Optional

import structlog
from pydantic import ValidationError

from enrichment.models import AnalysisResult

logger = structlog.get_logger(__name__)

REQUIRED_FIELDS = ("summary", "analysis", "changeType", "significance")


def _balanced_candidates(text: str) -> Iterator[str]:
    """Yield each balanced ``{...}`` span, honoring JSON string literals and escapes."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        end = -1

        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue

            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    end = index
                    break

        if end != -1:
            yield text[start:end + 1]
        start = text.find("{", start + 1)


def extract_first_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Return the first balanced JSON object in text that decodes to a dict.

    Args:
        text: Free-text model response

    Returns:
        Decoded object, or None when no candidate decodes
    """
    if not text:
        return None
    for candidate in _balanced_candidates(text):
        try:
            decoded = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(decoded, dict):
            return decoded
    return None


def parse_analysis(text: str) -> Optional[AnalysisResult]:
    """
    Extract the enrichment fields from a model response.

    Unknown changeType or significance values are coerced to other/minor.

    Returns:
        AnalysisResult, or None when no object with all four fields is found
    """
    payload = extract_first_json_object(text)
    if payload is None:
        logger.debug("No JSON object in model response", chars=len(text or ""))
        return None

    missing = [field for field in REQUIRED_FIELDS if field not in payload]
    if missing:
        logger.debug("Model response missing fields", missing=missing)
        return None

    try:
        return AnalysisResult.model_validate(payload)
    except ValidationError as e:
        logger.debug("Model response failed validation", error=str(e))
        return None
