"""Parsing of AI text responses into domain models."""

import re
from collections.abc import Sequence

from pydantic import BaseModel, ValidationError

from nutrisnap.domain.analysis import (
    GroundingSource,
    HealthRiskAssessment,
    NutritionalInfo,
    SupplementSuggestion,
)
from nutrisnap.domain.errors import EmptyResponseError, ParseError
from nutrisnap.services.ai import Citation

_FENCE_RE = re.compile(
    r"^```[A-Za-z0-9_+-]*[ \t]*\n?(?P<body>.*?)\n?[ \t]*```$",
    re.DOTALL,
)


class _SupplementList(BaseModel):
    suggestions: list[SupplementSuggestion]


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences wrapped around a payload.

    One fence pair is stripped per pass, so nested fences unwrap fully.
    Text without a closing fence is returned trimmed but otherwise as is.
    """
    payload = text.strip()
    while True:
        match = _FENCE_RE.match(payload)
        if match is None:
            return payload
        payload = match.group("body").strip()


def parse_nutrition(raw_text: str) -> NutritionalInfo:
    """Parse the free-text answer of a grounded nutrition call."""
    _require_text(raw_text)
    payload = strip_code_fences(raw_text)
    try:
        return NutritionalInfo.model_validate_json(payload)
    except ValidationError as exc:
        raise ParseError(f"Invalid nutrition payload: {exc}", raw_text) from exc


def parse_risk_assessment(raw_text: str) -> HealthRiskAssessment:
    """Parse a schema-constrained risk assessment.

    The provider enforces the schema for this call, so no fence stripping.
    """
    _require_text(raw_text)
    try:
        return HealthRiskAssessment.model_validate_json(raw_text)
    except ValidationError as exc:
        raise ParseError(f"Invalid risk payload: {exc}", raw_text) from exc


def parse_supplements(raw_text: str) -> list[SupplementSuggestion]:
    """Parse a schema-constrained list of supplement suggestions."""
    _require_text(raw_text)
    try:
        return _SupplementList.model_validate_json(raw_text).suggestions
    except ValidationError as exc:
        raise ParseError(f"Invalid supplement payload: {exc}", raw_text) from exc


def parse_sources(citations: Sequence[Citation]) -> list[GroundingSource]:
    """Keep citations that have both a URI and a title, in upstream order."""
    return [
        GroundingSource(uri=citation.uri, title=citation.title)
        for citation in citations
        if citation.uri and citation.title
    ]


def _require_text(raw_text: str | None) -> None:
    if raw_text is None or not raw_text.strip():
        raise EmptyResponseError("Received an empty response from the AI.")
