"""Turns raw model output into a validated ModelResponse.

Parsing is an ordered chain of strategies (plain JSON, fenced code block,
outermost brace-delimited object). Validation repairs instead of
rejecting: out-of-range numbers are clamped and unknown enum values fall
back to safe defaults, so one sloppy field never discards a whole answer.
Content that cannot be recovered at all becomes a low-confidence, empty
response.
"""

import json
import logging
import re
from typing import Any, Callable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from chainaudit.domain.models.ai import (
    AI_VULNERABILITY_TYPES,
    RECOMMENDATION_PRIORITIES,
    AIVulnerability,
    ModelResponse,
    QualityMetrics,
    SecurityRecommendation,
)
from chainaudit.domain.models.contract import CodeLocation, Severity

logger = logging.getLogger(__name__)

UNPARSEABLE_CONFIDENCE = 0.1

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_BRACED_OBJECT = re.compile(r"\{[\s\S]*\}")
_SEVERITY_VALUES = {s.value for s in Severity}


def _clamp(value: Any, low: float, high: float, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return max(low, min(high, number))


def _positive_int(value: Any) -> int:
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 1
    return number if number >= 1 else 1


# --- Schema (repairing validators) ---

class LocationSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    file: str = "contract.sol"
    line: int = 1
    column: int = 1
    length: Optional[int] = None

    @field_validator("file", mode="before")
    @classmethod
    def _file(cls, v: Any) -> str:
        return str(v) if v not in (None, "") else "contract.sol"

    @field_validator("line", "column", mode="before")
    @classmethod
    def _line_column(cls, v: Any) -> int:
        return _positive_int(v)

    @field_validator("length", mode="before")
    @classmethod
    def _length(cls, v: Any) -> Optional[int]:
        if v is None:
            return None
        try:
            number = int(float(v))
        except (TypeError, ValueError, OverflowError):
            return None
        return number if number >= 0 else None


class VulnerabilitySchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = "best_practice"
    severity: str = "low"
    description: str = ""
    location: LocationSchema = Field(default_factory=LocationSchema)
    confidence: float = 0.5

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v: Any) -> str:
        value = str(v).strip().lower() if v is not None else ""
        return value if value in AI_VULNERABILITY_TYPES else "best_practice"

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, v: Any) -> str:
        value = str(v).strip().lower() if v is not None else ""
        return value if value in _SEVERITY_VALUES else "low"

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("location", mode="before")
    @classmethod
    def _location(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else {}

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> float:
        return _clamp(v, 0.0, 1.0, 0.5)


class RecommendationSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    category: str = "General"
    priority: str = "medium"
    description: str = ""
    implementation_guide: str = ""

    @field_validator("category", "description", "implementation_guide", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v: Any) -> str:
        value = str(v).strip().lower() if v is not None else ""
        return value if value in RECOMMENDATION_PRIORITIES else "medium"


class QualityMetricsSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code_quality_score: float = 50.0
    maintainability_index: float = 50.0
    test_coverage_estimate: float = 0.0

    @field_validator("code_quality_score", "maintainability_index", mode="before")
    @classmethod
    def _score(cls, v: Any) -> float:
        return _clamp(v, 0.0, 100.0, 50.0)

    @field_validator("test_coverage_estimate", mode="before")
    @classmethod
    def _coverage(cls, v: Any) -> float:
        return _clamp(v, 0.0, 100.0, 0.0)


class AIResponseSchema(BaseModel):
    """The JSON document every model is asked to return."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    vulnerabilities: List[VulnerabilitySchema] = Field(default_factory=list)
    recommendations: List[RecommendationSchema] = Field(default_factory=list)
    quality_metrics: QualityMetricsSchema = Field(default_factory=QualityMetricsSchema, alias="qualityMetrics")
    confidence: float = 0.5

    @field_validator("vulnerabilities", "recommendations", mode="before")
    @classmethod
    def _object_list(cls, v: Any) -> List[Any]:
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, dict)]

    @field_validator("quality_metrics", mode="before")
    @classmethod
    def _metrics(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else {}

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> float:
        return _clamp(v, 0.0, 1.0, 0.5)


# --- Parsing strategies ---

def _parse_direct(text: str) -> Any:
    return json.loads(text.strip())

def _parse_fenced_block(text: str) -> Any:
    match = _FENCED_BLOCK.search(text)
    if not match:
        return None
    return json.loads(match.group(1).strip())

def _parse_braced_object(text: str) -> Any:
    match = _BRACED_OBJECT.search(text)
    if not match:
        return None
    return json.loads(match.group(0))

PARSE_STRATEGIES: Sequence[Tuple[str, Callable[[str], Any]]] = (
    ("direct", _parse_direct),
    ("fenced_block", _parse_fenced_block),
    ("braced_object", _parse_braced_object),
)


def extract_json_object(text: str) -> Optional[dict]:
    """Returns the first JSON object any strategy recovers from ``text``."""
    if not text or not text.strip():
        return None
    for name, strategy in PARSE_STRATEGIES:
        try:
            value = strategy(text)
        except (json.JSONDecodeError, ValueError, TypeError):
            continue
        if isinstance(value, dict):
            logger.debug(f"AI response parsed with strategy '{name}'")
            return value
    return None


def empty_response(model: str, execution_time: float = 0.0) -> ModelResponse:
    """The safe default used when a model's output cannot be recovered."""
    return ModelResponse(
        model=model,
        vulnerabilities=[],
        recommendations=[],
        quality_metrics=QualityMetrics(code_quality_score=50.0, maintainability_index=50.0, test_coverage_estimate=0.0),
        confidence=UNPARSEABLE_CONFIDENCE,
        execution_time=execution_time,
    )


def validate_response(data: Any, model: str, execution_time: float = 0.0) -> ModelResponse:
    """Validates a decoded object against the response schema, repairing fields."""
    try:
        schema = AIResponseSchema.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Response from {model} failed schema validation: {e.error_count()} error(s)")
        return empty_response(model, execution_time)

    return ModelResponse(
        model=model,
        vulnerabilities=[
            AIVulnerability(
                type=v.type,
                severity=v.severity,
                description=v.description,
                location=CodeLocation(
                    file=v.location.file,
                    line=v.location.line,
                    column=v.location.column,
                    length=v.location.length,
                ),
                confidence=v.confidence,
            )
            for v in schema.vulnerabilities
        ],
        recommendations=[
            SecurityRecommendation(
                category=r.category,
                priority=r.priority,
                description=r.description,
                implementation_guide=r.implementation_guide,
            )
            for r in schema.recommendations
        ],
        quality_metrics=QualityMetrics(
            code_quality_score=schema.quality_metrics.code_quality_score,
            maintainability_index=schema.quality_metrics.maintainability_index,
            test_coverage_estimate=schema.quality_metrics.test_coverage_estimate,
        ),
        confidence=schema.confidence,
        execution_time=execution_time,
    )


def parse_model_response(text: str, model: str, execution_time: float = 0.0) -> ModelResponse:
    """Parses and validates raw model text into a ModelResponse.

    Args:
        text: Raw completion text.
        model: Model identifier recorded on the result.
        execution_time: Seconds the model call took.

    Returns:
        The validated response, or the empty low-confidence default when no
        JSON object could be recovered.
    """
    data = extract_json_object(text)
    if data is None:
        logger.warning(f"Could not extract JSON from {model} response ({len(text or '')} chars)")
        return empty_response(model, execution_time)
    return validate_response(data, model, execution_time)
