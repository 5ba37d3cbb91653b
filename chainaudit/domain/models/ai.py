"""Domain models related to AI interactions.

Includes provider responses, the per-model structured opinion parsed from
them and the combined ensemble outcome.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, TypedDict

from .common import MessageRole, TokenUsage
from .contract import CodeLocation

if TYPE_CHECKING:
    from ..interfaces.ai_model import AIModel

# --- AI Interaction Structures ---

class ChatMessage(TypedDict):
    """Represents a message structure expected by chat completion APIs."""
    role: MessageRole
    content: str

@dataclass
class StructuredAIResponse:
    """Structured response from an AI model, including metadata."""
    content: str
    token_usage: Optional[TokenUsage] = None
    model_name: Optional[str] = None # Which model generated the response
    latency_ms: Optional[float] = None # Time taken for the API call

# --- Vulnerability opinions ---

AI_VULNERABILITY_TYPES = (
    "reentrancy",
    "overflow",
    "access_control",
    "gas_optimization",
    "best_practice",
    "security",
)
RECOMMENDATION_PRIORITIES = ("high", "medium", "low")

@dataclass
class AIVulnerability:
    type: str
    severity: str
    description: str
    location: CodeLocation
    confidence: float

@dataclass
class SecurityRecommendation:
    category: str
    priority: str
    description: str
    implementation_guide: str = ""

@dataclass
class QualityMetrics:
    """Code quality estimates, each on a 0-100 scale."""
    code_quality_score: float = 50.0
    maintainability_index: float = 50.0
    test_coverage_estimate: float = 0.0

@dataclass
class ModelResponse:
    """One model's validated opinion about a contract."""
    model: str
    vulnerabilities: List[AIVulnerability] = field(default_factory=list)
    recommendations: List[SecurityRecommendation] = field(default_factory=list)
    quality_metrics: QualityMetrics = field(default_factory=QualityMetrics)
    confidence: float = 0.1
    execution_time: float = 0.0

@dataclass
class EnsembleResult:
    """Result of asking every configured model and combining the answers."""
    success: bool
    result: Optional[ModelResponse] = None
    model_responses: List[ModelResponse] = field(default_factory=list)
    failed_models: List[str] = field(default_factory=list)
    error: Optional[str] = None
    execution_time: float = 0.0

@dataclass
class EnsembleMember:
    """A configured model and the provider client used to reach it."""
    model_id: str
    client: "AIModel"
    provider: str = "openrouter"
