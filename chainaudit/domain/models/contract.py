"""Domain models for contracts, findings and analysis results.

These are the shapes handed across the core boundary: a caller submits
``ContractInput`` objects and receives one ``AnalysisResult`` per call.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import PlatformError


class Severity(str, enum.Enum):
    """Ordered severity scale: informational < low < medium < high < critical."""
    INFORMATIONAL = "informational"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    @classmethod
    def parse(cls, value: Any, default: "Severity") -> "Severity":
        """Returns the member named by ``value`` or ``default`` when unrecognised."""
        if isinstance(value, Severity):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return default


_SEVERITY_ORDER = [
    Severity.INFORMATIONAL,
    Severity.LOW,
    Severity.MEDIUM,
    Severity.HIGH,
    Severity.CRITICAL,
]


class VulnerabilitySource(str, enum.Enum):
    STATIC = "static"
    AI = "ai"
    COMBINED = "combined"


@dataclass(frozen=True)
class ContractInput:
    """A contract submitted for analysis. Immutable once created."""
    filename: str
    code: str
    platform: str
    language: Optional[str] = None
    dependencies: Tuple["ContractInput", ...] = ()

    @property
    def size_bytes(self) -> int:
        return len(self.code.encode("utf-8"))

    @property
    def contract_name(self) -> str:
        """Base filename without directory or extension."""
        base = self.filename.replace("\\", "/").rsplit("/", 1)[-1]
        stem = base.rsplit(".", 1)[0] if "." in base else base
        return stem or "Contract"


@dataclass
class CodeLocation:
    file: str
    line: int = 1
    column: int = 1
    length: Optional[int] = None


@dataclass
class PlatformVulnerability:
    """A single finding produced by a static tool or the AI ensemble."""
    type: str
    severity: Severity
    title: str
    description: str
    location: CodeLocation
    recommendation: str
    confidence: float
    source: VulnerabilitySource
    platform: str
    platform_specific_data: Optional[Dict[str, Any]] = None
    id: str = ""

    @property
    def dedup_key(self) -> Tuple[str, str, int, int]:
        return (self.type, self.location.file, self.location.line, self.location.column)


@dataclass
class ValidationResult:
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class AnalysisResult:
    """Outcome of one ``analyze`` call.

    ``execution_time`` is in seconds. ``platform_error`` is set when the
    result represents a failure translated from a PlatformError, so the
    fallback layer can decide whether to retry.
    """
    success: bool
    vulnerabilities: List[PlatformVulnerability] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    execution_time: float = 0.0
    platform_specific: Optional[Dict[str, Any]] = None
    platform_error: Optional[PlatformError] = None


@dataclass
class InstallationCheckResult:
    installed: bool
    version: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ToolResult:
    """Captured output of one external tool invocation."""
    stdout: str
    stderr: str
    exit_code: int
    duration: float = 0.0
