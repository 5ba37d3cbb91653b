"""
Retry and graceful-degradation wrapper around platform analyzers.

The primary analysis is retried while its PlatformError is transient.
Once retries are exhausted (or the error is terminal) the service degrades
step by step: AI-only analysis, then local validation, then a minimal
result. Callers always get a well-formed result back.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from chainaudit.core.services.platform_registry import BlockchainRegistry
from chainaudit.domain.events.analysis_events import (
    AnalysisAttemptFailed,
    AnalysisCompleted,
    DomainEvent,
    FallbackTriggered,
    RetryScheduled,
)
from chainaudit.domain.interfaces.analyzer import BlockchainAnalyzer
from chainaudit.domain.models.contract import AnalysisResult, ContractInput
from chainaudit.domain.models.errors import PlatformError, translate_exception

logger = logging.getLogger(__name__)

STRATEGY_NONE = "none"
STRATEGY_AI_ONLY = "ai-only"
STRATEGY_BASIC_VALIDATION = "basic-validation"
STRATEGY_MINIMAL = "minimal"

DEGRADATION_LEVELS = {
    STRATEGY_NONE: "none",
    STRATEGY_AI_ONLY: "partial",
    STRATEGY_BASIC_VALIDATION: "significant",
    STRATEGY_MINIMAL: "minimal",
}

AVAILABLE_FEATURES = {
    STRATEGY_NONE: ["Static Analysis", "AI Analysis", "Vulnerability Detection", "Best Practices"],
    STRATEGY_AI_ONLY: ["AI Analysis", "Pattern Recognition", "Basic Vulnerability Detection"],
    STRATEGY_BASIC_VALIDATION: ["Syntax Validation", "Structure Validation", "Basic Error Detection"],
    STRATEGY_MINIMAL: ["Basic Contract Information", "File Structure Analysis"],
}

UNAVAILABLE_FEATURES = {
    STRATEGY_NONE: [],
    STRATEGY_AI_ONLY: ["Static Analysis Tools", "Platform-Specific Analyzers"],
    STRATEGY_BASIC_VALIDATION: ["Static Analysis", "AI Analysis", "Advanced Vulnerability Detection"],
    STRATEGY_MINIMAL: ["Vulnerability Detection", "Security Analysis", "Code Quality Assessment"],
}

AI_FALLBACK_WARNING = "Analysis performed using AI-only fallback"
BASIC_VALIDATION_WARNING = "Analysis performed using basic validation only"
MINIMAL_WARNINGS = [
    "Analysis completed with minimal functionality",
    "Full security analysis unavailable",
    "Manual review recommended",
]
MINIMAL_RECOMMENDATIONS = [
    "Resolve analyzer installation issues",
    "Perform manual security review",
    "Use alternative analysis tools",
]


@dataclass
class FallbackConfig:
    max_retry_attempts: int = 3
    retry_delay_s: float = 1.0
    enable_ai_fallback: bool = True
    enable_basic_validation: bool = True

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> "FallbackConfig":
        return cls(**{k: v for k, v in settings.items() if k in cls.__dataclass_fields__})


@dataclass
class AnalysisAttempt:
    """One try at producing a result with a given strategy."""
    attempt: int
    strategy: str
    success: bool
    execution_time: float
    error: Optional[PlatformError] = None
    fallback_reason: Optional[str] = None


@dataclass
class FallbackAnalysisResult(AnalysisResult):
    """AnalysisResult annotated with how it was obtained."""
    fallback_strategy: str = STRATEGY_NONE
    attempts: List[AnalysisAttempt] = field(default_factory=list)
    original_error: Optional[PlatformError] = None
    degradation_level: str = "none"
    available_features: List[str] = field(default_factory=list)
    unavailable_features: List[str] = field(default_factory=list)


class AnalyzerFallbackService:
    """The single place deciding whether an analysis error is retried or degraded."""

    def __init__(
        self,
        registry: Optional[BlockchainRegistry] = None,
        config: Optional[FallbackConfig] = None,
        event_listener: Optional[Callable[[DomainEvent], None]] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        """Initializes the service.

        Args:
            registry: Supplies per-platform focus areas for AI-only fallback.
            config: Retry and degradation switches.
            event_listener: Receives every domain event the service emits.
            sleep: Awaitable used between retries.
        """
        self.registry = registry
        self.config = config or FallbackConfig()
        self.event_listener = event_listener
        self._sleep = sleep

    def _dispatch(self, event: DomainEvent) -> None:
        logger.debug(f"EVENT: {event}")
        if self.event_listener is not None:
            self.event_listener(event)

    async def analyze_with_fallback(
        self,
        analyzer: BlockchainAnalyzer,
        contracts: List[ContractInput],
        config: Optional[FallbackConfig] = None,
    ) -> FallbackAnalysisResult:
        config = config or self.config
        platform = analyzer.platform
        start_time = time.perf_counter()
        attempts: List[AnalysisAttempt] = []
        logger.info(f"[{platform}] Starting analysis with fallback support for {len(contracts)} contract(s)")

        result, error = await self._attempt_primary(analyzer, contracts, config, attempts)
        if error is None:
            return self._finish(result, STRATEGY_NONE, attempts, start_time, platform)

        if config.enable_ai_fallback:
            self._transition(platform, STRATEGY_NONE, STRATEGY_AI_ONLY, "Primary analysis failed", error)
            ai_result = await self._attempt_ai_only(analyzer, contracts, error, attempts)
            if ai_result is not None:
                return self._finish(ai_result, STRATEGY_AI_ONLY, attempts, start_time, platform, error)

        if config.enable_basic_validation:
            source = STRATEGY_AI_ONLY if config.enable_ai_fallback else STRATEGY_NONE
            self._transition(platform, source, STRATEGY_BASIC_VALIDATION, "Full analysis unavailable", error)
            validation_result = await self._attempt_basic_validation(analyzer, contracts, error, attempts)
            if validation_result is not None:
                return self._finish(validation_result, STRATEGY_BASIC_VALIDATION, attempts, start_time, platform, error)

        self._transition(platform, attempts[-1].strategy, STRATEGY_MINIMAL, "All other analysis methods failed", error)
        minimal = self._minimal_result(contracts, error, attempts)
        return self._finish(minimal, STRATEGY_MINIMAL, attempts, start_time, platform, error)

    async def _attempt_primary(
        self,
        analyzer: BlockchainAnalyzer,
        contracts: List[ContractInput],
        config: FallbackConfig,
        attempts: List[AnalysisAttempt],
    ):
        """Runs ``analyze`` with bounded retries.

        Returns (result, None) when the analyzer produced a result without a
        PlatformError, including input-validation failures, which are final.
        Returns (last_result, error) when retries are exhausted or the error
        is terminal.
        """
        platform = analyzer.platform
        max_attempts = max(1, config.max_retry_attempts)
        result: Optional[AnalysisResult] = None
        error: Optional[PlatformError] = None

        for attempt in range(1, max_attempts + 1):
            attempt_start = time.perf_counter()
            try:
                result = await analyzer.analyze(contracts)
                error = result.platform_error
            except Exception as e:
                # analyzers are expected to report, not raise; translate anyway
                error = translate_exception(e, platform)
                logger.error(f"[{platform}] Analyzer raised {type(e).__name__}: {e}", exc_info=True)
                result = None

            elapsed = time.perf_counter() - attempt_start
            if error is None:
                attempts.append(AnalysisAttempt(attempt, STRATEGY_NONE, result.success, elapsed))
                return result, None

            attempts.append(AnalysisAttempt(attempt, STRATEGY_NONE, False, elapsed, error, "Primary analysis failed"))
            logger.warning(f"[{platform}] Attempt {attempt}/{max_attempts} failed: {error}")
            self._dispatch(AnalysisAttemptFailed(
                platform=platform,
                strategy=STRATEGY_NONE,
                attempt_number=attempt,
                error_code=error.code.value,
                error_message=error.message,
            ))

            if not error.retryable:
                logger.info(f"[{platform}] {error.code.value} is not retryable; skipping further attempts")
                break
            if attempt == max_attempts:
                logger.warning(f"[{platform}] Retries exhausted after {attempt} attempt(s)")
                break

            delay = config.retry_delay_s * 2 ** (attempt - 1)
            self._dispatch(RetryScheduled(
                platform=platform,
                attempt_number=attempt + 1,
                delay_seconds=delay,
                error_code=error.code.value,
            ))
            logger.info(f"[{platform}] Retrying in {delay:.2f}s (attempt {attempt + 1}/{max_attempts})")
            await self._sleep(delay)

        return result, error

    async def _attempt_ai_only(
        self,
        analyzer: BlockchainAnalyzer,
        contracts: List[ContractInput],
        original_error: PlatformError,
        attempts: List[AnalysisAttempt],
    ) -> Optional[AnalysisResult]:
        platform = analyzer.platform
        attempt_start = time.perf_counter()
        focus_areas = self.registry.focus_areas(platform) if self.registry else None
        logger.info(f"[{platform}] Attempting AI-only fallback")
        try:
            ai_result = await analyzer.run_ai_analysis(contracts, focus_areas=focus_areas)
        except Exception as e:
            error = translate_exception(e, platform)
            logger.warning(f"[{platform}] AI-only fallback failed: {error}")
            attempts.append(AnalysisAttempt(
                len(attempts) + 1, STRATEGY_AI_ONLY, False, time.perf_counter() - attempt_start, error,
                "AI analysis unavailable",
            ))
            return None

        elapsed = time.perf_counter() - attempt_start
        if not ai_result.success:
            logger.warning(f"[{platform}] AI-only fallback produced no result: {ai_result.errors}")
            attempts.append(AnalysisAttempt(
                len(attempts) + 1, STRATEGY_AI_ONLY, False, elapsed, fallback_reason="; ".join(ai_result.errors),
            ))
            return None

        attempts.append(AnalysisAttempt(
            len(attempts) + 1, STRATEGY_AI_ONLY, True, elapsed, fallback_reason="Static analysis tools unavailable",
        ))
        platform_specific = dict(ai_result.platform_specific or {})
        platform_specific.update({
            "analysis_method": "AI-only analysis",
            "original_error": original_error.message,
            "limitations": [
                "Static analysis tools unavailable",
                "Results based on AI pattern recognition only",
                "May miss tool-specific vulnerabilities",
            ],
        })
        return AnalysisResult(
            success=True,
            vulnerabilities=ai_result.vulnerabilities,
            errors=list(ai_result.errors),
            warnings=[AI_FALLBACK_WARNING] + list(ai_result.warnings),
            execution_time=elapsed,
            platform_specific=platform_specific,
        )

    async def _attempt_basic_validation(
        self,
        analyzer: BlockchainAnalyzer,
        contracts: List[ContractInput],
        original_error: PlatformError,
        attempts: List[AnalysisAttempt],
    ) -> Optional[AnalysisResult]:
        platform = analyzer.platform
        attempt_start = time.perf_counter()
        logger.info(f"[{platform}] Attempting basic validation fallback")
        errors = [original_error.message]
        warnings = [BASIC_VALIDATION_WARNING]
        try:
            for contract in contracts:
                validation = await analyzer.validate_contract(contract)
                errors.extend(f"{contract.filename}: {e}" for e in validation.errors)
                warnings.extend(f"{contract.filename}: {w}" for w in validation.warnings)
        except Exception as e:
            error = translate_exception(e, platform)
            logger.warning(f"[{platform}] Basic validation fallback failed: {error}")
            attempts.append(AnalysisAttempt(
                len(attempts) + 1, STRATEGY_BASIC_VALIDATION, False, time.perf_counter() - attempt_start, error,
                "Basic validation failed",
            ))
            return None

        elapsed = time.perf_counter() - attempt_start
        attempts.append(AnalysisAttempt(
            len(attempts) + 1, STRATEGY_BASIC_VALIDATION, True, elapsed, fallback_reason="Full analysis unavailable",
        ))
        return AnalysisResult(
            success=False,
            errors=errors,
            warnings=warnings,
            execution_time=elapsed,
            platform_specific={
                "analysis_method": "Basic contract validation",
                "original_error": original_error.message,
                "limitations": [
                    "No static analysis performed",
                    "No AI-based vulnerability detection",
                    "Limited to syntax and structure validation",
                ],
            },
        )

    def _minimal_result(
        self,
        contracts: List[ContractInput],
        original_error: PlatformError,
        attempts: List[AnalysisAttempt],
    ) -> AnalysisResult:
        attempts.append(AnalysisAttempt(
            len(attempts) + 1, STRATEGY_MINIMAL, True, 0.0, fallback_reason="All other analysis methods failed",
        ))
        return AnalysisResult(
            success=False,
            errors=[original_error.message],
            warnings=list(MINIMAL_WARNINGS),
            platform_specific={
                "analysis_method": "Minimal contract information extraction",
                "contracts": [
                    {"filename": c.filename, "size_bytes": c.size_bytes, "lines": len(c.code.splitlines())}
                    for c in contracts
                ],
                "limitations": [
                    "No vulnerability detection performed",
                    "No static analysis available",
                    "No AI analysis available",
                    "Manual security review required",
                ],
                "recommendations": list(MINIMAL_RECOMMENDATIONS),
            },
        )

    def _transition(
        self,
        platform: str,
        from_strategy: str,
        to_strategy: str,
        reason: str,
        error: PlatformError,
    ) -> None:
        logger.warning(f"[{platform}] Falling back {from_strategy} -> {to_strategy}: {reason} ({error})")
        self._dispatch(FallbackTriggered(
            platform=platform,
            from_strategy=from_strategy,
            to_strategy=to_strategy,
            reason=reason,
            error_code=error.code.value,
        ))

    def _finish(
        self,
        result: AnalysisResult,
        strategy: str,
        attempts: List[AnalysisAttempt],
        start_time: float,
        platform: str,
        original_error: Optional[PlatformError] = None,
    ) -> FallbackAnalysisResult:
        execution_time = time.perf_counter() - start_time
        degradation = DEGRADATION_LEVELS[strategy]
        platform_specific = dict(result.platform_specific or {})
        if strategy != STRATEGY_NONE:
            platform_specific["fallback_analysis"] = {
                "strategy": strategy,
                "degradation_level": degradation,
                "total_attempts": len(attempts),
                "original_error": original_error.message if original_error else None,
            }

        final = FallbackAnalysisResult(
            success=result.success,
            vulnerabilities=list(result.vulnerabilities),
            errors=list(result.errors),
            warnings=list(result.warnings),
            execution_time=execution_time,
            platform_specific=platform_specific or None,
            platform_error=result.platform_error if strategy == STRATEGY_NONE else original_error,
            fallback_strategy=strategy,
            attempts=attempts,
            original_error=original_error,
            degradation_level=degradation,
            available_features=list(AVAILABLE_FEATURES[strategy]),
            unavailable_features=list(UNAVAILABLE_FEATURES[strategy]),
        )
        self._dispatch(AnalysisCompleted(
            platform=platform,
            strategy=strategy,
            degradation_level=degradation,
            success=final.success,
            execution_time=execution_time,
        ))
        logger.info(
            f"[{platform}] Analysis finished with strategy '{strategy}' "
            f"(degradation: {degradation}, success: {final.success}, attempts: {len(attempts)})"
        )
        return final
