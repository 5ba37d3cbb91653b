"""Shared analysis pipeline for every platform analyzer.

``BaseBlockchainAnalyzer.analyze`` validates the input, runs the static
stage and the AI stage concurrently, and merges both into one result.
Subclasses provide the static stage and the health check; everything
that crosses the ``analyze`` boundary is an AnalysisResult, with tool
failures translated into a PlatformError attached to it.
"""

import abc
import asyncio
import contextlib
import logging
import shutil
import tempfile
import time
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from chainaudit.core.services.ensemble_analyzer import AIEnsembleAnalyzer
from chainaudit.domain.interfaces.analyzer import BlockchainAnalyzer
from chainaudit.domain.interfaces.tool_invoker import ToolInvoker
from chainaudit.domain.models.ai import AIVulnerability
from chainaudit.domain.models.common import (
    DEFAULT_ANALYSIS_TIMEOUT_S,
    DEFAULT_HEALTH_CHECK_TIMEOUT_S,
    DEFAULT_MAX_CONTRACT_SIZE,
)
from chainaudit.domain.models.contract import (
    AnalysisResult,
    CodeLocation,
    ContractInput,
    InstallationCheckResult,
    PlatformVulnerability,
    Severity,
    ValidationResult,
    VulnerabilitySource,
)
from chainaudit.domain.models.errors import PlatformError, PlatformErrorCode, translate_exception
from chainaudit.infrastructure.analyzers.findings import create_vulnerability, deduplicate_vulnerabilities

logger = logging.getLogger(__name__)

AI_UNAVAILABLE_WARNING = "AI analysis unavailable - continuing with static analysis only"
EMPTY_CODE_ERROR = "Contract code cannot be empty"

_AI_RECOMMENDATIONS = {
    "reentrancy": "Apply the checks-effects-interactions pattern or a reentrancy guard.",
    "overflow": "Use checked arithmetic and validate numeric bounds.",
    "access_control": "Restrict the function to authorised callers and verify signers/owners.",
    "gas_optimization": "Reduce storage writes and redundant computation.",
    "best_practice": "Follow the platform's recommended coding guidelines.",
    "security": "Review the flagged code path and add explicit validation.",
}


class BaseBlockchainAnalyzer(BlockchainAnalyzer):
    """Template for platform analyzers: validation, both stages, merging."""

    language = "solidity"

    def __init__(
        self,
        platform: str,
        tool_invoker: ToolInvoker,
        ai_ensemble: Optional[AIEnsembleAnalyzer] = None,
        timeout: float = DEFAULT_ANALYSIS_TIMEOUT_S,
        max_contract_size: int = DEFAULT_MAX_CONTRACT_SIZE,
        health_check_timeout: float = DEFAULT_HEALTH_CHECK_TIMEOUT_S,
        enable_ai: bool = True,
        focus_areas: Optional[Sequence[str]] = None,
    ):
        """Initializes the analyzer.

        Args:
            platform: Platform identifier this analyzer serves.
            tool_invoker: Runs the platform's external tools.
            ai_ensemble: Optional ensemble for the AI stage.
            timeout: Budget in seconds for each static tool invocation.
            max_contract_size: Largest accepted contract, in UTF-8 bytes.
            health_check_timeout: Budget in seconds for version queries.
            enable_ai: Runs the AI stage when an ensemble is present.
            focus_areas: Concerns highlighted in AI prompts.
        """
        self.platform = platform
        self.tool_invoker = tool_invoker
        self.ai_ensemble = ai_ensemble
        self.timeout = timeout
        self.max_contract_size = max_contract_size
        self.health_check_timeout = health_check_timeout
        self.enable_ai = enable_ai
        self.focus_areas = list(focus_areas or [])
        # AI stage result kept while the static stage is failing transiently
        self._retained_ai: Optional[Tuple[Tuple[Tuple[str, str], ...], AnalysisResult]] = None

    # --- Public operations ---

    async def analyze(self, contracts: List[ContractInput]) -> AnalysisResult:
        start_time = time.perf_counter()
        if not contracts:
            return AnalysisResult(success=False, errors=["No contracts provided for analysis"])

        logger.info(f"[{self.platform}] Analyzing {len(contracts)} contract(s): {[c.filename for c in contracts]}")

        errors: List[str] = []
        warnings: List[str] = []
        for contract in contracts:
            validation = self.validate_input(contract)
            errors.extend(f"{contract.filename}: {e}" for e in validation.errors)
            warnings.extend(f"{contract.filename}: {w}" for w in validation.warnings)
        if errors:
            logger.warning(f"[{self.platform}] Input validation failed: {errors}")
            return AnalysisResult(
                success=False,
                errors=errors,
                warnings=warnings,
                execution_time=time.perf_counter() - start_time,
            )

        key = tuple((c.filename, c.code) for c in contracts)
        retained = self._take_retained_ai(key)
        if retained is not None:
            logger.info(f"[{self.platform}] Reusing AI result from the previous attempt; rerunning static analysis only")
            static_result, ai_result = await self._run_static_stage(contracts), retained
        else:
            static_result, ai_result = await asyncio.gather(
                self._run_static_stage(contracts),
                self._run_ai_stage(contracts),
            )
        error = static_result.platform_error
        if error is not None and error.retryable and ai_result is not None and ai_result.success:
            self._retained_ai = (key, ai_result)
        merged = self.merge_results(static_result, ai_result)
        merged.warnings = warnings + merged.warnings
        logger.info(
            f"[{self.platform}] Analysis finished: success={merged.success}, "
            f"{len(merged.vulnerabilities)} finding(s), {len(merged.errors)} error(s)"
        )
        return merged

    async def validate_contract(self, contract: ContractInput) -> ValidationResult:
        result = self.validate_input(contract)
        if not contract.code.strip():
            return result
        try:
            await self.check_syntax(contract, result)
        except PlatformError as e:
            result.warnings.append(f"Syntax probe unavailable: {e.message}")
        except Exception as e:
            logger.warning(f"[{self.platform}] Syntax probe raised {type(e).__name__}: {e}")
            result.warnings.append(f"Syntax probe failed: {e}")
        result.is_valid = not result.errors
        return result

    @abc.abstractmethod
    async def check_health(self) -> InstallationCheckResult:
        pass

    # --- Hooks for subclasses ---

    @abc.abstractmethod
    async def run_static_analysis(self, contracts: List[ContractInput]) -> AnalysisResult:
        """Runs the platform's static tooling.

        Raises:
            PlatformError: When the tooling is missing, times out or fails.
        """
        pass

    async def check_syntax(self, contract: ContractInput, result: ValidationResult) -> None:
        """Adds platform structure checks and probe findings to ``result``."""
        return None

    # --- Pipeline pieces ---

    def validate_input(self, contract: ContractInput) -> ValidationResult:
        """Cheap local checks: non-empty code, size limit and platform match."""
        result = ValidationResult()
        if not contract.code or not contract.code.strip():
            result.errors.append(EMPTY_CODE_ERROR)
        if contract.size_bytes > self.max_contract_size:
            result.errors.append(f"Contract size exceeds maximum limit of {self.max_contract_size} bytes")
        if contract.platform != self.platform:
            result.warnings.append(
                f"Contract platform '{contract.platform}' does not match analyzer platform '{self.platform}'"
            )
        result.is_valid = not result.errors
        return result

    def _take_retained_ai(self, key) -> Optional[AnalysisResult]:
        """Hands out the kept AI result once, and only for the same contracts."""
        retained, self._retained_ai = self._retained_ai, None
        if retained is None or retained[0] != key:
            return None
        return retained[1]

    async def _run_static_stage(self, contracts: List[ContractInput]) -> AnalysisResult:
        start_time = time.perf_counter()
        try:
            result = await self.run_static_analysis(contracts)
        except Exception as e:
            error = translate_exception(e, self.platform)
            if not isinstance(e, PlatformError):
                logger.error(f"[{self.platform}] Unexpected static analysis error: {e}", exc_info=True)
            else:
                logger.warning(f"[{self.platform}] Static analysis failed: {error}")
            return AnalysisResult(
                success=False,
                errors=[error.message],
                execution_time=time.perf_counter() - start_time,
                platform_error=error,
            )
        if not result.execution_time:
            result.execution_time = time.perf_counter() - start_time
        return result

    async def _run_ai_stage(self, contracts: List[ContractInput]) -> Optional[AnalysisResult]:
        if not self.enable_ai or self.ai_ensemble is None:
            return None
        start_time = time.perf_counter()
        try:
            return await self.run_ai_analysis(contracts)
        except Exception as e:
            logger.warning(f"[{self.platform}] AI analysis failed: {type(e).__name__}: {e}")
            return AnalysisResult(
                success=False,
                errors=[f"AI analysis failed: {e}"],
                execution_time=time.perf_counter() - start_time,
            )

    async def run_ai_analysis(
        self,
        contracts: List[ContractInput],
        focus_areas: Optional[Sequence[str]] = None,
    ) -> AnalysisResult:
        """Runs the AI ensemble over each contract and converts its findings."""
        if self.ai_ensemble is None:
            raise PlatformError(PlatformErrorCode.ANALYZER_UNAVAILABLE, "No AI ensemble configured", self.platform)

        start_time = time.perf_counter()
        vulnerabilities: List[PlatformVulnerability] = []
        errors: List[str] = []
        succeeded = 0
        for contract in contracts:
            outcome = await self.ai_ensemble.analyze_contract(
                contract.code,
                contract.contract_name,
                focus_areas=focus_areas or self.focus_areas,
                platform=self.platform,
                language=contract.language or self.language,
                filename=contract.filename,
            )
            if outcome.success and outcome.result is not None:
                succeeded += 1
                vulnerabilities.extend(
                    self._convert_ai_vulnerability(v, contract) for v in outcome.result.vulnerabilities
                )
            else:
                errors.append(outcome.error or f"AI analysis failed for {contract.filename}")

        return AnalysisResult(
            success=succeeded > 0,
            vulnerabilities=deduplicate_vulnerabilities(vulnerabilities),
            errors=errors,
            execution_time=time.perf_counter() - start_time,
            platform_specific={
                "models": self.ai_ensemble.model_ids,
                "contracts_analyzed": succeeded,
            },
        )

    def _convert_ai_vulnerability(self, vulnerability: AIVulnerability, contract: ContractInput) -> PlatformVulnerability:
        description = vulnerability.description or f"{vulnerability.type} issue reported by AI analysis"
        title = description if len(description) <= 100 else description[:100] + "..."
        return create_vulnerability(
            platform=self.platform,
            vuln_type=vulnerability.type,
            severity=Severity.parse(vulnerability.severity, Severity.LOW),
            title=title,
            description=description,
            location=CodeLocation(
                file=contract.filename,
                line=vulnerability.location.line,
                column=vulnerability.location.column,
                length=vulnerability.location.length,
            ),
            recommendation=_AI_RECOMMENDATIONS.get(vulnerability.type, _AI_RECOMMENDATIONS["security"]),
            confidence=vulnerability.confidence,
            source=VulnerabilitySource.AI,
        )

    def merge_results(self, static_result: AnalysisResult, ai_result: Optional[AnalysisResult]) -> AnalysisResult:
        """Combines the static and AI stages.

        Static findings come first, so a static finding wins any de-duplication
        collision. AI problems are reported as warnings and never change
        ``success``, which is the static stage's outcome.
        """
        if ai_result is None:
            static_result.vulnerabilities = deduplicate_vulnerabilities(static_result.vulnerabilities)
            return static_result

        warnings = list(static_result.warnings) + list(ai_result.warnings)
        warnings.extend(f"AI: {e}" for e in ai_result.errors)
        if not ai_result.success:
            warnings.append(AI_UNAVAILABLE_WARNING)

        platform_specific = dict(static_result.platform_specific or {})
        if ai_result.platform_specific:
            platform_specific["ai_analysis"] = ai_result.platform_specific

        return AnalysisResult(
            success=static_result.success,
            vulnerabilities=deduplicate_vulnerabilities(static_result.vulnerabilities + ai_result.vulnerabilities),
            errors=list(static_result.errors),
            warnings=warnings,
            execution_time=static_result.execution_time + ai_result.execution_time,
            platform_specific=platform_specific or None,
            platform_error=static_result.platform_error,
        )

    # --- Utilities ---

    @property
    def scratch_root(self) -> Path:
        return Path(tempfile.gettempdir()) / "chainaudit" / self.platform

    @contextlib.contextmanager
    def scratch_directory(self) -> Iterator[Path]:
        """Creates a throwaway working directory that is always removed."""
        self.scratch_root.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix="analysis_", dir=self.scratch_root))
        try:
            yield path
        finally:
            shutil.rmtree(path, ignore_errors=True)
            logger.debug(f"[{self.platform}] Removed scratch directory {path}")
