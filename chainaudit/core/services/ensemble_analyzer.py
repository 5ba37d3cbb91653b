"""AI ensemble analysis: ask several models, keep what they agree on.

Every configured model receives the same structured prompt concurrently.
Each answer is parsed and repaired independently; the successful answers
are then reduced to one opinion by consensus voting on vulnerabilities
and averaging of the numeric fields.
"""

import asyncio
import logging
import math
import time
from typing import Dict, List, Optional, Sequence, Tuple

from chainaudit.core.services.ai_response_parser import parse_model_response
from chainaudit.domain.models.ai import (
    AIVulnerability,
    ChatMessage,
    EnsembleMember,
    EnsembleResult,
    ModelResponse,
    QualityMetrics,
    SecurityRecommendation,
)
from chainaudit.domain.models.common import MessageRole
from chainaudit.infrastructure.resilience.api_retry import ApiRetryService

logger = logging.getLogger(__name__)

# A single model above this confidence surfaces a finding without consensus
HIGH_CONFIDENCE_OVERRIDE = 0.8
ALL_MODELS_FAILED = "All AI models failed to analyze the contract"

SYSTEM_PROMPT = (
    "You are an expert smart contract security auditor. "
    "You answer with a single valid JSON object and nothing else."
)

RESPONSE_FORMAT = """Required JSON structure:
{
  "vulnerabilities": [
    {
      "type": "reentrancy|overflow|access_control|gas_optimization|best_practice|security",
      "severity": "critical|high|medium|low|informational",
      "description": "Detailed description of the vulnerability",
      "location": {"file": "%(filename)s", "line": 1, "column": 1, "length": 10},
      "confidence": 0.95
    }
  ],
  "recommendations": [
    {
      "category": "Security",
      "priority": "high|medium|low",
      "description": "Recommendation description",
      "implementation_guide": "Step-by-step implementation guide"
    }
  ],
  "qualityMetrics": {
    "code_quality_score": 85,
    "maintainability_index": 75,
    "test_coverage_estimate": 60
  },
  "confidence": 0.88
}"""

VulnerabilityKey = Tuple[str, int, str]


class AIEnsembleAnalyzer:
    """Runs a contract past every configured model and combines the answers."""

    def __init__(
        self,
        members: Sequence[EnsembleMember],
        timeout: float = 120.0,
        max_tokens: int = 4000,
        temperature: float = 0.1,
        ensemble_threshold: float = 0.6,
        retry_services: Optional[Dict[str, ApiRetryService]] = None,
    ):
        """Initializes the ensemble.

        Args:
            members: Ordered models to consult, each with its provider client.
            timeout: Per-model budget in seconds.
            max_tokens: Completion token limit per model.
            temperature: Sampling temperature, kept low for stable answers.
            ensemble_threshold: Fraction of models that must agree on a finding.
            retry_services: Optional retry/rate-limit wrapper per provider name.
        """
        if not 0.0 <= ensemble_threshold <= 1.0:
            raise ValueError("ensemble_threshold must be between 0 and 1")
        self.members = list(members)
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.ensemble_threshold = ensemble_threshold
        self.retry_services = retry_services or {}
        logger.info(
            f"AIEnsembleAnalyzer initialized with {len(self.members)} model(s): "
            f"{[m.model_id for m in self.members]}, threshold={ensemble_threshold}"
        )

    @property
    def model_ids(self) -> List[str]:
        return [m.model_id for m in self.members]

    def required_agreement(self, model_count: int) -> int:
        """Number of models that must report a finding for it to pass on consensus."""
        # round() stops 5 * 0.6 == 3.0000000000000004 from ceiling to 4
        return max(1, math.ceil(round(model_count * self.ensemble_threshold, 9)))

    def build_prompt(
        self,
        source_code: str,
        contract_name: str,
        focus_areas: Optional[Sequence[str]] = None,
        platform: str = "ethereum",
        language: str = "solidity",
        filename: str = "contract.sol",
    ) -> str:
        areas = ", ".join(focus_areas) if focus_areas else "general-security, best-practices"
        return (
            f"Analyze the following {platform} smart contract written in {language} for security "
            f"vulnerabilities, gas optimizations and code quality issues.\n\n"
            f"Contract Name: {contract_name}\n"
            f"Focus Areas: {areas}\n\n"
            f"Contract Source Code:\n```{language}\n{source_code}\n```\n\n"
            "Focus on:\n"
            "1. Reentrancy vulnerabilities\n"
            "2. Integer overflow/underflow issues\n"
            "3. Access control problems\n"
            "4. Gas or resource optimization opportunities\n"
            "5. Best practice violations\n"
            "6. Logic errors and edge cases\n\n"
            "Provide specific line numbers and detailed explanations for each finding. "
            "Rate your overall confidence in the analysis (0-1).\n\n"
            + RESPONSE_FORMAT % {"filename": filename}
            + "\n\nIMPORTANT: respond with valid JSON only. Do not include any text before or after the JSON object."
        )

    async def analyze_contract(
        self,
        source_code: str,
        contract_name: str,
        focus_areas: Optional[Sequence[str]] = None,
        platform: str = "ethereum",
        language: str = "solidity",
        filename: str = "contract.sol",
    ) -> EnsembleResult:
        """Consults every model concurrently and combines the successful answers.

        Args:
            source_code: Contract source text.
            contract_name: Name shown to the models.
            focus_areas: Platform-specific concerns to emphasise.
            platform: Platform identifier used in the prompt.
            language: Source language used in the prompt.
            filename: Default file name the models should report locations in.

        Returns:
            An EnsembleResult; ``success`` is False only when every model failed
            at the transport level (or none is configured).
        """
        start_time = time.perf_counter()
        if not self.members:
            return EnsembleResult(success=False, error="No AI models configured")

        prompt = self.build_prompt(source_code, contract_name, focus_areas, platform, language, filename)
        messages: List[ChatMessage] = [
            {"role": MessageRole("system"), "content": SYSTEM_PROMPT},
            {"role": MessageRole("user"), "content": prompt},
        ]

        # Each model settles on its own; one failure does not cancel the others
        outcomes = await asyncio.gather(
            *(self._run_model(member, messages) for member in self.members),
            return_exceptions=True,
        )

        successes: List[ModelResponse] = []
        failed: List[str] = []
        for member, outcome in zip(self.members, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Model {member.model_id} failed: {type(outcome).__name__}: {outcome}")
                failed.append(member.model_id)
            else:
                successes.append(outcome)

        elapsed = time.perf_counter() - start_time
        if not successes:
            logger.error(f"{ALL_MODELS_FAILED} ({contract_name})")
            return EnsembleResult(success=False, failed_models=failed, error=ALL_MODELS_FAILED, execution_time=elapsed)

        combined = self.combine_responses(successes)
        logger.info(
            f"Ensemble analysis of {contract_name}: {len(successes)}/{len(self.members)} model(s) answered, "
            f"{len(combined.vulnerabilities)} finding(s) kept"
        )
        return EnsembleResult(
            success=True,
            result=combined,
            model_responses=successes,
            failed_models=failed,
            execution_time=elapsed,
        )

    async def _run_model(self, member: EnsembleMember, messages: List[ChatMessage]) -> ModelResponse:
        start_time = time.perf_counter()
        retry_service = self.retry_services.get(member.provider)
        if retry_service is not None:
            call = retry_service.execute_with_retry(
                member.client.send_messages,
                messages,
                provider_name=member.provider,
                model=member.model_id,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        else:
            call = member.client.send_messages(
                messages,
                model=member.model_id,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        response = await asyncio.wait_for(call, timeout=self.timeout)
        elapsed = time.perf_counter() - start_time
        return parse_model_response(response.content, member.model_id, elapsed)

    def combine_responses(self, responses: Sequence[ModelResponse]) -> ModelResponse:
        """Reduces several model responses to one.

        A single response is returned unchanged. Otherwise vulnerabilities are
        grouped by (type, line, severity); a group survives if enough models
        reported it or any member is highly confident, and is represented by
        its most confident member. Recommendations are de-duplicated, metrics
        and confidence averaged.
        """
        if not responses:
            raise ValueError("combine_responses needs at least one response")
        if len(responses) == 1:
            return responses[0]

        count = len(responses)
        return ModelResponse(
            model="ensemble",
            vulnerabilities=self._consensus_vulnerabilities(responses),
            recommendations=self._deduplicate_recommendations(
                [r for response in responses for r in response.recommendations]
            ),
            quality_metrics=QualityMetrics(
                code_quality_score=sum(r.quality_metrics.code_quality_score for r in responses) / count,
                maintainability_index=sum(r.quality_metrics.maintainability_index for r in responses) / count,
                test_coverage_estimate=sum(r.quality_metrics.test_coverage_estimate for r in responses) / count,
            ),
            confidence=sum(r.confidence for r in responses) / count,
            execution_time=max(r.execution_time for r in responses),
        )

    def _consensus_vulnerabilities(self, responses: Sequence[ModelResponse]) -> List[AIVulnerability]:
        required = self.required_agreement(len(responses))
        groups: Dict[VulnerabilityKey, List[AIVulnerability]] = {}
        for response in responses:
            for vulnerability in response.vulnerabilities:
                key = (vulnerability.type, vulnerability.location.line, vulnerability.severity)
                groups.setdefault(key, []).append(vulnerability)

        kept: List[AIVulnerability] = []
        for key, group in groups.items():
            confident = any(v.confidence > HIGH_CONFIDENCE_OVERRIDE for v in group)
            if len(group) >= required or confident:
                kept.append(max(group, key=lambda v: v.confidence))
            else:
                logger.debug(f"Dropping finding {key}: reported by {len(group)}/{required} required model(s)")
        return kept

    @staticmethod
    def _deduplicate_recommendations(recommendations: Sequence[SecurityRecommendation]) -> List[SecurityRecommendation]:
        seen = set()
        unique: List[SecurityRecommendation] = []
        for recommendation in recommendations:
            key = (recommendation.category, recommendation.description)
            if key not in seen:
                seen.add(key)
                unique.append(recommendation)
        return unique
