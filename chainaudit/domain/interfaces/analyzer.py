"""Interface implemented by every blockchain platform analyzer."""

import abc
from typing import List, Optional, Sequence

from ..models.contract import (
    AnalysisResult,
    ContractInput,
    InstallationCheckResult,
    ValidationResult,
)


class BlockchainAnalyzer(abc.ABC):
    """Capability interface: analyze, validate_contract and check_health."""

    platform: str

    @abc.abstractmethod
    async def analyze(self, contracts: List[ContractInput]) -> AnalysisResult:
        """Runs static and AI analysis over the contracts and merges the findings.

        Never raises for tool or provider failures; those are reported inside
        the returned AnalysisResult.
        """
        pass

    @abc.abstractmethod
    async def validate_contract(self, contract: ContractInput) -> ValidationResult:
        """Performs cheap local checks plus an optional syntax probe."""
        pass

    @abc.abstractmethod
    async def check_health(self) -> InstallationCheckResult:
        """Reports whether the platform's tools are installed and their versions."""
        pass

    @abc.abstractmethod
    async def run_ai_analysis(
        self,
        contracts: List[ContractInput],
        focus_areas: Optional[Sequence[str]] = None,
    ) -> AnalysisResult:
        """Runs only the AI stage; used as a fallback when static tooling fails.

        Raises:
            PlatformError: When no AI ensemble is configured.
        """
        pass
