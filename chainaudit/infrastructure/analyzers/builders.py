"""Constructors for every implemented platform analyzer.

The factory receives this table, so it never imports a concrete
analyzer class itself.
"""

from typing import Dict, Optional

from chainaudit.core.services.analyzer_factory import AnalyzerBuilder
from chainaudit.core.services.ensemble_analyzer import AIEnsembleAnalyzer
from chainaudit.domain.interfaces.tool_invoker import ToolInvoker
from chainaudit.domain.models.common import (
    DEFAULT_ANALYSIS_TIMEOUT_S,
    DEFAULT_HEALTH_CHECK_TIMEOUT_S,
    DEFAULT_MAX_CONTRACT_SIZE,
)
from chainaudit.domain.models.platform import PlatformDefinition
from chainaudit.infrastructure.analyzers.aptos import AptosAnalyzer
from chainaudit.infrastructure.analyzers.cardano import CardanoAnalyzer
from chainaudit.infrastructure.analyzers.ethereum import EVM_PLATFORMS, EthereumAnalyzer
from chainaudit.infrastructure.analyzers.solana import SolanaAnalyzer
from chainaudit.infrastructure.analyzers.sui import SuiAnalyzer


def default_analyzer_builders(
    tool_invoker: ToolInvoker,
    ai_ensemble: Optional[AIEnsembleAnalyzer] = None,
    timeout: float = DEFAULT_ANALYSIS_TIMEOUT_S,
    max_contract_size: int = DEFAULT_MAX_CONTRACT_SIZE,
    health_check_timeout: float = DEFAULT_HEALTH_CHECK_TIMEOUT_S,
    enable_ai: bool = True,
) -> Dict[str, AnalyzerBuilder]:
    """Maps platform ids to callables that build their analyzer."""

    def options(platform: PlatformDefinition) -> dict:
        return {
            "platform": platform.id,
            "ai_ensemble": ai_ensemble,
            "timeout": timeout,
            "max_contract_size": max_contract_size,
            "health_check_timeout": health_check_timeout,
            "enable_ai": enable_ai,
            "focus_areas": platform.focus_areas,
        }

    builders: Dict[str, AnalyzerBuilder] = {
        platform_id: (lambda p: EthereumAnalyzer(tool_invoker, **options(p)))
        for platform_id in EVM_PLATFORMS
    }
    builders["cardano"] = lambda p: CardanoAnalyzer(tool_invoker, **options(p))
    builders["solana"] = lambda p: SolanaAnalyzer(tool_invoker, **options(p))
    builders["aptos"] = lambda p: AptosAnalyzer(tool_invoker, **options(p))
    builders["sui"] = lambda p: SuiAnalyzer(tool_invoker, **options(p))
    return builders
