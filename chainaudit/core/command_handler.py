"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py), reads contract
files, resolves the platform and delegates to the analyzer factory, the
fallback service and the health service. Results go to the UserInterface.
"""

import logging
from pathlib import Path
from typing import List, Optional

from chainaudit.core.services.analyzer_factory import AnalyzerFactory
from chainaudit.core.services.fallback_service import AnalyzerFallbackService
from chainaudit.core.services.health_service import HealthService
from chainaudit.core.services.platform_registry import BlockchainRegistry
from chainaudit.domain.interfaces.user_interface import UserInterface
from chainaudit.domain.models.contract import ContractInput

logger = logging.getLogger(__name__)


class CommandHandler:
    """Handles incoming commands and delegates to appropriate services."""

    def __init__(
        self,
        registry: BlockchainRegistry,
        factory: AnalyzerFactory,
        fallback_service: AnalyzerFallbackService,
        health_service: HealthService,
        ui: UserInterface,
    ):
        self.registry = registry
        self.factory = factory
        self.fallback_service = fallback_service
        self.health_service = health_service
        self.ui = ui

    def _resolve_platform(self, paths: List[Path], platform: Optional[str]) -> Optional[str]:
        if platform:
            return platform.lower()
        detected = {self.registry.detect_platform(p.name) for p in paths}
        detected.discard(None)
        if len(detected) == 1:
            return detected.pop()
        if len(detected) > 1:
            self.ui.display_error(
                f"Files belong to different platforms ({', '.join(sorted(detected))}); use --platform"
            )
        else:
            self.ui.display_error("Could not detect the platform from the file extension; use --platform")
        return None

    def _load_contracts(self, paths: List[Path], platform_id: str) -> Optional[List[ContractInput]]:
        definition = self.registry.get_platform(platform_id)
        language = definition.languages[0] if definition and definition.languages else None
        contracts = []
        for path in paths:
            try:
                code = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.error(f"Failed to read contract file {path}: {e}")
                self.ui.display_error(f"Cannot read {path}: {e}")
                return None
            contracts.append(ContractInput(filename=path.name, code=code, platform=platform_id, language=language))
        return contracts

    async def handle_analyze(
        self,
        file_paths: List[str],
        platform: Optional[str] = None,
        use_fallback: bool = True,
    ) -> bool:
        """Analyzes the given files; returns True when the analysis succeeded."""
        paths = [Path(p) for p in file_paths]
        logger.info(f"Handling 'analyze' command for {file_paths} (platform: {platform or 'auto'})")

        platform_id = self._resolve_platform(paths, platform)
        if platform_id is None:
            return False

        analyzer = await self.factory.get_analyzer(platform_id)
        if analyzer is None:
            self.ui.display_error(
                f"Platform '{platform_id}' is not available. "
                f"Available platforms: {', '.join(self.factory.get_available_platforms())}"
            )
            return False

        contracts = self._load_contracts(paths, platform_id)
        if contracts is None:
            return False

        if use_fallback:
            result = await self.fallback_service.analyze_with_fallback(analyzer, contracts)
        else:
            result = await analyzer.analyze(contracts)
        self.ui.display_analysis_result(result, platform_id)
        return result.success

    async def handle_health(self) -> bool:
        logger.info("Handling 'health' command")
        summary = await self.health_service.get_platform_health_summary()
        self.ui.display_health_summary(summary)
        return summary["unhealthy"] == 0 and summary["unknown"] == 0

    async def handle_validate_analyzer(self, platform: str) -> bool:
        logger.info(f"Handling 'validate-analyzer' command for {platform}")
        report = await self.factory.validate_analyzer(platform.lower())
        self.ui.display_validation(platform.lower(), report)
        return report["valid"]

    def handle_platforms(self) -> None:
        logger.info("Handling 'platforms' command")
        self.ui.display_platforms(self.factory.get_supported_platforms_with_analyzers())
