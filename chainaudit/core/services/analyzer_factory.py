"""
Factory and cache for platform analyzers.

Builds one analyzer per platform id on first use, keeps it for the
lifetime of the factory, and aggregates health checks across platforms.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from chainaudit.core.services.platform_registry import BlockchainRegistry
from chainaudit.domain.interfaces.analyzer import BlockchainAnalyzer
from chainaudit.domain.models.platform import PlatformDefinition

logger = logging.getLogger(__name__)

AnalyzerBuilder = Callable[[PlatformDefinition], BlockchainAnalyzer]


class AnalyzerFactory:
    """Creates, caches and health-checks analyzers for registered platforms."""

    def __init__(self, registry: BlockchainRegistry, builders: Mapping[str, AnalyzerBuilder]):
        """Initializes the factory.

        Args:
            registry: Source of platform definitions and active flags.
            builders: Platform id -> callable constructing that platform's analyzer.
        """
        self.registry = registry
        self.builders = dict(builders)
        self._analyzers: Dict[str, BlockchainAnalyzer] = {}
        self._lock = asyncio.Lock()
        logger.info(f"AnalyzerFactory initialized with builders for {sorted(self.builders)}")

    def has_implementation(self, platform_id: str) -> bool:
        return platform_id in self.builders

    async def get_analyzer(self, platform_id: str) -> Optional[BlockchainAnalyzer]:
        """Returns the cached analyzer, building it on first request.

        Returns None when the platform is unknown, inactive, has no
        implementation, or its constructor raised.
        """
        async with self._lock:
            cached = self._analyzers.get(platform_id)
            if cached is not None:
                return cached

            platform = self.registry.get_platform(platform_id)
            if platform is None:
                logger.warning(f"Unknown platform requested: {platform_id}")
                return None
            if not platform.is_active:
                logger.warning(f"Platform {platform_id} is not active")
                return None
            builder = self.builders.get(platform_id)
            if builder is None:
                logger.warning(f"No analyzer implementation for platform {platform_id}")
                return None

            try:
                analyzer = builder(platform)
            except Exception as e:
                logger.error(f"Failed to create analyzer for {platform_id}: {e}", exc_info=True)
                return None
            self._analyzers[platform_id] = analyzer
            logger.info(f"Created analyzer for {platform_id}: {analyzer.__class__.__name__}")
            return analyzer

    async def get_all_analyzers(self) -> Dict[str, BlockchainAnalyzer]:
        analyzers = {}
        for platform in self.registry.get_active_platforms():
            analyzer = await self.get_analyzer(platform.id)
            if analyzer is not None:
                analyzers[platform.id] = analyzer
        return analyzers

    def get_available_platforms(self) -> List[str]:
        """Active platforms that also have an implementation."""
        return [p.id for p in self.registry.get_active_platforms() if self.has_implementation(p.id)]

    async def check_all_analyzers_health(self) -> Dict[str, Dict[str, Any]]:
        """Runs every analyzer's health check concurrently.

        One platform's failure is recorded in its own entry and never
        aborts the others.
        """
        analyzers = await self.get_all_analyzers()
        platform_ids = list(analyzers)
        outcomes = await asyncio.gather(
            *(analyzers[pid].check_health() for pid in platform_ids),
            return_exceptions=True,
        )

        results: Dict[str, Dict[str, Any]] = {}
        for platform_id, outcome in zip(platform_ids, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Health check for {platform_id} raised {type(outcome).__name__}: {outcome}")
                results[platform_id] = {
                    "platform": platform_id,
                    "healthy": False,
                    "version": None,
                    "error": f"Health check failed: {outcome}",
                    "check_failed": True,
                }
                continue
            results[platform_id] = {
                "platform": platform_id,
                "healthy": outcome.installed,
                "version": outcome.version,
                "error": outcome.error,
                "check_failed": False,
            }
        return results

    def get_supported_platforms_with_analyzers(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": platform.id,
                "display_name": platform.display_name,
                "languages": list(platform.languages),
                "file_extensions": list(platform.file_extensions),
                "is_active": platform.is_active,
                "has_analyzer": self.has_implementation(platform.id),
                "static_analyzers": list(platform.static_analyzers),
            }
            for platform in self.registry.get_all_platforms()
        ]

    def get_analyzer_statistics(self) -> Dict[str, int]:
        platforms = self.registry.get_all_platforms()
        return {
            "totalPlatforms": len(platforms),
            "implementedAnalyzers": sum(1 for p in platforms if self.has_implementation(p.id)),
            "cachedAnalyzers": len(self._analyzers),
            "activePlatforms": sum(1 for p in platforms if p.is_active),
        }

    async def validate_analyzer(self, platform_id: str) -> Dict[str, Any]:
        """Combines registry, implementation and live health checks into a report.

        Returns:
            ``{"valid": bool, "issues": [...], "recommendations": [...]}``.
        """
        issues: List[str] = []
        recommendations: List[str] = []

        platform = self.registry.get_platform(platform_id)
        if platform is None:
            issues.append(f"Platform '{platform_id}' not found in registry")
            return {"valid": False, "issues": issues, "recommendations": recommendations}

        if not platform.is_active:
            issues.append(f"Platform '{platform_id}' is not active")
            recommendations.append("Activate the platform in the registry")
            return {"valid": False, "issues": issues, "recommendations": recommendations}

        if not self.has_implementation(platform_id):
            issues.append(f"No analyzer implementation available for platform '{platform_id}'")
            recommendations.append("Implement analyzer for this platform")
            return {"valid": False, "issues": issues, "recommendations": recommendations}

        analyzer = await self.get_analyzer(platform_id)
        if analyzer is None:
            issues.append(f"Failed to create analyzer for platform '{platform_id}'")
            return {"valid": False, "issues": issues, "recommendations": recommendations}

        try:
            health = await analyzer.check_health()
        except Exception as e:
            logger.warning(f"Health check for {platform_id} raised during validation: {e}")
            issues.append(f"Analyzer validation failed: {e}")
        else:
            if not health.installed:
                issues.append(f"Analyzer tools not properly installed: {health.error}")
                recommendations.append("Install required analysis tools for this platform")
            elif health.error:
                recommendations.append(health.error)

        if not platform.static_analyzers:
            recommendations.append("Configure static analyzers for better analysis coverage")

        return {"valid": not issues, "issues": issues, "recommendations": recommendations}

    def clear_cache(self) -> None:
        count = len(self._analyzers)
        self._analyzers.clear()
        logger.info(f"Cleared {count} cached analyzer(s)")

    def remove_analyzer(self, platform_id: str) -> bool:
        removed = self._analyzers.pop(platform_id, None) is not None
        if removed:
            logger.info(f"Removed cached analyzer for {platform_id}")
        return removed
