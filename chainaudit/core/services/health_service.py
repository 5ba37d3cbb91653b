"""Aggregated platform health for the CLI and any external health surface."""

import logging
import time
from typing import Any, Dict, List

from chainaudit.core.services.analyzer_factory import AnalyzerFactory
from chainaudit.core.services.platform_registry import BlockchainRegistry

logger = logging.getLogger(__name__)

STATUS_HEALTHY = "healthy"
STATUS_DEGRADED = "degraded"
STATUS_UNHEALTHY = "unhealthy"
STATUS_UNKNOWN = "unknown"


def classify_health(entry: Dict[str, Any]) -> str:
    """Maps one factory health entry to a status.

    An installed analyzer that still reports an error is missing an
    optional tool and counts as degraded. A check that raised instead of
    reporting (``check_failed``) says nothing about the tools: unknown.
    """
    if entry.get("healthy"):
        return STATUS_DEGRADED if entry.get("error") else STATUS_HEALTHY
    if entry.get("check_failed"):
        return STATUS_UNKNOWN
    return STATUS_UNHEALTHY


class HealthService:
    def __init__(self, registry: BlockchainRegistry, factory: AnalyzerFactory):
        self.registry = registry
        self.factory = factory

    async def get_platform_health_summary(self) -> Dict[str, Any]:
        """Returns ``{total, healthy, degraded, unhealthy, unknown, platforms}``."""
        checks = await self.factory.check_all_analyzers_health()
        checked_at = time.time()

        platforms: List[Dict[str, Any]] = []
        for platform in self.registry.get_all_platforms():
            entry = checks.get(platform.id)
            if entry is None:
                status = STATUS_UNKNOWN
                if not platform.is_active:
                    error = "Platform is not active"
                elif not self.factory.has_implementation(platform.id):
                    error = "No analyzer implementation available"
                else:
                    error = "Analyzer could not be created"
                version = None
            else:
                status = classify_health(entry)
                error = entry.get("error")
                version = entry.get("version")
            platforms.append({
                "id": platform.id,
                "display_name": platform.display_name,
                "status": status,
                "version": version,
                "error": error,
                "checked_at": checked_at,
            })

        summary = {
            "total": len(platforms),
            STATUS_HEALTHY: sum(1 for p in platforms if p["status"] == STATUS_HEALTHY),
            STATUS_DEGRADED: sum(1 for p in platforms if p["status"] == STATUS_DEGRADED),
            STATUS_UNHEALTHY: sum(1 for p in platforms if p["status"] == STATUS_UNHEALTHY),
            STATUS_UNKNOWN: sum(1 for p in platforms if p["status"] == STATUS_UNKNOWN),
            "platforms": platforms,
        }
        logger.info(
            f"Health summary: {summary['healthy']} healthy, {summary['degraded']} degraded, "
            f"{summary['unhealthy']} unhealthy, {summary['unknown']} unknown"
        )
        return summary
