from unittest.mock import AsyncMock, MagicMock

import pytest

from chainaudit.core.services.analyzer_factory import AnalyzerFactory
from chainaudit.core.services.platform_registry import BlockchainRegistry
from chainaudit.domain.interfaces.analyzer import BlockchainAnalyzer
from chainaudit.domain.models.contract import InstallationCheckResult


def _analyzer(platform, health=None, health_error=None):
    analyzer = MagicMock(spec=BlockchainAnalyzer)
    analyzer.platform = platform
    if health_error is not None:
        analyzer.check_health = AsyncMock(side_effect=health_error)
    else:
        analyzer.check_health = AsyncMock(
            return_value=health or InstallationCheckResult(installed=True, version="1.0.0")
        )
    return analyzer


@pytest.fixture
def registry():
    return BlockchainRegistry()


@pytest.fixture
def builders():
    return {
        "ethereum": MagicMock(side_effect=lambda p: _analyzer(p.id)),
        "solana": MagicMock(side_effect=lambda p: _analyzer(
            p.id, InstallationCheckResult(installed=False, error="Rust not installed")
        )),
        "cardano": MagicMock(side_effect=lambda p: _analyzer(p.id, health_error=RuntimeError("probe crashed"))),
    }


@pytest.fixture
def factory(registry, builders):
    return AnalyzerFactory(registry, builders)


@pytest.mark.asyncio
async def test_analyzer_is_built_once_and_cached(factory, builders):
    first = await factory.get_analyzer("ethereum")
    second = await factory.get_analyzer("ethereum")
    assert first is second
    assert builders["ethereum"].call_count == 1
    assert factory.get_analyzer_statistics()["cachedAnalyzers"] == 1


@pytest.mark.asyncio
async def test_unknown_inactive_or_unimplemented_platforms(factory, registry):
    assert await factory.get_analyzer("tezos") is None
    assert await factory.get_analyzer("sui") is None
    registry.deactivate("ethereum")
    assert await factory.get_analyzer("ethereum") is None


@pytest.mark.asyncio
async def test_failing_builder_returns_none(registry):
    factory = AnalyzerFactory(registry, {"ethereum": MagicMock(side_effect=RuntimeError("bad config"))})
    assert await factory.get_analyzer("ethereum") is None
    assert factory.get_analyzer_statistics()["cachedAnalyzers"] == 0


def test_available_platforms_need_builder_and_active_flag(factory, registry):
    assert factory.get_available_platforms() == ["ethereum", "solana", "cardano"]
    registry.deactivate("solana")
    assert factory.get_available_platforms() == ["ethereum", "cardano"]


@pytest.mark.asyncio
async def test_health_check_isolates_failures(factory):
    results = await factory.check_all_analyzers_health()

    assert set(results) == {"ethereum", "solana", "cardano"}
    assert results["ethereum"] == {"platform": "ethereum", "healthy": True, "version": "1.0.0", "error": None, "check_failed": False}
    assert results["solana"]["healthy"] is False
    assert results["solana"]["error"] == "Rust not installed"
    assert results["cardano"]["healthy"] is False
    assert results["cardano"]["error"] == "Health check failed: probe crashed"
    assert results["cardano"]["check_failed"] is True


def test_supported_platforms_listing(factory):
    listing = {entry["id"]: entry for entry in factory.get_supported_platforms_with_analyzers()}
    assert listing["ethereum"]["has_analyzer"] is True
    assert listing["sui"]["has_analyzer"] is False
    assert listing["cardano"]["file_extensions"] == [".hs", ".plutus"]
    assert listing["ethereum"]["static_analyzers"] == ["slither"]


def test_statistics(factory, registry):
    registry.deactivate("bsc")
    assert factory.get_analyzer_statistics() == {
        "totalPlatforms": 7,
        "implementedAnalyzers": 3,
        "cachedAnalyzers": 0,
        "activePlatforms": 6,
    }


@pytest.mark.asyncio
async def test_validate_healthy_analyzer(factory):
    report = await factory.validate_analyzer("ethereum")
    assert report == {"valid": True, "issues": [], "recommendations": []}


@pytest.mark.asyncio
async def test_validate_reports_missing_tools(factory):
    report = await factory.validate_analyzer("solana")
    assert report["valid"] is False
    assert report["issues"] == ["Analyzer tools not properly installed: Rust not installed"]
    assert report["recommendations"] == ["Install required analysis tools for this platform"]


@pytest.mark.asyncio
async def test_validate_unknown_and_inactive(factory, registry):
    report = await factory.validate_analyzer("tezos")
    assert report["issues"] == ["Platform 'tezos' not found in registry"]

    registry.deactivate("ethereum")
    report = await factory.validate_analyzer("ethereum")
    assert report["valid"] is False
    assert report["issues"] == ["Platform 'ethereum' is not active"]
    assert report["recommendations"] == ["Activate the platform in the registry"]


@pytest.mark.asyncio
async def test_validate_without_implementation(factory):
    report = await factory.validate_analyzer("aptos")
    assert report["issues"] == ["No analyzer implementation available for platform 'aptos'"]
    assert report["recommendations"] == ["Implement analyzer for this platform"]


@pytest.mark.asyncio
async def test_validate_optional_tool_note_becomes_recommendation(registry):
    health = InstallationCheckResult(installed=True, version="GHC 9.4", error="HLint not installed; lint checks disabled")
    factory = AnalyzerFactory(registry, {"cardano": lambda p: _analyzer(p.id, health)})
    report = await factory.validate_analyzer("cardano")
    assert report["valid"] is True
    assert report["recommendations"] == ["HLint not installed; lint checks disabled"]


@pytest.mark.asyncio
async def test_cache_management(factory):
    await factory.get_analyzer("ethereum")
    assert factory.remove_analyzer("ethereum") is True
    assert factory.remove_analyzer("ethereum") is False

    await factory.get_analyzer("solana")
    factory.clear_cache()
    assert factory.get_analyzer_statistics()["cachedAnalyzers"] == 0
