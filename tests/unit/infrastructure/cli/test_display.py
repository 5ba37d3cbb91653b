import pytest
from rich.console import Console

from chainaudit.core.services.fallback_service import FallbackAnalysisResult
from chainaudit.domain.models.contract import (
    AnalysisResult,
    CodeLocation,
    PlatformVulnerability,
    Severity,
    VulnerabilitySource,
)
from chainaudit.infrastructure.cli.display import ConsoleDisplay


@pytest.fixture
def console():
    """Fixture for a recording rich Console wide enough to avoid wrapping."""
    return Console(record=True, width=140, color_system=None)


@pytest.fixture
def console_display(console: Console):
    return ConsoleDisplay(console)


def _finding(type_: str, severity: Severity, line: int) -> PlatformVulnerability:
    return PlatformVulnerability(
        type=type_,
        severity=severity,
        title=f"{type_} finding",
        description="details",
        location=CodeLocation(file="Vault.sol", line=line, column=9),
        recommendation="fix it",
        confidence=0.7,
        source=VulnerabilitySource.STATIC,
        platform="ethereum",
    )


def test_display_analysis_result_orders_by_severity(console_display: ConsoleDisplay, console: Console):
    result = AnalysisResult(
        success=True,
        vulnerabilities=[_finding("solc-version", Severity.LOW, 1), _finding("reentrancy-eth", Severity.CRITICAL, 5)],
        warnings=["Vault.sol: WARNING: solc version not pinned"],
        execution_time=1.5,
    )

    console_display.display_analysis_result(result, "ethereum")

    text = console.export_text()
    assert "Analysis Result" in text
    assert "Platform: ethereum" in text
    assert "Findings: 2" in text
    assert "Execution time: 1.50s" in text
    assert "Fallback:" not in text
    assert text.index("reentrancy-eth") < text.index("solc-version")
    assert "Vault.sol:5:9" in text
    assert "Warning" in text and "solc version not pinned" in text


def test_display_degraded_result(console_display: ConsoleDisplay, console: Console):
    result = FallbackAnalysisResult(
        success=False,
        errors=["slither is not installed or not available in PATH"],
        fallback_strategy="basic-validation",
        degradation_level="significant",
    )

    console_display.display_analysis_result(result, "ethereum")

    text = console.export_text()
    assert "Status: failed" in text
    assert "Fallback: basic-validation (degradation: significant)" in text
    assert "No vulnerabilities reported." in text
    assert "Error" in text and "slither is not installed" in text


def test_display_health_summary(console_display: ConsoleDisplay, console: Console):
    summary = {
        "total": 2,
        "healthy": 1,
        "degraded": 0,
        "unhealthy": 1,
        "unknown": 0,
        "platforms": [
            {"id": "ethereum", "display_name": "Ethereum", "status": "healthy", "version": "0.10.0"},
            {"id": "cardano", "display_name": "Cardano", "status": "unhealthy", "error": "ghc missing"},
        ],
    }

    console_display.display_health_summary(summary)

    text = console.export_text()
    assert "Ethereum" in text and "0.10.0" in text
    assert "unhealthy" in text and "ghc missing" in text
    assert "Total: 2" in text
    assert "healthy 1" in text


def test_display_validation(console_display: ConsoleDisplay, console: Console):
    console_display.display_validation("cardano", {
        "valid": False,
        "issues": ["Tools not installed: cabal missing"],
        "recommendations": ["Install the cabal toolchain"],
    })

    text = console.export_text()
    assert "Analyzer: cardano" in text
    assert "not ready" in text
    assert "- Tools not installed: cabal missing" in text
    assert "* Install the cabal toolchain" in text


def test_display_platforms(console_display: ConsoleDisplay, console: Console):
    console_display.display_platforms([{
        "id": "sui",
        "display_name": "Sui",
        "languages": ["move"],
        "file_extensions": [".move"],
        "is_active": True,
        "has_analyzer": False,
    }])

    text = console.export_text()
    assert "Sui" in text
    assert ".move" in text
    assert "yes" in text and "no" in text


def test_display_info(console_display: ConsoleDisplay, console: Console):
    console_display.display_info("Analyzing 1 contract(s)")
    text = console.export_text()
    assert "Info" in text
    assert "Analyzing 1 contract(s)" in text
