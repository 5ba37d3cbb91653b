import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from chainaudit.core.services.ensemble_analyzer import ALL_MODELS_FAILED, AIEnsembleAnalyzer
from chainaudit.domain.models.ai import AIVulnerability, EnsembleResult, ModelResponse
from chainaudit.domain.models.contract import CodeLocation, ContractInput, Severity, ToolResult, VulnerabilitySource
from chainaudit.domain.models.errors import PlatformError, PlatformErrorCode
from chainaudit.infrastructure.analyzers.base import AI_UNAVAILABLE_WARNING, EMPTY_CODE_ERROR
from chainaudit.infrastructure.analyzers.ethereum import EthereumAnalyzer

SLITHER_REPORT = {
    "success": True,
    "error": None,
    "results": {
        "detectors": [
            {
                "check": "reentrancy-eth",
                "impact": "High",
                "confidence": "Medium",
                "description": "Reentrancy in Vault.withdraw() (Vault.sol#4-7)",
                "markdown": "Reentrancy in Vault.withdraw()",
                "elements": [{"source_mapping": {"lines": [5, 6], "starting_column": 9, "length": 60}}],
            },
            {
                "check": "solc-version",
                "impact": "Informational",
                "confidence": "High",
                "description": "Pragma version ^0.8.0 allows old versions",
                "elements": [],
            },
        ]
    },
}


@pytest.fixture
def ensemble():
    mock = MagicMock(spec=AIEnsembleAnalyzer)
    mock.model_ids = ["model-a", "model-b"]
    mock.analyze_contract = AsyncMock(return_value=EnsembleResult(success=True, result=ModelResponse(model="ensemble")))
    return mock


@pytest.fixture
def analyzer(tool_invoker):
    return EthereumAnalyzer(tool_invoker, timeout=30)


def _slither(report):
    def respond(args, cwd):
        return ToolResult(stdout=json.dumps(report), stderr="WARNING: solc version not pinned\nINFO:Detectors:", exit_code=255)
    return respond


@pytest.mark.asyncio
async def test_slither_report_is_converted(analyzer, tool_invoker, solidity_contract):
    tool_invoker.responses["slither"] = _slither(SLITHER_REPORT)

    result = await analyzer.analyze([solidity_contract])

    assert result.success is True
    assert result.platform_error is None
    assert len(result.vulnerabilities) == 2
    reentrancy = result.vulnerabilities[0]
    assert reentrancy.type == "reentrancy-eth"
    assert reentrancy.severity == Severity.CRITICAL
    assert reentrancy.confidence == 0.7
    assert reentrancy.location.file == "Vault.sol"
    assert (reentrancy.location.line, reentrancy.location.column) == (5, 9)
    assert reentrancy.source == VulnerabilitySource.STATIC
    assert reentrancy.id.startswith("ethereum-")
    pragma = result.vulnerabilities[1]
    assert pragma.severity == Severity.LOW
    assert pragma.location.line == 1
    assert result.warnings == ["Vault.sol: WARNING: solc version not pinned"]
    assert result.platform_specific["contracts_analyzed"] == 1

    command, args = tool_invoker.calls[0]
    assert command == "slither"
    assert args[0].endswith("Vault.sol")
    assert "--json" in args and "--detect" in args


@pytest.mark.asyncio
async def test_compilation_error_is_terminal(analyzer, tool_invoker, solidity_contract):
    tool_invoker.responses["slither"] = _slither({"success": False, "error": "Invalid compilation: ParserError"})

    result = await analyzer.analyze([solidity_contract])

    assert result.success is False
    assert result.platform_error.code == PlatformErrorCode.TOOL_EXECUTION_FAILED
    assert result.platform_error.retryable is False
    assert "ParserError" in result.errors[0]


@pytest.mark.asyncio
async def test_text_output_fallback(analyzer, tool_invoker, solidity_contract, output):
    tool_invoker.responses["slither"] = output(
        stdout="", stderr="INFO:Detectors:\nWARNING:Detectors: Reentrancy in withdraw (Vault.sol#5)\n", exit_code=1
    )

    result = await analyzer.analyze([solidity_contract])

    assert result.success is True
    assert [v.type for v in result.vulnerabilities] == ["text-parsed"]
    assert result.vulnerabilities[0].location.line == 5
    assert result.vulnerabilities[0].severity == Severity.MEDIUM


@pytest.mark.asyncio
async def test_crash_without_output_is_transient(analyzer, tool_invoker, solidity_contract, output):
    tool_invoker.responses["slither"] = output(stderr="Traceback ...\nKeyError: 'x'", exit_code=1)

    result = await analyzer.analyze([solidity_contract])

    assert result.success is False
    assert result.platform_error.code == PlatformErrorCode.TOOL_EXECUTION_FAILED
    assert result.platform_error.retryable is True


@pytest.mark.asyncio
async def test_missing_slither_becomes_platform_error(analyzer, solidity_contract):
    result = await analyzer.analyze([solidity_contract])

    assert result.success is False
    assert result.platform_error.code == PlatformErrorCode.TOOL_INSTALLATION_MISSING
    assert result.errors == ["slither is not installed or not available in PATH"]


@pytest.mark.asyncio
async def test_timeout_propagates_as_retryable(analyzer, tool_invoker, solidity_contract):
    tool_invoker.responses["slither"] = PlatformError(
        PlatformErrorCode.TOOL_EXECUTION_TIMEOUT, "slither timed out after 30s", "ethereum"
    )
    result = await analyzer.analyze([solidity_contract])
    assert result.platform_error.retryable is True


@pytest.mark.asyncio
async def test_empty_code_runs_no_tools(tool_invoker, ensemble):
    analyzer = EthereumAnalyzer(tool_invoker, ai_ensemble=ensemble)
    contract = ContractInput(filename="Empty.sol", code="   \n", platform="ethereum")

    result = await analyzer.analyze([contract])

    assert result.success is False
    assert result.errors == [f"Empty.sol: {EMPTY_CODE_ERROR}"]
    assert tool_invoker.calls == []
    ensemble.analyze_contract.assert_not_called()


@pytest.mark.asyncio
async def test_oversized_contract_rejected(tool_invoker):
    analyzer = EthereumAnalyzer(tool_invoker, max_contract_size=10)
    contract = ContractInput(filename="Big.sol", code="contract Big {}", platform="ethereum")

    result = await analyzer.analyze([contract])

    assert result.errors == ["Big.sol: Contract size exceeds maximum limit of 10 bytes"]
    assert tool_invoker.calls == []


@pytest.mark.asyncio
async def test_no_contracts(analyzer):
    result = await analyzer.analyze([])
    assert result.success is False
    assert result.errors == ["No contracts provided for analysis"]


@pytest.mark.asyncio
async def test_platform_mismatch_is_a_warning(tool_invoker, output):
    tool_invoker.responses["slither"] = output(stdout=json.dumps({"success": True, "results": {}}))
    analyzer = EthereumAnalyzer(tool_invoker, platform="polygon")
    contract = ContractInput(filename="A.sol", code="contract A {}", platform="ethereum")

    result = await analyzer.analyze([contract])

    assert result.success is True
    assert result.warnings[0] == "A.sol: Contract platform 'ethereum' does not match analyzer platform 'polygon'"


@pytest.mark.asyncio
async def test_ai_failure_degrades_to_warning(tool_invoker, ensemble, solidity_contract):
    tool_invoker.responses["slither"] = _slither(SLITHER_REPORT)
    ensemble.analyze_contract.return_value = EnsembleResult(success=False, error=ALL_MODELS_FAILED)
    analyzer = EthereumAnalyzer(tool_invoker, ai_ensemble=ensemble)

    result = await analyzer.analyze([solidity_contract])

    assert result.success is True
    assert len(result.vulnerabilities) == 2
    assert f"AI: {ALL_MODELS_FAILED}" in result.warnings
    assert AI_UNAVAILABLE_WARNING in result.warnings


@pytest.mark.asyncio
async def test_ai_exception_degrades_to_warning(tool_invoker, ensemble, solidity_contract):
    tool_invoker.responses["slither"] = _slither(SLITHER_REPORT)
    ensemble.analyze_contract.side_effect = RuntimeError("network down")
    analyzer = EthereumAnalyzer(tool_invoker, ai_ensemble=ensemble)

    result = await analyzer.analyze([solidity_contract])

    assert result.success is True
    assert "AI: AI analysis failed: network down" in result.warnings
    assert AI_UNAVAILABLE_WARNING in result.warnings


@pytest.mark.asyncio
async def test_ai_findings_are_merged_after_static(tool_invoker, ensemble, solidity_contract):
    tool_invoker.responses["slither"] = _slither(SLITHER_REPORT)
    ensemble.analyze_contract.return_value = EnsembleResult(success=True, result=ModelResponse(
        model="ensemble",
        vulnerabilities=[AIVulnerability(
            type="access_control",
            severity="high",
            description="withdraw lacks an owner check",
            location=CodeLocation(file="contract.sol", line=4, column=5),
            confidence=0.85,
        )],
    ))
    analyzer = EthereumAnalyzer(tool_invoker, ai_ensemble=ensemble, focus_areas=["reentrancy"])

    result = await analyzer.analyze([solidity_contract])

    assert [v.source for v in result.vulnerabilities] == [
        VulnerabilitySource.STATIC, VulnerabilitySource.STATIC, VulnerabilitySource.AI,
    ]
    ai_finding = result.vulnerabilities[-1]
    assert ai_finding.location.file == "Vault.sol"
    assert ai_finding.severity == Severity.HIGH
    assert result.platform_specific["ai_analysis"]["models"] == ["model-a", "model-b"]
    kwargs = ensemble.analyze_contract.call_args.kwargs
    assert kwargs["focus_areas"] == ["reentrancy"]
    assert kwargs["platform"] == "ethereum"
    assert kwargs["filename"] == "Vault.sol"


@pytest.mark.asyncio
async def test_ai_disabled_skips_ensemble(tool_invoker, ensemble, solidity_contract):
    tool_invoker.responses["slither"] = _slither(SLITHER_REPORT)
    analyzer = EthereumAnalyzer(tool_invoker, ai_ensemble=ensemble, enable_ai=False)

    result = await analyzer.analyze([solidity_contract])

    assert AI_UNAVAILABLE_WARNING not in result.warnings
    ensemble.analyze_contract.assert_not_called()


@pytest.mark.asyncio
async def test_run_ai_analysis_without_ensemble_raises(analyzer, solidity_contract):
    with pytest.raises(PlatformError) as excinfo:
        await analyzer.run_ai_analysis([solidity_contract])
    assert excinfo.value.code == PlatformErrorCode.ANALYZER_UNAVAILABLE


@pytest.mark.asyncio
async def test_check_health(analyzer, tool_invoker, output):
    tool_invoker.responses["slither"] = output(stdout="0.10.0\n")
    health = await analyzer.check_health()
    assert health.installed is True
    assert health.version == "0.10.0"


@pytest.mark.asyncio
async def test_check_health_missing(analyzer):
    health = await analyzer.check_health()
    assert health.installed is False
    assert health.error.startswith("Slither not available")


@pytest.mark.asyncio
async def test_validate_contract_structure_checks(analyzer, tool_invoker):
    contract = ContractInput(filename="A.sol", code="contract A {\n function f() {\n}", platform="ethereum")

    validation = await analyzer.validate_contract(contract)

    assert validation.is_valid is False
    assert "No 'pragma solidity' version directive found" in validation.warnings
    assert "Slither not installed; syntax probe skipped" in validation.warnings
    assert validation.errors == ["Unbalanced '{': 1 more opening than closing"]
    assert tool_invoker.calls == []


@pytest.mark.asyncio
async def test_validate_contract_runs_probe_when_available(analyzer, tool_invoker, solidity_contract, output):
    tool_invoker.available.add("slither")
    tool_invoker.responses["slither"] = output(stderr="Error: Source file requires different compiler version", exit_code=1)

    validation = await analyzer.validate_contract(solidity_contract)

    assert validation.is_valid is True
    assert validation.warnings == [
        "Slither syntax probe reported a problem: Error: Source file requires different compiler version"
    ]
    assert "--print" in tool_invoker.calls[0][1]


def test_unrecognised_impact_maps_to_medium(analyzer, solidity_contract):
    report = {"results": {"detectors": [{"check": "odd-detector", "impact": "Weird", "elements": []}]}}

    vulnerabilities = analyzer.parse_slither_report(report, solidity_contract)

    assert [v.severity for v in vulnerabilities] == [Severity.MEDIUM]


@pytest.mark.asyncio
async def test_check_health_is_repeatable(analyzer, tool_invoker, output):
    tool_invoker.responses["slither"] = output(stdout="0.10.0\n")

    first = await analyzer.check_health()
    second = await analyzer.check_health()

    assert (first.installed, first.version) == (second.installed, second.version) == (True, "0.10.0")
    assert [c[0] for c in tool_invoker.calls] == ["slither", "slither"]


@pytest.mark.asyncio
async def test_static_finding_wins_collision_with_ai_finding(tool_invoker, ensemble, solidity_contract):
    tool_invoker.responses["slither"] = _slither(SLITHER_REPORT)
    ensemble.analyze_contract.return_value = EnsembleResult(success=True, result=ModelResponse(
        model="ensemble",
        vulnerabilities=[AIVulnerability(
            type="reentrancy-eth",
            severity="medium",
            description="external call before state update",
            location=CodeLocation(file="contract.sol", line=5, column=9),
            confidence=0.9,
        )],
    ))
    analyzer = EthereumAnalyzer(tool_invoker, ai_ensemble=ensemble)

    result = await analyzer.analyze([solidity_contract])

    reentrancy = [v for v in result.vulnerabilities if v.type == "reentrancy-eth"]
    assert len(reentrancy) == 1
    assert reentrancy[0].source == VulnerabilitySource.STATIC
    assert reentrancy[0].severity == Severity.CRITICAL
    assert len(result.vulnerabilities) == 2


@pytest.mark.asyncio
async def test_transient_static_failure_keeps_ai_result_for_next_attempt(tool_invoker, ensemble, solidity_contract):
    ensemble.analyze_contract.return_value = EnsembleResult(success=True, result=ModelResponse(
        model="ensemble",
        vulnerabilities=[AIVulnerability(
            type="access_control",
            severity="high",
            description="withdraw lacks an owner check",
            location=CodeLocation(file="contract.sol", line=4, column=5),
            confidence=0.85,
        )],
    ))
    slither_runs = []

    def flaky(args, cwd):
        slither_runs.append(args)
        if len(slither_runs) == 1:
            raise PlatformError(PlatformErrorCode.TOOL_EXECUTION_TIMEOUT, "slither timed out after 30s", "ethereum")
        return _slither(SLITHER_REPORT)(args, cwd)

    tool_invoker.responses["slither"] = flaky
    analyzer = EthereumAnalyzer(tool_invoker, ai_ensemble=ensemble)

    first = await analyzer.analyze([solidity_contract])
    second = await analyzer.analyze([solidity_contract])

    assert first.platform_error.retryable is True
    assert second.platform_error is None
    assert [v.type for v in second.vulnerabilities] == ["reentrancy-eth", "solc-version", "access_control"]
    assert len(slither_runs) == 2
    assert ensemble.analyze_contract.await_count == 1

    await analyzer.analyze([solidity_contract])
    assert ensemble.analyze_contract.await_count == 2


@pytest.mark.asyncio
async def test_kept_ai_result_is_not_reused_for_other_contracts(tool_invoker, ensemble, solidity_contract):
    tool_invoker.responses["slither"] = PlatformError(
        PlatformErrorCode.TOOL_EXECUTION_TIMEOUT, "slither timed out after 30s", "ethereum"
    )
    analyzer = EthereumAnalyzer(tool_invoker, ai_ensemble=ensemble)
    other = ContractInput(filename="Other.sol", code="contract Other {}", platform="ethereum")

    await analyzer.analyze([solidity_contract])
    await analyzer.analyze([other])

    assert ensemble.analyze_contract.await_count == 2


@pytest.mark.asyncio
async def test_validate_contract_ignores_braces_in_single_quoted_strings(analyzer):
    code = "pragma solidity ^0.8.0;\ncontract A {\n    string open = '{';\n    string both = '} {';\n}\n"
    contract = ContractInput(filename="A.sol", code=code, platform="ethereum")

    validation = await analyzer.validate_contract(contract)

    assert validation.errors == []
    assert validation.is_valid is True
