"""EVM-family analyzer backed by Slither.

Serves ethereum, bsc and polygon: the contracts are Solidity and the same
tooling applies, only the platform id differs.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from chainaudit.domain.interfaces.tool_invoker import ToolInvoker
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
from chainaudit.domain.models.errors import PlatformError, PlatformErrorCode
from chainaudit.infrastructure.analyzers.base import BaseBlockchainAnalyzer
from chainaudit.infrastructure.analyzers.findings import (
    count_lines_of_code,
    create_vulnerability,
    delimiter_errors,
    map_severity,
)
from chainaudit.infrastructure.tools.subprocess_invoker import probe_version

logger = logging.getLogger(__name__)

SLITHER = "slither"
EVM_PLATFORMS = ("ethereum", "bsc", "polygon")

# Slither impact is one notch more conservative than our scale
SLITHER_IMPACT_MAP: Dict[str, Severity] = {
    "high": Severity.CRITICAL,
    "medium": Severity.HIGH,
    "low": Severity.MEDIUM,
    "informational": Severity.LOW,
    "optimization": Severity.INFORMATIONAL,
}
SLITHER_CONFIDENCE_MAP: Dict[str, float] = {"high": 0.9, "medium": 0.7, "low": 0.5}
TEXT_SEVERITY_MAP: Dict[str, Severity] = {
    "error": Severity.HIGH,
    "warning": Severity.MEDIUM,
    "info": Severity.LOW,
}

DEFAULT_DETECTORS = (
    "reentrancy-eth",
    "reentrancy-no-eth",
    "reentrancy-benign",
    "reentrancy-events",
    "arbitrary-send-eth",
    "suicidal",
    "controlled-delegatecall",
    "uninitialized-state",
    "uninitialized-storage",
    "unchecked-transfer",
    "unchecked-lowlevel",
    "unchecked-send",
    "tx-origin",
    "timestamp",
    "locked-ether",
    "incorrect-equality",
    "shadowing-state",
    "low-level-calls",
    "missing-zero-check",
    "solc-version",
)

DETECTOR_RECOMMENDATIONS: Dict[str, str] = {
    "reentrancy-eth": "Update state before external calls (checks-effects-interactions) or add a reentrancy guard.",
    "reentrancy-no-eth": "Update state before external calls (checks-effects-interactions) or add a reentrancy guard.",
    "reentrancy-benign": "Move state updates before external calls to keep the contract reentrancy-safe.",
    "reentrancy-events": "Emit events before making external calls.",
    "arbitrary-send-eth": "Restrict who can trigger Ether transfers and to which destinations.",
    "suicidal": "Protect selfdestruct behind strict access control or remove it.",
    "controlled-delegatecall": "Never delegatecall into an address supplied by users.",
    "uninitialized-state": "Initialize state variables explicitly in the declaration or constructor.",
    "uninitialized-storage": "Initialize storage pointers before use.",
    "unchecked-transfer": "Check the boolean returned by ERC20 transfer/transferFrom or use SafeERC20.",
    "unchecked-lowlevel": "Check the success flag returned by low-level calls.",
    "unchecked-send": "Check the return value of send or use call with explicit handling.",
    "tx-origin": "Use msg.sender instead of tx.origin for authorization.",
    "timestamp": "Avoid relying on block.timestamp for critical comparisons.",
    "locked-ether": "Add a withdrawal function or stop accepting Ether.",
    "incorrect-equality": "Avoid strict equality on balances or timestamps.",
    "shadowing-state": "Rename the variable so it does not shadow inherited state.",
    "low-level-calls": "Prefer high-level calls; if low-level calls are required, validate their results.",
    "missing-zero-check": "Validate that address parameters are not the zero address.",
    "solc-version": "Pin a recent, non-vulnerable Solidity compiler version.",
}

_TEXT_FINDING = re.compile(r"^(?P<level>INFO|WARNING|ERROR):(?P<section>[^:]*):?(?P<message>.*)$")
_LINE_REFERENCE = re.compile(r"#(\d+)")


class EthereumAnalyzer(BaseBlockchainAnalyzer):
    """Runs Slither over Solidity sources for an EVM-compatible platform."""

    language = "solidity"

    def __init__(
        self,
        tool_invoker: ToolInvoker,
        platform: str = "ethereum",
        detectors: Optional[Sequence[str]] = DEFAULT_DETECTORS,
        exclude_detectors: Optional[Sequence[str]] = None,
        probe_timeout: float = 30.0,
        **kwargs: Any,
    ):
        """Initializes the analyzer.

        Args:
            tool_invoker: Runs slither.
            platform: One of the EVM platform ids.
            detectors: Slither detectors to enable; all detectors when None.
            exclude_detectors: Detectors to skip.
            probe_timeout: Budget for the syntax probe in validate_contract.
            **kwargs: Passed to BaseBlockchainAnalyzer.
        """
        super().__init__(platform=platform, tool_invoker=tool_invoker, **kwargs)
        self.detectors = list(detectors) if detectors else []
        self.exclude_detectors = list(exclude_detectors or [])
        self.probe_timeout = probe_timeout

    async def check_health(self) -> InstallationCheckResult:
        result = await probe_version(
            self.tool_invoker, SLITHER, ("--version",), timeout=self.health_check_timeout, platform=self.platform
        )
        if not result.installed:
            result.error = f"Slither not available: {result.error}"
        return result

    async def run_static_analysis(self, contracts: List[ContractInput]) -> AnalysisResult:
        names = [c.filename for c in contracts]
        vulnerabilities: List[PlatformVulnerability] = []
        warnings: List[str] = []
        for contract in contracts:
            found, tool_warnings = await self._run_slither(contract, names)
            vulnerabilities.extend(found)
            warnings.extend(tool_warnings)

        return AnalysisResult(
            success=True,
            vulnerabilities=vulnerabilities,
            warnings=warnings,
            platform_specific={
                "tool": SLITHER,
                "detectors": self.detectors or "all",
                "contracts_analyzed": len(contracts),
                "total_lines_of_code": sum(count_lines_of_code(c.code) for c in contracts),
            },
        )

    def _slither_args(self, source_path: str) -> List[str]:
        args = [source_path, "--json", "-"]
        if self.detectors:
            args += ["--detect", ",".join(self.detectors)]
        if self.exclude_detectors:
            args += ["--exclude", ",".join(self.exclude_detectors)]
        args += ["--disable-color", "--no-fail-pedantic"]
        return args

    async def _run_slither(self, contract: ContractInput, contract_names: List[str]):
        with self.scratch_directory() as workdir:
            source_path = workdir / f"{contract.contract_name}.sol"
            source_path.write_text(contract.code, encoding="utf-8")
            result = await self.tool_invoker.run(
                SLITHER,
                self._slither_args(str(source_path)),
                cwd=str(workdir),
                timeout=self.timeout,
                platform=self.platform,
                contracts=contract_names,
            )

        warnings = [
            f"{contract.filename}: {line.strip()}"
            for line in result.stderr.splitlines()
            if "warning" in line.lower()
        ]

        report = self._load_report(result.stdout)
        if report is not None:
            if report.get("success") is False and report.get("error"):
                # Compilation errors are deterministic; retrying will not help
                raise PlatformError(
                    PlatformErrorCode.TOOL_EXECUTION_FAILED,
                    f"Slither could not analyze {contract.filename}: {str(report['error']).strip()[:500]}",
                    self.platform,
                    {"tool": SLITHER, "exit_code": result.exit_code, "contract": contract.filename},
                )
            return self.parse_slither_report(report, contract), warnings

        vulnerabilities = self.parse_text_output(result.stdout + "\n" + result.stderr, contract)
        if result.exit_code != 0 and not vulnerabilities:
            stderr_lines = [line for line in result.stderr.splitlines() if line.strip()]
            detail = stderr_lines[-1] if stderr_lines else f"exit code {result.exit_code}"
            raise PlatformError(
                PlatformErrorCode.TOOL_EXECUTION_FAILED,
                f"Slither failed for {contract.filename}: {detail}",
                self.platform,
                {"tool": SLITHER, "exit_code": result.exit_code, "stderr": result.stderr[-1000:]},
                transient=True,
            )
        return vulnerabilities, warnings

    @staticmethod
    def _load_report(stdout: str) -> Optional[Dict[str, Any]]:
        if not stdout.strip():
            return None
        try:
            data = json.loads(stdout)
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None

    def parse_slither_report(self, report: Dict[str, Any], contract: ContractInput) -> List[PlatformVulnerability]:
        """Converts the ``results.detectors`` section of Slither's JSON output."""
        detectors = (report.get("results") or {}).get("detectors") or []
        vulnerabilities = []
        for detector in detectors:
            check = str(detector.get("check", "unknown"))
            impact = str(detector.get("impact", "")).lower()
            confidence = str(detector.get("confidence", "")).lower()
            elements = detector.get("elements") or []
            mapping = (elements[0].get("source_mapping") or {}) if elements else {}
            lines = mapping.get("lines") or [1]
            vulnerabilities.append(create_vulnerability(
                platform=self.platform,
                vuln_type=check,
                severity=map_severity(impact, SLITHER_IMPACT_MAP),
                title=check.replace("-", " ").title(),
                description=str(detector.get("description", "")).strip(),
                location=CodeLocation(
                    file=contract.filename,
                    line=int(lines[0]) or 1,
                    column=int(mapping.get("starting_column") or 1),
                    length=mapping.get("length"),
                ),
                recommendation=DETECTOR_RECOMMENDATIONS.get(
                    check, f"Review the '{check}' finding and follow the Slither detector documentation."
                ),
                confidence=SLITHER_CONFIDENCE_MAP.get(confidence, 0.6),
                source=VulnerabilitySource.STATIC,
                platform_specific_data={
                    "detector": check,
                    "impact": detector.get("impact"),
                    "confidence": detector.get("confidence"),
                    "markdown": detector.get("markdown"),
                },
            ))
        return vulnerabilities

    def parse_text_output(self, output: str, contract: ContractInput) -> List[PlatformVulnerability]:
        """Best-effort parsing of Slither's human readable log lines."""
        vulnerabilities = []
        for raw_line in output.splitlines():
            match = _TEXT_FINDING.match(raw_line.strip())
            if not match:
                continue
            message = match.group("message").strip()
            if not message or match.group("section").strip() == "Slither":
                continue
            line_ref = _LINE_REFERENCE.search(message)
            vulnerabilities.append(create_vulnerability(
                platform=self.platform,
                vuln_type="text-parsed",
                severity=map_severity(match.group("level"), TEXT_SEVERITY_MAP),
                title="Slither finding",
                description=message,
                location=CodeLocation(file=contract.filename, line=int(line_ref.group(1)) if line_ref else 1),
                recommendation="Review the Slither output for this finding.",
                confidence=0.5,
            ))
        return vulnerabilities

    async def check_syntax(self, contract: ContractInput, result: ValidationResult) -> None:
        code = contract.code
        if "pragma solidity" not in code:
            result.warnings.append("No 'pragma solidity' version directive found")
        if not re.search(r"\b(contract|interface|library)\s+\w+", code):
            result.warnings.append("No contract, interface or library definition found")
        result.errors.extend(delimiter_errors(code, single_quoted_strings=True))

        if not self.tool_invoker.is_available(SLITHER):
            result.warnings.append("Slither not installed; syntax probe skipped")
            return

        with self.scratch_directory() as workdir:
            source_path = workdir / f"{contract.contract_name}.sol"
            source_path.write_text(code, encoding="utf-8")
            probe = await self.tool_invoker.run(
                SLITHER,
                [str(source_path), "--print", "human-summary", "--disable-color"],
                cwd=str(workdir),
                timeout=min(self.timeout, self.probe_timeout),
                platform=self.platform,
                contracts=[contract.filename],
            )
        if probe.exit_code != 0:
            lines = [line for line in probe.stderr.splitlines() if line.strip()]
            detail = lines[-1] if lines else f"exit code {probe.exit_code}"
            result.warnings.append(f"Slither syntax probe reported a problem: {detail}")
