"""Cardano (Plutus/Haskell) analyzer.

GHC and Cabal must be installed for the platform to count as available;
HLint is optional and, when present, lints each contract inside a
throwaway Cabal project. Plutus-specific pattern rules always run.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from chainaudit.domain.interfaces.tool_invoker import ToolInvoker
from chainaudit.domain.models.contract import (
    AnalysisResult,
    CodeLocation,
    ContractInput,
    InstallationCheckResult,
    PlatformVulnerability,
    Severity,
    ValidationResult,
)
from chainaudit.domain.models.errors import PlatformError, PlatformErrorCode
from chainaudit.infrastructure.analyzers.base import BaseBlockchainAnalyzer
from chainaudit.infrastructure.analyzers.findings import (
    PatternRule,
    apply_pattern_rules,
    count_lines_of_code,
    create_vulnerability,
    map_severity,
)
from chainaudit.infrastructure.tools.subprocess_invoker import probe_version

logger = logging.getLogger(__name__)

HLINT_SEVERITY_MAP: Dict[str, Severity] = {
    "error": Severity.HIGH,
    "warning": Severity.MEDIUM,
    "suggestion": Severity.LOW,
}
HLINT_CONFIDENCE = 0.8

PLUTUS_MARKERS = ("import Plutus.", "import PlutusTx", "validator", "BuiltinData", "ScriptContext")

CARDANO_RULES = (
    PatternRule(
        rule_id="unsafe-datum-decoding",
        pattern=r"\bunsafeFromBuiltinData\b",
        severity=Severity.MEDIUM,
        title="Unchecked datum/redeemer decoding",
        description="unsafeFromBuiltinData fails the script with an opaque error on malformed input.",
        recommendation="Decode with fromBuiltinData and reject malformed data with a traced error.",
        confidence=0.6,
    ),
    PatternRule(
        rule_id="partial-function",
        pattern=r"\b(head|tail|fromJust)\b|!!",
        severity=Severity.LOW,
        title="Partial function in on-chain code",
        description="Partial functions abort without a meaningful error when their input is empty.",
        recommendation="Pattern match explicitly and fail with traceError.",
        confidence=0.5,
    ),
    PatternRule(
        rule_id="missing-signature-check",
        pattern=r"\bmkValidator\b|\bvalidator\s*::",
        severity=Severity.HIGH,
        title="Validator without signature check",
        description="The validator never checks txSignedBy, so any party can spend the locked output.",
        recommendation="Require the expected public key hash with txSignedBy in the validator.",
        confidence=0.55,
        requires_absent=r"\btxSignedBy\b",
    ),
    PatternRule(
        rule_id="missing-deadline-check",
        pattern=r"\bdeadline\b",
        severity=Severity.MEDIUM,
        title="Deadline referenced without validity range check",
        description="A deadline is used but the transaction validity range is never inspected.",
        recommendation="Compare the deadline against txInfoValidRange using contains/before/after.",
        confidence=0.5,
        requires_absent=r"\btxInfoValidRange\b",
    ),
)

CABAL_TEMPLATE = """cabal-version:      2.4
name:               contract-analysis
version:            0.1.0.0
build-type:         Simple

executable contract-analysis
    main-is:          Main.hs
    hs-source-dirs:   src
    build-depends:    base
    default-language: Haskell2010
"""


def is_plutus_contract(code: str) -> bool:
    return any(marker in code for marker in PLUTUS_MARKERS)


class CardanoAnalyzer(BaseBlockchainAnalyzer):
    """Analyzer for Plutus validators written in Haskell."""

    language = "haskell"

    def __init__(self, tool_invoker: ToolInvoker, platform: str = "cardano", **kwargs: Any):
        super().__init__(platform=platform, tool_invoker=tool_invoker, **kwargs)

    async def _tool_versions(self) -> Dict[str, InstallationCheckResult]:
        versions = {}
        for tool in ("ghc", "cabal", "hlint"):
            versions[tool] = await probe_version(
                self.tool_invoker, tool, ("--version",), timeout=self.health_check_timeout, platform=self.platform
            )
        return versions

    async def check_health(self) -> InstallationCheckResult:
        versions = await self._tool_versions()
        missing = [tool for tool in ("ghc", "cabal") if not versions[tool].installed]
        if missing:
            details = "; ".join(f"{tool}: {versions[tool].error}" for tool in missing)
            return InstallationCheckResult(installed=False, error=f"Required Haskell tools missing ({details})")

        hlint = versions["hlint"]
        version = (
            f"GHC {versions['ghc'].version}, Cabal {versions['cabal'].version}, "
            f"HLint {hlint.version if hlint.installed else 'not installed'}"
        )
        error = None if hlint.installed else "HLint not installed; lint checks disabled"
        return InstallationCheckResult(installed=True, version=version, error=error)

    async def run_static_analysis(self, contracts: List[ContractInput]) -> AnalysisResult:
        versions = await self._tool_versions()
        for tool in ("ghc", "cabal"):
            if not versions[tool].installed:
                raise PlatformError(
                    PlatformErrorCode.TOOL_INSTALLATION_MISSING,
                    f"{tool} is not installed or not available in PATH",
                    self.platform,
                    {"tool": tool, "detail": versions[tool].error},
                )

        names = [c.filename for c in contracts]
        use_hlint = versions["hlint"].installed
        vulnerabilities: List[PlatformVulnerability] = []
        warnings: List[str] = []
        for contract in contracts:
            if not is_plutus_contract(contract.code):
                warnings.append(f"{contract.filename}: no Plutus imports or validator found")
            vulnerabilities.extend(apply_pattern_rules(contract, CARDANO_RULES, self.platform))
            if use_hlint:
                vulnerabilities.extend(await self._run_hlint(contract, names))
        if not use_hlint:
            warnings.append("HLint not installed; only pattern checks were run")

        tools = ["ghc", "cabal"] + (["hlint"] if use_hlint else [])
        return AnalysisResult(
            success=True,
            vulnerabilities=vulnerabilities,
            warnings=warnings,
            platform_specific={
                "ghc_version": versions["ghc"].version,
                "cabal_version": versions["cabal"].version,
                "contracts_analyzed": len(contracts),
                "plutus_contracts": sum(1 for c in contracts if is_plutus_contract(c.code)),
                "total_lines_of_code": sum(count_lines_of_code(c.code) for c in contracts),
                "analysis_tools": tools,
            },
        )

    async def _run_hlint(self, contract: ContractInput, contract_names: List[str]) -> List[PlatformVulnerability]:
        with self.scratch_directory() as project_dir:
            (project_dir / "contract-analysis.cabal").write_text(CABAL_TEMPLATE, encoding="utf-8")
            (project_dir / "src").mkdir()
            (project_dir / "src" / "Main.hs").write_text(contract.code, encoding="utf-8")
            result = await self.tool_invoker.run(
                "hlint",
                ["--json", "src/"],
                cwd=str(project_dir),
                timeout=self.timeout,
                platform=self.platform,
                contracts=contract_names,
            )

        # hlint exits 1 when it has hints; an empty stdout is a clean pass
        if not result.stdout.strip():
            if result.exit_code not in (0, 1):
                raise PlatformError(
                    PlatformErrorCode.TOOL_EXECUTION_FAILED,
                    f"HLint failed for {contract.filename} with exit code {result.exit_code}",
                    self.platform,
                    {"tool": "hlint", "stderr": result.stderr[-1000:]},
                    transient=True,
                )
            return []
        hints = self._load_hints(result.stdout, contract)
        return [self._hint_to_vulnerability(hint, contract) for hint in hints if isinstance(hint, dict)]

    def _load_hints(self, stdout: str, contract: ContractInput) -> List[Any]:
        try:
            hints = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise PlatformError(
                PlatformErrorCode.TOOL_EXECUTION_FAILED,
                f"Could not parse HLint output for {contract.filename}: {e}",
                self.platform,
                {"tool": "hlint"},
            ) from e
        return hints if isinstance(hints, list) else []

    def _hint_to_vulnerability(self, hint: Dict[str, Any], contract: ContractInput) -> PlatformVulnerability:
        text = str(hint.get("hint", "HLint suggestion"))
        start_column = int(hint.get("startColumn") or 1)
        end_column = hint.get("endColumn")
        replacement: Optional[str] = hint.get("to")
        recommendation = f"Replace '{hint.get('from')}' with '{replacement}'." if replacement else text
        return create_vulnerability(
            platform=self.platform,
            vuln_type=f"hlint-{text.lower().replace(' ', '-')}",
            severity=map_severity(hint.get("severity"), HLINT_SEVERITY_MAP),
            title=text,
            description=f"HLint: {text}" + (f" ({hint.get('note')})" if hint.get("note") else ""),
            location=CodeLocation(
                file=contract.filename,
                line=int(hint.get("startLine") or 1),
                column=start_column,
                length=(int(end_column) - start_column) if end_column else None,
            ),
            recommendation=recommendation,
            confidence=HLINT_CONFIDENCE,
            platform_specific_data={"module": hint.get("module"), "decl": hint.get("decl"), "from": hint.get("from")},
        )

    async def check_syntax(self, contract: ContractInput, result: ValidationResult) -> None:
        code = contract.code
        if "module " not in code:
            result.warnings.append("No Haskell module declaration found")
        if not is_plutus_contract(code):
            result.warnings.append("No Plutus imports or validator definition found")
        if "{-# INLINABLE" not in code and "validator" in code:
            result.warnings.append("Validator functions should be marked INLINABLE for PlutusTx compilation")
