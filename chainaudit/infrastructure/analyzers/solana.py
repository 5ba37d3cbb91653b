"""Solana (Rust/Anchor) analyzer.

Each contract is dropped into a throwaway crate and linted with
``cargo clippy --message-format=json``. Rust and Cargo are required;
Anchor is only reported in the health check.
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
    delimiter_errors,
    map_severity,
)
from chainaudit.infrastructure.tools.subprocess_invoker import probe_version

logger = logging.getLogger(__name__)

CLIPPY_LEVEL_MAP: Dict[str, Severity] = {
    "error": Severity.HIGH,
    "warning": Severity.MEDIUM,
    "note": Severity.LOW,
    "help": Severity.LOW,
}
CLIPPY_CONFIDENCE = 0.8
# Dependencies that cannot be resolved in the scratch crate are not findings
UNRESOLVED_IMPORT_CODES = ("E0432", "E0433")

CLIPPY_RECOMMENDATIONS = {
    "clippy::integer_arithmetic": "Use checked arithmetic operations to prevent overflow",
    "clippy::arithmetic_side_effects": "Use checked arithmetic operations to prevent overflow",
    "clippy::panic": "Avoid panic! in production code, use proper error handling",
    "clippy::unwrap_used": "Avoid unwrap(), use proper error handling with match or if let",
    "clippy::expect_used": "Consider using proper error handling instead of expect()",
    "clippy::indexing_slicing": "Use safe indexing methods like get() instead of direct indexing",
    "clippy::cast_lossless": "Use From/Into traits for lossless conversions",
    "clippy::cast_possible_truncation": "Validate numeric conversions to prevent data loss",
}

ANCHOR_MARKERS = ("use anchor_lang::prelude::*", "#[program]", "anchor_lang::")
SOLANA_MARKERS = ("solana_program::", "use solana_program", "ProgramResult", "AccountInfo")

SOLANA_RULES = (
    PatternRule(
        rule_id="unchecked-arithmetic",
        pattern=r"\w+\s*(\+|-|\*)=\s*\w+",
        severity=Severity.MEDIUM,
        title="Unchecked arithmetic",
        description="Compound arithmetic on account balances can overflow in release builds.",
        recommendation="Use checked_add/checked_sub/checked_mul and handle the None case.",
        confidence=0.45,
    ),
    PatternRule(
        rule_id="anchor-missing-signer",
        pattern=r"\bContext<",
        severity=Severity.HIGH,
        title="Missing Signer Validation",
        description="Instruction context never requires a Signer account.",
        recommendation="Add a Signer<'info> account to the accounts struct.",
        confidence=0.6,
        requires_absent=r"\bSigner\b|is_signer",
    ),
    PatternRule(
        rule_id="missing-owner-validation",
        pattern=r"\bAccountInfo\b",
        severity=Severity.MEDIUM,
        title="Missing Account Owner Validation",
        description="Account usage without proper owner validation.",
        recommendation="Validate account ownership before processing.",
        confidence=0.5,
        requires_absent=r"\bowner\b",
    ),
    PatternRule(
        rule_id="insecure-pda-derivation",
        pattern=r"find_program_address\(.*(user\.key\(\)|\.as_ref\(\))",
        severity=Severity.HIGH,
        title="Insecure PDA Derivation",
        description="PDA seeds are derived from caller-controlled keys without a stored bump.",
        recommendation="Store and verify the canonical bump and include a static seed prefix.",
        confidence=0.5,
        requires_absent=r"\bbump\b",
    ),
)

CARGO_TEMPLATE = """[package]
name = "{name}"
version = "0.1.0"
edition = "2021"

[lib]
crate-type = ["cdylib", "lib"]

[dependencies]
{dependencies}
"""
ANCHOR_DEPENDENCIES = 'anchor-lang = "0.29.0"\nanchor-spl = "0.29.0"\nsolana-program = "1.17.0"'
NATIVE_DEPENDENCIES = 'solana-program = "1.17.0"\nthiserror = "1.0"\nspl-token = "4.0"'


def is_anchor_program(code: str) -> bool:
    return any(marker in code for marker in ANCHOR_MARKERS)


def is_solana_program(code: str) -> bool:
    return is_anchor_program(code) or any(marker in code for marker in SOLANA_MARKERS)


def cargo_manifest(crate_name: str, code: str) -> str:
    dependencies = ANCHOR_DEPENDENCIES if is_anchor_program(code) else NATIVE_DEPENDENCIES
    return CARGO_TEMPLATE.format(name=crate_name, dependencies=dependencies)


class SolanaAnalyzer(BaseBlockchainAnalyzer):
    """Analyzer for Solana programs written in Rust, with or without Anchor."""

    language = "rust"

    def __init__(self, tool_invoker: ToolInvoker, platform: str = "solana", **kwargs: Any):
        super().__init__(platform=platform, tool_invoker=tool_invoker, **kwargs)

    async def _tool_versions(self) -> Dict[str, InstallationCheckResult]:
        return {
            tool: await probe_version(
                self.tool_invoker, tool, ("--version",), timeout=self.health_check_timeout, platform=self.platform
            )
            for tool in ("rustc", "cargo", "anchor")
        }

    async def check_health(self) -> InstallationCheckResult:
        versions = await self._tool_versions()
        if not versions["rustc"].installed:
            return InstallationCheckResult(installed=False, error=f"Rust not installed: {versions['rustc'].error}")
        if not versions["cargo"].installed:
            return InstallationCheckResult(installed=False, error=f"Cargo not installed: {versions['cargo'].error}")

        anchor = versions["anchor"]
        return InstallationCheckResult(
            installed=True,
            version=(
                f"Rust {versions['rustc'].version}, Cargo {versions['cargo'].version}, "
                f"Anchor {anchor.version if anchor.installed else 'not installed'}"
            ),
        )

    async def run_static_analysis(self, contracts: List[ContractInput]) -> AnalysisResult:
        versions = await self._tool_versions()
        for tool in ("rustc", "cargo"):
            if not versions[tool].installed:
                raise PlatformError(
                    PlatformErrorCode.TOOL_INSTALLATION_MISSING,
                    f"{tool} is not installed or not available in PATH",
                    self.platform,
                    {"tool": tool, "detail": versions[tool].error},
                )

        names = [c.filename for c in contracts]
        vulnerabilities: List[PlatformVulnerability] = []
        warnings: List[str] = []
        for contract in contracts:
            if not is_solana_program(contract.code):
                warnings.append(f"{contract.filename}: no Solana or Anchor program markers found")
            vulnerabilities.extend(apply_pattern_rules(contract, SOLANA_RULES, self.platform))
            findings, notes = await self._run_clippy(contract, names)
            vulnerabilities.extend(findings)
            warnings.extend(notes)

        return AnalysisResult(
            success=True,
            vulnerabilities=vulnerabilities,
            warnings=warnings,
            platform_specific={
                "rust_version": versions["rustc"].version,
                "anchor_version": versions["anchor"].version,
                "contracts_analyzed": len(contracts),
                "anchor_programs": sum(1 for c in contracts if is_anchor_program(c.code)),
                "total_lines_of_code": sum(count_lines_of_code(c.code) for c in contracts),
                "analysis_tools": ["clippy", "solana-security-checks"],
            },
        )

    async def _run_clippy(self, contract: ContractInput, contract_names: List[str]):
        with self.scratch_directory() as crate_dir:
            (crate_dir / "Cargo.toml").write_text(
                cargo_manifest(crate_dir.name.lower(), contract.code), encoding="utf-8"
            )
            (crate_dir / "src").mkdir()
            (crate_dir / "src" / "lib.rs").write_text(contract.code, encoding="utf-8")
            result = await self.tool_invoker.run(
                "cargo",
                ["clippy", "--message-format=json", "--", "-W", "clippy::all"],
                cwd=str(crate_dir),
                timeout=self.timeout,
                platform=self.platform,
                contracts=contract_names,
            )

        findings, notes = self.parse_clippy_output(result.stdout, contract)
        if result.exit_code != 0 and not findings and not notes:
            raise PlatformError(
                PlatformErrorCode.TOOL_EXECUTION_FAILED,
                f"cargo clippy failed for {contract.filename} with exit code {result.exit_code}",
                self.platform,
                {"tool": "cargo clippy", "stderr": result.stderr[-1000:]},
            )
        return findings, notes

    def parse_clippy_output(self, stdout: str, contract: ContractInput):
        """Parses cargo's JSON-lines stream into findings and warnings."""
        findings: List[PlatformVulnerability] = []
        notes: List[str] = []
        for line in stdout.splitlines():
            line = line.strip()
            if not line.startswith("{"):
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.debug(f"[{self.platform}] Skipping non-JSON cargo line: {line[:120]}")
                continue
            if entry.get("reason") != "compiler-message":
                continue
            message = entry.get("message") or {}
            code = (message.get("code") or {}).get("code")
            if code in UNRESOLVED_IMPORT_CODES:
                notes.append(f"{contract.filename}: unresolved import skipped ({message.get('message')})")
                continue
            vulnerability = self._clippy_message_to_vulnerability(message, code, contract)
            if vulnerability is not None:
                findings.append(vulnerability)
        return findings, notes

    def _clippy_message_to_vulnerability(
        self,
        message: Dict[str, Any],
        code: Optional[str],
        contract: ContractInput,
    ) -> Optional[PlatformVulnerability]:
        spans = message.get("spans") or []
        if not spans:
            return None
        span = next((s for s in spans if s.get("is_primary")), spans[0])
        level = message.get("level")
        text = str(message.get("message", "")).strip()
        column_start = int(span.get("column_start") or 1)
        column_end = span.get("column_end")
        return create_vulnerability(
            platform=self.platform,
            vuln_type=code or "clippy-warning",
            severity=map_severity(level, CLIPPY_LEVEL_MAP),
            title=f"Clippy: {text}",
            description=text,
            location=CodeLocation(
                file=contract.filename,
                line=int(span.get("line_start") or 1),
                column=column_start,
                length=(int(column_end) - column_start) if column_end else None,
            ),
            recommendation=CLIPPY_RECOMMENDATIONS.get(code or "", "Review and address the Clippy warning"),
            confidence=CLIPPY_CONFIDENCE,
            platform_specific_data={"clippy_code": code, "clippy_level": level},
        )

    async def check_syntax(self, contract: ContractInput, result: ValidationResult) -> None:
        code = contract.code
        result.errors.extend(delimiter_errors(code))
        if not is_solana_program(code):
            result.warnings.append("No Solana program imports or Anchor attributes found")
        if "AccountInfo" in code and "is_signer" not in code:
            result.warnings.append("Consider validating account signers where appropriate")
        if "Pubkey::find_program_address" in code and "bump" not in code:
            result.warnings.append("PDA derivation should use canonical bump seeds")
        if "invoke" in code and "AccountMeta" not in code:
            result.warnings.append("Cross-program invocations should properly validate account metadata")
