"""Shared Move-language support used by the Aptos and Sui analyzers.

The Move platforms differ in their CLI and in a few framework-specific
checks; the structural checks, the common pattern rules and the CLI
version probing live in ``MoveToolkit``, which each analyzer holds.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Sequence

from chainaudit.domain.interfaces.tool_invoker import ToolInvoker
from chainaudit.domain.models.common import DEFAULT_HEALTH_CHECK_TIMEOUT_S
from chainaudit.domain.models.contract import (
    ContractInput,
    InstallationCheckResult,
    PlatformVulnerability,
    Severity,
    ValidationResult,
)
from chainaudit.domain.models.errors import PlatformError, PlatformErrorCode
from chainaudit.infrastructure.analyzers.findings import (
    PatternRule,
    apply_pattern_rules,
    count_lines_of_code,
    delimiter_errors,
    strip_comments_and_strings,
)
from chainaudit.infrastructure.tools.subprocess_invoker import probe_version

logger = logging.getLogger(__name__)

STANDALONE_MOVE_CLI = "move"

_MODULE_DECLARATION = re.compile(r"\bmodule\s+([\w:]+)")
_STRUCT_DECLARATION = re.compile(r"\bstruct\s+(\w+)[^{]*\{")
_HAS_ABILITIES = re.compile(r"\bhas\s+([\w\s,]+)")
_FUNCTION = re.compile(r"\b(public(?:\([^)]*\))?\s+(?:entry\s+)?fun)\s+(\w+)[^{]*\{")

MOVE_COMMON_RULES = (
    PatternRule(
        rule_id="magic-abort-code",
        pattern=r"\babort\s+\d+|assert!\([^;]*,\s*\d+\s*\)",
        severity=Severity.INFORMATIONAL,
        title="Numeric abort code",
        description="Abort codes written as literals are hard to map back to error conditions.",
        recommendation="Declare named error constants (const E_...: u64) and use them in abort/assert!.",
        confidence=0.7,
    ),
    PatternRule(
        rule_id="mutable-global-borrow",
        pattern=r"\bborrow_global_mut\s*<",
        severity=Severity.LOW,
        title="Mutable borrow of global storage",
        description="The function mutates a global resource; make sure only authorised signers reach it.",
        recommendation="Check the signer's address before borrowing global state mutably.",
        confidence=0.5,
    ),
    PatternRule(
        rule_id="unrestricted-entry",
        pattern=r"\bpublic\s+entry\s+fun\s+\w+\s*\(\s*\)",
        severity=Severity.MEDIUM,
        title="Entry function without parameters",
        description="An entry function takes no signer or arguments and can be called by anyone.",
        recommendation="Accept a &signer and check the caller if the function changes state.",
        confidence=0.5,
    ),
)


@dataclass(frozen=True)
class UsageCheck:
    """Warns when ``uses`` appears in a module but ``expects`` does not."""
    uses: str
    expects: str
    message: str

    def applies_to(self, code: str) -> bool:
        return self.uses in code and self.expects not in code


def usage_warnings(code: str, checks: Sequence[UsageCheck]) -> List[str]:
    return [check.message for check in checks if check.applies_to(code)]


class MoveToolkit:
    """Move structural checks, common rules and CLI probing for one platform."""

    def __init__(
        self,
        platform: str,
        cli: str,
        tool_invoker: ToolInvoker,
        health_check_timeout: float = DEFAULT_HEALTH_CHECK_TIMEOUT_S,
    ):
        self.platform = platform
        self.cli = cli
        self.tool_invoker = tool_invoker
        self.health_check_timeout = health_check_timeout

    async def check_cli(self) -> InstallationCheckResult:
        """Probes the platform CLI, then the standalone Move CLI as a fallback."""
        primary = await probe_version(
            self.tool_invoker, self.cli, ("--version",), timeout=self.health_check_timeout, platform=self.platform
        )
        if primary.installed:
            return primary

        fallback = await probe_version(
            self.tool_invoker, STANDALONE_MOVE_CLI, ("--version",), timeout=self.health_check_timeout,
            platform=self.platform,
        )
        if fallback.installed:
            logger.info(f"[{self.platform}] {self.cli} CLI unavailable, falling back to {STANDALONE_MOVE_CLI}")
            return InstallationCheckResult(
                installed=True,
                version=fallback.version,
                error=f"{self.cli} CLI not available; using the standalone Move CLI",
            )
        return InstallationCheckResult(
            installed=False,
            error=f"Neither {self.cli} nor {STANDALONE_MOVE_CLI} CLI is available: {primary.error}",
        )

    async def require_cli(self) -> InstallationCheckResult:
        """Like check_cli but raises when no Move CLI is installed."""
        result = await self.check_cli()
        if not result.installed:
            raise PlatformError(
                PlatformErrorCode.TOOL_INSTALLATION_MISSING,
                result.error or f"{self.cli} CLI is not installed",
                self.platform,
                {"tool": self.cli},
            )
        return result

    @staticmethod
    def module_names(code: str) -> List[str]:
        return _MODULE_DECLARATION.findall(strip_comments_and_strings(code))

    def structural_checks(self, contract: ContractInput) -> ValidationResult:
        """Checks shared by every Move dialect."""
        code = contract.code
        cleaned = strip_comments_and_strings(code)
        result = ValidationResult()

        if not _MODULE_DECLARATION.search(cleaned):
            result.warnings.append("No Move module declaration found")
        result.errors.extend(delimiter_errors(code, pairs=("{}",)))

        for match in _STRUCT_DECLARATION.finditer(cleaned):
            header = cleaned[match.start():match.end()]
            abilities = _HAS_ABILITIES.search(header)
            ability_set = {a.strip() for a in abilities.group(1).split(",")} if abilities else set()
            if "resource" in cleaned[max(0, match.start() - 10):match.start()] and "key" not in ability_set:
                result.warnings.append(f"Resource struct '{match.group(1)}' has no 'key' ability for storage")

        for match in _FUNCTION.finditer(cleaned):
            body_start = match.end()
            body = cleaned[body_start:self._block_end(cleaned, body_start)]
            header = cleaned[match.start():match.end()]
            if re.search(r"\bborrow_global(_mut)?\s*<", body) and "acquires" not in header:
                result.warnings.append(f"Function '{match.group(2)}' borrows global storage without 'acquires'")

        result.is_valid = not result.errors
        return result

    @staticmethod
    def _block_end(code: str, start: int) -> int:
        depth = 1
        for index in range(start, len(code)):
            if code[index] == "{":
                depth += 1
            elif code[index] == "}":
                depth -= 1
                if depth == 0:
                    return index
        return len(code)

    def analyze_sources(
        self,
        contracts: Sequence[ContractInput],
        platform_rules: Sequence[PatternRule] = (),
    ) -> List[PlatformVulnerability]:
        rules = tuple(MOVE_COMMON_RULES) + tuple(platform_rules)
        findings: List[PlatformVulnerability] = []
        for contract in contracts:
            findings.extend(apply_pattern_rules(contract, rules, self.platform))
        return findings

    def source_statistics(self, contracts: Sequence[ContractInput]) -> dict:
        return {
            "contracts_analyzed": len(contracts),
            "modules": [name for c in contracts for name in self.module_names(c.code)],
            "total_lines_of_code": sum(count_lines_of_code(c.code) for c in contracts),
        }
