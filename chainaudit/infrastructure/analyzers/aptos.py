"""Aptos Move analyzer."""

import logging
import re
from typing import Any, List

from chainaudit.domain.interfaces.tool_invoker import ToolInvoker
from chainaudit.domain.models.contract import (
    AnalysisResult,
    ContractInput,
    InstallationCheckResult,
    Severity,
    ValidationResult,
)
from chainaudit.infrastructure.analyzers.base import BaseBlockchainAnalyzer
from chainaudit.infrastructure.analyzers.findings import PatternRule
from chainaudit.infrastructure.analyzers.move_support import MoveToolkit, UsageCheck, usage_warnings

logger = logging.getLogger(__name__)

APTOS_CLI = "aptos"

APTOS_RULES = (
    PatternRule(
        rule_id="unregistered-coin-transfer",
        pattern=r"\bcoin::(transfer|deposit)\b",
        severity=Severity.MEDIUM,
        title="Coin transfer without registration check",
        description="Depositing into an account that never registered the coin type aborts the transaction.",
        recommendation="Check coin::is_account_registered before transferring or depositing coins.",
        confidence=0.5,
        requires_absent=r"coin::is_account_registered",
    ),
    PatternRule(
        rule_id="timestamp-dependence",
        pattern=r"\btimestamp::now_(seconds|microseconds)\b",
        severity=Severity.LOW,
        title="Block timestamp dependence",
        description="Validators influence block timestamps within a tolerance window.",
        recommendation="Avoid using the timestamp for randomness or tight deadlines.",
        confidence=0.4,
    ),
    PatternRule(
        rule_id="resource-account-signer",
        pattern=r"\bcreate_resource_account\b|\bresource_account::",
        severity=Severity.HIGH,
        title="Resource account without signer validation",
        description="Resource account capabilities are used but no signer address is ever checked.",
        recommendation="Validate signer::address_of(account) before using resource account capabilities.",
        confidence=0.55,
        requires_absent=r"signer::address_of",
    ),
)

APTOS_USAGE_CHECKS = (
    UsageCheck("aptos_framework::", "use aptos_framework::",
               "Consider using explicit imports for Aptos framework modules"),
    UsageCheck("coin::", "coin::is_account_registered", "Coin operations should check if account is registered"),
    UsageCheck("event::", "event::emit", "Event modules should emit events for important state changes"),
    UsageCheck("public entry fun", "&signer", "Entry functions typically require a signer parameter"),
)

_APTOS_MODULE_ADDRESS = re.compile(r"\bmodule\s+(0x[a-fA-F0-9]+|@?\w+)::\w+")


class AptosAnalyzer(BaseBlockchainAnalyzer):
    """Analyzer for Aptos Move modules."""

    language = "move"

    def __init__(self, tool_invoker: ToolInvoker, platform: str = "aptos", **kwargs: Any):
        super().__init__(platform=platform, tool_invoker=tool_invoker, **kwargs)
        self.toolkit = MoveToolkit(platform, APTOS_CLI, tool_invoker, self.health_check_timeout)

    async def check_health(self) -> InstallationCheckResult:
        return await self.toolkit.check_cli()

    async def run_static_analysis(self, contracts: List[ContractInput]) -> AnalysisResult:
        cli = await self.toolkit.require_cli()
        logger.debug(f"[{self.platform}] Move CLI {cli.version}; checking {len(contracts)} source file(s)")
        warnings: List[str] = []
        for contract in contracts:
            warnings.extend(f"{contract.filename}: {w}" for w in usage_warnings(contract.code, APTOS_USAGE_CHECKS))
        if cli.error:
            warnings.append(cli.error)

        platform_specific = self.toolkit.source_statistics(contracts)
        platform_specific["move_version"] = cli.version
        return AnalysisResult(
            success=True,
            vulnerabilities=self.toolkit.analyze_sources(contracts, APTOS_RULES),
            warnings=warnings,
            platform_specific=platform_specific,
        )

    async def check_syntax(self, contract: ContractInput, result: ValidationResult) -> None:
        structure = self.toolkit.structural_checks(contract)
        result.errors.extend(structure.errors)
        result.warnings.extend(structure.warnings)
        if "module " in contract.code and not _APTOS_MODULE_ADDRESS.search(contract.code):
            result.warnings.append("Aptos modules should use proper address format (0x...)")
