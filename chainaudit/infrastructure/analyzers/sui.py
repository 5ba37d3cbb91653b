"""Sui Move analyzer.

Sui Move is object-centric: structs with ``key`` are objects and must
carry an ``id: UID``, and entry functions receive a ``TxContext``.
"""

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

SUI_CLI = "sui"

SUI_RULES = (
    PatternRule(
        rule_id="shared-object",
        pattern=r"\btransfer::(public_)?share_object\b",
        severity=Severity.MEDIUM,
        title="Shared object",
        description="Shared objects can be accessed by any transaction and go through consensus.",
        recommendation="Guard every mutating function on the shared object with a capability check.",
        confidence=0.5,
    ),
    PatternRule(
        rule_id="unchecked-dynamic-field",
        pattern=r"\bdynamic_(object_)?field::(borrow|borrow_mut|remove)\b",
        severity=Severity.MEDIUM,
        title="Dynamic field access without existence check",
        description="Borrowing or removing a missing dynamic field aborts the transaction.",
        recommendation="Call dynamic_field::exists_ before borrowing or removing the field.",
        confidence=0.55,
        requires_absent=r"dynamic_(object_)?field::exists_",
    ),
    PatternRule(
        rule_id="clock-dependence",
        pattern=r"\bclock::timestamp_ms\b",
        severity=Severity.LOW,
        title="Clock timestamp dependence",
        description="Logic depends on the on-chain clock, which has coarse granularity.",
        recommendation="Allow for clock granularity when comparing deadlines.",
        confidence=0.4,
    ),
)

SUI_USAGE_CHECKS = (
    UsageCheck("sui::", "use sui::", "Consider using explicit imports for Sui framework modules"),
    UsageCheck("object::", "object::uid", "Objects should have proper UID management"),
    UsageCheck("transfer::", "transfer::public_transfer",
               "Consider using appropriate transfer functions for object ownership"),
    UsageCheck("dynamic_field::", "dynamic_field::exists_",
               "Dynamic field operations should check existence before access"),
    UsageCheck("clock::", "clock::timestamp_ms", "Clock operations should use proper timestamp functions"),
)

_SUI_MODULE_NAME = re.compile(r"\bmodule\s+\w+::\w+")


class SuiAnalyzer(BaseBlockchainAnalyzer):
    """Analyzer for Sui Move packages."""

    language = "move"

    def __init__(self, tool_invoker: ToolInvoker, platform: str = "sui", **kwargs: Any):
        super().__init__(platform=platform, tool_invoker=tool_invoker, **kwargs)
        self.toolkit = MoveToolkit(platform, SUI_CLI, tool_invoker, self.health_check_timeout)

    async def check_health(self) -> InstallationCheckResult:
        return await self.toolkit.check_cli()

    async def run_static_analysis(self, contracts: List[ContractInput]) -> AnalysisResult:
        cli = await self.toolkit.require_cli()
        logger.debug(f"[{self.platform}] Move CLI {cli.version}; checking {len(contracts)} source file(s)")
        warnings: List[str] = []
        for contract in contracts:
            warnings.extend(f"{contract.filename}: {w}" for w in usage_warnings(contract.code, SUI_USAGE_CHECKS))
        if cli.error:
            warnings.append(cli.error)

        platform_specific = self.toolkit.source_statistics(contracts)
        platform_specific["move_version"] = cli.version
        platform_specific["object_types"] = sum(
            len(re.findall(r"\bstruct\s+\w+[^{]*\bhas\b[^{]*\bkey\b", c.code)) for c in contracts
        )
        return AnalysisResult(
            success=True,
            vulnerabilities=self.toolkit.analyze_sources(contracts, SUI_RULES),
            warnings=warnings,
            platform_specific=platform_specific,
        )

    async def check_syntax(self, contract: ContractInput, result: ValidationResult) -> None:
        code = contract.code
        structure = self.toolkit.structural_checks(contract)
        result.errors.extend(structure.errors)
        result.warnings.extend(structure.warnings)
        if "module " in code and not _SUI_MODULE_NAME.search(code):
            result.warnings.append("Sui modules should use proper naming format (package::module)")
        if "struct " in code and "has key" in code and "id: UID" not in code:
            result.warnings.append("Sui objects with 'key' ability should have an 'id: UID' field")
        if "public entry fun" in code and "TxContext" not in code:
            result.warnings.append("Entry functions should typically include TxContext parameter")
