"""Helpers shared by every platform analyzer.

Severity normalisation, vulnerability ids, de-duplication and the
line-oriented pattern rules live here so that findings from different
platforms are keyed and hashed identically.
"""

import hashlib
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from chainaudit.domain.models.contract import (
    CodeLocation,
    ContractInput,
    PlatformVulnerability,
    Severity,
    VulnerabilitySource,
)

SEVERITY_MAP: Dict[str, Severity] = {
    "critical": Severity.CRITICAL,
    "error": Severity.CRITICAL,
    "high": Severity.HIGH,
    "warning": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "low": Severity.LOW,
    "minor": Severity.LOW,
    "info": Severity.INFORMATIONAL,
    "informational": Severity.INFORMATIONAL,
    "note": Severity.INFORMATIONAL,
}

_COMMENTS = r'//[^\n]*|/\*[\s\S]*?\*/'
_DOUBLE_QUOTED = r'"(?:\\.|[^"\\])*"'
# One character or escape between quotes; lifetimes like 'a have no closing quote
_CHAR_LITERAL = r"'(?:\\(?:u\{[0-9a-fA-F]+\}|x[0-9a-fA-F]{2}|.)|[^'\\\n])'"
_SINGLE_QUOTED = r"'(?:\\.|[^'\\\n])*'"

_COMMENTS_AND_STRINGS = re.compile("|".join((_COMMENTS, _DOUBLE_QUOTED, _CHAR_LITERAL)))
_COMMENTS_AND_QUOTED_STRINGS = re.compile("|".join((_COMMENTS, _DOUBLE_QUOTED, _SINGLE_QUOTED)))


def map_severity(
    value: Any,
    table: Optional[Mapping[str, Severity]] = None,
    default: Severity = Severity.MEDIUM,
) -> Severity:
    """Normalises a tool's native severity label; unknown labels map to ``default``."""
    if isinstance(value, Severity):
        return value
    key = str(value or "").strip().lower()
    return (table or SEVERITY_MAP).get(key, default)


def generate_vulnerability_id(platform: str, vuln_type: str, location: CodeLocation, description: str) -> str:
    """Stable id derived from type, location and description."""
    material = f"{vuln_type}-{location.file}-{location.line}-{description}"
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()[:16]
    return f"{platform}-{digest}"


def create_vulnerability(
    platform: str,
    vuln_type: str,
    severity: Severity,
    title: str,
    description: str,
    location: CodeLocation,
    recommendation: str,
    confidence: float,
    source: VulnerabilitySource = VulnerabilitySource.STATIC,
    platform_specific_data: Optional[Dict[str, Any]] = None,
) -> PlatformVulnerability:
    vulnerability = PlatformVulnerability(
        type=vuln_type,
        severity=severity,
        title=title,
        description=description,
        location=location,
        recommendation=recommendation,
        confidence=max(0.0, min(1.0, float(confidence))),
        source=source,
        platform=platform,
        platform_specific_data=platform_specific_data,
    )
    vulnerability.id = generate_vulnerability_id(platform, vuln_type, location, description)
    return vulnerability


def deduplicate_vulnerabilities(vulnerabilities: Iterable[PlatformVulnerability]) -> List[PlatformVulnerability]:
    """Keeps the first vulnerability for each (type, file, line, column) key."""
    seen = set()
    unique: List[PlatformVulnerability] = []
    for vulnerability in vulnerabilities:
        key = vulnerability.dedup_key
        if key in seen:
            continue
        seen.add(key)
        unique.append(vulnerability)
    return unique


def strip_comments_and_strings(code: str, single_quoted_strings: bool = False) -> str:
    """Blanks out comments, string and char literals, keeping line breaks.

    With ``single_quoted_strings`` any single-quoted run is a string (Solidity);
    otherwise only one-character literals such as ``'{'`` are (Rust, Haskell).
    """
    pattern = _COMMENTS_AND_QUOTED_STRINGS if single_quoted_strings else _COMMENTS_AND_STRINGS
    return pattern.sub(lambda m: "\n" * m.group(0).count("\n"), code)


def delimiter_errors(
    code: str,
    pairs: Sequence[str] = ("{}", "()"),
    single_quoted_strings: bool = False,
) -> List[str]:
    """Reports unbalanced delimiter pairs after comments and strings are removed."""
    cleaned = strip_comments_and_strings(code, single_quoted_strings)
    errors = []
    for pair in pairs:
        opening, closing = pair[0], pair[1]
        difference = cleaned.count(opening) - cleaned.count(closing)
        if difference > 0:
            errors.append(f"Unbalanced '{opening}': {difference} more opening than closing")
        elif difference < 0:
            errors.append(f"Unbalanced '{closing}': {-difference} more closing than opening")
    return errors


def count_lines_of_code(code: str) -> int:
    return sum(1 for line in code.splitlines() if line.strip())


@dataclass(frozen=True)
class PatternRule:
    """A line-oriented heuristic check.

    ``pattern`` is matched per line. When ``requires_absent`` is set the rule
    only fires if that pattern occurs nowhere in the contract.
    """
    rule_id: str
    pattern: str
    severity: Severity
    title: str
    description: str
    recommendation: str
    confidence: float = 0.6
    requires_absent: Optional[str] = None


def apply_pattern_rules(
    contract: ContractInput,
    rules: Sequence[PatternRule],
    platform: str,
) -> List[PlatformVulnerability]:
    """Runs every rule over the contract and returns one finding per matching line."""
    findings: List[PlatformVulnerability] = []
    lines = contract.code.splitlines()
    for rule in rules:
        if rule.requires_absent and re.search(rule.requires_absent, contract.code):
            continue
        compiled = re.compile(rule.pattern)
        for line_number, line in enumerate(lines, start=1):
            match = compiled.search(line)
            if not match:
                continue
            findings.append(create_vulnerability(
                platform=platform,
                vuln_type=rule.rule_id,
                severity=rule.severity,
                title=rule.title,
                description=rule.description,
                location=CodeLocation(
                    file=contract.filename,
                    line=line_number,
                    column=match.start() + 1,
                    length=match.end() - match.start(),
                ),
                recommendation=rule.recommendation,
                confidence=rule.confidence,
                platform_specific_data={"rule": rule.rule_id, "snippet": line.strip()[:200]},
            ))
    return findings
