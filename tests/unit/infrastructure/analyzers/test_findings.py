import re

from chainaudit.domain.models.contract import CodeLocation, ContractInput, Severity, VulnerabilitySource
from chainaudit.infrastructure.analyzers.findings import (
    PatternRule,
    apply_pattern_rules,
    count_lines_of_code,
    create_vulnerability,
    deduplicate_vulnerabilities,
    delimiter_errors,
    generate_vulnerability_id,
    map_severity,
)


def _finding(vuln_type, line, source=VulnerabilitySource.STATIC, description="d"):
    return create_vulnerability(
        platform="ethereum",
        vuln_type=vuln_type,
        severity=Severity.HIGH,
        title="t",
        description=description,
        location=CodeLocation(file="A.sol", line=line, column=1),
        recommendation="r",
        confidence=0.9,
        source=source,
    )


def test_map_severity_defaults_to_medium():
    assert map_severity("Warning") == Severity.HIGH
    assert map_severity("note") == Severity.INFORMATIONAL
    assert map_severity("weird") == Severity.MEDIUM
    assert map_severity("weird", default=Severity.LOW) == Severity.LOW
    assert map_severity(Severity.CRITICAL) == Severity.CRITICAL


def test_vulnerability_id_is_stable_and_prefixed():
    location = CodeLocation(file="A.sol", line=3)
    first = generate_vulnerability_id("ethereum", "reentrancy", location, "desc")
    second = generate_vulnerability_id("ethereum", "reentrancy", location, "desc")
    assert first == second
    assert re.fullmatch(r"ethereum-[0-9a-f]{16}", first)
    assert generate_vulnerability_id("ethereum", "reentrancy", location, "other") != first


def test_create_vulnerability_clamps_confidence():
    vulnerability = create_vulnerability(
        "sui", "x", Severity.LOW, "t", "d", CodeLocation(file="a.move"), "r", confidence=1.7,
    )
    assert vulnerability.confidence == 1.0
    assert vulnerability.id.startswith("sui-")


def test_deduplicate_keeps_first_occurrence():
    static = _finding("reentrancy", 5)
    ai_duplicate = _finding("reentrancy", 5, VulnerabilitySource.AI, description="AI wording")
    other_line = _finding("reentrancy", 9)
    result = deduplicate_vulnerabilities([static, ai_duplicate, other_line])
    assert result == [static, other_line]
    assert result[0].source == VulnerabilitySource.STATIC


def test_delimiter_errors_ignore_comments_and_strings():
    code = 'contract A {\n  // }}}\n  string s = "{{";\n  /* ( */ function f() {}\n}\n'
    assert delimiter_errors(code) == []
    assert delimiter_errors("contract A {\n function f() {\n}") == ["Unbalanced '{': 1 more opening than closing"]
    assert delimiter_errors("f())", pairs=("()",)) == ["Unbalanced ')': 1 more closing than opening"]


def test_delimiter_errors_ignore_char_literals_but_not_lifetimes():
    code = "fn open() -> char { '{' }\nfn f<'a>(x: &'a str) -> char { '\\'' }\n"
    assert delimiter_errors(code) == []
    assert delimiter_errors("fn f<'a>(x: &'a str) {") == ["Unbalanced '{': 1 more opening than closing"]


def test_delimiter_errors_ignore_single_quoted_strings():
    code = "contract A {\n  string s = '{{ (';\n  string t = 'it\\'s }';\n}\n"
    assert delimiter_errors(code, single_quoted_strings=True) == []
    assert delimiter_errors(code) != []


def test_count_lines_of_code_skips_blank_lines():
    assert count_lines_of_code("a\n\n  \nb\n") == 2


def test_pattern_rules_report_line_and_column():
    contract = ContractInput(filename="lib.rs", code="fn a() {\n    let x = y.unwrap();\n}\n", platform="solana")
    rule = PatternRule("unwrap", r"\.unwrap\(\)", Severity.LOW, "Unwrap", "desc", "fix")
    findings = apply_pattern_rules(contract, [rule], "solana")
    assert len(findings) == 1
    assert findings[0].location.line == 2
    assert findings[0].location.column == 14
    assert findings[0].location.length == 9
    assert findings[0].platform_specific_data["snippet"] == "let x = y.unwrap();"


def test_pattern_rule_suppressed_when_required_absent_pattern_present():
    rule = PatternRule("no-check", r"validator", Severity.HIGH, "t", "d", "r", requires_absent=r"txSignedBy")
    unsafe = ContractInput(filename="V.hs", code="validator = True", platform="cardano")
    safe = ContractInput(filename="V.hs", code="validator = txSignedBy info pkh", platform="cardano")
    assert len(apply_pattern_rules(unsafe, [rule], "cardano")) == 1
    assert apply_pattern_rules(safe, [rule], "cardano") == []
