import dataclasses

import pytest

from chainaudit.domain.models.contract import (
    CodeLocation,
    ContractInput,
    PlatformVulnerability,
    Severity,
    VulnerabilitySource,
)


def test_severity_rank_is_ordered():
    ranks = [s.rank for s in (Severity.INFORMATIONAL, Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)]
    assert ranks == sorted(ranks)
    assert Severity.CRITICAL.rank > Severity.HIGH.rank


@pytest.mark.parametrize("value, expected", [
    ("HIGH", Severity.HIGH),
    (" critical ", Severity.CRITICAL),
    (Severity.LOW, Severity.LOW),
    ("severe", Severity.MEDIUM),
    (None, Severity.MEDIUM),
])
def test_severity_parse(value, expected):
    assert Severity.parse(value, Severity.MEDIUM) == expected


def test_contract_size_counts_utf8_bytes():
    contract = ContractInput(filename="a.sol", code="é", platform="ethereum")
    assert contract.size_bytes == 2


@pytest.mark.parametrize("filename, expected", [
    ("contracts/Token.sol", "Token"),
    ("C:\\work\\Vault.move", "Vault"),
    ("README", "README"),
    (".sol", "Contract"),
])
def test_contract_name(filename, expected):
    assert ContractInput(filename=filename, code="x", platform="ethereum").contract_name == expected


def test_contract_input_is_immutable():
    contract = ContractInput(filename="a.sol", code="x", platform="ethereum")
    with pytest.raises(dataclasses.FrozenInstanceError):
        contract.code = "y"


def test_dedup_key_uses_type_and_position():
    vulnerability = PlatformVulnerability(
        type="reentrancy",
        severity=Severity.HIGH,
        title="t",
        description="d",
        location=CodeLocation(file="a.sol", line=4, column=9),
        recommendation="r",
        confidence=0.9,
        source=VulnerabilitySource.STATIC,
        platform="ethereum",
    )
    assert vulnerability.dedup_key == ("reentrancy", "a.sol", 4, 9)
