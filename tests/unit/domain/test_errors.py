import pytest

from chainaudit.domain.models.errors import (
    PlatformError,
    PlatformErrorCode,
    classify_tool_error,
    translate_exception,
)


def test_timeout_is_retryable_and_has_fallback():
    error = PlatformError(PlatformErrorCode.TOOL_EXECUTION_TIMEOUT, "slither timed out", "ethereum")
    assert error.retryable is True
    assert error.fallback_available is True
    assert str(error) == "[TOOL_EXECUTION_TIMEOUT] ethereum: slither timed out"


def test_missing_tool_is_not_retryable():
    error = PlatformError(PlatformErrorCode.TOOL_INSTALLATION_MISSING, "ghc missing", "cardano")
    assert error.retryable is False
    assert error.fallback_available is True


@pytest.mark.parametrize("transient, expected", [(True, True), (False, False)])
def test_execution_failure_retryable_only_when_transient(transient, expected):
    error = PlatformError(PlatformErrorCode.TOOL_EXECUTION_FAILED, "boom", "solana", transient=transient)
    assert error.retryable is expected


def test_code_accepts_plain_string():
    error = PlatformError("ANALYZER_UNAVAILABLE", "no analyzer", "sui")
    assert error.code is PlatformErrorCode.ANALYZER_UNAVAILABLE


def test_to_dict_omits_original_error():
    error = PlatformError(
        PlatformErrorCode.ANALYZER_UNAVAILABLE,
        "exploded",
        "aptos",
        {"original_error": "RuntimeError('exploded')", "error_type": "RuntimeError"},
    )
    data = error.to_dict()
    assert data["code"] == "ANALYZER_UNAVAILABLE"
    assert data["platform"] == "aptos"
    assert data["context"] == {"error_type": "RuntimeError"}
    assert data["retryable"] is False
    assert data["fallback_available"] is True


def test_with_context_returns_copy():
    error = PlatformError(PlatformErrorCode.TOOL_EXECUTION_FAILED, "bad", "ethereum", {"tool": "slither"}, True)
    extended = error.with_context(contract="A.sol")
    assert extended.context == {"tool": "slither", "contract": "A.sol"}
    assert extended.transient is True
    assert error.context == {"tool": "slither"}


def test_classify_file_not_found_as_missing():
    error = classify_tool_error("slither", FileNotFoundError("No such file"), "ethereum")
    assert error.code == PlatformErrorCode.TOOL_INSTALLATION_MISSING
    assert error.message == "slither is not installed or not available in PATH"
    assert error.context["tool"] == "slither"
    assert error.context["suggestion"] == "pip install slither-analyzer"


def test_classify_command_not_found_text():
    error = classify_tool_error("hlint", "bash: hlint: command not found", "cardano")
    assert error.code == PlatformErrorCode.TOOL_INSTALLATION_MISSING


def test_classify_timeout_text():
    error = classify_tool_error("cargo", "operation timed out", "solana", {"timeout": 5})
    assert error.code == PlatformErrorCode.TOOL_EXECUTION_TIMEOUT
    assert error.message == "cargo execution timed out"
    assert error.context == {"tool": "cargo", "timeout": 5}


def test_classify_other_failures():
    error = classify_tool_error("sui", RuntimeError("exit status 2"), "sui")
    assert error.code == PlatformErrorCode.TOOL_EXECUTION_FAILED
    assert error.message == "sui execution failed: exit status 2"


def test_classify_keeps_existing_platform_error():
    original = PlatformError(PlatformErrorCode.TOOL_EXECUTION_TIMEOUT, "t", "ethereum")
    assert classify_tool_error("slither", original, "ethereum") is original


def test_translate_exception_wraps_unknown_errors():
    error = translate_exception(KeyError("x"), "bsc")
    assert error.code == PlatformErrorCode.ANALYZER_UNAVAILABLE
    assert error.platform == "bsc"
    assert error.context["error_type"] == "KeyError"


def test_translate_exception_keeps_platform_error():
    original = PlatformError(PlatformErrorCode.TOOL_INSTALLATION_MISSING, "m", "polygon")
    assert translate_exception(original, "polygon") is original
