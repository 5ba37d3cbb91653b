"""Error taxonomy shared by every analyzer and orchestration service.

Every failure that leaves an analyzer is represented as exactly one
``PlatformError`` carrying one of the four ``PlatformErrorCode`` values.
"""

import enum
from typing import Any, Dict, Optional, Union


class PlatformErrorCode(str, enum.Enum):
    """Closed set of platform-scoped failure categories."""
    TOOL_INSTALLATION_MISSING = "TOOL_INSTALLATION_MISSING"
    TOOL_EXECUTION_TIMEOUT = "TOOL_EXECUTION_TIMEOUT"
    TOOL_EXECUTION_FAILED = "TOOL_EXECUTION_FAILED"
    ANALYZER_UNAVAILABLE = "ANALYZER_UNAVAILABLE"


# Codes the fallback service may retry. Execution failures only count when
# the raising side marked them transient.
_RETRYABLE_CODES = {PlatformErrorCode.TOOL_EXECUTION_TIMEOUT}

# Codes for which a degraded analysis path still makes sense
_FALLBACK_CODES = {
    PlatformErrorCode.TOOL_INSTALLATION_MISSING,
    PlatformErrorCode.TOOL_EXECUTION_TIMEOUT,
    PlatformErrorCode.TOOL_EXECUTION_FAILED,
    PlatformErrorCode.ANALYZER_UNAVAILABLE,
}

INSTALLATION_SUGGESTIONS: Dict[str, str] = {
    "slither": "pip install slither-analyzer",
    "solc": "pip install solc-select && solc-select install latest",
    "ghc": "Install GHC via ghcup: https://www.haskell.org/ghcup/",
    "cabal": "Install Cabal via ghcup: https://www.haskell.org/ghcup/",
    "hlint": "cabal install hlint",
    "rustc": "Install Rust via rustup: https://rustup.rs/",
    "cargo": "Install Rust via rustup: https://rustup.rs/",
    "anchor": "cargo install --git https://github.com/coral-xyz/anchor avm && avm install latest",
    "aptos": "Install the Aptos CLI: https://aptos.dev/tools/aptos-cli/",
    "sui": "cargo install --locked --git https://github.com/MystenLabs/sui.git sui",
    "move": "Install the Move CLI: https://github.com/move-language/move",
}


class PlatformError(Exception):
    """A failure scoped to one blockchain platform.

    Attributes:
        code: The taxonomy category.
        message: Human readable description.
        platform: Platform identifier the failure belongs to.
        context: Free-form diagnostic metadata (tool, timeout, contracts, ...).
        transient: Marks an execution failure as safe to retry.
    """

    def __init__(
        self,
        code: PlatformErrorCode,
        message: str,
        platform: str,
        context: Optional[Dict[str, Any]] = None,
        transient: bool = False,
    ):
        self.code = PlatformErrorCode(code)
        self.message = message
        self.platform = platform
        self.context: Dict[str, Any] = dict(context or {})
        self.transient = transient
        super().__init__(f"[{self.code.value}] {platform}: {message}")

    @property
    def retryable(self) -> bool:
        if self.code in _RETRYABLE_CODES:
            return True
        return self.code == PlatformErrorCode.TOOL_EXECUTION_FAILED and self.transient

    @property
    def fallback_available(self) -> bool:
        return self.code in _FALLBACK_CODES

    def with_context(self, **extra: Any) -> "PlatformError":
        """Returns a copy of this error with additional context entries."""
        merged = {**self.context, **extra}
        return PlatformError(self.code, self.message, self.platform, merged, self.transient)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "platform": self.platform,
            "context": {k: v for k, v in self.context.items() if k != "original_error"},
            "retryable": self.retryable,
            "fallback_available": self.fallback_available,
        }


def classify_tool_error(
    tool: str,
    error: Union[BaseException, str],
    platform: str,
    context: Optional[Dict[str, Any]] = None,
) -> PlatformError:
    """Maps a raw tool failure onto the taxonomy by inspecting its message.

    Args:
        tool: Name of the executable that failed.
        error: The exception raised or the error text produced.
        platform: Platform identifier.
        context: Extra context merged into the resulting error.

    Returns:
        A PlatformError with the tool name and an install suggestion in its context.
    """
    if isinstance(error, PlatformError):
        return error

    text = str(error)
    lowered = text.lower()
    merged: Dict[str, Any] = {"tool": tool, **(context or {})}

    if isinstance(error, FileNotFoundError) or "command not found" in lowered or "not found" in lowered:
        merged["suggestion"] = INSTALLATION_SUGGESTIONS.get(tool, f"Install {tool} and make sure it is on PATH")
        return PlatformError(
            PlatformErrorCode.TOOL_INSTALLATION_MISSING,
            f"{tool} is not installed or not available in PATH",
            platform,
            merged,
        )
    if "timeout" in lowered or "timed out" in lowered:
        return PlatformError(
            PlatformErrorCode.TOOL_EXECUTION_TIMEOUT,
            f"{tool} execution timed out",
            platform,
            merged,
        )
    return PlatformError(
        PlatformErrorCode.TOOL_EXECUTION_FAILED,
        f"{tool} execution failed: {text}",
        platform,
        merged,
    )


def translate_exception(error: BaseException, platform: str) -> PlatformError:
    """Converts any exception into a PlatformError, keeping existing ones as-is."""
    if isinstance(error, PlatformError):
        return error
    message = str(error) or type(error).__name__
    return PlatformError(
        PlatformErrorCode.ANALYZER_UNAVAILABLE,
        message,
        platform,
        {"original_error": repr(error), "error_type": type(error).__name__},
    )
