"""Interface for running external command-line tools."""

import abc
from typing import Optional, Sequence

from ..models.common import DEFAULT_ANALYSIS_TIMEOUT_S
from ..models.contract import ToolResult


class ToolInvoker(abc.ABC):
    """Abstract Base Class for time-boxed external program execution."""

    @abc.abstractmethod
    async def run(
        self,
        command: str,
        args: Sequence[str],
        cwd: Optional[str] = None,
        timeout: float = DEFAULT_ANALYSIS_TIMEOUT_S,
        platform: str = "unknown",
        contracts: Sequence[str] = (),
    ) -> ToolResult:
        """Runs ``command`` with ``args`` and captures its output.

        Args:
            command: Executable name or path.
            args: Argument list.
            cwd: Working directory for the process.
            timeout: Budget in seconds.
            platform: Platform id recorded on any raised error.
            contracts: Contract filenames being processed, recorded on timeout.

        Returns:
            The captured stdout, stderr and exit code. A non-zero exit code is
            not an error at this level.

        Raises:
            PlatformError: TOOL_EXECUTION_TIMEOUT when the budget is exceeded,
                TOOL_INSTALLATION_MISSING when the executable does not exist,
                TOOL_EXECUTION_FAILED when the process cannot be started.
        """
        pass

    @abc.abstractmethod
    def is_available(self, command: str) -> bool:
        """Returns True when ``command`` resolves to an executable."""
        pass
