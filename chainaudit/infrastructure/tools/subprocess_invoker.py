"""Runs external analysis tools as time-boxed subprocesses.

Every invocation races the process against a timer; on expiry the process
is killed (best effort) and a TOOL_EXECUTION_TIMEOUT PlatformError is raised.
"""

import asyncio
import logging
import os
import re
import shutil
import time
from typing import Dict, Optional, Sequence

from chainaudit.domain.interfaces.tool_invoker import ToolInvoker
from chainaudit.domain.models.common import DEFAULT_ANALYSIS_TIMEOUT_S, DEFAULT_HEALTH_CHECK_TIMEOUT_S
from chainaudit.domain.models.contract import InstallationCheckResult, ToolResult
from chainaudit.domain.models.errors import PlatformError, PlatformErrorCode, classify_tool_error

logger = logging.getLogger(__name__)

_VERSION_PATTERN = re.compile(r"\d+\.\d+")
KILL_WAIT_TIMEOUT_S = 5.0


class SubprocessToolInvoker(ToolInvoker):
    """ToolInvoker backed by ``asyncio.create_subprocess_exec``."""

    def __init__(self, env: Optional[Dict[str, str]] = None):
        """Initializes the invoker.

        Args:
            env: Extra environment variables merged over ``os.environ`` for
                every child process.
        """
        self._env = {**os.environ, **env} if env else None

    def is_available(self, command: str) -> bool:
        return shutil.which(command) is not None

    async def run(
        self,
        command: str,
        args: Sequence[str],
        cwd: Optional[str] = None,
        timeout: float = DEFAULT_ANALYSIS_TIMEOUT_S,
        platform: str = "unknown",
        contracts: Sequence[str] = (),
    ) -> ToolResult:
        argv = [command, *args]
        logger.debug(f"Running tool: {' '.join(argv)} (cwd={cwd}, timeout={timeout}s)")
        start_time = time.perf_counter()

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env,
            )
        except FileNotFoundError as e:
            logger.warning(f"Tool '{command}' not found: {e}")
            raise classify_tool_error(command, e, platform, {"command": command}) from e
        except OSError as e:
            logger.error(f"Failed to start tool '{command}': {e}")
            raise PlatformError(
                PlatformErrorCode.TOOL_EXECUTION_FAILED,
                f"Failed to start {command}: {e}",
                platform,
                {"tool": command, "command": " ".join(argv)},
            ) from e

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError as e:
            await self._kill(process, command)
            logger.warning(f"Tool '{command}' timed out after {timeout}s")
            raise PlatformError(
                PlatformErrorCode.TOOL_EXECUTION_TIMEOUT,
                f"{command} timed out after {timeout}s",
                platform,
                {"tool": command, "timeout": timeout, "contracts": list(contracts)},
            ) from e

        duration = time.perf_counter() - start_time
        exit_code = process.returncode if process.returncode is not None else -1
        stdout = (stdout_bytes or b"").decode("utf-8", errors="replace")
        stderr = (stderr_bytes or b"").decode("utf-8", errors="replace")
        logger.debug(f"Tool '{command}' exited with {exit_code} in {duration:.2f}s")
        if stderr:
            logger.debug(f"{command} stderr: {stderr[:2000]}")
        return ToolResult(stdout=stdout, stderr=stderr, exit_code=exit_code, duration=duration)

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process, command: str) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            pass  # already exited
        except Exception as e:
            logger.error(f"Failed to kill timed out process '{command}': {e}")
        # reap the child so it does not linger as a zombie
        try:
            await asyncio.wait_for(process.wait(), timeout=KILL_WAIT_TIMEOUT_S)
        except (asyncio.TimeoutError, ProcessLookupError, OSError) as e:
            logger.warning(f"Could not reap killed process '{command}': {e}")


async def probe_version(
    invoker: ToolInvoker,
    command: str,
    args: Sequence[str] = ("--version",),
    timeout: float = DEFAULT_HEALTH_CHECK_TIMEOUT_S,
    platform: str = "unknown",
) -> InstallationCheckResult:
    """Runs a version query and reports whether the tool answered sensibly.

    Args:
        invoker: Invoker used to run the query.
        command: Executable to probe.
        args: Version-query arguments.
        timeout: Budget in seconds.
        platform: Platform id for error context.

    Returns:
        ``installed=True`` with the first output line as version when the tool
        exits with code 0 and prints something that looks like a version.
    """
    try:
        result = await invoker.run(command, list(args), timeout=timeout, platform=platform)
    except PlatformError as e:
        return InstallationCheckResult(installed=False, error=e.message)

    output = (result.stdout.strip() or result.stderr.strip())
    if result.exit_code != 0:
        return InstallationCheckResult(
            installed=False,
            error=f"{command} {' '.join(args)} exited with code {result.exit_code}",
        )
    first_line = output.splitlines()[0].strip() if output else ""
    if not _VERSION_PATTERN.search(first_line):
        return InstallationCheckResult(
            installed=False,
            error=f"Unrecognised version output from {command}: {first_line!r}",
        )
    return InstallationCheckResult(installed=True, version=first_line)
