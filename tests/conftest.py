import pytest
from typer.testing import CliRunner
from unittest.mock import MagicMock

from chainaudit.domain.interfaces.tool_invoker import ToolInvoker
from chainaudit.domain.interfaces.user_interface import UserInterface
from chainaudit.domain.models.contract import ContractInput, ToolResult
from chainaudit.domain.models.errors import classify_tool_error
from chainaudit.infrastructure.config.settings import clear_test_config


class FakeToolInvoker(ToolInvoker):
    """In-memory ToolInvoker.

    ``responses`` maps a command to a ToolResult, an exception to raise, or a
    callable ``(args, cwd) -> ToolResult``. Unknown commands behave like a
    missing executable.
    """

    def __init__(self):
        self.responses = {}
        self.available = set()
        self.calls = []

    async def run(self, command, args, cwd=None, timeout=120.0, platform="unknown", contracts=()):
        self.calls.append((command, list(args)))
        response = self.responses.get(command)
        if response is None:
            raise classify_tool_error(command, FileNotFoundError(command), platform)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(list(args), cwd)
        return response

    def is_available(self, command):
        return command in self.available


def tool_output(stdout="", stderr="", exit_code=0):
    return ToolResult(stdout=stdout, stderr=stderr, exit_code=exit_code)


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def tool_invoker():
    return FakeToolInvoker()


@pytest.fixture
def output():
    """Builds ToolResult values: ``output(stdout, stderr, exit_code)``."""
    return tool_output


@pytest.fixture
def mock_ui():
    return MagicMock(spec=UserInterface)


@pytest.fixture
def solidity_contract():
    code = (
        "pragma solidity ^0.8.0;\n"
        "contract Vault {\n"
        "    mapping(address => uint) balances;\n"
        "    function withdraw() public {\n"
        "        (bool ok, ) = msg.sender.call{value: balances[msg.sender]}(\"\");\n"
        "        balances[msg.sender] = 0;\n"
        "    }\n"
        "}\n"
    )
    return ContractInput(filename="Vault.sol", code=code, platform="ethereum", language="solidity")


@pytest.fixture(autouse=True)
def isolate_settings(monkeypatch):
    """Keeps provider keys and test overrides from leaking between tests."""
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    yield
    clear_test_config()
