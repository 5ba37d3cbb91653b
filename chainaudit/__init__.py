"""chainaudit: multi-chain smart contract analysis orchestration."""

__version__ = "0.1.0"
