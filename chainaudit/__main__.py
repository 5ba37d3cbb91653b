"""Allows running the CLI with ``python -m chainaudit``."""

from chainaudit.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
