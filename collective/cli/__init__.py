"""Command line interface for claude-code-collective.

Key Components:
    - cli: The click command group
    - main: Console script entry point
    - log_command: Command lifecycle logging decorator
"""

from collective.cli.logging import (
    CollectiveLogFormatter,
    CommandLogger,
    get_command_logger,
    log_command,
    reset_logging,
    setup_file_logging,
)
from collective.cli.app import cli, main

__all__ = [
    "cli",
    "main",
    "CollectiveLogFormatter",
    "CommandLogger",
    "get_command_logger",
    "log_command",
    "reset_logging",
    "setup_file_logging",
]
