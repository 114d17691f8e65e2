from .cli import main_cli
from .cli_base import CLILoggingManager, setup_cli_logging

__all__ = [
    "main_cli",
    "CLILoggingManager",
    "setup_cli_logging",
]
