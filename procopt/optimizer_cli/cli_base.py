"""Base CLI Components - Logging setup and rich formatting helpers"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table


class CLILoggingManager:
    """Centralized logging management for CLI operations"""

    def __init__(self, name: str = "procopt_cli", log_dir: Optional[Path] = None):
        self.name = name
        self.log_dir = log_dir
        self.handlers: Dict[str, logging.Handler] = {}
        self._setup_base_logging()

    def _setup_base_logging(self) -> None:
        root_logger = logging.getLogger()
        root_logger.setLevel(logging.DEBUG)

        # Remove existing handlers to avoid duplication
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        detailed_formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        simple_formatter = logging.Formatter(fmt='%(levelname)s - %(message)s')

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(simple_formatter)
        root_logger.addHandler(console_handler)
        self.handlers['console'] = console_handler

        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(self.log_dir / f"{self.name}.log", mode='a', encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(detailed_formatter)
            root_logger.addHandler(file_handler)
            self.handlers['file'] = file_handler

        # Reduce third-party noise
        logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    def set_console_level(self, level: int) -> None:
        if 'console' in self.handlers:
            self.handlers['console'].setLevel(level)

    def enable_verbose_logging(self) -> None:
        """Enable verbose logging (DEBUG level to console)"""
        self.set_console_level(logging.DEBUG)

    def disable_verbose_logging(self) -> None:
        self.set_console_level(logging.WARNING)


# Global logging manager instance
_logging_manager: Optional[CLILoggingManager] = None


def setup_cli_logging(verbose: bool = False, log_dir: Optional[Path] = None) -> CLILoggingManager:
    """Setup CLI logging with optional verbose mode"""
    global _logging_manager

    if _logging_manager is None or (log_dir is not None and _logging_manager.log_dir != log_dir):
        _logging_manager = CLILoggingManager(log_dir=log_dir)

    if verbose:
        _logging_manager.enable_verbose_logging()
    else:
        _logging_manager.disable_verbose_logging()

    return _logging_manager


def format_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.2f}"
    if value is None:
        return "N/A"
    return str(value)


def build_table(title: str, columns: List[str], rows: List[List[Any]]) -> Table:
    """Table with the CLI's consistent styling"""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    for index, column in enumerate(columns):
        table.add_column(column, style="cyan" if index == 0 else "white")
    for row in rows:
        table.add_row(*[format_value(cell) for cell in row])
    return table


def print_key_values(console: Console, title: str, data: Dict[str, Any]) -> None:
    console.print(build_table(title, ["Metric", "Value"], [[key, value] for key, value in data.items()]))
