#!/usr/bin/env python3
"""
ProcOpt - Main Entry Point

Runs the click command group with CLI logging configured.
"""

import sys

from .cli_base import setup_cli_logging


def main():
    """
    Main entry point - runs the CLI command group
    """
    try:
        setup_cli_logging(verbose=False)

        from .cli import main_cli
        main_cli()

    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(130)


if __name__ == '__main__':
    main()
