"""
CLI entry point for ABAI Batch (`abai-batch` / `python -m abai_batch.cli`).

Logging is configured and API keys are loaded from .env files before the
click group runs, so problems with the environment are reported with the
same log format as the commands.
"""

import sys
import logging

from .utils import setup_logging


def __setup_cli_environment(verbose=False):
    """Load API keys from .env files for CLI usage."""
    from ..core.utils.environment import setup_environment

    try:
        setup_environment(verbose=verbose)
    except OSError as e:
        # API keys might still be set system-wide
        logging.warning(f"Could not read .env files: {e}")


def main():
    """Main CLI entry point."""
    verbose = '-v' in sys.argv or '--verbose' in sys.argv
    quiet = '-q' in sys.argv or '--quiet' in sys.argv

    setup_logging(verbose=verbose, quiet=quiet)
    __setup_cli_environment(verbose=verbose)

    try:
        from .cli import cli
        cli()
    except KeyboardInterrupt:
        logging.info("Interrupted. Unfinished jobs can be resumed with 'abai-batch resume'.")
        sys.exit(130)  # Standard exit code for SIGINT


if __name__ == '__main__':
    main()
