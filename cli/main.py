"""CLI entry point."""

import asyncio
import os
import shlex
import sys

from common.logging_config import setup_logging
from cli.repl import repl_loop, run_once


def main() -> None:
    """
    Entry point for CLI.

    Without arguments the interactive REPL starts; otherwise the arguments
    are run as one command, e.g. `chunkvault backup ~/Documents`.
    """
    log_level = 'DEBUG' if '--debug' in sys.argv else os.getenv('LOG_LEVEL', 'INFO')

    logger = setup_logging('cli', log_level=log_level)

    if '--debug' in sys.argv:
        logger.info("Debug logging enabled")
        sys.argv.remove('--debug')

    logger.info("CLI starting...")
    try:
        if len(sys.argv) > 1:
            print(asyncio.run(run_once(shlex.join(sys.argv[1:]))))
        else:
            asyncio.run(repl_loop())
    except Exception as e:
        logger.error(f"CLI error: {e}", exc_info=True)
        raise
    finally:
        logger.info("CLI exiting")


if __name__ == "__main__":
    main()
