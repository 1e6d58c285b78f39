# src/taskqueue_mcp/cli/main.py

"""
CLI entrypoint (`taskqueue-cli`).

Parses the subcommand, initializes logging, builds AppState, then runs one
registry operation and prints its result. Stdout carries the result only;
logs go to stderr and the log file.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Sequence

from ..cli.bootstrap import configure_logging, create_initial_state
from ..cli.commands import registry
from ..config import get_settings
from ..core.errors import AppError, format_cli_error

logger = logging.getLogger(__name__)


def run(argv: Sequence[str] | None = None) -> int:
    parser = registry.build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings, console_level=logging.DEBUG if args.verbose else logging.WARNING)
    logger.debug("Starting %s CLI command=%s", settings.app_name, args.command)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    try:
        output = asyncio.run(registry.handle(state, args))
    except AppError as e:
        logger.debug("Command %s failed: %r", args.command, e)
        print(format_cli_error(e), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130

    print(output)
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
