"""CLI entry point for the support orchestrator.

Processes one ticket from the terminal and prints the result as JSON.
For production, use the FastAPI server (support_orchestrator/server.py).

Usage:
    uv run python -m support_orchestrator.main --email jane@acme.com "I was charged twice"
    uv run python -m support_orchestrator.main --stateless --email a@b.com "Reset my password"
    uv run python -m support_orchestrator.main --debug --email a@b.com "..."   # shows API calls
"""

from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        stream=sys.stderr,
    )

    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("support_orchestrator").setLevel(logging.DEBUG if debug else logging.INFO)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Process a support ticket")
    parser.add_argument("message", help="The customer's message")
    parser.add_argument("--email", required=True, help="Customer email address")
    parser.add_argument("--subject", default=None, help="Optional subject line")
    parser.add_argument(
        "--stateless", action="store_true",
        help="Do not store the ticket, logs or customer profile locally",
    )
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run one ticket through the pipeline; returns the process exit code."""
    args = build_parser().parse_args(argv)

    load_dotenv()
    _configure_logging(debug=args.debug)

    # Imported after logging is configured: config is read at import time.
    from support_orchestrator.agent import create_support_orchestrator
    from support_orchestrator.errors import StageFailedError, TicketValidationError

    orchestrator = create_support_orchestrator(stateful=not args.stateless)
    try:
        result = orchestrator.process_ticket(args.message, args.email, subject=args.subject)
    except TicketValidationError as e:
        print(f"Invalid ticket: {e}", file=sys.stderr)
        return 2
    except StageFailedError as e:
        logger.error("%s (%s)", e, e.__cause__)
        for step in e.steps:
            print(f"  {step.step}: {step.status.value} - {step.detail}", file=sys.stderr)
        return 1

    print(result.model_dump_json(indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
