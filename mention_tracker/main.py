"""Main entry point for the mention tracker."""

import argparse
import asyncio
import json
import logging
import sys

from .config import Config, load_config
from .jobs import StoryStateJobType, build_context, run_party_selection_timeout, run_story_state_worker
from .services import DatabaseService, open_database
from .webhook_server import create_webhook_app


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


async def run_webhook_server(args, logger, config: Config, db_service: DatabaseService) -> int:
    """Run webhook server."""
    import uvicorn

    context = build_context(config, db_service)
    app = create_webhook_app(config, context)

    host = args.host or config.service.host
    port = args.port or config.service.port
    logger.info("Starting webhook server on %s:%d...", host, port)

    uvicorn_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info" if args.verbose else "warning",
    )
    server = uvicorn.Server(uvicorn_config)
    await server.serve()
    return 0


async def run_state_worker(args, logger, config: Config, db_service: DatabaseService) -> int:
    """Run one verification and/or expiry sweep."""
    context = build_context(config, db_service)
    results = await run_story_state_worker(context, args.type)
    print(json.dumps(results, indent=2))
    return 1 if _has_errors(results) else 0


async def run_timeout_worker(args, logger, config: Config, db_service: DatabaseService) -> int:
    """Run one party selection timeout sweep."""
    context = build_context(config, db_service)
    results = await run_party_selection_timeout(context)
    print(json.dumps(results, indent=2))
    return 1 if results.get("errors") else 0


def _has_errors(results: dict) -> bool:
    return any(
        isinstance(section, dict) and section.get("errors") for section in results.values()
    )


COMMANDS = {
    "serve": run_webhook_server,
    "state-worker": run_state_worker,
    "timeout-worker": run_timeout_worker,
}


async def async_main(args, logger) -> int:
    """Load config, open the database and run the selected command."""
    db_service: DatabaseService | None = None
    try:
        logger.info("Loading configuration from %s", args.config)
        config = load_config(args.config)

        logger.info("Initializing database at %s", config.service.database_url)
        db_service = await open_database(config.service.database_url)
        logger.info("Database initialized successfully")

        if args.command == "init-db":
            return 0
        return await COMMANDS[args.command](args, logger, config, db_service)

    except FileNotFoundError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1
    finally:
        # Database is None if startup failed before it was opened
        if db_service is not None:
            await db_service.close()
            logger.info("Database connection closed")


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Instagram story mention tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s serve                             # Run webhook server with config.yaml
  %(prog)s -c prod.yaml serve --port 9000    # Custom config and port
  %(prog)s state-worker --type verification  # One verification sweep
  %(prog)s state-worker                      # Verification and expiry sweeps
  %(prog)s timeout-worker                    # Time out unanswered party selections
  %(prog)s init-db                           # Create database tables
        """,
    )

    parser.add_argument(
        "-c",
        "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose/debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the webhook server")
    serve.add_argument("--host", default=None, help="Bind address (default: service.host)")
    serve.add_argument("--port", type=int, default=None, help="Port (default: service.port)")

    state_worker = subparsers.add_parser("state-worker", help="Run story state sweeps once")
    state_worker.add_argument(
        "--type",
        choices=[job_type.value for job_type in StoryStateJobType],
        default=StoryStateJobType.BOTH.value,
        help="Which sweep to run (default: both)",
    )

    subparsers.add_parser("timeout-worker", help="Run the party selection timeout sweep once")
    subparsers.add_parser("init-db", help="Create database tables and exit")

    args = parser.parse_args()

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    return asyncio.run(async_main(args, logger))


if __name__ == "__main__":
    sys.exit(main())
