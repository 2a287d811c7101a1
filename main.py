"""Command-line interface for the Acme invoice dashboard."""

from __future__ import annotations
import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from acme_dashboard.auth_store import AuthStore
from acme_dashboard.config import Settings, load_settings
from acme_dashboard.database import Database

logger = logging.getLogger("acme.dashboard.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Acme dashboard utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (default: DASHBOARD_CONFIG)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Create the dashboard and auth tables")
    subparsers.add_parser("seed", help="Load placeholder users, customers and invoices")

    serve_parser = subparsers.add_parser("serve", help="Start the dashboard web server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to listen on (default: 8000)",
    )
    serve_parser.add_argument(
        "--reload",
        action="store_true",
        help="Restart the server when source files change",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "seed"}

    # Global options come before the command.
    leading: list[str] = []
    if len(args_list) >= 2 and args_list[0] == "--config":
        leading, args_list = args_list[:2], args_list[2:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args([*leading, *args_list])
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args([*leading, *args_list])
            args_list = ["serve", *args_list]

    return parser.parse_args([*leading, *args_list])


def _load_settings(config: str | None) -> Settings:
    return load_settings(config_path=Path(config).expanduser() if config else None)


def _initialise_databases(settings: Settings) -> Database:
    database = Database(settings.database_path)
    database.initialize()
    AuthStore(settings.auth_database_path, secret=settings.secret).initialize()
    logger.info(
        "Databases initialised at %s and %s",
        settings.database_path,
        settings.auth_database_path,
    )
    return database


def _seed(database: Database) -> None:
    from acme_dashboard import placeholder_data

    database.seed(
        users=placeholder_data.USERS,
        customers=placeholder_data.CUSTOMERS,
        invoices=placeholder_data.INVOICES,
        revenue=placeholder_data.REVENUE,
    )
    logger.info(
        "Seeded %d users, %d customers, %d invoices",
        len(placeholder_data.USERS),
        len(placeholder_data.CUSTOMERS),
        len(placeholder_data.INVOICES),
    )


def _serve(*, settings: Settings, host: str, port: int, reload: bool) -> None:
    import uvicorn

    if not settings.secret:
        raise SystemExit("AUTH_SECRET must be set before starting the dashboard.")

    logger.info("Starting dashboard on http://%s:%s", host, port)

    if reload:
        # The reloader imports the app by name, so settings come from the environment.
        uvicorn.run(
            "acme_dashboard:create_app",
            factory=True,
            host=host,
            port=port,
            log_level="info",
            reload=True,
        )
        return

    from acme_dashboard import create_app

    app = create_app(settings=settings, initialize_database=False)
    uvicorn.run(app, host=host, port=port, log_level="info")


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    settings = _load_settings(args.config)
    database = _initialise_databases(settings)

    if args.command == "serve":
        _serve(settings=settings, host=args.host, port=args.port, reload=args.reload)
    elif args.command == "seed":
        _seed(database)
        print("Placeholder data loaded.")
    elif args.command == "init-db":
        print("Database initialisation complete.")


if __name__ == "__main__":
    main()
