import argparse
import logging
import sys

from src.adapters.clock import SystemClock
from src.adapters.poller import BackgroundPoller
from src.adapters.sqlite.migrator import SQLiteMigrator
from src.api.deps import Settings, build_pass_runner
from src.components.reconciler import StoreUnavailableError
from src.rules.loader import load_rules
from src.rules.models import Rules

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("cli")


def get_rules(settings: Settings) -> Rules:
    if not settings.rules_path.exists():
        logger.error("Rules file %s not found.", settings.rules_path)
        sys.exit(1)
    return load_rules(settings.rules_path)


def handle_migrate(settings: Settings, args: argparse.Namespace) -> None:
    applied = SQLiteMigrator(settings.db_path, settings.migrations_dir).run_migrations()
    print(f"Applied {len(applied)} migrations.")


def handle_publish(settings: Settings, args: argparse.Namespace) -> None:
    rules = get_rules(settings)
    run_pass = build_pass_runner(settings.db_path, rules, SystemClock())
    try:
        result = run_pass("cli")
    except StoreUnavailableError as e:
        logger.error("Publish pass failed: %s", e)
        sys.exit(2)

    print(result.message)
    for err in result.errors:
        print(f"  failed {err.chapter_id}: {err.reason}")
    if result.errors:
        sys.exit(1)


def handle_poll(settings: Settings, args: argparse.Namespace) -> None:
    rules = get_rules(settings)
    interval = args.interval or rules.triggers.poller.interval_seconds
    poller = BackgroundPoller(
        build_pass_runner(settings.db_path, rules, SystemClock()),
        interval_seconds=interval,
    )
    # First pass right away, then on the interval
    poller.run_once()
    poller.start()
    try:
        while poller.is_running and not poller.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        poller.stop()


def handle_serve(settings: Settings, args: argparse.Namespace) -> None:
    import uvicorn

    uvicorn.run("src.api.main:app", host=args.host, port=args.port, reload=args.reload)


def main() -> None:
    parser = argparse.ArgumentParser(description="Story Press CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # migrate
    subparsers.add_parser("migrate", help="Apply pending database migrations")

    # publish_due
    subparsers.add_parser("publish_due", help="Publish scheduled chapters that are due")

    # poll
    poll_parser = subparsers.add_parser("poll", help="Publish due chapters on an interval")
    poll_parser.add_argument(
        "--interval", type=float, default=None, help="Seconds between passes (default: rules)"
    )

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--reload", action="store_true")

    args = parser.parse_args()

    settings = Settings()

    if args.command == "migrate":
        handle_migrate(settings, args)
    elif args.command == "publish_due":
        handle_publish(settings, args)
    elif args.command == "poll":
        handle_poll(settings, args)
    elif args.command == "serve":
        handle_serve(settings, args)


if __name__ == "__main__":
    main()
