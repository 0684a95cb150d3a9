"""Command line entry point for the Flarum to Discourse migration."""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .exceptions import MigrationError
from .models.migration import MigrationConfig
from .orchestrator import MigrationOrchestrator
from .services.markup import transcode

logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Flarum to Discourse migration - import users, tags and posts"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run migration
    run_parser = subparsers.add_parser("run", help="Run (or resume) the migration")
    run_parser.add_argument("--config", help="Path to a JSON config file (defaults to environment variables)")
    run_parser.add_argument("--dry-run", action="store_true", help="Simulate without changes")
    run_parser.add_argument("--batch-size", type=int, help="Records per batch")
    run_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    # Preview markup conversion
    transcode_parser = subparsers.add_parser("transcode", help="Convert a stored Flarum post body")
    transcode_parser.add_argument("input", help="File holding the raw post XML ('-' for stdin)")

    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if args.command == "run":
        return run_migration(args)
    elif args.command == "transcode":
        return run_transcode(args)

    parser.print_help()
    return 2


def load_config(args) -> MigrationConfig:
    """Build the configuration from ``--config`` or the environment."""
    if args.config:
        with open(args.config) as f:
            config = MigrationConfig.from_dict(json.load(f))
    else:
        config = MigrationConfig.from_env()

    if args.dry_run:
        config.dry_run = True
    if args.batch_size:
        config.batch_size = args.batch_size
    return config


def run_migration(args) -> int:
    """Run a migration; returns the process exit code."""
    config = load_config(args)

    try:
        with MigrationOrchestrator(config) as orchestrator:
            result = orchestrator.run_migration()
    except MigrationError as e:
        print(f"\nMIGRATION ABORTED: {e}", file=sys.stderr)
        return 1

    totals = result.totals()
    print("\n" + "=" * 60)
    print("MIGRATION COMPLETE" + (" (dry run)" if result.dry_run else ""))
    print("=" * 60)
    print(f"Status: {result.status.value}")
    print(f"Records Processed: {totals['processed']}")
    print(f"Created: {totals['created']}")
    print(f"Already Mapped: {totals['already_mapped']}")
    print(f"Skipped: {totals['skipped']}")
    print(f"Failed: {totals['failed']}")
    if result.duration_seconds:
        print(f"Duration: {result.duration_seconds:.2f} seconds")
    return 0


def run_transcode(args) -> int:
    """Print the Discourse markdown for a raw Flarum post body."""
    if args.input == "-":
        raw = sys.stdin.read()
    else:
        with open(args.input, encoding="utf-8") as f:
            raw = f.read()

    print(transcode(raw))
    return 0


if __name__ == "__main__":
    sys.exit(main())
