"""
Command line interface for s3usage.
"""

import argparse
import logging
import os
import sys
from typing import Mapping, Optional, Sequence

from rich.console import Console
from rich.markup import escape

from .aggregation import month_window, previous_month
from .collector import Collector
from .display import (
    average_table,
    history_table,
    monthly_table,
    print_collection_summary,
    print_prune_summary,
)
from .errors import ConfigurationError, NoDataError, S3UsageError
from .models import PRUNE_SCOPES, CollectorConfig, utcnow

logger = logging.getLogger('s3usage')

# Environment variables consulted when a flag is not given
ENV_VARS = {
    'endpoint': 'S3_ENDPOINT',
    'access_key': 'S3_ACCESS_KEY',
    'secret_key': 'S3_SECRET_KEY',
    'region': 'S3_REGION',
    'db_path': 'S3_DB_PATH',
}


def setup_logging(verbosity: int):
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


def build_config(args: argparse.Namespace, environ: Mapping[str, str] = os.environ) -> CollectorConfig:
    """Flags win over environment variables, which win over defaults."""
    values = {}
    for attr, env_name in ENV_VARS.items():
        flag = getattr(args, attr, None)
        if flag:
            values[attr] = flag
        elif environ.get(env_name):
            values[attr] = environ[env_name]

    if args.timeout is not None:
        values['timeout'] = args.timeout
    if args.signing_service:
        values['signing_services'] = tuple(args.signing_service)
    if args.prune_scope:
        values['prune_scope'] = args.prune_scope

    config = CollectorConfig(**values)
    config.validate(require_credentials=False)
    return config


def cmd_collect(args, collector: Collector, console: Console) -> int:
    """Collect usage for all buckets and update the current month's averages."""
    collector.config.validate()
    result = collector.collect(verbose=True)
    print_collection_summary(console, result)
    return 0


def cmd_list(args, collector: Collector, console: Console) -> int:
    """Show monthly averages for all buckets."""
    now = utcnow()
    year, month = args.year, args.month
    # Neither given: previous month. Otherwise fill in from the current date.
    if year is None and month is None:
        year, month = previous_month(now.year, now.month)
    if year is None:
        year = now.year
    if month is None:
        month = now.month

    if not 1 <= month <= 12:
        raise ConfigurationError("Month must be between 1 and 12.")

    averages = collector.list_monthly(year, month)
    if not averages:
        raise NoDataError(f"No data available for {year}-{month:02d}")

    console.print(monthly_table(averages, year, month))
    return 0


def cmd_history(args, collector: Collector, console: Console) -> int:
    """Show raw usage samples for a bucket."""
    now = utcnow()
    start_year, start_month = now.year, now.month
    for _ in range(args.months):
        start_year, start_month = previous_month(start_year, start_month)

    start, _ = month_window(start_year, start_month)
    _, end = month_window(now.year, now.month)

    samples = collector.history(args.bucket_name, start, end)
    if not samples:
        raise NoDataError(f"No usage data available for bucket {args.bucket_name}")

    console.print(history_table(args.bucket_name, samples))
    return 0


def cmd_month(args, collector: Collector, console: Console) -> int:
    """Show one bucket's average for one month."""
    if not 1 <= args.month <= 12:
        raise ConfigurationError("Month must be between 1 and 12.")
    avg = collector.monthly_average(args.bucket_name, args.year, args.month)
    console.print(average_table(avg))
    return 0


def cmd_prune(args, collector: Collector, console: Console) -> int:
    """Prune raw samples of completed, aggregated months."""
    if not args.confirm:
        console.print("This will permanently delete individual data points from months that have "
                      "completed and have calculated monthly averages.\n"
                      "The monthly average statistics will be preserved.")
        response = input("Are you sure you want to continue? (y/N): ")
        if response.strip() not in ('y', 'Y'):
            console.print("Pruning cancelled.")
            return 0

    console.print("Pruning old data points...")
    result = collector.prune()
    print_prune_summary(console, result)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='s3usage',
        description='S3 bucket usage monitor for Ceph RGW',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Collect usage for all buckets (typically from cron)
  %(prog)s --endpoint http://rgw:8080 --access-key KEY --secret-key SECRET collect

  # Monthly averages (default: previous month)
  %(prog)s list
  %(prog)s list --year 2025 --month 1

  # Raw samples for one bucket
  %(prog)s history my-bucket

  # Drop raw samples of completed months that have averages
  %(prog)s prune --confirm

Credentials can also come from S3_ENDPOINT, S3_ACCESS_KEY, S3_SECRET_KEY,
S3_REGION and S3_DB_PATH.
        """
    )

    parser.add_argument('--endpoint', help='RGW endpoint URL (env: S3_ENDPOINT)')
    parser.add_argument('--access-key', dest='access_key', help='S3 access key (env: S3_ACCESS_KEY)')
    parser.add_argument('--secret-key', dest='secret_key', help='S3 secret key (env: S3_SECRET_KEY)')
    parser.add_argument('--region', help='S3 region (env: S3_REGION, default: default)')
    parser.add_argument('--db', dest='db_path',
                        help='Database path (env: S3_DB_PATH, default: ~/.s3usage.duckdb)')
    parser.add_argument('--timeout', type=int,
                        help='Admin API request timeout in seconds (default: 30)')
    parser.add_argument('--signing-service', action='append',
                        help='SigV4 service scope name; repeat to add fallbacks tried on 403 '
                             '(default: s3)')
    parser.add_argument('--prune-scope', choices=PRUNE_SCOPES,
                        help='Prune whole months or only aggregated buckets (default: month)')
    parser.add_argument('--verbose', '-v', action='count', default=0,
                        help='Increase log verbosity')

    subparsers = parser.add_subparsers(dest='command', help='Command')

    # Collect
    collect_p = subparsers.add_parser('collect', help='Collect bucket usage data')
    collect_p.set_defaults(func=cmd_collect)

    # List
    list_p = subparsers.add_parser('list', help='List monthly bucket usage')
    list_p.add_argument('--year', type=int, help='Year to query (default: previous month)')
    list_p.add_argument('--month', type=int, help='Month to query, 1-12 (default: current month)')
    list_p.set_defaults(func=cmd_list)

    # History
    history_p = subparsers.add_parser('history', help='Show usage history for a bucket')
    history_p.add_argument('bucket_name', help='Bucket name')
    history_p.add_argument('--months', type=int, default=12,
                           help='Months of history before the current one (default: 12)')
    history_p.set_defaults(func=cmd_history)

    # Month
    month_p = subparsers.add_parser('month', help="Show one bucket's monthly average")
    month_p.add_argument('bucket_name', help='Bucket name')
    month_p.add_argument('--year', type=int, required=True)
    month_p.add_argument('--month', type=int, required=True)
    month_p.set_defaults(func=cmd_month)

    # Prune
    prune_p = subparsers.add_parser('prune', help='Prune old bucket usage data')
    prune_p.add_argument('--confirm', action='store_true',
                         help='Confirm pruning without prompting')
    prune_p.set_defaults(func=cmd_prune)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args.verbose)
    console = Console()

    collector = None
    try:
        config = build_config(args)
        collector = Collector(config)
        return args.func(args, collector, console)
    except NoDataError as e:
        console.print(escape(str(e)))
        return 0
    except S3UsageError as e:
        logger.error("%s failed: %s", args.command, e)
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        return 1
    finally:
        if collector:
            collector.close()


if __name__ == '__main__':
    sys.exit(main())
