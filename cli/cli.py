# cli/cli.py
"""
CLI registry and dispatcher for lead feedback commands.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select

from lead_feedback.core.exceptions import FeedbackError
from lead_feedback.core.logging import configure_structlog
from lead_feedback.db.session import (
    create_schema,
    dispose_engine,
    health_check,
    read_session,
    transaction_session,
)
from lead_feedback.models import Broker
from lead_feedback.models.feedback import FEEDBACK_STATUSES
from lead_feedback.services.analytics_engine import (
    get_dashboard,
    get_issue_analysis,
    get_lead_score_correlation,
    get_rating_trend,
    get_response_time_analytics,
    get_status_distribution,
    get_system_overview,
    resolve_window,
    with_timeout,
)
from lead_feedback.services.analytics_export import EXPORT_FORMATS, export_analytics
from lead_feedback.services.broker_stats import refresh_broker_stats, verify_broker_stats
from lead_feedback.services.feedback_queries import get_feedback_analytics, get_recent_feedback
from lead_feedback.services.feedback_submission import parse_submission, submit_feedback


# Output formatting utilities
def _supports_color() -> bool:
    """Check if terminal supports ANSI color codes."""
    if sys.platform == "win32":
        return os.getenv("TERM") == "xterm" or os.getenv("ANSICON") is not None
    return sys.stdout.isatty()


SUPPORTS_COLOR = _supports_color()

# ANSI color codes
GREEN = '\033[92m' if SUPPORTS_COLOR else ''
RED = '\033[91m' if SUPPORTS_COLOR else ''
YELLOW = '\033[93m' if SUPPORTS_COLOR else ''
BLUE = '\033[94m' if SUPPORTS_COLOR else ''
RESET = '\033[0m' if SUPPORTS_COLOR else ''


def print_success(message: str):
    """Print success message with [✓] symbol."""
    print(f"{GREEN}[✓]{RESET} {message}")


def print_error(message: str):
    """Print error message with [✗] symbol."""
    print(f"{RED}[✗]{RESET} {message}")


def print_warning(message: str):
    """Print warning message with [!] symbol."""
    print(f"{YELLOW}[!]{RESET} {message}")


def print_info(message: str):
    """Print info message with [i] symbol."""
    print(f"{BLUE}[i]{RESET} {message}")


def print_json(data: Any):
    print(json.dumps(data, indent=2, default=str))


def _window_from_args(args: argparse.Namespace):
    return resolve_window(
        args.start,
        args.end,
        broker_external_id=getattr(args, 'broker', None),
        limit=getattr(args, 'limit', None),
    )


# Command functions
async def cmd_init_db(args: argparse.Namespace) -> int:
    """Command: Create the leads, brokers and feedback tables."""
    print_info("Creating database schema...")
    await create_schema()
    print_success("Schema created")
    return 0


async def cmd_submit(args: argparse.Namespace) -> int:
    """Command: Record one feedback event."""
    if args.json_file:
        data = json.loads(Path(args.json_file).read_text(encoding="utf-8"))
    else:
        data = {
            'external_lead_id': args.lead,
            'external_broker_id': args.broker,
            'rating': args.rating,
            'status': args.status,
            'issues': args.issue or [],
            'comments': args.comments or "",
            'lead_score': args.lead_score,
            'form_completion_time': args.completion_time,
        }

    submission = parse_submission(data)
    result = await submit_feedback(None, submission)

    print_success(f"Feedback {result.feedback_id} recorded")
    print_info(f"  Lead: {result.external_lead_id}  Broker: {result.external_broker_id}")
    return 0


async def cmd_recent(args: argparse.Namespace) -> int:
    """Command: Show the newest feedback."""
    async with read_session() as session:
        rows = await get_recent_feedback(session, limit=args.limit)

    if not rows:
        print_warning("No feedback recorded yet")
        return 0

    for row in rows:
        issues = ", ".join(row.issues) or "-"
        print_info(
            f"{row.submitted_at:%Y-%m-%d %H:%M} {row.external_lead_id} -> {row.external_broker_id} "
            f"rating={row.rating} status={row.status} issues={issues}"
        )
    return 0


REPORTS: Dict[str, Callable] = {
    'overview': get_system_overview,
    'dashboard': get_dashboard,
    'ratings': get_rating_trend,
    'issues': get_issue_analysis,
    'statuses': get_status_distribution,
    'scores': get_lead_score_correlation,
    'response-times': get_response_time_analytics,
    'feedback': get_feedback_analytics,
}


def _jsonable(result: Any) -> Any:
    if hasattr(result, 'model_dump'):
        return result.model_dump(mode='json')
    if isinstance(result, list):
        return [_jsonable(item) for item in result]
    if isinstance(result, dict):
        return {str(key): _jsonable(value) for key, value in result.items()}
    return result


async def cmd_analytics(args: argparse.Namespace) -> int:
    """Command: Run one analytics report over a window."""
    window = _window_from_args(args)
    report = REPORTS[args.report]

    async with read_session() as session:
        result = await with_timeout(report(session, window))

    print_json(_jsonable(result))
    return 0


async def cmd_export(args: argparse.Namespace) -> int:
    """Command: Export analytics as JSON or CSV."""
    window = _window_from_args(args)

    async with read_session() as session:
        rendered = await with_timeout(export_analytics(session, window, args.format))

    if args.output:
        Path(args.output).write_text(rendered, encoding="utf-8")
        print_success(f"Exported {args.format} to {args.output}")
    else:
        sys.stdout.write(rendered)
        if not rendered.endswith("\n"):
            sys.stdout.write("\n")
    return 0


async def cmd_broker_stats(args: argparse.Namespace) -> int:
    """Command: Refresh or verify a broker's cached aggregates."""
    if args.verify:
        async with read_session() as session:
            broker_id = (
                await session.execute(select(Broker.id).where(Broker.external_id == args.broker))
            ).scalar_one_or_none()
            if broker_id is None:
                print_error(f"Unknown broker: {args.broker}")
                return 1
            consistent = await verify_broker_stats(session, broker_id)

        if consistent:
            print_success(f"Aggregates for {args.broker} match the feedback ledger")
            return 0
        print_error(f"Aggregates for {args.broker} have drifted; run without --verify to refresh")
        return 1

    async with transaction_session() as session:
        broker_id = (
            await session.execute(select(Broker.id).where(Broker.external_id == args.broker))
        ).scalar_one_or_none()
        if broker_id is None:
            print_error(f"Unknown broker: {args.broker}")
            return 1
        stats = await refresh_broker_stats(session, broker_id)

    print_success(
        f"{args.broker}: {stats.total_feedback_count} feedback, average rating {stats.average_rating:.2f}"
    )
    return 0


async def cmd_health(args: argparse.Namespace) -> int:
    """Command: Check database connectivity."""
    print_info("Checking database...")
    result = await health_check()

    if result['status'] == 'healthy':
        database = result.get('database', {})
        print_success(f"Database: connected ({database.get('database', 'unknown')})")
        return 0
    print_error(f"Database: {result['status']}")
    if result.get('error'):
        print_error(f"  Error: {result['error']}")
    return 1


# Command registry
COMMANDS: Dict[str, Callable] = {
    'init-db': cmd_init_db,
    'submit': cmd_submit,
    'recent': cmd_recent,
    'analytics': cmd_analytics,
    'export': cmd_export,
    'broker-stats': cmd_broker_stats,
    'health': cmd_health,
}


def _add_window_arguments(parser: argparse.ArgumentParser):
    parser.add_argument('--start', type=datetime.fromisoformat, help='Window start (ISO 8601)')
    parser.add_argument('--end', type=datetime.fromisoformat, help='Window end (ISO 8601)')
    parser.add_argument('--broker', help='Restrict to one broker external id')
    parser.add_argument('--limit', type=int, help='Maximum issue tags to report')


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser with all commands."""
    parser = argparse.ArgumentParser(
        description='Lead Feedback CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    # init-db
    subparsers.add_parser('init-db', help='Create database schema')

    # submit
    submit_parser = subparsers.add_parser('submit', help='Record one feedback event')
    submit_parser.add_argument('--json-file', help='Read the submission from a JSON file')
    submit_parser.add_argument('--lead', help='Lead external id')
    submit_parser.add_argument('--broker', help='Broker external id')
    submit_parser.add_argument('--rating', type=int, help='Rating 1-5')
    submit_parser.add_argument('--status', choices=FEEDBACK_STATUSES, help='Lead status')
    submit_parser.add_argument('--issue', action='append', help='Issue tag (repeatable)')
    submit_parser.add_argument('--comments', help='Free-text comments')
    submit_parser.add_argument('--lead-score', type=float, help='Lead score seen by the broker')
    submit_parser.add_argument('--completion-time', type=int, help='Form completion time in seconds')

    # recent
    recent_parser = subparsers.add_parser('recent', help='Show the newest feedback')
    recent_parser.add_argument('--limit', type=int, default=10, help='Number of rows')

    # analytics
    analytics_parser = subparsers.add_parser('analytics', help='Run an analytics report')
    analytics_parser.add_argument('report', choices=sorted(REPORTS), help='Report to run')
    _add_window_arguments(analytics_parser)

    # export
    export_parser = subparsers.add_parser('export', help='Export analytics')
    export_parser.add_argument('--format', choices=EXPORT_FORMATS, default='json', help='Output format')
    export_parser.add_argument('--output', help='Write to file instead of stdout')
    _add_window_arguments(export_parser)

    # broker-stats
    stats_parser = subparsers.add_parser('broker-stats', help='Refresh or verify broker aggregates')
    stats_parser.add_argument('broker', help='Broker external id')
    stats_parser.add_argument('--verify', action='store_true', help='Only compare against the ledger')

    # health
    subparsers.add_parser('health', help='Database health check')

    return parser


async def _run(command_func: Callable, args: argparse.Namespace) -> int:
    try:
        return await command_func(args)
    finally:
        await dispose_engine()


def main(args: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()

    if args is None:
        parsed_args = parser.parse_args()
    else:
        parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    command_func = COMMANDS.get(parsed_args.command)
    if not command_func:
        print_error(f"Unknown command: {parsed_args.command}")
        parser.print_help()
        return 1

    configure_structlog()

    try:
        return asyncio.run(_run(command_func, parsed_args))
    except FeedbackError as e:
        print_error(f"{e.code}: {e.message}")
        for error in e.details.get('errors', []):
            if isinstance(error, dict):
                print_error(f"  {error.get('field')}: {error.get('message')}")
            else:
                print_error(f"  {error}")
        if e.retryable:
            print_warning("The operation can be retried")
        return 1
    except KeyboardInterrupt:
        print_error("\nInterrupted by user")
        return 130
    except Exception as e:
        print_error(f"Error executing command: {str(e)}")
        import traceback
        if os.getenv('DEBUG'):
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
