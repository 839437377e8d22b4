"""
Skyrapport command line

File Purpose: Entry point wiring settings, session, store, sync and analytics together
Primary Functions/Classes: main, build_parser, build_engine
Inputs and Outputs (I/O): Terminal input/output, settings/session files, SQLite database

Commands:
    login                       Authenticate with an app password and save the session
    sync [--incremental]        Run a full (or incremental) sync
    status                      Show per-stage sync state
    noise [--threshold]         Accounts with high volume and little engagement from you
    reciprocity [--threshold]   Accounts you engage with who rarely engage back
    cleanup [--days]            Evict posts older than the retention horizon
    reset                       Drop all local data
"""

import argparse
import logging
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from rich.logging import RichHandler
from rich.prompt import Confirm, Prompt
from rich.table import Table

from .analytics import AnalyticsCache, AnalyticsEngine
from .auth import AuthManager
from .exceptions import SkyrapportError, handle_error
from .models import console
from .network import BlueskyClient, Deadline, RateLimiter
from .settings import SettingsManager, load_environment
from .storage import Repository, SQLiteStore
from .sync import SyncOrchestrator

logger = logging.getLogger(__name__)


class Engine:
    """Everything one command needs, built from settings."""

    def __init__(self, settings_file: Optional[Path] = None):
        self.settings_manager = SettingsManager(settings_file)
        self.settings = self.settings_manager.settings
        self.credentials = load_environment(self.settings)
        self.auth = AuthManager(Path(self.settings.session_file).expanduser())
        self.auth.load_session()

        self.repository = Repository(SQLiteStore(Path(self.settings.db_path).expanduser()))
        self.limiter = RateLimiter(
            self.settings.max_requests,
            self.settings.window_seconds,
            self.settings.min_delay_seconds,
        )
        self.client = BlueskyClient(
            self.limiter,
            session=self.auth.session,
            public_base=self.settings.public_api_base,
            timeout=self.settings.http_timeout,
            page_size=self.settings.page_size,
        )
        self.analytics = AnalyticsCache(
            AnalyticsEngine(self.repository), self.repository, ttl=self.settings.cache_ttl
        )
        self.orchestrator = SyncOrchestrator(
            self.client,
            self.repository,
            settings=self.settings,
            cache=self.analytics,
        )

    def refresh_session(self) -> None:
        """Rotate stored tokens before a run and hand them to the API client."""
        session = self.auth.require_session()
        if session.refresh_jwt:
            session = self.auth.refresh_session()
            self.auth.save_session()
        self.client.set_session(session)


def build_engine(settings_file: Optional[Path] = None) -> Engine:
    return Engine(settings_file)


def _format_time(ms: Optional[int]) -> str:
    if not ms:
        return "never"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def cmd_login(engine: Engine, args) -> int:
    handle = args.handle or engine.credentials.get("handle")
    if not handle:
        handle = Prompt.ask("[bold white]Bluesky handle[/]")
    password = engine.credentials.get("app_password") or Prompt.ask(
        "[bold white]App Password[/]", password=True
    )
    session = engine.auth.login(handle, password)
    engine.auth.save_session()
    console.print(f"Logged in as @{session.handle}.")
    return 0


def cmd_sync(engine: Engine, args) -> int:
    engine.refresh_session()
    deadline = Deadline(args.timeout)
    previous = signal.signal(signal.SIGINT, lambda *_: deadline.cancel())
    try:
        if args.incremental:
            report = engine.orchestrator.run_incremental_sync(deadline)
        else:
            report = engine.orchestrator.run_full_sync(deadline=deadline)
    finally:
        signal.signal(signal.SIGINT, previous)

    table = Table(title="Sync complete")
    table.add_column("Stage", style="cyan")
    table.add_column("Items", justify="right")
    for key, count in report.counts.items():
        table.add_row(key, str(count))
    console.print(table)
    if report.end_stats:
        console.print(
            f"[dim]Rate limit: {report.end_stats.used} used, "
            f"{report.end_stats.remaining} remaining[/]"
        )
    return 0


def cmd_status(engine: Engine, args) -> int:
    summary = engine.orchestrator.status()
    table = Table(title="Sync status")
    table.add_column("Stage", style="cyan")
    table.add_column("Status")
    table.add_column("Last sync")
    table.add_column("Items", justify="right")
    table.add_column("Error", style="red")
    for state in engine.orchestrator.tracker.all():
        table.add_row(
            state.key,
            state.status.value,
            _format_time(state.last_sync_at),
            str(state.items_processed),
            state.error or "",
        )
    console.print(table)
    console.print(f"Last full sync: {_format_time(summary.last_full_sync)}")
    if summary.is_any_running:
        console.print("[yellow]A sync appears to be running (or was interrupted).[/]")
    console.print(
        f"[dim]{engine.repository.count_profiles()} profiles, "
        f"{engine.repository.count_posts()} posts, "
        f"{engine.repository.count_interactions()} interactions, "
        f"{engine.repository.count_engagements()} engagements[/]"
    )
    return 0


def cmd_noise(engine: Engine, args) -> int:
    threshold = engine.settings.noise_threshold if args.threshold is None else args.threshold
    outliers = engine.analytics.noise_outliers(threshold)
    if not outliers:
        console.print("No noisy accounts above the threshold.")
        return 0

    table = Table(title=f"Noise outliers (score > {threshold:.2f})")
    table.add_column("Handle", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Posts", justify="right")
    table.add_column("Volume pct", justify="right")
    table.add_column("Engagement", justify="right")
    table.add_column("Mutual")
    for s in outliers[: args.limit]:
        table.add_row(
            f"@{s.handle}" if s.handle else s.did,
            f"{s.score:.2f}",
            str(s.post_count),
            f"{s.volume_percentile:.0%}",
            f"{s.engagement_rate:.0%}",
            "yes" if s.is_mutual else "no",
        )
    console.print(table)
    return 0


def cmd_reciprocity(engine: Engine, args) -> int:
    threshold = (
        engine.settings.reciprocity_threshold if args.threshold is None else args.threshold
    )
    accounts = engine.analytics.non_reciprocal(threshold)
    if not accounts:
        console.print("No one-sided relationships below the threshold.")
        return 0

    table = Table(title=f"Non-reciprocal accounts (score < {threshold:.2f})")
    table.add_column("Handle", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("You", justify="right")
    table.add_column("Them", justify="right")
    for s in accounts[: args.limit]:
        table.add_row(
            f"@{s.handle}" if s.handle else s.did,
            f"{s.score:.2f}",
            str(s.your_engagement),
            str(s.their_engagement),
        )
    console.print(table)
    return 0


def cmd_cleanup(engine: Engine, args) -> int:
    removed = engine.orchestrator.cleanup_old_data(args.days)
    console.print(f"Removed {removed} old posts.")
    return 0


def cmd_reset(engine: Engine, args) -> int:
    if not args.yes and not Confirm.ask("Delete all local data?", default=False):
        return 1
    engine.repository.reset_all()
    console.print("Local data cleared.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="skyrapport",
        description="Sync your Bluesky graph and score relationship quality.",
    )
    parser.add_argument("--settings", type=Path, help="Path to a settings JSON file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Authenticate and save the session")
    login.add_argument("--handle", help="Bluesky handle")
    login.set_defaults(func=cmd_login)

    sync = sub.add_parser("sync", help="Run a sync")
    sync.add_argument("--incremental", action="store_true", help="Only the last day")
    sync.add_argument("--timeout", type=float, default=None, help="Abort after N seconds")
    sync.set_defaults(func=cmd_sync)

    status = sub.add_parser("status", help="Show sync state")
    status.set_defaults(func=cmd_status)

    noise = sub.add_parser("noise", help="List noisy accounts")
    noise.add_argument("--threshold", type=float, default=None)
    noise.add_argument("--limit", type=int, default=50)
    noise.set_defaults(func=cmd_noise)

    reciprocity = sub.add_parser("reciprocity", help="List one-sided relationships")
    reciprocity.add_argument("--threshold", type=float, default=None)
    reciprocity.add_argument("--limit", type=int, default=50)
    reciprocity.set_defaults(func=cmd_reciprocity)

    cleanup = sub.add_parser("cleanup", help="Evict old posts")
    cleanup.add_argument("--days", type=int, default=None, help="Retention in days")
    cleanup.set_defaults(func=cmd_cleanup)

    reset = sub.add_parser("reset", help="Drop all local data")
    reset.add_argument("--yes", action="store_true", help="Skip confirmation")
    reset.set_defaults(func=cmd_reset)
    return parser


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    try:
        engine = build_engine(args.settings)
        return args.func(engine, args)
    except SkyrapportError as e:
        handle_error(console, e, args.command.capitalize(), show_details=args.verbose)
        return 1


if __name__ == "__main__":
    sys.exit(main())
