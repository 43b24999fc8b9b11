"""
Command-line interface for error-feedback.

Actions: start, stop, status, cleanup.
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from pydantic import ValidationError

from error_feedback.config import ConfigManager, parse_max_age
from error_feedback.daemon import ErrorFeedbackDaemon
from error_feedback.errors import LockError
from error_feedback.lifecycle import DaemonLifecycle
from error_feedback.models import DaemonStatus
from error_feedback.paths import BundlePaths


def _load_settings(args):
    """Settings from the config file with CLI overrides applied."""
    config_manager = ConfigManager(args.config)
    return config_manager.update_settings(
        poll_interval_ms=getattr(args, "poll_interval", None)
    )


def cmd_start(args):
    """Start the daemon in the foreground (or run one batch with --once)."""
    try:
        settings = _load_settings(args)
    except ValidationError as e:
        print(f"❌ Invalid settings: {e}", file=sys.stderr)
        return 1

    paths = BundlePaths.from_env()
    lifecycle = DaemonLifecycle(paths=paths, settings=settings)

    try:
        lifecycle.ensure_dirs()
    except OSError as e:
        print(f"❌ Cannot create bundle directories under {paths.root}: {e}", file=sys.stderr)
        return 1

    if args.once:
        daemon = ErrorFeedbackDaemon(paths=paths, settings=settings)
        result = daemon.run_once()
        if result is None:
            print("❌ Batch run failed (see log)", file=sys.stderr)
            return 1
        print(f"✅ Batch complete: {result.processed} processed, "
              f"{result.resolved} resolved, {result.failed + result.errored} failed, "
              f"{result.retried} retrying, {result.quarantined} quarantined")
        if result.remaining:
            print(f"📋 Remaining: {result.remaining} bundle(s)")
        return 0

    existing = lifecycle.status()
    if existing.status == DaemonStatus.RUNNING and existing.pid not in (None, os.getpid()):
        print(f"⚠️  Error feedback daemon already running (PID {existing.pid})")
        return 1

    try:
        daemon = lifecycle.start()
    except LockError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    state = daemon.get_state()
    print("=" * 60)
    print("🎯 Error Feedback Daemon")
    print("=" * 60)
    print(f"   Status:  {state.status.value}")
    print(f"   Started: {state.started_at or 'unknown'}")
    print(f"   PID:     {state.pid or os.getpid()}")
    print(f"   Pending: {paths.pending}")
    print(f"   Poll:    {settings.poll_interval_ms}ms")
    print("\nWatching for error bundles... Press Ctrl+C to stop.")

    daemon.serve_forever()
    lifecycle.stop()

    print("\n🛑 Error feedback daemon stopped")
    return 0


def cmd_stop(args):
    """Stop the daemon."""
    lifecycle = DaemonLifecycle(paths=BundlePaths.from_env())
    lifecycle.stop()

    if lifecycle.signal_stop():
        print("✅ Stop signal sent to error feedback daemon")
    else:
        print("⏭️  No running error feedback daemon found")
    return 0


def cmd_status(args):
    """Show daemon status."""
    lifecycle = DaemonLifecycle(paths=BundlePaths.from_env())
    state = lifecycle.status()
    pending_count = lifecycle.pending_count()

    if args.json:
        print(json.dumps({**state.to_record(), "pendingCount": pending_count}, indent=2))
        return 0

    print("=" * 60)
    print("📊 Error Feedback Daemon")
    print("=" * 60)
    print(f"\nStatus:    {state.status.value}")
    print(f"Started:   {state.started_at or 'n/a'}")
    print(f"Last poll: {state.last_poll_at or 'n/a'}")
    print(f"PID:       {state.pid or 'n/a'}")
    print(f"\n📋 Bundles:")
    print(f"   Processed: {state.bundles_processed}")
    print(f"   Resolved:  {state.bundles_resolved}")
    print(f"   Failed:    {state.bundles_failed}")
    print(f"   Pending:   {pending_count}")
    return 0


def cmd_cleanup(args):
    """Delete processed bundles older than --max-age."""
    max_age = args.max_age
    if max_age is None:
        max_age = ConfigManager(args.config).settings.cleanup_max_age

    try:
        max_age_seconds = parse_max_age(max_age)
    except ValueError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    lifecycle = DaemonLifecycle(paths=BundlePaths.from_env())
    cleaned = lifecycle.cleanup(max_age_seconds)
    print(f"🗑️  Cleaned up {cleaned} processed bundle(s).")
    return 0


def main(argv=None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Error feedback daemon",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the daemon in the foreground
  error-feedback start

  # Process pending bundles once and exit
  error-feedback start --once

  # Machine-readable status
  error-feedback status --json

  # Delete processed bundles older than 24 hours
  error-feedback cleanup --max-age 24h

Environment:
  OPENCLAW_ERROR_BUNDLES_DIR  Override the bundles root directory
  OPENCLAW_STATE_DIR          Override the state directory (~/.openclaw)
        """
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to settings file"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    start_parser = subparsers.add_parser("start", help="Start the daemon")
    start_parser.add_argument(
        "--poll-interval",
        type=int,
        default=None,
        metavar="MS",
        help="Poll interval in milliseconds (default: 5000)"
    )
    start_parser.add_argument(
        "--once",
        action="store_true",
        help="Process one batch and exit"
    )
    start_parser.set_defaults(func=cmd_start)

    stop_parser = subparsers.add_parser("stop", help="Stop the daemon")
    stop_parser.set_defaults(func=cmd_stop)

    status_parser = subparsers.add_parser("status", help="Show daemon status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON"
    )
    status_parser.set_defaults(func=cmd_status)

    cleanup_parser = subparsers.add_parser("cleanup", help="Delete old processed bundles")
    cleanup_parser.add_argument(
        "--max-age",
        default=None,
        help="Maximum age to keep, e.g. 7d, 24h, 30m (default: 7d)"
    )
    cleanup_parser.set_defaults(func=cmd_cleanup)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )

    if hasattr(args, "func"):
        return args.func(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
