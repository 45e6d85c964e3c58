"""
Retention CLI.

Command-line interface for applying the backup retention policy and
inspecting backups and the configured policy.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Dict, Any, Optional

from .retention_config import RetentionConfigManager
from .retention_logging import format_bytes, generate_retention_report
from .retention_manager import RetentionManager, create_retention_manager
from .retention_models import RetentionError, POLICY_FIELD_DESCRIPTIONS
from .retention_scheduler import create_retention_scheduler


def setup_logging(verbose: bool = False, log_file: Optional[str] = None):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def policy_overrides(args) -> Dict[str, Any]:
    """Collect policy overrides given on the command line."""
    overrides = {
        'daily_retention_days': args.daily_days,
        'weekly_retention_weeks': args.weekly_weeks,
        'monthly_retention_months': args.monthly_months,
        'max_total_size_bytes': args.max_total_size,
        'max_backup_count': args.max_count,
    }
    return {name: value for name, value in overrides.items() if value is not None}


async def run_apply(args, manager: RetentionManager) -> int:
    """Apply the retention policy."""
    policy = manager.policy.with_overrides(policy_overrides(args))
    dry_run = args.dry_run or manager.config.dry_run

    print(f"Applying retention policy to {manager.catalog.bucket}/{manager.config.prefix} (dry_run={dry_run})...")

    result = await manager.run_retention(policy=policy, dry_run=dry_run)
    print(generate_retention_report(result))
    return 1 if result.errors else 0


async def show_policy(args) -> int:
    """Show the configured retention policy."""
    config = RetentionConfigManager(args.config).config
    print("Backup Retention Policy")
    print("=" * 50)
    print(f"Prefix: {config.prefix}")
    print(f"Manual backups protected: {config.protect_manual_backups}")
    print(f"Backup suffixes: {', '.join(config.backup_suffixes)}")
    for name, value in config.policy.to_dict().items():
        if name.startswith('max_') and not value:
            value = 'unbounded'
        print(f"\n{name}: {value}")
        print(f"  {POLICY_FIELD_DESCRIPTIONS[name]}")
    return 0


async def list_backups(args, manager: RetentionManager) -> int:
    """List backups with their retention tier."""
    entries = await manager.list_backups()
    if not entries:
        print("No backups found.")
        return 0

    print(f"Found {len(entries)} backup(s):")
    for backup, tier in entries:
        print(f"  {backup.created_at.isoformat()}  {tier.value:<9}  "
              f"{format_bytes(backup.size_bytes):>12}  {backup.file_name}")
    return 0


async def run_scheduler(args, manager: RetentionManager) -> int:
    """Run the retention scheduler until interrupted."""
    scheduler = create_retention_scheduler(manager)
    print(f"🚀 Starting retention scheduler (daily at {scheduler.config.cleanup_schedule} UTC)")
    print("   Press Ctrl+C to stop")
    await scheduler.start_scheduler()
    try:
        while True:
            await asyncio.sleep(1)
    finally:
        await scheduler.stop_scheduler()


async def _run_with_manager(command, args) -> int:
    manager = create_retention_manager(args.config)
    try:
        return await command(args, manager)
    finally:
        await manager.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Backup Retention Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Apply the configured policy
  retentiond-cli apply --config configs/retention.yaml

  # Preview what would be deleted
  retentiond-cli apply --dry-run

  # Override the policy for one run
  retentiond-cli apply --daily-days 3 --max-count 20

  # Show the configured policy (no storage calls)
  retentiond-cli policy
        """
    )

    parser.add_argument('--config', default='configs/retention.yaml',
                        help='Path to retention configuration file')
    parser.add_argument('--log-file', default=None,
                        help='Also write logs to this file')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    apply_parser = subparsers.add_parser('apply', help='Apply the retention policy')
    apply_parser.add_argument('--dry-run', action='store_true',
                              help='Compute the plan without deleting anything')
    apply_parser.add_argument('--daily-days', type=int, help='Override daily_retention_days')
    apply_parser.add_argument('--weekly-weeks', type=int, help='Override weekly_retention_weeks')
    apply_parser.add_argument('--monthly-months', type=int, help='Override monthly_retention_months')
    apply_parser.add_argument('--max-total-size', type=int, help='Override max_total_size_bytes (0 = unbounded)')
    apply_parser.add_argument('--max-count', type=int, help='Override max_backup_count (0 = unbounded)')

    subparsers.add_parser('policy', help='Show the configured retention policy')
    subparsers.add_parser('list', help='List backups with their retention tier')
    subparsers.add_parser('scheduler', help='Run the daily retention scheduler')

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.verbose, args.log_file)

    try:
        if args.command == 'policy':
            return asyncio.run(show_policy(args))
        elif args.command == 'apply':
            return asyncio.run(_run_with_manager(run_apply, args))
        elif args.command == 'list':
            return asyncio.run(_run_with_manager(list_backups, args))
        elif args.command == 'scheduler':
            return asyncio.run(_run_with_manager(run_scheduler, args))
        else:
            print(f"Unknown command: {args.command}")
            return 1

    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1
    except RetentionError as e:
        print(f"❌ Error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
