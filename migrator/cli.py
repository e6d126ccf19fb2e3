"""Command line entry point for the migration phases."""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .models.migration import ConfigurationError, MigrationConfig
from .orchestrator import PhaseFailedError, PhaseOrchestrator, PHASE_NAMES
from .services.checkpoint import CheckpointError, CheckpointNotFoundError, FileCheckpointStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Configure the root logger, optionally mirroring records to a session log file."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
    )


def build_config(args) -> MigrationConfig:
    """Environment configuration with command line overrides applied."""
    config = MigrationConfig.from_env()
    if getattr(args, "dump", None):
        config.dump_path = args.dump
    if getattr(args, "media_path", None):
        config.media_backup_path = args.media_path
    if getattr(args, "checkpoint_dir", None):
        config.checkpoint_dir = args.checkpoint_dir
    if getattr(args, "dry_run", False):
        config.dry_run = True
    if getattr(args, "batch_size", None):
        config.batch_size = args.batch_size
    return config


def run_phase(args) -> int:
    """Run one migration phase."""
    config = build_config(args)
    orchestrator = PhaseOrchestrator(config)
    run = orchestrator.run_phase(args.phase)

    if run.outcome is not None:
        logger.info(f"Phase {run.phase} finished: {run.outcome.value}")
    return 0


def run_score(args) -> int:
    """Score the media migration from the persisted reports."""
    config = build_config(args)
    orchestrator = PhaseOrchestrator(config)
    report = orchestrator.score()
    orchestrator.checkpoints.save("media-migration-validation", report)

    print("\n" + "=" * 60)
    print("MEDIA MIGRATION READINESS")
    print("=" * 60)
    print(f"Status: {report.migration_status.label}")
    print(f"Overall Score: {report.overall_score}/100")
    for check in report.checks:
        print(f"  [{check.status.value}] {check.name}: {check.score}/{check.max_score} - {check.message}")
    if report.recommendations:
        print("\nRecommendations:")
        for recommendation in report.recommendations:
            print(f"  - {recommendation}")
    return 0


def list_checkpoints(args) -> int:
    """Print every checkpoint key with its metadata."""
    config = build_config(args)
    store = FileCheckpointStore(config.checkpoint_dir)

    keys = store.keys()
    if not keys:
        print(f"No checkpoints in {config.checkpoint_dir}")
        return 0

    for key in keys:
        try:
            metadata = store.load(key).metadata
        except CheckpointError as e:
            print(f"{key}: unreadable ({e})")
            continue
        print(f"{key}: {json.dumps(metadata, default=str)}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Legacy migration tool - run checkpointed migration phases"
    )
    parser.add_argument("--checkpoint-dir", help="Checkpoint directory (overrides MIGRATION_CHECKPOINT_DIR)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--log-file", help="Also write log records to this file")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run a phase
    run_parser = subparsers.add_parser("run", help="Run a migration phase")
    run_parser.add_argument(
        "--phase", type=int, required=True, choices=sorted(PHASE_NAMES), help="Phase number"
    )
    run_parser.add_argument("--dump", help="Path to the MySQL dump (overrides MYSQL_DUMP_PATH)")
    run_parser.add_argument("--media-path", help="Media backup directory (overrides MEDIA_BACKUP_PATH)")
    run_parser.add_argument("--batch-size", type=int, help="Fixed batch size for every write")
    run_parser.add_argument("--dry-run", action="store_true", help="Simulate without changes")

    # Score media migration
    subparsers.add_parser("score", help="Score the media migration")

    # Inspect checkpoints
    subparsers.add_parser("checkpoints", help="List saved checkpoints")

    args = parser.parse_args(argv)
    configure_logging(args.verbose, args.log_file)

    commands = {
        "run": run_phase,
        "score": run_score,
        "checkpoints": list_checkpoints,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return 1

    try:
        return command(args)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
    except CheckpointNotFoundError as e:
        logger.error(f"{e}. Run the phase that produces it first.")
    except PhaseFailedError as e:
        logger.error(f"Phase failed: {e}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
