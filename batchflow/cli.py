"""
batchflow command line

Usage:
  batchflow --config migration.yml validate
  batchflow --config migration.yml process [--only a,b] [--skip c] [--dry-run] [--debug]
  batchflow --config migration.yml extract JOB [--output rows.csv]
  batchflow --config migration.yml transform JOB [--output rows.json]
  batchflow --config migration.yml ledger JOB [--limit 20] [--prune N]
"""
import argparse
import sys
from pathlib import Path
from typing import List, Optional

import pandas as pd

from batchflow import __version__
from batchflow.common.config import Config
from batchflow.common.exceptions import DependencyValidationError, ETLError
from batchflow.common.logging import setup_logging
from batchflow.common.models import JobStatus, PhaseType, Row
from batchflow.ledger.registry import LedgerRegistry
from batchflow.orchestration.graph import validate
from batchflow.orchestration.job import PipelineJob
from batchflow.orchestration.pipeline import Pipeline

DEFAULT_CONFIG = "migration.yml"
PREVIEW_ROWS = 10


def print_banner(text: str) -> None:
    print("=" * 70)
    print(f"  {text}")
    print("=" * 70)


def print_section(text: str) -> None:
    print(f"\n--- {text} ---")


def split_names(value: Optional[str]) -> List[str]:
    """Split a comma separated job list"""
    if not value:
        return []
    return [name.strip() for name in value.split(',') if name.strip()]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        prog="batchflow",
        description="Declarative batch migration runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Check the job graph
  batchflow --config migration.yml validate

  # Run two jobs only
  batchflow --config migration.yml process --only users,posts

  # Preview what a job extracts
  batchflow --config migration.yml extract posts --output posts.csv
        """
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        type=str,
        default=DEFAULT_CONFIG,
        help=f"Path to the migration YAML (default: {DEFAULT_CONFIG})"
    )
    parser.add_argument("--env", type=str, help="Path to a .env file")
    parser.add_argument("--log-level", type=str, default="INFO", help="Log level (default: INFO)")
    parser.add_argument("--log-file", type=str, help="Also write logs to this file")
    parser.add_argument("--log-format", choices=["text", "json"], default="text", help="Log line format")

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("validate", help="Validate the configuration and job graph")

    process = commands.add_parser("process", help="Run the migration")
    process.add_argument("--only", type=str, help="Comma separated jobs to run")
    process.add_argument("--skip", type=str, help="Comma separated jobs to leave out")
    process.add_argument("--dry-run", action="store_true", help="Show the plan without running")
    process.add_argument("--debug", action="store_true", help="Log at DEBUG level")

    for name, help_text in (
        ("extract", "Run the extract phase of one job"),
        ("transform", "Run the extract and transform phases of one job"),
    ):
        preview = commands.add_parser(name, help=help_text)
        preview.add_argument("job", type=str, help="Job name")
        preview.add_argument("--output", type=str, help="Write rows to a .csv, .json, .jsonl or .parquet file")

    ledger = commands.add_parser("ledger", help="Show the latest ledger of a job")
    ledger.add_argument("job", type=str, help="Job name")
    ledger.add_argument("--limit", type=int, default=PREVIEW_ROWS, help="Entries to show")
    ledger.add_argument("--prune", type=int, metavar="N",
                        help="Delete all but the newest N ledger files of the job")

    return parser.parse_args(argv)


def write_rows(rows: List[Row], output: str) -> Path:
    """
    Write rows to a file, the format picked by extension

    Returns:
        Path written
    """
    path = Path(output)
    path.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame([row.to_dict() for row in rows])

    suffix = path.suffix.lower()
    if suffix == ".csv":
        df.to_csv(path, index=False)
    elif suffix == ".parquet":
        df.to_parquet(path, index=False)
    elif suffix == ".jsonl":
        df.to_json(path, orient="records", lines=True)
    else:
        df.to_json(path, orient="records", indent=2)
    return path


def cmd_validate(config: Config) -> int:
    print_banner("Validating configuration")
    jobs = config.get_jobs()
    print(f"Jobs: {len(jobs)}")

    result = validate(jobs)
    if result.ok:
        print(f"✓ Job graph is valid. Execution order: {', '.join(result.execution_order)}")
        return 0

    print_section("Errors")
    for error in result.errors:
        print(f"  ❌ {error}")
    if result.excluded:
        print_section("Excluded jobs")
        for name, reason in result.excluded.items():
            print(f"  {name}: {reason}")
    return 1


def cmd_process(config: Config, args: argparse.Namespace) -> int:
    print_banner("Running migration")

    def on_progress(loader: str, count: int, total: Optional[int]) -> None:
        if total and count >= total:
            print(f"  ✓ {loader}: {count}/{total} rows")

    pipeline = Pipeline(config, listeners=[on_progress])
    results = pipeline.run(
        only=split_names(args.only),
        skip=split_names(args.skip),
        dry_run=args.dry_run
    )

    print_section("Dry run plan" if args.dry_run else "Results")
    for result in results:
        line = f"  {result.name:<30} {result.status.value:<10}"
        if result.status == JobStatus.DONE:
            line += f" {result.rows_loaded} rows in {result.duration_seconds:.2f}s"
        print(line)
        for error in result.errors:
            where = f" [{error.loader}]" if error.loader else ""
            print(f"      {error.phase}{where}: {error.message}")

    failed = [r for r in results if r.status in (JobStatus.FAILED, JobStatus.SKIPPED)]
    return 1 if failed else 0


def cmd_preview(config: Config, args: argparse.Namespace) -> int:
    job_config = config.find_job(args.job)
    if job_config is None:
        print(f"❌ Error: Unknown job '{args.job}'")
        return 1

    job = PipelineJob(config, job_config).build()
    job.process(PhaseType.EXTRACT)
    if args.command == "transform":
        job.process(PhaseType.TRANSFORM)

    rows = job.state.rows
    print_banner(f"{args.command.capitalize()}: {args.job} ({len(rows)} rows)")

    if args.output:
        path = write_rows(rows, args.output)
        print(f"✓ Wrote {len(rows)} rows to {path}")
    elif rows:
        preview = pd.DataFrame([row.to_dict() for row in rows[:PREVIEW_ROWS]])
        print(preview.to_string(index=False))
    return 0


def cmd_ledger(config: Config, args: argparse.Namespace) -> int:
    registry = LedgerRegistry(config)
    if args.prune is not None:
        deleted = registry.prune(args.job, keep=args.prune)
        print(f"✓ Deleted {len(deleted)} old ledger file(s) of '{args.job}'")

    ledger = registry.get(args.job)
    if ledger is None:
        print(f"❌ No ledger found for '{args.job}'")
        return 1

    print_banner(f"Ledger: {args.job} ({len(ledger)} entries)")
    if ledger.entries:
        df = pd.DataFrame(ledger.entries[:args.limit])
        print(df.to_string(index=False))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point of the `batchflow` console script"""
    args = parse_args(argv)

    level = "DEBUG" if getattr(args, "debug", False) else args.log_level
    setup_logging(level=level, log_file=args.log_file, format_type=args.log_format)

    try:
        config = Config(args.config, env_file=args.env)

        if args.command == "validate":
            return cmd_validate(config)
        if args.command == "process":
            return cmd_process(config, args)
        if args.command in ("extract", "transform"):
            return cmd_preview(config, args)
        return cmd_ledger(config, args)

    except DependencyValidationError as e:
        print("\n❌ ERROR: Job graph is invalid")
        for error in e.errors:
            print(f"   {error}")
        return 1

    except ETLError as e:
        print(f"\n❌ ERROR: {type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
