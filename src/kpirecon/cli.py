"""kpirecon CLI - formula evaluation, reconciliation and catalog migration.

Usage:
    python -m kpirecon evaluate --formula "a / b * 100" [--var a=1 --var b=4]
    python -m kpirecon reconcile --input SNAPSHOT.json [--workers N] [--latest N] [--out FILE]
    python -m kpirecon migrate percentage-scaling --input CATALOG.json [--dry-run]
    python -m kpirecon achievement --input SNAPSHOT.json [--top N]

Exit codes:
    0: Success / every record CONSISTENT or NO_FORMULA
    1: Reconciliation found MISMATCH, MISSING_INPUTS or ERRORED records / Internal error
    2: Invalid input (bad formula, unreadable snapshot, invalid catalog, bad configuration)
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import math
import sys
from pathlib import Path
from typing import Any

from kpirecon.calc.achievement import achievement_distribution, compute_achievement
from kpirecon.calc.evaluator import EvaluationError, evaluate
from kpirecon.config import ConfigError, ReconConfig, load_recon_config
from kpirecon.migrations.percentage_scaling import migrate_catalog_file
from kpirecon.persistence.snapshot import SnapshotLoadError, load_snapshot
from kpirecon.reconciliation.batch import ReconciliationJob, format_summary, get_exit_code
from kpirecon.validators.catalog import CatalogValidationError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID_INPUT = 2


def _output_json(data: Any) -> None:
    """Output JSON to stdout with deterministic ordering."""
    print(json.dumps(data, sort_keys=True, indent=2, ensure_ascii=False))


def _make_error(code: str, message: str) -> dict[str, Any]:
    return {"error": {"code": code, "message": message}}


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def _parse_vars(pairs: list[str]) -> dict[str, float]:
    """Parse CODE=VALUE pairs.

    Raises:
        ValueError: If a pair is malformed or the value is not a finite number.
    """
    values: dict[str, float] = {}
    for pair in pairs:
        code, sep, raw = pair.partition("=")
        code = code.strip()
        if not sep or not code:
            raise ValueError(f"Expected CODE=VALUE, got '{pair}'")
        value = float(raw)
        if not math.isfinite(value):
            raise ValueError(f"Value for '{code}' must be finite, got '{raw}'")
        values[code] = value
    return values


def cmd_evaluate(args: argparse.Namespace, config: ReconConfig) -> int:
    """Evaluate a single formula and print {"result": value}."""
    try:
        values = _parse_vars(args.var or [])
    except ValueError as e:
        _output_json(_make_error("INVALID_VARIABLE", str(e)))
        return EXIT_INVALID_INPUT

    try:
        result = evaluate(args.formula, values)
    except EvaluationError as e:
        _output_json(_make_error(e.kind.value, str(e)))
        return EXIT_INVALID_INPUT

    _output_json({"formula": args.formula, "result": result})
    return EXIT_OK


def cmd_reconcile(args: argparse.Namespace, config: ReconConfig) -> int:
    """Reconcile every entity in a snapshot and report the tally."""
    try:
        snapshot = load_snapshot(args.input)
    except SnapshotLoadError as e:
        _output_json(_make_error("INVALID_SNAPSHOT", str(e)))
        return EXIT_INVALID_INPUT

    report = ReconciliationJob(config).run(snapshot.entities, snapshot.rejected)
    report_dict = report.to_dict()

    if args.out:
        out_path = Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with open(out_path, "w", encoding="utf-8") as f:
            json.dump(report_dict, f, indent=2, sort_keys=True)
            f.write("\n")
        print(f"Report written to: {out_path}", file=sys.stderr)

    _output_json(report_dict)
    print(format_summary(report), file=sys.stderr)
    return get_exit_code(report)


def cmd_migrate_percentage_scaling(args: argparse.Namespace, config: ReconConfig) -> int:
    """Strip redundant * 100 scaling from percentage-unit catalog formulas."""
    try:
        result = migrate_catalog_file(args.input, dry_run=args.dry_run)
    except CatalogValidationError as e:
        _output_json(
            {
                "error": {
                    "code": "INVALID_CATALOG",
                    "message": str(e),
                    "details": [
                        {"code": err.code, "message": err.message, "path": err.path}
                        for err in e.result.errors
                    ],
                }
            }
        )
        return EXIT_INVALID_INPUT

    _output_json(
        {
            "changes": [c.to_dict() for c in result.changes],
            "dry_run": args.dry_run,
            "fixed": len(result.changes),
        }
    )
    return EXIT_OK


def cmd_achievement(args: argparse.Namespace, config: ReconConfig) -> int:
    """Report the distribution of stored achievement values and the highest ones."""
    try:
        snapshot = load_snapshot(args.input)
    except SnapshotLoadError as e:
        _output_json(_make_error("INVALID_SNAPSHOT", str(e)))
        return EXIT_INVALID_INPUT

    stored: list[float | None] = []
    above_target: list[dict[str, Any]] = []
    for entity in snapshot.entities:
        if entity.is_deleted:
            continue
        for period in entity.periods:
            stored.append(period.achievement_value)
            if period.achievement_value is None or period.achievement_value <= 100:
                continue
            above_target.append(
                {
                    "achievement_value": period.achievement_value,
                    "baseline_value": entity.baseline_value,
                    "calculated_value": period.calculated_value,
                    "direction": entity.direction.value,
                    "entity_key": entity.key,
                    "period_start": period.period_start.isoformat(),
                    "recomputed_achievement": compute_achievement(
                        period.final_value,
                        entity.baseline_value,
                        entity.target_value,
                        entity.direction,
                    ),
                    "target_value": entity.target_value,
                    "title": entity.title,
                    "unit": entity.unit,
                }
            )

    above_target.sort(key=lambda row: (-row["achievement_value"], row["entity_key"]))
    _output_json(
        {
            "above_100": above_target[: args.top],
            "above_100_count": len(above_target),
            "distribution": achievement_distribution(stored),
        }
    )
    return EXIT_OK


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="kpirecon",
        description="KPI formula evaluation and reconciliation",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (overrides KPIRECON_LOG_LEVEL)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    evaluate_parser = subparsers.add_parser("evaluate", help="Evaluate a single formula")
    evaluate_parser.add_argument("--formula", required=True, help="Arithmetic formula")
    evaluate_parser.add_argument(
        "--var",
        action="append",
        metavar="CODE=VALUE",
        help="Variable value (repeatable); unset variables evaluate to 0",
    )

    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Reconcile stored calculated values in an entity snapshot",
    )
    reconcile_parser.add_argument(
        "--input", required=True, metavar="PATH", help="Path to snapshot JSON"
    )
    reconcile_parser.add_argument(
        "--workers",
        type=int,
        default=None,
        metavar="N",
        help="Worker threads (overrides KPIRECON_MAX_WORKERS)",
    )
    reconcile_parser.add_argument(
        "--latest",
        type=int,
        default=None,
        metavar="N",
        help="Check only the latest N periods per entity, 0 for all "
        "(overrides KPIRECON_PERIODS_PER_ENTITY)",
    )
    reconcile_parser.add_argument(
        "--tolerance",
        type=float,
        default=None,
        help="Comparison tolerance (overrides KPIRECON_TOLERANCE)",
    )
    reconcile_parser.add_argument("--out", metavar="FILE", help="Path to write JSON report")

    migrate_parser = subparsers.add_parser("migrate", help="Catalog data migrations")
    migrate_parser.set_defaults(print_migrate_help=migrate_parser.print_help)
    migrate_subparsers = migrate_parser.add_subparsers(
        dest="migration", help="Migration to apply"
    )
    scaling_parser = migrate_subparsers.add_parser(
        "percentage-scaling",
        help="Strip redundant * 100 from formulas whose unit is %%",
    )
    scaling_parser.add_argument(
        "--input", required=True, metavar="PATH", help="Path to KPI catalog JSON"
    )
    scaling_parser.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Report changes without writing the catalog",
    )

    achievement_parser = subparsers.add_parser(
        "achievement",
        help="Achievement value distribution for an entity snapshot",
    )
    achievement_parser.add_argument(
        "--input", required=True, metavar="PATH", help="Path to snapshot JSON"
    )
    achievement_parser.add_argument(
        "--top", type=int, default=15, metavar="N", help="Periods above 100%% to list"
    )

    return parser


def _resolve_config(args: argparse.Namespace) -> ReconConfig:
    """Environment configuration with command-line overrides applied."""
    config = load_recon_config()
    overrides: dict[str, Any] = {}
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    if getattr(args, "workers", None) is not None:
        overrides["max_workers"] = args.workers
    if getattr(args, "latest", None) is not None:
        overrides["periods_per_entity"] = args.latest
    if getattr(args, "tolerance", None) is not None:
        overrides["tolerance"] = args.tolerance
    return dataclasses.replace(config, **overrides) if overrides else config


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    try:
        parser = create_parser()
        args = parser.parse_args(argv)

        if args.command is None:
            parser.print_help()
            return EXIT_OK

        try:
            config = _resolve_config(args)
        except ConfigError as e:
            _output_json(_make_error("INVALID_CONFIG", str(e)))
            return EXIT_INVALID_INPUT

        _configure_logging(config.log_level)

        if args.command == "evaluate":
            return cmd_evaluate(args, config)

        if args.command == "reconcile":
            return cmd_reconcile(args, config)

        if args.command == "migrate":
            if getattr(args, "migration", None) == "percentage-scaling":
                return cmd_migrate_percentage_scaling(args, config)
            args.print_migrate_help()
            return EXIT_OK

        if args.command == "achievement":
            return cmd_achievement(args, config)

        return EXIT_OK

    except Exception as e:
        # Fail-closed: unexpected errors return exit code 1
        logger.exception("Unexpected error")
        _output_json(_make_error("INTERNAL_ERROR", str(e)))
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
