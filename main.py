#!/usr/bin/env python3
"""
PolicyPulse -- Policy assignment assessment, baseline coverage and run-to-run deltas.
Works from JSON exports; no tenant credentials are needed here.

Usage:
  python main.py --assignments assignments.json
  python main.py --assignments a.json --exemptions e.json --compliance c.json --definitions d.json
  python main.py --assignments a.json --catalog baseline.json
  python main.py --assignments a.json --scope /subscriptions/1111
  python main.py --assignments a.json --save --compare-latest
  python main.py --assignments a.json --compare previous-snapshot.json
  python main.py --assignments a.json --export-snapshot snapshot.json
  python main.py --assignments a.json --format json

Environment variables (see core/config.py):
  SNAPSHOT_DB_URL        Snapshot history database (default sqlite:///data/policypulse.db)
  DEFINITION_CACHE_PATH  Definition cache file (default data/definitions.db)
  CATALOG_PATH           Baseline catalog JSON used when --catalog is not given
  TENANT_LABEL           Tenant label recorded in snapshots
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from cache.store import DefinitionCache
from core.config import get_settings
from core.coverage import load_catalog_file
from core.errors import CatalogError, SnapshotLoadError
from core.ingest import (
    parse_assignments_json,
    parse_compliance_json,
    parse_definitions_json,
    parse_exemptions_json,
)
from core.models import DeltaResult
from core.pipeline import Assessment, compare_with_previous, run_assessment
from core.snapshot import dump_snapshot, load_snapshot, snapshot_to_dict
from history.store import SnapshotStore

logger = logging.getLogger("policypulse.cli")

W = 68  # output width


def _read_file(path: Optional[str]) -> Optional[str]:
    """Read an export file. Returns None (and says so) when it is not a readable regular file.

    Resolves symlinks and verifies the path is a regular file before reading.
    """
    if not path:
        return None
    file_path = Path(path).resolve()
    if not file_path.is_file():
        print(f"  [!] '{path}' is not a readable file.", file=sys.stderr)
        return None
    try:
        return file_path.read_text(encoding="utf-8")
    except OSError as e:
        print(f"  [!] Could not read file '{path}': {e}", file=sys.stderr)
        return None


# ---------------------------------------------------------------------------
# Console output
# ---------------------------------------------------------------------------


def print_assessment(assessment: Assessment, top: int = 15) -> None:
    s = assessment.snapshot.summary
    meta = assessment.snapshot.metadata
    print("\n" + "═" * W)
    print(f"  PolicyPulse assessment  {meta.timestamp}")
    if meta.tenant_identity:
        print(f"  Tenant: {meta.tenant_identity}")
    if meta.scope_filter_label:
        print(f"  Scope:  {meta.scope_filter_label}")
    print("═" * W)
    print(
        f"  Assignments      {s.total_assignments:>6}  "
        f"(enforced {s.enforced_count}, not enforced {s.not_enforced_count})"
    )
    print(f"  Risk             High {s.high_risk_count}  Medium {s.medium_risk_count}  Low {s.low_risk_count}")
    print(f"  Non-compliant    {s.total_non_compliant_resources:>6} resources")
    print(
        f"  Exemptions       {s.total_exemptions:>6}  "
        f"(expired {s.expired_exemptions}, expiring soon {s.expiring_soon_exemptions})"
    )
    print(
        f"  Baseline         {s.coverage_percent}% covered, {s.enforced_coverage_percent}% enforced "
        f"({s.baseline_missing} missing of {s.baseline_total})"
    )

    rows = assessment.snapshot.assignments[:top]
    if rows:
        print(f"\n  Top assignments by non-compliant resources\n  {'─' * (W - 2)}")
        for r in rows:
            print(f"  {r.non_compliant_resource_count:>5}  {r.risk_level:<6} {r.effect[:24]:<24} {r.assignment_name}")

    missing = [e for e in assessment.coverage.entries if e.status != "Matched"]
    if missing:
        print(f"\n  Baseline gaps\n  {'─' * (W - 2)}")
        for e in missing:
            print(f"  {e.status:<10} {e.category:<14} {e.name}")

    for warning in assessment.warnings:
        print(f"  [!] {warning}")
    print()


def print_delta(delta: DeltaResult) -> None:
    print(f"  Changes since {delta.previous_timestamp} ({delta.previous_version_tag})\n  {'─' * (W - 2)}")
    for r in delta.new_assignments:
        print(f"  + {r.assignment_name} @ {r.scope_path}")
    for r in delta.removed_assignments:
        print(f"  - {r.assignment_name} @ {r.scope_path}")
    for change in delta.changed_assignments:
        fields = ", ".join(f"{c.field}: {c.previous} -> {c.current}" for c in change.changes)
        print(f"  ~ {change.assignment_name} @ {change.scope_path}: {fields}")
    for d in delta.effect_deltas:
        print(f"  effect {d.effect}: {d.previous} -> {d.current} ({d.delta:+d})")
    print(
        f"  exemptions +{len(delta.new_exemptions)} -{len(delta.removed_exemptions)}   "
        f"non-compliant {delta.non_compliant_delta:+d}   high risk {delta.high_risk_delta:+d}   "
        f"enforced {delta.enforced_delta:+d}"
    )
    print(f"  Trend: {delta.trend}\n")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="policypulse",
        description="Assess policy assignments, baseline coverage and changes between runs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --assignments a.json --compliance c.json --definitions d.json
  python main.py --assignments a.json --save --compare-latest
  python main.py --assignments a.json --compare last-week.json --format json
        """,
    )
    parser.add_argument("--assignments", metavar="PATH", required=True, help="Assignment export (JSON)")
    parser.add_argument("--exemptions", metavar="PATH", help="Exemption export (JSON)")
    parser.add_argument("--compliance", metavar="PATH", help="Compliance summary export (JSON)")
    parser.add_argument(
        "--definitions",
        metavar="PATH",
        help="Rule and rule-set definitions (JSON). Stored in the local definition cache.",
    )
    parser.add_argument("--catalog", metavar="PATH", help="Baseline catalog (JSON). Default: CATALOG_PATH or built-in")
    parser.add_argument("--scope", metavar="PATH", help="Only assess assignments whose scope path contains PATH")
    parser.add_argument("--tenant", metavar="LABEL", help="Tenant label recorded in the snapshot")
    parser.add_argument("--save", action="store_true", help="Store the snapshot in the history database")
    parser.add_argument(
        "--compare-latest",
        action="store_true",
        help="Diff against the newest stored snapshot for this tenant",
    )
    parser.add_argument("--compare", metavar="PATH", help="Diff against a snapshot JSON file")
    parser.add_argument("--export-snapshot", metavar="PATH", help="Write the snapshot to a JSON file")
    parser.add_argument(
        "--format",
        choices=["terminal", "json"],
        default="terminal",
        metavar="FORMAT",
        help="Output format: terminal (default) or json",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    content = _read_file(args.assignments)
    if content is None:
        return 2
    raw_assignments = parse_assignments_json(content)
    raw_exemptions = parse_exemptions_json(_read_file(args.exemptions) or "[]")
    compliance = parse_compliance_json(_read_file(args.compliance) or "[]")

    catalog = None
    catalog_path = args.catalog or settings.catalog_path
    if catalog_path:
        try:
            catalog = load_catalog_file(catalog_path)
        except CatalogError as e:
            logger.warning("%s -- using built-in fallback catalog", e)

    tenant = args.tenant or settings.tenant_label
    cache = DefinitionCache(settings.definition_cache_path, settings.definition_cache_ttl)
    history: Optional[SnapshotStore] = None
    try:
        definitions_text = _read_file(args.definitions)
        if definitions_text:
            cache.seed(parse_definitions_json(definitions_text))

        assessment = run_assessment(
            raw_assignments,
            raw_exemptions,
            compliance=compliance,
            catalog=catalog,
            definitions=cache,
            scope_filter=args.scope,
            tenant=tenant,
            workers=settings.classify_workers,
            expiring_soon_days=settings.expiring_soon_days,
        )

        delta: Optional[DeltaResult] = None
        if args.compare:
            delta = compare_with_previous(assessment, load_snapshot(Path(args.compare)))
        elif args.compare_latest or args.save:
            history = SnapshotStore(settings.snapshot_db_url)
            if args.compare_latest:
                previous = history.latest_snapshot(tenant=tenant)
                if previous is None:
                    print("  No stored snapshot to compare against.", file=sys.stderr)
                else:
                    delta = compare_with_previous(assessment, previous)

        if args.save:
            history = history or SnapshotStore(settings.snapshot_db_url)
            snapshot_id = history.save_snapshot(assessment.snapshot)
            history.prune(settings.snapshot_retention, tenant=tenant)
            print(f"  Snapshot saved (id {snapshot_id}).", file=sys.stderr)

        if args.export_snapshot:
            dump_snapshot(assessment.snapshot, Path(args.export_snapshot))
    except SnapshotLoadError as e:
        print(f"  [!] {e}", file=sys.stderr)
        return 1
    finally:
        cache.close()
        if history is not None:
            history.close()

    if args.format == "json":
        output = {
            "snapshot": snapshot_to_dict(assessment.snapshot),
            "coverage": asdict(assessment.coverage),
            "warnings": list(assessment.warnings),
            "delta": asdict(delta) if delta is not None else None,
        }
        print(json.dumps(output, indent=2))
    else:
        print_assessment(assessment)
        if delta is not None:
            print_delta(delta)
    return 0


if __name__ == "__main__":
    sys.exit(main())
