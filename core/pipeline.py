"""
core/pipeline.py -- Pure normalize-classify-cover-snapshot pipeline.

No side effects. No print statements. Designed to be called by both
the CLI (via main.py) and the REST API (via api/routes/v1/assessments.py).
Persistence and rendering belong to the caller.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Union

from core.classifier import classify_all
from core.config import APP_VERSION
from core.coverage import BaselineCatalog, match_coverage, resolve_catalog
from core.delta import compute_delta, in_scope
from core.models import AssignmentRecord, CoverageResult, DeltaResult, ExemptionRecord, Snapshot
from core.normalizer import DefinitionLookup, StaticDefinitionLookup, normalize_all, normalize_exemptions
from core.snapshot import build_snapshot

logger = logging.getLogger("policypulse.pipeline")


@dataclass(frozen=True)
class Assessment:
    """Result of one run: the snapshot plus what the caller may want to show."""

    snapshot: Snapshot
    coverage: CoverageResult
    warnings: tuple[str, ...] = field(default_factory=tuple)


def sort_for_display(records: Iterable[AssignmentRecord]) -> list[AssignmentRecord]:
    """Non-compliant count descending, then assignment name."""
    return sorted(records, key=lambda r: (-r.non_compliant_resource_count, r.assignment_name.lower()))


def attach_compliance(
    records: Iterable[AssignmentRecord],
    compliance: Optional[Mapping[str, Mapping[str, int]]],
    exemptions: Iterable[ExemptionRecord] = (),
) -> list[AssignmentRecord]:
    """Fill in compliance counts and active exemption counts.

    compliance is keyed by lower-cased assignment id (see
    core.ingest.parse_compliance_json). Missing facts mean zero counts.
    """
    compliance = compliance or {}
    active: dict[str, int] = {}
    for e in exemptions:
        if not e.is_expired:
            key = e.target_assignment_id.lower()
            active[key] = active.get(key, 0) + 1

    attached = []
    for record in records:
        key = record.assignment_id.lower()
        facts = compliance.get(key) or {}
        attached.append(
            replace(
                record,
                non_compliant_resource_count=int(facts.get("non_compliant_resource_count", 0)),
                total_resource_count=int(facts.get("total_resource_count", 0)),
                active_exemption_count=active.get(key, 0),
            )
        )
    return attached


def run_assessment(
    raw_assignments: Iterable[Mapping[str, Any]],
    raw_exemptions: Iterable[Mapping[str, Any]] = (),
    compliance: Optional[Mapping[str, Mapping[str, int]]] = None,
    catalog: Optional[BaselineCatalog] = None,
    definitions: Union[DefinitionLookup, Mapping[str, dict], None] = None,
    scope_filter: Optional[str] = None,
    tenant: str = "",
    version_tag: str = APP_VERSION,
    now: Optional[datetime] = None,
    workers: int = 1,
    expiring_soon_days: int = 30,
) -> Assessment:
    """Run one assessment from raw retrieval-layer records.

    Records that fail normalization are dropped and reported in
    Assessment.warnings; the run itself only fails on programming errors.
    """
    now = now or datetime.now(timezone.utc)
    if definitions is None or isinstance(definitions, Mapping):
        definitions = StaticDefinitionLookup(definitions)

    exemptions, warnings = normalize_exemptions(raw_exemptions, now)
    records, assignment_warnings = normalize_all(raw_assignments, definitions)
    warnings.extend(assignment_warnings)

    if scope_filter:
        records = [r for r in records if in_scope(r.scope_path, scope_filter)]
        exemptions = [e for e in exemptions if in_scope(e.scope_path, scope_filter)]

    records = classify_all(attach_compliance(records, compliance, exemptions), workers=workers)
    records = sort_for_display(records)

    resolved, source = resolve_catalog(catalog)
    coverage = match_coverage(records, resolved, source)

    snapshot = build_snapshot(
        records,
        exemptions,
        version_tag,
        coverage=coverage,
        tenant=tenant,
        scope_filter=scope_filter,
        now=now,
        expiring_soon_days=expiring_soon_days,
    )
    logger.info(
        "Assessment complete: %d assignments, %d exemptions, coverage %d%% (%d warnings)",
        len(records),
        len(exemptions),
        coverage.coverage_percent,
        len(warnings),
    )
    return Assessment(snapshot=snapshot, coverage=coverage, warnings=tuple(warnings))


def compare_with_previous(
    assessment: Assessment,
    previous: Union[Snapshot, Mapping[str, Any]],
) -> DeltaResult:
    """Delta of an assessment against a previous snapshot, scoped like the assessment."""
    current = assessment.snapshot
    return compute_delta(
        previous,
        current.assignments,
        current.exemptions,
        scope_filter=current.metadata.scope_filter_label or None,
    )
