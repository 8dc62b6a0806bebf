"""
core/snapshot.py -- Building, serializing and loading assessment snapshots.

A Snapshot is built once per run and never changed afterwards. The persisted
shape is plain JSON produced from the dataclasses through a pydantic
TypeAdapter, so a save/load cycle hands back equal dataclasses and anything
that does not validate is rejected with SnapshotLoadError instead of being
guessed at. A delta computed against a half-loaded snapshot would report
every assignment as new.
"""

import json
import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from pydantic import TypeAdapter, ValidationError

from core.errors import SnapshotLoadError
from core.models import (
    ENFORCED,
    EXEMPTION_MITIGATED,
    EXEMPTION_WAIVER,
    LEVEL_HIGH,
    LEVEL_LOW,
    LEVEL_MEDIUM,
    NOT_ENFORCED,
    RULE_KIND_REGULATORY,
    RULE_KIND_SET,
    RULE_KIND_SINGLE,
    AssignmentRecord,
    CoverageResult,
    ExemptionRecord,
    Snapshot,
    SnapshotMetadata,
    SummaryCounters,
)

logger = logging.getLogger("policypulse.snapshot")

SNAPSHOT_FORMAT_VERSION = 1

_snapshot_adapter = TypeAdapter(Snapshot)
_assignment_adapter = TypeAdapter(AssignmentRecord)
_exemption_adapter = TypeAdapter(ExemptionRecord)


# ---------------------------------------------------------------------------
# Building
# ---------------------------------------------------------------------------


def _expires_at(exemption: ExemptionRecord) -> Optional[datetime]:
    if not exemption.expires_on:
        return None
    try:
        dt = datetime.fromisoformat(exemption.expires_on)
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def build_summary(
    records: Iterable[AssignmentRecord],
    exemptions: Iterable[ExemptionRecord],
    coverage: Optional[CoverageResult] = None,
    now: Optional[datetime] = None,
    expiring_soon_days: int = 30,
) -> SummaryCounters:
    """Aggregate the counters stored alongside a snapshot."""
    items = list(records)
    exempts = list(exemptions)
    coverage = coverage or CoverageResult()
    now = now or datetime.now(timezone.utc)
    horizon = now + timedelta(days=expiring_soon_days)

    kinds = Counter(r.rule_kind for r in items)
    risks = Counter(r.risk_level for r in items)

    expiring_soon = 0
    for e in exempts:
        expires = _expires_at(e)
        if expires is not None and not e.is_expired and now <= expires <= horizon:
            expiring_soon += 1

    return SummaryCounters(
        total_assignments=len(items),
        enforced_count=sum(1 for r in items if r.enforcement_mode == ENFORCED),
        not_enforced_count=sum(1 for r in items if r.enforcement_mode == NOT_ENFORCED),
        single_policy_count=kinds.get(RULE_KIND_SINGLE, 0),
        policy_set_count=kinds.get(RULE_KIND_SET, 0),
        regulatory_set_count=kinds.get(RULE_KIND_REGULATORY, 0),
        high_security_count=sum(1 for r in items if r.security_impact == LEVEL_HIGH),
        high_cost_count=sum(1 for r in items if r.cost_impact == LEVEL_HIGH),
        high_risk_count=risks.get(LEVEL_HIGH, 0),
        medium_risk_count=risks.get(LEVEL_MEDIUM, 0),
        low_risk_count=risks.get(LEVEL_LOW, 0),
        total_non_compliant_resources=sum(r.non_compliant_resource_count for r in items),
        total_exemptions=len(exempts),
        active_exemptions=sum(1 for e in exempts if not e.is_expired),
        expired_exemptions=sum(1 for e in exempts if e.is_expired),
        expiring_soon_exemptions=expiring_soon,
        waiver_exemptions=sum(1 for e in exempts if e.category == EXEMPTION_WAIVER),
        mitigated_exemptions=sum(1 for e in exempts if e.category == EXEMPTION_MITIGATED),
        effect_counts=dict(sorted(Counter(r.effect for r in items).items())),
        scope_type_counts=dict(sorted(Counter(r.scope_type for r in items).items())),
        baseline_total=coverage.total,
        baseline_matched=coverage.matched,
        baseline_audit_only=coverage.audit_only,
        baseline_missing=coverage.missing,
        coverage_percent=coverage.coverage_percent,
        enforced_coverage_percent=coverage.enforced_coverage_percent,
    )


def build_snapshot(
    records: Iterable[AssignmentRecord],
    exemptions: Iterable[ExemptionRecord],
    version_tag: str,
    coverage: Optional[CoverageResult] = None,
    tenant: str = "",
    scope_filter: Optional[str] = None,
    now: Optional[datetime] = None,
    expiring_soon_days: int = 30,
) -> Snapshot:
    items = tuple(records)
    exempts = tuple(exemptions)
    now = now or datetime.now(timezone.utc)
    return Snapshot(
        metadata=SnapshotMetadata(
            timestamp=now.isoformat(),
            script_version_tag=version_tag,
            tenant_identity=tenant,
            scope_filter_label=scope_filter or "",
        ),
        summary=build_summary(items, exempts, coverage, now, expiring_soon_days),
        assignments=items,
        exemptions=exempts,
    )


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def snapshot_to_dict(snapshot: Snapshot) -> dict[str, Any]:
    data = _snapshot_adapter.dump_python(snapshot, mode="json")
    data["format_version"] = SNAPSHOT_FORMAT_VERSION
    return data


def snapshot_from_dict(data: Any) -> Snapshot:
    """Validate a persisted snapshot mapping. Raises SnapshotLoadError on any problem."""
    if not isinstance(data, Mapping):
        raise SnapshotLoadError(f"expected a mapping, got {type(data).__name__}")
    version = data.get("format_version", SNAPSHOT_FORMAT_VERSION)
    if version != SNAPSHOT_FORMAT_VERSION:
        raise SnapshotLoadError(f"unsupported snapshot format version {version!r}")
    try:
        return _snapshot_adapter.validate_python(dict(data))
    except ValidationError as e:
        raise SnapshotLoadError(f"snapshot does not validate: {e.error_count()} error(s): {e}") from e


def record_to_dict(record: AssignmentRecord) -> dict[str, Any]:
    return _assignment_adapter.dump_python(record, mode="json")


def record_from_dict(data: Any) -> AssignmentRecord:
    try:
        return _assignment_adapter.validate_python(data)
    except ValidationError as e:
        raise SnapshotLoadError(f"assignment record does not validate: {e}") from e


def exemption_to_dict(exemption: ExemptionRecord) -> dict[str, Any]:
    return _exemption_adapter.dump_python(exemption, mode="json")


def exemption_from_dict(data: Any) -> ExemptionRecord:
    try:
        return _exemption_adapter.validate_python(data)
    except ValidationError as e:
        raise SnapshotLoadError(f"exemption record does not validate: {e}") from e


def dump_snapshot(snapshot: Snapshot, path: Path) -> None:
    """Write snapshot as indented JSON to path."""
    path = Path(path)
    path.write_text(json.dumps(snapshot_to_dict(snapshot), indent=2), encoding="utf-8")
    logger.info("Snapshot written to %s (%d assignments)", path, len(snapshot.assignments))


def load_snapshot(path: Path) -> Snapshot:
    """Read a snapshot JSON file. Raises SnapshotLoadError if it is missing or malformed."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SnapshotLoadError(f"cannot read {path}: {e}") from e
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise SnapshotLoadError(f"{path} is not valid JSON: {e}") from e
    return snapshot_from_dict(data)
