"""
core/delta.py -- Structured comparison of two assessment runs.

The previous run is a persisted Snapshot; the current run is the freshly
classified list of records. Assignments and exemptions are matched on the
composite key (name, scope_path) because the same rule name is routinely bound
at several independent scopes. Matching on name alone would turn a rule moved
from one scope to another into a "change" instead of one new and one removed
entry.

Keys are compared case-insensitively: Azure resource ids are case-insensitive
and the same assignment can come back from the API with different casing.
"""

import logging
from collections import Counter
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from core.models import (
    ENFORCED,
    LEVEL_HIGH,
    TREND_DEGRADING,
    TREND_IMPROVING,
    TREND_MIXED,
    TREND_STABLE,
    AssignmentChange,
    AssignmentRecord,
    DeltaResult,
    EffectDelta,
    ExemptionRecord,
    FieldChange,
    Snapshot,
)
from core.snapshot import snapshot_from_dict

logger = logging.getLogger("policypulse.delta")

# Order here is the order changes are reported in.
TRACKED_FIELDS = (
    "effect",
    "enforcement_mode",
    "non_compliant_resource_count",
    "risk_level",
    "total_resource_count",
)


# ---------------------------------------------------------------------------
# Keys and filtering
# ---------------------------------------------------------------------------


def assignment_key(record: AssignmentRecord) -> tuple[str, str]:
    return (record.assignment_name.casefold(), record.scope_path.casefold())


def exemption_key(exemption: ExemptionRecord) -> tuple[str, str]:
    return (exemption.exemption_name.casefold(), exemption.scope_path.casefold())


def in_scope(scope_path: str, scope_filter: Optional[str]) -> bool:
    """True when no filter is set or scope_path contains the filter (case-insensitive)."""
    if not scope_filter:
        return True
    return scope_filter.casefold() in scope_path.casefold()


def _index(items: Iterable, key) -> dict[tuple[str, str], Any]:
    indexed: dict[tuple[str, str], Any] = {}
    for item in items:
        k = key(item)
        if k in indexed:
            logger.debug("Duplicate key %s -- keeping the first occurrence", k)
            continue
        indexed[k] = item
    return indexed


# ---------------------------------------------------------------------------
# Comparison pieces
# ---------------------------------------------------------------------------


def field_changes(previous: AssignmentRecord, current: AssignmentRecord) -> tuple[FieldChange, ...]:
    changes = []
    for name in TRACKED_FIELDS:
        old, new = getattr(previous, name), getattr(current, name)
        if old != new:
            changes.append(FieldChange(field=name, previous=old, current=new))
    return tuple(changes)


def effect_distribution_delta(
    previous: Sequence[AssignmentRecord],
    current: Sequence[AssignmentRecord],
) -> tuple[EffectDelta, ...]:
    """Per-label count shift. Composite labels are compared as-is, never split."""
    before = Counter(r.effect for r in previous)
    after = Counter(r.effect for r in current)
    deltas = []
    for label in sorted(set(before) | set(after)):
        if before[label] != after[label]:
            deltas.append(
                EffectDelta(
                    effect=label,
                    previous=before[label],
                    current=after[label],
                    delta=after[label] - before[label],
                )
            )
    return tuple(deltas)


def trend_verdict(non_compliant_delta: int, high_risk_delta: int, enforced_delta: int) -> str:
    """First matching rule wins; the order of the checks matters."""
    if non_compliant_delta < 0 and high_risk_delta <= 0 and enforced_delta >= 0:
        return TREND_IMPROVING
    if non_compliant_delta > 0 or high_risk_delta > 0:
        return TREND_DEGRADING
    if non_compliant_delta == 0 and high_risk_delta == 0:
        return TREND_STABLE
    return TREND_MIXED


def _totals(records: Sequence[AssignmentRecord]) -> tuple[int, int, int]:
    return (
        sum(r.non_compliant_resource_count for r in records),
        sum(1 for r in records if r.risk_level == LEVEL_HIGH),
        sum(1 for r in records if r.enforcement_mode == ENFORCED),
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def compute_delta(
    previous: Union[Snapshot, Mapping[str, Any]],
    current: Union[Snapshot, Iterable[AssignmentRecord]],
    current_exemptions: Optional[Iterable[ExemptionRecord]] = None,
    scope_filter: Optional[str] = None,
) -> DeltaResult:
    """Compare the previous snapshot against the current run.

    previous may be a raw mapping (for example a snapshot read from disk);
    one that does not load raises SnapshotLoadError rather than producing a
    delta in which everything looks new. When current is itself a Snapshot
    and current_exemptions is omitted, its exemptions are used.
    """
    if not isinstance(previous, Snapshot):
        previous = snapshot_from_dict(previous)

    if isinstance(current, Snapshot):
        if current_exemptions is None:
            current_exemptions = current.exemptions
        current = current.assignments
    now_records = list(current)
    now_exemptions = list(current_exemptions or ())

    prev_records = [r for r in previous.assignments if in_scope(r.scope_path, scope_filter)]
    prev_exemptions = [e for e in previous.exemptions if in_scope(e.scope_path, scope_filter)]

    before = _index(prev_records, assignment_key)
    after = _index(now_records, assignment_key)

    new = tuple(r for k, r in after.items() if k not in before)
    removed = tuple(r for k, r in before.items() if k not in after)

    changed = []
    for k, record in after.items():
        old = before.get(k)
        if old is None:
            continue
        diffs = field_changes(old, record)
        if diffs:
            changed.append(
                AssignmentChange(
                    assignment_name=record.assignment_name,
                    scope_path=record.scope_path,
                    display_name=record.display_name,
                    changes=diffs,
                )
            )

    ex_before = _index(prev_exemptions, exemption_key)
    ex_after = _index(now_exemptions, exemption_key)

    nc_before, high_before, enf_before = _totals(prev_records)
    nc_after, high_after, enf_after = _totals(now_records)
    nc_delta = nc_after - nc_before
    high_delta = high_after - high_before
    enf_delta = enf_after - enf_before

    result = DeltaResult(
        previous_timestamp=previous.metadata.timestamp,
        previous_version_tag=previous.metadata.script_version_tag,
        scope_filter=scope_filter,
        new_assignments=new,
        removed_assignments=removed,
        changed_assignments=tuple(changed),
        effect_deltas=effect_distribution_delta(prev_records, now_records),
        new_exemptions=tuple(e for k, e in ex_after.items() if k not in ex_before),
        removed_exemptions=tuple(e for k, e in ex_before.items() if k not in ex_after),
        assignment_count_delta=len(now_records) - len(prev_records),
        non_compliant_delta=nc_delta,
        high_risk_delta=high_delta,
        enforced_delta=enf_delta,
        trend=trend_verdict(nc_delta, high_delta, enf_delta),
    )
    logger.info(
        "Delta vs %s: %d new, %d removed, %d changed, trend %s",
        result.previous_timestamp,
        len(result.new_assignments),
        len(result.removed_assignments),
        len(result.changed_assignments),
        result.trend,
    )
    return result
