"""Unit tests for core/snapshot.py -- summary counters and the persisted JSON shape."""

import json
from datetime import datetime, timezone

import pytest

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
    SCOPE_ACCOUNT,
    SCOPE_ORG,
    AssignmentRecord,
    CoverageResult,
    ExemptionRecord,
)
from core.snapshot import (
    SNAPSHOT_FORMAT_VERSION,
    build_snapshot,
    build_summary,
    dump_snapshot,
    load_snapshot,
    record_from_dict,
    record_to_dict,
    snapshot_from_dict,
    snapshot_to_dict,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record(
    name,
    effect="Deny",
    enforcement=ENFORCED,
    kind=RULE_KIND_SINGLE,
    risk=LEVEL_LOW,
    nc=0,
    scope_type=SCOPE_ACCOUNT,
):
    return AssignmentRecord(
        assignment_id=f"/subscriptions/1111/providers/Microsoft.Authorization/policyAssignments/{name}",
        assignment_name=name,
        display_name=name,
        rule_kind=kind,
        category="Network",
        effect=effect,
        enforcement_mode=enforcement,
        scope_type=scope_type,
        scope_name="1111",
        scope_path="/subscriptions/1111",
        non_compliant_resource_count=nc,
        security_impact=LEVEL_HIGH if risk == LEVEL_HIGH else LEVEL_MEDIUM,
        risk_level=risk,
    )


def _exemption(name, category=EXEMPTION_WAIVER, expires_on=None, is_expired=False):
    return ExemptionRecord(
        exemption_id=f"/subscriptions/1111/providers/Microsoft.Authorization/policyExemptions/{name}",
        exemption_name=name,
        display_name=name,
        target_assignment_id="/subscriptions/1111/providers/Microsoft.Authorization/policyAssignments/a1",
        category=category,
        scope_type=SCOPE_ACCOUNT,
        scope_name="1111",
        scope_path="/subscriptions/1111",
        expires_on=expires_on,
        is_expired=is_expired,
    )


def _sample_snapshot():
    records = [
        _record("a1", risk=LEVEL_HIGH, nc=4),
        _record("a2", effect="Audit(2), Deny(1)", enforcement=NOT_ENFORCED, kind=RULE_KIND_SET, nc=3),
        _record("a3", effect="Audit", kind=RULE_KIND_REGULATORY, risk=LEVEL_MEDIUM, scope_type=SCOPE_ORG),
    ]
    exemptions = [
        _exemption("e1"),
        _exemption("e2", EXEMPTION_MITIGATED, "2026-01-01T00:00:00+00:00", is_expired=True),
        _exemption("e3", expires_on="2026-03-20T00:00:00+00:00"),
        _exemption("e4", expires_on="2026-09-01T00:00:00+00:00"),
    ]
    coverage = CoverageResult(
        total=4, matched=2, audit_only=1, missing=1, coverage_percent=75, enforced_coverage_percent=50
    )
    return build_snapshot(
        records, exemptions, "1.4.0", coverage, tenant="contoso", scope_filter="/subscriptions/1111", now=NOW
    )


class TestBuildSummary:
    def test_counters(self):
        s = _sample_snapshot().summary
        assert s.total_assignments == 3
        assert s.enforced_count == 2
        assert s.not_enforced_count == 1
        assert (s.single_policy_count, s.policy_set_count, s.regulatory_set_count) == (1, 1, 1)
        assert (s.high_risk_count, s.medium_risk_count, s.low_risk_count) == (1, 1, 1)
        assert s.high_security_count == 1
        assert s.total_non_compliant_resources == 7
        assert s.effect_counts == {"Audit": 1, "Audit(2), Deny(1)": 1, "Deny": 1}
        assert s.scope_type_counts == {SCOPE_ACCOUNT: 2, SCOPE_ORG: 1}

    def test_exemption_counters(self):
        s = _sample_snapshot().summary
        assert s.total_exemptions == 4
        assert s.active_exemptions == 3
        assert s.expired_exemptions == 1
        assert s.expiring_soon_exemptions == 1
        assert s.waiver_exemptions == 3
        assert s.mitigated_exemptions == 1

    def test_coverage_copied_in(self):
        s = _sample_snapshot().summary
        assert (s.baseline_total, s.baseline_matched, s.baseline_audit_only, s.baseline_missing) == (4, 2, 1, 1)
        assert s.coverage_percent == 75
        assert s.enforced_coverage_percent == 50

    def test_snapshot_is_hashable(self):
        first, second = _sample_snapshot(), _sample_snapshot()
        assert hash(first) == hash(second)
        assert len({first, second}) == 1
        assert hash(snapshot_from_dict(snapshot_to_dict(first))) == hash(first)

    def test_empty_inputs(self):
        s = build_summary([], [], now=NOW)
        assert s.total_assignments == 0
        assert s.effect_counts == {}
        assert s.baseline_total == 0

    def test_expiring_window_is_configurable(self):
        exemptions = [_exemption("e1", expires_on="2026-03-20T00:00:00+00:00")]
        assert build_summary([], exemptions, now=NOW, expiring_soon_days=7).expiring_soon_exemptions == 0


class TestMetadata:
    def test_metadata(self):
        meta = _sample_snapshot().metadata
        assert meta.timestamp == NOW.isoformat()
        assert meta.script_version_tag == "1.4.0"
        assert meta.tenant_identity == "contoso"
        assert meta.scope_filter_label == "/subscriptions/1111"

    def test_no_scope_filter_is_blank(self):
        assert build_snapshot([], [], "1.4.0", now=NOW).metadata.scope_filter_label == ""


class TestSerialization:
    def test_dict_round_trip(self):
        snapshot = _sample_snapshot()
        data = snapshot_to_dict(snapshot)
        assert data["format_version"] == SNAPSHOT_FORMAT_VERSION
        assert snapshot_from_dict(json.loads(json.dumps(data))) == snapshot

    def test_file_round_trip(self, tmp_path):
        snapshot = _sample_snapshot()
        path = tmp_path / "snapshot.json"
        dump_snapshot(snapshot, path)
        assert load_snapshot(path) == snapshot

    def test_record_round_trip(self):
        record = _record("a1", nc=9)
        assert record_from_dict(record_to_dict(record)) == record

    def test_not_a_mapping_raises(self):
        with pytest.raises(SnapshotLoadError):
            snapshot_from_dict(["not", "a", "snapshot"])

    def test_missing_metadata_raises(self):
        data = snapshot_to_dict(_sample_snapshot())
        del data["metadata"]
        with pytest.raises(SnapshotLoadError):
            snapshot_from_dict(data)

    def test_bad_record_raises(self):
        data = snapshot_to_dict(_sample_snapshot())
        data["assignments"][0]["non_compliant_resource_count"] = "lots"
        with pytest.raises(SnapshotLoadError):
            snapshot_from_dict(data)

    def test_unknown_format_version_raises(self):
        data = snapshot_to_dict(_sample_snapshot())
        data["format_version"] = 99
        with pytest.raises(SnapshotLoadError):
            snapshot_from_dict(data)

    def test_load_missing_file_raises(self, tmp_path):
        with pytest.raises(SnapshotLoadError):
            load_snapshot(tmp_path / "missing.json")

    def test_load_invalid_json_raises(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(SnapshotLoadError):
            load_snapshot(path)

    def test_bad_record_from_dict_raises(self):
        with pytest.raises(SnapshotLoadError):
            record_from_dict({"assignment_name": "only"})
