"""
core/models.py -- Domain dataclasses for the PolicyPulse assessment engine.

Pure data containers. Scoring lives in core/classifier.py, coverage in
core/coverage.py and snapshot diffing in core/delta.py.

Records are frozen: every stage that "changes" a record returns a new
instance via dataclasses.replace(), so a classified record can never drift
away from the inputs it was classified from.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

RULE_KIND_SINGLE = "SinglePolicy"
RULE_KIND_SET = "PolicySet"
RULE_KIND_REGULATORY = "RegulatorySet"

EFFECT_DENY = "Deny"
EFFECT_AUDIT = "Audit"
EFFECT_AUDIT_IF_NOT_EXISTS = "AuditIfNotExists"
EFFECT_DEPLOY_IF_NOT_EXISTS = "DeployIfNotExists"
EFFECT_MODIFY = "Modify"
EFFECT_DISABLED = "Disabled"
EFFECT_PARAMETERIZED = "Parameterized"

EFFECTS = (
    EFFECT_DENY,
    EFFECT_AUDIT,
    EFFECT_AUDIT_IF_NOT_EXISTS,
    EFFECT_DEPLOY_IF_NOT_EXISTS,
    EFFECT_MODIFY,
    EFFECT_DISABLED,
    EFFECT_PARAMETERIZED,
)

ENFORCED = "Enforced"
NOT_ENFORCED = "NotEnforced"

SCOPE_ORG = "Org"
SCOPE_ACCOUNT = "Account"
SCOPE_RESOURCE_GROUP = "ResourceGroup"

LEVEL_NONE = "None"
LEVEL_LOW = "Low"
LEVEL_MEDIUM = "Medium"
LEVEL_HIGH = "High"

EXEMPTION_WAIVER = "Waiver"
EXEMPTION_MITIGATED = "Mitigated"

COVERAGE_MATCHED = "Matched"
COVERAGE_AUDIT_ONLY = "AuditOnly"
COVERAGE_MISSING = "Missing"

TREND_IMPROVING = "Improving"
TREND_DEGRADING = "Degrading"
TREND_STABLE = "Stable"
TREND_MIXED = "Mixed"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssignmentRecord:
    """One governance rule bound to a scope.

    The derived block (security_impact .. recommendation) is written only by
    core.classifier.classify(). Callers build records with the defaults and
    never set those fields themselves.
    """

    assignment_id: str
    assignment_name: str
    display_name: str
    rule_kind: str
    category: str
    effect: str
    enforcement_mode: str
    scope_type: str
    scope_name: str
    scope_path: str
    rule_name: str = ""
    effect_parameterized: bool = False
    non_compliant_resource_count: int = 0
    total_resource_count: int = 0
    active_exemption_count: int = 0
    # derived
    security_impact: str = LEVEL_NONE
    cost_impact: str = LEVEL_NONE
    compliance_impact: str = LEVEL_NONE
    operational_overhead: str = LEVEL_NONE
    risk_level: str = LEVEL_NONE
    recommendation: str = ""


@dataclass(frozen=True)
class ExemptionRecord:
    """A scope or sub-rule exclusion attached to one assignment.

    exempted_sub_rule_count == 0 means the whole assignment is exempted;
    a positive count means only that many member rules of a rule-set are.
    """

    exemption_id: str
    exemption_name: str
    display_name: str
    target_assignment_id: str
    category: str  # Waiver | Mitigated
    scope_type: str
    scope_name: str
    scope_path: str
    expires_on: Optional[str] = None  # ISO 8601
    is_expired: bool = False
    exempted_sub_rule_count: int = 0


# ---------------------------------------------------------------------------
# Coverage
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CoverageEntry:
    category: str
    name: str
    status: str  # Matched | AuditOnly | Missing
    matched_assignments: tuple[str, ...] = ()


@dataclass(frozen=True)
class CategoryCoverage:
    category: str
    total: int = 0
    matched: int = 0
    audit_only: int = 0
    missing: int = 0


@dataclass(frozen=True)
class CoverageResult:
    entries: tuple[CoverageEntry, ...] = ()
    categories: tuple[CategoryCoverage, ...] = ()
    total: int = 0
    matched: int = 0
    audit_only: int = 0
    missing: int = 0
    coverage_percent: int = 0
    enforced_coverage_percent: int = 0
    catalog_source: str = "empty"  # supplied | builtin | empty


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SnapshotMetadata:
    timestamp: str  # ISO 8601
    script_version_tag: str
    tenant_identity: str = ""
    scope_filter_label: str = ""


@dataclass(frozen=True)
class SummaryCounters:
    # Count mappings are excluded from the hash; equality still compares them.
    total_assignments: int = 0
    enforced_count: int = 0
    not_enforced_count: int = 0
    single_policy_count: int = 0
    policy_set_count: int = 0
    regulatory_set_count: int = 0
    high_security_count: int = 0
    high_cost_count: int = 0
    high_risk_count: int = 0
    medium_risk_count: int = 0
    low_risk_count: int = 0
    total_non_compliant_resources: int = 0
    total_exemptions: int = 0
    active_exemptions: int = 0
    expired_exemptions: int = 0
    expiring_soon_exemptions: int = 0
    waiver_exemptions: int = 0
    mitigated_exemptions: int = 0
    effect_counts: dict[str, int] = field(default_factory=dict, hash=False)
    scope_type_counts: dict[str, int] = field(default_factory=dict, hash=False)
    baseline_total: int = 0
    baseline_matched: int = 0
    baseline_audit_only: int = 0
    baseline_missing: int = 0
    coverage_percent: int = 0
    enforced_coverage_percent: int = 0


@dataclass(frozen=True)
class Snapshot:
    """Immutable capture of one assessment run. Persisted or diffed, never updated."""

    metadata: SnapshotMetadata
    summary: SummaryCounters
    assignments: tuple[AssignmentRecord, ...] = ()
    exemptions: tuple[ExemptionRecord, ...] = ()


# ---------------------------------------------------------------------------
# Delta
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldChange:
    field: str
    previous: Any
    current: Any


@dataclass(frozen=True)
class AssignmentChange:
    assignment_name: str
    scope_path: str
    display_name: str
    changes: tuple[FieldChange, ...] = ()


@dataclass(frozen=True)
class EffectDelta:
    effect: str
    previous: int
    current: int
    delta: int  # current - previous


@dataclass(frozen=True)
class DeltaResult:
    previous_timestamp: str
    previous_version_tag: str
    scope_filter: Optional[str] = None
    new_assignments: tuple[AssignmentRecord, ...] = ()
    removed_assignments: tuple[AssignmentRecord, ...] = ()
    changed_assignments: tuple[AssignmentChange, ...] = ()
    effect_deltas: tuple[EffectDelta, ...] = ()
    new_exemptions: tuple[ExemptionRecord, ...] = ()
    removed_exemptions: tuple[ExemptionRecord, ...] = ()
    assignment_count_delta: int = 0
    non_compliant_delta: int = 0
    high_risk_delta: int = 0
    enforced_delta: int = 0
    trend: str = TREND_STABLE
