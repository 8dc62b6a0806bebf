"""
API request and response models for PolicyPulse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: core/ models = domain truth; api/ models = API contract.
"""

from dataclasses import asdict
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.models import AssignmentRecord, DeltaResult
from history.models import SnapshotInfo

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_ASSIGNMENTS_PER_REQUEST = 10000


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class AssessmentRequest(BaseModel):
    """Request body for POST /api/v1/assessments.

    Each list field accepts a bare list or an ARM {"value": [...]} page, whose
    "value" list is unwrapped before validation. Items may keep their
    "properties" envelopes; the handler runs them through core.ingest before
    normalizing.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    assignments: list[dict[str, Any]] = Field(
        max_length=MAX_ASSIGNMENTS_PER_REQUEST,
        description="Raw policy assignments.",
    )
    exemptions: list[dict[str, Any]] = Field(default_factory=list)
    compliance: list[dict[str, Any]] = Field(
        default_factory=list,
        description="policyStates/summarize rows or flat per-assignment counts.",
    )
    definitions: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Rule and rule-set definitions. Looked up before the server-side cache.",
    )
    catalog: Optional[dict[str, list[str]]] = Field(
        default=None,
        description="Baseline catalog. Omit to use the server's configured catalog.",
    )
    scope_filter: Optional[str] = Field(default=None, max_length=1000)
    tenant: Optional[str] = Field(default=None, max_length=255)
    save: bool = True
    compare: bool = Field(default=True, description="Diff against the tenant's latest stored snapshot.")

    @field_validator("assignments", "exemptions", "compliance", "definitions", mode="before")
    @classmethod
    def unwrap_arm_page(cls, value: Any) -> Any:
        if isinstance(value, dict) and isinstance(value.get("value"), list):
            return value["value"]
        return value

    @field_validator("scope_filter", "tenant", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        """Treat "" the same as an omitted value."""
        if isinstance(value, str) and not value.strip():
            return None
        return value


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AssignmentRow(BaseModel):
    """Lightweight view of one classified assignment -- one row in a table."""

    model_config = ConfigDict(frozen=True)

    assignment_name: str
    display_name: str
    scope_path: str
    effect: str
    enforcement_mode: str
    non_compliant_resource_count: int
    security_impact: str
    cost_impact: str
    risk_level: str
    recommendation: str

    @classmethod
    def from_record(cls, record: AssignmentRecord) -> "AssignmentRow":
        """Build an AssignmentRow from a core AssignmentRecord instance.

        Factory Method: the mapping lives here, colocated with the output
        model, rather than scattered across route handlers.
        """
        return cls(
            assignment_name=record.assignment_name,
            display_name=record.display_name,
            scope_path=record.scope_path,
            effect=record.effect,
            enforcement_mode=record.enforcement_mode,
            non_compliant_resource_count=record.non_compliant_resource_count,
            security_impact=record.security_impact,
            cost_impact=record.cost_impact,
            risk_level=record.risk_level,
            recommendation=record.recommendation,
        )


class DeltaSummary(BaseModel):
    """Counts-only view of a DeltaResult."""

    model_config = ConfigDict(frozen=True)

    previous_timestamp: str
    new: int
    removed: int
    changed: int
    new_exemptions: int
    removed_exemptions: int
    non_compliant_delta: int
    high_risk_delta: int
    enforced_delta: int
    trend: str

    @classmethod
    def from_delta(cls, delta: DeltaResult) -> "DeltaSummary":
        return cls(
            previous_timestamp=delta.previous_timestamp,
            new=len(delta.new_assignments),
            removed=len(delta.removed_assignments),
            changed=len(delta.changed_assignments),
            new_exemptions=len(delta.new_exemptions),
            removed_exemptions=len(delta.removed_exemptions),
            non_compliant_delta=delta.non_compliant_delta,
            high_risk_delta=delta.high_risk_delta,
            enforced_delta=delta.enforced_delta,
            trend=delta.trend,
        )


class AssessmentResponse(BaseModel):
    """Response body for POST /api/v1/assessments.

    snapshot_id is None when the caller passed save=false.
    delta is None when there was nothing to compare against.
    """

    model_config = ConfigDict(frozen=True)

    snapshot_id: Optional[int] = None
    summary: dict[str, Any]
    coverage: dict[str, Any]
    assignments: list[AssignmentRow]
    warnings: list[str] = Field(default_factory=list)
    delta: Optional[dict[str, Any]] = None


class SnapshotRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    tenant: str
    timestamp: str
    version_tag: str
    scope_filter: str
    assignment_count: int
    non_compliant_total: int
    high_risk_count: int
    coverage_percent: int

    @classmethod
    def from_info(cls, info: SnapshotInfo) -> "SnapshotRow":
        data = asdict(info)
        data.pop("created_at", None)
        return cls(**data)


class SnapshotListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    snapshots: list[SnapshotRow]


class DeltaResponse(BaseModel):
    """Response for GET /api/v1/snapshots/{id}/delta."""

    model_config = ConfigDict(frozen=True)

    snapshot_id: int
    previous_snapshot_id: int
    summary: DeltaSummary
    delta: dict[str, Any]


class DashboardResponse(BaseModel):
    """Response for GET /api/v1/dashboard.

    All fields are zero/empty when no snapshot has been stored yet.
    """

    model_config = ConfigDict(frozen=True)

    snapshot_id: Optional[int] = None
    timestamp: Optional[str] = None
    tenant: str = ""
    summary: dict[str, Any] = Field(default_factory=dict)
    risk_counts: dict[str, int] = Field(default_factory=dict)
    top_non_compliant: list[AssignmentRow] = Field(default_factory=list)
    coverage_by_category: list[dict[str, Any]] = Field(default_factory=list)
    trend: Optional[str] = None
    history: list[SnapshotRow] = Field(default_factory=list)


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
