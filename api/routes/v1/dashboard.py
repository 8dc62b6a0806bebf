"""
api/routes/v1/dashboard.py -- Aggregated metrics endpoint for PolicyPulse.

Returns a single payload suitable for driving dashboard widgets:
  - Summary counters of the newest snapshot
  - Risk distribution
  - Top assignments ranked by non-compliant resources
  - Baseline coverage per category
  - Trend against the snapshot before it, and recent history

This is a read-only aggregate route -- no mutations here.
"""

from dataclasses import asdict
from typing import Annotated, Optional

from fastapi import APIRouter, Query, Request

from api.limiter import READ_LIMIT, limiter
from api.models import AssignmentRow, DashboardResponse, SnapshotRow
from core.coverage import match_coverage, resolve_catalog
from core.delta import compute_delta
from core.snapshot import snapshot_to_dict
from history.store import SnapshotStore

router = APIRouter()


@limiter.limit(READ_LIMIT)
@router.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(
    request: Request,
    tenant: Annotated[Optional[str], Query(max_length=255)] = None,
) -> DashboardResponse:
    """Return aggregated metrics for the newest snapshot.

    Response:
      summary              -- the snapshot's summary counters
      risk_counts          -- {"High": N, "Medium": N, "Low": N}
      top_non_compliant    -- up to 10 assignments with the most non-compliant resources
      coverage_by_category -- baseline coverage against the server's catalog
      trend                -- verdict against the previous snapshot, if any
      history              -- up to 10 most recent snapshots
    """
    history: SnapshotStore = request.app.state.history

    snapshot_id = history.latest_snapshot_id(tenant=tenant)
    if snapshot_id is None:
        return DashboardResponse(tenant=tenant or "")
    snapshot = history.get_snapshot(snapshot_id)

    summary = snapshot.summary
    top = sorted(
        snapshot.assignments,
        key=lambda r: (-r.non_compliant_resource_count, r.assignment_name.lower()),
    )[:10]

    catalog, source = resolve_catalog(request.app.state.catalog)
    coverage = match_coverage(snapshot.assignments, catalog, source)

    trend = None
    previous = history.latest_snapshot(tenant=snapshot.metadata.tenant_identity, before_id=snapshot_id)
    if previous is not None:
        delta = compute_delta(
            previous,
            snapshot.assignments,
            snapshot.exemptions,
            scope_filter=snapshot.metadata.scope_filter_label or None,
        )
        trend = delta.trend

    return DashboardResponse(
        snapshot_id=snapshot_id,
        timestamp=snapshot.metadata.timestamp,
        tenant=snapshot.metadata.tenant_identity,
        summary=snapshot_to_dict(snapshot)["summary"],
        risk_counts={
            "High": summary.high_risk_count,
            "Medium": summary.medium_risk_count,
            "Low": summary.low_risk_count,
        },
        top_non_compliant=[AssignmentRow.from_record(r) for r in top],
        coverage_by_category=[asdict(c) for c in coverage.categories],
        trend=trend,
        history=[SnapshotRow.from_info(i) for i in history.list_snapshots(tenant=tenant, limit=10)],
    )
