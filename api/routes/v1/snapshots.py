"""
api/routes/v1/snapshots.py -- Read access to stored snapshot history.

Snapshots are immutable once saved, so there are no mutation routes here.
The literal path /snapshots is registered before /snapshots/{snapshot_id}.
"""

from dataclasses import asdict
from typing import Annotated, Optional

from fastapi import APIRouter, HTTPException, Path, Query, Request

from api.limiter import DELTA_LIMIT, READ_LIMIT, limiter
from api.models import DeltaResponse, DeltaSummary, ErrorDetail, SnapshotListResponse, SnapshotRow
from core.delta import compute_delta
from core.snapshot import snapshot_to_dict
from history.store import SnapshotStore

router = APIRouter()


def _not_found(snapshot_id: int) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=ErrorDetail(
            code="snapshot_not_found",
            message=f"Snapshot {snapshot_id} was not found.",
        ).model_dump(),
    )


@limiter.limit(READ_LIMIT)
@router.get("/snapshots", response_model=SnapshotListResponse)
def list_snapshots(
    request: Request,
    tenant: Annotated[Optional[str], Query(max_length=255)] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> SnapshotListResponse:
    """List stored snapshots, newest first."""
    history: SnapshotStore = request.app.state.history
    rows = [SnapshotRow.from_info(info) for info in history.list_snapshots(tenant=tenant, limit=limit)]
    return SnapshotListResponse(total=len(rows), snapshots=rows)


@limiter.limit(READ_LIMIT)
@router.get("/snapshots/{snapshot_id}")
def get_snapshot(request: Request, snapshot_id: Annotated[int, Path(ge=1)]) -> dict:
    """Return the full persisted snapshot: metadata, summary, assignments and exemptions."""
    history: SnapshotStore = request.app.state.history
    snapshot = history.get_snapshot(snapshot_id)
    if snapshot is None:
        raise _not_found(snapshot_id)
    data = snapshot_to_dict(snapshot)
    data["id"] = snapshot_id
    return data


@limiter.limit(DELTA_LIMIT)
@router.get("/snapshots/{snapshot_id}/delta", response_model=DeltaResponse)
def get_snapshot_delta(
    request: Request,
    snapshot_id: Annotated[int, Path(ge=1)],
    against: Annotated[Optional[int], Query(ge=1)] = None,
) -> DeltaResponse:
    """Diff a stored snapshot against an earlier one.

    Without ?against= the previous snapshot of the same tenant is used. The
    comparison is scoped with the later snapshot's scope filter.
    """
    history: SnapshotStore = request.app.state.history
    current = history.get_snapshot(snapshot_id)
    if current is None:
        raise _not_found(snapshot_id)

    previous_id = against
    if previous_id is None:
        previous_id = history.latest_snapshot_id(tenant=current.metadata.tenant_identity, before_id=snapshot_id)
        if previous_id is None:
            raise HTTPException(
                status_code=404,
                detail=ErrorDetail(
                    code="no_previous_snapshot",
                    message=f"Snapshot {snapshot_id} has no earlier snapshot to compare against.",
                ).model_dump(),
            )

    previous = history.get_snapshot(previous_id)
    if previous is None:
        raise _not_found(previous_id)

    delta = compute_delta(
        previous,
        current.assignments,
        current.exemptions,
        scope_filter=current.metadata.scope_filter_label or None,
    )
    return DeltaResponse(
        snapshot_id=snapshot_id,
        previous_snapshot_id=previous_id,
        summary=DeltaSummary.from_delta(delta),
        delta=asdict(delta),
    )
