"""
api/routes/v1/assessments.py -- Run an assessment over posted exports.

The retrieval layer posts raw assignments, exemptions, compliance facts and
definitions; this handler runs the core pipeline, optionally persists the
resulting snapshot and diffs it against the tenant's previous run.

Rate limits are applied via slowapi. The @limiter.limit() decorator must sit
ABOVE @router.post so that slowapi can attach the limit string to the
function object before FastAPI wraps it.
"""

import logging
from dataclasses import asdict

from fastapi import APIRouter, Request

from api.limiter import ASSESSMENT_LIMIT, limiter
from api.models import AssessmentRequest, AssessmentResponse, AssignmentRow
from core.config import get_settings
from core.ingest import parse_assignments, parse_compliance, parse_definitions, parse_exemptions
from core.normalizer import ChainedDefinitionLookup, StaticDefinitionLookup
from core.pipeline import compare_with_previous, run_assessment
from core.snapshot import snapshot_to_dict

logger = logging.getLogger("policypulse.api.assessments")

router = APIRouter()


@limiter.limit(ASSESSMENT_LIMIT)
@router.post("/assessments", response_model=AssessmentResponse)
def post_assessment(request: Request, body: AssessmentRequest) -> AssessmentResponse:
    """Classify the posted assignments and compute baseline coverage.

    Definitions in the body are consulted before the server's definition
    cache. When body.catalog is omitted the server's configured catalog is
    used (or the built-in fallback).

    With compare=true the tenant's newest stored snapshot becomes the
    previous run. A stored snapshot that no longer loads fails the request
    with 500 snapshot_load_error rather than returning a misleading delta.
    """
    settings = get_settings()
    state = request.app.state
    tenant = body.tenant or settings.tenant_label

    definitions = ChainedDefinitionLookup(
        StaticDefinitionLookup(parse_definitions(body.definitions)),
        state.definitions,
    )
    catalog = body.catalog if body.catalog is not None else state.catalog

    assessment = run_assessment(
        parse_assignments(body.assignments),
        parse_exemptions(body.exemptions),
        compliance=parse_compliance(body.compliance),
        catalog=catalog,
        definitions=definitions,
        scope_filter=body.scope_filter,
        tenant=tenant,
        workers=settings.classify_workers,
        expiring_soon_days=settings.expiring_soon_days,
    )

    delta = None
    if body.compare:
        previous = state.history.latest_snapshot(tenant=tenant)
        if previous is not None:
            delta = compare_with_previous(assessment, previous)

    snapshot_id = None
    if body.save:
        snapshot_id = state.history.save_snapshot(assessment.snapshot)
        state.history.prune(settings.snapshot_retention, tenant=tenant)

    snapshot_data = snapshot_to_dict(assessment.snapshot)
    return AssessmentResponse(
        snapshot_id=snapshot_id,
        summary=snapshot_data["summary"],
        coverage=asdict(assessment.coverage),
        assignments=[AssignmentRow.from_record(r) for r in assessment.snapshot.assignments],
        warnings=list(assessment.warnings),
        delta=asdict(delta) if delta is not None else None,
    )
