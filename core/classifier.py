"""
core/classifier.py -- Multi-signal scoring of normalized assignment records.

Every dimension is scored by accumulating points from independent signals
(effect, category, display-name keywords, enforcement) and mapping the final
total onto an ordinal level with fixed thresholds. Signals never short-circuit
each other: an effect signal and a keyword signal that both apply are both
counted.

classify() is pure: no I/O, no globals, same input -> same output. Calling it
on an already-classified record recomputes the derived fields from the
non-derived ones and returns an identical record.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Iterable, NamedTuple, Optional

from core import keywords as kw
from core.models import (
    EFFECT_AUDIT,
    EFFECT_AUDIT_IF_NOT_EXISTS,
    EFFECT_DENY,
    EFFECT_DEPLOY_IF_NOT_EXISTS,
    EFFECT_DISABLED,
    EFFECT_MODIFY,
    EFFECT_PARAMETERIZED,
    LEVEL_HIGH,
    LEVEL_LOW,
    LEVEL_MEDIUM,
    LEVEL_NONE,
    NOT_ENFORCED,
    RULE_KIND_REGULATORY,
    AssignmentRecord,
)

logger = logging.getLogger("policypulse.classifier")

# ---------------------------------------------------------------------------
# Effect parsing
# ---------------------------------------------------------------------------

_COMPOSITE_PART_RE = re.compile(r"([A-Za-z]+)\((\d+)\)")

_REMEDIATION_EFFECTS = frozenset({EFFECT_DEPLOY_IF_NOT_EXISTS, EFFECT_MODIFY})
_ACTIVE_EFFECTS = frozenset({EFFECT_DENY, EFFECT_DEPLOY_IF_NOT_EXISTS, EFFECT_MODIFY})

MODE_SINGLE = "single"
MODE_COMPOSITE = "composite"
MODE_PARAMETERIZED = "parameterized"
MODE_UNKNOWN = "unknown"


class ScoringEffect(NamedTuple):
    """The effect as the scoring tables see it.

    mode is single | composite | parameterized | unknown. For composites,
    effect is the dominant (first listed, highest count) member effect and
    members holds every member effect name.
    """

    mode: str
    effect: str
    members: tuple[str, ...] = ()


def parse_composite_effect(effect: str) -> list[tuple[str, int]]:
    """Split "Audit(5), Deny(3)" into [("Audit", 5), ("Deny", 3)] in listed order."""
    return [(name, int(count)) for name, count in _COMPOSITE_PART_RE.findall(effect or "")]


def scoring_effect(record: AssignmentRecord) -> ScoringEffect:
    if record.effect_parameterized or record.effect == EFFECT_PARAMETERIZED:
        return ScoringEffect(MODE_PARAMETERIZED, EFFECT_PARAMETERIZED)
    parts = parse_composite_effect(record.effect)
    if parts:
        # Composite summaries are written in descending count order, so the
        # first part is the dominant effect.
        return ScoringEffect(MODE_COMPOSITE, parts[0][0], tuple(name for name, _ in parts))
    if record.effect.startswith("Multiple"):
        return ScoringEffect(MODE_UNKNOWN, "")
    return ScoringEffect(MODE_SINGLE, record.effect, (record.effect,))


def effect_includes(record: AssignmentRecord, effects: Iterable[str]) -> bool:
    """True if the record's effect is, or (for composites) contains, one of effects."""
    wanted = set(effects)
    return any(member in wanted for member in scoring_effect(record).members)


# ---------------------------------------------------------------------------
# Security score
# ---------------------------------------------------------------------------

SECURITY_BASELINE = 50
ENFORCEMENT_GAP_PERCENT = 65
ENFORCEMENT_GAP_FLOOR = 10

_SECURITY_EFFECT_POINTS: dict[str, int] = {
    EFFECT_DENY: 30,
    EFFECT_DEPLOY_IF_NOT_EXISTS: 25,
    EFFECT_MODIFY: 20,
    EFFECT_AUDIT_IF_NOT_EXISTS: 5,
    EFFECT_AUDIT: 0,
    EFFECT_DISABLED: -35,
}

# Dominant member of a mixed rule-set counts for less than a uniform effect.
_SECURITY_COMPOSITE_POINTS: dict[str, int] = {
    EFFECT_DENY: 25,
    EFFECT_DEPLOY_IF_NOT_EXISTS: 20,
    EFFECT_MODIFY: 15,
}


def _security_effect_signal(record: AssignmentRecord, se: ScoringEffect) -> int:
    if se.mode == MODE_SINGLE:
        return _SECURITY_EFFECT_POINTS.get(se.effect, 0)
    if se.mode == MODE_COMPOSITE:
        return _SECURITY_COMPOSITE_POINTS.get(se.effect, 0)
    if se.mode == MODE_PARAMETERIZED:
        if kw.is_security_sensitive_category(record.category):
            return 15
        if kw.is_network_category(record.category) or kw.is_identity_category(record.category):
            return 10
        return 5
    return 0


def _security_category_signal(category: str) -> int:
    if kw.is_security_sensitive_category(category):
        return 15
    if kw.is_moderately_sensitive_category(category):
        return 10
    if kw.is_routine_category(category):
        return 5
    if kw.is_administrative_category(category):
        return -15
    return 0


def _name_signal(record: AssignmentRecord) -> int:
    name = record.display_name or record.assignment_name
    points = 0
    if kw.is_security_related_name(name):
        points += 10
    if kw.is_governance_related_name(name):
        points += 5
    return points


def apply_enforcement_gap(points: int) -> int:
    """Scale a security total for an unenforced assignment.

    Unenforced rules still report violations, so the result is floored at
    ENFORCEMENT_GAP_FLOOR. Totals already at or below the floor are returned
    unchanged: the modifier never raises a score.
    """
    if points <= ENFORCEMENT_GAP_FLOOR:
        return points
    return max(points * ENFORCEMENT_GAP_PERCENT // 100, ENFORCEMENT_GAP_FLOOR)


def security_points(record: AssignmentRecord) -> int:
    se = scoring_effect(record)
    points = SECURITY_BASELINE
    points += _security_effect_signal(record, se)
    points += _security_category_signal(record.category)
    points += _name_signal(record)
    if record.enforcement_mode == NOT_ENFORCED:
        points = apply_enforcement_gap(points)
    return points


def security_level(points: int) -> str:
    if points >= 75:
        return LEVEL_HIGH
    if points >= 40:
        return LEVEL_MEDIUM
    if points >= 15:
        return LEVEL_LOW
    return LEVEL_NONE


# ---------------------------------------------------------------------------
# Cost score
# ---------------------------------------------------------------------------

COST_BASELINE = 20


def _deploy_cost(category: str) -> int:
    """What a DeployIfNotExists remediation costs, by what it deploys."""
    if (
        kw.is_monitoring_category(category)
        or kw.is_security_sensitive_category(category)
        or kw.is_backup_category(category)
    ):
        return 45
    if kw.is_network_category(category) or kw.is_compute_category(category) or kw.is_database_category(category):
        return 30
    if kw.is_storage_category(category) or kw.is_registry_category(category) or kw.is_pipeline_category(category):
        return 20
    return 15


# Parameterized effects may or may not remediate; the deploy table is used
# at reduced magnitude, topping out at +30.
_PARAMETERIZED_COST: dict[int, int] = {45: 30, 30: 20, 20: 15, 15: 10}


def _modify_cost(category: str) -> int:
    if kw.is_administrative_category(category):
        return 0
    if kw.is_infrastructure_category(category):
        return 20
    if kw.is_monitoring_category(category) or kw.is_security_sensitive_category(category):
        return 15
    return 10


def _cost_effect_signal(category: str, se: ScoringEffect) -> int:
    if se.mode == MODE_PARAMETERIZED:
        return _PARAMETERIZED_COST[_deploy_cost(category)]
    if se.effect == EFFECT_DEPLOY_IF_NOT_EXISTS:
        return _deploy_cost(category)
    if se.effect == EFFECT_MODIFY:
        return _modify_cost(category)
    if se.effect == EFFECT_DENY:
        return -5
    if se.effect == EFFECT_DISABLED:
        return -10
    return 0


def cost_points(record: AssignmentRecord) -> int:
    points = COST_BASELINE + _cost_effect_signal(record.category, scoring_effect(record))
    name = record.display_name or record.assignment_name
    if kw.is_cost_heavy_name(name):
        points += 10
    if kw.is_low_cost_name(name):
        points -= 10
    return points


def cost_level(points: int) -> str:
    if points >= 55:
        return LEVEL_HIGH
    if points >= 30:
        return LEVEL_MEDIUM
    return LEVEL_LOW


# ---------------------------------------------------------------------------
# Compliance impact and operational overhead
# ---------------------------------------------------------------------------


def compliance_level(record: AssignmentRecord) -> str:
    if (
        record.rule_kind == RULE_KIND_REGULATORY
        or effect_includes(record, (EFFECT_DENY,))
        or kw.is_security_sensitive_category(record.category)
        or kw.is_network_category(record.category)
    ):
        return LEVEL_HIGH
    if record.enforcement_mode == NOT_ENFORCED:
        return LEVEL_LOW
    return LEVEL_MEDIUM


def operational_level(record: AssignmentRecord) -> str:
    se = scoring_effect(record)
    category = record.category
    if se.mode == MODE_PARAMETERIZED:
        if (
            kw.is_security_sensitive_category(category)
            or kw.is_monitoring_category(category)
            or kw.is_backup_category(category)
        ):
            return LEVEL_HIGH
        if kw.is_network_category(category) or kw.is_compute_category(category):
            return LEVEL_MEDIUM
        return LEVEL_LOW
    if se.effect in _REMEDIATION_EFFECTS and not kw.is_tagging_category(category):
        return LEVEL_HIGH
    if se.effect == EFFECT_DENY:
        return LEVEL_MEDIUM
    return LEVEL_LOW


# ---------------------------------------------------------------------------
# Risk level
# ---------------------------------------------------------------------------

_RISK_SECURITY_POINTS: dict[str, int] = {
    LEVEL_HIGH: 40,
    LEVEL_MEDIUM: 20,
    LEVEL_LOW: 5,
}


def risk_points(record: AssignmentRecord, security_impact: str) -> int:
    points = _RISK_SECURITY_POINTS.get(security_impact, 0)
    enforced = record.enforcement_mode != NOT_ENFORCED
    if not enforced and security_impact in (LEVEL_HIGH, LEVEL_MEDIUM):
        points += 15
    if enforced and effect_includes(record, _ACTIVE_EFFECTS):
        points -= 10
    if record.effect == EFFECT_DISABLED:
        points += 10
    return points


def risk_level(points: int) -> str:
    if points >= 40:
        return LEVEL_HIGH
    if points >= 20:
        return LEVEL_MEDIUM
    return LEVEL_LOW


# ---------------------------------------------------------------------------
# Recommendation
# ---------------------------------------------------------------------------

REC_ENABLE_ENFORCEMENT_URGENT = (
    "URGENT: Enable enforcement. This high security impact assignment only reports violations."
)
REC_REVIEW_ENFORCEMENT = "Review enforcement mode. Violations are reported but not prevented or remediated."
REC_DISABLED = "Assignment is disabled. Remove it or re-enable it with an appropriate effect."
REC_PARAMETERIZED = "Effect comes from an unresolved parameter. Confirm the value bound on the assignment."
REC_MONITOR_REMEDIATION_COST = (
    "Monitor remediation costs. Auto-deployed resources from this assignment may incur significant spend."
)
REC_LOW_COST_REMEDIATION = "Low-cost governance remediation. Keep enforced."
REC_REMEDIATION_IDENTITY = "Verify the assignment identity holds the roles its remediation tasks need."
REC_DOCUMENT_EXCEPTIONS = "Preventive control. Document an exemption process for legitimate exceptions."
REC_MIXED_SET = "Rule-set with mixed member effects. Review member effects individually."
REC_UPGRADE_EFFECT = "Consider Deny or DeployIfNotExists once existing resources are compliant."
REC_AUDIT_ONLY = "Audit-only control. Review non-compliant resources periodically."


def _is_sensitive_active(record: AssignmentRecord, se: ScoringEffect) -> bool:
    if se.mode == MODE_PARAMETERIZED or se.effect not in _ACTIVE_EFFECTS:
        return False
    return kw.is_security_sensitive_category(record.category)


def recommend(record: AssignmentRecord, security_impact: str, cost_impact: str) -> str:
    """Pick a recommendation from (enforcement, effect, cost, category).

    The enforcement gap caps an unenforced record below High, so the urgent
    branch also fires for a preventive or remediating effect left unenforced
    in a security-sensitive category.
    """
    se = scoring_effect(record)
    if record.enforcement_mode == NOT_ENFORCED:
        if security_impact == LEVEL_HIGH or _is_sensitive_active(record, se):
            return REC_ENABLE_ENFORCEMENT_URGENT
        return REC_REVIEW_ENFORCEMENT
    if se.mode == MODE_SINGLE and se.effect == EFFECT_DISABLED:
        return REC_DISABLED
    if se.mode == MODE_PARAMETERIZED:
        return REC_PARAMETERIZED
    if se.effect in _REMEDIATION_EFFECTS:
        if cost_impact == LEVEL_HIGH:
            return REC_MONITOR_REMEDIATION_COST
        if kw.is_administrative_category(record.category):
            return REC_LOW_COST_REMEDIATION
        return REC_REMEDIATION_IDENTITY
    if se.effect == EFFECT_DENY:
        return REC_DOCUMENT_EXCEPTIONS
    if se.mode in (MODE_COMPOSITE, MODE_UNKNOWN):
        return REC_MIXED_SET
    if security_impact in (LEVEL_HIGH, LEVEL_MEDIUM) and se.effect in (EFFECT_AUDIT, EFFECT_AUDIT_IF_NOT_EXISTS):
        return REC_UPGRADE_EFFECT
    return REC_AUDIT_ONLY


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def classify(record: AssignmentRecord) -> AssignmentRecord:
    """Return a copy of record with every derived field computed."""
    security = security_level(security_points(record))
    cost = cost_level(cost_points(record))
    return replace(
        record,
        security_impact=security,
        cost_impact=cost,
        compliance_impact=compliance_level(record),
        operational_overhead=operational_level(record),
        risk_level=risk_level(risk_points(record, security)),
        recommendation=recommend(record, security, cost),
    )


def classify_all(records: Iterable[AssignmentRecord], workers: Optional[int] = 1) -> list[AssignmentRecord]:
    """Classify a batch of records, in input order.

    classify() shares no state between calls, so with workers > 1 the batch
    is fanned out over a thread pool and merged back in order.
    """
    items = list(records)
    if not workers or workers <= 1 or len(items) < 2:
        return [classify(r) for r in items]
    logger.debug("Classifying %d records on %d workers", len(items), workers)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(classify, items))
