"""
core/normalizer.py -- Turns raw assignment/exemption dicts into typed records.

Raw input comes from the retrieval layer (see core/ingest.py) as open-ended
dicts. This module is the boundary where that shape is closed: everything
downstream works on AssignmentRecord / ExemptionRecord only.

Rule definitions are looked up through an injected DefinitionLookup rather
than any module-level cache, so tests can hand in a fixed mapping and the
CLI/API can hand in the SQLite-backed cache.DefinitionCache.

A record that cannot be normalized raises NormalizationError. The batch
helpers catch it, log a warning and keep going with the remaining records.
"""

import logging
import re
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Protocol

from core.errors import NormalizationError
from core.models import (
    EFFECT_AUDIT,
    EFFECT_AUDIT_IF_NOT_EXISTS,
    EFFECT_DENY,
    EFFECT_DEPLOY_IF_NOT_EXISTS,
    EFFECT_DISABLED,
    EFFECT_MODIFY,
    ENFORCED,
    EXEMPTION_MITIGATED,
    EXEMPTION_WAIVER,
    NOT_ENFORCED,
    RULE_KIND_REGULATORY,
    RULE_KIND_SET,
    RULE_KIND_SINGLE,
    SCOPE_ACCOUNT,
    SCOPE_ORG,
    SCOPE_RESOURCE_GROUP,
    AssignmentRecord,
    ExemptionRecord,
)

logger = logging.getLogger("policypulse.normalizer")

REGULATORY_CATEGORY = "regulatory compliance"

_PARAM_REF_RE = re.compile(r"^\s*\[\s*parameters\(\s*'([^']+)'\s*\)\s*\]\s*$", re.IGNORECASE)

_EFFECT_ALIASES: dict[str, str] = {
    "deny": EFFECT_DENY,
    "denyaction": EFFECT_DENY,
    "audit": EFFECT_AUDIT,
    "manual": EFFECT_AUDIT,
    "auditifnotexists": EFFECT_AUDIT_IF_NOT_EXISTS,
    "deployifnotexists": EFFECT_DEPLOY_IF_NOT_EXISTS,
    "modify": EFFECT_MODIFY,
    "append": EFFECT_MODIFY,
    "disabled": EFFECT_DISABLED,
}

_NOT_ENFORCED_MODES = {"donotenforce", "notenforced"}


# ---------------------------------------------------------------------------
# Definition lookup
# ---------------------------------------------------------------------------


class DefinitionLookup(Protocol):
    """Anything that can resolve a rule or rule-set definition by its id.

    A definition is a flat dict: displayName, category, effect (declared,
    possibly a "[parameters('x')]" reference) and, for rule-sets,
    policyDefinitions -- a list of {"policyDefinitionId", "parameters"}.
    """

    def get_definition(self, definition_id: str) -> Optional[dict]: ...


class StaticDefinitionLookup:
    """In-memory DefinitionLookup over a mapping of id -> definition. Ids are case-insensitive."""

    def __init__(self, definitions: Optional[Mapping[str, dict]] = None) -> None:
        self._definitions = {k.lower(): v for k, v in (definitions or {}).items()}

    def get_definition(self, definition_id: str) -> Optional[dict]:
        return self._definitions.get((definition_id or "").lower())

    def __len__(self) -> int:
        return len(self._definitions)


class ChainedDefinitionLookup:
    """Ask each lookup in turn; the first definition found wins."""

    def __init__(self, *lookups: DefinitionLookup) -> None:
        self._lookups = [lookup for lookup in lookups if lookup is not None]

    def get_definition(self, definition_id: str) -> Optional[dict]:
        for lookup in self._lookups:
            definition = lookup.get_definition(definition_id)
            if definition is not None:
                return definition
        return None


# ---------------------------------------------------------------------------
# Scope parsing
# ---------------------------------------------------------------------------


def parse_scope(scope_path: str) -> tuple[str, str]:
    """Return (scope_type, scope_name) for a hierarchical scope path.

    /providers/Microsoft.Management/managementGroups/<mg>   -> Org
    /subscriptions/<id>                                      -> Account
    /subscriptions/<id>/resourceGroups/<rg>                  -> ResourceGroup

    Raises NormalizationError for anything else.
    """
    parts = [p for p in (scope_path or "").split("/") if p]
    lowered = [p.lower() for p in parts]
    if len(parts) == 4 and lowered[:3] == ["providers", "microsoft.management", "managementgroups"]:
        return SCOPE_ORG, parts[3]
    if len(parts) == 2 and lowered[0] == "subscriptions":
        return SCOPE_ACCOUNT, parts[1]
    if len(parts) == 4 and lowered[0] == "subscriptions" and lowered[2] == "resourcegroups":
        return SCOPE_RESOURCE_GROUP, parts[3]
    raise NormalizationError(f"unrecognised scope path: {scope_path!r}")


def _scope_from_assignment_id(assignment_id: str) -> str:
    marker = "/providers/microsoft.authorization/"
    idx = assignment_id.lower().find(marker)
    return assignment_id[:idx] if idx > 0 else ""


# ---------------------------------------------------------------------------
# Effect resolution
# ---------------------------------------------------------------------------


def canonical_effect(value: Any) -> Optional[str]:
    """Map a raw effect string onto the fixed vocabulary, or None if unknown."""
    if not isinstance(value, str):
        return None
    return _EFFECT_ALIASES.get(value.strip().lower())


def _parameter_value(parameters: Optional[Mapping[str, Any]], name: str) -> Any:
    """Read a bound parameter value. Accepts {"x": {"value": v}} and {"x": v}."""
    if not parameters:
        return None
    for key, bound in parameters.items():
        if key.lower() == name.lower():
            if isinstance(bound, Mapping):
                return bound.get("value")
            return bound
    return None


def _bound_parameters(value: Any, owner: str) -> Mapping[str, Any]:
    """Parameter bindings must be a mapping; anything else fails the record."""
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise NormalizationError(f"{owner} has parameters of type {type(value).__name__}, expected an object")
    return value


def resolve_effect(declared: Any, *parameter_scopes: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Resolve a declared effect through parameter references.

    Each "[parameters('x')]" reference is looked up in the next parameter
    scope in turn (member reference parameters, then assignment parameters),
    so a member effect bound to a set-level parameter resolves in two hops.
    Returns None when the chain cannot be resolved to a known effect.
    """
    value = declared
    scopes = list(parameter_scopes)
    while isinstance(value, str):
        match = _PARAM_REF_RE.match(value)
        if not match:
            return canonical_effect(value)
        if not scopes:
            return None
        value = _parameter_value(scopes.pop(0), match.group(1))
    return None


def summarize_member_effects(effects: Iterable[str], member_count: int) -> str:
    """Summarize resolved member effects of a rule-set.

    One distinct effect -> that effect. Several -> "Audit(5), Deny(3)" by
    descending count; equal counts keep first-encountered order. None
    resolved -> "Multiple (N policies)".
    """
    counts = Counter(effects)
    if not counts:
        return f"Multiple ({member_count} policies)"
    if len(counts) == 1:
        return next(iter(counts))
    # most_common() sorts stably, so ties stay in insertion order.
    return ", ".join(f"{effect}({count})" for effect, count in counts.most_common())


def _is_set_reference(definition_id: str, definition: Optional[dict]) -> bool:
    if "/policysetdefinitions/" in definition_id.lower():
        return True
    return bool(definition and definition.get("policyDefinitions"))


def _last_segment(resource_id: str) -> str:
    return resource_id.rstrip("/").rsplit("/", 1)[-1] if resource_id else ""


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


def normalize(raw: Mapping[str, Any], definitions: DefinitionLookup) -> AssignmentRecord:
    """Build an unclassified AssignmentRecord from one raw assignment dict."""
    if not isinstance(raw, Mapping):
        raise NormalizationError(f"assignment must be a mapping, got {type(raw).__name__}")

    definition_id = str(raw.get("policyDefinitionId") or "").strip()
    if not definition_id:
        raise NormalizationError(f"assignment {raw.get('name') or raw.get('id')!r} has no rule reference")

    assignment_id = str(raw.get("id") or "").strip()
    scope_path = str(raw.get("scope") or "").strip() or _scope_from_assignment_id(assignment_id)
    if not scope_path:
        raise NormalizationError(f"assignment {raw.get('name') or assignment_id!r} has no scope")
    scope_type, scope_name = parse_scope(scope_path)

    name = str(raw.get("name") or _last_segment(assignment_id)).strip()
    if not name:
        raise NormalizationError("assignment has neither a name nor an id")
    if not assignment_id:
        assignment_id = f"{scope_path}/providers/Microsoft.Authorization/policyAssignments/{name}"

    definition = definitions.get_definition(definition_id)
    if definition is None:
        logger.debug("No definition found for %s (assignment %s)", definition_id, name)
    definition = definition or {}

    category = str(definition.get("category") or "")
    rule_name = str(definition.get("displayName") or _last_segment(definition_id))
    parameters = _bound_parameters(raw.get("parameters"), f"assignment {name!r}")
    parameterized = False

    if _is_set_reference(definition_id, definition):
        rule_kind = RULE_KIND_REGULATORY if category.strip().lower() == REGULATORY_CATEGORY else RULE_KIND_SET
        members = definition.get("policyDefinitions") or []
        resolved: list[str] = []
        for member in members:
            if not isinstance(member, Mapping):
                raise NormalizationError(f"rule-set {definition_id!r} has a member that is not a mapping")
            member_id = str(member.get("policyDefinitionId") or "")
            member_def = definitions.get_definition(member_id) or {}
            member_params = _bound_parameters(member.get("parameters"), f"member {member_id!r} of {definition_id!r}")
            effect = resolve_effect(member_def.get("effect"), member_params, parameters)
            if effect is not None:
                resolved.append(effect)
        effect = summarize_member_effects(resolved, len(members))
    else:
        rule_kind = RULE_KIND_SINGLE
        declared = definition.get("effect")
        if declared is None:
            # No declared effect known: an assignment-level "effect" binding
            # is the only remaining source.
            declared = "[parameters('effect')]"
        resolved_effect = resolve_effect(declared, parameters)
        if resolved_effect is None:
            effect = EFFECT_AUDIT
            parameterized = True
        else:
            effect = resolved_effect

    mode = str(raw.get("enforcementMode") or "Default").strip().lower()
    enforcement = NOT_ENFORCED if mode in _NOT_ENFORCED_MODES else ENFORCED

    return AssignmentRecord(
        assignment_id=assignment_id,
        assignment_name=name,
        display_name=str(raw.get("displayName") or rule_name or name),
        rule_kind=rule_kind,
        category=category,
        effect=effect,
        enforcement_mode=enforcement,
        scope_type=scope_type,
        scope_name=str(raw.get("scopeName") or scope_name),
        scope_path=scope_path,
        rule_name=rule_name,
        effect_parameterized=parameterized,
    )


def normalize_all(
    raws: Iterable[Mapping[str, Any]], definitions: DefinitionLookup
) -> tuple[list[AssignmentRecord], list[str]]:
    """Normalize a batch. Failing records are dropped; returns (records, warnings)."""
    records: list[AssignmentRecord] = []
    warnings: list[str] = []
    for index, raw in enumerate(raws):
        try:
            records.append(normalize(raw, definitions))
        except NormalizationError as e:
            logger.warning("Dropping assignment #%d: %s", index, e)
            warnings.append(f"assignment #{index}: {e}")
    return records, warnings


# ---------------------------------------------------------------------------
# Exemptions
# ---------------------------------------------------------------------------


def _parse_timestamp(value: str) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def normalize_exemption(raw: Mapping[str, Any], now: Optional[datetime] = None) -> ExemptionRecord:
    """Build an ExemptionRecord. is_expired is evaluated against now (UTC)."""
    if not isinstance(raw, Mapping):
        raise NormalizationError(f"exemption must be a mapping, got {type(raw).__name__}")
    now = now or datetime.now(timezone.utc)

    exemption_id = str(raw.get("id") or "").strip()
    name = str(raw.get("name") or _last_segment(exemption_id)).strip()
    if not name:
        raise NormalizationError("exemption has neither a name nor an id")

    target = str(raw.get("policyAssignmentId") or "").strip()
    if not target:
        raise NormalizationError(f"exemption {name!r} has no assignment reference")

    scope_path = str(raw.get("scope") or "").strip() or _scope_from_assignment_id(exemption_id)
    scope_type, scope_name = parse_scope(scope_path)

    category_raw = str(raw.get("exemptionCategory") or "").strip().lower()
    categories = {"waiver": EXEMPTION_WAIVER, "mitigated": EXEMPTION_MITIGATED}
    if category_raw not in categories:
        raise NormalizationError(f"exemption {name!r} has unknown category {raw.get('exemptionCategory')!r}")

    expires_on: Optional[str] = None
    is_expired = False
    if raw.get("expiresOn"):
        try:
            expires = _parse_timestamp(str(raw["expiresOn"]))
        except ValueError as e:
            raise NormalizationError(f"exemption {name!r} has invalid expiresOn: {e}") from e
        expires_on = expires.isoformat()
        is_expired = expires < now

    ref_ids = raw.get("policyDefinitionReferenceIds") or []

    return ExemptionRecord(
        exemption_id=exemption_id or f"{scope_path}/providers/Microsoft.Authorization/policyExemptions/{name}",
        exemption_name=name,
        display_name=str(raw.get("displayName") or name),
        target_assignment_id=target,
        category=categories[category_raw],
        scope_type=scope_type,
        scope_name=str(raw.get("scopeName") or scope_name),
        scope_path=scope_path,
        expires_on=expires_on,
        is_expired=is_expired,
        exempted_sub_rule_count=len(ref_ids),
    )


def normalize_exemptions(
    raws: Iterable[Mapping[str, Any]], now: Optional[datetime] = None
) -> tuple[list[ExemptionRecord], list[str]]:
    records: list[ExemptionRecord] = []
    warnings: list[str] = []
    for index, raw in enumerate(raws):
        try:
            records.append(normalize_exemption(raw, now))
        except NormalizationError as e:
            logger.warning("Dropping exemption #%d: %s", index, e)
            warnings.append(f"exemption #{index}: {e}")
    return records, warnings
