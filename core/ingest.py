"""
core/ingest.py -- Parsers for the retrieval layer's JSON exports.

The retrieval layer (az CLI, ARM REST calls, Resource Graph exports) hands
over JSON in a handful of shapes. Each parser here closes that shape to the
flat dicts the normalizer expects. No external dependencies beyond stdlib.

Supported inputs:
  - Assignments   (`az policy assignment list` or an ARM {"value": [...]} page)
  - Exemptions    (`az policy exemption list` or ARM page)
  - Compliance    (policyStates/summarize output, or a flat per-assignment list)
  - Definitions   (policy definitions and policy set definitions, ARM shape)
  - Catalog       (baseline catalog: {category: [names]} or [{category, name}])

Pipeline:
  export files -> parse_*() -> core.pipeline.run_assessment()

Every parser returns an empty result when the content is not valid JSON or
lacks the expected structure -- it never raises to the caller.
"""

import json
import logging
from typing import Any

logger = logging.getLogger("policypulse.ingest")


def _load(content: str, label: str) -> Any:
    try:
        return json.loads(content)
    except (json.JSONDecodeError, ValueError, TypeError):
        logger.warning("Ignoring %s export: not valid JSON", label)
        return None


def _items(data: Any) -> list[dict]:
    """Return the record list of a bare list or an ARM {"value": [...]} page."""
    if isinstance(data, dict):
        data = data.get("value")
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]


def _flatten(item: dict) -> dict:
    """Merge an ARM "properties" envelope into the top level. Top-level keys win."""
    props = item.get("properties")
    if not isinstance(props, dict):
        return dict(item)
    flat = dict(props)
    flat.update({k: v for k, v in item.items() if k != "properties"})
    return flat


# ---------------------------------------------------------------------------
# Assignments and exemptions
# ---------------------------------------------------------------------------


def parse_assignments(data: Any) -> list[dict]:
    """Flatten already-decoded assignment records.

    Accepts a bare list or an ARM page; see parse_assignments_json for the shape.
    """
    return [_flatten(item) for item in _items(data)]


def parse_exemptions(data: Any) -> list[dict]:
    return [_flatten(item) for item in _items(data)]


def parse_assignments_json(content: str) -> list[dict]:
    """Parse an assignment export into flat dicts.

    ARM schema (simplified):
    {
      "value": [
        {
          "id": "/providers/Microsoft.Management/managementGroups/corp/providers/...",
          "name": "Deny-Public-IP",
          "properties": {
            "displayName": "...",
            "policyDefinitionId": "...",
            "scope": "/providers/Microsoft.Management/managementGroups/corp",
            "enforcementMode": "Default",
            "parameters": {"effect": {"value": "Deny"}}
          }
        }
      ]
    }
    """
    return parse_assignments(_load(content, "assignments"))


def parse_exemptions_json(content: str) -> list[dict]:
    return parse_exemptions(_load(content, "exemptions"))


# ---------------------------------------------------------------------------
# Compliance facts
# ---------------------------------------------------------------------------


def _counts_from_results(results: dict) -> tuple[int, int]:
    non_compliant = int(results.get("nonCompliantResources") or 0)
    details = results.get("resourceDetails") or []
    total = sum(int(d.get("count") or 0) for d in details if isinstance(d, dict))
    return non_compliant, max(total, non_compliant)


def parse_compliance(data: Any) -> dict[str, dict[str, int]]:
    """Reduce decoded compliance facts to {assignment_id (lower-case): counts}.

    Accepts the policyStates/summarize shape:
    {"value": [{"policyAssignments": [
        {"policyAssignmentId": "...",
         "results": {"nonCompliantResources": 3,
                     "resourceDetails": [{"complianceState": "compliant", "count": 7},
                                         {"complianceState": "noncompliant", "count": 3}]}}
    ]}]}

    and a flat list of {"policyAssignmentId", "nonCompliantResources",
    "totalResources"} rows. Counts for the same assignment are summed.
    """
    facts: dict[str, dict[str, int]] = {}

    def add(assignment_id: Any, non_compliant: int, total: int) -> None:
        if not assignment_id:
            return
        entry = facts.setdefault(
            str(assignment_id).lower(),
            {"non_compliant_resource_count": 0, "total_resource_count": 0},
        )
        entry["non_compliant_resource_count"] += non_compliant
        entry["total_resource_count"] += total

    for item in _items(data):
        try:
            if isinstance(item.get("policyAssignments"), list):
                for pa in item["policyAssignments"]:
                    if isinstance(pa, dict):
                        add(pa.get("policyAssignmentId"), *_counts_from_results(pa.get("results") or {}))
            elif isinstance(item.get("results"), dict):
                add(item.get("policyAssignmentId"), *_counts_from_results(item["results"]))
            else:
                non_compliant = int(item.get("nonCompliantResources") or 0)
                total = int(item.get("totalResources") or 0)
                add(item.get("policyAssignmentId"), non_compliant, max(total, non_compliant))
        except (TypeError, ValueError):
            logger.warning("Skipping compliance row with non-numeric counts: %r", item.get("policyAssignmentId"))

    return facts


def parse_compliance_json(content: str) -> dict[str, dict[str, int]]:
    return parse_compliance(_load(content, "compliance"))


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


def _flatten_definition(item: dict) -> dict:
    flat = _flatten(item)
    metadata = flat.get("metadata") if isinstance(flat.get("metadata"), dict) else {}
    rule = flat.get("policyRule") if isinstance(flat.get("policyRule"), dict) else {}
    then = rule.get("then") if isinstance(rule.get("then"), dict) else {}

    definition: dict[str, Any] = {
        "id": flat.get("id") or "",
        "displayName": flat.get("displayName") or flat.get("name") or "",
        "category": flat.get("category") or metadata.get("category") or "",
    }
    effect = flat.get("effect") or then.get("effect")
    if effect is not None:
        definition["effect"] = effect
    members = flat.get("policyDefinitions")
    if isinstance(members, list):
        definition["policyDefinitions"] = [
            {
                "policyDefinitionId": m.get("policyDefinitionId") or "",
                "parameters": m.get("parameters") or {},
            }
            for m in members
            if isinstance(m, dict)
        ]
    return definition


def parse_definitions(data: Any) -> dict[str, dict]:
    """Reduce decoded rule and rule-set definitions to {definition id: flat definition}.

    Definitions without an id are skipped since nothing can reference them.
    """
    definitions: dict[str, dict] = {}
    for item in _items(data):
        definition = _flatten_definition(item)
        if definition["id"]:
            definitions[definition["id"]] = definition
    return definitions


def parse_definitions_json(content: str) -> dict[str, dict]:
    return parse_definitions(_load(content, "definitions"))


# ---------------------------------------------------------------------------
# Baseline catalog
# ---------------------------------------------------------------------------


def parse_catalog(data: Any) -> dict[str, list[str]]:
    """Reduce a decoded baseline catalog.

    Accepts {"Security": ["Deny-Public-IP", ...], ...}, the same mapping
    wrapped as {"categories": {...}}, or a list of {"category", "name"} rows.
    """
    catalog: dict[str, list[str]] = {}

    if isinstance(data, dict) and isinstance(data.get("categories"), dict):
        data = data["categories"]

    if isinstance(data, dict):
        for category, names in data.items():
            if isinstance(names, list):
                catalog[str(category)] = [str(n) for n in names if isinstance(n, str)]
    elif isinstance(data, list):
        for row in data:
            if isinstance(row, dict) and row.get("category") and row.get("name"):
                catalog.setdefault(str(row["category"]), []).append(str(row["name"]))

    return catalog


def parse_catalog_json(content: str) -> dict[str, list[str]]:
    return parse_catalog(_load(content, "catalog"))
