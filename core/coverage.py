"""
core/coverage.py -- Baseline coverage: which recommended assignments exist.

The baseline catalog maps category -> ordered list of recommended rule names.
Catalog names and tenant assignment names usually differ only by a prefix or
suffix ("Deny-Public-IP" vs "Corp-Deny-Public-IP-v2"), so matching is a
case-insensitive substring test in either direction against the assignment
name, display name and resolved rule name.

Every catalog entry lands in exactly one bucket: Matched, AuditOnly (every
matching assignment is NotEnforced) or Missing.
"""

import logging
from typing import Iterable, Mapping, Optional, Sequence

from core.errors import CatalogError
from core.ingest import parse_catalog_json
from core.models import (
    COVERAGE_AUDIT_ONLY,
    COVERAGE_MATCHED,
    COVERAGE_MISSING,
    NOT_ENFORCED,
    AssignmentRecord,
    CategoryCoverage,
    CoverageEntry,
    CoverageResult,
)

logger = logging.getLogger("policypulse.coverage")

BaselineCatalog = Mapping[str, Sequence[str]]

# Built-in fallback used when no catalog is supplied or the supplied one is
# empty. A small subset of the usual landing-zone recommendations.
DEFAULT_CATALOG: dict[str, list[str]] = {
    "Security": [
        "Deploy-MDFC-Config",
        "Deny-Public-IP",
        "Deny-MgmtPorts-Internet",
        "Enforce-TLS-SSL",
    ],
    "Network": [
        "Deny-Subnet-Without-Nsg",
        "Deny-IP-forwarding",
        "Enable-DDoS-VNET",
    ],
    "Monitoring": [
        "Deploy-AzActivity-Log",
        "Deploy-VM-Monitoring",
        "Deploy-Resource-Diag",
    ],
    "Backup": [
        "Deploy-VM-Backup",
    ],
    "Key Vault": [
        "Enforce-Guardrails-KeyVault",
    ],
    "Identity": [
        "Deny-Classic-Resources",
    ],
}

CATALOG_SUPPLIED = "supplied"
CATALOG_BUILTIN = "builtin"
CATALOG_EMPTY = "empty"


def _clean_catalog(catalog: Optional[BaselineCatalog]) -> dict[str, list[str]]:
    """Drop blank names and repeated names within a category, keeping order."""
    cleaned: dict[str, list[str]] = {}
    for category, names in (catalog or {}).items():
        seen: set[str] = set()
        ordered: list[str] = []
        for name in names or []:
            name = str(name).strip()
            if name and name.lower() not in seen:
                seen.add(name.lower())
                ordered.append(name)
        if ordered:
            cleaned[str(category)] = ordered
    return cleaned


def resolve_catalog(catalog: Optional[BaselineCatalog]) -> tuple[dict[str, list[str]], str]:
    """Return (catalog, source), substituting DEFAULT_CATALOG when catalog is missing or empty."""
    cleaned = _clean_catalog(catalog)
    if cleaned:
        return cleaned, CATALOG_SUPPLIED
    fallback = _clean_catalog(DEFAULT_CATALOG)
    if fallback:
        logger.warning("Baseline catalog unavailable or empty -- using built-in fallback catalog")
        return fallback, CATALOG_BUILTIN
    return {}, CATALOG_EMPTY


def _candidate_names(record: AssignmentRecord) -> list[str]:
    names = (record.assignment_name, record.display_name, record.rule_name)
    return [n.lower() for n in names if n and n.strip()]


def names_match(entry_name: str, record: AssignmentRecord) -> bool:
    """True if entry_name and any of the record's names contain one another."""
    entry = entry_name.lower()
    return any(entry in candidate or candidate in entry for candidate in _candidate_names(record))


def percent(part: int, whole: int) -> int:
    """part/whole as a whole percentage, rounded half up. 0 when whole is 0."""
    if whole <= 0:
        return 0
    return (part * 200 + whole) // (whole * 2)


def match_coverage(
    records: Iterable[AssignmentRecord],
    catalog: Optional[BaselineCatalog],
    catalog_source: str = CATALOG_SUPPLIED,
) -> CoverageResult:
    """Classify every catalog entry as Matched, AuditOnly or Missing.

    An empty (or None) catalog gives an all-zero result rather than an error.
    """
    items = list(records)
    cleaned = _clean_catalog(catalog)
    if not cleaned:
        return CoverageResult(catalog_source=CATALOG_EMPTY)

    entries: list[CoverageEntry] = []
    categories: list[CategoryCoverage] = []
    for category, names in cleaned.items():
        counts = {COVERAGE_MATCHED: 0, COVERAGE_AUDIT_ONLY: 0, COVERAGE_MISSING: 0}
        for name in names:
            matches = [r for r in items if names_match(name, r)]
            if not matches:
                status = COVERAGE_MISSING
            elif all(r.enforcement_mode == NOT_ENFORCED for r in matches):
                status = COVERAGE_AUDIT_ONLY
            else:
                status = COVERAGE_MATCHED
            counts[status] += 1
            entries.append(
                CoverageEntry(
                    category=category,
                    name=name,
                    status=status,
                    matched_assignments=tuple(r.assignment_name for r in matches),
                )
            )
        categories.append(
            CategoryCoverage(
                category=category,
                total=len(names),
                matched=counts[COVERAGE_MATCHED],
                audit_only=counts[COVERAGE_AUDIT_ONLY],
                missing=counts[COVERAGE_MISSING],
            )
        )

    total = len(entries)
    matched = sum(c.matched for c in categories)
    audit_only = sum(c.audit_only for c in categories)
    return CoverageResult(
        entries=tuple(entries),
        categories=tuple(categories),
        total=total,
        matched=matched,
        audit_only=audit_only,
        missing=sum(c.missing for c in categories),
        coverage_percent=percent(matched + audit_only, total),
        enforced_coverage_percent=percent(matched, total),
        catalog_source=catalog_source,
    )


def load_catalog_file(path) -> dict[str, list[str]]:
    """Read a catalog JSON file. Raises CatalogError when the file cannot be read."""
    try:
        with open(path, encoding="utf-8") as fh:
            content = fh.read()
    except OSError as e:
        raise CatalogError(f"cannot read catalog {path}: {e}") from e
    return parse_catalog_json(content)
