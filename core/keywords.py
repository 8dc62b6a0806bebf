"""
core/keywords.py -- Named keyword and category predicates used by the classifier.

Each predicate answers one question about a display name or a catalog
category so it can be tested on its own, independently of the point
arithmetic in core/classifier.py.

Names and categories are folded before matching: lowercase, with "-", "_",
"." and "/" turned into spaces, so "Deny-Public-IP" and "deny public ip"
hit the same patterns.
"""

import re

_SEPARATORS_RE = re.compile(r"[-_./]+")
_SPACES_RE = re.compile(r"\s+")


def fold(text: str) -> str:
    """Lowercase text and collapse separators to single spaces."""
    folded = _SEPARATORS_RE.sub(" ", (text or "").lower())
    return _SPACES_RE.sub(" ", folded).strip()


def _matcher(*patterns: str):
    compiled = re.compile("|".join(f"(?:{p})" for p in patterns))

    def _match(text: str) -> bool:
        return bool(compiled.search(fold(text)))

    return _match


# ---------------------------------------------------------------------------
# Display-name signals
# ---------------------------------------------------------------------------

_security_name = _matcher(
    r"\bencrypt",
    r"\bfirewall",
    r"\bmfa\b",
    r"multi ?factor",
    r"\bdefender\b",
    r"\bvulnerabilit",
    r"access control",
    r"\btls\b",
    r"\bssl\b",
    r"\bhttps\b",
    r"private ?endpoint",
    r"private ?link",
    r"\bsecrets?\b",
    r"\brbac\b",
    r"zero ?trust",
    r"\bddos\b",
    r"\bwaf\b",
    r"\bmalware\b",
    r"public (?:ip|network access)",
)

_governance_name = _matcher(
    r"\bnist\b",
    r"iso ?27001",
    r"\bpci\b",
    r"\bhipaa\b",
    r"\bhitrust\b",
    r"\bsoc ?2\b",
    r"\bfedramp\b",
    r"\bgdpr\b",
    r"\bcis\b",
    r"\bmcsb\b",
    r"\bbenchmark\b",
    r"\bregulatory\b",
)

_cost_heavy_name = _matcher(
    r"\bbackup",
    r"disaster ?recovery",
    r"site recovery",
    r"log ?analytics",
    r"\bretention\b",
    r"\bpremium\b",
    r"security ?center",
    r"diagnostic settings?",
)

_low_cost_name = _matcher(
    r"\btags?\b",
    r"\btagging\b",
    r"\bnaming\b",
    r"resource ?locks?",
    r"\blocks?\b",
)


def is_security_related_name(name: str) -> bool:
    """True if the name mentions a security control (encryption, firewall, MFA, ...)."""
    return _security_name(name)


def is_governance_related_name(name: str) -> bool:
    """True if the name references a governance or regulatory framework."""
    return _governance_name(name)


def is_cost_heavy_name(name: str) -> bool:
    return _cost_heavy_name(name)


def is_low_cost_name(name: str) -> bool:
    return _low_cost_name(name)


# ---------------------------------------------------------------------------
# Category taxonomy
# ---------------------------------------------------------------------------

is_security_category = _matcher(r"\bsecurity\b", r"\bdefender\b")
is_key_vault_category = _matcher(r"key ?vault")
is_encryption_category = _matcher(r"\bencrypt")
is_network_category = _matcher(r"\bnetwork", r"\bfirewall\b", r"\bdns\b", r"\bcdn\b", r"front ?door")
is_identity_category = _matcher(r"\bidentity\b", r"\bentra\b", r"active directory", r"authentication")
is_compliance_config_category = _matcher(
    r"guest configuration",
    r"machine configuration",
    r"regulatory compliance",
)
is_monitoring_category = _matcher(r"\bmonitor", r"log analytics", r"\bdiagnostic", r"\binsights\b")
is_backup_category = _matcher(r"\bbackup\b", r"site recovery", r"recovery services")
is_compute_category = _matcher(
    r"\bcompute\b",
    r"virtual machines?",
    r"\bkubernetes\b",
    r"container (?:instances?|apps?)",
    r"app service",
    r"\bbatch\b",
)
is_storage_category = _matcher(r"\bstorage\b")
is_database_category = _matcher(r"\bsql\b", r"\bdatabase", r"\bcosmos", r"\bmysql\b", r"\bpostgre", r"\bredis\b")
is_registry_category = _matcher(r"\bregistry\b")
is_pipeline_category = _matcher(r"\bpipelines?\b", r"\bdevops\b", r"data factory")
is_tagging_category = _matcher(r"\btags?\b", r"\btagging\b")


def is_general_category(category: str) -> bool:
    return fold(category) == "general"


def is_security_sensitive_category(category: str) -> bool:
    """Security center, key vault and encryption style categories."""
    return is_security_category(category) or is_key_vault_category(category) or is_encryption_category(category)


def is_moderately_sensitive_category(category: str) -> bool:
    return (
        is_network_category(category)
        or is_identity_category(category)
        or is_compliance_config_category(category)
    )


def is_routine_category(category: str) -> bool:
    return (
        is_monitoring_category(category)
        or is_backup_category(category)
        or is_compute_category(category)
        or is_storage_category(category)
    )


def is_administrative_category(category: str) -> bool:
    return is_tagging_category(category) or is_general_category(category)


def is_infrastructure_category(category: str) -> bool:
    return (
        is_network_category(category)
        or is_compute_category(category)
        or is_storage_category(category)
        or is_database_category(category)
    )
