"""
history/models.py -- Listing rows for persisted snapshots.

The Snapshot itself lives in core/models.py and is the domain truth. These
are the lightweight per-row summaries the store returns for listings, so a
history page does not have to load every assignment of every run.
"""

from dataclasses import dataclass


@dataclass
class SnapshotInfo:
    """One persisted run, as listed. id is the store's primary key."""

    id: int
    tenant: str
    timestamp: str  # ISO 8601, from snapshot metadata
    version_tag: str
    scope_filter: str = ""
    assignment_count: int = 0
    non_compliant_total: int = 0
    high_risk_count: int = 0
    coverage_percent: int = 0
    created_at: str = ""  # ISO 8601, set by store on insert
