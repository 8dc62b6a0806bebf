"""
core/errors.py -- Exception types raised by the assessment engine.

Each error carries the component that failed so callers (CLI, API) can tell
the user which stage broke and why instead of showing an empty result.
"""


class PolicyPulseError(Exception):
    """Base class for all engine errors."""

    component = "engine"

    def __init__(self, message: str, component: str = "") -> None:
        super().__init__(message)
        if component:
            self.component = component

    def __str__(self) -> str:
        return f"[{self.component}] {super().__str__()}"


class NormalizationError(PolicyPulseError):
    """A raw assignment or exemption could not be turned into a record.

    Recovered per record: the normalizer logs it and drops the record.
    """

    component = "normalizer"


class SnapshotLoadError(PolicyPulseError):
    """A persisted snapshot could not be parsed. Always fatal for a delta run."""

    component = "snapshot"


class CatalogError(PolicyPulseError):
    """The baseline catalog could not be read. Recovered by the built-in fallback."""

    component = "catalog"
