"""Exception types and runtime condition counters.

Construction-time problems (a malformed robot description) are raised and
abort startup. Everything that can happen while tracking is running is
recovered where it occurs and only recorded in a ``FusionCounters`` instance.
"""

from dataclasses import dataclass


class TrackingError(Exception):
    """Base class for all tracking errors."""


class ParseError(TrackingError):
    """The robot topology is malformed or incomplete."""


class UnknownJointError(TrackingError, KeyError):
    """A joint name is not part of the topology."""

    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Joint '{self.name}' not found in topology"


class BusyVisualPipelineError(TrackingError):
    """An image arrived while a visual computation was still running."""


class ExpiredObservationError(TrackingError):
    """A visual result is older than the retained rotary history allows."""


class ShutdownTimeoutError(TrackingError):
    """The in-flight visual computation did not finish within the drain bound."""


@dataclass
class FusionCounters:
    """Tally of non-fatal runtime conditions seen by a FusionEngine."""
    joint_observations: int = 0
    unknown_joints: int = 0
    busy_visual_pipeline: int = 0
    visual_corrections: int = 0
    expired_observations: int = 0
    visual_failures: int = 0
    shutdown_timeouts: int = 0

    def copy(self) -> "FusionCounters":
        return FusionCounters(**vars(self))
