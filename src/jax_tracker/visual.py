"""Visual estimator contract and the shared kinematics context.

The visual estimator itself (rendering hypotheses into depth images and
scoring them against the camera) lives outside this package. It only has to
implement ``VisualEstimator.estimate``.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Sequence

from .kinematics import KinematicModel
from .state import DepthObservation, LinkFrame, RobotStateEstimate, VisualResult


@dataclass
class TrackingContext:
    """Explicit handle on the kinematic model and the lock serializing it.

    Every component that needs forward kinematics receives the same context,
    so ``set_joint_angles`` calls from different threads never interleave.
    """
    model: KinematicModel
    lock: threading.Lock = field(default_factory=threading.Lock)

    def link_poses(self, state: RobotStateEstimate) -> Dict[str, LinkFrame]:
        """Reference-frame link poses for a state, copied out under the lock."""
        with self.lock:
            self.model.set_state(state)
            return self.model.link_poses()


class VisualEstimator(ABC):
    """Refines hypotheses against one depth observation.

    Implementations may take much longer than the joint observation period.
    They run on the FusionEngine's worker thread and receive a private copy
    of the hypotheses.
    """

    @abstractmethod
    def estimate(self, hypotheses: Sequence[RobotStateEstimate],
                 observation: DepthObservation) -> VisualResult:
        """Return the refined state as it was when ``observation`` was captured.

        The result's ``state.timestamp`` must not be later than
        ``observation.timestamp``.
        """
