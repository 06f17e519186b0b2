"""FusionEngine: one estimate from rotary updates and delayed visual corrections.

Joint observations are filtered synchronously on the producer's thread and
committed under a short lock. Depth images are handed to a single worker
thread that runs the visual estimator without holding the lock. When a
visual result comes back it describes the robot at capture time ``t_v``; the
engine reconstructs its own committed estimate at ``t_v`` from the history,
and adds the difference to the present estimate instead of overwriting it,
so every joint update received since ``t_v`` is preserved.

Ingress policy for images is drop-while-busy: at most one visual computation
is in flight and images arriving meanwhile are discarded and counted.
"""

import enum
import logging
import queue
import threading
from typing import Dict, List, Optional, Sequence

from .config import TrackerConfig
from .errors import (
    BusyVisualPipelineError,
    ExpiredObservationError,
    FusionCounters,
    ShutdownTimeoutError,
)
from .history import StateHistory
from .rotary import RotaryEstimator
from .state import (
    DepthObservation,
    FusionSnapshot,
    JointObservation,
    LinkFrame,
    RobotStateEstimate,
    VisualResult,
    apply_delta,
    state_delta,
)
from .visual import TrackingContext, VisualEstimator

_logger = logging.getLogger(__name__)

_STOP = object()


class FusionStatus(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


class FusionEngine:
    """Owner of the authoritative robot state estimate.

    Args:
        context: Shared kinematic model and its lock.
        visual_estimator: Black-box refinement of hypotheses against depth.
        config: Noise, delay and lifetime parameters.
        rotary: Joint filter; built from the context's joint names and
                ``config`` when omitted.
    """

    def __init__(self, context: TrackingContext, visual_estimator: VisualEstimator,
                 config: Optional[TrackerConfig] = None,
                 rotary: Optional[RotaryEstimator] = None):
        self.context = context
        self.visual_estimator = visual_estimator
        self.config = config or TrackerConfig()
        self.rotary = rotary or RotaryEstimator(context.model.joint_names, self.config)
        if self.rotary.joint_names != tuple(context.model.joint_names):
            raise ValueError("Rotary estimator and kinematic model disagree on the joints")

        self._lock = threading.Lock()
        self._status = FusionStatus.UNINITIALIZED
        self._state: Optional[RobotStateEstimate] = None
        self._last_joint_observation: Optional[JointObservation] = None
        self._history = StateHistory(self.config.history_length, self.config.history_duration)
        self._hypotheses: List[RobotStateEstimate] = []
        self._pool_reference: Optional[RobotStateEstimate] = None
        self._counters = FusionCounters()

        self._visual_busy = False
        self._queue: "queue.Queue" = queue.Queue()
        self._worker: Optional[threading.Thread] = None

    # Introspection
    @property
    def status(self) -> FusionStatus:
        with self._lock:
            return self._status

    @property
    def counters(self) -> FusionCounters:
        with self._lock:
            return self._counters.copy()

    @property
    def visual_busy(self) -> bool:
        with self._lock:
            return self._visual_busy

    # Lifecycle
    def initialize(self, initial_hypotheses: Sequence[RobotStateEstimate]) -> None:
        """Seed the joint filter and the hypothesis pool.

        The first hypothesis is taken as the initial estimate. The engine
        moves on to RUNNING once a joint observation naming at least one
        known joint has been processed.
        """
        if not initial_hypotheses:
            raise ValueError("At least one initial hypothesis is required")
        num_joints = self.rotary.num_joints
        for hypothesis in initial_hypotheses:
            if hypothesis.num_joints != num_joints:
                raise ValueError(f"Hypothesis has {hypothesis.num_joints} joints, expected {num_joints}")

        with self._lock:
            if self._status is not FusionStatus.UNINITIALIZED:
                raise RuntimeError(f"Cannot initialize a fusion engine that is {self._status.value}")
            best = initial_hypotheses[0]
            self.rotary.reset(best.angles, best.timestamp)
            self._state = self.rotary.estimate(offset=best.offset)
            self._hypotheses = [h.copy() for h in initial_hypotheses]
            self._pool_reference = best.copy()
            self._history.clear()
            self._status = FusionStatus.INITIALIZING
        _logger.info("Fusion engine initialized with %d hypotheses", len(initial_hypotheses))

    def run(self) -> None:
        """Start the visual worker thread."""
        with self._lock:
            if self._status is FusionStatus.SHUTTING_DOWN:
                raise RuntimeError("Cannot run a fusion engine that is shutting down")
            if self._worker is not None:
                return
            self._worker = threading.Thread(target=self._visual_loop, name="visual-worker", daemon=True)
            self._worker.start()
        _logger.info("Visual worker started")

    def shutdown(self, timeout: Optional[float] = None, raise_on_timeout: bool = False) -> bool:
        """Stop accepting observations and drain the visual worker.

        Waits up to ``timeout`` seconds (``config.shutdown_timeout`` by default)
        for an in-flight visual computation. Past the bound the worker is
        abandoned and a warning is logged.

        Returns:
            True if the worker finished in time (or never ran).

        Raises:
            ShutdownTimeoutError: Only when ``raise_on_timeout`` is set.
        """
        timeout = self.config.shutdown_timeout if timeout is None else timeout
        with self._lock:
            if self._status is FusionStatus.SHUTTING_DOWN:
                return True
            self._status = FusionStatus.SHUTTING_DOWN
            worker = self._worker

        _logger.info("Shutting down fusion engine")
        if worker is None:
            return True

        self._queue.put(_STOP)
        worker.join(timeout)
        if not worker.is_alive():
            return True

        with self._lock:
            self._counters.shutdown_timeouts += 1
        message = f"Visual computation still running after {timeout:.3f}s; abandoning it"
        _logger.warning(message)
        if raise_on_timeout:
            raise ShutdownTimeoutError(message)
        return False

    # Ingress
    def joints_observation_callback(self, observation: JointObservation) -> None:
        """Filter one joint reading and commit the result.

        Unknown joint names are dropped from the reading; the rest of it is
        used. Never waits on visual work.
        """
        unknown: List[str] = []
        with self._lock:
            if self._status not in (FusionStatus.INITIALIZING, FusionStatus.RUNNING):
                _logger.debug("Ignoring joint observation while %s", self._status.value)
                return

            known = [name for name in observation.positions if name in self.rotary.joint_names]
            if not known:
                self._counters.unknown_joints += len(observation.positions)
                unknown = list(observation.positions)
            else:
                if self._status is FusionStatus.INITIALIZING:
                    # The seed carries no meaningful stamp; start the clock here
                    elapsed = 0.0
                else:
                    elapsed = max(0.0, observation.timestamp - self._state.timestamp)
                estimate, unknown = self.rotary.ingest(observation, elapsed)
                self._counters.unknown_joints += len(unknown)
                self._counters.joint_observations += 1

                committed = estimate.replace(
                    offset=self._state.offset,
                    timestamp=max(self._state.timestamp, observation.timestamp),
                )
                self._state = committed
                self._history.append(committed)
                self._last_joint_observation = observation

                if self._status is FusionStatus.INITIALIZING:
                    self._status = FusionStatus.RUNNING
                    _logger.info("First joint observation processed; fusion engine running")

        if unknown:
            _logger.warning("Dropping unknown joints from observation: %s", ", ".join(unknown))

    def image_observation_callback(self, observation: DepthObservation,
                                   raise_on_busy: bool = False) -> bool:
        """Hand a depth image to the visual worker unless it is busy.

        Returns:
            True if the image was accepted, False if it was dropped.

        Raises:
            BusyVisualPipelineError: Only when ``raise_on_busy`` is set and the
                image was dropped because a computation is in flight.
        """
        with self._lock:
            if self._status is not FusionStatus.RUNNING or self._worker is None:
                _logger.debug("Ignoring image while %s", self._status.value)
                return False
            busy = self._visual_busy
            if busy:
                self._counters.busy_visual_pipeline += 1
            else:
                self._visual_busy = True
                hypotheses = self._recentred_hypotheses()

        if busy:
            _logger.debug("Visual pipeline busy; dropping image at %.6f", observation.timestamp)
            if raise_on_busy:
                raise BusyVisualPipelineError(f"Image at {observation.timestamp:.6f} dropped")
            return False

        self._queue.put((hypotheses, observation))
        return True

    # Egress
    def current_snapshot(self) -> Optional[FusionSnapshot]:
        """Copy of the last committed estimate; None before initialize()."""
        with self._lock:
            if self._state is None:
                return None
            return FusionSnapshot(
                state=self._state.copy(),
                timestamp=self._state.timestamp,
                last_joint_observation=self._last_joint_observation,
            )

    def link_poses(self) -> Dict[str, LinkFrame]:
        """Reference-frame link poses of the last committed estimate."""
        snapshot = self.current_snapshot()
        if snapshot is None:
            raise RuntimeError("Link poses requested before initialize")
        return self.context.link_poses(snapshot.state)

    # Visual path
    def _recentred_hypotheses(self) -> List[RobotStateEstimate]:
        """Private copy of the pool moved by the motion since it was produced."""
        angles_delta, offset_delta = state_delta(self._state, self._pool_reference)
        return [
            apply_delta(h.copy(), angles_delta, offset_delta).replace(timestamp=self._state.timestamp)
            for h in self._hypotheses
        ]

    def _visual_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            hypotheses, observation = item
            try:
                result = self.visual_estimator.estimate(hypotheses, observation)
                self.apply_visual_result(result)
            except Exception:
                _logger.exception("Visual estimation failed for image at %.6f", observation.timestamp)
                with self._lock:
                    self._counters.visual_failures += 1
            finally:
                with self._lock:
                    self._visual_busy = False

    def apply_visual_result(self, result: VisualResult) -> bool:
        """Fold a visual result into the present estimate.

        The capture instant is the result's timestamp minus the configured
        visual delay. The correction is the difference between the visual
        state and the committed estimate reconstructed at that instant; it is
        added to the current estimate, the joint filter and the history from
        the capture instant on. The committed timestamp is left unchanged.

        Returns:
            True if applied, False if the result was too old.
        """
        num_joints = self.rotary.num_joints
        if result.state.num_joints != num_joints:
            raise ValueError(f"Visual result has {result.state.num_joints} joints, expected {num_joints}")
        capture_time = result.state.timestamp - self.config.visual_delay

        with self._lock:
            if self._state is None:
                raise RuntimeError("Visual result received before initialize")
            try:
                reconstruction = self._history.reconstruct(capture_time, self.config.max_staleness)
            except ExpiredObservationError as e:
                self._counters.expired_observations += 1
                expired = e
            else:
                expired = None
                angles_delta, offset_delta = state_delta(result.state, reconstruction)
                self._state = apply_delta(self._state, angles_delta, offset_delta)
                self.rotary.shift(angles_delta)
                self._history.shift_since(capture_time, angles_delta, offset_delta)

                self._hypotheses = [h.copy() for h in result.hypotheses] or [result.state.copy()]
                self._pool_reference = result.state.copy()
                self._counters.visual_corrections += 1

        if expired is not None:
            _logger.warning("Discarding visual correction: %s", expired)
            return False
        return True
