"""
JAX Tracker: real-time articulated robot tracking.

This library fuses high-rate joint encoder readings with delayed depth-camera
corrections into one thread-safe estimate of a robot's joint angles and camera
mount offset. Forward kinematics run as JIT-compiled JAX programs.
"""

import jax
jax.config.update("jax_enable_x64", True)

# Import core modules
from . import transforms
from . import core
from . import io
from .errors import (
    TrackingError,
    ParseError,
    UnknownJointError,
    BusyVisualPipelineError,
    ExpiredObservationError,
    ShutdownTimeoutError,
)
from .config import TrackerConfig
from .kinematics import KinematicModel
from .rotary import RotaryEstimator
from .visual import TrackingContext, VisualEstimator
from .fusion import FusionEngine, FusionStatus
from .consumer import SnapshotPoller

__version__ = "0.1.0"
__all__ = [
    "transforms",
    "core",
    "io",
    "TrackingError",
    "ParseError",
    "UnknownJointError",
    "BusyVisualPipelineError",
    "ExpiredObservationError",
    "ShutdownTimeoutError",
    "TrackerConfig",
    "KinematicModel",
    "RotaryEstimator",
    "TrackingContext",
    "VisualEstimator",
    "FusionEngine",
    "FusionStatus",
    "SnapshotPoller",
]
