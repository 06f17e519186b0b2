"""Core robot data structures for JAX Tracker.

This module provides the immutable, index-based robot tree used by the
forward kinematics solver.
"""

from .topology import JointSpec, Topology, build_topology

__all__ = ["JointSpec", "Topology", "build_topology"]
