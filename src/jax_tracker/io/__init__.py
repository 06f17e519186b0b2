"""I/O utilities for loading robot topologies from robot description files."""

from .urdf_parser import load_urdf, parse_urdf

__all__ = ["load_urdf", "parse_urdf"]
