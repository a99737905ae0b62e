"""Sampling-based motion planning on constraint manifolds."""

__version__ = "0.1.0"
