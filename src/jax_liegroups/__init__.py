"""
JAX Lie Groups: rigid-body Lie groups for state estimation.

This library provides mathematically rigorous, JIT-compilable implementations
of SO(3) and SE(3), their tangent spaces with analytic Jacobians, and curve
fitting directly on the group manifold using JAX.
"""

import jax
jax.config.update("jax_enable_x64", True)

# Import core modules
from . import algorithms
from . import transforms
from .algorithms import decasteljau
from .transforms import SE3, SO3, LieGroup, SE3Tangent, SO3Tangent, Tangent

__version__ = "0.1.0"
__all__ = [
    "algorithms",
    "transforms",
    "decasteljau",
    "LieGroup",
    "Tangent",
    "SO3",
    "SO3Tangent",
    "SE3",
    "SE3Tangent",
]
