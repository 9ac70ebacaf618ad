"""Shared interfaces for Lie group elements and their tangent spaces.

`LieGroup` is the capability set every group variant implements (identity,
inverse, compose, act, lift, adj). The retraction operators (rplus, rminus,
lplus, lminus, between) and their Jacobians are written once here in terms of
that capability set, so any concrete group gets them for free.

Jacobians follow the right-perturbation convention: for f(X), the Jacobian J
satisfies f(X ⊕ δ) ≈ f(X) ⊕ J δ.

Optional Jacobians are requested with boolean keyword flags. When no flag is
set an operation returns its plain result; otherwise it returns a tuple
``(result, J_1, J_2, ...)`` with one slot per flag of the operation and
``None`` in the slots that were not requested.
"""

from __future__ import annotations

import abc
from typing import Any, ClassVar, Optional, Tuple, Type, TypeVar, Union

import jax
import jax.numpy as jnp

Array = jax.Array

GroupT = TypeVar("GroupT", bound="LieGroup")
TangentT = TypeVar("TangentT", bound="Tangent")


def _pack(result: Any, requested: Tuple[bool, ...], *jacobians: Optional[Array]):
    """Return *result* alone, or with its Jacobian slots if any were requested."""
    if not any(requested):
        return result
    return (result,) + tuple(
        jac if flag else None for flag, jac in zip(requested, jacobians)
    )


def _identity_jacobian(dim: int, batch_shape: Tuple[int, ...], dtype) -> Array:
    return jnp.broadcast_to(jnp.eye(dim, dtype=dtype), batch_shape + (dim, dim))


def _check_last_dim(array: Array, size: int, name: str) -> None:
    if array.ndim < 1 or array.shape[-1] != size:
        raise ValueError(f"{name} must have shape (..., {size}), got {array.shape}")


class Tangent(abc.ABC):
    """Interface definition for Lie algebra (tangent space) elements.

    Attributes:
        dof: Number of degrees of freedom, i.e. the coefficient vector size.
        dim: Dimension of the space the associated group acts on.
    """

    dof: ClassVar[int]
    dim: ClassVar[int]

    coeffs: Array

    # Factory methods.

    @classmethod
    def from_coeffs(cls: Type[TangentT], coeffs: Array) -> TangentT:
        """Wrap a (..., dof) coefficient array, validating its shape."""
        coeffs = jnp.asarray(coeffs)
        _check_last_dim(coeffs, cls.dof, f"{cls.__name__} coefficients")
        return cls(coeffs)

    @classmethod
    def zero(cls: Type[TangentT], batch_shape: Tuple[int, ...] = (), *, dtype=None) -> TangentT:
        return cls(jnp.zeros(batch_shape + (cls.dof,), dtype=dtype))

    @classmethod
    def sample(
        cls: Type[TangentT],
        key: Array,
        batch_shape: Tuple[int, ...] = (),
        *,
        scale: float = 1.0,
        dtype=None,
    ) -> TangentT:
        """Draw coefficients uniformly from [-scale, scale]."""
        return cls(jax.random.uniform(
            key, batch_shape + (cls.dof,), minval=-scale, maxval=scale, dtype=dtype or float
        ))

    @classmethod
    @abc.abstractmethod
    def vee(cls: Type[TangentT], matrix: Array) -> TangentT:
        """Recover the tangent from its matrix Lie algebra representation."""
        raise NotImplementedError

    # Lie algebra operations.

    @abc.abstractmethod
    def exp(self, jacobian: bool = False):
        """Exponential map to the group; the Jacobian is ``rjac()``."""
        raise NotImplementedError

    @abc.abstractmethod
    def hat(self) -> Array:
        """Matrix Lie algebra representation."""
        raise NotImplementedError

    @abc.abstractmethod
    def rjac(self) -> Array:
        """Right Jacobian of the exponential map."""
        raise NotImplementedError

    @abc.abstractmethod
    def ljac(self) -> Array:
        """Left Jacobian of the exponential map."""
        raise NotImplementedError

    @abc.abstractmethod
    def rjacinv(self) -> Array:
        raise NotImplementedError

    @abc.abstractmethod
    def ljacinv(self) -> Array:
        raise NotImplementedError

    @abc.abstractmethod
    def small_adj(self) -> Array:
        """Adjoint of the Lie algebra, ad(τ), such that ad(a) b == [a, b]."""
        raise NotImplementedError

    # Vector space operations.

    @property
    def batch_shape(self) -> Tuple[int, ...]:
        return self.coeffs.shape[:-1]

    def squared_norm(self) -> Array:
        return jnp.sum(self.coeffs ** 2, axis=-1)

    def norm(self) -> Array:
        return jnp.linalg.norm(self.coeffs, axis=-1)

    def weighted_norm(self, weights: Array) -> Array:
        """Squared norm under a (dof, dof) weight matrix, τᵀ W τ."""
        return jnp.einsum("...i,...ij,...j->...", self.coeffs, weights, self.coeffs)

    def inner(self, other: "Tangent") -> Array:
        return jnp.sum(self.coeffs * other.coeffs, axis=-1)

    def __add__(self, other):
        if isinstance(other, LieGroup):
            return other.lplus(self)
        if not isinstance(other, type(self)):
            return NotImplemented
        return type(self)(self.coeffs + other.coeffs)

    def __sub__(self, other):
        if not isinstance(other, type(self)):
            return NotImplemented
        return type(self)(self.coeffs - other.coeffs)

    def __neg__(self):
        return type(self)(-self.coeffs)

    def __mul__(self, scalar):
        if isinstance(scalar, Tangent):
            return NotImplemented
        return type(self)(self.coeffs * jnp.asarray(scalar)[..., None])

    __rmul__ = __mul__

    def __truediv__(self, scalar):
        if isinstance(scalar, Tangent):
            return NotImplemented
        return type(self)(self.coeffs / jnp.asarray(scalar)[..., None])

    def __getitem__(self, index):
        """Index into the batch dimensions."""
        return jax.tree_util.tree_map(lambda x: x[index], self)


class LieGroup(abc.ABC):
    """Interface definition for Lie group elements.

    Attributes:
        dof: Dimension of the tangent space.
        dim: Dimension of the coordinates that can be transformed.
        rep_size: Size of the coefficient vector.
        tangent_type: The matching Tangent class.
    """

    dof: ClassVar[int]
    dim: ClassVar[int]
    rep_size: ClassVar[int]
    tangent_type: ClassVar[Type[Tangent]]

    coeffs: Array

    # Factory methods.

    @classmethod
    @abc.abstractmethod
    def identity(cls: Type[GroupT], batch_shape: Tuple[int, ...] = (), *, dtype=None) -> GroupT:
        raise NotImplementedError

    @classmethod
    @abc.abstractmethod
    def from_coeffs(cls: Type[GroupT], coeffs: Array) -> GroupT:
        raise NotImplementedError

    @classmethod
    @abc.abstractmethod
    def sample_uniform(cls: Type[GroupT], key: Array, batch_shape: Tuple[int, ...] = ()) -> GroupT:
        raise NotImplementedError

    # Core capability set.

    @abc.abstractmethod
    def inverse(self, jacobian: bool = False):
        raise NotImplementedError

    @abc.abstractmethod
    def compose(self, other, jac_self: bool = False, jac_other: bool = False):
        raise NotImplementedError

    @abc.abstractmethod
    def act(self, v: Array, jac_self: bool = False, jac_vector: bool = False):
        raise NotImplementedError

    @abc.abstractmethod
    def lift(self, jacobian: bool = False):
        raise NotImplementedError

    @abc.abstractmethod
    def adj(self) -> Array:
        raise NotImplementedError

    @abc.abstractmethod
    def normalize(self: GroupT) -> GroupT:
        """Re-project the coefficients onto the manifold."""
        raise NotImplementedError

    # Derived API.

    @property
    def batch_shape(self) -> Tuple[int, ...]:
        return self.coeffs.shape[:-1]

    def set_identity(self: GroupT) -> GroupT:
        """Identity element with the batch shape and dtype of this one."""
        return type(self).identity(self.batch_shape, dtype=self.coeffs.dtype)

    def log(self, jacobian: bool = False):
        """Alias of ``lift``."""
        return self.lift(jacobian=jacobian)

    def _eye(self) -> Array:
        return _identity_jacobian(self.dof, self.batch_shape, self.coeffs.dtype)

    def _check_same_group(self, other: Any) -> None:
        if not isinstance(other, type(self)):
            raise TypeError(
                f"Expected {type(self).__name__}, got {type(other).__name__}"
            )

    def _check_tangent(self, tangent: Any) -> None:
        if not isinstance(tangent, self.tangent_type):
            raise TypeError(
                f"Expected {self.tangent_type.__name__}, got {type(tangent).__name__}"
            )

    def rplus(self, tangent: Tangent, jac_self: bool = False, jac_tangent: bool = False):
        """Right plus: X ⊕ τ = X ∘ exp(τ)."""
        self._check_tangent(tangent)
        delta = tangent.exp()
        result = self.compose(delta)

        J_self = delta.inverse().adj() if jac_self else None
        J_tangent = tangent.rjac() if jac_tangent else None
        return _pack(result, (jac_self, jac_tangent), J_self, J_tangent)

    def lplus(self, tangent: Tangent, jac_self: bool = False, jac_tangent: bool = False):
        """Left plus: τ ⊕ X = exp(τ) ∘ X."""
        self._check_tangent(tangent)
        result = tangent.exp().compose(self)

        J_self = self._eye() if jac_self else None
        J_tangent = self.inverse().adj() @ tangent.rjac() if jac_tangent else None
        return _pack(result, (jac_self, jac_tangent), J_self, J_tangent)

    def rminus(self, other, jac_self: bool = False, jac_other: bool = False):
        """Right minus: X ⊖ Y = log(Y⁻¹ ∘ X)."""
        self._check_same_group(other)
        tangent = other.inverse().compose(self).lift()

        J_self = tangent.rjacinv() if jac_self else None
        J_other = -tangent.ljacinv() if jac_other else None
        return _pack(tangent, (jac_self, jac_other), J_self, J_other)

    def lminus(self, other, jac_self: bool = False, jac_other: bool = False):
        """Left minus: X ⊖ Y = log(X ∘ Y⁻¹)."""
        self._check_same_group(other)
        tangent = self.compose(other.inverse()).lift()

        J = tangent.rjacinv() @ other.adj() if (jac_self or jac_other) else None
        J_self = J if jac_self else None
        J_other = -J if jac_other else None
        return _pack(tangent, (jac_self, jac_other), J_self, J_other)

    def plus(self, tangent: Tangent, jac_self: bool = False, jac_tangent: bool = False):
        return self.rplus(tangent, jac_self=jac_self, jac_tangent=jac_tangent)

    def minus(self, other, jac_self: bool = False, jac_other: bool = False):
        return self.rminus(other, jac_self=jac_self, jac_other=jac_other)

    def between(self, other, jac_self: bool = False, jac_other: bool = False):
        """Relative element X⁻¹ ∘ Y."""
        self._check_same_group(other)
        result = self.inverse().compose(other)

        J_self = -result.inverse().adj() if jac_self else None
        J_other = self._eye() if jac_other else None
        return _pack(result, (jac_self, jac_other), J_self, J_other)

    def is_approx(self, other, tol: float = 1e-6) -> Array:
        """Whether two elements agree, compared in the tangent space."""
        self._check_same_group(other)
        return self.rminus(other).norm() < tol

    # Operators.

    def __matmul__(self, other: Union["LieGroup", Array]):
        """Compose with another element, or act on (..., dim) points."""
        if isinstance(other, LieGroup):
            return self.compose(other)
        return self.act(jnp.asarray(other))

    def __add__(self, tangent: Tangent):
        if not isinstance(tangent, Tangent):
            return NotImplemented
        return self.rplus(tangent)

    def __sub__(self, other: "LieGroup"):
        if not isinstance(other, LieGroup):
            return NotImplemented
        return self.rminus(other)

    def __getitem__(self, index):
        """Index into the batch dimensions."""
        return jax.tree_util.tree_map(lambda x: x[index], self)
