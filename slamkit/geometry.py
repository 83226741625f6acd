"""Rigid-body rotations and transforms (SO(3) and SE(3)) backed by numpy."""

from __future__ import annotations

import math

import numpy as np

_SMALL_ANGLE = 1e-8
_NEAR_PI = 1e-6


def _as_vector3(value, name: str = "vector") -> np.ndarray:
    vec = np.asarray(value, dtype=float).reshape(-1)
    if vec.shape != (3,):
        raise ValueError(f"{name} must have exactly 3 components, got shape {vec.shape}")
    return vec


def _hat(v: np.ndarray) -> np.ndarray:
    """Skew-symmetric matrix such that hat(v) @ w == cross(v, w)."""
    x, y, z = v
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def _vee(m: np.ndarray) -> np.ndarray:
    return np.array([m[2, 1], m[0, 2], m[1, 0]])


def _left_jacobian(phi: np.ndarray) -> np.ndarray:
    theta = float(np.linalg.norm(phi))
    k = _hat(phi)
    if theta < _SMALL_ANGLE:
        return np.eye(3) + 0.5 * k + (k @ k) / 6.0
    return (
        np.eye(3)
        + (1.0 - math.cos(theta)) / theta**2 * k
        + (theta - math.sin(theta)) / theta**3 * (k @ k)
    )


def _left_jacobian_inverse(phi: np.ndarray) -> np.ndarray:
    theta = float(np.linalg.norm(phi))
    k = _hat(phi)
    if theta < _SMALL_ANGLE:
        return np.eye(3) - 0.5 * k + (k @ k) / 12.0
    coeff = (1.0 - theta * math.sin(theta) / (2.0 * (1.0 - math.cos(theta)))) / theta**2
    return np.eye(3) - 0.5 * k + coeff * (k @ k)


class SO3:
    """A 3D rotation stored as an orthonormal 3x3 matrix."""

    __slots__ = ("_matrix",)

    def __init__(self, matrix=None):
        if matrix is None:
            mat = np.eye(3)
        else:
            mat = np.array(matrix, dtype=float)
            if mat.shape != (3, 3):
                raise ValueError(f"rotation matrix must be 3x3, got shape {mat.shape}")
        mat.setflags(write=False)
        self._matrix = mat

    @property
    def rotation_matrix(self) -> np.ndarray:
        return self._matrix

    @classmethod
    def exp(cls, omega) -> "SO3":
        """Rotation from a rotation vector (axis times angle)."""
        w = _as_vector3(omega, "omega")
        theta = float(np.linalg.norm(w))
        k = _hat(w)
        if theta < _SMALL_ANGLE:
            return cls(np.eye(3) + k + 0.5 * (k @ k))
        return cls(
            np.eye(3)
            + math.sin(theta) / theta * k
            + (1.0 - math.cos(theta)) / theta**2 * (k @ k)
        )

    def log(self) -> np.ndarray:
        """Rotation vector whose exponential is this rotation; angle in [0, pi]."""
        r = self._matrix
        diagonal_sum = float(np.diag(r).sum())
        cos_theta = float(np.clip((diagonal_sum - 1.0) / 2.0, -1.0, 1.0))
        theta = math.acos(cos_theta)
        skew = _vee(r - r.T)
        if theta < _SMALL_ANGLE:
            return skew / 2.0
        if math.pi - theta < _NEAR_PI:
            b = (r + np.eye(3)) / 2.0
            i = int(np.argmax(np.diag(b)))
            axis = b[:, i] / math.sqrt(b[i, i])
            axis /= np.linalg.norm(axis)
            if float(np.dot(axis, skew)) < 0.0:
                axis = -axis
            return axis * theta
        return theta / (2.0 * math.sin(theta)) * skew

    def inverse(self) -> "SO3":
        return SO3(self._matrix.T)

    def __matmul__(self, other):
        if isinstance(other, SO3):
            return SO3(self._matrix @ other._matrix)
        if isinstance(other, SE3):
            return NotImplemented
        points = np.asarray(other, dtype=float)
        if points.ndim == 1:
            return self._matrix @ _as_vector3(points, "point")
        return points @ self._matrix.T

    def __repr__(self) -> str:
        return f"SO3({self._matrix.tolist()!r})"


class SE3:
    """A rigid-body transform: rotation followed by translation."""

    __slots__ = ("_rotation", "_translation")

    def __init__(self, rotation=None, translation=None):
        if rotation is None:
            rot = SO3()
        elif isinstance(rotation, SO3):
            rot = rotation
        else:
            rot = SO3(rotation)
        trans = np.zeros(3) if translation is None else _as_vector3(translation, "translation").copy()
        trans.setflags(write=False)
        self._rotation = rot
        self._translation = trans

    @property
    def rotation(self) -> SO3:
        return self._rotation

    @property
    def rotation_matrix(self) -> np.ndarray:
        return self._rotation.rotation_matrix

    @property
    def translation(self) -> np.ndarray:
        return self._translation

    @classmethod
    def exp(cls, xi) -> "SE3":
        """Transform from a twist ordered as (translation part, rotation part)."""
        twist = np.asarray(xi, dtype=float).reshape(-1)
        if twist.shape != (6,):
            raise ValueError(f"twist must have exactly 6 components, got shape {twist.shape}")
        rho, phi = twist[:3], twist[3:]
        return cls(SO3.exp(phi), _left_jacobian(phi) @ rho)

    @classmethod
    def from_rotation_vector(cls, rvec, tvec) -> "SE3":
        """Transform from a rotation vector and a translation vector."""
        return cls(SO3.exp(rvec), tvec)

    def log(self) -> np.ndarray:
        """Twist (translation part first, rotation part last) of this transform."""
        phi = self._rotation.log()
        rho = _left_jacobian_inverse(phi) @ self._translation
        return np.concatenate([rho, phi])

    def inverse(self) -> "SE3":
        inv_rot = self._rotation.inverse()
        return SE3(inv_rot, -(inv_rot.rotation_matrix @ self._translation))

    def act(self, point) -> np.ndarray:
        """Apply the transform to one point or to an (N, 3) array of points."""
        points = np.asarray(point, dtype=float)
        r = self.rotation_matrix
        if points.ndim == 1:
            return r @ _as_vector3(points, "point") + self._translation
        if points.ndim != 2 or points.shape[1] != 3:
            raise ValueError(f"points must have shape (N, 3), got {points.shape}")
        return points @ r.T + self._translation

    def matrix(self) -> np.ndarray:
        """Homogeneous 4x4 matrix of this transform."""
        out = np.eye(4)
        out[:3, :3] = self.rotation_matrix
        out[:3, 3] = self._translation
        return out

    def __matmul__(self, other):
        if isinstance(other, SE3):
            return SE3(
                self._rotation @ other._rotation,
                self.rotation_matrix @ other._translation + self._translation,
            )
        if isinstance(other, SO3):
            return NotImplemented
        return self.act(other)

    def __repr__(self) -> str:
        return (
            f"SE3(rotation={self.rotation_matrix.tolist()!r}, "
            f"translation={self._translation.tolist()!r})"
        )