"""Numerical implementations for Lorentz vectors, boosts, and rotations.

All functions accept either a single four-vector of shape :code:`(4,)` or an array
of four-vectors of shape :math:`n\\times4`, ordered as :math:`\\left(E,\\vec{p}\\right)`
(energy first). Matrices are returned as arrays of shape :math:`n\\times4\\times4`, so
that they can be applied to a full event sample in one go.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from compwa.exceptions import DomainError, ShapeError

if TYPE_CHECKING:
    from numpy.typing import ArrayLike

MINKOWSKI_METRIC = np.diag([1.0, -1.0, -1.0, -1.0])
r"""Minkowski metric :math:`\eta = (1, -1, -1, -1)`."""


def as_four_momenta(momentum: ArrayLike) -> np.ndarray:
    """Convert input to a float array of shape :math:`n\\times4`.

    >>> as_four_momenta([5, 0, 0, 1]).shape
    (1, 4)
    """
    array = np.array(momentum, dtype=float, ndmin=2)
    if array.ndim != 2 or array.shape[1] != 4:
        msg = (
            "Four-momenta have to be of shape (4,) or (n, 4), but input is of shape"
            f" {np.shape(momentum)}"
        )
        raise ShapeError(msg)
    return array


def _restore_shape(result: np.ndarray, original: ArrayLike) -> np.ndarray:
    if np.ndim(original) == 1 and len(result) == 1:
        return result[0]
    return result


def energy(momentum: ArrayLike) -> np.ndarray:
    return as_four_momenta(momentum)[:, 0]


def three_momentum(momentum: ArrayLike) -> np.ndarray:
    """Spatial components of the four-momenta."""
    return as_four_momenta(momentum)[:, 1:]


def three_momentum_norm(momentum: ArrayLike) -> np.ndarray:
    return np.sqrt(np.sum(three_momentum(momentum) ** 2, axis=1))


def invariant_mass_squared(*momenta: ArrayLike) -> np.ndarray:
    """Invariant mass squared of the sum of the given four-momenta."""
    if not momenta:
        msg = "Need at least one four-momentum"
        raise ShapeError(msg)
    total = sum(as_four_momenta(p) for p in momenta)
    return total[:, 0] ** 2 - np.sum(total[:, 1:] ** 2, axis=1)  # type: ignore[index]


def invariant_mass(*momenta: ArrayLike) -> np.ndarray:
    r"""Invariant mass :math:`\sqrt{\left(\sum p\right)^2}` of a sum of four-momenta.

    Small negative values of the squared mass that are the result of rounding errors
    for (nearly) massless vectors are clipped to zero.

    >>> invariant_mass([5, 0, 0, 3])
    array([4.])
    >>> invariant_mass([2.5, 0, 0, 1.5], [2.5, 0, 0, -1.5])
    array([5.])
    """
    return np.sqrt(np.maximum(invariant_mass_squared(*momenta), 0))


def phi(momentum: ArrayLike) -> np.ndarray:
    r"""Azimuthal angle :math:`\phi` of the three-momentum."""
    p = as_four_momenta(momentum)
    return np.arctan2(p[:, 2], p[:, 1])


def theta(momentum: ArrayLike) -> np.ndarray:
    r"""Polar angle :math:`\theta` of the three-momentum.

    Raises:
        DomainError: If any of the three-momenta has zero length.
    """
    p = as_four_momenta(momentum)
    norm = three_momentum_norm(p)
    if np.any(norm == 0):
        msg = "Polar angle is undefined for a four-vector with zero three-momentum"
        raise DomainError(msg)
    return np.arccos(np.clip(p[:, 3] / norm, -1, 1))


def boost_matrix(beta: ArrayLike) -> np.ndarray:
    r"""Lorentz boost matrices for velocity vectors :math:`\vec\beta`.

    A four-vector that moves with velocity :math:`\vec\beta` in the original frame is
    at rest after applying the resulting matrix. Zero velocity gives the identity.

    Args:
        beta: Velocities of shape :code:`(3,)` or :math:`n\times3`, with
            :math:`|\vec\beta| < 1`.
    """
    beta = np.array(beta, dtype=float, ndmin=2)
    if beta.ndim != 2 or beta.shape[1] != 3:
        msg = f"Velocity vectors have to be of shape (n, 3), not {beta.shape}"
        raise ShapeError(msg)
    beta_sq = np.sum(beta**2, axis=1)
    if np.any(beta_sq >= 1):
        msg = "Cannot boost with a velocity of the speed of light or higher"
        raise DomainError(msg)
    gamma = 1 / np.sqrt(1 - beta_sq)
    factor = np.divide(
        gamma - 1, beta_sq, out=np.zeros_like(beta_sq), where=beta_sq != 0
    )
    n_events = len(beta)
    matrix = np.empty((n_events, 4, 4))
    matrix[:, 0, 0] = gamma
    matrix[:, 0, 1:] = -gamma[:, None] * beta
    matrix[:, 1:, 0] = -gamma[:, None] * beta
    matrix[:, 1:, 1:] = np.eye(3) + factor[:, None, None] * np.einsum(
        "ni,nj->nij", beta, beta
    )
    return matrix


def boost_z_matrix(beta: ArrayLike) -> np.ndarray:
    r"""Lorentz boost matrices along the :math:`z`-axis."""
    beta = np.array(beta, dtype=float, ndmin=1)
    if np.any(np.abs(beta) >= 1):
        msg = "Cannot boost with a velocity of the speed of light or higher"
        raise DomainError(msg)
    gamma = 1 / np.sqrt(1 - beta**2)
    matrix = np.zeros((len(beta), 4, 4))
    matrix[:, 0, 0] = gamma
    matrix[:, 0, 3] = -gamma * beta
    matrix[:, 3, 0] = -gamma * beta
    matrix[:, 3, 3] = gamma
    matrix[:, 1, 1] = 1
    matrix[:, 2, 2] = 1
    return matrix


def rotation_y_matrix(angle: ArrayLike) -> np.ndarray:
    """Rotation matrices around the :math:`y`-axis."""
    angle = np.array(angle, dtype=float, ndmin=1)
    cos, sin = np.cos(angle), np.sin(angle)
    matrix = np.zeros((len(angle), 4, 4))
    matrix[:, 0, 0] = 1
    matrix[:, 1, 1] = cos
    matrix[:, 1, 3] = sin
    matrix[:, 2, 2] = 1
    matrix[:, 3, 1] = -sin
    matrix[:, 3, 3] = cos
    return matrix


def rotation_z_matrix(angle: ArrayLike) -> np.ndarray:
    """Rotation matrices around the :math:`z`-axis."""
    angle = np.array(angle, dtype=float, ndmin=1)
    cos, sin = np.cos(angle), np.sin(angle)
    matrix = np.zeros((len(angle), 4, 4))
    matrix[:, 0, 0] = 1
    matrix[:, 1, 1] = cos
    matrix[:, 1, 2] = -sin
    matrix[:, 2, 1] = sin
    matrix[:, 2, 2] = cos
    matrix[:, 3, 3] = 1
    return matrix


def apply(matrix: np.ndarray, momentum: ArrayLike) -> np.ndarray:
    """Multiply an array of :math:`4\\times4` matrices with an array of four-vectors.

    A single matrix or a single four-vector is broadcast over the other.
    """
    p = as_four_momenta(momentum)
    matrix = np.array(matrix, dtype=float)
    if matrix.ndim == 2:
        matrix = matrix[None, :, :]
    result = np.einsum("...ij,...j->...i", matrix, p)
    return _restore_shape(result, momentum)


def rest_frame_velocity(reference: ArrayLike) -> np.ndarray:
    r"""Velocities :math:`\vec\beta = \vec{p}/E` of four-vectors with a rest frame."""
    p = as_four_momenta(reference)
    mass_squared = invariant_mass_squared(p)
    if np.any(p[:, 0] <= 0) or np.any(mass_squared <= 0):
        msg = (
            "Cannot boost into the rest frame of a four-vector that is light-like,"
            " space-like, or has non-positive energy"
        )
        raise DomainError(msg)
    return p[:, 1:] / p[:, :1]


def boost_into_rest_frame(momentum: ArrayLike, reference: ArrayLike) -> np.ndarray:
    """Boost four-momenta into the rest frame of a reference four-momentum.

    Raises:
        DomainError: If the reference has no rest frame (zero vector, light-like or
            space-like four-vector).
    """
    matrix = boost_matrix(rest_frame_velocity(reference))
    return apply(matrix, momentum)


def boost_from_rest_frame(momentum: ArrayLike, reference: ArrayLike) -> np.ndarray:
    """Inverse of :func:`boost_into_rest_frame`."""
    matrix = boost_matrix(-rest_frame_velocity(reference))
    return apply(matrix, momentum)


def rotation_to_z_axis(axis: ArrayLike) -> np.ndarray:
    r"""Rotation matrices that align the three-momentum of :code:`axis` with :math:`+z`.

    The rotation is :math:`R_y(-\theta)R_z(-\phi)`. Four-vectors with zero
    three-momentum get the identity.
    """
    p = as_four_momenta(axis)
    norm = three_momentum_norm(p)
    at_rest = norm == 0
    cos_theta = np.divide(p[:, 3], norm, out=np.ones_like(norm), where=~at_rest)
    polar = np.arccos(np.clip(cos_theta, -1, 1))
    azimuth = np.where(at_rest, 0.0, np.arctan2(p[:, 2], p[:, 1]))
    return np.einsum(
        "nij,njk->nik", rotation_y_matrix(-polar), rotation_z_matrix(-azimuth)
    )


def rotate_to_z_axis(momentum: ArrayLike, axis: ArrayLike) -> np.ndarray:
    """Rotate four-momenta so that the direction of :code:`axis` becomes :math:`+z`."""
    return apply(rotation_to_z_axis(axis), momentum)


def helicity_frame_matrix(reference: ArrayLike) -> np.ndarray:
    r"""Transformation into the helicity rest frame of a reference four-momentum.

    Rotates the direction of flight of the reference onto the :math:`z`-axis and then
    boosts along :math:`z` into its rest frame,
    :math:`B_z(\beta)R_y(-\theta)R_z(-\phi)`.
    """
    p = as_four_momenta(reference)
    rest_frame_velocity(p)
    beta = three_momentum_norm(p) / p[:, 0]
    return np.einsum(
        "nij,njk->nik", boost_z_matrix(beta), rotation_to_z_axis(p)
    )
