"""Functions for determining phase space boundaries and volumes.

The phase space element is normalized as
:math:`d\\Phi_n = \\prod_i \\frac{d^3p_i}{2E_i}\\,\\delta^4\\left(P-\\sum_i p_i\\right)`,
so without factors of :math:`2\\pi`.
"""

from __future__ import annotations

from math import factorial
from typing import TYPE_CHECKING

import numpy as np
from scipy.integrate import quad

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import ArrayLike


def kallen(x: ArrayLike, y: ArrayLike, z: ArrayLike) -> np.ndarray:
    """Källén function, used for computing break-up momenta.

    >>> float(kallen(25, 4, 1))
    384.0
    """
    x, y, z = (np.asarray(v, dtype=float) for v in (x, y, z))
    return x**2 + y**2 + z**2 - 2 * x * y - 2 * y * z - 2 * z * x


def breakup_momentum_squared(s: ArrayLike, m1: ArrayLike, m2: ArrayLike) -> np.ndarray:
    r"""Squared value of the two-body break-up momentum.

    For a two-body decay :math:`R \to ab`, the *break-up momentum* is the absolute
    value of the momentum of both :math:`a` and :math:`b` in the rest frame of
    :math:`R`. It can be negative below threshold.
    """
    s = np.asarray(s, dtype=float)
    return kallen(s, np.square(m1), np.square(m2)) / (4 * s)


def breakup_momentum(s: ArrayLike, m1: ArrayLike, m2: ArrayLike) -> np.ndarray:
    """Two-body break-up momentum, zero below threshold."""
    return np.sqrt(np.maximum(breakup_momentum_squared(s, m1, m2), 0))


def two_body_phsp_volume(s: float, m1: float, m2: float) -> float:
    r"""Two-body phase space volume :math:`\pi q/\sqrt{s}`.

    >>> round(two_body_phsp_volume(4.0, 0.0, 0.0), 6)
    1.570796
    """
    if s <= 0 or np.sqrt(s) <= m1 + m2:
        return 0.0
    return float(np.pi * breakup_momentum(s, m1, m2) / np.sqrt(s))


def phsp_volume(mass: float, final_state_masses: Sequence[float]) -> float:
    r"""Volume of the :math:`n`-body phase space for a decaying mass.

    The volume is computed with the recursion relation

    .. math::

        \Phi_n(s; m_1,\dots,m_n) = \int ds'\,
        \Phi_2\left(s; m_1, \sqrt{s'}\right)\Phi_{n-1}(s'; m_2,\dots,m_n)

    where the integrals are computed numerically. For massless final states, the
    result can be compared to the closed form of :func:`massless_phsp_volume`.
    """
    masses = [float(m) for m in final_state_masses]
    if len(masses) < 2:
        msg = "Phase space is only defined for two or more final state particles"
        raise ValueError(msg)
    if mass <= sum(masses):
        return 0.0
    return _phsp_volume(mass**2, masses)


def _phsp_volume(s: float, masses: list[float]) -> float:
    if len(masses) == 2:
        return two_body_phsp_volume(s, *masses)
    m1, *remainder = masses
    lower = sum(remainder) ** 2
    upper = (np.sqrt(s) - m1) ** 2
    if upper <= lower:
        return 0.0

    def integrand(s_sub: float) -> float:
        return two_body_phsp_volume(s, m1, np.sqrt(s_sub)) * _phsp_volume(
            s_sub, remainder
        )

    value, _ = quad(integrand, lower, upper, limit=200)
    return float(value)


def massless_phsp_volume(mass: float, n_final_states: int) -> float:
    r"""Closed-form phase space volume for :math:`n` massless final state particles.

    .. math::

        \Phi_n = \frac{(\pi/2)^{n-1}\,s^{n-2}}{(n-1)!\,(n-2)!}
    """
    n = n_final_states
    s = mass**2
    return (np.pi / 2) ** (n - 1) * s ** (n - 2) / (factorial(n - 1) * factorial(n - 2))
