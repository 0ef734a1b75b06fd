"""Intensities are the models that are fit to data.

An `Intensity` maps every event of a `.DataSet` to a non-negative real number. The
main implementation is `FunctionTreeIntensity`, which evaluates a `.FunctionTree`
that can be created from a `sympy` expression with :func:`create_intensity`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import numpy as np
import sympy as sp

from compwa.exceptions import InvariantViolation
from compwa.function_tree import FunctionTree, create_function_tree

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from compwa.data import DataSet
    from compwa.parameter import ParameterList


class Intensity(ABC):
    """Interface of a model that can be evaluated over a `.DataSet`."""

    @abstractmethod
    def evaluate(self, dataset: DataSet) -> np.ndarray:
        """Intensity values, one for each event in the `.DataSet`."""

    @abstractmethod
    def update_parameters_from(self, values: Sequence[float]) -> None:
        """Set new values for the free parameters, in the order of `parameters`."""

    @property
    @abstractmethod
    def parameters(self) -> ParameterList:
        """All parameters of the model, fixed ones included."""


class FunctionTreeIntensity(Intensity):
    """`Intensity` that is backed by a `.FunctionTree`.

    Args:
        tree: Graph of which the root evaluates to the intensity.
        validate: Check that every evaluation results in finite, non-negative
            values. Switch this off only for models that are known to be positive.
    """

    def __init__(self, tree: FunctionTree, validate: bool = True) -> None:
        self.__tree = tree
        self.__validate = validate

    @property
    def tree(self) -> FunctionTree:
        return self.__tree

    @property
    def parameters(self) -> ParameterList:
        return self.__tree.parameters

    @property
    def free_parameters(self) -> ParameterList:
        return self.__tree.free_parameters

    @property
    def data_variable_names(self) -> tuple[str, ...]:
        return self.__tree.data_variable_names

    def update_parameters_from(self, values: Sequence[float]) -> None:
        self.__tree.update_parameters_from(values)

    def evaluate(self, dataset: DataSet) -> np.ndarray:
        """Evaluate the graph over all events of a `.DataSet`.

        Raises:
            InvariantViolation: If validation is switched on and a value is
                negative, not finite, or has an imaginary part.
        """
        self.__tree.set_data(dataset)
        value = self.__tree.evaluate()
        values = np.broadcast_to(value, (dataset.n_events,))
        if np.iscomplexobj(values):
            if self.__validate and not np.allclose(values.imag, 0):
                msg = "Intensity has a non-zero imaginary part"
                raise InvariantViolation(msg)
            values = values.real
        values = np.array(values, dtype=float)
        if self.__validate:
            n_not_finite = np.sum(~np.isfinite(values))
            if n_not_finite:
                msg = f"Intensity is not finite for {n_not_finite} events"
                raise InvariantViolation(msg)
            if np.any(values < 0):
                msg = f"Intensity is negative for {np.sum(values < 0)} events"
                raise InvariantViolation(msg)
        return values

    def print(self) -> str:
        return self.__tree.print()


def create_intensity(
    expression: sp.Expr,
    parameters: ParameterList | Mapping[sp.Symbol | str, float],
    data_variable_names: Iterable[str] | None = None,
    validate: bool = True,
) -> FunctionTreeIntensity:
    """Build a `FunctionTreeIntensity` from a `sympy` expression.

    >>> import sympy as sp
    >>> a, x = sp.symbols("a x")
    >>> intensity = create_intensity(a * x**2, parameters={a: 2.0})
    >>> intensity.parameters.names
    ('a',)
    """
    tree = create_function_tree(expression, parameters, data_variable_names)
    return FunctionTreeIntensity(tree, validate=validate)


def coherent_sum(
    amplitudes: Mapping[str, sp.Expr],
) -> tuple[sp.Expr, dict[sp.Symbol, float]]:
    r"""Squared coherent sum of amplitudes with complex coefficients.

    Each amplitude :math:`A_k` gets a coefficient :math:`c_k = |c_k|e^{i\phi_k}`
    with a magnitude and a phase parameter, so that the intensity becomes
    :math:`\left|\sum_k c_k A_k\right|^2`.

    Returns:
        The expression and default values for its parameters (magnitude 1 and
        phase 0).
    """
    parameter_defaults: dict[sp.Symbol, float] = {}
    terms = []
    for name, amplitude in amplitudes.items():
        magnitude = sp.Symbol(f"Magnitude_{name}", real=True)
        phase = sp.Symbol(f"Phase_{name}", real=True)
        parameter_defaults[magnitude] = 1.0
        parameter_defaults[phase] = 0.0
        terms.append(magnitude * sp.exp(sp.I * phase) * amplitude)
    total = sp.Add(*terms)
    return sp.Abs(total) ** 2, parameter_defaults


def incoherent_sum(
    intensities: Mapping[str, sp.Expr],
) -> tuple[sp.Expr, dict[sp.Symbol, float]]:
    """Sum of intensities, each with a real strength parameter (default 1)."""
    parameter_defaults: dict[sp.Symbol, float] = {}
    terms = []
    for name, intensity in intensities.items():
        strength = sp.Symbol(f"Strength_{name}", nonnegative=True)
        parameter_defaults[strength] = 1.0
        terms.append(strength * intensity)
    return sp.Add(*terms), parameter_defaults
