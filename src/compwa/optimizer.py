"""Minimize an `.Estimator` and collect the outcome in a `FitResult`.

The `Optimizer` is the bridge between the named parameters of a model and a
`Minimizer`, which only knows a flat vector of values. The order of that vector is
the order of the free parameters in the `.ParameterList` of the estimator.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable

import numpy as np
from attrs import field, frozen
from scipy.optimize import minimize

from compwa.exceptions import ConfigurationError, ShapeError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from compwa.estimator import Estimator
    from compwa.intensity import Intensity
    from compwa.parameter import ParameterList

_LOGGER = logging.getLogger(__name__)

_METHODS_WITH_BOUNDS = {
    "cobyla",
    "cobyqa",
    "l-bfgs-b",
    "nelder-mead",
    "powell",
    "slsqp",
    "tnc",
    "trust-constr",
}


def _to_read_only_array(value: np.ndarray) -> np.ndarray:
    array = np.array(value, dtype=float)
    array.setflags(write=False)
    return array


@frozen(eq=False)
class MinimizerResult:
    """Outcome of a `Minimizer`, in terms of the flat parameter vector."""

    values: np.ndarray = field(converter=_to_read_only_array)
    errors: np.ndarray = field(converter=_to_read_only_array)
    covariance: np.ndarray = field(converter=_to_read_only_array)
    function_value: float = field(converter=float)
    is_valid: bool
    message: str
    n_function_calls: int


class Minimizer(ABC):
    @abstractmethod
    def minimize(
        self,
        function: Callable[[np.ndarray], float],
        initial_values: np.ndarray,
        bounds: Sequence[tuple[float, float] | None],
    ) -> MinimizerResult: ...


class ScipyMinimizer(Minimizer):
    """Minimizer that uses :func:`scipy.optimize.minimize`.

    The covariance matrix is the inverse of the Hessian of the function at the
    minimum, computed with central finite differences. For a negative
    log-likelihood, this gives the errors that correspond to a change of 1/2.

    Args:
        method: Any method accepted by :func:`scipy.optimize.minimize`. Parameters
            with bounds can only be minimized with methods that support bounds.
        tolerance: Tolerance for termination.
        max_iterations: Maximal number of iterations of the minimizer.
        hessian_step: Relative step size for the Hessian.
    """

    def __init__(
        self,
        method: str = "L-BFGS-B",
        tolerance: float | None = None,
        max_iterations: int | None = None,
        hessian_step: float = 1e-4,
    ) -> None:
        self.method = method
        self.tolerance = tolerance
        self.max_iterations = max_iterations
        self.hessian_step = hessian_step

    def minimize(
        self,
        function: Callable[[np.ndarray], float],
        initial_values: np.ndarray,
        bounds: Sequence[tuple[float, float] | None],
    ) -> MinimizerResult:
        n_calls = 0

        def counted_function(values: np.ndarray) -> float:
            nonlocal n_calls
            n_calls += 1
            return function(values)

        options = {}
        if self.max_iterations is not None:
            options["maxiter"] = self.max_iterations
        scipy_bounds = None
        if any(b is not None for b in bounds):
            if self.method.lower() not in _METHODS_WITH_BOUNDS:
                msg = (
                    f"Minimization method {self.method} does not support the bounds"
                    " of the parameters"
                )
                raise ConfigurationError(msg)
            scipy_bounds = [b if b is not None else (None, None) for b in bounds]
        result = minimize(
            counted_function,
            np.asarray(initial_values, dtype=float),
            method=self.method,
            bounds=scipy_bounds,
            tol=self.tolerance,
            options=options,
        )
        values = np.atleast_1d(result.x)
        hessian = _compute_hessian(counted_function, values, bounds, self.hessian_step)
        covariance, is_positive_definite = _invert_hessian(hessian)
        is_valid = bool(result.success) and is_positive_definite
        message = str(result.message)
        if not is_positive_definite:
            message += " (Hessian is not positive definite)"
        with np.errstate(invalid="ignore"):
            errors = np.sqrt(np.diag(covariance))
        return MinimizerResult(
            values=values,
            errors=errors,
            covariance=covariance,
            function_value=counted_function(values),
            is_valid=is_valid,
            message=message,
            n_function_calls=n_calls,
        )


def _compute_hessian(
    function: Callable[[np.ndarray], float],
    values: np.ndarray,
    bounds: Sequence[tuple[float, float] | None],
    relative_step: float,
) -> np.ndarray:
    n = len(values)
    steps = relative_step * np.maximum(1.0, np.abs(values))
    for i, bound in enumerate(bounds):
        if bound is not None:
            lower, upper = bound
            steps[i] = min(steps[i], values[i] - lower, upper - values[i])
    hessian = np.full((n, n), np.nan)
    center = function(values)
    for i in range(n):
        if steps[i] <= 0:
            continue
        for j in range(i, n):
            if steps[j] <= 0:
                continue
            if i == j:
                shift = np.zeros(n)
                shift[i] = steps[i]
                upper = function(values + shift)
                lower = function(values - shift)
                hessian[i, i] = (upper - 2 * center + lower) / steps[i] ** 2
                continue
            shift_i = np.zeros(n)
            shift_i[i] = steps[i]
            shift_j = np.zeros(n)
            shift_j[j] = steps[j]
            value = (
                function(values + shift_i + shift_j)
                - function(values + shift_i - shift_j)
                - function(values - shift_i + shift_j)
                + function(values - shift_i - shift_j)
            ) / (4 * steps[i] * steps[j])
            hessian[i, j] = hessian[j, i] = value
    return hessian


def _invert_hessian(hessian: np.ndarray) -> tuple[np.ndarray, bool]:
    n = len(hessian)
    covariance = np.full((n, n), np.nan)
    if n == 0:
        return covariance, True
    finite = np.isfinite(np.diag(hessian))
    sub_hessian = hessian[np.ix_(finite, finite)]
    if not finite.any() or not np.all(np.isfinite(sub_hessian)):
        return covariance, False
    try:
        np.linalg.cholesky(sub_hessian)
    except np.linalg.LinAlgError:
        return covariance, False
    sub_covariance = np.linalg.inv(sub_hessian)
    covariance[np.ix_(finite, finite)] = (sub_covariance + sub_covariance.T) / 2
    return covariance, bool(finite.all())


@frozen(eq=False)
class FitResult:
    """Summary of an `Optimizer.optimize` call.

    The rows and columns of :attr:`covariance_matrix` are ordered as
    :attr:`covariance_parameter_names`, the free parameters at the time of the fit.
    """

    initial_parameters: ParameterList
    final_parameters: ParameterList
    initial_estimator_value: float = field(converter=float)
    final_estimator_value: float = field(converter=float)
    fit_duration_in_seconds: float = field(converter=float)
    covariance_matrix: np.ndarray = field(converter=_to_read_only_array)
    covariance_parameter_names: tuple[str, ...] = field(converter=tuple)
    is_valid: bool
    status_message: str = ""
    n_function_calls: int = 0

    def __attrs_post_init__(self) -> None:
        n = len(self.covariance_parameter_names)
        if self.covariance_matrix.shape != (n, n):
            msg = (
                f"Covariance matrix of shape {self.covariance_matrix.shape} does not"
                f" match {n} free parameters"
            )
            raise ShapeError(msg)

    @property
    def correlation_matrix(self) -> np.ndarray:
        errors = np.sqrt(np.diag(self.covariance_matrix))
        with np.errstate(invalid="ignore", divide="ignore"):
            return self.covariance_matrix / np.outer(errors, errors)

    def __str__(self) -> str:
        lines = [
            f"Fit {'converged' if self.is_valid else 'is NOT valid'}:"
            f" {self.status_message}",
            f"  estimator value: {self.initial_estimator_value:.6g}"
            f" -> {self.final_estimator_value:.6g}",
            f"  duration: {self.fit_duration_in_seconds:.3g} s,"
            f" {self.n_function_calls} function calls",
            "  parameters:",
        ]
        lines.extend(f"    {parameter}" for parameter in self.final_parameters)
        return "\n".join(lines)


class Optimizer:
    """Drive a `Minimizer` over the free parameters of an `.Estimator`.

    Args:
        minimizer: Defaults to a `ScipyMinimizer`.
        logger: Logger for fit progress. Defaults to the module logger.
    """

    def __init__(
        self,
        minimizer: Minimizer | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.__minimizer = minimizer or ScipyMinimizer()
        self.__logger = logger or _LOGGER

    @property
    def minimizer(self) -> Minimizer:
        return self.__minimizer

    def optimize(
        self,
        estimator: Estimator,
        parameters: ParameterList | None = None,
    ) -> FitResult:
        """Minimize the estimator, starting from the current parameter values.

        Args:
            estimator: Objective function of the fit.
            parameters: Start values, bounds, and fixed states. They are copied into
                the parameters of the estimator by name before the fit starts.

        The estimator is left at the minimum, with the errors assigned to its free
        parameters.
        """
        model_parameters = estimator.parameters
        if parameters is not None and parameters is not model_parameters:
            model_parameters.update_from(parameters)
        initial_parameters = model_parameters.copy()
        free_parameters = model_parameters.free_parameters
        names = free_parameters.names
        if not names:
            msg = "All parameters are fixed, there is nothing to optimize"
            raise ShapeError(msg)
        initial_values = free_parameters.values
        bounds = [p.bounds for p in free_parameters]

        estimator.update_parameters_from(initial_values)
        initial_value = estimator.evaluate()
        self.__logger.info(
            "Starting fit of %d free parameters, initial estimator value %.6g",
            len(names),
            initial_value,
        )

        def objective(values: np.ndarray) -> float:
            estimator.update_parameters_from(values)
            return estimator.evaluate()

        start_time = time.time()
        result = self.__minimizer.minimize(objective, initial_values, bounds)
        fit_duration = time.time() - start_time

        estimator.update_parameters_from(result.values)
        final_value = estimator.evaluate()
        for parameter, error in zip(free_parameters, result.errors):
            parameter.error = float(error)
        fit_result = FitResult(
            initial_parameters=initial_parameters,
            final_parameters=model_parameters.copy(),
            initial_estimator_value=initial_value,
            final_estimator_value=final_value,
            fit_duration_in_seconds=fit_duration,
            covariance_matrix=result.covariance,
            covariance_parameter_names=names,
            is_valid=result.is_valid,
            status_message=result.message,
            n_function_calls=result.n_function_calls,
        )
        log_fit_result(fit_result, self.__logger)
        return fit_result


def log_fit_result(result: FitResult, logger: logging.Logger | None = None) -> None:
    logger = logger or _LOGGER
    level = logging.INFO if result.is_valid else logging.WARNING
    for line in str(result).split("\n"):
        logger.log(level, line)


def initialize_with_fit_result(intensity: Intensity, fit_result: FitResult) -> None:
    """Set the parameters of an intensity to the final values of a fit.

    Parameters that are not part of the intensity are ignored.
    """
    parameters = intensity.parameters
    for parameter in fit_result.final_parameters:
        if parameter.name not in parameters:
            _LOGGER.debug('Skipping parameter "%s"', parameter.name)
            continue
        target = parameters[parameter.name]
        target.bounds = None
        target.value = parameter.value
        target.bounds = parameter.bounds
        target.error = parameter.error
