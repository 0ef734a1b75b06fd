"""Estimators reduce an `.Intensity` over data to a single value to be minimized."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import numpy as np

from compwa.data import DataSet
from compwa.exceptions import ShapeError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from compwa.intensity import Intensity
    from compwa.parameter import ParameterList

_LOGGER = logging.getLogger(__name__)


class Estimator(ABC):
    """Objective function of a fit, evaluated at the current parameter values."""

    @abstractmethod
    def evaluate(self) -> float: ...

    def __call__(self) -> float:
        return self.evaluate()

    @property
    @abstractmethod
    def parameters(self) -> ParameterList:
        """Parameters of the underlying model, fixed ones included."""

    @abstractmethod
    def update_parameters_from(self, values: Sequence[float]) -> None:
        """Set the free parameters, in the order of `.ParameterList.free_parameters`."""

    def gradient(self, step: float = 1e-6) -> np.ndarray:
        """Central finite difference gradient with respect to the free parameters.

        Steps are shortened so that they do not cross the bounds of a parameter. At a
        bound, the difference is one-sided. If a parameter cannot be shifted in any
        direction, its derivative is NaN. The parameter values are restored
        afterwards.
        """
        free_parameters = self.parameters.free_parameters
        values = free_parameters.values
        gradient = np.full(len(values), np.nan)
        center: float | None = None
        for i, (parameter, value) in enumerate(zip(free_parameters, values)):
            h = step * max(1.0, abs(value))
            lower_bound, upper_bound = parameter.bounds or (-np.inf, np.inf)
            step_up = max(0.0, min(h, upper_bound - value))
            step_down = max(0.0, min(h, value - lower_bound))
            if step_up == 0 and step_down == 0:
                continue
            if center is None and (step_up == 0 or step_down == 0):
                self.update_parameters_from(values)
                center = self.evaluate()
            shifted = values.copy()
            upper = lower = center
            if step_up > 0:
                shifted[i] = value + step_up
                self.update_parameters_from(shifted)
                upper = self.evaluate()
            if step_down > 0:
                shifted[i] = value - step_down
                self.update_parameters_from(shifted)
                lower = self.evaluate()
            gradient[i] = (upper - lower) / (step_up + step_down)
        self.update_parameters_from(values)
        return gradient


class UnbinnedLogLikelihood(Estimator):
    r"""Weighted negative log-likelihood of an unbinned data sample.

    .. math::

        -\log\mathcal{L} = -\sum_i w_i \log I(x_i)
        + \left(\sum_i w_i\right) \log\left(V \frac{\sum_j w'_j I(y_j)}{\sum_j w'_j}\right)

    where the second term, the normalization, is only added if a phase space sample
    :math:`y_j` is provided. :math:`V` is the phase space volume.

    Data and phase space sample are merged into one `.DataSet` on construction, so
    that each evaluation traverses the `.FunctionTree` of the intensity only once and
    unchanged nodes are not recomputed.
    """

    def __init__(
        self,
        intensity: Intensity,
        data: DataSet,
        phsp: DataSet | None = None,
        phsp_volume: float = 1.0,
    ) -> None:
        if data.n_events == 0:
            msg = "Cannot create a likelihood for an empty data sample"
            raise ShapeError(msg)
        self.__intensity = intensity
        self.__n_data = data.n_events
        self.__data_weights = np.array(data.weights)
        self.__sum_of_weights = float(self.__data_weights.sum())
        self.__phsp_volume = float(phsp_volume)
        if phsp is None:
            self.__phsp_weights = None
            self.__dataset = data
        else:
            if phsp.n_events == 0:
                msg = "Phase space sample for the normalization is empty"
                raise ShapeError(msg)
            missing = set(data.variable_names) - set(phsp.variable_names)
            if missing:
                msg = f"Phase space sample is missing variables {sorted(missing)}"
                raise ShapeError(msg)
            self.__phsp_weights = np.array(phsp.weights)
            self.__dataset = DataSet(
                {
                    name: np.concatenate([data[name], phsp[name]])
                    for name in data.variable_names
                },
                weights=np.concatenate([data.weights, phsp.weights]),
            )

    @property
    def intensity(self) -> Intensity:
        return self.__intensity

    @property
    def parameters(self) -> ParameterList:
        return self.__intensity.parameters

    def update_parameters_from(self, values: Sequence[float]) -> None:
        self.__intensity.update_parameters_from(values)

    def evaluate(self) -> float:
        intensities = self.__intensity.evaluate(self.__dataset)
        data_intensities = intensities[: self.__n_data]
        with np.errstate(divide="ignore"):
            log_likelihood = np.sum(self.__data_weights * np.log(data_intensities))
        if self.__phsp_weights is not None:
            phsp_intensities = intensities[self.__n_data :]
            normalization = self.__phsp_volume * np.average(
                phsp_intensities, weights=self.__phsp_weights
            )
            log_likelihood -= self.__sum_of_weights * np.log(normalization)
        return float(-log_likelihood)


def create_unbinned_log_likelihood_function_tree_estimator(
    intensity: Intensity,
    data: DataSet,
    phsp: DataSet | None = None,
    phsp_volume: float = 1.0,
) -> tuple[UnbinnedLogLikelihood, ParameterList]:
    """Create an `UnbinnedLogLikelihood` and return it with its parameters."""
    estimator = UnbinnedLogLikelihood(intensity, data, phsp, phsp_volume)
    _LOGGER.debug(
        "Created %s for %d data events with %d parameters",
        type(estimator).__name__,
        data.n_events,
        len(estimator.parameters),
    )
    return estimator, estimator.parameters
