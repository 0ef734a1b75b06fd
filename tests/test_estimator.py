from __future__ import annotations

import numpy as np
import pytest
import sympy as sp

from compwa.data import DataSet
from compwa.estimator import (
    UnbinnedLogLikelihood,
    create_unbinned_log_likelihood_function_tree_estimator,
)
from compwa.exceptions import ShapeError
from compwa.intensity import FunctionTreeIntensity, create_intensity
from compwa.parameter import FitParameter, ParameterList


@pytest.fixture
def linear_intensity() -> FunctionTreeIntensity:
    slope, x = sp.symbols("slope x")
    return create_intensity(1 + slope * x, parameters={slope: 0.5})


@pytest.fixture
def data() -> DataSet:
    return DataSet({"x": [0.1, 0.5, 0.9]}, weights=[1.0, 2.0, 1.0])


@pytest.fixture
def phsp() -> DataSet:
    return DataSet({"x": np.linspace(0, 1, 11)})


class TestUnbinnedLogLikelihood:
    def test_without_normalization(self, linear_intensity, data: DataSet):
        estimator = UnbinnedLogLikelihood(linear_intensity, data)
        expected = -(np.log(1.05) + 2 * np.log(1.25) + np.log(1.45))
        assert estimator() == pytest.approx(expected)

    def test_with_normalization(self, linear_intensity, data: DataSet, phsp: DataSet):
        estimator = UnbinnedLogLikelihood(linear_intensity, data, phsp, phsp_volume=2)
        normalization = 2 * np.mean(1 + 0.5 * phsp["x"])
        expected = -(np.log(1.05) + 2 * np.log(1.25) + np.log(1.45))
        expected += 4 * np.log(normalization)
        assert estimator.evaluate() == pytest.approx(expected)

    def test_weighted_phsp(self, linear_intensity, data: DataSet):
        phsp = DataSet({"x": [0.0, 1.0]}, weights=[3.0, 1.0])
        estimator = UnbinnedLogLikelihood(linear_intensity, data, phsp)
        without_normalization = UnbinnedLogLikelihood(linear_intensity, data)
        normalization = (3 * 1.0 + 1 * 1.5) / 4
        assert estimator() == pytest.approx(
            without_normalization() + 4 * np.log(normalization)
        )

    def test_unchanged_graph_is_not_recomputed(
        self, linear_intensity, data: DataSet, phsp: DataSet
    ):
        estimator = UnbinnedLogLikelihood(linear_intensity, data, phsp)
        root = linear_intensity.tree.root
        first = estimator()
        assert estimator() == first
        assert root.n_evaluations == 1

        estimator.update_parameters_from([0.5])
        estimator()
        assert root.n_evaluations == 1

        estimator.update_parameters_from([1.0])
        assert estimator() != first
        assert root.n_evaluations == 2
        data_node = next(
            node for node in linear_intensity.tree.nodes if node.name == "x"
        )
        assert data_node.n_evaluations == 1

    def test_gradient(self, data: DataSet):
        a = sp.Symbol("a")
        intensity = create_intensity(a, parameters={a: 2.0})
        estimator = UnbinnedLogLikelihood(intensity, data)
        # -sum(w) * log(a)
        assert estimator.gradient() == pytest.approx([-4 / 2.0], rel=1e-6)
        assert estimator.parameters["a"].value == 2.0

    def test_gradient_at_upper_bound(self, data: DataSet):
        a, x = sp.symbols("a x")
        parameters = ParameterList([FitParameter("a", 10.0, bounds=(0, 10))])
        intensity = create_intensity(a * x**2 + 1, parameters)
        estimator = UnbinnedLogLikelihood(intensity, data)
        x_values = data["x"]
        expected = -np.sum(data.weights * x_values**2 / (10 * x_values**2 + 1))
        assert estimator.gradient() == pytest.approx([expected], rel=1e-4)
        assert parameters["a"].value == 10.0

    def test_gradient_without_room_to_move(self, data: DataSet):
        a = sp.Symbol("a")
        parameters = ParameterList([FitParameter("a", 2.0, bounds=(2, 2))])
        estimator = UnbinnedLogLikelihood(create_intensity(a, parameters), data)
        assert np.isnan(estimator.gradient()).all()

    def test_empty_samples(self, linear_intensity, data: DataSet):
        with pytest.raises(ShapeError, match="empty data"):
            UnbinnedLogLikelihood(linear_intensity, DataSet({"x": []}))
        with pytest.raises(ShapeError, match="empty"):
            UnbinnedLogLikelihood(linear_intensity, data, DataSet({"x": []}))

    def test_phsp_with_missing_variables(self, linear_intensity, data: DataSet):
        with pytest.raises(ShapeError, match="missing"):
            UnbinnedLogLikelihood(linear_intensity, data, DataSet({"y": [1.0]}))


def test_create_estimator(linear_intensity, data: DataSet, phsp: DataSet):
    estimator, parameters = create_unbinned_log_likelihood_function_tree_estimator(
        linear_intensity, data, phsp
    )
    assert isinstance(estimator, UnbinnedLogLikelihood)
    assert estimator.intensity is linear_intensity
    assert parameters.names == ("slope",)
    parameters["slope"].value = 0.0
    assert estimator() == pytest.approx(0.0)
