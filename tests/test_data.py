from __future__ import annotations

import numpy as np
import pytest
import sympy as sp

from compwa.data import (
    DataSet,
    Event,
    EventList,
    Particle,
    add_intensity_weights,
    concatenate,
    convert_events_to_dataset,
    create_data_array,
    create_fitresult_array,
)
from compwa.exceptions import ShapeError
from compwa.intensity import create_intensity
from compwa.kinematics import HelicityKinematics


class TestParticle:
    def test_mass(self):
        particle = Particle((5, 0, 0, 3), pid=22)
        assert particle.mass == 4
        assert particle.energy == 5

    def test_wrong_number_of_components(self):
        with pytest.raises(ShapeError):
            Particle((1, 0, 0))


class TestEvent:
    def test_default_weight(self):
        event = Event([Particle((1, 0, 0, 0)), Particle((2, 0, 0, 0))])
        assert event.weight == 1.0
        assert len(event) == 2

    def test_particles_only(self):
        with pytest.raises(TypeError):
            Event([(1, 0, 0, 0)])  # type: ignore[list-item]


class TestEventList:
    def test_properties(self, data_sample: EventList):
        assert len(data_sample) == 10
        assert data_sample.n_particles == 4
        assert data_sample.momenta.shape == (10, 4, 4)
        assert data_sample.pids.tolist() == [111, 22, 111, 111]
        assert np.all(data_sample.weights == 1)

    def test_getitem(self, data_sample: EventList, data_sample_np: np.ndarray):
        event = data_sample[2]
        assert isinstance(event, Event)
        assert event.particles[1].pid == 22
        assert event.particles[1].p4 == tuple(data_sample_np[2, 1])
        subset = data_sample[2:5]
        assert isinstance(subset, EventList)
        assert subset.n_events == 3

    def test_is_immutable(self, data_sample: EventList):
        with pytest.raises(ValueError, match="read-only"):
            data_sample.momenta[0, 0, 0] = 0

    def test_from_events(self):
        events = [
            Event([Particle((1, 0, 0, 0), 22), Particle((2, 0, 0, 0), 22)], 0.5),
            Event([Particle((3, 0, 0, 0), 22), Particle((4, 0, 0, 0), 22)]),
        ]
        event_list = EventList.from_events(events)
        assert event_list.n_events == 2
        assert event_list.weights.tolist() == [0.5, 1.0]
        assert event_list[1] == events[1]

    def test_from_events_with_different_final_states(self):
        events = [
            Event([Particle((1, 0, 0, 0), 22), Particle((2, 0, 0, 0), 22)]),
            Event([Particle((1, 0, 0, 0), 22)]),
        ]
        with pytest.raises(ShapeError):
            EventList.from_events(events)

    def test_wrong_shapes(self):
        with pytest.raises(ShapeError):
            EventList(np.zeros((3, 2, 3)))
        with pytest.raises(ShapeError):
            EventList(np.zeros((3, 2, 4)), weights=[1, 2])
        with pytest.raises(ShapeError):
            EventList(np.zeros((3, 2, 4)), pids=[1, 2, 3])

    def test_concatenate(self, data_sample: EventList):
        merged = concatenate([data_sample[:4], data_sample[4:]])
        assert np.array_equal(merged.momenta, data_sample.momenta)

    def test_concatenate_empty_lists(self, data_sample: EventList):
        merged = concatenate([data_sample[:0], data_sample[5:5]])
        assert merged.momenta.shape == (0, 4, 4)
        assert merged.pids.tolist() == [111, 22, 111, 111]


class TestDataSet:
    def test_two_variables_three_events(self):
        dataset = DataSet(
            {"m_01": [1.0, 1.1, 1.2], "theta_0_1": [0.1, 0.2, 0.3]},
            weights=[1.0, 2.0, 1.0],
        )
        assert dataset.data.shape == (2, 3)
        assert dataset.n_events == 3
        assert dataset.variable_names == ("m_01", "theta_0_1")
        assert pytest.approx(dataset["theta_0_1"]) == [0.1, 0.2, 0.3]
        assert pytest.approx(dataset.data_point(1)) == [1.1, 0.2]

    def test_default_weights(self):
        dataset = DataSet({"x": [1, 2]})
        assert dataset.weights.tolist() == [1.0, 1.0]

    def test_unequal_columns(self):
        with pytest.raises(ShapeError):
            DataSet({"x": [1, 2, 3], "y": [1, 2]})
        with pytest.raises(ShapeError):
            DataSet({"x": [1, 2, 3]}, weights=[1, 2])

    def test_non_string_keys(self):
        with pytest.raises(TypeError):
            DataSet({1: [1, 2, 3]})  # type: ignore[dict-item]

    def test_select_events(self):
        dataset = DataSet({"x": [1, 2, 3, 4]}, weights=[1, 2, 3, 4])
        selection = dataset.select_events(np.array([True, False, True, False]))
        assert selection["x"].tolist() == [1, 3]
        assert selection.weights.tolist() == [1, 3]

    def test_missing_key(self):
        dataset = DataSet({"x": [1, 2]})
        with pytest.raises(KeyError):
            dataset["y"]  # pylint: disable=pointless-statement


def test_convert_events_to_dataset(
    four_body_kinematics: HelicityKinematics, data_sample: EventList
):
    weighted = data_sample.with_weights(np.arange(1, 11))
    dataset = convert_events_to_dataset(weighted, four_body_kinematics)
    variable_names = four_body_kinematics.get_kinematic_variable_names()
    assert dataset.n_events == 10
    assert dataset.variable_names == variable_names
    assert dataset.weights.tolist() == list(range(1, 11))


def test_convert_two_body_events(masses: dict[int, float]):
    kinematics = HelicityKinematics(masses, initial_state=[443], final_state=[22, 22])
    half_mass = 0.5 * masses[443]
    directions = [(0, 0, 1), (0, 1, 0), (0.6, 0, -0.8)]
    events = EventList.from_events(
        Event(
            [
                Particle([half_mass, *(half_mass * np.array(d))], pid=22),
                Particle([half_mass, *(-half_mass * np.array(d))], pid=22),
            ],
            weight=weight,
        )
        for d, weight in zip(directions, [0.5, 1.0, 2.5])
    )
    dataset = convert_events_to_dataset(events, kinematics)
    assert dataset.data.shape == (2, 3)
    assert dataset.weights.tolist() == [0.5, 1.0, 2.5]
    assert pytest.approx(dataset["theta_0_1"]) == [0, np.pi / 2, np.arccos(-0.8)]
    assert pytest.approx(dataset["phi_0_1"]) == [0, np.pi / 2, 0]


def test_data_arrays(three_body_kinematics: HelicityKinematics):
    dataset = DataSet({"m_01": [1.0, 2.0], "theta_0_1": [0.0, 1.0]}, weights=[1, 3])
    names, columns = create_data_array(dataset)
    assert names == ["m_01", "theta_0_1", "weight"]
    assert columns[2].tolist() == [1, 3]

    m = sp.Symbol("m_01")
    intensity = create_intensity(m**2, parameters={})
    names, columns = create_fitresult_array(intensity, dataset)
    assert names == ["m_01", "theta_0_1", "intensity", "weight"]
    assert columns[2].tolist() == [1.0, 4.0]
    assert len(columns) == len(names)


def test_add_intensity_weights(
    three_body_kinematics: HelicityKinematics, data_sample_np: np.ndarray
):
    events = EventList(data_sample_np[:, 1:, :], weights=np.full(10, 2.0))
    # momenta do not add up to the J/psi, only their own rest frame is used
    intensity = create_intensity(sp.Symbol("m_12"), parameters={})
    weighted = add_intensity_weights(intensity, events, three_body_kinematics)
    dataset = convert_events_to_dataset(events, three_body_kinematics)
    assert pytest.approx(weighted.weights) == 2 * dataset["m_12"]
