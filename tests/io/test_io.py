from __future__ import annotations

import json

import numpy as np
import pytest
import qrules
import yaml

from compwa import io
from compwa.exceptions import ConfigurationError
from compwa.kinematics import HelicityKinematics, SubSystem
from compwa.optimizer import FitResult
from compwa.parameter import FitParameter, ParameterList


@pytest.fixture(scope="session")
def fit_result() -> FitResult:
    initial = ParameterList([
        FitParameter("Magnitude", 1.0, bounds=(0, 10)),
        FitParameter("Phase", 0.0, is_fixed=True),
    ])
    final = ParameterList([
        FitParameter("Magnitude", 2.1, error=0.05, bounds=(0, 10)),
        FitParameter("Phase", 0.0, is_fixed=True),
    ])
    return FitResult(
        initial_parameters=initial,
        final_parameters=final,
        initial_estimator_value=-120.5,
        final_estimator_value=-140.25,
        fit_duration_in_seconds=1.5,
        covariance_matrix=[[0.0025]],
        covariance_parameter_names=["Magnitude"],
        is_valid=True,
        status_message="CONVERGENCE",
        n_function_calls=42,
    )


class TestParameters:
    def test_asdict_skips_defaults(self):
        definition = io.asdict(FitParameter("x", 1.5, bounds=(0, 2)))
        assert definition == {"name": "x", "value": 1.5, "bounds": [0.0, 2.0]}

    @pytest.mark.parametrize("file_extension", ["json", "yml"])
    def test_write_load(self, file_extension: str, tmp_path):
        parameters = ParameterList([
            FitParameter("a", 1.0, error=0.1),
            FitParameter("b", -2.0, is_fixed=True, bounds=(-5, 5)),
        ])
        filename = str(tmp_path / f"parameters.{file_extension}")
        io.write(parameters, filename)
        imported = io.load(filename)
        assert isinstance(imported, ParameterList)
        assert list(imported) == list(parameters)
        assert imported[0] is not parameters[0]

    def test_invalid_definition(self):
        with pytest.raises(ConfigurationError, match="Invalid parameter list"):
            io.fromdict({"parameters": [{"name": "a"}]})


@pytest.mark.parametrize("file_extension", ["json", "yaml"])
def test_fit_result(file_extension: str, fit_result: FitResult, tmp_path):
    filename = str(tmp_path / f"fit_result.{file_extension}")
    io.write(fit_result, filename)
    imported = io.load(filename)
    assert isinstance(imported, FitResult)
    assert list(imported.final_parameters) == list(fit_result.final_parameters)
    assert list(imported.initial_parameters) == list(fit_result.initial_parameters)
    assert imported.covariance_parameter_names == ("Magnitude",)
    assert np.array_equal(imported.covariance_matrix, fit_result.covariance_matrix)
    assert imported.final_estimator_value == fit_result.final_estimator_value
    assert imported.n_function_calls == 42
    assert imported.is_valid


class TestKinematics:
    def test_subsystem(self):
        subsystem = SubSystem([[0], [1]], recoil=[2], parent_recoil=[3])
        definition = io.asdict(subsystem)
        assert definition == {
            "final_states": [[0], [1]],
            "recoil": [2],
            "parent_recoil": [3],
        }
        assert io.fromdict(definition) == subsystem

    def test_round_trip(self, three_body_kinematics: HelicityKinematics, masses):
        definition = io.asdict(three_body_kinematics)
        assert definition["initial_state"] == [443]
        assert len(definition["subsystems"]) == 6
        imported = io.fromdict(definition, particles=masses)
        assert isinstance(imported, HelicityKinematics)
        assert imported.subsystems == three_body_kinematics.subsystems
        assert imported.get_kinematic_variable_names() == (
            three_body_kinematics.get_kinematic_variable_names()
        )

    def test_particles_required(self, three_body_kinematics: HelicityKinematics):
        with pytest.raises(ValueError, match="particle definitions"):
            io.fromdict(io.asdict(three_body_kinematics))

    def test_load_with_qrules_particles(self, tmp_path):
        definition = {
            "initial_state": [443],
            "final_state": [22, 111, 111],
            "subsystems": [
                {"final_states": [[1], [2]], "recoil": [0]},
                {"final_states": [[0], [1, 2]]},
            ],
        }
        filename = tmp_path / "kinematics.yml"
        filename.write_text(yaml.dump(definition))
        kinematics = io.load_kinematics(
            str(filename), qrules.load_default_particles()
        )
        assert kinematics.get_kinematic_variable_names() == (
            "m_12",
            "theta_1_2",
            "phi_1_2",
            "theta_0_12",
            "phi_0_12",
        )
        assert kinematics.initial_state_p4[0] == pytest.approx(3.0969, abs=1e-3)
        assert kinematics.final_state_masses[0] == 0

    @pytest.mark.parametrize(
        ("definition", "match"),
        [
            ({"initial_state": [443]}, "'final_state' is a required property"),
            ({"initial_state": [443], "final_state": [22]}, "is too short"),
            (
                {
                    "initial_state": [443],
                    "final_state": [22, 111],
                    "initial_state_p4": [3.0969, 0, 0],
                },
                "is too short",
            ),
            (
                {"initial_state": [443], "final_state": [22, 111], "spin": 1},
                "Additional properties",
            ),
        ],
    )
    def test_invalid_definition(self, definition: dict, match: str, masses):
        with pytest.raises(ConfigurationError, match=match):
            io.fromdict(definition, particles=masses)

    def test_invalid_decay(self, masses, tmp_path):
        filename = tmp_path / "kinematics.json"
        definition = {"initial_state": [111], "final_state": [211, 211]}
        filename.write_text(json.dumps(definition))
        with pytest.raises(ConfigurationError, match="closed"):
            io.load_kinematics(str(filename), masses)


def test_unknown_file_type(tmp_path):
    with pytest.raises(NotImplementedError):
        io.write(FitParameter("a", 1.0), str(tmp_path / "parameter.xml"))
    with pytest.raises(ValueError, match="extension"):
        io.write(FitParameter("a", 1.0), str(tmp_path / "parameter"))
