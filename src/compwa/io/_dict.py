"""Conversion of `compwa` objects from and to `dict` definitions."""

from __future__ import annotations

import json
from os.path import dirname, realpath
from typing import TYPE_CHECKING, Any

import attrs
import jsonschema
import numpy as np

from compwa.exceptions import ConfigurationError
from compwa.kinematics import HelicityKinematics, SubSystem
from compwa.optimizer import FitResult
from compwa.parameter import FitParameter, ParameterList

if TYPE_CHECKING:
    from compwa.kinematics import ParticleDefinitions


def from_fit_parameter(parameter: FitParameter) -> dict:
    return attrs.asdict(
        parameter,
        recurse=True,
        value_serializer=_value_serializer,
        filter=lambda field, value: field.init and field.default != value,
    )


def from_parameter_list(parameters: ParameterList) -> dict:
    return {"parameters": [from_fit_parameter(p) for p in parameters]}


def from_subsystem(subsystem: SubSystem) -> dict:
    definition: dict[str, Any] = {
        "final_states": [list(ids) for ids in subsystem.final_states],
    }
    if subsystem.recoil:
        definition["recoil"] = list(subsystem.recoil)
    if subsystem.parent_recoil:
        definition["parent_recoil"] = list(subsystem.parent_recoil)
    return definition


def from_kinematics(kinematics: HelicityKinematics) -> dict:
    return {
        "initial_state": list(kinematics.initial_state),
        "final_state": list(kinematics.final_state),
        "initial_state_p4": kinematics.initial_state_p4.tolist(),
        "subsystems": [from_subsystem(s) for s in kinematics.subsystems],
    }


def from_fit_result(result: FitResult) -> dict:
    return {
        "initial_parameters": from_parameter_list(result.initial_parameters)[
            "parameters"
        ],
        "final_parameters": from_parameter_list(result.final_parameters)[
            "parameters"
        ],
        "initial_estimator_value": result.initial_estimator_value,
        "final_estimator_value": result.final_estimator_value,
        "fit_duration_in_seconds": result.fit_duration_in_seconds,
        "covariance_parameter_names": list(result.covariance_parameter_names),
        "covariance_matrix": result.covariance_matrix.tolist(),
        "is_valid": result.is_valid,
        "status_message": result.status_message,
        "n_function_calls": result.n_function_calls,
    }


def _value_serializer(inst: type, field: attrs.Attribute, value: Any) -> Any:
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, np.generic):
        return value.item()
    return value


def build_fit_parameter(definition: dict) -> FitParameter:
    return FitParameter(**definition)


def build_parameter_list(definition: dict) -> ParameterList:
    validate_parameter_list(definition)
    return ParameterList(build_fit_parameter(d) for d in definition["parameters"])


def build_subsystem(definition: dict) -> SubSystem:
    return SubSystem(
        final_states=definition["final_states"],
        recoil=definition.get("recoil", ()),
        parent_recoil=definition.get("parent_recoil", ()),
    )


def build_kinematics(
    definition: dict, particles: ParticleDefinitions
) -> HelicityKinematics:
    validate_kinematics(definition)
    return HelicityKinematics.from_config(definition, particles)


def build_fit_result(definition: dict) -> FitResult:
    definition = dict(definition)
    for key in ("initial_parameters", "final_parameters"):
        definition[key] = build_parameter_list({"parameters": definition[key]})
    n_parameters = len(definition["covariance_parameter_names"])
    definition["covariance_matrix"] = np.reshape(
        np.array(definition["covariance_matrix"], dtype=float),
        (n_parameters, n_parameters),
    )
    return FitResult(**definition)


def validate_kinematics(instance: dict) -> None:
    _validate(instance, _SCHEMA_KINEMATICS)


def validate_parameter_list(instance: dict) -> None:
    _validate(instance, _SCHEMA_PARAMETERS)


def _validate(instance: dict, schema: dict) -> None:
    try:
        jsonschema.validate(instance=instance, schema=schema)
    except jsonschema.ValidationError as exc:
        msg = f"Invalid {schema['title'].lower()}: {exc.message}"
        raise ConfigurationError(msg) from exc


_IO_PATH = dirname(realpath(__file__))
with open(f"{_IO_PATH}/kinematics.json") as _STREAM:
    _SCHEMA_KINEMATICS = json.load(_STREAM)
with open(f"{_IO_PATH}/parameters.json") as _STREAM:
    _SCHEMA_PARAMETERS = json.load(_STREAM)
