"""Serialization module for `compwa`.

The `.io` module provides tools to export or import parameter lists, fit results,
and kinematics definitions to and from disk, so that they can be used by external
packages, or just to store the state of a fit.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

import yaml

from compwa.kinematics import HelicityKinematics, SubSystem
from compwa.optimizer import FitResult
from compwa.parameter import FitParameter, ParameterList

from . import _dict

if TYPE_CHECKING:
    from compwa.kinematics import ParticleDefinitions


def asdict(instance: object) -> dict:
    if isinstance(instance, FitParameter):
        return _dict.from_fit_parameter(instance)
    if isinstance(instance, ParameterList):
        return _dict.from_parameter_list(instance)
    if isinstance(instance, FitResult):
        return _dict.from_fit_result(instance)
    if isinstance(instance, SubSystem):
        return _dict.from_subsystem(instance)
    if isinstance(instance, HelicityKinematics):
        return _dict.from_kinematics(instance)
    msg = f"No conversion for dict available for class {type(instance).__name__}"
    raise NotImplementedError(msg)


def fromdict(
    definition: dict, particles: ParticleDefinitions | None = None
) -> object:
    """Build an object from a `dict`, determining its type from the keys.

    A kinematics definition can only be built if the :code:`particles` from which
    the masses are to be taken are provided.
    """
    keys = set(definition)
    if keys == {"parameters"}:
        return _dict.build_parameter_list(definition)
    if {"name", "value"} <= keys:
        return _dict.build_fit_parameter(definition)
    if {"initial_parameters", "final_parameters"} <= keys:
        return _dict.build_fit_result(definition)
    if {"initial_state", "final_state"} <= keys:
        if particles is None:
            msg = "Need particle definitions to build a kinematics definition"
            raise ValueError(msg)
        return _dict.build_kinematics(definition, particles)
    if "final_states" in keys:
        return _dict.build_subsystem(definition)
    msg = f"Could not determine type from keys {keys}"
    raise NotImplementedError(msg)


def load(filename: str, particles: ParticleDefinitions | None = None) -> object:
    definition = _load_definition(filename)
    return fromdict(definition, particles)


def load_kinematics(
    filename: str, particles: ParticleDefinitions
) -> HelicityKinematics:
    """Load a `.HelicityKinematics` from a YAML or JSON definition.

    Raises:
        ConfigurationError: If the definition does not follow the kinematics schema
            or describes an invalid decay.
    """
    definition = _load_definition(filename)
    return _dict.build_kinematics(definition, particles)


def _load_definition(filename: str) -> dict:
    with open(filename) as stream:
        file_extension = _get_file_extension(filename)
        if file_extension == "json":
            return json.load(stream)
        if file_extension in ["yaml", "yml"]:
            return yaml.load(stream, Loader=yaml.SafeLoader)
    msg = f'No loader defined for file type "{file_extension}"'
    raise NotImplementedError(msg)


class _IncreasedIndent(yaml.Dumper):
    def increase_indent(self, flow=False, indentless=False):  # type: ignore[no-untyped-def]
        return super().increase_indent(flow, False)

    def write_line_break(self, data=None):  # type: ignore[no-untyped-def]
        """See https://stackoverflow.com/a/44284819."""
        super().write_line_break(data)
        if len(self.indents) == 1:
            super().write_line_break()


def write(instance: object, filename: str) -> None:
    file_extension = _get_file_extension(filename)
    if file_extension == "json":
        with open(filename, "w") as stream:
            json.dump(asdict(instance), stream, indent=2)
        return
    if file_extension in ["yaml", "yml"]:
        with open(filename, "w") as stream:
            yaml.dump(
                asdict(instance),
                stream,
                sort_keys=False,
                Dumper=_IncreasedIndent,
                default_flow_style=False,
            )
        return
    msg = f'No writer defined for file type "{file_extension}"'
    raise NotImplementedError(msg)


def _get_file_extension(filename: str) -> str:
    path = Path(filename)
    extension = path.suffix.lower()
    if not extension:
        msg = f"No file extension in file {filename}"
        raise ValueError(msg)
    return extension[1:]
