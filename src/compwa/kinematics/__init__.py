"""Convert four-momenta of final state particles to kinematic variables.

The `HelicityKinematics` class forms the bridge between four-momentum data for the
decay you are studying and the kinematic variables on which an `.Intensity` is
defined. These are the invariant masses of all `SubSystem` instances and the
:math:`\\theta` and :math:`\\phi` helicity angles in their rest frames.
"""

from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Union

import numpy as np
from attrs import field, frozen
from qrules.particle import ParticleCollection

from compwa.data import DataPoint, Event
from compwa.exceptions import ConfigurationError, DomainError
from compwa.kinematics.lorentz import (
    apply,
    as_four_momenta,
    boost_matrix,
    helicity_frame_matrix,
    invariant_mass,
    phi,
    rest_frame_velocity,
    theta,
)
from compwa.kinematics.phasespace import phsp_volume

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from numpy.typing import ArrayLike

_LOGGER = logging.getLogger(__name__)

ParticleDefinitions = Union[ParticleCollection, "Mapping[int, float]"]
"""Source of masses: a `qrules` collection or a mapping of PDG ID to mass."""


def _to_state_ids(ids: Iterable[int]) -> tuple[int, ...]:
    return tuple(sorted(int(i) for i in ids))


def _to_final_states(
    final_states: Iterable[Iterable[int]],
) -> tuple[tuple[int, ...], tuple[int, ...]]:
    groups = tuple(_to_state_ids(ids) for ids in final_states)
    if len(groups) != 2:  # noqa: PLR2004
        msg = f"A subsystem decays into exactly two groups of states, got {len(groups)}"
        raise ConfigurationError(msg)
    return groups  # type: ignore[return-value]


def _join(ids: Iterable[int]) -> str:
    return "".join(map(str, ids))


@frozen
class SubSystem:
    """Two-body decay of a combination of final state particles.

    The helicity angles of the first group in :attr:`final_states` are computed in
    the rest frame of both groups combined. The :math:`z`-axis of that frame is the
    direction of flight of the subsystem in the rest frame of subsystem plus
    :attr:`recoil`. If :attr:`parent_recoil` is given, that frame is in turn reached
    from the overall rest frame via the rest frame of all three groups.
    """

    final_states: tuple[tuple[int, ...], tuple[int, ...]] = field(
        converter=_to_final_states
    )
    recoil: tuple[int, ...] = field(default=(), converter=_to_state_ids)
    parent_recoil: tuple[int, ...] = field(default=(), converter=_to_state_ids)

    def __attrs_post_init__(self) -> None:
        groups = [*self.final_states, self.recoil, self.parent_recoil]
        if any(not g for g in self.final_states):
            msg = f"Empty final state group in {self}"
            raise ConfigurationError(msg)
        if self.parent_recoil and not self.recoil:
            msg = f"{self} has a parent recoil, but no recoil"
            raise ConfigurationError(msg)
        flattened = [i for g in groups for i in g]
        if len(flattened) != len(set(flattened)):
            msg = f"State IDs of {self} are not disjoint"
            raise ConfigurationError(msg)
        if any(i < 0 for i in flattened):
            msg = f"State IDs of {self} have to be non-negative"
            raise ConfigurationError(msg)

    @property
    def state_ids(self) -> tuple[int, ...]:
        return tuple(sorted(self.final_states[0] + self.final_states[1]))

    @property
    def all_state_ids(self) -> tuple[int, ...]:
        return tuple(sorted(self.state_ids + self.recoil + self.parent_recoil))

    @property
    def mass_name(self) -> str:
        return f"m_{_join(self.state_ids)}"

    @property
    def angle_suffix(self) -> str:
        first, second = self.final_states
        suffix = f"{_join(first)}_{_join(second)}"
        if self.parent_recoil:
            suffix += f"_vs_{_join(self.recoil)}"
        return suffix

    @property
    def theta_name(self) -> str:
        return f"theta_{self.angle_suffix}"

    @property
    def phi_name(self) -> str:
        return f"phi_{self.angle_suffix}"

    def __str__(self) -> str:
        first, second = self.final_states
        text = f"({_join(first)})({_join(second)})"
        if self.recoil:
            text += f" recoil ({_join(self.recoil)})"
        if self.parent_recoil:
            text += f" parent recoil ({_join(self.parent_recoil)})"
        return text


def create_all_subsystems(n_final_states: int) -> tuple[SubSystem, ...]:
    """Create every two-body split of every combination of final state particles.

    The recoil of each subsystem is the complement of its state IDs. The first group
    of final states always contains the lowest state ID, so that each helicity angle
    is defined only once.

    >>> for subsystem in create_all_subsystems(3):
    ...     print(subsystem)
    (0)(1) recoil (2)
    (0)(2) recoil (1)
    (1)(2) recoil (0)
    (0)(12)
    (01)(2)
    (02)(1)
    """
    if n_final_states < 2:  # noqa: PLR2004
        msg = f"Need at least two final state particles, got {n_final_states}"
        raise ConfigurationError(msg)
    all_ids = set(range(n_final_states))
    subsystems = []
    for size in range(2, n_final_states + 1):
        for state_ids in itertools.combinations(range(n_final_states), size):
            first_id, *others = state_ids
            for n_partners in range(len(others)):
                for partners in itertools.combinations(others, n_partners):
                    first = (first_id, *partners)
                    second = tuple(i for i in state_ids if i not in first)
                    recoil = all_ids - set(state_ids)
                    subsystems.append(SubSystem((first, second), recoil))
    return tuple(subsystems)


class Kinematics(ABC):
    """Interface for converting events to kinematic variables."""

    @abstractmethod
    def convert(self, event: Event | ArrayLike) -> DataPoint:
        """Compute the kinematic variables of a single event."""

    @abstractmethod
    def compute(self, momenta: ArrayLike) -> dict[str, np.ndarray]:
        """Compute all kinematic variables for an array of events.

        Args:
            momenta: Four-momenta of shape :code:`(n_events, n_particles, 4)`.
        """

    @abstractmethod
    def get_kinematic_variable_names(self) -> tuple[str, ...]:
        """Names of the kinematic variables, in the order of a `.DataPoint`."""

    @abstractmethod
    def phsp_volume(self) -> float:
        """Volume of the phase space that the events can populate."""

    @property
    @abstractmethod
    def initial_state_p4(self) -> np.ndarray: ...

    @property
    @abstractmethod
    def final_state_masses(self) -> tuple[float, ...]: ...


def _get_mass(particles: ParticleDefinitions, pid: int) -> float:
    try:
        if isinstance(particles, ParticleCollection):
            return float(particles.find(pid).mass)
        return float(particles[pid])
    except LookupError as exc:
        msg = f"No particle with PDG ID {pid} in the particle definitions"
        raise ConfigurationError(msg) from exc


class HelicityKinematics(Kinematics):
    r"""Kinematics in the helicity formalism for a fixed initial state.

    Args:
        particles: Particle definitions from which the masses are taken, for instance
            :func:`qrules.load_default_particles`.
        initial_state: PDG IDs of the initial state particles.
        final_state: PDG IDs of the final state particles. The order defines the
            state IDs that are used in `SubSystem` definitions.
        initial_state_p4: Total four-momentum of the initial state. Defaults to the
            initial state particle at rest, which only works for one initial state.
        subsystems: Subsystems for which kinematic variables are computed. Defaults
            to :func:`create_all_subsystems`.
        logger: Logger for diagnostic output. Defaults to the module logger.
    """

    def __init__(  # noqa: PLR0913
        self,
        particles: ParticleDefinitions,
        initial_state: Sequence[int],
        final_state: Sequence[int],
        initial_state_p4: ArrayLike | None = None,
        subsystems: Iterable[SubSystem] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.__logger = logger or _LOGGER
        self.__initial_state = tuple(int(i) for i in initial_state)
        self.__final_state = tuple(int(i) for i in final_state)
        if not self.__initial_state:
            msg = "Initial state is empty"
            raise ConfigurationError(msg)
        n_final_states = len(self.__final_state)
        if n_final_states < 2:  # noqa: PLR2004
            msg = f"Need at least two final state particles, got {n_final_states}"
            raise ConfigurationError(msg)
        self.__final_state_masses = tuple(
            _get_mass(particles, pid) for pid in self.__final_state
        )
        if initial_state_p4 is None:
            if len(self.__initial_state) != 1:
                msg = (
                    "An initial state four-momentum is required if there is more"
                    " than one initial state particle"
                )
                raise ConfigurationError(msg)
            mass = _get_mass(particles, self.__initial_state[0])
            initial_state_p4 = (mass, 0.0, 0.0, 0.0)
        p4 = np.array(initial_state_p4, dtype=float)
        if p4.shape != (4,):
            msg = f"Initial state four-momentum has to be of shape (4,), not {p4.shape}"
            raise ConfigurationError(msg)
        p4.setflags(write=False)
        self.__initial_state_p4 = p4
        self.__sqrt_s = float(invariant_mass(p4)[0])
        if self.__sqrt_s <= sum(self.__final_state_masses):
            msg = (
                f"Phase space is closed: initial state mass {self.__sqrt_s} does not"
                f" exceed the final state masses {self.__final_state_masses}"
            )
            raise ConfigurationError(msg)
        self.__phsp_volume = phsp_volume(self.__sqrt_s, self.__final_state_masses)
        if not self.__phsp_volume > 0:
            msg = f"Phase space volume is {self.__phsp_volume}, but has to be positive"
            raise ConfigurationError(msg)

        if subsystems is None:
            subsystems = create_all_subsystems(n_final_states)
        self.__subsystems = tuple(subsystems)
        expected_ids = tuple(range(n_final_states))
        for subsystem in self.__subsystems:
            if subsystem.all_state_ids != expected_ids:
                msg = (
                    f"Subsystem {subsystem} does not cover all final state IDs"
                    f" {expected_ids}"
                )
                raise ConfigurationError(msg)
        self.__variable_names = self.__create_variable_names()
        self.__logger.debug(
            "Created %s with %d subsystems and %d kinematic variables",
            type(self).__name__,
            len(self.__subsystems),
            len(self.__variable_names),
        )

    @classmethod
    def from_config(
        cls,
        definition: Mapping,
        particles: ParticleDefinitions,
        logger: logging.Logger | None = None,
    ) -> HelicityKinematics:
        """Create from a definition as loaded with :func:`.io.load_kinematics`."""
        subsystems = None
        if "subsystems" in definition:
            subsystems = [
                SubSystem(
                    final_states=item["final_states"],
                    recoil=item.get("recoil", ()),
                    parent_recoil=item.get("parent_recoil", ()),
                )
                for item in definition["subsystems"]
            ]
        return cls(
            particles,
            initial_state=definition["initial_state"],
            final_state=definition["final_state"],
            initial_state_p4=definition.get("initial_state_p4"),
            subsystems=subsystems,
            logger=logger,
        )

    def __create_variable_names(self) -> tuple[str, ...]:
        names: list[str] = []
        for subsystem in self.__subsystems:
            subsystem_names = [subsystem.theta_name, subsystem.phi_name]
            if subsystem.recoil:
                subsystem_names.insert(0, subsystem.mass_name)
            for name in subsystem_names:
                if name not in names:
                    names.append(name)
        if not names:
            msg = "Kinematics without subsystems has no kinematic variables"
            raise ConfigurationError(msg)
        return tuple(names)

    @property
    def initial_state(self) -> tuple[int, ...]:
        return self.__initial_state

    @property
    def final_state(self) -> tuple[int, ...]:
        return self.__final_state

    @property
    def initial_state_p4(self) -> np.ndarray:
        return self.__initial_state_p4

    @property
    def final_state_masses(self) -> tuple[float, ...]:
        return self.__final_state_masses

    @property
    def subsystems(self) -> tuple[SubSystem, ...]:
        return self.__subsystems

    def get_kinematic_variable_names(self) -> tuple[str, ...]:
        return self.__variable_names

    def phsp_volume(self) -> float:
        return self.__phsp_volume

    def print_subsystems(self) -> None:
        self.__logger.info("Subsystems used by %s:", type(self).__name__)
        for subsystem in self.__subsystems:
            self.__logger.info("  %s", subsystem)

    def convert(self, event: Event | ArrayLike) -> DataPoint:
        """Compute the kinematic variables of a single event.

        Raises:
            DomainError: If the number of particles does not match the final state.
        """
        if isinstance(event, Event):
            momenta = np.array([p.p4 for p in event.particles], dtype=float)
        else:
            momenta = np.array(event, dtype=float)
        if momenta.ndim != 2:  # noqa: PLR2004
            msg = (
                "A single event has to be of shape (n_particles, 4), not"
                f" {momenta.shape}"
            )
            raise DomainError(msg)
        columns = self.compute(momenta[None, :, :])
        return np.array([columns[name][0] for name in self.__variable_names])

    def compute(self, momenta: ArrayLike) -> dict[str, np.ndarray]:
        momenta = np.array(momenta, dtype=float)
        n_final_states = len(self.__final_state)
        if momenta.ndim != 3 or momenta.shape[1:] != (n_final_states, 4):  # noqa: PLR2004
            msg = (
                f"Expecting events with {n_final_states} final state particles, but"
                f" input is of shape {momenta.shape}"
            )
            raise DomainError(msg)
        total = momenta.sum(axis=1)
        to_cms = boost_matrix(rest_frame_velocity(total))
        cms_momenta = {
            i: apply(to_cms, momenta[:, i, :]) for i in range(n_final_states)
        }
        columns: dict[str, np.ndarray] = {}
        for subsystem in self.__subsystems:
            values = _compute_subsystem_variables(cms_momenta, subsystem)
            for name, value in values.items():
                columns.setdefault(name, value)
        return {name: columns[name] for name in self.__variable_names}


def _sum_momenta(momenta: Mapping[int, np.ndarray], ids: Iterable[int]) -> np.ndarray:
    return sum(momenta[i] for i in ids)  # type: ignore[return-value]


def _compute_subsystem_variables(
    cms_momenta: Mapping[int, np.ndarray], subsystem: SubSystem
) -> dict[str, np.ndarray]:
    first, _ = subsystem.final_states
    p_first = _sum_momenta(cms_momenta, first)
    p_subsystem = _sum_momenta(cms_momenta, subsystem.state_ids)
    variables = {}
    if subsystem.recoil:
        variables[subsystem.mass_name] = invariant_mass(p_subsystem)
    if subsystem.parent_recoil:
        parent_ids = subsystem.state_ids + subsystem.recoil
        p_parent = _sum_momenta(cms_momenta, parent_ids)
        matrix = helicity_frame_matrix(p_parent)
        p_first = apply(matrix, p_first)
        p_subsystem = apply(matrix, p_subsystem)
    if subsystem.recoil:
        p_first = apply(helicity_frame_matrix(p_subsystem), p_first)
    p_first = as_four_momenta(p_first)
    variables[subsystem.theta_name] = theta(p_first)
    variables[subsystem.phi_name] = phi(p_first)
    return variables
