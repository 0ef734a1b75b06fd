"""Generate phase space and intensity-based event samples.

All randomness comes from an explicitly passed `UniformRealNumberGenerator`. Two runs
with identically seeded random sources therefore produce identical samples.

Intensity-based samples are generated with hit-and-miss: a candidate event with
weight :math:`w_i` (intensity times phase space weight) is accepted if a uniform
random number :math:`u` satisfies :math:`u\\,M < w_i`. The envelope :math:`M` has to
be known before any candidate is accepted, see :func:`generate` and
:func:`generate_from_sample` for how it is determined.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, overload

import numpy as np
from tqdm.auto import tqdm

from compwa.data import EventList, concatenate, convert_events_to_dataset
from compwa.exceptions import ConfigurationError, ExhaustedSourceError, ShapeError
from compwa.kinematics.lorentz import (
    apply,
    boost_matrix,
    invariant_mass,
    rest_frame_velocity,
)
from compwa.kinematics.phasespace import breakup_momentum

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import ArrayLike

    from compwa.intensity import Intensity
    from compwa.kinematics import Kinematics

_LOGGER = logging.getLogger(__name__)


class UniformRealNumberGenerator(ABC):
    """Abstract class for generating uniform real numbers in :math:`[0, 1)`."""

    @overload
    def __call__(self, size: None = None) -> float: ...
    @overload
    def __call__(self, size: int) -> np.ndarray: ...
    @abstractmethod
    def __call__(self, size: int | None = None) -> float | np.ndarray:
        """Generate a single random number or an array of random numbers."""

    def next_double(self) -> float:
        return float(self())

    @property
    @abstractmethod
    def seed(self) -> int | None:
        """Seed with which the generator has been (re)initialized."""


class NumpyUniformRealGenerator(UniformRealNumberGenerator):
    """Implements a uniform real random number generator using `numpy`.

    Setting the :attr:`seed` resets the internal state of the generator.
    """

    def __init__(self, seed: int | None = None) -> None:
        self.seed = seed

    def __call__(self, size=None):  # type: ignore[override]
        return self.generator.uniform(0.0, 1.0, size)

    @property
    def seed(self) -> int | None:
        return self.__seed

    @seed.setter
    def seed(self, value: int | None) -> None:
        self.__seed = value
        self.generator: np.random.Generator = np.random.default_rng(seed=value)


class PhaseSpaceEventGenerator(ABC):
    """Abstract class for generating weighted phase space events."""

    @abstractmethod
    def generate(self, size: int, random: UniformRealNumberGenerator) -> EventList:
        """Generate candidate events with phase space weights in :math:`(0, 1]`."""


class TwoBodyDecayPhaseSpaceGenerator(PhaseSpaceEventGenerator):
    r"""Raubold-Lynch (GENBOD) phase space generator.

    The :math:`n`-body decay is split into a chain of two-body decays with
    intermediate invariant masses that are sampled uniformly. Each two-body decay is
    isotropic in its own rest frame. The event weight is the product of the two-body
    break-up momenta, divided by its maximal possible value.

    Args:
        initial_state_p4: Total four-momentum of the decaying system.
        final_state_masses: Masses of the final state particles.
        pids: PDG IDs that are attached to the generated `.EventList`.
    """

    def __init__(
        self,
        initial_state_p4: ArrayLike,
        final_state_masses: Sequence[float],
        pids: Sequence[int] | None = None,
    ) -> None:
        self.__p4 = np.array(initial_state_p4, dtype=float)
        self.__masses = np.array(final_state_masses, dtype=float)
        self.__pids = pids
        if len(self.__masses) < 2:  # noqa: PLR2004
            msg = "Need at least two final state particles to generate phase space"
            raise ConfigurationError(msg)
        self.__mass = float(invariant_mass(self.__p4)[0])
        self.__kinetic_energy = self.__mass - self.__masses.sum()
        if self.__kinetic_energy <= 0:
            msg = (
                f"Mass {self.__mass} is too low to decay into final state masses"
                f" {self.__masses.tolist()}"
            )
            raise ConfigurationError(msg)
        self.__max_weight = self.__compute_max_weight()

    @classmethod
    def from_kinematics(
        cls, kinematics: Kinematics, pids: Sequence[int] | None = None
    ) -> TwoBodyDecayPhaseSpaceGenerator:
        if pids is None:
            pids = getattr(kinematics, "final_state", None)
        return cls(kinematics.initial_state_p4, kinematics.final_state_masses, pids)

    def __compute_max_weight(self) -> float:
        masses = self.__masses
        e_max = self.__kinetic_energy + masses[0]
        e_min = 0.0
        max_weight = 1.0
        for i in range(1, len(masses)):
            e_min += masses[i - 1]
            e_max += masses[i]
            max_weight *= float(breakup_momentum(e_max**2, e_min, masses[i]))
        return max_weight

    def generate(self, size: int, random: UniformRealNumberGenerator) -> EventList:
        n_particles = len(self.__masses)
        masses = self.__masses
        sorted_random = np.sort(
            random(size * (n_particles - 2)).reshape(size, n_particles - 2)
        )
        fractions = np.hstack([np.zeros((size, 1)), sorted_random, np.ones((size, 1))])
        invariant_masses = fractions * self.__kinetic_energy + np.cumsum(masses)
        momenta_of_decay = [
            breakup_momentum(
                invariant_masses[:, i + 1] ** 2, invariant_masses[:, i], masses[i + 1]
            )
            for i in range(n_particles - 1)
        ]
        weights = np.prod(momenta_of_decay, axis=0) / self.__max_weight

        p4 = np.zeros((size, n_particles, 4))
        p = momenta_of_decay[0]
        p4[:, 0, :] = _along_y(p, masses[0])
        for i in range(1, n_particles):
            p4[:, i, :] = _along_y(-momenta_of_decay[i - 1], masses[i])
            cos_z = 2 * random(size) - 1
            angle_y = 2 * np.pi * random(size)
            p4[:, : i + 1, :] = _rotate(p4[:, : i + 1, :], cos_z, angle_y)
            if i == n_particles - 1:
                break
            p = momenta_of_decay[i]
            beta = p / np.sqrt(p**2 + invariant_masses[:, i] ** 2)
            velocity = np.zeros((size, 3))
            velocity[:, 1] = -beta
            p4[:, : i + 1, :] = _transform(boost_matrix(velocity), p4[:, : i + 1, :])

        initial_velocity = np.broadcast_to(
            -rest_frame_velocity(self.__p4), (size, 3)
        )
        p4 = _transform(boost_matrix(initial_velocity), p4)
        return EventList(p4, weights=weights, pids=self.__pids)


def _along_y(momentum: np.ndarray, mass: float) -> np.ndarray:
    p4 = np.zeros((len(momentum), 4))
    p4[:, 0] = np.sqrt(momentum**2 + mass**2)
    p4[:, 2] = momentum
    return p4


def _rotate(p4: np.ndarray, cos_z: np.ndarray, angle_y: np.ndarray) -> np.ndarray:
    sin_z = np.sqrt(1 - cos_z**2)
    cos_y, sin_y = np.cos(angle_y)[:, None], np.sin(angle_y)[:, None]
    cos_z, sin_z = cos_z[:, None], sin_z[:, None]
    rotated = p4.copy()
    x, y = p4[..., 1], p4[..., 2]
    rotated[..., 1] = cos_z * x - sin_z * y
    rotated[..., 2] = sin_z * x + cos_z * y
    x, z = rotated[..., 1].copy(), p4[..., 3]
    rotated[..., 1] = cos_y * x - sin_y * z
    rotated[..., 3] = sin_y * x + cos_y * z
    return rotated


def _transform(matrices: np.ndarray, p4: np.ndarray) -> np.ndarray:
    """Apply one matrix per event to all particles of that event."""
    n_particles = p4.shape[1]
    result = np.empty_like(p4)
    for i in range(n_particles):
        result[:, i, :] = apply(matrices, p4[:, i, :])
    return result


def _create_progress_bar(
    total: int, description: str, logger: logging.Logger
) -> tqdm:
    return tqdm(
        total=total,
        desc=description,
        disable=logger.getEffectiveLevel() > logging.WARNING,
    )


def generate_phsp(
    size: int,
    generator: PhaseSpaceEventGenerator,
    random: UniformRealNumberGenerator,
    bunch_size: int = 50_000,
    logger: logging.Logger | None = None,
) -> EventList:
    """Generate an unweighted phase space sample by hit-and-miss on event weights."""
    logger = logger or _LOGGER
    progress_bar = _create_progress_bar(size, "Generating phase space sample", logger)
    samples: list[EventList] = []
    n_accepted = 0
    # at least one bunch, so that an empty sample has the final state of the generator
    while True:
        candidates = generator.generate(bunch_size, random)
        hit_or_miss = random(candidates.n_events)
        accepted = candidates.select_events(hit_or_miss < candidates.weights)
        samples.append(accepted)
        n_new = min(accepted.n_events, size - n_accepted)
        n_accepted += accepted.n_events
        progress_bar.update(n_new)
        if n_accepted >= size:
            break
    progress_bar.close()
    phsp_sample = concatenate(samples).select_events(slice(size))
    logger.info("Generated %d phase space events", phsp_sample.n_events)
    return phsp_sample.with_weights(np.ones(size))


def generate(  # noqa: PLR0913
    size: int,
    kinematics: Kinematics,
    generator: PhaseSpaceEventGenerator,
    intensity: Intensity,
    random: UniformRealNumberGenerator,
    bunch_size: int = 50_000,
    safety_margin: float = 1.05,
    logger: logging.Logger | None = None,
) -> EventList:
    """Generate an unweighted sample that is distributed as an `.Intensity`.

    The envelope :math:`M` is first estimated from a separate bunch of candidates,
    multiplied by a safety margin. Candidates that are used for hit-and-miss are
    generated afterwards. If a candidate turns out to lie above :math:`M`, the
    envelope is raised and all events that were accepted so far are discarded, so
    that the final sample is accepted with one and the same envelope.
    """
    logger = logger or _LOGGER
    pre_bunch = generator.generate(bunch_size, random)
    envelope = safety_margin * _compute_max_weight(pre_bunch, kinematics, intensity)
    if envelope <= 0:
        msg = "Intensity is zero over all phase space candidates"
        raise ExhaustedSourceError(msg)
    progress_bar = _create_progress_bar(
        size, "Generating intensity-based sample", logger
    )
    samples: list[EventList] = []
    n_accepted = 0
    while n_accepted < size:
        candidates = generator.generate(bunch_size, random)
        weights = _compute_weights(candidates, kinematics, intensity)
        bunch_max = weights.max()
        if bunch_max > envelope:
            logger.warning(
                "Intensity %.6g exceeds the envelope %.6g; restarting generation"
                " with a larger envelope and discarding %d accepted events",
                bunch_max,
                envelope,
                n_accepted,
            )
            envelope = safety_margin * bunch_max
            samples.clear()
            n_accepted = 0
            progress_bar.reset()
        hit_or_miss = random(candidates.n_events)
        accepted = candidates.select_events(hit_or_miss * envelope < weights)
        samples.append(accepted)
        n_new = min(accepted.n_events, size - n_accepted)
        n_accepted += accepted.n_events
        progress_bar.update(n_new)
    progress_bar.close()
    sample = concatenate(samples or [pre_bunch]).select_events(slice(size))
    logger.info("Generated %d events with envelope %.6g", sample.n_events, envelope)
    return sample.with_weights(np.ones(size))


def generate_from_sample(  # noqa: PLR0913
    size: int,
    kinematics: Kinematics,
    random: UniformRealNumberGenerator,
    intensity: Intensity,
    phsp_sample: EventList,
    toy_phsp_sample: EventList | None = None,
    logger: logging.Logger | None = None,
) -> EventList:
    """Select an intensity-based sample from an existing phase space sample.

    The envelope :math:`M` is the maximal weight over the sample before any event is
    accepted. If the phase space sample has been filtered with a detector
    acceptance, the true-level :code:`toy_phsp_sample` can be provided, so that
    :math:`M` is determined over the full phase space instead.

    Raises:
        ExhaustedSourceError: If the sample contains too few events to accept
            :code:`size` of them. The sample is never reused.
    """
    logger = logger or _LOGGER
    if phsp_sample.n_events == 0:
        msg = "Phase space sample is empty"
        raise ExhaustedSourceError(msg)
    weights = _compute_weights(phsp_sample, kinematics, intensity)
    envelope = weights.max()
    if toy_phsp_sample is not None:
        if toy_phsp_sample.n_particles != phsp_sample.n_particles:
            msg = (
                f"Toy sample has {toy_phsp_sample.n_particles} particles per event,"
                f" but phase space sample has {phsp_sample.n_particles}"
            )
            raise ShapeError(msg)
        toy_envelope = _compute_max_weight(toy_phsp_sample, kinematics, intensity)
        if envelope > toy_envelope:
            logger.warning(
                "Maximal weight %.6g of the phase space sample exceeds the maximum"
                " %.6g of the toy sample",
                envelope,
                toy_envelope,
            )
        else:
            envelope = toy_envelope
    if envelope <= 0:
        msg = "Intensity is zero over the complete phase space sample"
        raise ExhaustedSourceError(msg)
    hit_or_miss = random(phsp_sample.n_events)
    (selected,) = np.nonzero(hit_or_miss * envelope < weights)
    if len(selected) < size:
        msg = (
            f"Accepted only {len(selected)} of the requested {size} events from a"
            f" phase space sample of {phsp_sample.n_events} events"
        )
        raise ExhaustedSourceError(msg)
    sample = phsp_sample.select_events(selected[:size])
    logger.info(
        "Selected %d of %d phase space events with envelope %.6g",
        size,
        phsp_sample.n_events,
        envelope,
    )
    return sample.with_weights(np.ones(size))


def generate_importance_sampled_phsp(  # noqa: PLR0913
    size: int,
    kinematics: Kinematics,
    generator: PhaseSpaceEventGenerator,
    intensity: Intensity,
    random: UniformRealNumberGenerator,
    logger: logging.Logger | None = None,
) -> EventList:
    """Flat phase space sample with the normalized intensity as event weights.

    The weights are scaled so that their mean is one.
    """
    phsp_sample = generate_phsp(size, generator, random, logger=logger)
    weights = _compute_weights(phsp_sample, kinematics, intensity)
    mean = weights.mean()
    if mean <= 0:
        msg = "Intensity is zero over the complete phase space sample"
        raise ExhaustedSourceError(msg)
    return phsp_sample.with_weights(weights / mean)


def _compute_weights(
    events: EventList, kinematics: Kinematics, intensity: Intensity
) -> np.ndarray:
    dataset = convert_events_to_dataset(events, kinematics)
    return intensity.evaluate(dataset) * events.weights


def _compute_max_weight(
    events: EventList, kinematics: Kinematics, intensity: Intensity
) -> float:
    if events.n_events == 0:
        return 0.0
    return float(_compute_weights(events, kinematics, intensity).max())
