"""Data containers for working with four-momenta and kinematic variables.

An `EventList` holds four-momentum data. A `.Kinematics` instance converts it into a
`DataSet` of kinematic variables, over which an `.Intensity` can be evaluated.
"""

from __future__ import annotations

from collections import abc
from typing import TYPE_CHECKING, overload

import numpy as np
from attrs import field, frozen
from attrs.validators import instance_of

from compwa.exceptions import ShapeError

if TYPE_CHECKING:
    from collections.abc import ItemsView, Iterable, Iterator, KeysView, Mapping

    from numpy.typing import ArrayLike

    from compwa.intensity import Intensity
    from compwa.kinematics import Kinematics

DataPoint = np.ndarray
"""Kinematic variables of one event, ordered as the variable names of a `.Kinematics`."""


def _to_four_vector(p4: ArrayLike) -> tuple[float, float, float, float]:
    values = tuple(float(v) for v in np.ravel(p4))
    if len(values) != 4:
        msg = f"A four-momentum needs 4 components (E, px, py, pz), got {len(values)}"
        raise ShapeError(msg)
    return values  # type: ignore[return-value]


@frozen
class Particle:
    """Four-momentum :math:`(E, p_x, p_y, p_z)` of a particle with a PDG ID."""

    p4: tuple[float, float, float, float] = field(converter=_to_four_vector)
    pid: int = field(default=0, converter=int)

    @property
    def energy(self) -> float:
        return self.p4[0]

    @property
    def mass(self) -> float:
        e, px, py, pz = self.p4
        return float(np.sqrt(max(e**2 - px**2 - py**2 - pz**2, 0)))


@frozen
class Event:
    """Ordered list of final state `Particle` instances with an event weight."""

    particles: tuple[Particle, ...] = field(converter=tuple)
    weight: float = field(default=1.0, converter=float)

    def __attrs_post_init__(self) -> None:
        for particle in self.particles:
            if not isinstance(particle, Particle):
                msg = f"Event contains a {type(particle).__name__} instead of a Particle"
                raise TypeError(msg)

    def __len__(self) -> int:
        return len(self.particles)


class EventList(abc.Sequence):
    """Immutable, column-oriented collection of `Event` instances.

    The four-momenta are stored as a single array of shape
    :code:`(n_events, n_particles, 4)`, so that they can be converted to a `DataSet`
    in one go. All events have the same number of particles with the same PDG IDs.
    """

    def __init__(
        self,
        momenta: ArrayLike,
        weights: ArrayLike | None = None,
        pids: Iterable[int] | None = None,
    ) -> None:
        self.__momenta = np.array(momenta, dtype=float)
        if self.__momenta.ndim == 2 and self.__momenta.size == 0:
            self.__momenta = self.__momenta.reshape((0, 0, 4))
        if self.__momenta.ndim != 3 or self.__momenta.shape[2] != 4:
            msg = (
                f"{type(self).__name__} has to be of shape (n_events, n_particles, 4),"
                f" but input data is of shape {self.__momenta.shape}"
            )
            raise ShapeError(msg)
        n_events, n_particles, _ = self.__momenta.shape
        if weights is None:
            self.__weights = np.ones(n_events)
        else:
            self.__weights = np.array(weights, dtype=float)
        if self.__weights.shape != (n_events,):
            msg = (
                f"Got {len(self.__weights)} weights for {n_events} events in"
                f" {type(self).__name__}"
            )
            raise ShapeError(msg)
        if pids is None:
            self.__pids = np.zeros(n_particles, dtype=int)
        else:
            self.__pids = np.array(list(pids), dtype=int)
        if self.__pids.shape != (n_particles,):
            msg = f"Got {len(self.__pids)} PDG IDs for {n_particles} particles per event"
            raise ShapeError(msg)
        for array in (self.__momenta, self.__weights, self.__pids):
            array.setflags(write=False)

    @classmethod
    def from_events(cls, events: Iterable[Event]) -> EventList:
        events = list(events)
        if not events:
            return cls(np.empty((0, 0, 4)))
        n_particles = len(events[0])
        if any(len(event) != n_particles for event in events):
            msg = "Not all events have the same number of particles"
            raise ShapeError(msg)
        pids = [p.pid for p in events[0].particles]
        if any([p.pid for p in event.particles] != pids for event in events):
            msg = "Not all events have the same final state PDG IDs"
            raise ShapeError(msg)
        return cls(
            momenta=[[p.p4 for p in event.particles] for event in events],
            weights=[event.weight for event in events],
            pids=pids,
        )

    @overload
    def __getitem__(self, i: int) -> Event: ...
    @overload
    def __getitem__(self, i: slice) -> EventList: ...
    def __getitem__(self, i):
        if isinstance(i, slice):
            return self.select_events(i)
        particles = (
            Particle(p4, pid) for p4, pid in zip(self.__momenta[i], self.__pids)
        )
        return Event(particles, weight=self.__weights[i])

    def __len__(self) -> int:
        return self.n_events

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(n_events={self.n_events},"
            f" n_particles={self.n_particles}, pids={self.__pids.tolist()})"
        )

    @property
    def n_events(self) -> int:
        return self.__momenta.shape[0]

    @property
    def n_particles(self) -> int:
        return self.__momenta.shape[1]

    @property
    def momenta(self) -> np.ndarray:
        """Read-only array of shape :code:`(n_events, n_particles, 4)`."""
        return self.__momenta

    @property
    def weights(self) -> np.ndarray:
        return self.__weights

    @property
    def pids(self) -> np.ndarray:
        return self.__pids

    def particle_momenta(self, index: int) -> np.ndarray:
        """Four-momenta of particle :code:`index` in all events."""
        return self.__momenta[:, index, :]

    def select_events(self, selection: int | slice | ArrayLike) -> EventList:
        if isinstance(selection, int):
            selection = [selection]
        return EventList(
            self.__momenta[selection],
            weights=self.__weights[selection],
            pids=self.__pids,
        )

    def with_weights(self, weights: ArrayLike) -> EventList:
        return EventList(self.__momenta, weights=weights, pids=self.__pids)


def concatenate(event_lists: Iterable[EventList]) -> EventList:
    """Merge several `EventList` instances with the same final state.

    If all of them are empty, the result keeps the final state of the first one.
    """
    event_lists = list(event_lists)
    if not event_lists:
        return EventList(np.empty((0, 0, 4)))
    first = event_lists[0]
    event_lists = [e for e in event_lists if e.n_events]
    if not event_lists:
        return first.select_events(slice(0))
    pids = event_lists[0].pids
    if any(not np.array_equal(e.pids, pids) for e in event_lists):
        msg = "Cannot concatenate event lists with different final states"
        raise ShapeError(msg)
    return EventList(
        np.concatenate([e.momenta for e in event_lists]),
        weights=np.concatenate([e.weights for e in event_lists]),
        pids=pids,
    )


class DataSet(abc.Mapping):
    """A mapping of kinematic variable names to arrays with one value per event.

    The `~.DataSet.keys` of `DataSet` are the kinematic variable names of a
    `.Kinematics` instance and :attr:`data` is the matrix of values, one row per
    variable and one column per event.
    """

    def __init__(
        self, data: Mapping[str, ArrayLike], weights: ArrayLike | None = None
    ) -> None:
        if not all(isinstance(k, str) for k in data):
            msg = f"Not all keys {set(data)} are strings"
            raise TypeError(msg)
        self.__variable_names = tuple(data)
        columns = [np.array(v, dtype=float, ndmin=1) for v in data.values()]
        if any(c.ndim != 1 for c in columns):
            msg = f"{type(self).__name__} columns have to be of rank 1"
            raise ShapeError(msg)
        if columns:
            n_events = len(columns[0])
        elif weights is not None:
            n_events = len(np.atleast_1d(weights))
        else:
            n_events = 0
        if any(len(c) != n_events for c in columns):
            msg = f"Not all columns are of length {n_events}"
            raise ShapeError(msg)
        if columns:
            self.__data = np.vstack(columns)
        else:
            self.__data = np.empty((0, n_events))
        if weights is None:
            self.__weights = np.ones(n_events)
        else:
            self.__weights = np.array(weights, dtype=float, ndmin=1)
        if self.__weights.shape != (n_events,):
            msg = (
                f"Got {len(self.__weights)} weights for {n_events} events in"
                f" {type(self).__name__}"
            )
            raise ShapeError(msg)
        self.__data.setflags(write=False)
        self.__weights.setflags(write=False)
        # same column objects on every access, so that graphs can detect unchanged data
        self.__columns = tuple(self.__data)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(variable_names={list(self.__variable_names)},"
            f" n_events={self.n_events})"
        )

    def __getitem__(self, name: str) -> np.ndarray:
        try:
            index = self.__variable_names.index(name)
        except ValueError:
            raise KeyError(name) from None
        return self.__columns[index]

    def __iter__(self) -> Iterator[str]:
        return iter(self.__variable_names)

    def __len__(self) -> int:
        return len(self.__variable_names)

    @property
    def n_events(self) -> int:
        return self.__data.shape[1]

    @property
    def variable_names(self) -> tuple[str, ...]:
        return self.__variable_names

    @property
    def data(self) -> np.ndarray:
        """Read-only matrix of shape :code:`(n_variables, n_events)`."""
        return self.__data

    @property
    def weights(self) -> np.ndarray:
        return self.__weights

    def keys(self) -> KeysView[str]:
        return dict.fromkeys(self.__variable_names).keys()

    def items(self) -> ItemsView[str, np.ndarray]:
        return dict(zip(self.__variable_names, self.__columns)).items()

    def data_point(self, index: int) -> DataPoint:
        """Kinematic variables of event :code:`index`."""
        return self.__data[:, index]

    def select_events(self, selection: int | slice | ArrayLike) -> DataSet:
        if isinstance(selection, int):
            selection = [selection]
        return DataSet(
            {name: column[selection] for name, column in self.items()},
            weights=self.__weights[selection],
        )

    def to_pandas(self) -> dict[str, np.ndarray]:
        """Converter for the :code:`data` argument of `pandas.DataFrame`."""
        return {k: np.array(v) for k, v in self.items()}


def convert_events_to_dataset(events: EventList, kinematics: Kinematics) -> DataSet:
    """Convert four-momentum data to kinematic variables, keeping the weights."""
    columns = kinematics.compute(events.momenta)
    return DataSet(columns, weights=events.weights)


def add_intensity_weights(
    intensity: Intensity, events: EventList, kinematics: Kinematics
) -> EventList:
    """Multiply the event weights with the intensity evaluated over the events."""
    dataset = convert_events_to_dataset(events, kinematics)
    intensities = intensity.evaluate(dataset)
    return events.with_weights(events.weights * intensities)


def create_data_array(dataset: DataSet) -> tuple[list[str], list[np.ndarray]]:
    """Column names and columns of a `DataSet`, with the weights as last column."""
    names = [*dataset.variable_names, "weight"]
    columns = [*dataset.data, dataset.weights]
    return names, columns


def create_fitresult_array(
    intensity: Intensity, dataset: DataSet
) -> tuple[list[str], list[np.ndarray]]:
    """Same as :func:`create_data_array`, with the intensity as additional column."""
    names = [*dataset.variable_names, "intensity", "weight"]
    columns = [*dataset.data, intensity.evaluate(dataset), dataset.weights]
    return names, columns
