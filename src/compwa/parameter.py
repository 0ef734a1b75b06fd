"""Fit parameters and ordered lists of them."""

from __future__ import annotations

import weakref
from collections import abc
from copy import deepcopy
from typing import TYPE_CHECKING, Any, overload

import numpy as np
from attrs import define, field, setters
from attrs.validators import instance_of

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from attrs import Attribute


def _to_bounds(bounds: Iterable[float] | None) -> tuple[float, float] | None:
    if bounds is None:
        return None
    lower, upper = (float(b) for b in bounds)
    if lower > upper:
        msg = f"Lower bound {lower} is larger than upper bound {upper}"
        raise ValueError(msg)
    return lower, upper


def _to_error(error: float | None) -> float | None:
    if error is None:
        return None
    return float(error)


def _check_within_bounds(instance: FitParameter, attribute: Attribute, new) -> None:
    # on assignment, validators run before the new value is stored
    bounds = getattr(instance, "bounds", None)
    value = getattr(instance, "value", None)
    if attribute.name == "bounds":
        bounds = new
    else:
        value = new
    if bounds is None or value is None:
        return
    lower, upper = bounds
    if not lower <= value <= upper:
        msg = f'Value {value} of parameter "{instance.name}" is outside {bounds}'
        raise ValueError(msg)


def _notify_listeners(instance: FitParameter, _: Attribute, new: float) -> float:
    if new != instance.value:
        for listener in tuple(instance._listeners):
            listener.mark_dirty()
    return new


@define
class FitParameter:
    """A named parameter with a value, an optional error, and optional bounds.

    If :attr:`bounds` are set, :attr:`value` has to lie within them. This is checked
    both on construction and whenever one of the two attributes is modified.
    """

    name: str = field(validator=instance_of(str))
    value: float = field(
        converter=float,
        validator=_check_within_bounds,
        on_setattr=[setters.convert, setters.validate, _notify_listeners],
    )
    error: float | None = field(default=None, converter=_to_error)
    is_fixed: bool = field(default=False, converter=bool)
    bounds: tuple[float, float] | None = field(
        default=None, converter=_to_bounds, validator=_check_within_bounds
    )
    _listeners: weakref.WeakSet = field(
        factory=weakref.WeakSet, init=False, repr=False, eq=False
    )

    def __deepcopy__(self, memo: dict) -> FitParameter:
        return FitParameter(
            self.name, self.value, self.error, self.is_fixed, self.bounds
        )

    def add_listener(self, listener: Any) -> None:
        """Call :code:`listener.mark_dirty()` whenever :attr:`value` changes.

        Only a weak reference to the listener is kept.
        """
        self._listeners.add(listener)

    def is_within_bounds(self, value: float) -> bool:
        if self.bounds is None:
            return True
        lower, upper = self.bounds
        return lower <= value <= upper

    def __str__(self) -> str:
        text = f"{self.name} = {self.value:g}"
        if self.error is not None:
            text += f" +/- {self.error:g}"
        if self.bounds is not None:
            text += f" {list(self.bounds)}"
        if self.is_fixed:
            text += " (fixed)"
        return text


class ParameterList(abc.Sequence):
    """Ordered collection of `FitParameter` instances with unique names.

    Parameters can be accessed by position or by name. The instances are shared, not
    copied, so a `ParameterList` can serve as a view on the parameters of a
    `.FunctionTree`.
    """

    def __init__(self, parameters: Iterable[FitParameter] = ()) -> None:
        self.__parameters: list[FitParameter] = []
        for parameter in parameters:
            self.append(parameter)

    @classmethod
    def from_values(cls, values: abc.Mapping[str, float]) -> ParameterList:
        return cls(FitParameter(name, value) for name, value in values.items())

    @overload
    def __getitem__(self, i: int | str) -> FitParameter: ...
    @overload
    def __getitem__(self, i: slice) -> ParameterList: ...
    def __getitem__(self, i):
        if isinstance(i, str):
            for parameter in self.__parameters:
                if parameter.name == i:
                    return parameter
            msg = f'No parameter with name "{i}"'
            raise KeyError(msg)
        if isinstance(i, slice):
            return ParameterList(self.__parameters[i])
        return self.__parameters[i]

    def __contains__(self, item: object) -> bool:
        if isinstance(item, str):
            return item in self.names
        return item in self.__parameters

    def __iter__(self) -> Iterator[FitParameter]:
        return iter(self.__parameters)

    def __len__(self) -> int:
        return len(self.__parameters)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.__parameters})"

    def __str__(self) -> str:
        return "\n".join(str(p) for p in self.__parameters)

    def append(self, parameter: FitParameter) -> None:
        if not isinstance(parameter, FitParameter):
            msg = f"Cannot add a {type(parameter).__name__} to a {type(self).__name__}"
            raise TypeError(msg)
        if parameter.name in self.names:
            msg = f'There already is a parameter with name "{parameter.name}"'
            raise ValueError(msg)
        self.__parameters.append(parameter)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(p.name for p in self.__parameters)

    @property
    def values(self) -> np.ndarray:
        return np.array([p.value for p in self.__parameters])

    @property
    def free_parameters(self) -> ParameterList:
        """View on the parameters that are not fixed, in the same order."""
        return ParameterList(p for p in self.__parameters if not p.is_fixed)

    def fix(self, name: str, value: float | None = None) -> None:
        parameter = self[name]
        if value is not None:
            parameter.value = value
        parameter.is_fixed = True

    def release(self, name: str, value: float | None = None) -> None:
        parameter = self[name]
        if value is not None:
            parameter.value = value
        parameter.is_fixed = False

    def update_from(self, other: Iterable[FitParameter]) -> None:
        """Copy value, error, bounds, and fixed state of matching parameter names."""
        for parameter in other:
            if parameter.name not in self:
                continue
            target = self[parameter.name]
            target.bounds = None
            target.value = parameter.value
            target.bounds = parameter.bounds
            target.error = parameter.error
            target.is_fixed = parameter.is_fixed

    def copy(self) -> ParameterList:
        """Deep copy that no longer shares the `FitParameter` instances."""
        return ParameterList(deepcopy(self.__parameters))


def update_parameter(  # noqa: PLR0913
    parameters: ParameterList,
    name: str,
    value: float | None = None,
    fix: bool | None = None,
    bounds: tuple[float, float] | None = None,
) -> None:
    """Update the value, fixed state, and/or range of a parameter by name."""
    parameter = parameters[name]
    if bounds is not None:
        parameter.bounds = None
        if value is not None:
            parameter.value = value
        parameter.bounds = bounds
    elif value is not None:
        parameter.value = value
    if fix is not None:
        parameter.is_fixed = fix
