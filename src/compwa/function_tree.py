"""Memoized computation graph for evaluating intensities over a `.DataSet`.

A `FunctionTree` is a directed acyclic graph of `Node` instances. Leaves hold
`.FitParameter` values, data columns, or constants, and each `OperatorNode` combines
the values of its children with an `Operation`. Every node caches its last value.
Changing a leaf only marks the nodes that depend on it as dirty, so that a next
evaluation recomputes only those nodes. This is what makes repeated evaluations
during a fit cheap when only a few parameters change.

Use :func:`create_function_tree` to build a graph from a `sympy.Expr
<sympy.core.expr.Expr>`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable

import numpy as np
import sympy as sp
from attrs import field, frozen

from compwa.exceptions import ConfigurationError, ShapeError
from compwa.parameter import FitParameter, ParameterList

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping, Sequence

    from numpy.typing import ArrayLike

_LOGGER = logging.getLogger(__name__)


@frozen
class Operation:
    """Named strategy that combines the values of child nodes.

    Args:
        name: Label that is shown when printing a `FunctionTree`.
        function: Vectorized function that is called with the child values.
        arity: Required number of children. `None` means any number (at least one).
    """

    name: str
    function: Callable[..., Any] = field(repr=False)
    arity: int | None = None

    def __call__(self, *values: Any) -> Any:
        return self.function(*values)

    def check_arity(self, n_children: int) -> None:
        if self.arity is None:
            if n_children < 1:
                msg = f'Operation "{self.name}" needs at least one argument'
                raise ShapeError(msg)
        elif n_children != self.arity:
            msg = (
                f'Operation "{self.name}" takes {self.arity} arguments,'
                f" got {n_children}"
            )
            raise ShapeError(msg)


def _add(*values: Any) -> Any:
    result = values[0]
    for value in values[1:]:
        result = result + value
    return result


def _multiply(*values: Any) -> Any:
    result = values[0]
    for value in values[1:]:
        result = result * value
    return result


def _abs_squared(value: Any) -> Any:
    return np.real(value * np.conj(value))


def _complex_polar(magnitude: Any, phase: Any) -> Any:
    return magnitude * np.exp(1j * phase)


ADD = Operation("add", _add)
MULTIPLY = Operation("multiply", _multiply)
POWER = Operation("power", np.power, arity=2)
EXP = Operation("exp", np.exp, arity=1)
LOG = Operation("log", np.log, arity=1)
SQRT = Operation("sqrt", np.sqrt, arity=1)
ABS = Operation("abs", np.abs, arity=1)
ABS_SQUARED = Operation("abs_squared", _abs_squared, arity=1)
CONJUGATE = Operation("conjugate", np.conj, arity=1)
REAL = Operation("real", np.real, arity=1)
IMAG = Operation("imag", np.imag, arity=1)
SIN = Operation("sin", np.sin, arity=1)
COS = Operation("cos", np.cos, arity=1)
ATAN2 = Operation("atan2", np.arctan2, arity=2)
COMPLEX_POLAR = Operation("complex_polar", _complex_polar, arity=2)


class Node(ABC):
    """Vertex in a `FunctionTree` with a cached value and a dirty flag."""

    def __init__(self, name: str) -> None:
        self.__name = name
        self.__parents: list[OperatorNode] = []
        self._value: Any = None
        self._is_dirty = True
        self.n_evaluations = 0
        """Number of times the value of this node has been recomputed."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.__name!r})"

    @property
    def name(self) -> str:
        return self.__name

    @property
    def parents(self) -> tuple[OperatorNode, ...]:
        """Nodes that use the value of this node."""
        return tuple(self.__parents)

    @property
    def children(self) -> tuple[Node, ...]:
        return ()

    @property
    def is_dirty(self) -> bool:
        return self._is_dirty

    def _add_parent(self, parent: OperatorNode) -> None:
        if parent not in self.__parents:
            self.__parents.append(parent)

    def mark_dirty(self) -> None:
        """Invalidate the cached value of this node and of all nodes depending on it.

        A dirty node never has a clean parent, so propagation can stop at nodes that
        are already dirty.
        """
        stack: list[Node] = [self]
        while stack:
            node = stack.pop()
            if node._is_dirty and node is not self:
                continue
            node._is_dirty = True
            stack.extend(node.__parents)

    def evaluate(self) -> Any:
        if self._is_dirty:
            self._value = self._compute()
            self.n_evaluations += 1
            self._is_dirty = False
        return self._value

    @abstractmethod
    def _compute(self) -> Any: ...

    def _describe_value(self) -> str:
        if self._is_dirty:
            return "?"
        value = self._value
        if np.ndim(value) > 0:
            return f"<array of shape {np.shape(value)}>"
        return f"{value:g}" if np.isrealobj(value) else str(value)


class ConstantNode(Node):
    def __init__(self, value: complex, name: str | None = None) -> None:
        super().__init__(name if name is not None else str(value))
        self.__constant = value

    def _compute(self) -> Any:
        return self.__constant


class ParameterNode(Node):
    """Leaf node that holds the value of a `.FitParameter`.

    The node is invalidated whenever the value of the `.FitParameter` changes, also if
    it is modified outside the tree.
    """

    def __init__(self, parameter: FitParameter) -> None:
        super().__init__(parameter.name)
        self.__parameter = parameter
        parameter.add_listener(self)

    @property
    def parameter(self) -> FitParameter:
        return self.__parameter

    def set_value(self, value: float) -> None:
        if not self.is_dirty and float(value) == self._value:
            return
        self.__parameter.value = value
        self.mark_dirty()

    def _compute(self) -> float:
        return self.__parameter.value


class DataNode(Node):
    """Leaf node that holds one column of a `.DataSet`."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.__column: np.ndarray | None = None

    def set_column(self, column: np.ndarray) -> None:
        if column is self.__column:
            return
        self.__column = column
        self.mark_dirty()

    def _compute(self) -> np.ndarray:
        if self.__column is None:
            msg = f'No data has been set for variable "{self.name}"'
            raise ShapeError(msg)
        return self.__column


class OperatorNode(Node):
    """Node that applies an `Operation` to the values of its children."""

    def __init__(
        self,
        operation: Operation,
        children: Sequence[Node],
        name: str | None = None,
    ) -> None:
        operation.check_arity(len(children))
        super().__init__(name if name is not None else operation.name)
        self.__operation = operation
        self.__children = tuple(children)
        for child in self.__children:
            child._add_parent(self)

    @property
    def operation(self) -> Operation:
        return self.__operation

    @property
    def children(self) -> tuple[Node, ...]:
        return self.__children

    def _compute(self) -> Any:
        return self.__operation(*(child.evaluate() for child in self.__children))


class FunctionTree:
    """Computation graph with a single root node.

    Args:
        root: Node of which the value is the result of :meth:`evaluate`.
        parameters: Order in which the parameters of the graph are listed. Defaults
            to the order in which the `ParameterNode` instances are found.
    """

    def __init__(self, root: Node, parameters: ParameterList | None = None) -> None:
        self.__root = root
        self.__nodes = tuple(_walk(root))
        parameter_nodes = {
            node.name: node for node in self.__nodes if isinstance(node, ParameterNode)
        }
        if parameters is None:
            self.__parameter_nodes = parameter_nodes
        else:
            unknown = set(parameter_nodes) - set(parameters.names)
            if unknown:
                msg = f"Parameters {sorted(unknown)} are not in the parameter list"
                raise ConfigurationError(msg)
            self.__parameter_nodes = {
                p.name: parameter_nodes[p.name]
                for p in parameters
                if p.name in parameter_nodes
            }
        for name, node in self.__parameter_nodes.items():
            if parameters is not None and node.parameter is not parameters[name]:
                msg = f'Parameter "{name}" is not the instance in the parameter list'
                raise ConfigurationError(msg)
        self.__data_nodes: dict[str, DataNode] = {
            node.name: node for node in self.__nodes if isinstance(node, DataNode)
        }

    def __str__(self) -> str:
        return self.print()

    @property
    def root(self) -> Node:
        return self.__root

    @property
    def nodes(self) -> tuple[Node, ...]:
        """All distinct nodes, parents before children."""
        return self.__nodes

    @property
    def parameters(self) -> ParameterList:
        return ParameterList(n.parameter for n in self.__parameter_nodes.values())

    @property
    def free_parameters(self) -> ParameterList:
        return self.parameters.free_parameters

    @property
    def data_variable_names(self) -> tuple[str, ...]:
        return tuple(self.__data_nodes)

    def evaluate(self) -> Any:
        return self.__root.evaluate()

    def set_data(self, data: Mapping[str, ArrayLike]) -> None:
        """Bind the data leaves to the columns of a `.DataSet`.

        Leaves of which the column is the same object as before are not invalidated.
        """
        missing = set(self.__data_nodes) - set(data)
        if missing:
            msg = f"Data is missing kinematic variables {sorted(missing)}"
            raise ShapeError(msg)
        for name, node in self.__data_nodes.items():
            column = data[name]
            if not isinstance(column, np.ndarray):
                column = np.asarray(column)
            node.set_column(column)

    def update_parameters_from(self, values: Sequence[float]) -> None:
        """Assign new values to the free parameters, in the order of `free_parameters`.

        Raises:
            ShapeError: If the number of values does not match the number of free
                parameters.
            ValueError: If a value lies outside the bounds of its parameter. No value
                is assigned in that case.
        """
        free_nodes = [
            node
            for node in self.__parameter_nodes.values()
            if not node.parameter.is_fixed
        ]
        values = list(values)
        if len(values) != len(free_nodes):
            msg = (
                f"Got {len(values)} values, but there are {len(free_nodes)} free"
                " parameters"
            )
            raise ShapeError(msg)
        for node, value in zip(free_nodes, values):
            if not node.parameter.is_within_bounds(value):
                msg = (
                    f'Value {value} of parameter "{node.name}" is outside'
                    f" {node.parameter.bounds}"
                )
                raise ValueError(msg)
        for node, value in zip(free_nodes, values):
            node.set_value(value)

    def print(self, max_depth: int | None = None) -> str:
        """Human-readable dump of the graph structure and the cached values.

        Nodes that are shared by several parents are expanded only once.
        """
        lines: list[str] = []
        printed: set[int] = set()

        def _print(node: Node, depth: int) -> None:
            indent = "  " * depth
            label = f"{indent}{node.name} [{type(node).__name__}]"
            if id(node) in printed and node.children:
                lines.append(f"{label} (shared)")
                return
            printed.add(id(node))
            lines.append(f"{label} = {node._describe_value()}")
            if max_depth is not None and depth >= max_depth:
                return
            for child in node.children:
                _print(child, depth + 1)

        _print(self.__root, 0)
        return "\n".join(lines)


def _walk(root: Node) -> Iterator[Node]:
    seen: set[int] = set()
    stack = [root]
    while stack:
        node = stack.pop()
        if id(node) in seen:
            continue
        seen.add(id(node))
        yield node
        stack.extend(reversed(node.children))


_SYMPY_OPERATIONS: dict[type, Operation] = {
    sp.Add: ADD,
    sp.Mul: MULTIPLY,
    sp.Pow: POWER,
    sp.exp: EXP,
    sp.log: LOG,
    sp.Abs: ABS,
    sp.conjugate: CONJUGATE,
    sp.re: REAL,
    sp.im: IMAG,
    sp.sin: SIN,
    sp.cos: COS,
    sp.atan2: ATAN2,
}


def create_function_tree(
    expression: sp.Expr,
    parameters: ParameterList | Mapping[sp.Symbol | str, float],
    data_variable_names: Iterable[str] | None = None,
) -> FunctionTree:
    """Convert a `sympy` expression to a `FunctionTree`.

    Symbols that match a parameter name become `ParameterNode` leaves, all other
    symbols become `DataNode` leaves. Identical sub-expressions are converted to a
    single node that is shared by all its parents.

    Args:
        expression: Expression that is to be evaluated.
        parameters: Parameter list or a mapping of symbols to default values.
        data_variable_names: If given, every symbol that is not a parameter has to
            be one of these names.

    Raises:
        ConfigurationError: If a symbol is neither a parameter nor a data variable.
    """
    if not isinstance(parameters, ParameterList):
        parameters = ParameterList.from_values(
            {str(k): float(v) for k, v in parameters.items()}
        )
    allowed_names = None
    if data_variable_names is not None:
        allowed_names = set(data_variable_names)
    cache: dict[sp.Basic | str, Node] = {}

    def convert(expr: sp.Basic) -> Node:
        key = expr.name if isinstance(expr, sp.Symbol) else expr
        node = cache.get(key)
        if node is None:
            node = _create_node(expr, parameters, allowed_names, convert)
            cache[key] = node
        return node

    root = convert(sp.sympify(expression))
    tree = FunctionTree(root, parameters)
    _LOGGER.debug(
        "Created function tree with %d nodes, %d parameters, and %d data variables",
        len(tree.nodes),
        len(tree.parameters),
        len(tree.data_variable_names),
    )
    return tree


def _create_node(
    expr: sp.Basic,
    parameters: ParameterList,
    allowed_names: set[str] | None,
    convert: Callable[[sp.Basic], Node],
) -> Node:
    if isinstance(expr, sp.Symbol):
        if expr.name in parameters:
            return ParameterNode(parameters[expr.name])
        if allowed_names is not None and expr.name not in allowed_names:
            msg = f'Symbol "{expr.name}" is neither a parameter nor a data variable'
            raise ConfigurationError(msg)
        return DataNode(expr.name)
    if expr.is_number:
        value = complex(expr)
        constant = value.real if value.imag == 0 else value
        return ConstantNode(constant, name=str(expr))
    operation = _SYMPY_OPERATIONS.get(expr.func)  # type: ignore[call-overload]
    if operation is not None:
        return OperatorNode(operation, [convert(arg) for arg in expr.args])
    if all(isinstance(arg, sp.Expr) for arg in expr.args):
        dummies = sp.symbols(f"x:{len(expr.args)}", cls=sp.Dummy)
        function = sp.lambdify(dummies, expr.func(*dummies), modules="numpy")
        children = [convert(arg) for arg in expr.args]
    else:
        # arguments like the conditions of a Piecewise cannot be nodes
        symbols = sorted(expr.free_symbols, key=str)
        function = sp.lambdify(symbols, expr, modules="numpy")
        children = [convert(s) for s in symbols]
    name = expr.func.__name__
    return OperatorNode(Operation(name, function, arity=len(children)), children)
