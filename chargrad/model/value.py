"""
chargrad Scalar Autograd
=========================
A tiny reverse-mode automatic differentiation engine that works on
single numbers. Every arithmetic result remembers which values produced
it and the local derivative with respect to each of them, so calling
``backward()`` on the final loss can walk the graph in reverse and push
gradients to every leaf with the chain rule.

Primitive Operations:
    ┌──────────┬───────────┬──────────────────────────┐
    │ Op       │ Value     │ Local gradient(s)        │
    ├──────────┼───────────┼──────────────────────────┤
    │ add(x,y) │ x + y     │ 1, 1                     │
    │ mul(x,y) │ x · y     │ y, x                     │
    │ pow(x,p) │ x^p       │ p · x^(p-1)              │
    │ log(x)   │ ln(x)     │ 1 / x                    │
    │ exp(x)   │ e^x       │ e^x                      │
    │ relu(x)  │ max(0, x) │ 1 if x > 0 else 0        │
    └──────────┴───────────┴──────────────────────────┘

    The Python operators (-, /, unary minus, reflected forms) are built
    out of these six, so every graph only ever contains primitive nodes.

Analogy:
    Each Value is a receipt. It shows the total (data), the items that
    went into it (children), and how much each item moved the total
    (local grads). Backward is the auditor reading the receipts from the
    last one to the first and working out who is responsible for what.

Numerical Caveats:
    ``log`` of a non-positive number and ``0 ** -p`` are NOT guarded.
    They produce IEEE-754 -inf/inf/nan and those values flow through the
    rest of the computation rather than raising. Gradients accumulate
    across backward() calls; zero them before a new accumulation pass.

Usage:
    >>> a, b = Value(2.0), Value(3.0)
    >>> c = a * b + a
    >>> c.backward()
    >>> a.grad, b.grad
    (4.0, 2.0)
"""

from __future__ import annotations

import math
from typing import Union

Number = Union[int, float]


def _ieee_log(x: float) -> float:
    if x > 0:
        return math.log(x)
    if x == 0:
        return -math.inf
    return math.nan


def _ieee_pow(x: float, p: float) -> float:
    try:
        return math.pow(x, p)
    except ZeroDivisionError:
        return math.inf
    except ValueError:
        # math.pow raises for 0 ** negative and negative ** fractional
        if x == 0:
            return math.inf
        return math.nan
    except OverflowError:
        if x < 0 and float(p).is_integer() and int(p) % 2 == 1:
            return -math.inf
        return math.inf


def _ieee_exp(x: float) -> float:
    try:
        return math.exp(x)
    except OverflowError:
        return math.inf


class Value:
    """
    A scalar node in the computation graph.

    Parameters
    ----------
    data : float
        The number this node holds.
    children : tuple[Value, ...]
        The nodes this one was computed from (empty for leaves). A child
        always exists before its parent, so the graph is a DAG by
        construction.
    local_grads : tuple[float, ...]
        ∂(self)/∂(child_i) for each child, evaluated at creation time.
    """

    __slots__ = ("data", "grad", "_children", "_local_grads")

    def __init__(
        self,
        data: Number,
        children: tuple = (),
        local_grads: tuple = (),
    ):
        self.data = float(data)
        self.grad = 0.0
        self._children = children
        self._local_grads = local_grads

    @property
    def children(self) -> tuple:
        return self._children

    @property
    def local_grads(self) -> tuple:
        return self._local_grads

    @property
    def is_leaf(self) -> bool:
        return not self._children

    # ─── Primitive operations ───────────────────────────────────────────

    def add(self, other: Union[Value, Number]) -> Value:
        other = _as_value(other)
        return Value(self.data + other.data, (self, other), (1.0, 1.0))

    def mul(self, other: Union[Value, Number]) -> Value:
        other = _as_value(other)
        return Value(
            self.data * other.data, (self, other), (other.data, self.data)
        )

    def pow(self, power: Number) -> Value:
        power = float(power)
        return Value(
            _ieee_pow(self.data, power),
            (self,),
            (power * _ieee_pow(self.data, power - 1.0),),
        )

    def log(self) -> Value:
        return Value(
            _ieee_log(self.data), (self,), (_ieee_pow(self.data, -1.0),)
        )

    def exp(self) -> Value:
        e = _ieee_exp(self.data)
        return Value(e, (self,), (e,))

    def relu(self) -> Value:
        # NaN passes through, so max(0.0, x) is not usable here
        x = self.data
        out = x if x > 0 or math.isnan(x) else 0.0
        return Value(out, (self,), (1.0 if x > 0 else 0.0,))

    # ─── Operator sugar (composed from the primitives) ──────────────────

    def __add__(self, other):
        return self.add(other)

    def __radd__(self, other):
        return _as_value(other).add(self)

    def __mul__(self, other):
        return self.mul(other)

    def __rmul__(self, other):
        return _as_value(other).mul(self)

    def __pow__(self, power):
        if isinstance(power, Value):
            raise TypeError("Value ** Value is not supported; use a number")
        return self.pow(power)

    def __neg__(self):
        return self.mul(-1.0)

    def __sub__(self, other):
        return self.add(_as_value(other).mul(-1.0))

    def __rsub__(self, other):
        return _as_value(other).add(self.mul(-1.0))

    def __truediv__(self, other):
        return self.mul(_as_value(other).pow(-1.0))

    def __rtruediv__(self, other):
        return _as_value(other).mul(self.pow(-1.0))

    # ─── Reverse pass ───────────────────────────────────────────────────

    def topological_order(self) -> list[Value]:
        """
        Every node reachable from ``self``, children before parents.

        Iterative post-order DFS so deep graphs (long sums built one add
        at a time) never hit the recursion limit. Nodes are visited once,
        keyed by identity, so shared subexpressions are handled.
        """
        topo: list[Value] = []
        visited: set[int] = set()
        stack: list[tuple[Value, bool]] = [(self, False)]

        while stack:
            node, expanded = stack.pop()
            if expanded:
                topo.append(node)
                continue
            if id(node) in visited:
                continue
            visited.add(id(node))
            stack.append((node, True))
            for child in reversed(node._children):
                if id(child) not in visited:
                    stack.append((child, False))

        return topo

    def backward(self) -> None:
        """
        Accumulate d(self)/d(node) into ``grad`` for every ancestor.

        Seeds ``self.grad = 1`` and walks the graph in reverse
        topological order applying ``child.grad += local * node.grad``.
        Existing gradients are added to, never overwritten.
        """
        topo = self.topological_order()

        self.grad = 1.0
        for node in reversed(topo):
            for child, local in zip(node._children, node._local_grads):
                child.grad += local * node.grad

    def __repr__(self) -> str:
        return f"Value(data={self.data:.6g}, grad={self.grad:.6g})"


def _as_value(x: Union[Value, Number]) -> Value:
    return x if isinstance(x, Value) else Value(x)
