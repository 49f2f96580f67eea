"""
Dial implementations.

A dial maps the current value of one fit parameter to a multiplicative
response applied to event weights. The response of the last queried
parameter value is memoized, so the many events sharing one dial only pay
for a single computation per minimizer step.
"""

from __future__ import annotations

import math
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING, ClassVar, NamedTuple, Protocol

import numpy as np
import numpy.typing as npt

from pybinfit.exceptions import DialConfigurationError, ResponseComputationError

if TYPE_CHECKING:
    from pybinfit.bins import Bin, SupportsVariables


class ParameterHandle(Protocol):
    """Read access to the current value of a fit parameter."""

    @property
    def value(self) -> float: ...


class DialType(str, Enum):
    """Kinds of dial response computations."""

    INVALID = "Invalid"
    NORMALIZATION = "Normalization"
    SPLINE = "Spline"
    GRAPH = "Graph"

    @classmethod
    def from_string(cls, name: str) -> DialType:
        """
        Look up a dial type by its configuration name.

        Raises:
            DialConfigurationError: if the name is not a known dial type.
        """
        for member in cls:
            if member.value == name and member is not cls.INVALID:
                return member
        expected = [member.value for member in cls if member is not cls.INVALID]
        msg = f'"{name}" unrecognized dial type. Expecting: {expected}'
        raise DialConfigurationError(msg)


class DialCache(NamedTuple):
    """Last evaluated parameter value and the response computed for it."""

    parameter_value: float
    response: float


_UNSET_CACHE = DialCache(math.nan, math.nan)


class Dial(ABC):
    """
    Memoized parameter-value to response map.

    The ``(parameter_value, response)`` pair is stored as one immutable
    :class:`DialCache` record and replaced as a whole, so a reader never sees
    a response belonging to another parameter value. Recomputation happens
    under a per-dial lock; a thread that waited for the lock re-checks the
    record and reuses the response another thread just stored.

    Subclasses set :attr:`dial_type` and implement :meth:`compute_response`.

    Attributes:
        parameter: Handle of the fit parameter the dial follows, if any.
        apply_condition_bin: If set, the dial only applies to events in this bin.
    """

    dial_type: ClassVar[DialType] = DialType.INVALID

    def __init__(
        self,
        *,
        parameter: ParameterHandle | None = None,
        apply_condition_bin: Bin | None = None,
    ) -> None:
        self.parameter = parameter
        self.apply_condition_bin = apply_condition_bin
        self._cache: DialCache = _UNSET_CACHE
        self._lock = threading.Lock()

    def initialize(self) -> None:
        """
        Check the dial is usable.

        Raises:
            DialConfigurationError: if the dial type is not set.
        """
        if self.dial_type is DialType.INVALID:
            msg = f"{type(self).__name__}: dial type is not set."
            raise DialConfigurationError(msg)

    @abstractmethod
    def compute_response(self, parameter_value: float) -> float:
        """Compute the response for a parameter value (no caching)."""

    def evaluate(self, parameter_value: float | None = None) -> float:
        """
        Response of the dial, recomputed only if the parameter value changed.

        Args:
            parameter_value: Value to evaluate at. Defaults to the current
                value of the attached parameter.

        Returns:
            The multiplicative response.

        Raises:
            DialConfigurationError: if no value is given and no parameter is
                attached, or if the dial type is not set.
            ResponseComputationError: if the computation is not finite.
        """
        if parameter_value is None:
            if self.parameter is None:
                msg = f"{type(self).__name__}: no parameter is attached to the dial."
                raise DialConfigurationError(msg)
            parameter_value = self.parameter.value

        cache = self._cache
        if cache.parameter_value == parameter_value:
            return cache.response

        with self._lock:
            cache = self._cache
            if cache.parameter_value == parameter_value:
                return cache.response

            self.initialize()
            response = float(self.compute_response(parameter_value))
            if not math.isfinite(response):
                msg = f"{self.summary}: response at parameter value {parameter_value} is not finite ({response})"
                raise ResponseComputationError(msg)

            self._cache = DialCache(parameter_value, response)
            return response

    @property
    def cache(self) -> DialCache:
        """The current cache record."""
        return self._cache

    def reset(self) -> None:
        """Forget the cached response."""
        with self._lock:
            self._cache = _UNSET_CACHE

    def applies_to(self, event: SupportsVariables) -> bool:
        """Whether the dial should be attached to the given event."""
        if self.apply_condition_bin is None:
            return True
        return self.apply_condition_bin.contains(event)

    @property
    def summary(self) -> str:
        """Dial type and, if set, the apply condition bin."""
        text = self.dial_type.value
        if self.apply_condition_bin is not None and self.apply_condition_bin.edges:
            text += f": {self.apply_condition_bin.summary}"
        return text

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.summary})"


class NormDial(Dial):
    """
    Normalization dial: the response is the parameter value itself.
    """

    dial_type = DialType.NORMALIZATION

    def compute_response(self, parameter_value: float) -> float:
        return parameter_value


class GraphDial(Dial):
    r"""
    Piecewise-linear response through a set of ``(x, y)`` points.

    Outside of the points the response is extrapolated flat.

    .. math::

        f(\alpha) = y_i + (\alpha - x_i) \frac{y_{i+1} - y_i}{x_{i+1} - x_i}
        \quad \text{for } x_i \le \alpha < x_{i+1}

    Examples:
        >>> dial = GraphDial([(0.0, 1.0), (1.0, 2.0)])
        >>> dial.evaluate(0.5)
        1.5
    """

    dial_type = DialType.GRAPH

    def __init__(
        self,
        points: Sequence[tuple[float, float]],
        *,
        parameter: ParameterHandle | None = None,
        apply_condition_bin: Bin | None = None,
    ) -> None:
        super().__init__(parameter=parameter, apply_condition_bin=apply_condition_bin)
        if len(points) == 0:
            msg = "GraphDial needs at least one point"
            raise DialConfigurationError(msg)
        x, y = zip(*points, strict=True)
        self.x: npt.NDArray[np.float64] = np.asarray(x, dtype=np.float64)
        self.y: npt.NDArray[np.float64] = np.asarray(y, dtype=np.float64)
        if np.any(np.diff(self.x) <= 0):
            msg = f"GraphDial points must have strictly increasing x, got {self.x.tolist()}"
            raise DialConfigurationError(msg)

    def compute_response(self, parameter_value: float) -> float:
        return float(np.interp(parameter_value, self.x, self.y))


__all__ = (
    "Dial",
    "DialCache",
    "DialType",
    "GraphDial",
    "NormDial",
    "ParameterHandle",
)
