"""
Fit parameter implementations.

Provides Pydantic classes for the fit parameters whose current values the
dials track, grouped into named parameter sets. These play the role of the
parameter store: the minimizer writes values, dials read them.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any

import numpy as np
import numpy.typing as npt
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator

from pybinfit.collections import NamedCollection, NamedModel


class FitParameter(BaseModel):
    """
    Individual fit parameter with a current value.

    Parameters:
        name: Name identifier for the parameter
        value: Current value, mutated by the minimizer
        prior_value: Nominal value the parameter is reset to
        min: Optional lower bound of the allowed range
        max: Optional upper bound of the allowed range
        fixed: Whether the minimizer should leave the parameter untouched
    """

    model_config = ConfigDict(validate_assignment=True)

    name: str
    value: float = 0.0
    prior_value: float = 0.0
    min: float | None = None
    max: float | None = None
    fixed: bool = False

    @model_validator(mode="after")
    def check_range(self) -> FitParameter:
        """Validate that the value sits inside the optional range."""
        if self.min is not None and self.max is not None and self.max < self.min:
            msg = f"Parameter '{self.name}': max ({self.max}) must be >= min ({self.min})"
            raise ValueError(msg)
        if (self.min is not None and self.value < self.min) or (
            self.max is not None and self.value > self.max
        ):
            msg = f"Parameter '{self.name}': value {self.value} outside of [{self.min}, {self.max}]"
            raise ValueError(msg)
        return self

    def reset(self) -> None:
        """Move the parameter back to its prior value."""
        self.value = self.prior_value


class FitParameterSet(NamedModel):
    """
    Named collection of fit parameters that share a source of systematics.

    Events keep one dial list per parameter set, keyed by the set name.

    Parameters:
        name: Name identifier for the parameter set
        parameters: List of FitParameter specifications
        enabled: Disabled sets contribute no dials
    """

    parameters: list[FitParameter] = Field(default_factory=list)
    enabled: bool = True
    _map: dict[str, FitParameter] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any, /) -> None:
        """Initialize computed collections after Pydantic validation."""
        self._map = {param.name: param for param in self.parameters}

    @property
    def values(self) -> npt.NDArray[np.float64]:
        """Current parameter values, in declaration order."""
        return np.array([param.value for param in self.parameters], dtype=np.float64)

    def set_values(self, values: Mapping[str, float] | npt.ArrayLike) -> None:
        """
        Update parameter values by name or positionally.

        Fixed parameters are skipped.
        """
        if isinstance(values, Mapping):
            for name, value in values.items():
                param = self._map[name]
                if not param.fixed:
                    param.value = float(value)
            return

        array = np.asarray(values, dtype=np.float64)
        if array.shape != (len(self.parameters),):
            msg = f"Parameter set '{self.name}' expects {len(self.parameters)} values, got shape {array.shape}"
            raise ValueError(msg)
        for param, value in zip(self.parameters, array, strict=True):
            if not param.fixed:
                param.value = float(value)

    def reset(self) -> None:
        """Move every parameter back to its prior value."""
        for param in self.parameters:
            param.reset()

    def __len__(self) -> int:
        """Number of parameters in this set."""
        return len(self.parameters)

    def __contains__(self, param_name: str) -> bool:
        """Check if a parameter with the given name exists in this set."""
        return param_name in self._map

    def __getitem__(self, item: str | int) -> FitParameter:
        """Get a parameter by name or index."""
        if isinstance(item, int):
            return self.parameters[item]
        return self._map[item]

    def get(
        self, param_name: str, default: FitParameter | None = None
    ) -> FitParameter | None:
        """Get a parameter by name, returning default if not found."""
        return self._map.get(param_name, default)

    def __iter__(self) -> Iterator[FitParameter]:  # type: ignore[override]
        """Iterate over the parameters."""
        return iter(self.parameters)


class FitParameterSets(NamedCollection[FitParameterSet]):
    """
    Collection of fit parameter sets.

    Provides dict-like access to parameter sets by name.
    """

    root: list[FitParameterSet] = Field(default_factory=list)

    def set_values(self, values: Mapping[str, Mapping[str, float]]) -> None:
        """Update values of several parameter sets at once."""
        for set_name, set_values in values.items():
            self[set_name].set_values(set_values)
