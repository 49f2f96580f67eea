"""Generic collection classes for named items."""

from __future__ import annotations

from abc import ABC
from collections import Counter
from collections.abc import Iterator
from typing import Any, TypeVar

from pydantic import BaseModel, PrivateAttr, RootModel, model_validator

from pybinfit.exceptions import DuplicateNameError


class NamedModel(BaseModel, ABC):
    """ABC for objects that have a name attribute."""

    name: str


T = TypeVar("T", bound=NamedModel)


class NamedCollection(RootModel[list[T]]):
    """Ordered configuration list with dict-like access by unique name.

    Used for samples, datasets and parameter sets, whose names double as
    lookup keys at run time, so a repeated name is a configuration error.
    """

    _map: dict[str, T] = PrivateAttr(default_factory=dict)

    @model_validator(mode="after")
    def check_unique_names(self) -> NamedCollection[T]:
        """Refuse two items sharing the same name."""
        counts = Counter(item.name for item in self.root)
        duplicates = sorted(name for name, count in counts.items() if count > 1)
        if duplicates:
            msg = f"{type(self).__name__}: duplicate names {duplicates}, please use another name."
            raise DuplicateNameError(msg)
        return self

    def model_post_init(self, __context: Any, /) -> None:
        """Initialize computed collections after Pydantic validation."""
        self._map = {item.name: item for item in self.root}

    @property
    def names(self) -> list[str]:
        """Item names, in declaration order."""
        return [item.name for item in self.root]

    def __getitem__(self, item: str | int) -> T:
        if isinstance(item, int):
            return self.root[item]
        try:
            return self._map[item]
        except KeyError:
            msg = f"{type(self).__name__}: no item named '{item}', available: {self.names}"
            raise KeyError(msg) from None

    def get(self, name: str, default: T | None = None) -> T | None:
        """Get an item by name, returning default if not found."""
        return self._map.get(name, default)

    def __contains__(self, name: str) -> bool:
        return name in self._map

    def __iter__(self) -> Iterator[T]:  # type: ignore[override]
        return iter(self.root)

    def __len__(self) -> int:
        return len(self.root)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.names})"
