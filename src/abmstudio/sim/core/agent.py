from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, Mapping, Optional, Sequence

from pygame.math import Vector2

from .errors import PropertyTypeError

if TYPE_CHECKING:
    from ..model.types import PropertyDef
    from .environment import Environment

TickFunction = Callable[["Agent", "Environment"], None]


@dataclass(slots=True)
class AgentVisual:
    color: str
    shape: str
    size: float
    width: Optional[float] = None
    height: Optional[float] = None


class PropertyBag:
    """Custom agent properties keyed by name, typed by the agent type's PropertyDefs.

    Numeric writes are clamped to the declared min/max. Type checks run only
    when ``__debug__`` is set, so ``python -O`` skips them.
    """

    __slots__ = ("_defs", "_values")

    def __init__(self, defs: Mapping[str, "PropertyDef"] | None = None, values: Dict[str, Any] | None = None):
        self._defs: Mapping[str, "PropertyDef"] = defs if defs is not None else {}
        self._values: Dict[str, Any] = values if values is not None else {}

    @classmethod
    def from_defaults(cls, definitions: Sequence["PropertyDef"]) -> "PropertyBag":
        defs = {definition.name: definition for definition in definitions}
        bag = cls(defs)
        for definition in definitions:
            bag.set(definition.name, copy.deepcopy(definition.default_value))
        return bag

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def set(self, name: str, value: Any) -> None:
        definition = self._defs.get(name)
        if definition is not None and value is not None:
            if __debug__:
                self._check_type(definition, value)
            if definition.type == "number":
                if definition.min is not None and value < definition.min:
                    value = definition.min
                if definition.max is not None and value > definition.max:
                    value = definition.max
        self._values[name] = value

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    def copy(self) -> "PropertyBag":
        return PropertyBag(self._defs, copy.deepcopy(self._values))

    @staticmethod
    def _check_type(definition: "PropertyDef", value: Any) -> None:
        kind = definition.type
        if kind == "number":
            valid = isinstance(value, (int, float)) and not isinstance(value, bool)
        elif kind == "boolean":
            valid = isinstance(value, bool)
        elif kind == "string":
            valid = isinstance(value, str)
        else:
            valid = True
        if not valid:
            raise PropertyTypeError(
                f"property {definition.name!r} is declared {kind}, got {type(value).__name__} {value!r}"
            )


@dataclass(slots=True)
class Agent:
    id: int
    type_id: str
    position: Vector2
    velocity: Vector2 = field(default_factory=Vector2)
    heading: float = 0.0
    properties: PropertyBag = field(default_factory=PropertyBag)
    tick_fn: Optional[TickFunction] = None
    alive: bool = True
    visual: Optional[AgentVisual] = None
