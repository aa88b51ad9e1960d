from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Set, Union

from .errors import RuntimeReferenceError

logger = logging.getLogger(__name__)

PARAM_REF_PREFIX = "$"
_PARAM_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


@dataclass(frozen=True, slots=True)
class Literal:
    value: Any


@dataclass(frozen=True, slots=True)
class ParamRef:
    name: str


ParamValue = Union[Literal, ParamRef]
NumberResolver = Callable[["ParameterTable"], float]
ValueResolver = Callable[["ParameterTable"], Any]


def as_param_value(raw: Any) -> ParamValue:
    """Convert a persisted behavior parameter into a tagged value.

    Persisted models mark parameter references with a ``$`` prefix
    (``"$speed"``); everything else is a literal.
    """
    if isinstance(raw, (Literal, ParamRef)):
        return raw
    if isinstance(raw, str) and raw.startswith(PARAM_REF_PREFIX):
        return ParamRef(raw[len(PARAM_REF_PREFIX):])
    return Literal(raw)


def to_raw(value: ParamValue) -> Any:
    if isinstance(value, ParamRef):
        return f"{PARAM_REF_PREFIX}{value.name}"
    return value.value


def is_valid_param_name(name: str) -> bool:
    return isinstance(name, str) and _PARAM_NAME.fullmatch(name) is not None


def coerce_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    try:
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            number = float(value.strip())
        else:
            raise ValueError(f"not a number: {value!r}")
    except OverflowError:
        raise ValueError(f"number out of range: {value!r}") from None
    if not math.isfinite(number):
        raise ValueError(f"not a finite number: {value!r}")
    return number


class ParameterTable:
    """Runtime parameter values, read by compiled behaviors at step time.

    Writes swap in a new mapping instead of mutating the current one, so a
    write between (or during) agent updates never disturbs a reader.
    """

    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        self._values: Dict[str, Any] = dict(values or {})
        self._reported: Set[str] = set()

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __len__(self) -> int:
        return len(self._values)

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    def set(self, name: str, value: Any) -> None:
        self._values = {**self._values, name: value}
        self._reported.discard(name)

    def sync(self, parameters: Iterable[Any]) -> None:
        values = dict(self._values)
        for parameter in parameters:
            values[parameter.name] = parameter.value
            self._reported.discard(parameter.name)
        self._values = values

    def clear(self) -> None:
        self._values = {}
        self._reported.clear()

    def lookup(self, name: str) -> Any:
        value = self._values.get(name)
        if value is None:
            raise RuntimeReferenceError(name)
        return value

    def resolve_number(self, name: str, default: float) -> float:
        try:
            value = self.lookup(name)
            try:
                return coerce_number(value)
            except ValueError as exc:
                raise RuntimeReferenceError(name, "non-numeric parameter") from exc
        except RuntimeReferenceError as exc:
            self._report(exc, default)
            return default

    def resolve_value(self, name: str, default: Any) -> Any:
        try:
            return self.lookup(name)
        except RuntimeReferenceError as exc:
            self._report(exc, default)
            return default

    def _report(self, exc: RuntimeReferenceError, default: Any) -> None:
        if exc.name in self._reported:
            return
        self._reported.add(exc.name)
        logger.warning("%s; falling back to %r", exc, default)


def number_resolver(value: ParamValue, default: float) -> NumberResolver:
    """Build a resolver for a numeric behavior parameter.

    Literals are validated here and raise ``ValueError`` when they are not
    numbers; references are looked up on every call.
    """
    if isinstance(value, ParamRef):
        name = value.name
        return lambda table: table.resolve_number(name, default)
    if value.value is None:
        return lambda table: default
    number = coerce_number(value.value)
    return lambda table: number


def value_resolver(value: ParamValue, default: Any) -> ValueResolver:
    if isinstance(value, ParamRef):
        name = value.name
        return lambda table: table.resolve_value(name, default)
    literal = default if value.value is None else value.value
    return lambda table: literal
