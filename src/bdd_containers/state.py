"""Scenario-scoped state shared between the steps of one scenario.

A ScenarioContext is immutable: writing a value returns a new context and
leaves the receiver untouched. Steps receive the current context and return
the one the next step should see, so state flows forward explicitly.

Example:

    @dataclass
    class Order:
        api_url: str = ""
        product_name: str = ""

    order_state = ScenarioState(Order)

    def i_have_a_product(ctx: ScenarioContext) -> ScenarioContext:
        order = order_state.retrieve(ctx)
        order.product_name = "book"
        return order_state.enrich(ctx, order)
"""

from __future__ import annotations

from collections.abc import Hashable, Iterator, Mapping
from types import MappingProxyType
from typing import Any, Callable, Generic, TypeVar, get_origin

T = TypeVar("T")

DEFAULT_KEY = "default"


class ScenarioContext(Mapping[Hashable, Any]):
    """Immutable key/value context owned by a single scenario."""

    __slots__ = ("_scenario_id", "_values")

    def __init__(self, scenario_id: str = "", values: Mapping[Hashable, Any] | None = None):
        self._scenario_id = scenario_id
        self._values = MappingProxyType(dict(values or {}))

    @property
    def scenario_id(self) -> str:
        """Identifier of the scenario this context belongs to."""
        return self._scenario_id

    def with_value(self, key: Hashable, value: Any) -> ScenarioContext:
        """Return a new context holding ``value`` under ``key``."""
        values = dict(self._values)
        values[key] = value
        return ScenarioContext(self._scenario_id, values)

    def __getitem__(self, key: Hashable) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"ScenarioContext(scenario_id={self._scenario_id!r}, keys={list(self._values)!r})"


class ScenarioState(Generic[T]):
    """Typed slot in a ScenarioContext.

    Each (type, key) pair is one slot, so two states of different types never
    overwrite each other even under the same key.
    """

    def __init__(
        self,
        type_: type[T],
        key: str = DEFAULT_KEY,
        factory: Callable[[], T] | None = None,
    ):
        """Initialize a state slot.

        Args:
            type_: Declared type of the stored value
            key: Slot name within the context (default: "default")
            factory: Builds the zero value returned when the slot is empty.
                Defaults to calling ``type_`` (for a parameterized type such
                as ``dict[str, int]``, its unparameterized class) with no
                arguments.
        """
        self.type = type_
        self.key = key
        # isinstance() rejects parameterized generics; check the bare class
        self._runtime_type: type = get_origin(type_) or type_
        self._factory = factory or self._runtime_type

    @property
    def slot(self) -> tuple[type[T], str]:
        """Key under which values are stored in the context."""
        return (self.type, self.key)

    def enrich(self, ctx: ScenarioContext, data: T) -> ScenarioContext:
        """Attach ``data`` to a copy of ``ctx`` and return the copy."""
        return ctx.with_value(self.slot, data)

    def retrieve(self, ctx: ScenarioContext) -> T:
        """Return the stored value, or a fresh zero value if none is attached."""
        data = ctx.get(self.slot)
        if isinstance(data, self._runtime_type):
            return data
        return self._factory()

    def __repr__(self) -> str:
        name = repr(self.type) if get_origin(self.type) else self.type.__name__
        return f"ScenarioState({name}, key={self.key!r})"
