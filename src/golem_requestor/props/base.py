"""Explicit-schema property mapping.

A property model is a dataclass that declares, in order, which marketplace key
feeds each of its fields:

    @dataclass
    class NodeInfo:
        FIELDS: ClassVar[tuple[PropertyField, ...]] = (
            PropertyField("name", "golem.node.id.name", optional=True),
        )
        name: str | None = None

`from_properties` is the one mapping routine shared by every model. It ignores
keys the model does not declare, so several models can be loaded from the same
dictionary and each will only pick up its own data.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, ClassVar, Protocol, TypeVar

from golem_requestor.errors import InvalidPropertiesError

Props = Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class PropertyField:
    """One `(field name, property key)` schema entry."""

    name: str
    key: str
    optional: bool = False
    validate: Callable[[Any], Any] | None = None


class PropertyModel(Protocol):
    FIELDS: ClassVar[tuple[PropertyField, ...]]


M = TypeVar("M", bound=PropertyModel)


def keys(model: type[PropertyModel] | PropertyModel) -> dict[str, str]:
    """Return a mapping between the model's field names and the property keys."""

    return {f.name: f.key for f in model.FIELDS}


def from_properties(model: type[M], props: Props) -> M:
    """Initialize `model` from a dictionary of properties.

    Raises:
        InvalidPropertiesError: a required key is missing, a validator rejected
            a value, or the model's `custom_mapping` refused the result.
    """

    values: dict[str, Any] = {}
    for spec in model.FIELDS:
        if spec.key not in props:
            if not spec.optional:
                raise InvalidPropertiesError(f"missing required property: {spec.key!r}")
            continue
        value = props[spec.key]
        if spec.validate is not None:
            try:
                value = spec.validate(value)
            except (TypeError, ValueError, ArithmeticError) as e:
                raise InvalidPropertiesError(f"{spec.key}: {e}") from e
        values[spec.name] = value

    instance = model(**values)

    # Custom mapping runs last so it can look at the already-converted fields.
    custom_mapping = getattr(instance, "custom_mapping", None)
    if custom_mapping is not None:
        custom_mapping(props)
    return instance
