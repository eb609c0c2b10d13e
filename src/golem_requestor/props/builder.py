"""Demand construction from property models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from golem_requestor.props.base import PropertyModel


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    return value


class DemandBuilder:
    """Build the properties and constraints of a Demand from property models.

    The result is what the market matches against provider Offers:

        >>> builder = DemandBuilder()
        >>> builder.add(NodeInfo(name="a node", subnet_tag="testnet"))
        >>> builder.ensure("(golem.runtime.name=vm)")
        >>> builder.properties
        {'golem.node.id.name': 'a node', 'golem.node.debug.subnet': 'testnet'}
    """

    def __init__(self) -> None:
        self._properties: dict[str, Any] = {}
        self._constraints: list[str] = []

    def __repr__(self) -> str:
        return f"DemandBuilder(properties={self._properties!r}, constraints={self._constraints!r})"

    @property
    def properties(self) -> dict[str, Any]:
        return dict(self._properties)

    @property
    def constraints(self) -> str:
        if not self._constraints:
            return "()"
        if len(self._constraints) == 1:
            return self._constraints[0]
        rules = "\n\t".join(self._constraints)
        return f"(&{rules})"

    def __setitem__(self, key: str, value: Any) -> None:
        self._properties[key] = _encode(value)

    def ensure(self, constraint: str) -> None:
        self._constraints.append(constraint)

    def add(self, model: PropertyModel) -> None:
        for spec in model.FIELDS:
            value = getattr(model, spec.name)
            if value is None:
                continue
            self._properties[spec.key] = _encode(value)
