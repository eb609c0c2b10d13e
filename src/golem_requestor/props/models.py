"""Node and activity property models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, ClassVar

from golem_requestor.errors import InvalidPropertiesError
from golem_requestor.props.base import PropertyField, Props


def as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return value.strip().lower() == "true"
    raise ValueError(f"not a boolean: {value!r}")


def as_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    return Decimal(str(value))


def as_datetime(value: Any) -> datetime:
    """Market timestamps are epoch milliseconds."""

    if isinstance(value, datetime):
        return value
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValueError(f"not an epoch timestamp: {value!r}")
    return datetime.fromtimestamp(value / 1000, tz=UTC)


@dataclass
class NodeInfo:
    """Information about a node taking part in the market."""

    FIELDS: ClassVar[tuple[PropertyField, ...]] = (
        PropertyField("name", "golem.node.id.name", optional=True, validate=str),
        PropertyField("subnet_tag", "golem.node.debug.subnet", optional=True, validate=str),
    )

    # Human-readable name of the node.
    name: str | None = None
    # Subnet within which Demands and Offers are matched.
    subnet_tag: str | None = None


@dataclass
class Activity:
    """Activity-related properties."""

    FIELDS: ClassVar[tuple[PropertyField, ...]] = (
        PropertyField("cost_cap", "golem.activity.cost_cap", optional=True, validate=as_decimal),
        PropertyField(
            "cost_warning", "golem.activity.cost_warning", optional=True, validate=as_decimal
        ),
        PropertyField("timeout_secs", "golem.activity.timeout_secs", optional=True, validate=float),
        PropertyField(
            "expiration", "golem.srv.comp.expiration", optional=True, validate=as_datetime
        ),
        PropertyField(
            "multi_activity", "golem.srv.caps.multi-activity", optional=True, validate=as_bool
        ),
    )

    # Hard cap on the total cost of the activity; the provider may kill an
    # activity that exceeds it.
    cost_cap: Decimal | None = None
    # Soft cap; reaching it should make the provider send a debit note.
    cost_warning: Decimal | None = None
    # Batch computation timeout applied by the provider.
    timeout_secs: float | None = None
    expiration: datetime | None = None
    # Whether more than one activity may run on a single agreement.
    multi_activity: bool | None = None

    def custom_mapping(self, _props: Props) -> None:
        if self.cost_cap is not None and self.cost_warning is not None:
            if self.cost_warning > self.cost_cap:
                raise InvalidPropertiesError("cost_warning exceeds cost_cap")
        if self.timeout_secs is not None and self.timeout_secs < 0:
            raise InvalidPropertiesError("timeout_secs must be >= 0")
