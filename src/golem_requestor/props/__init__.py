"""Marketplace property models.

Property dictionaries are flat `{"golem.some.key": value}` maps exchanged with
the market. Models declare an explicit schema of `PropertyField`s and are loaded
with the generic `from_properties`.
"""

from golem_requestor.props.base import PropertyField, from_properties, keys
from golem_requestor.props.builder import DemandBuilder
from golem_requestor.props.models import Activity, NodeInfo

__all__ = [
    "Activity",
    "DemandBuilder",
    "NodeInfo",
    "PropertyField",
    "from_properties",
    "keys",
]
