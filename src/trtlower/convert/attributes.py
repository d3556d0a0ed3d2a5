from __future__ import annotations

from types import MappingProxyType
from typing import Any, Iterable, Mapping

from trtlower.errors import FatalError
from trtlower.graph.node import AttrType, AttrValue, NodeDef


class NodeAttributes:
    """Typed read-only view over a node's attributes.

    `get` is for attributes the op definition guarantees; a missing key there
    is a bug, not a user error. `get_or` is for optional attributes.
    """

    __slots__ = ("_node_name", "_attrs")

    def __init__(self, node: NodeDef) -> None:
        self._node_name = node.name
        self._attrs: Mapping[str, AttrValue] = MappingProxyType(dict(node.attrs))

    def __contains__(self, key: str) -> bool:
        return key in self._attrs

    def count(self, key: str) -> int:
        return 1 if key in self._attrs else 0

    def keys(self) -> Iterable[str]:
        return sorted(self._attrs)

    def raw(self, key: str) -> AttrValue:
        attr = self._attrs.get(key)
        if attr is None:
            raise FatalError(f"Attribute {key!r} not found on node {self._node_name}")
        return attr

    def get(self, key: str, attr_type: AttrType) -> Any:
        return _coerce(self.raw(key), attr_type, key, self._node_name)

    def get_or(self, key: str, attr_type: AttrType, default: Any) -> Any:
        if key not in self._attrs:
            return default
        return self.get(key, attr_type)


def _coerce(attr: AttrValue, attr_type: AttrType, key: str, node_name: str) -> Any:
    if attr.type is attr_type:
        return attr.value
    # Lists of ints are legitimately read as float lists (plugin attributes).
    if attr_type is AttrType.LIST_FLOAT and attr.type is AttrType.LIST_INT:
        return tuple(float(v) for v in attr.value)
    if attr_type is AttrType.LIST_FLOAT and attr.type in (AttrType.FLOAT, AttrType.INT):
        return (float(attr.value),)
    if attr_type is AttrType.FLOAT and attr.type is AttrType.INT:
        return float(attr.value)
    raise FatalError(
        f"Attribute {key!r} on node {node_name} has type {attr.type.value}, requested {attr_type.value}"
    )
