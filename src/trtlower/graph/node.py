"""Source graph definitions.

This is a deliberately thin stand-in for a serialized dataflow graph: nodes
with an op type, ordered input references and a typed attribute map. Parsing
any on-disk format into these objects is the caller's job.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Iterator, NamedTuple, Sequence

import numpy as np

from .dtypes import DataType


CONTROL_PREFIX = "^"


class AttrType(enum.Enum):
    STRING = "s"
    INT = "i"
    FLOAT = "f"
    BOOL = "b"
    TYPE = "type"
    SHAPE = "shape"
    TENSOR = "tensor"
    LIST_INT = "list(i)"
    LIST_FLOAT = "list(f)"
    LIST_TYPE = "list(type)"


@dataclass(frozen=True, slots=True)
class AttrValue:
    """One typed attribute value."""

    type: AttrType
    value: Any

    @classmethod
    def s(cls, value: str) -> AttrValue:
        return cls(AttrType.STRING, str(value))

    @classmethod
    def i(cls, value: int) -> AttrValue:
        return cls(AttrType.INT, int(value))

    @classmethod
    def f(cls, value: float) -> AttrValue:
        return cls(AttrType.FLOAT, float(value))

    @classmethod
    def b(cls, value: bool) -> AttrValue:
        return cls(AttrType.BOOL, bool(value))

    @classmethod
    def dtype(cls, value: DataType) -> AttrValue:
        return cls(AttrType.TYPE, value)

    @classmethod
    def shape(cls, dims: Sequence[int] | None) -> AttrValue:
        return cls(AttrType.SHAPE, None if dims is None else tuple(int(d) for d in dims))

    @classmethod
    def tensor(cls, value: np.ndarray) -> AttrValue:
        return cls(AttrType.TENSOR, np.asarray(value))

    @classmethod
    def list_i(cls, values: Sequence[int]) -> AttrValue:
        return cls(AttrType.LIST_INT, tuple(int(v) for v in values))

    @classmethod
    def list_f(cls, values: Sequence[float]) -> AttrValue:
        return cls(AttrType.LIST_FLOAT, tuple(float(v) for v in values))

    @classmethod
    def list_type(cls, values: Sequence[DataType]) -> AttrValue:
        return cls(AttrType.LIST_TYPE, tuple(values))

    @classmethod
    def infer(cls, value: Any) -> AttrValue:
        """Wrap a plain Python value, picking the attribute type from its type."""
        if isinstance(value, AttrValue):
            return value
        if isinstance(value, bool):
            return cls.b(value)
        if isinstance(value, (int, np.integer)):
            return cls.i(int(value))
        if isinstance(value, (float, np.floating)):
            return cls.f(float(value))
        if isinstance(value, str):
            return cls.s(value)
        if isinstance(value, DataType):
            return cls.dtype(value)
        if isinstance(value, np.ndarray):
            return cls.tensor(value)
        if isinstance(value, (list, tuple)):
            if all(isinstance(v, DataType) for v in value) and value:
                return cls.list_type(value)
            if all(isinstance(v, (int, np.integer)) and not isinstance(v, bool) for v in value):
                return cls.list_i(value)
            return cls.list_f(value)
        raise TypeError(f"Cannot infer attribute type for {value!r}")


class InputRef(NamedTuple):
    node: str
    index: int
    is_control: bool


def parse_input_name(ref: str) -> InputRef:
    """Split `"node"`, `"node:k"` or `"^node"` into its parts."""
    if ref.startswith(CONTROL_PREFIX):
        return InputRef(ref[len(CONTROL_PREFIX):], -1, True)
    node, sep, index = ref.rpartition(":")
    if sep and index.isdigit():
        return InputRef(node, int(index), False)
    return InputRef(ref, 0, False)


def canonical_input_name(ref: str) -> str:
    """Name under which a value is stored: `node` for output 0, `node:k` otherwise."""
    node, index, _ = parse_input_name(ref)
    return node if index == 0 else f"{node}:{index}"


@dataclass
class NodeDef:
    name: str
    op: str
    inputs: list[str] = field(default_factory=list)
    attrs: dict[str, AttrValue] = field(default_factory=dict)

    @classmethod
    def make(cls, name: str, op: str, inputs: Sequence[str] = (), **attrs: Any) -> NodeDef:
        return cls(name=name, op=op, inputs=list(inputs), attrs={k: AttrValue.infer(v) for k, v in attrs.items()})

    def data_inputs(self) -> list[str]:
        return [ref for ref in self.inputs if not ref.startswith(CONTROL_PREFIX)]


@dataclass
class GraphDef:
    """Nodes in topological order."""

    nodes: list[NodeDef] = field(default_factory=list)

    def add(self, node: NodeDef) -> NodeDef:
        self.nodes.append(node)
        return node

    def node(self, name: str) -> NodeDef:
        for n in self.nodes:
            if n.name == name:
                return n
        raise KeyError(name)

    def __iter__(self) -> Iterator[NodeDef]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)
