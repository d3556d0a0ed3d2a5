from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from .dtypes import DataType


# None means unknown rank; -1 marks an unknown dim.
PartialShape = tuple[int, ...] | None


@dataclass(frozen=True, slots=True)
class TensorProperties:
    dtype: DataType
    shape: PartialShape

    @property
    def rank(self) -> int:
        return -1 if self.shape is None else len(self.shape)


@dataclass
class GraphProperties:
    """Per-node output shape/type inference results.

    Absence of a node is legal: shape inference may simply not have reached it.
    """

    _outputs: dict[str, list[TensorProperties]] = field(default_factory=dict)

    def set_output_properties(self, node_name: str, properties: Sequence[TensorProperties]) -> None:
        self._outputs[node_name] = list(properties)

    def add_output(self, node_name: str, dtype: DataType, shape: Sequence[int] | None) -> None:
        props = TensorProperties(dtype, None if shape is None else tuple(int(d) for d in shape))
        self._outputs.setdefault(node_name, []).append(props)

    def has_output_properties(self, node_name: str) -> bool:
        return node_name in self._outputs

    def get_output_properties(self, node_name: str) -> list[TensorProperties]:
        return self._outputs.get(node_name, [])
