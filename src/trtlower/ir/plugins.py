from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Protocol, Sequence

from .dtypes import DType, float32, int32
from .layers import OutputSpec
from .tensor import Shape

logger = logging.getLogger(__name__)


class PluginFieldType(enum.Enum):
	INT32 = "int32"
	FLOAT32 = "float32"


@dataclass(frozen=True, slots=True)
class PluginField:
	name: str
	data: tuple[float, ...]
	type: PluginFieldType

	@classmethod
	def int32(cls, name: str, value: int) -> PluginField:
		return cls(name, (int(value),), PluginFieldType.INT32)

	@classmethod
	def float32(cls, name: str, value: float) -> PluginField:
		return cls(name, (float(value),), PluginFieldType.FLOAT32)

	@property
	def scalar(self) -> float:
		return self.data[0]


class Plugin(Protocol):
	"""A backend layer implemented outside the built-in layer set."""

	plugin_type: str

	def get_output_dimensions(self, input_dims: list[Shape], input_dtypes: list[DType]) -> list[OutputSpec]: ...


class PluginCreator(Protocol):
	name: str
	version: str

	def create_plugin(self, name: str, fields: Sequence[PluginField]) -> Plugin | None: ...


class CustomOpPlugin(Plugin, Protocol):
	"""Plugin created for a whole source op; attributes arrive as float lists."""

	def set_attribute(self, key: str, values: list[float]) -> bool: ...


# =============================================================================
# Plugin Registry
# =============================================================================


@dataclass
class PluginRegistry:
	"""Creators keyed by (name, version)."""

	_creators: dict[tuple[str, str], PluginCreator] = field(default_factory=dict)

	def register_creator(self, creator: PluginCreator) -> None:
		key = (creator.name, creator.version)
		if key in self._creators:
			raise ValueError(f"Plugin creator {creator.name} v{creator.version} is already registered")
		self._creators[key] = creator

	def get_plugin_creator(self, name: str, version: str) -> PluginCreator | None:
		return self._creators.get((name, version))

	def creator_names(self) -> list[str]:
		return [f"{name}:{version}" for name, version in self._creators]

	@classmethod
	def default(cls) -> PluginRegistry:
		registry = cls()
		registry.register_creator(BatchedNMSPluginCreator())
		logger.debug(f"Plugin creators: {registry.creator_names()}")
		return registry


# =============================================================================
# BatchedNMS
# =============================================================================


@dataclass(slots=True)
class BatchedNMSPlugin:
	"""Batched non-max suppression.

	Inputs are boxes `(num_boxes, q, 4)` and scores `(num_boxes, num_classes)`.
	Outputs are num_detections `(1,)`, boxes `(keep_top_k, 4)`, scores
	`(keep_top_k, 1)` and classes `(keep_top_k, 1)`.
	"""

	share_location: bool
	background_label_id: int
	num_classes: int
	top_k: int
	keep_top_k: int
	score_threshold: float
	iou_threshold: float
	is_normalized: bool
	plugin_type: str = "BatchedNMS_TRT"

	def get_output_dimensions(self, input_dims: list[Shape], input_dtypes: list[DType]) -> list[OutputSpec]:
		if len(input_dims) != 2:
			raise ValueError(f"BatchedNMS expects 2 inputs, got {len(input_dims)}")
		k = self.keep_top_k
		return [((1,), int32), ((k, 4), float32), ((k, 1), float32), ((k, 1), float32)]


class BatchedNMSPluginCreator:
	name = "BatchedNMS_TRT"
	version = "1"

	_required = (
		"shareLocation",
		"backgroundLabelId",
		"numClasses",
		"topK",
		"keepTopK",
		"scoreThreshold",
		"iouThreshold",
		"isNormalized",
	)

	def create_plugin(self, name: str, fields: Sequence[PluginField]) -> BatchedNMSPlugin | None:
		values = {f.name: f.scalar for f in fields}
		missing = [key for key in self._required if key not in values]
		if missing:
			logger.warning(f"BatchedNMS plugin {name} is missing fields {missing}")
			return None
		return BatchedNMSPlugin(
			share_location=bool(values["shareLocation"]),
			background_label_id=int(values["backgroundLabelId"]),
			num_classes=int(values["numClasses"]),
			top_k=int(values["topK"]),
			keep_top_k=int(values["keepTopK"]),
			score_threshold=float(values["scoreThreshold"]),
			iou_threshold=float(values["iouThreshold"]),
			is_normalized=bool(values["isNormalized"]),
		)


# =============================================================================
# Custom Op Plugin Factory
# =============================================================================


@dataclass
class PluginFactory:
	"""Maps source op types to constructors of custom-op plugins.

	Op types registered here bypass the static converter table entirely.
	"""

	_constructors: dict[str, Callable[[], CustomOpPlugin]] = field(default_factory=dict)

	def register(self, op_type: str, constructor: Callable[[], CustomOpPlugin]) -> None:
		self._constructors[op_type] = constructor

	def is_plugin(self, op_type: str) -> bool:
		return op_type in self._constructors

	def create_plugin(self, op_type: str) -> CustomOpPlugin | None:
		constructor = self._constructors.get(op_type)
		return constructor() if constructor is not None else None

	def op_types(self) -> Iterable[str]:
		return sorted(self._constructors)
