from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from .dtypes import MAX_DIMS, DType
from .layers import (
	ActivationLayer,
	ActivationType,
	ConcatenationLayer,
	ConstantLayer,
	ConvolutionLayer,
	DeconvolutionLayer,
	ElementWiseLayer,
	ElementWiseOperation,
	FullyConnectedLayer,
	GatherLayer,
	Layer,
	MatrixMultiplyLayer,
	MatrixOperation,
	NetworkDefinitionError,
	PaddingLayer,
	PluginLayer,
	PoolingLayer,
	PoolingType,
	ReduceLayer,
	ReduceOperation,
	ScaleLayer,
	ScaleMode,
	ShuffleLayer,
	SliceLayer,
	SoftMaxLayer,
	TopKLayer,
	TopKOperation,
	UnaryLayer,
	UnaryOperation,
)
from .tensor import Shape, Tensor, Weights, as_shape

logger = logging.getLogger(__name__)


@dataclass
class Network:
	"""An in-process backend network definition.

	Design choices (on purpose):
	- Layers are appended in creation order; the lowering builds forward.
	- Every `add_*` call infers output dims immediately and raises
	  `NetworkDefinitionError` instead of returning a null layer.
	- Tensors never carry the implicit batch dimension.
	"""

	name: str = "network"
	layers: list[Layer] = field(default_factory=list)
	tensors: list[Tensor] = field(default_factory=list)
	inputs: list[Tensor] = field(default_factory=list)
	outputs: list[Tensor] = field(default_factory=list)
	_name_counters: dict[str, int] = field(default_factory=dict)

	def _fresh_name(self, prefix: str) -> str:
		n = self._name_counters.get(prefix, 0) + 1
		self._name_counters[prefix] = n
		return f"{prefix}_{n}"

	def _new_tensor(self, *, name: str | None, dims: Shape, dtype: DType) -> Tensor:
		if len(dims) > MAX_DIMS:
			raise NetworkDefinitionError(f"Tensor rank {len(dims)} exceeds the maximum of {MAX_DIMS}")
		t = Tensor(network=self, name=name or f"(Unnamed Tensor {len(self.tensors)})", dims=dims, dtype=dtype)
		self.tensors.append(t)
		return t

	def _check_owned(self, tensor: Tensor) -> None:
		if tensor.network is not self:
			raise NetworkDefinitionError(f"Tensor {tensor.name!r} does not belong to network {self.name!r}")

	# -------------------------------------------------------------------------
	# Inputs / Outputs
	# -------------------------------------------------------------------------

	def add_input(self, name: str, dtype: DType, dims: Sequence[int]) -> Tensor:
		if any(t.name == name for t in self.inputs):
			raise NetworkDefinitionError(f"Network already has an input named {name!r}")
		shape = as_shape(dims)
		if any(d <= 0 for d in shape):
			raise NetworkDefinitionError(f"Input {name!r} must have static positive dims, got {shape}")
		t = self._new_tensor(name=name, dims=shape, dtype=dtype)
		t.is_network_input = True
		self.inputs.append(t)
		return t

	def mark_output(self, tensor: Tensor) -> None:
		self._check_owned(tensor)
		if tensor.is_network_output:
			raise NetworkDefinitionError(f"Tensor {tensor.name!r} is already an output")
		tensor.is_network_output = True
		self.outputs.append(tensor)

	# -------------------------------------------------------------------------
	# Layers
	# -------------------------------------------------------------------------

	def _add_layer(self, layer: Layer) -> Layer:
		for t in layer.inputs:
			self._check_owned(t)

		specs = layer.infer_outputs()
		for t in layer.inputs:
			t.add_user(layer)
		for dims, dtype in specs:
			out = self._new_tensor(name=None, dims=as_shape(dims), dtype=dtype)
			out.producer = layer
			layer.outputs.append(out)

		self.layers.append(layer)
		logger.debug(f"Added layer {layer.name} ({layer.kind}) -> {[t.dims for t in layer.outputs]}")
		return layer

	def add_constant(self, dims: Sequence[int], weights: Weights, *, name: str | None = None) -> Layer:
		layer = ConstantLayer(name=name or self._fresh_name("constant"), inputs=[], dims=as_shape(dims), weights=weights)
		return self._add_layer(layer)

	def add_shuffle(
		self,
		x: Tensor,
		*,
		first_transpose: Sequence[int] | None = None,
		reshape_dims: Sequence[int] | None = None,
		second_transpose: Sequence[int] | None = None,
		name: str | None = None,
	) -> Layer:
		layer = ShuffleLayer(
			name=name or self._fresh_name("shuffle"),
			inputs=[x],
			first_transpose=None if first_transpose is None else tuple(first_transpose),
			reshape_dims=None if reshape_dims is None else as_shape(reshape_dims),
			second_transpose=None if second_transpose is None else tuple(second_transpose),
		)
		return self._add_layer(layer)

	def add_elementwise(self, a: Tensor, b: Tensor, operation: ElementWiseOperation, *, name: str | None = None) -> Layer:
		layer = ElementWiseLayer(name=name or self._fresh_name("elementwise"), inputs=[a, b], operation=operation)
		return self._add_layer(layer)

	def add_convolution(
		self,
		x: Tensor,
		nb_output_maps: int,
		kernel_size: tuple[int, int],
		kernel: Weights,
		bias: Weights,
		*,
		stride: tuple[int, int] = (1, 1),
		padding: tuple[int, int] = (0, 0),
		dilation: tuple[int, int] = (1, 1),
		num_groups: int = 1,
		name: str | None = None,
	) -> Layer:
		layer = ConvolutionLayer(
			name=name or self._fresh_name("conv"),
			inputs=[x],
			nb_output_maps=nb_output_maps,
			kernel_size=tuple(kernel_size),
			kernel=kernel,
			bias=bias,
			stride=tuple(stride),
			padding=tuple(padding),
			dilation=tuple(dilation),
			num_groups=num_groups,
		)
		return self._add_layer(layer)

	def add_deconvolution(
		self,
		x: Tensor,
		nb_output_maps: int,
		kernel_size: tuple[int, int],
		kernel: Weights,
		bias: Weights,
		*,
		stride: tuple[int, int] = (1, 1),
		padding: tuple[int, int] = (0, 0),
		num_groups: int = 1,
		name: str | None = None,
	) -> Layer:
		layer = DeconvolutionLayer(
			name=name or self._fresh_name("deconv"),
			inputs=[x],
			nb_output_maps=nb_output_maps,
			kernel_size=tuple(kernel_size),
			kernel=kernel,
			bias=bias,
			stride=tuple(stride),
			padding=tuple(padding),
			num_groups=num_groups,
		)
		return self._add_layer(layer)

	def add_padding(
		self, x: Tensor, pre_padding: tuple[int, int], post_padding: tuple[int, int], *, name: str | None = None
	) -> Layer:
		layer = PaddingLayer(
			name=name or self._fresh_name("padding"),
			inputs=[x],
			pre_padding=tuple(pre_padding),
			post_padding=tuple(post_padding),
		)
		return self._add_layer(layer)

	def add_pooling(
		self,
		x: Tensor,
		type: PoolingType,
		window_size: tuple[int, int],
		*,
		stride: tuple[int, int] = (1, 1),
		padding: tuple[int, int] = (0, 0),
		name: str | None = None,
	) -> Layer:
		layer = PoolingLayer(
			name=name or self._fresh_name("pool"),
			inputs=[x],
			type=type,
			window_size=tuple(window_size),
			stride=tuple(stride),
			padding=tuple(padding),
		)
		return self._add_layer(layer)

	def add_activation(self, x: Tensor, type: ActivationType, *, name: str | None = None) -> Layer:
		layer = ActivationLayer(name=name or self._fresh_name("activation"), inputs=[x], type=type)
		return self._add_layer(layer)

	def add_scale(
		self, x: Tensor, mode: ScaleMode, shift: Weights, scale: Weights, power: Weights, *, name: str | None = None
	) -> Layer:
		layer = ScaleLayer(
			name=name or self._fresh_name("scale"), inputs=[x], mode=mode, shift=shift, scale=scale, power=power
		)
		return self._add_layer(layer)

	def add_unary(self, x: Tensor, operation: UnaryOperation, *, name: str | None = None) -> Layer:
		layer = UnaryLayer(name=name or self._fresh_name("unary"), inputs=[x], operation=operation)
		return self._add_layer(layer)

	def add_reduce(
		self, x: Tensor, operation: ReduceOperation, axes: int, keep_dims: bool, *, name: str | None = None
	) -> Layer:
		layer = ReduceLayer(
			name=name or self._fresh_name("reduce"), inputs=[x], operation=operation, axes=axes, keep_dims=keep_dims
		)
		return self._add_layer(layer)

	def add_concatenation(self, inputs: Sequence[Tensor], axis: int, *, name: str | None = None) -> Layer:
		layer = ConcatenationLayer(name=name or self._fresh_name("concat"), inputs=list(inputs), axis=axis)
		return self._add_layer(layer)

	def add_slice(
		self, x: Tensor, start: Sequence[int], size: Sequence[int], stride: Sequence[int], *, name: str | None = None
	) -> Layer:
		layer = SliceLayer(
			name=name or self._fresh_name("slice"),
			inputs=[x],
			start=as_shape(start),
			size=as_shape(size),
			stride=as_shape(stride),
		)
		return self._add_layer(layer)

	def add_gather(self, data: Tensor, indices: Tensor, axis: int, *, name: str | None = None) -> Layer:
		layer = GatherLayer(name=name or self._fresh_name("gather"), inputs=[data, indices], axis=axis)
		return self._add_layer(layer)

	def add_matrix_multiply(
		self, a: Tensor, op0: MatrixOperation, b: Tensor, op1: MatrixOperation, *, name: str | None = None
	) -> Layer:
		layer = MatrixMultiplyLayer(name=name or self._fresh_name("matmul"), inputs=[a, b], op0=op0, op1=op1)
		return self._add_layer(layer)

	def add_fully_connected(
		self, x: Tensor, nb_outputs: int, kernel: Weights, bias: Weights, *, name: str | None = None
	) -> Layer:
		layer = FullyConnectedLayer(
			name=name or self._fresh_name("fc"), inputs=[x], nb_outputs=nb_outputs, kernel=kernel, bias=bias
		)
		return self._add_layer(layer)

	def add_softmax(self, x: Tensor, axes: int, *, name: str | None = None) -> Layer:
		layer = SoftMaxLayer(name=name or self._fresh_name("softmax"), inputs=[x], axes=axes)
		return self._add_layer(layer)

	def add_topk(self, x: Tensor, operation: TopKOperation, k: int, axes: int, *, name: str | None = None) -> Layer:
		layer = TopKLayer(name=name or self._fresh_name("topk"), inputs=[x], operation=operation, k=k, axes=axes)
		return self._add_layer(layer)

	def add_plugin(self, inputs: Sequence[Tensor], plugin: Any, *, name: str | None = None) -> Layer:
		layer = PluginLayer(name=name or self._fresh_name("plugin"), inputs=list(inputs), plugin=plugin)
		return self._add_layer(layer)

	# -------------------------------------------------------------------------
	# Introspection
	# -------------------------------------------------------------------------

	@property
	def num_layers(self) -> int:
		return len(self.layers)

	def layers_of_kind(self, kind: str) -> list[Layer]:
		return [layer for layer in self.layers if layer.kind == kind]

	def summary(self) -> str:
		lines: list[str] = [
			f"Network(name={self.name!r}, layers={len(self.layers)}, "
			f"inputs={len(self.inputs)}, outputs={len(self.outputs)})"
		]
		for t in self.inputs:
			lines.append(f"> input {t.name}:{t.dims} {t.dtype}")
		for layer in self.layers:
			ins = ", ".join(f"{t.name}:{t.dims}" for t in layer.inputs)
			outs = ", ".join(f"{t.name}:{t.dims}" for t in layer.outputs)
			detail = layer.describe()
			detail = f" [{detail}]" if detail else ""
			lines.append(f"- {layer.name}: {layer.kind}({ins}){detail} -> {outs}")
		for t in self.outputs:
			lines.append(f"< output {t.name}:{t.dims} {t.dtype}")
		return "\n".join(lines)
