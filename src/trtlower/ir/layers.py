from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .dtypes import DType, int32
from .tensor import Shape, Weights

if TYPE_CHECKING:
	from .tensor import Tensor


OutputSpec = tuple[Shape, DType]


class NetworkDefinitionError(ValueError):
	pass


class ElementWiseOperation(enum.Enum):
	SUM = "sum"
	PROD = "prod"
	MAX = "max"
	MIN = "min"
	SUB = "sub"
	DIV = "div"
	POW = "pow"


class ActivationType(enum.Enum):
	RELU = "relu"
	SIGMOID = "sigmoid"
	TANH = "tanh"


class UnaryOperation(enum.Enum):
	EXP = "exp"
	LOG = "log"
	SQRT = "sqrt"
	RECIP = "recip"
	ABS = "abs"
	NEG = "neg"
	SIN = "sin"
	COS = "cos"
	TAN = "tan"
	SINH = "sinh"
	COSH = "cosh"
	ASIN = "asin"
	ACOS = "acos"
	ATAN = "atan"
	ASINH = "asinh"
	ACOSH = "acosh"
	ATANH = "atanh"
	CEIL = "ceil"
	FLOOR = "floor"


class PoolingType(enum.Enum):
	MAX = "max"
	AVERAGE = "average"


class ScaleMode(enum.Enum):
	UNIFORM = "uniform"
	CHANNEL = "channel"
	ELEMENTWISE = "elementwise"


class ReduceOperation(enum.Enum):
	SUM = "sum"
	PROD = "prod"
	MAX = "max"
	MIN = "min"
	AVG = "avg"


class TopKOperation(enum.Enum):
	MAX = "max"
	MIN = "min"


class MatrixOperation(enum.Enum):
	NONE = "none"
	TRANSPOSE = "transpose"
	VECTOR = "vector"


def volume(dims: Shape) -> int:
	n = 1
	for d in dims:
		n *= d
	return n


def _is_static(dims: Shape) -> bool:
	return all(d >= 0 for d in dims)


def _check_axes(axes: int, rank: int, what: str) -> list[int]:
	if axes <= 0 or axes >= (1 << rank):
		raise NetworkDefinitionError(f"{what}: axes mask {axes:#b} out of range for rank {rank}")
	return [i for i in range(rank) if axes & (1 << i)]


def _window_output(size: int, kernel: int, stride: int, pad: int, dilation: int = 1) -> int:
	effective = (kernel - 1) * dilation + 1
	return (size + 2 * pad - effective) // stride + 1


def _hw(pair: tuple[int, int] | list[int], what: str) -> tuple[int, int]:
	if len(pair) != 2:
		raise NetworkDefinitionError(f"{what} must have 2 entries, got {tuple(pair)}")
	return int(pair[0]), int(pair[1])


@dataclass(slots=True, eq=False)
class Layer:
	"""Base class for backend layers.

	Output tensors are created by `Network` from whatever `infer_outputs`
	returns, so a layer built outside a network has no outputs.
	"""

	name: str
	inputs: list[Tensor]
	outputs: list[Tensor] = field(default_factory=list)

	@property
	def kind(self) -> str:
		return self.__class__.__name__.removesuffix("Layer")

	@property
	def num_outputs(self) -> int:
		return len(self.outputs)

	def get_output(self, index: int = 0) -> Tensor:
		return self.outputs[index]

	def describe(self) -> str:
		return ""

	def infer_outputs(self) -> list[OutputSpec]:
		raise NotImplementedError

	def _expect_inputs(self, n: int) -> None:
		if len(self.inputs) != n:
			raise NetworkDefinitionError(f"{self.kind} expects {n} input(s), got {len(self.inputs)}")


@dataclass(slots=True, eq=False, kw_only=True)
class ConstantLayer(Layer):
	dims: Shape
	weights: Weights

	def infer_outputs(self) -> list[OutputSpec]:
		self._expect_inputs(0)
		if not _is_static(self.dims):
			raise NetworkDefinitionError(f"Constant dims must be static, got {self.dims}")
		if self.weights.values.size != volume(self.dims):
			raise NetworkDefinitionError(
				f"Constant of dims {self.dims} needs {volume(self.dims)} values, got {self.weights.values.size}"
			)
		return [(self.dims, self.weights.dtype)]


@dataclass(slots=True, eq=False, kw_only=True)
class ShuffleLayer(Layer):
	"""Transpose, reshape, transpose: the backend's only data-movement layer."""

	first_transpose: tuple[int, ...] | None = None
	reshape_dims: Shape | None = None
	second_transpose: tuple[int, ...] | None = None

	def describe(self) -> str:
		parts = []
		if self.first_transpose is not None:
			parts.append(f"perm={self.first_transpose}")
		if self.reshape_dims is not None:
			parts.append(f"reshape={self.reshape_dims}")
		if self.second_transpose is not None:
			parts.append(f"perm2={self.second_transpose}")
		return ", ".join(parts)

	def infer_outputs(self) -> list[OutputSpec]:
		self._expect_inputs(1)
		x = self.inputs[0]
		dims = x.dims
		if self.first_transpose is not None:
			dims = _permute(dims, self.first_transpose)
		if self.reshape_dims is not None:
			dims = _resolve_reshape(dims, self.reshape_dims)
		if self.second_transpose is not None:
			dims = _permute(dims, self.second_transpose)
		return [(dims, x.dtype)]


def _permute(dims: Shape, perm: tuple[int, ...]) -> Shape:
	if sorted(perm) != list(range(len(dims))):
		raise NetworkDefinitionError(f"Permutation {perm} is invalid for dims {dims}")
	return tuple(dims[p] for p in perm)


def _resolve_reshape(src: Shape, target: Shape) -> Shape:
	out: list[int] = []
	for i, d in enumerate(target):
		if d == 0:
			if i >= len(src):
				raise NetworkDefinitionError(f"Reshape copies dim {i} but input only has rank {len(src)}")
			out.append(src[i])
		elif d < -1:
			raise NetworkDefinitionError(f"Invalid reshape dim {d} in {target}")
		else:
			out.append(d)
	if out.count(-1) > 1:
		raise NetworkDefinitionError(f"Reshape dims {target} infer more than one dim")

	total = volume(src) if _is_static(src) else -1
	if -1 in out:
		if total < 0:
			return tuple(out)
		known = volume(tuple(d for d in out if d != -1))
		if known == 0 or total % known != 0:
			raise NetworkDefinitionError(f"Cannot reshape {src} to {target}")
		out[out.index(-1)] = total // known
	elif total >= 0 and volume(tuple(out)) != total:
		raise NetworkDefinitionError(f"Cannot reshape {src} to {target}: element counts differ")
	return tuple(out)


@dataclass(slots=True, eq=False, kw_only=True)
class ElementWiseLayer(Layer):
	operation: ElementWiseOperation

	def describe(self) -> str:
		return self.operation.name

	def infer_outputs(self) -> list[OutputSpec]:
		self._expect_inputs(2)
		a, b = self.inputs
		if a.rank != b.rank:
			raise NetworkDefinitionError(f"ElementWise rank mismatch: {a.dims} vs {b.dims}")
		if a.dtype != b.dtype:
			raise NetworkDefinitionError(f"ElementWise dtype mismatch: {a.dtype} vs {b.dtype}")
		dims = []
		for da, db in zip(a.dims, b.dims):
			if da == db or db == 1:
				dims.append(da)
			elif da == 1:
				dims.append(db)
			else:
				raise NetworkDefinitionError(f"ElementWise cannot broadcast {a.dims} with {b.dims}")
		return [(tuple(dims), a.dtype)]


@dataclass(slots=True, eq=False, kw_only=True)
class ConvolutionLayer(Layer):
	nb_output_maps: int
	kernel_size: tuple[int, int]
	kernel: Weights
	bias: Weights
	stride: tuple[int, int] = (1, 1)
	padding: tuple[int, int] = (0, 0)
	dilation: tuple[int, int] = (1, 1)
	num_groups: int = 1

	def describe(self) -> str:
		return (
			f"k={self.kernel_size}, out={self.nb_output_maps}, s={self.stride}, "
			f"p={self.padding}, d={self.dilation}, g={self.num_groups}"
		)

	def _check_common(self, x: Tensor) -> tuple[int, int, int]:
		if x.rank < 3:
			raise NetworkDefinitionError(f"{self.kind} expects at least CHW input, got {x.dims}")
		c, h, w = x.dims[-3:]
		if self.num_groups <= 0 or c % self.num_groups != 0:
			raise NetworkDefinitionError(f"{self.kind}: {c} input channels not divisible into {self.num_groups} groups")
		if self.bias.count not in (0, self.nb_output_maps):
			raise NetworkDefinitionError(f"{self.kind}: bias has {self.bias.count} values for {self.nb_output_maps} outputs")
		return c, h, w

	def infer_outputs(self) -> list[OutputSpec]:
		self._expect_inputs(1)
		x = self.inputs[0]
		c, h, w = self._check_common(x)
		kh, kw = _hw(self.kernel_size, "kernel_size")
		expected = self.nb_output_maps * (c // self.num_groups) * kh * kw
		if self.kernel.count != expected:
			raise NetworkDefinitionError(f"Convolution kernel has {self.kernel.count} values, expected {expected}")
		sh, sw = _hw(self.stride, "stride")
		ph, pw = _hw(self.padding, "padding")
		dh, dw = _hw(self.dilation, "dilation")
		oh = _window_output(h, kh, sh, ph, dh)
		ow = _window_output(w, kw, sw, pw, dw)
		if oh <= 0 or ow <= 0:
			raise NetworkDefinitionError(f"Convolution output would be empty for input {x.dims}")
		return [(x.dims[:-3] + (self.nb_output_maps, oh, ow), x.dtype)]


@dataclass(slots=True, eq=False, kw_only=True)
class DeconvolutionLayer(ConvolutionLayer):
	def infer_outputs(self) -> list[OutputSpec]:
		self._expect_inputs(1)
		x = self.inputs[0]
		c, h, w = self._check_common(x)
		if self.nb_output_maps % self.num_groups != 0:
			raise NetworkDefinitionError("Deconvolution outputs not divisible into groups")
		kh, kw = _hw(self.kernel_size, "kernel_size")
		expected = c * (self.nb_output_maps // self.num_groups) * kh * kw
		if self.kernel.count != expected:
			raise NetworkDefinitionError(f"Deconvolution kernel has {self.kernel.count} values, expected {expected}")
		if tuple(self.dilation) != (1, 1):
			raise NetworkDefinitionError("Deconvolution does not support dilation")
		sh, sw = _hw(self.stride, "stride")
		ph, pw = _hw(self.padding, "padding")
		oh = (h - 1) * sh + kh - 2 * ph
		ow = (w - 1) * sw + kw - 2 * pw
		if oh <= 0 or ow <= 0:
			raise NetworkDefinitionError(f"Deconvolution output would be empty for input {x.dims}")
		return [(x.dims[:-3] + (self.nb_output_maps, oh, ow), x.dtype)]


@dataclass(slots=True, eq=False, kw_only=True)
class PaddingLayer(Layer):
	"""Pads (or crops, when negative) the last two dims."""

	pre_padding: tuple[int, int]
	post_padding: tuple[int, int]

	def describe(self) -> str:
		return f"pre={self.pre_padding}, post={self.post_padding}"

	def infer_outputs(self) -> list[OutputSpec]:
		self._expect_inputs(1)
		x = self.inputs[0]
		if x.rank < 2:
			raise NetworkDefinitionError(f"Padding expects rank >= 2, got {x.dims}")
		pre = _hw(self.pre_padding, "pre_padding")
		post = _hw(self.post_padding, "post_padding")
		h, w = x.dims[-2:]
		oh, ow = h + pre[0] + post[0], w + pre[1] + post[1]
		if oh <= 0 or ow <= 0:
			raise NetworkDefinitionError(f"Padding would produce empty output from {x.dims}")
		return [(x.dims[:-2] + (oh, ow), x.dtype)]


@dataclass(slots=True, eq=False, kw_only=True)
class PoolingLayer(Layer):
	type: PoolingType
	window_size: tuple[int, int]
	stride: tuple[int, int] = (1, 1)
	padding: tuple[int, int] = (0, 0)

	def describe(self) -> str:
		return f"{self.type.name}, k={self.window_size}, s={self.stride}, p={self.padding}"

	def infer_outputs(self) -> list[OutputSpec]:
		self._expect_inputs(1)
		x = self.inputs[0]
		if x.rank < 2:
			raise NetworkDefinitionError(f"Pooling expects rank >= 2, got {x.dims}")
		kh, kw = _hw(self.window_size, "window_size")
		sh, sw = _hw(self.stride, "stride")
		ph, pw = _hw(self.padding, "padding")
		h, w = x.dims[-2:]
		oh = _window_output(h, kh, sh, ph)
		ow = _window_output(w, kw, sw, pw)
		if oh <= 0 or ow <= 0:
			raise NetworkDefinitionError(f"Pooling output would be empty for input {x.dims}")
		return [(x.dims[:-2] + (oh, ow), x.dtype)]


@dataclass(slots=True, eq=False, kw_only=True)
class ActivationLayer(Layer):
	type: ActivationType

	def describe(self) -> str:
		return self.type.name

	def infer_outputs(self) -> list[OutputSpec]:
		self._expect_inputs(1)
		x = self.inputs[0]
		return [(x.dims, x.dtype)]


@dataclass(slots=True, eq=False, kw_only=True)
class ScaleLayer(Layer):
	"""out = (x * scale + shift) ** power, per mode."""

	mode: ScaleMode
	shift: Weights
	scale: Weights
	power: Weights

	def describe(self) -> str:
		return self.mode.name

	def infer_outputs(self) -> list[OutputSpec]:
		self._expect_inputs(1)
		x = self.inputs[0]
		if self.mode is ScaleMode.UNIFORM:
			expected = 1
		elif self.mode is ScaleMode.CHANNEL:
			if x.rank < 1:
				raise NetworkDefinitionError("Channel scale needs a channel dimension")
			expected = x.dims[0]
		else:
			expected = volume(x.dims)
		for label, w in (("shift", self.shift), ("scale", self.scale), ("power", self.power)):
			if w.count not in (0, expected):
				raise NetworkDefinitionError(
					f"Scale {label} has {w.count} values, expected {expected} for mode {self.mode.name}"
				)
		return [(x.dims, x.dtype)]


@dataclass(slots=True, eq=False, kw_only=True)
class UnaryLayer(Layer):
	operation: UnaryOperation

	def describe(self) -> str:
		return self.operation.name

	def infer_outputs(self) -> list[OutputSpec]:
		self._expect_inputs(1)
		x = self.inputs[0]
		return [(x.dims, x.dtype)]


@dataclass(slots=True, eq=False, kw_only=True)
class ReduceLayer(Layer):
	operation: ReduceOperation
	axes: int
	keep_dims: bool = False

	def describe(self) -> str:
		return f"{self.operation.name}, axes={self.axes:#b}, keep_dims={self.keep_dims}"

	def infer_outputs(self) -> list[OutputSpec]:
		self._expect_inputs(1)
		x = self.inputs[0]
		reduced = _check_axes(self.axes, x.rank, "Reduce")
		if self.keep_dims:
			dims = tuple(1 if i in reduced else d for i, d in enumerate(x.dims))
		else:
			dims = tuple(d for i, d in enumerate(x.dims) if i not in reduced)
		return [(dims, x.dtype)]


@dataclass(slots=True, eq=False, kw_only=True)
class ConcatenationLayer(Layer):
	axis: int

	def describe(self) -> str:
		return f"axis={self.axis}"

	def infer_outputs(self) -> list[OutputSpec]:
		if not self.inputs:
			raise NetworkDefinitionError("Concatenation expects at least one input")
		first = self.inputs[0]
		if not 0 <= self.axis < first.rank:
			raise NetworkDefinitionError(f"Concatenation axis {self.axis} out of range for {first.dims}")
		total = 0
		for t in self.inputs:
			if t.rank != first.rank or t.dtype != first.dtype:
				raise NetworkDefinitionError("Concatenation inputs must share rank and dtype")
			for i, (a, b) in enumerate(zip(t.dims, first.dims)):
				if i != self.axis and a != b:
					raise NetworkDefinitionError(f"Concatenation shape mismatch: {t.dims} vs {first.dims}")
			total += t.dims[self.axis]
		dims = list(first.dims)
		dims[self.axis] = total
		return [(tuple(dims), first.dtype)]


@dataclass(slots=True, eq=False, kw_only=True)
class SliceLayer(Layer):
	start: Shape
	size: Shape
	stride: Shape

	def describe(self) -> str:
		return f"start={self.start}, size={self.size}, stride={self.stride}"

	def infer_outputs(self) -> list[OutputSpec]:
		self._expect_inputs(1)
		x = self.inputs[0]
		if not (len(self.start) == len(self.size) == len(self.stride) == x.rank):
			raise NetworkDefinitionError(f"Slice parameters do not match input rank {x.rank}")
		for dim, begin, count, step in zip(x.dims, self.start, self.size, self.stride):
			if count <= 0 or step <= 0 or begin < 0:
				raise NetworkDefinitionError(f"Invalid slice start={self.start} size={self.size} stride={self.stride}")
			if dim >= 0 and begin + (count - 1) * step >= dim:
				raise NetworkDefinitionError(f"Slice reads past the end of {x.dims}")
		return [(tuple(self.size), x.dtype)]


@dataclass(slots=True, eq=False, kw_only=True)
class GatherLayer(Layer):
	axis: int

	def describe(self) -> str:
		return f"axis={self.axis}"

	def infer_outputs(self) -> list[OutputSpec]:
		self._expect_inputs(2)
		data, indices = self.inputs
		if not 0 <= self.axis < data.rank:
			raise NetworkDefinitionError(f"Gather axis {self.axis} out of range for {data.dims}")
		if indices.dtype != int32:
			raise NetworkDefinitionError("Gather indices must be int32")
		dims = data.dims[: self.axis] + indices.dims + data.dims[self.axis + 1:]
		return [(dims, data.dtype)]


@dataclass(slots=True, eq=False, kw_only=True)
class MatrixMultiplyLayer(Layer):
	op0: MatrixOperation = MatrixOperation.NONE
	op1: MatrixOperation = MatrixOperation.NONE

	def describe(self) -> str:
		return f"{self.op0.name}, {self.op1.name}"

	def infer_outputs(self) -> list[OutputSpec]:
		self._expect_inputs(2)
		a, b = self.inputs
		if a.dtype != b.dtype:
			raise NetworkDefinitionError("MatrixMultiply dtype mismatch")
		lead_a, m, k_a = _matrix_operand(a, self.op0, rows_first=True)
		lead_b, n, k_b = _matrix_operand(b, self.op1, rows_first=False)
		if k_a >= 0 and k_b >= 0 and k_a != k_b:
			raise NetworkDefinitionError(f"MatrixMultiply K mismatch: {a.dims} vs {b.dims}")
		width = max(len(lead_a), len(lead_b))
		lead_a = (1,) * (width - len(lead_a)) + lead_a
		lead_b = (1,) * (width - len(lead_b)) + lead_b
		leading = []
		for da, db in zip(lead_a, lead_b):
			if da != db and 1 not in (da, db):
				raise NetworkDefinitionError(f"MatrixMultiply cannot broadcast {a.dims} with {b.dims}")
			leading.append(db if da == 1 else da)
		tail = tuple(d for d in (m, n) if d is not None)
		return [(tuple(leading) + tail, a.dtype)]


def _matrix_operand(t: Tensor, op: MatrixOperation, *, rows_first: bool) -> tuple[Shape, int | None, int]:
	"""Split an operand into (leading dims, free dim or None for vectors, contracted dim)."""
	if op is MatrixOperation.VECTOR:
		if t.rank < 1:
			raise NetworkDefinitionError("MatrixMultiply vector operand needs rank >= 1")
		return t.dims[:-1], None, t.dims[-1]
	if t.rank < 2:
		raise NetworkDefinitionError(f"MatrixMultiply matrix operand needs rank >= 2, got {t.dims}")
	rows, cols = t.dims[-2:]
	if op is MatrixOperation.TRANSPOSE:
		rows, cols = cols, rows
	if rows_first:
		return t.dims[:-2], rows, cols
	return t.dims[:-2], cols, rows


@dataclass(slots=True, eq=False, kw_only=True)
class FullyConnectedLayer(Layer):
	"""Contracts the last dim against a KC-ordered kernel."""

	nb_outputs: int
	kernel: Weights
	bias: Weights

	def describe(self) -> str:
		return f"out={self.nb_outputs}"

	def infer_outputs(self) -> list[OutputSpec]:
		self._expect_inputs(1)
		x = self.inputs[0]
		if x.rank < 1:
			raise NetworkDefinitionError("FullyConnected needs rank >= 1")
		k_in = x.dims[-1]
		if self.kernel.count != self.nb_outputs * k_in:
			raise NetworkDefinitionError(
				f"FullyConnected kernel has {self.kernel.count} values, expected {self.nb_outputs * k_in}"
			)
		if self.bias.count not in (0, self.nb_outputs):
			raise NetworkDefinitionError("FullyConnected bias size mismatch")
		return [(x.dims[:-1] + (self.nb_outputs,), x.dtype)]


@dataclass(slots=True, eq=False, kw_only=True)
class SoftMaxLayer(Layer):
	axes: int

	def describe(self) -> str:
		return f"axes={self.axes:#b}"

	def infer_outputs(self) -> list[OutputSpec]:
		self._expect_inputs(1)
		x = self.inputs[0]
		if len(_check_axes(self.axes, x.rank, "SoftMax")) != 1:
			raise NetworkDefinitionError("SoftMax reduces over exactly one axis")
		return [(x.dims, x.dtype)]


@dataclass(slots=True, eq=False, kw_only=True)
class TopKLayer(Layer):
	operation: TopKOperation
	k: int
	axes: int

	def describe(self) -> str:
		return f"{self.operation.name}, k={self.k}, axes={self.axes:#b}"

	def infer_outputs(self) -> list[OutputSpec]:
		self._expect_inputs(1)
		x = self.inputs[0]
		reduced = _check_axes(self.axes, x.rank, "TopK")
		if len(reduced) != 1:
			raise NetworkDefinitionError("TopK reduces over exactly one axis")
		axis = reduced[0]
		if self.k <= 0 or (x.dims[axis] >= 0 and self.k > x.dims[axis]):
			raise NetworkDefinitionError(f"TopK k={self.k} invalid for dims {x.dims}")
		dims = list(x.dims)
		dims[axis] = self.k
		return [(tuple(dims), x.dtype), (tuple(dims), int32)]


@dataclass(slots=True, eq=False, kw_only=True)
class PluginLayer(Layer):
	plugin: Any

	def describe(self) -> str:
		return getattr(self.plugin, "plugin_type", type(self.plugin).__name__)

	def infer_outputs(self) -> list[OutputSpec]:
		specs = self.plugin.get_output_dimensions(
			[t.dims for t in self.inputs], [t.dtype for t in self.inputs]
		)
		if not specs:
			raise NetworkDefinitionError(f"Plugin {self.describe()} produced no outputs")
		return list(specs)
